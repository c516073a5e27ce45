# storefront/data/models/order_line.py
from sqlalchemy import Column, ForeignKey, Integer, Numeric, event
from sqlalchemy.orm import relationship

from storefront.data.database import Base
from storefront.domain.errors import Conflict


class OrderLineModel(Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)

    order = relationship("OrderModel", back_populates="lines")


@event.listens_for(OrderLineModel, "before_update")
def _order_lines_are_frozen(mapper, connection, target):
    raise Conflict(
        "Order lines cannot be modified",
        {"order_id": target.order_id, "order_line_id": target.id},
    )

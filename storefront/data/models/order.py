# storefront/data/models/order.py
from sqlalchemy import Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship

from storefront.data.database import Base
from storefront.data.models.cart_line import utcnow


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, nullable=False, index=True)
    # assigned after flush, inside the inserting transaction
    invoice_number = Column(String(32), unique=True, nullable=True)

    status = Column(String(16), nullable=False, default="pending")
    currency = Column(String(3), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    shipping = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)

    payment_method = Column(String(32), nullable=False)
    payment_reference = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    lines = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineModel.id",
    )

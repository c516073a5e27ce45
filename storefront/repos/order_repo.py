# storefront/repos/order_repo.py
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        # flush only, the primary key is needed for the invoice number
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> Optional[OrderModel]:
        stmt = (
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .where(OrderModel.id == order_id)
        )
        return self.db.execute(stmt).scalars().first()

    def list_by_customer(self, customer_id: int, limit: int, offset: int) -> List[OrderModel]:
        stmt = (
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .where(OrderModel.customer_id == customer_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def orders_between(self, start: datetime, end: datetime):
        """customer_id, status, total_amount of orders created in [start, end)."""
        stmt = select(
            OrderModel.customer_id,
            OrderModel.status,
            OrderModel.total_amount,
        ).where(OrderModel.created_at >= start, OrderModel.created_at < end)
        return self.db.execute(stmt).all()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

# storefront/repos/cart_repo.py
from typing import List, Optional

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.orm import Session

from storefront.data.models.cart_line import CartLineModel
from storefront.domain.identity import ANONYMOUS


class CartRepo:
    """Queries over cart_lines. Never commits, services own the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def get_lines(self, identity_key: str, for_update: bool = False) -> List[CartLineModel]:
        stmt = (
            select(CartLineModel)
            .where(CartLineModel.identity_key == identity_key)
            .order_by(CartLineModel.created_at, CartLineModel.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def get_line(self, identity_key: str, product_id: int, for_update: bool = False) -> Optional[CartLineModel]:
        stmt = (
            select(CartLineModel)
            .where(
                CartLineModel.identity_key == identity_key,
                CartLineModel.product_id == product_id,
            )
            .order_by(CartLineModel.created_at, CartLineModel.id)
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def get_product_lines(self, identity_key: str, product_id: int, for_update: bool = False) -> List[CartLineModel]:
        stmt = (
            select(CartLineModel)
            .where(
                CartLineModel.identity_key == identity_key,
                CartLineModel.product_id == product_id,
            )
            .order_by(CartLineModel.created_at, CartLineModel.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def delete_product_lines(self, identity_key: str, product_id: int) -> int:
        result = self.db.execute(
            delete(CartLineModel).where(
                CartLineModel.identity_key == identity_key,
                CartLineModel.product_id == product_id,
            )
        )
        return result.rowcount or 0

    def get_all_lines(self) -> List[CartLineModel]:
        stmt = select(CartLineModel).order_by(
            CartLineModel.identity_key, CartLineModel.created_at, CartLineModel.id
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_identity_keys(self) -> List[str]:
        stmt = select(distinct(CartLineModel.identity_key)).order_by(CartLineModel.identity_key)
        return list(self.db.execute(stmt).scalars().all())

    def add_line(self, line: CartLineModel) -> CartLineModel:
        self.db.add(line)
        self.db.flush()
        return line

    def delete_line(self, line: CartLineModel) -> None:
        self.db.delete(line)
        self.db.flush()

    def delete_lines(self, identity_key: str) -> int:
        result = self.db.execute(
            delete(CartLineModel).where(CartLineModel.identity_key == identity_key)
        )
        return result.rowcount or 0

    def total_quantity(self, identity_key: str) -> int:
        stmt = select(func.coalesce(func.sum(CartLineModel.quantity), 0)).where(
            CartLineModel.identity_key == identity_key
        )
        return int(self.db.execute(stmt).scalar_one())

    def guest_statistics(self):
        stmt = select(
            func.count(distinct(CartLineModel.identity_key)),
            func.count(CartLineModel.id),
            func.coalesce(func.sum(CartLineModel.quantity), 0),
        ).where(CartLineModel.identity_kind == ANONYMOUS)
        return self.db.execute(stmt).one()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

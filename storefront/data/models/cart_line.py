# storefront/data/models/cart_line.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from storefront.data.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes, everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CartLineModel(Base):
    __tablename__ = "cart_lines"

    id = Column(Integer, primary_key=True)
    # no unique (identity_key, product_id): duplicates are prevented under the
    # identity lock and historic ones must stay visible to the integrity scan
    identity_key = Column(String(80), nullable=False, index=True)
    identity_kind = Column(String(16), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

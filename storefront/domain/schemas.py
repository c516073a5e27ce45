# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, List, Optional
from decimal import Decimal
from datetime import date, datetime


class ItemIn(BaseModel):
    """Add a product to the cart."""

    product_id: int = Field(..., description="Product id")
    quantity: int = Field(1, description="Quantity to add, added to any existing quantity")


class QuantityIn(BaseModel):
    """Absolute quantity, 0 removes the line."""

    quantity: int


class CartLineOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    identity: str
    lines: List[CartLineOut]
    total_quantity: int
    total_amount: Decimal


class AddItemOut(BaseModel):
    created: bool
    line: CartLineOut
    cart: CartOut


class UpdateItemOut(BaseModel):
    removed: bool
    line: Optional[CartLineOut] = None
    cart: CartOut


class RemoveItemOut(BaseModel):
    status: str
    cart: CartOut


class ClearCartOut(BaseModel):
    removed: int


class CartCountOut(BaseModel):
    identity: str
    count: int


class LoginIn(BaseModel):
    """
    Sent by the auth layer once the customer is authenticated. The id may
    instead arrive in the X-Customer-Id header, both must agree when given.
    """

    customer_id: Optional[int] = Field(None, gt=0)


class MergeOut(BaseModel):
    customer: str
    anonymous: str
    moved: int
    merged: int
    cart: CartOut


class CheckoutIn(BaseModel):
    payment_method: str
    currency: str = "USD"
    expected_total: Optional[Decimal] = Field(None, description="Total shown to the customer")


class OrderLineOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    order_id: int
    customer_id: int
    invoice_number: str
    status: str
    currency: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total_amount: Decimal
    payment_method: str
    payment_reference: str
    created_at: datetime
    lines: List[OrderLineOut]

    model_config = ConfigDict(from_attributes=True)


class CheckoutOut(BaseModel):
    order: OrderOut
    cart_cleared: bool
    states: List[str]


class OrderStatusIn(BaseModel):
    status: str


class IntegrityIssueOut(BaseModel):
    kind: str
    affected_identity: str
    affected_product_id: Optional[int] = None
    suggested_fix: str
    line_ids: List[int]


class RepairIn(BaseModel):
    customer_id: Optional[int] = None
    origin: Optional[str] = None
    remove_orphaned: bool = True
    fix_quantities: bool = True
    merge_duplicates: bool = True
    delete_stale_guest_carts: bool = True
    retention_hours: Optional[int] = None


class RepairOut(BaseModel):
    fixes_applied: Dict[str, int]
    total_fixes: int
    errors: int
    identities_repaired: int


class GuestStatsOut(BaseModel):
    unique_guest_origins: int
    total_guest_lines: int
    total_guest_quantity: int
    avg_quantity_per_guest: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderStatsOut(BaseModel):
    start_date: date
    end_date: date
    total_orders: int
    unique_customers: int
    total_revenue: Decimal
    avg_order_value: Decimal
    orders_by_status: Dict[str, int]

# storefront/domain/values.py
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from storefront.domain.identity import Identity

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CartLineView:
    product_id: int
    quantity: int
    unit_price: Decimal
    created_at: datetime
    updated_at: datetime

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    identity: Identity
    lines: Tuple[CartLineView, ...]

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_amount(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), ZERO)

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class AddResult:
    line: CartLineView
    created: bool


@dataclass(frozen=True)
class UpdateResult:
    line: Optional[CartLineView]
    removed: bool


class RemoveStatus(str, Enum):
    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"


@dataclass(frozen=True)
class GuestCartStats:
    unique_guest_origins: int
    total_guest_lines: int
    total_guest_quantity: int
    avg_quantity_per_guest: Decimal


@dataclass(frozen=True)
class MergeReport:
    anonymous: Identity
    customer: Identity
    moved: int
    merged: int


class IssueKind(str, Enum):
    ORPHANED_PRODUCT_REFERENCE = "orphaned_product_reference"
    DUPLICATE_LINE = "duplicate_line"
    INVALID_QUANTITY = "invalid_quantity"
    STALE_GUEST_CART = "stale_guest_cart"


@dataclass(frozen=True)
class IntegrityIssue:
    kind: IssueKind
    affected_identity: Identity
    affected_product_id: Optional[int]
    suggested_fix: str
    line_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class RepairOptions:
    remove_orphaned: bool = True
    fix_quantities: bool = True
    merge_duplicates: bool = True
    delete_stale_guest_carts: bool = True


@dataclass
class RepairReport:
    fixes_applied: Dict[IssueKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in IssueKind}
    )
    errors: int = 0
    identities_repaired: int = 0

    @property
    def total_fixes(self) -> int:
        return sum(self.fixes_applied.values())


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


@dataclass(frozen=True)
class PaymentOutcome:
    success: bool
    reference: Optional[str] = None
    error_message: Optional[str] = None


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CheckoutState(str, Enum):
    STARTED = "started"
    PAYMENT_ATTEMPTED = "payment_attempted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class OrderLineView:
    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderView:
    order_id: int
    customer_id: int
    invoice_number: str
    status: OrderStatus
    currency: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total_amount: Decimal
    payment_method: str
    payment_reference: str
    created_at: datetime
    lines: Tuple[OrderLineView, ...]


@dataclass(frozen=True)
class CheckoutResult:
    order: OrderView
    cart_cleared: bool
    states: Tuple[CheckoutState, ...]


@dataclass(frozen=True)
class OrderStats:
    start_date: date
    end_date: date
    total_orders: int
    unique_customers: int
    total_revenue: Decimal
    avg_order_value: Decimal
    orders_by_status: Dict[OrderStatus, int]

"""
Error taxonomy for the cart core.

Every operation returns ``returns.result.Result`` and puts one of these on the
failure side. ``kind`` is what callers branch on, ``details`` carries the
affected identifiers. Storage internals never end up in ``message``.
"""
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict


@dataclass(eq=False)
class CartError(Exception):
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "cart_error"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


@dataclass(eq=False)
class ValidationError(CartError):
    kind: ClassVar[str] = "validation_error"


@dataclass(eq=False)
class InvalidQuantity(ValidationError):
    kind: ClassVar[str] = "invalid_quantity"


@dataclass(eq=False)
class UnresolvableIdentity(ValidationError):
    kind: ClassVar[str] = "unresolvable_identity"


@dataclass(eq=False)
class NotFound(CartError):
    kind: ClassVar[str] = "not_found"


@dataclass(eq=False)
class Conflict(CartError):
    kind: ClassVar[str] = "conflict"
    retryable: ClassVar[bool] = True


@dataclass(eq=False)
class EmptyCart(CartError):
    kind: ClassVar[str] = "empty_cart"


@dataclass(eq=False)
class PaymentFailed(CartError):
    kind: ClassVar[str] = "payment_failed"
    retryable: ClassVar[bool] = True


@dataclass(eq=False)
class StorageError(CartError):
    kind: ClassVar[str] = "storage_error"
    retryable: ClassVar[bool] = True

# storefront/domain/identity.py
from dataclasses import dataclass
from typing import Optional, Union

CUSTOMER = "customer"
ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class CustomerIdentity:
    """Authenticated owner of a cart, survives across sessions."""

    customer_id: int

    @property
    def kind(self) -> str:
        return CUSTOMER

    @property
    def key(self) -> str:
        return f"{CUSTOMER}:{self.customer_id}"


@dataclass(frozen=True)
class AnonymousIdentity:
    """
    Guest cart owner derived from the network origin.
    Several users behind one NAT share the same token.
    """

    origin_token: str

    @property
    def kind(self) -> str:
        return ANONYMOUS

    @property
    def key(self) -> str:
        return f"{ANONYMOUS}:{self.origin_token}"


Identity = Union[CustomerIdentity, AnonymousIdentity]


@dataclass(frozen=True)
class RequestContext:
    """What the session/auth layer knows about the caller."""

    customer_id: Optional[int] = None
    origin: Optional[str] = None


def identity_from_key(key: str) -> Identity:
    kind, _, value = key.partition(":")
    if kind == CUSTOMER:
        return CustomerIdentity(int(value))
    if kind == ANONYMOUS and value:
        return AnonymousIdentity(value)
    raise ValueError(f"Unknown identity key: {key!r}")

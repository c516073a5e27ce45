# storefront/api/deps.py
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from returns.pipeline import is_successful
from returns.result import Result

from storefront.domain.errors import CartError
from storefront.domain.identity import Identity, RequestContext
from storefront.services.identity_service import IdentityResolver
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.services.payment_service import SimulatedPaymentGateway
from storefront.services.product_client import ProductClient

STATUS_BY_KIND = {
    "validation_error": 422,
    "invalid_quantity": 422,
    "unresolvable_identity": 400,
    "not_found": 404,
    "conflict": 409,
    "empty_cart": 409,
    "payment_failed": 402,
    "storage_error": 503,
}


def raise_for(error: CartError):
    raise HTTPException(status_code=STATUS_BY_KIND.get(error.kind, 400), detail=error.to_dict())


def unwrap(result: Result):
    """Success -> value, Failure -> HTTPException with the structured error."""
    if is_successful(result):
        return result.unwrap()
    raise_for(result.failure())


@lru_cache
def get_lock_service() -> LockService:
    return LockService()


def get_product_client() -> ProductClient:
    return ProductClient()


def get_payment_gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


def get_notifier() -> NotificationService:
    return NotificationService()


def get_request_context(
    request: Request,
    x_customer_id: Optional[int] = Header(None),
    x_forwarded_for: Optional[str] = Header(None),
) -> RequestContext:
    # X-Customer-Id is set by the auth gateway in front of this service
    if x_forwarded_for:
        origin = x_forwarded_for.split(",")[0].strip()
    else:
        origin = request.client.host if request.client else None
    return RequestContext(customer_id=x_customer_id, origin=origin)


def get_identity(context: RequestContext = Depends(get_request_context)) -> Identity:
    return unwrap(IdentityResolver().resolve(context))

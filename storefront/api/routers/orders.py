# storefront/api/routers/orders.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import (
    get_identity,
    get_lock_service,
    get_notifier,
    get_payment_gateway,
    get_product_client,
    raise_for,
    unwrap,
)
from storefront.data.database import get_db
from storefront.domain.errors import ValidationError
from storefront.domain.identity import CustomerIdentity, Identity
from storefront.domain.schemas import CheckoutIn, CheckoutOut, OrderOut, OrderStatsOut, OrderStatusIn
from storefront.domain.values import OrderView
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import SimulatedPaymentGateway
from storefront.services.product_client import ProductClient

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(
    db: Session = Depends(get_db),
    product_client: ProductClient = Depends(get_product_client),
    lock_service: LockService = Depends(get_lock_service),
    payment_gateway: SimulatedPaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notifier),
) -> OrderService:
    cart_service = CartService(db=db, product_client=product_client, lock_service=lock_service)
    return OrderService(db, cart_service, payment_gateway, notifier=notifier)


def order_out(order: OrderView) -> OrderOut:
    return OrderOut.model_validate(order)


def require_customer(identity: Identity = Depends(get_identity)) -> CustomerIdentity:
    if not isinstance(identity, CustomerIdentity):
        raise_for(ValidationError(
            "Please log in to see orders",
            {"identity": identity.key, "issue": "guest"},
        ))
    return identity


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
def checkout(
    payload: CheckoutIn,
    identity: Identity = Depends(get_identity),
    svc: OrderService = Depends(get_service),
):
    """
    Pays for the current cart and turns it into an order.
    A declined payment answers 402 and leaves the cart untouched.
    """
    result = unwrap(svc.checkout(
        identity,
        payment_method=payload.payment_method,
        currency=payload.currency,
        expected_total=payload.expected_total,
    ))
    return CheckoutOut(
        order=order_out(result.order),
        cart_cleared=result.cart_cleared,
        states=[s.value for s in result.states],
    )


@router.get("", response_model=List[OrderOut])
def list_orders(
    limit: int = Query(10),
    offset: int = Query(0),
    customer: CustomerIdentity = Depends(require_customer),
    svc: OrderService = Depends(get_service),
):
    return [order_out(o) for o in unwrap(svc.list_orders(customer.customer_id, limit, offset))]


@router.get("/statistics", response_model=OrderStatsOut)
def order_statistics(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to 30 days ago"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    svc: OrderService = Depends(get_service),
):
    """Admin: order totals over a date range, both ends inclusive."""
    stats = unwrap(svc.statistics(start_date, end_date))
    return OrderStatsOut(
        start_date=stats.start_date,
        end_date=stats.end_date,
        total_orders=stats.total_orders,
        unique_customers=stats.unique_customers,
        total_revenue=stats.total_revenue,
        avg_order_value=stats.avg_order_value,
        orders_by_status={s.value: n for s, n in stats.orders_by_status.items()},
    )


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    customer: CustomerIdentity = Depends(require_customer),
    svc: OrderService = Depends(get_service),
):
    return order_out(unwrap(svc.get_order(order_id, customer.customer_id)))


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusIn,
    svc: OrderService = Depends(get_service),
):
    """Admin: order progression after confirmation."""
    return order_out(unwrap(svc.update_status(order_id, payload.status)))

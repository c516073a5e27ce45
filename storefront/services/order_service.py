# storefront/services/order_service.py
from concurrent.futures import ThreadPoolExecutor, TimeoutError as PaymentTimeout
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Union

from returns.pipeline import is_successful
from returns.result import Failure, Result, Success
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.cart_line import as_utc, utcnow
from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel
from storefront.domain.errors import (
    CartError,
    Conflict,
    EmptyCart,
    NotFound,
    PaymentFailed,
    ValidationError,
)
from storefront.domain.identity import CustomerIdentity, Identity
from storefront.domain.validation import (
    validate_amount,
    validate_currency,
    validate_customer_id,
    validate_date,
    validate_payment_method,
)
from storefront.domain.values import (
    CartSnapshot,
    CheckoutResult,
    CheckoutState,
    OrderLineView,
    OrderStats,
    OrderStatus,
    OrderView,
    PaymentOutcome,
    Totals,
)
from storefront.repos.order_repo import OrderRepo
from storefront.services.cart_service import CartService
from storefront.services.guards import storage_boundary
from storefront.services.notification_service import NotificationService
from storefront.services.payment_service import TIMEOUT_MESSAGE, SimulatedPaymentGateway
from storefront.services.pricing_service import CENT, PricingService
from storefront.utils.settings import DEFAULT_CURRENCY, PAYMENT_TIMEOUT_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
STATISTICS_DEFAULT_DAYS = 30

# admin progression after confirmation; pending/failed never reach the table
STATUS_TRANSITIONS = {
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
}


def order_view(order: OrderModel) -> OrderView:
    return OrderView(
        order_id=order.id,
        customer_id=order.customer_id,
        invoice_number=order.invoice_number,
        status=OrderStatus(order.status),
        currency=order.currency,
        subtotal=Decimal(order.subtotal),
        tax=Decimal(order.tax),
        shipping=Decimal(order.shipping),
        total_amount=Decimal(order.total_amount),
        payment_method=order.payment_method,
        payment_reference=order.payment_reference,
        created_at=as_utc(order.created_at),
        lines=tuple(
            OrderLineView(
                product_id=l.product_id,
                quantity=l.quantity,
                unit_price=Decimal(l.unit_price),
                line_total=Decimal(l.line_total),
            )
            for l in order.lines
        ),
    )


class OrderService:
    """
    Order materializer: cart snapshot + payment outcome -> immutable order.

    started -> payment_attempted -> confirmed | failed

    1. snapshot the customer's cart and price it
    2. call the payment gateway exactly once (timeout counts as failure)
    3. on success insert order + lines in one transaction, then clear the cart
       (best-effort, a stale cart never undoes a confirmed purchase)
    4. on failure nothing is written and the cart is left as it was
    """

    def __init__(
        self,
        db: Session,
        cart_service: CartService,
        payment_gateway: SimulatedPaymentGateway,
        pricing: PricingService | None = None,
        notifier: NotificationService | None = None,
        payment_timeout: float = PAYMENT_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.cart_service = cart_service
        self.lock_service = cart_service.lock_service
        self.payment_gateway = payment_gateway
        self.pricing = pricing or PricingService()
        self.notifier = notifier or NotificationService()
        self.payment_timeout = payment_timeout

    # commands
    @storage_boundary("order.checkout")
    def checkout(
        self,
        identity: Identity,
        payment_method: str,
        currency: str = DEFAULT_CURRENCY,
        expected_total: Optional[Decimal] = None,
    ) -> Result[CheckoutResult, CartError]:
        if not isinstance(identity, CustomerIdentity):
            return Failure(ValidationError(
                "Please log in to complete checkout",
                {"identity": identity.key, "issue": "guest_checkout"},
            ))

        checked = validate_payment_method(payment_method).bind(
            lambda method: validate_currency(currency).map(lambda code: (method, code))
        )
        if not is_successful(checked):
            return checked
        method, currency = checked.unwrap()

        states = [CheckoutState.STARTED]
        # held for the whole attempt so the cart cannot change under the payment
        with self.lock_service.hold(identity.key):
            snapshot_result = self.cart_service.list(identity)
            if not is_successful(snapshot_result):
                return snapshot_result
            snapshot = snapshot_result.unwrap()

            if snapshot.is_empty:
                return Failure(EmptyCart(
                    "Cart is empty. Cannot create order.",
                    {"customer_id": identity.customer_id},
                ))

            totals = self.pricing.compute_totals(snapshot.total_amount, currency)
            amount = validate_amount(totals.total)
            if not is_successful(amount):
                return amount

            mismatch = self._check_expected_total(expected_total, totals)
            if mismatch:
                return Failure(mismatch)

            states.append(CheckoutState.PAYMENT_ATTEMPTED)
            logger.info(
                f"Checkout attempt - customer {identity.customer_id}, "
                f"amount {totals.total} {currency}, payment {method}"
            )
            outcome = self._attempt_payment(totals.total, currency, method)

            if not outcome.success:
                states.append(CheckoutState.FAILED)
                logger.info(f"Payment failed for customer {identity.customer_id}: {outcome.error_message}")
                return Failure(PaymentFailed(
                    outcome.error_message or "Payment processing failed. Please try again.",
                    {
                        "customer_id": identity.customer_id,
                        "payment_method": method,
                        "states": [s.value for s in states],
                    },
                ))

            order = self._materialize(identity, snapshot, totals, currency, method, outcome.reference)
            states.append(CheckoutState.CONFIRMED)

            cleared = self.cart_service.clear(identity)
            cart_cleared = is_successful(cleared)
            if not cart_cleared:
                logger.warning(
                    f"Order {order.id} confirmed but cart {identity.key} was not emptied: {cleared.failure()}"
                )

        self._notify(order)
        logger.info(
            f"Order created - id {order.id}, invoice {order.invoice_number}, customer {identity.customer_id}"
        )
        return Success(CheckoutResult(order=order_view(order), cart_cleared=cart_cleared, states=tuple(states)))

    def _check_expected_total(self, expected_total, totals: Totals) -> Optional[CartError]:
        if expected_total is None:
            return None
        try:
            expected = Decimal(str(expected_total))
        except (InvalidOperation, ValueError):
            return ValidationError(
                "Expected total must be a number",
                {"field": "expected_total", "value": str(expected_total)},
            )
        if abs(expected - totals.total) > CENT:
            return Conflict(
                "Cart total mismatch. Please refresh and try again.",
                {
                    "reason": "total_mismatch",
                    "cart_subtotal": str(totals.subtotal),
                    "tax": str(totals.tax),
                    "shipping": str(totals.shipping),
                    "calculated_total": str(totals.total),
                    "expected_total": str(expected),
                },
            )
        return None

    def _attempt_payment(self, amount: Decimal, currency: str, method: str) -> PaymentOutcome:
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.payment_gateway.attempt_payment, amount, currency, method)
        try:
            return future.result(timeout=self.payment_timeout)
        except PaymentTimeout:
            logger.warning(f"Payment of {amount} {currency} via {method} exceeded {self.payment_timeout}s")
            future.add_done_callback(
                lambda late: self._report_late_payment(late, amount, currency, method)
            )
            return PaymentOutcome(success=False, error_message=TIMEOUT_MESSAGE)
        except Exception:
            # the gateway is external, anything it raises is a declined attempt
            logger.exception(f"Payment gateway raised for method {method}")
            return PaymentOutcome(success=False, error_message="Payment processing failed. Please try again.")
        finally:
            executor.shutdown(wait=False)

    @staticmethod
    def _report_late_payment(future, amount: Decimal, currency: str, method: str):
        # the checkout already failed, a capture arriving now has no order behind it
        if future.cancelled() or future.exception() is not None:
            return
        outcome = future.result()
        if outcome.success:
            logger.error(
                f"Payment {outcome.reference} of {amount} {currency} via {method} succeeded "
                f"after the checkout timed out, no order was created"
            )

    def _materialize(
        self,
        identity: CustomerIdentity,
        snapshot: CartSnapshot,
        totals: Totals,
        currency: str,
        method: str,
        payment_reference: str,
    ) -> OrderModel:
        created_at = utcnow()
        order = OrderModel(
            customer_id=identity.customer_id,
            status=OrderStatus.CONFIRMED.value,
            currency=currency,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total_amount=totals.total,
            payment_method=method,
            payment_reference=payment_reference,
            created_at=created_at,
            lines=[
                OrderLineModel(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.subtotal,
                )
                for line in snapshot.lines
            ],
        )

        try:
            self.repo.add_order(order)
            # primary key is unique, so is the invoice number built from it
            order.invoice_number = f"INV-{created_at:%Y%m%d}-{order.id:08d}"
            self.repo.commit()
        except SQLAlchemyError:
            logger.error(
                f"Payment {payment_reference} captured for customer {identity.customer_id} "
                f"but the order could not be stored"
            )
            raise

        return order

    def _notify(self, order: OrderModel):
        try:
            self.notifier.send_order_confirmation(order.customer_id, order.id, order.invoice_number)
        except Exception as e:
            logger.warning(f"Order {order.id} notification not dispatched: {e}")

    @storage_boundary("order.update_status")
    def update_status(self, order_id: int, new_status: str) -> Result[OrderView, CartError]:
        try:
            target = OrderStatus(new_status)
        except ValueError:
            return Failure(ValidationError(
                "Invalid order status",
                {"field": "status", "value": new_status,
                 "valid_statuses": [s.value for s in OrderStatus]},
            ))

        order = self.repo.get_order(order_id)
        if not order:
            return Failure(NotFound("Order not found", {"order_id": order_id}))

        current = OrderStatus(order.status)
        if target not in STATUS_TRANSITIONS.get(current, set()):
            self.repo.rollback()
            return Failure(Conflict(
                f"Order cannot move from {current.value} to {target.value}",
                {"order_id": order_id, "from": current.value, "to": target.value},
            ))

        order.status = target.value
        self.repo.commit()
        logger.info(f"Order {order_id} status {current.value} -> {target.value}")
        return Success(order_view(order))

    # queries
    @storage_boundary("order.get")
    def get_order(self, order_id: int, customer_id: int) -> Result[OrderView, CartError]:
        order = self.repo.get_order(order_id)
        # another customer's order is reported exactly like a missing one
        if not order or order.customer_id != customer_id:
            return Failure(NotFound("Order not found", {"order_id": order_id}))
        return Success(order_view(order))

    @storage_boundary("order.list")
    def list_orders(self, customer_id: int, limit: int = 10, offset: int = 0) -> Result[List[OrderView], CartError]:
        checked = validate_customer_id(customer_id)
        if not is_successful(checked):
            return checked
        if not (1 <= limit <= MAX_PAGE_SIZE) or offset < 0:
            return Failure(ValidationError(
                f"limit must be 1..{MAX_PAGE_SIZE} and offset >= 0",
                {"limit": limit, "offset": offset},
            ))
        orders = self.repo.list_by_customer(customer_id, limit, offset)
        return Success([order_view(o) for o in orders])

    @storage_boundary("order.statistics")
    def statistics(
        self,
        start_date: Union[date, str, None] = None,
        end_date: Union[date, str, None] = None,
    ) -> Result[OrderStats, CartError]:
        """
        Order totals for reporting, both dates inclusive (UTC days).
        Defaults to the last 30 days up to today.
        """
        today = utcnow().date()
        checked = validate_date(start_date or today - timedelta(days=STATISTICS_DEFAULT_DAYS), "start_date").bind(
            lambda start: validate_date(end_date or today, "end_date").map(lambda end: (start, end))
        )
        if not is_successful(checked):
            return checked
        start, end = checked.unwrap()
        if start > end:
            return Failure(ValidationError(
                "start_date must not be after end_date",
                {"start_date": start.isoformat(), "end_date": end.isoformat()},
            ))

        rows = self.repo.orders_between(
            datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc),
            datetime.combine(end + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc),
        )

        revenue = sum((Decimal(row.total_amount) for row in rows), Decimal("0.00"))
        by_status = {status: 0 for status in OrderStatus}
        for row in rows:
            by_status[OrderStatus(row.status)] += 1
        average = (revenue / len(rows)).quantize(CENT, rounding=ROUND_HALF_UP) if rows else Decimal("0.00")

        return Success(OrderStats(
            start_date=start,
            end_date=end,
            total_orders=len(rows),
            unique_customers=len({row.customer_id for row in rows}),
            total_revenue=revenue,
            avg_order_value=average,
            orders_by_status=by_status,
        ))

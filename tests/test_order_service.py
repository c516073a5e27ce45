import re
import time
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import pytest
from returns.result import Failure
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from storefront.data.models.cart_line import utcnow
from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel
from storefront.domain.errors import (
    Conflict,
    EmptyCart,
    NotFound,
    PaymentFailed,
    StorageError,
    ValidationError,
)
from storefront.domain.identity import CustomerIdentity
from storefront.domain.values import CheckoutState, OrderStatus, PaymentOutcome
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import TIMEOUT_MESSAGE
from tests.conftest import CUSTOMER, GUEST
from tests.fakes import ScriptedGateway

INVOICE = re.compile(r"^INV-\d{8}-(\d{8})$")


def _order_count(session_factory):
    with session_factory() as s:
        return s.execute(select(func.count(OrderModel.id))).scalar_one()


@pytest.fixture
def orders(db, cart_service, gateway, notifier):
    return OrderService(db, cart_service, gateway, notifier=notifier, payment_timeout=1)


def _service(db, cart_service, notifier, gateway, timeout=1):
    return OrderService(db, cart_service, gateway, notifier=notifier, payment_timeout=timeout)


class TestCheckoutSuccess:

    def test_cart_becomes_one_order(self, orders, cart_service, gateway, session_factory):
        cart_service.add(CUSTOMER, 1, 1)
        cart_service.add(CUSTOMER, 2, 2)

        result = orders.checkout(CUSTOMER, "credit_card").unwrap()

        order = result.order
        assert order.customer_id == 42
        assert order.status is OrderStatus.CONFIRMED
        assert [(l.product_id, l.quantity, l.unit_price) for l in order.lines] == [
            (1, 1, Decimal("19.99")),
            (2, 2, Decimal("5.00")),
        ]
        assert order.subtotal == Decimal("29.99")
        assert order.tax == Decimal("2.40")
        assert order.shipping == Decimal("5.99")
        assert order.total_amount == Decimal("38.38")
        assert order.payment_method == "credit_card"
        assert order.payment_reference == "PAY-TEST-0001"
        assert result.cart_cleared is True
        assert result.states == (
            CheckoutState.STARTED,
            CheckoutState.PAYMENT_ATTEMPTED,
            CheckoutState.CONFIRMED,
        )

        assert gateway.calls == [(Decimal("38.38"), "USD", "credit_card")]
        assert cart_service.list(CUSTOMER).unwrap().is_empty
        assert _order_count(session_factory) == 1

    def test_invoice_number_carries_date_and_order_id(self, orders, cart_service):
        cart_service.add(CUSTOMER, 1, 1)

        order = orders.checkout(CUSTOMER, "paypal").unwrap().order

        match = INVOICE.match(order.invoice_number)
        assert match
        assert int(match.group(1)) == order.order_id
        assert order.invoice_number[4:12] == order.created_at.strftime("%Y%m%d")

    def test_invoice_numbers_are_unique(self, orders, cart_service):
        invoices = set()
        for _ in range(3):
            cart_service.add(CUSTOMER, 1, 1)
            invoices.add(orders.checkout(CUSTOMER, "paypal").unwrap().order.invoice_number)
        assert len(invoices) == 3

    def test_free_shipping_above_threshold(self, orders, cart_service):
        cart_service.add(CUSTOMER, 4, 1)

        order = orders.checkout(CUSTOMER, "debit_card").unwrap().order

        assert order.tax == Decimal("9.60")
        assert order.shipping == Decimal("0.00")
        assert order.total_amount == Decimal("129.60")

    def test_currency_and_method_are_normalized(self, orders, cart_service, gateway):
        cart_service.add(CUSTOMER, 1, 1)

        order = orders.checkout(CUSTOMER, "PayPal", currency="eur").unwrap().order

        assert order.currency == "EUR"
        assert order.payment_method == "paypal"
        assert gateway.calls[0][1:] == ("EUR", "paypal")

    def test_matching_expected_total_is_accepted(self, orders, cart_service):
        cart_service.add(CUSTOMER, 1, 1)
        assert orders.checkout(CUSTOMER, "paypal", expected_total=Decimal("27.58")).unwrap()

    def test_confirmation_is_sent(self, orders, cart_service, notifier):
        cart_service.add(CUSTOMER, 1, 1)

        order = orders.checkout(CUSTOMER, "paypal").unwrap().order

        assert notifier.sent == [(42, order.order_id, order.invoice_number)]

    def test_notifier_failure_does_not_undo_order(self, db, cart_service, gateway, session_factory):
        class BrokenNotifier:
            def send_order_confirmation(self, *args):
                raise ConnectionError("broker down")

        cart_service.add(CUSTOMER, 1, 1)
        svc = OrderService(db, cart_service, gateway, notifier=BrokenNotifier())

        assert svc.checkout(CUSTOMER, "paypal").unwrap().order.status is OrderStatus.CONFIRMED
        assert _order_count(session_factory) == 1

    def test_cart_not_cleared_is_reported(self, orders, cart_service, monkeypatch, session_factory):
        cart_service.add(CUSTOMER, 1, 1)
        monkeypatch.setattr(
            cart_service, "clear",
            lambda identity: Failure(StorageError("Temporary infrastructure failure, please retry")),
        )

        result = orders.checkout(CUSTOMER, "paypal").unwrap()

        assert result.cart_cleared is False
        assert result.order.status is OrderStatus.CONFIRMED
        assert _order_count(session_factory) == 1

    def test_lock_released_after_checkout(self, orders, cart_service, redis_client):
        cart_service.add(CUSTOMER, 1, 1)
        orders.checkout(CUSTOMER, "paypal").unwrap()
        assert redis_client.keys() == []


class TestCheckoutFailure:

    def test_declined_payment_writes_nothing(self, db, cart_service, notifier, session_factory):
        declined = ScriptedGateway(PaymentOutcome(success=False, error_message="Insufficient funds."))
        cart_service.add(CUSTOMER, 1, 1)
        cart_service.add(CUSTOMER, 2, 2)
        before = cart_service.list(CUSTOMER).unwrap()

        result = _service(db, cart_service, notifier, declined).checkout(CUSTOMER, "credit_card")

        failure = result.failure()
        assert isinstance(failure, PaymentFailed)
        assert failure.retryable is True
        assert failure.message == "Insufficient funds."
        assert failure.details["states"] == ["started", "payment_attempted", "failed"]
        assert _order_count(session_factory) == 0
        assert cart_service.list(CUSTOMER).unwrap() == before
        assert notifier.sent == []

    def test_payment_timeout_is_a_failure(self, db, cart_service, notifier, session_factory):
        slow = ScriptedGateway(delay=0.5)
        cart_service.add(CUSTOMER, 1, 1)

        result = _service(db, cart_service, notifier, slow, timeout=0.05).checkout(CUSTOMER, "paypal")

        assert isinstance(result.failure(), PaymentFailed)
        assert result.failure().message == TIMEOUT_MESSAGE
        assert _order_count(session_factory) == 0
        assert cart_service.count(CUSTOMER).unwrap() == 1

    def test_capture_after_timeout_is_logged(self, db, cart_service, notifier, session_factory, caplog):
        slow = ScriptedGateway(PaymentOutcome(success=True, reference="PAY-LATE-0001"), delay=0.2)
        cart_service.add(CUSTOMER, 1, 1)

        result = _service(db, cart_service, notifier, slow, timeout=0.05).checkout(CUSTOMER, "paypal")
        assert isinstance(result.failure(), PaymentFailed)

        deadline = time.monotonic() + 2
        while time.monotonic() < deadline and not any("PAY-LATE-0001" in r.getMessage() for r in caplog.records):
            time.sleep(0.02)

        late = [r for r in caplog.records if "PAY-LATE-0001" in r.getMessage()]
        assert len(late) == 1
        assert late[0].levelname == "ERROR"
        assert "27.58 USD via paypal" in late[0].getMessage()
        assert _order_count(session_factory) == 0

    def test_gateway_exception_is_a_failure(self, db, cart_service, notifier, session_factory):
        broken = ScriptedGateway(error=RuntimeError("processor exploded"))
        cart_service.add(CUSTOMER, 1, 1)

        result = _service(db, cart_service, notifier, broken).checkout(CUSTOMER, "paypal")

        assert isinstance(result.failure(), PaymentFailed)
        assert "exploded" not in result.failure().message
        assert _order_count(session_factory) == 0

    def test_guest_cannot_check_out(self, orders, cart_service, gateway):
        cart_service.add(GUEST, 1, 1)

        result = orders.checkout(GUEST, "paypal")

        assert isinstance(result.failure(), ValidationError)
        assert gateway.calls == []
        assert cart_service.count(GUEST).unwrap() == 1

    def test_empty_cart_never_reaches_the_gateway(self, orders, gateway, session_factory):
        result = orders.checkout(CUSTOMER, "paypal")

        assert isinstance(result.failure(), EmptyCart)
        assert gateway.calls == []
        assert _order_count(session_factory) == 0

    @pytest.mark.parametrize("method,currency", [("cash", "USD"), ("paypal", "XYZ"), ("", "USD")])
    def test_invalid_method_or_currency(self, orders, cart_service, gateway, method, currency):
        cart_service.add(CUSTOMER, 1, 1)

        result = orders.checkout(CUSTOMER, method, currency=currency)

        assert isinstance(result.failure(), ValidationError)
        assert gateway.calls == []

    def test_expected_total_mismatch(self, orders, cart_service, gateway):
        cart_service.add(CUSTOMER, 1, 1)

        result = orders.checkout(CUSTOMER, "paypal", expected_total=Decimal("20.00"))

        failure = result.failure()
        assert isinstance(failure, Conflict)
        assert failure.details["reason"] == "total_mismatch"
        assert failure.details["calculated_total"] == "27.58"
        assert gateway.calls == []
        assert cart_service.count(CUSTOMER).unwrap() == 1

    def test_order_store_failure_keeps_cart(self, orders, cart_service, monkeypatch, session_factory):
        cart_service.add(CUSTOMER, 1, 1)

        def broken():
            raise OperationalError("COMMIT", {}, Exception("connection reset"))

        monkeypatch.setattr(orders.repo, "commit", broken)

        result = orders.checkout(CUSTOMER, "paypal")

        assert isinstance(result.failure(), StorageError)
        assert result.failure().details == {"operation": "order.checkout"}
        monkeypatch.undo()
        assert _order_count(session_factory) == 0
        assert cart_service.count(CUSTOMER).unwrap() == 1


class TestOrderQueries:

    @pytest.fixture
    def placed(self, orders, cart_service):
        cart_service.add(CUSTOMER, 1, 1)
        first = orders.checkout(CUSTOMER, "paypal").unwrap().order
        cart_service.add(CUSTOMER, 2, 3)
        second = orders.checkout(CUSTOMER, "paypal").unwrap().order
        return first, second

    def test_get_own_order(self, orders, placed):
        first, _ = placed
        assert orders.get_order(first.order_id, 42).unwrap() == first

    def test_order_read_back_from_storage_matches_checkout(self, placed, session_factory, catalog, lock_service, gateway):
        first, _ = placed
        with session_factory() as fresh:
            reader = OrderService(fresh, CartService(fresh, catalog, lock_service), gateway)
            stored = reader.get_order(first.order_id, 42).unwrap()

        assert stored.created_at.tzinfo is not None
        assert stored == first

    def test_other_customers_order_looks_missing(self, orders, placed):
        first, _ = placed
        assert isinstance(orders.get_order(first.order_id, 7).failure(), NotFound)
        assert isinstance(orders.get_order(9999, 42).failure(), NotFound)

    def test_list_newest_first_with_paging(self, orders, placed):
        first, second = placed

        assert [o.order_id for o in orders.list_orders(42).unwrap()] == [second.order_id, first.order_id]
        assert [o.order_id for o in orders.list_orders(42, limit=1, offset=1).unwrap()] == [first.order_id]
        assert orders.list_orders(7).unwrap() == []

    @pytest.mark.parametrize("limit,offset", [(0, 0), (101, 0), (10, -1)])
    def test_list_rejects_bad_paging(self, orders, limit, offset):
        assert isinstance(orders.list_orders(42, limit, offset).failure(), ValidationError)

    def test_status_progression(self, orders, placed):
        first, _ = placed

        assert orders.update_status(first.order_id, "processing").unwrap().status is OrderStatus.PROCESSING
        assert orders.update_status(first.order_id, "shipped").unwrap().status is OrderStatus.SHIPPED

    def test_status_cannot_skip_or_go_back(self, orders, placed):
        first, _ = placed

        assert isinstance(orders.update_status(first.order_id, "delivered").failure(), Conflict)
        assert isinstance(orders.update_status(first.order_id, "pending").failure(), Conflict)

    def test_unknown_status_or_order(self, orders, placed):
        first, _ = placed
        assert isinstance(orders.update_status(first.order_id, "teleported").failure(), ValidationError)
        assert isinstance(orders.update_status(9999, "processing").failure(), NotFound)

    def test_order_lines_are_immutable(self, db, placed):
        first, _ = placed
        line = db.execute(
            select(OrderLineModel).where(OrderLineModel.order_id == first.order_id)
        ).scalars().first()

        line.quantity = 99
        with pytest.raises(Conflict):
            db.flush()
        db.rollback()


class TestOrderStatistics:

    @pytest.fixture
    def old_order(self, db):
        # placed two months ago by another customer, outside the default window
        created = datetime.combine(utcnow().date() - timedelta(days=60), datetime.min.time(), tzinfo=timezone.utc)
        order = OrderModel(
            customer_id=7, status="delivered", currency="USD",
            subtotal=Decimal("100.00"), tax=Decimal("8.00"), shipping=Decimal("0.00"),
            total_amount=Decimal("108.00"), payment_method="paypal",
            payment_reference="PAY-OLD-0001", created_at=created + timedelta(hours=12),
        )
        db.add(order)
        db.commit()
        return order

    def test_default_window_covers_recent_orders(self, orders, cart_service, old_order):
        cart_service.add(CUSTOMER, 1, 1)
        first = orders.checkout(CUSTOMER, "paypal").unwrap().order
        cart_service.add(CUSTOMER, 2, 3)
        second = orders.checkout(CUSTOMER, "paypal").unwrap().order

        stats = orders.statistics().unwrap()

        revenue = first.total_amount + second.total_amount
        assert stats.end_date - stats.start_date == timedelta(days=30)
        assert stats.total_orders == 2
        assert stats.unique_customers == 1
        assert stats.total_revenue == revenue
        assert stats.avg_order_value == (revenue / 2).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        assert stats.orders_by_status[OrderStatus.CONFIRMED] == 2
        assert stats.orders_by_status[OrderStatus.DELIVERED] == 0

    def test_explicit_range_reaches_older_orders(self, orders, cart_service, old_order):
        cart_service.add(CUSTOMER, 1, 1)
        orders.checkout(CUSTOMER, "paypal").unwrap()
        old_day = (utcnow().date() - timedelta(days=60)).isoformat()

        only_old = orders.statistics(old_day, old_day).unwrap()
        everything = orders.statistics(old_day, utcnow().date()).unwrap()

        assert only_old.total_orders == 1
        assert only_old.total_revenue == Decimal("108.00")
        assert only_old.orders_by_status[OrderStatus.DELIVERED] == 1
        assert everything.total_orders == 2
        assert everything.unique_customers == 2

    def test_status_changes_are_counted(self, orders, cart_service):
        cart_service.add(CUSTOMER, 1, 1)
        first = orders.checkout(CUSTOMER, "paypal").unwrap().order
        cart_service.add(CUSTOMER, 2, 1)
        orders.checkout(CUSTOMER, "paypal").unwrap()
        orders.update_status(first.order_id, "cancelled").unwrap()

        by_status = orders.statistics().unwrap().orders_by_status

        assert by_status[OrderStatus.CONFIRMED] == 1
        assert by_status[OrderStatus.CANCELLED] == 1

    def test_no_orders_gives_zero_average(self, orders):
        stats = orders.statistics("2020-01-01", "2020-01-31").unwrap()

        assert stats.total_orders == 0
        assert stats.total_revenue == Decimal("0.00")
        assert stats.avg_order_value == Decimal("0.00")
        assert set(stats.orders_by_status.values()) == {0}

    @pytest.mark.parametrize("start,end", [
        ("2026/01/01", None),
        ("2026-02-30", None),
        ("yesterday", None),
        (None, "01-31-2026"),
    ])
    def test_bad_date_format(self, orders, start, end):
        failure = orders.statistics(start, end).failure()
        assert isinstance(failure, ValidationError)
        assert failure.details["issue"] == "invalid_format"

    def test_start_after_end(self, orders):
        failure = orders.statistics("2026-02-01", "2026-01-01").failure()
        assert isinstance(failure, ValidationError)


def test_checkout_for_second_customer_is_independent(orders, cart_service):
    other = CustomerIdentity(7)
    cart_service.add(CUSTOMER, 1, 1)
    cart_service.add(other, 2, 1)

    orders.checkout(CUSTOMER, "paypal").unwrap()

    assert cart_service.count(other).unwrap() == 1

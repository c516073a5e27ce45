# storefront/domain/validation.py
import ipaddress
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from returns.result import Failure, Result, Success

from storefront.domain.errors import (
    CartError,
    InvalidQuantity,
    UnresolvableIdentity,
    ValidationError,
)

MAX_ID = 2147483647

SUPPORTED_CURRENCIES = (
    "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF", "CNY", "SEK", "NZD",
    "MXN", "SGD", "HKD", "NOK", "TRY", "RUB", "INR", "BRL", "ZAR", "KRW",
)

PAYMENT_METHODS = (
    "simulated_success",
    "simulated_failure",
    "simulated_timeout",
    "credit_card",
    "debit_card",
    "paypal",
    "bank_transfer",
)

MAX_ORDER_AMOUNT = Decimal("999999.99")


def _positive_id(field: str, value: Any) -> Result[int, CartError]:
    if isinstance(value, bool) or not isinstance(value, int):
        return Failure(ValidationError(
            f"{field} must be an integer",
            {"field": field, "value": value, "issue": "not_numeric"},
        ))
    if value <= 0:
        return Failure(ValidationError(
            f"{field} must be a positive number",
            {"field": field, "value": value, "issue": "not_positive"},
        ))
    if value > MAX_ID:
        return Failure(ValidationError(
            f"{field} is too large",
            {"field": field, "value": value, "issue": "too_large", "max_allowed": MAX_ID},
        ))
    return Success(value)


def validate_product_id(product_id: Any) -> Result[int, CartError]:
    return _positive_id("product_id", product_id)


def validate_customer_id(customer_id: Any) -> Result[int, CartError]:
    return _positive_id("customer_id", customer_id)


def validate_quantity(quantity: Any, max_quantity: int, allow_zero: bool = False) -> Result[int, CartError]:
    """Quantity for add (>= 1) or absolute update (>= 0 with allow_zero)."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return Failure(ValidationError(
            "Quantity must be an integer",
            {"field": "quantity", "value": quantity, "issue": "not_numeric"},
        ))
    minimum = 0 if allow_zero else 1
    if quantity < minimum:
        return Failure(InvalidQuantity(
            f"Quantity must be at least {minimum}",
            {"field": "quantity", "value": quantity, "issue": "below_minimum", "min_allowed": minimum},
        ))
    if quantity > max_quantity:
        return Failure(ValidationError(
            f"Quantity must be at most {max_quantity}",
            {"field": "quantity", "value": quantity, "issue": "above_maximum", "max_allowed": max_quantity},
        ))
    return Success(quantity)


def validate_origin(origin: Any) -> Result[str, CartError]:
    if origin is None or not str(origin).strip():
        return Failure(UnresolvableIdentity(
            "Neither a customer id nor a network origin is available",
            {"field": "origin", "issue": "missing_or_empty"},
        ))
    try:
        address = ipaddress.ip_address(str(origin).strip())
    except ValueError:
        return Failure(ValidationError(
            "Invalid network origin",
            {"field": "origin", "value": origin, "issue": "invalid_format"},
        ))
    return Success(str(address))


def validate_currency(currency: Any) -> Result[str, CartError]:
    code = str(currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        return Failure(ValidationError(
            "Currency code must be three letters",
            {"field": "currency", "value": currency, "issue": "invalid_format"},
        ))
    if code not in SUPPORTED_CURRENCIES:
        return Failure(ValidationError(
            "Unsupported currency code",
            {"field": "currency", "value": code, "issue": "unsupported_currency"},
        ))
    return Success(code)


def validate_payment_method(method: Any) -> Result[str, CartError]:
    normalized = str(method or "").strip().lower()
    if not normalized:
        return Failure(ValidationError(
            "Payment method is required",
            {"field": "payment_method", "issue": "missing_or_empty"},
        ))
    if normalized not in PAYMENT_METHODS:
        return Failure(ValidationError(
            "Invalid payment method",
            {"field": "payment_method", "value": normalized, "issue": "invalid_method",
             "valid_methods": list(PAYMENT_METHODS)},
        ))
    return Success(normalized)


def validate_amount(amount: Any) -> Result[Decimal, CartError]:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return Failure(ValidationError(
            "Order amount must be a valid number",
            {"field": "amount", "value": str(amount), "issue": "not_numeric"},
        ))
    if value <= 0:
        return Failure(ValidationError(
            "Order amount must be greater than zero",
            {"field": "amount", "value": str(value), "issue": "not_positive"},
        ))
    if value > MAX_ORDER_AMOUNT:
        return Failure(ValidationError(
            "Order amount exceeds the maximum allowed value",
            {"field": "amount", "value": str(value), "issue": "above_maximum",
             "max_allowed": str(MAX_ORDER_AMOUNT)},
        ))
    return Success(value)


def validate_date(value: Any, field: str) -> Result[date, CartError]:
    """A ``date`` or a strict ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return Success(value.date())
    if isinstance(value, date):
        return Success(value)
    text = str(value or "").strip()
    try:
        parsed = datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        parsed = None
    if parsed is None or parsed.strftime("%Y-%m-%d") != text:
        return Failure(ValidationError(
            "Invalid date format. Use YYYY-MM-DD",
            {"field": field, "value": value, "issue": "invalid_format"},
        ))
    return Success(parsed)

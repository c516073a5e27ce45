# storefront/services/pricing_service.py
from decimal import ROUND_HALF_UP, Decimal

from storefront.domain.values import Totals
from storefront.utils.settings import FREE_SHIPPING_THRESHOLD, SHIPPING_COST, TAX_RATE

CENT = Decimal("0.01")


class PricingService:
    """Tax and shipping on top of a cart subtotal. Pure, no I/O."""

    def __init__(
        self,
        tax_rate: Decimal = TAX_RATE,
        free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD,
        shipping_cost: Decimal = SHIPPING_COST,
    ):
        self.tax_rate = tax_rate
        self.free_shipping_threshold = free_shipping_threshold
        self.shipping_cost = shipping_cost

    def compute_totals(self, subtotal: Decimal, currency: str) -> Totals:
        subtotal = Decimal(subtotal).quantize(CENT, rounding=ROUND_HALF_UP)
        tax = (subtotal * self.tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)

        if subtotal == 0 or subtotal >= self.free_shipping_threshold:
            shipping = Decimal("0.00")
        else:
            shipping = self.shipping_cost.quantize(CENT)

        return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)

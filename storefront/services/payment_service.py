# storefront/services/payment_service.py
import random
import uuid
from decimal import Decimal

from storefront.domain.values import PaymentOutcome
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DECLINE_REASONS = (
    "Payment declined by bank. Please check your card details.",
    "Insufficient funds. Please try a different payment method.",
    "Card expired. Please use a valid payment method.",
    "Payment processor temporarily unavailable. Please try again later.",
    "Transaction limit exceeded. Please contact your bank.",
)

TIMEOUT_MESSAGE = "Payment processing timed out. Please try again."


class SimulatedPaymentGateway:
    """
    Stand-in for a real processor, the outcome depends on the method:
    simulated_failure declines, simulated_timeout times out, the rest succeed.
    """

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def attempt_payment(self, amount: Decimal, currency: str, method: str) -> PaymentOutcome:
        logger.info(f"Simulated payment of {amount} {currency} via {method}")

        if method == "simulated_failure":
            reason = self.rng.choice(DECLINE_REASONS)
            logger.info(f"Simulated decline: {reason}")
            return PaymentOutcome(success=False, error_message=reason)

        if method == "simulated_timeout":
            logger.info("Simulated payment timeout")
            return PaymentOutcome(success=False, error_message=TIMEOUT_MESSAGE)

        reference = f"PAY-{uuid.uuid4().hex[:16].upper()}"
        return PaymentOutcome(success=True, reference=reference)

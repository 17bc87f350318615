from decimal import ROUND_HALF_UP, Decimal

import razorpay
import requests
import structlog
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError

from cleardrip.errors import PaymentGatewayError

logger = structlog.get_logger(component="razorpay")


def to_minor_units(amount) -> int:
    """Convert a rupee amount to paise, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RazorpayClient:
    """Razorpay SDK calls used by the payment flow, with a bounded timeout and one error type."""

    def __init__(self, key_id: str, key_secret: str, timeout: float = 10.0, currency: str = "INR", client=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.currency = currency
        self.client = client or razorpay.Client(auth=(key_id or "", key_secret or ""))

    def create_order(self, amount, receipt: str, notes: dict = None) -> dict:
        payload = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        return self._call("order.create", self.client.order.create, data=payload, timeout=self.timeout)

    def fetch_payment(self, payment_id: str) -> dict:
        return self._call("payment.fetch", self.client.payment.fetch, payment_id, timeout=self.timeout)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check a checkout callback signature: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
        if not (order_id and payment_id and signature and self.key_secret):
            return False
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            return False
        return True

    def close(self):
        self.client.session.close()

    def _call(self, operation, func, *args, **kwargs) -> dict:
        try:
            return func(*args, **kwargs)
        except requests.Timeout:
            logger.error("gateway_timeout", operation=operation, timeout=self.timeout)
            raise PaymentGatewayError("Payment gateway timed out")
        except requests.RequestException as e:
            logger.error("gateway_unreachable", operation=operation, error=str(e))
            raise PaymentGatewayError("Payment gateway unreachable", details=str(e))
        except (BadRequestError, GatewayError, ServerError) as e:
            logger.error("gateway_error_response", operation=operation, error=str(e))
            raise PaymentGatewayError("Payment gateway rejected the request", details=str(e))

import hashlib
import hmac
from decimal import Decimal

import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from cleardrip.errors import PaymentGatewayError
from cleardrip.razorpay_service import RazorpayClient, to_minor_units


@pytest.mark.parametrize("amount, paise", [
    (Decimal("200"), 20000),
    (Decimal("49.50"), 4950),
    ("0.005", 1),
    ("1.004", 100),
    (1999, 199900),
])
def test_to_minor_units_rounds_half_up(amount, paise):
    assert to_minor_units(amount) == paise


def test_verify_signature():
    client = RazorpayClient("key", "shh")
    signature = hmac.new(b"shh", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert client.verify_signature("order_1", "pay_1", signature) is True
    assert client.verify_signature("order_1", "pay_2", signature) is False
    assert client.verify_signature("order_1", "pay_1", "") is False
    assert RazorpayClient("key", "other").verify_signature("order_1", "pay_1", signature) is False
    assert RazorpayClient("key", None).verify_signature("order_1", "pay_1", signature) is False


@pytest.fixture
def sdk(mocker):
    return mocker.Mock()


def test_create_order_sends_amount_in_paise(sdk):
    sdk.order.create.return_value = {"id": "order_1", "amount": 29800}
    client = RazorpayClient("key", "secret", timeout=5, client=sdk)

    order = client.create_order(Decimal("298.00"), receipt="rcpt_1", notes={"purpose": "PRODUCT_PURCHASE"})

    assert order["id"] == "order_1"
    sdk.order.create.assert_called_once_with(
        data={"amount": 29800, "currency": "INR", "receipt": "rcpt_1", "notes": {"purpose": "PRODUCT_PURCHASE"}},
        timeout=5,
    )


def test_fetch_payment(sdk):
    sdk.payment.fetch.return_value = {"id": "pay_1", "status": "captured"}
    client = RazorpayClient("key", "secret", client=sdk)

    assert client.fetch_payment("pay_1")["status"] == "captured"
    sdk.payment.fetch.assert_called_once_with("pay_1", timeout=10.0)


def test_timeout_is_a_gateway_error(sdk):
    sdk.payment.fetch.side_effect = requests.Timeout("read timed out")
    client = RazorpayClient("key", "secret", client=sdk)

    with pytest.raises(PaymentGatewayError, match="timed out"):
        client.fetch_payment("pay_1")


def test_connection_error_is_a_gateway_error(sdk):
    sdk.order.create.side_effect = requests.ConnectionError("refused")
    client = RazorpayClient("key", "secret", client=sdk)

    with pytest.raises(PaymentGatewayError):
        client.create_order(100, receipt="rcpt_1")


@pytest.mark.parametrize("error", [
    BadRequestError("The id provided does not exist"),
    ServerError("The server encountered an error"),
])
def test_error_response_is_a_gateway_error(sdk, error):
    sdk.payment.fetch.side_effect = error
    client = RazorpayClient("key", "secret", client=sdk)

    with pytest.raises(PaymentGatewayError) as exc_info:
        client.fetch_payment("pay_missing")

    assert exc_info.value.details == str(error)
    assert exc_info.value.status_code == 500


def test_close_closes_sdk_session(sdk):
    RazorpayClient("key", "secret", client=sdk).close()

    sdk.session.close.assert_called_once()

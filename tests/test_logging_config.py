import json

import pytest
import structlog

import cleardrip.payments
from cleardrip.logging_config import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_module_loggers_follow_configured_level(capsys):
    configure_logging("ERROR")

    cleardrip.payments.logger.info("order_created", order_id="po-1")
    assert capsys.readouterr().out == ""

    cleardrip.payments.logger.error("payment_persist_failed", order_id="po-1")
    event = json.loads(capsys.readouterr().out)
    assert event["event"] == "payment_persist_failed"
    assert event["level"] == "error"
    assert event["component"] == "payments"
    assert event["order_id"] == "po-1"


def test_level_can_be_changed_after_first_use(capsys):
    configure_logging("ERROR")
    cleardrip.payments.logger.info("order_created")
    configure_logging("info")

    cleardrip.payments.logger.info("order_created")

    assert json.loads(capsys.readouterr().out)["event"] == "order_created"

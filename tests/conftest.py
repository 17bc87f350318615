import hashlib
import hmac
import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import cleardrip.models  # noqa: F401
from cleardrip.auth import get_current_user_id
from cleardrip.database import Base, get_db
from cleardrip.main import app as fastapi_app
from cleardrip.models import Product, ServiceDefinition, ServiceSlot, SubscriptionPlan, User, utcnow
from cleardrip.razorpay_service import RazorpayClient, to_minor_units
from cleardrip.routes import get_email_queue, get_gateway

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_cleardrip.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

KEY_SECRET = "rzp_test_secret"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def seed():
    session = TestingSessionLocal()
    session.add_all([
        User(id=USER_ID, name="Asha", email="asha@example.com"),
        User(id=OTHER_USER_ID, name="Ravi", email="ravi@example.com"),
        Product(id="P1", name="RO Membrane", price=Decimal("100.00"), inventory=5),
        Product(id="P2", name="Sediment Filter", price=Decimal("49.50"), inventory=10),
        Product(id="P-FREE", name="Sample Sachet", price=Decimal("0.00"), inventory=100),
        ServiceDefinition(id="S1", name="Annual Maintenance", description="Full service", price=Decimal("499.00")),
        ServiceDefinition(id="S-NOPRICE", name="Inspection", price=None),
        ServiceSlot(id="SLOT1", start_time=utcnow(), end_time=utcnow()),
        SubscriptionPlan(id="PLAN1", name="Pure Care", price=Decimal("1999.00"), duration_days=90),
    ])
    session.commit()
    session.close()
    return {"user": USER_ID, "product": "P1", "service": "S1", "slot": "SLOT1", "plan": "PLAN1"}


@pytest.fixture
def sign():
    def _sign(order_id, payment_id, secret=KEY_SECRET):
        return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()
    return _sign


@pytest.fixture
def gateway(mocker):
    counter = itertools.count(1)

    def fake_create_order(amount, receipt, notes=None):
        return {
            "id": f"order_TEST{next(counter):04d}",
            "entity": "order",
            "amount": to_minor_units(amount),
            "currency": "INR",
            "receipt": receipt,
            "status": "created",
        }

    client = RazorpayClient("rzp_test_key", KEY_SECRET)
    mocker.patch.object(client, "create_order", side_effect=fake_create_order)
    mocker.patch.object(client, "fetch_payment")
    return client


@pytest.fixture
def email_queue(mocker):
    queue = mocker.Mock()
    queue.add.return_value = "job-1"
    return queue


@pytest.fixture
def client(monkeypatch, gateway, email_queue):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    # Tables are managed by setup_db
    monkeypatch.setattr("cleardrip.main.init_db", lambda: None)

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_email_queue] = lambda: email_queue

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()

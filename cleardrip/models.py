import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from cleardrip.database import Base


def new_id():
    return uuid.uuid4().hex


def utcnow():
    return datetime.now(timezone.utc)


class PaymentPurpose(str, enum.Enum):
    SERVICE_BOOKING = "SERVICE_BOOKING"
    PRODUCT_PURCHASE = "PRODUCT_PURCHASE"
    SUBSCRIPTION = "SUBSCRIPTION"
    OTHER = "OTHER"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    CANCELLED = "CANCELLED"


class TransactionStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String)
    email = Column(String, unique=True, index=True)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("inventory >= 0", name="ck_products_inventory_non_negative"),)

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    inventory = Column(Integer, nullable=False, default=0)


class ServiceDefinition(Base):
    __tablename__ = "service_definitions"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2))                 # nullable: unpriced services cannot be booked


class ServiceSlot(Base):
    __tablename__ = "service_slots"

    id = Column(String, primary_key=True, default=new_id)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)


class ServiceBooking(Base):
    __tablename__ = "service_bookings"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("service_definitions.id"), nullable=False)
    slot_id = Column(String, ForeignKey("service_slots.id"))
    status = Column(Enum(BookingStatus, native_enum=False), nullable=False, default=BookingStatus.PENDING)
    before_image_url = Column(String)
    after_image_url = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    service = relationship("ServiceDefinition")
    slot = relationship("ServiceSlot")


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration_days = Column(Integer, nullable=False, default=30)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String, ForeignKey("subscription_plans.id"), nullable=False)
    status = Column(Enum(SubscriptionStatus, native_enum=False), nullable=False, default=SubscriptionStatus.PENDING)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))

    plan = relationship("SubscriptionPlan")


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(String, primary_key=True, default=new_id)
    razorpay_order_id = Column(String, unique=True, index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    purpose = Column(Enum(PaymentPurpose, native_enum=False), nullable=False)
    status = Column(Enum(PaymentStatus, native_enum=False), nullable=False, default=PaymentStatus.PENDING)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(String, ForeignKey("service_bookings.id", ondelete="SET NULL"))
    subscription_id = Column(String, ForeignKey("subscriptions.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User")
    booking = relationship("ServiceBooking")
    subscription = relationship("Subscription")
    items = relationship("PaymentOrderItem", back_populates="order", cascade="all, delete-orphan")
    transaction = relationship("PaymentTransaction", back_populates="order", uselist=False)


class PaymentOrderItem(Base):
    __tablename__ = "payment_order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_payment_order_items_quantity_positive"),)

    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(String, ForeignKey("payment_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)      # unit price at order time
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("PaymentOrder", back_populates="items")
    product = relationship("Product")


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(String, ForeignKey("payment_orders.id"), unique=True, nullable=False)
    razorpay_payment_id = Column(String, unique=True, index=True, nullable=False)
    razorpay_signature = Column(String, nullable=False)
    status = Column(Enum(TransactionStatus, native_enum=False), nullable=False)
    method = Column(String)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    captured_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("PaymentOrder", back_populates="transaction")

"""
Purchase variants.

Each payment purpose is one class with a hook per lifecycle stage:
``resolve_price`` when the order is created, ``on_captured`` inside the
capture transaction and ``on_cancelled`` inside the cancellation
transaction. The payment service never branches on the purpose itself.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from cleardrip.errors import (
    InsufficientInventory,
    InvalidPriceError,
    InvalidProductId,
    NotFoundError,
    PersistenceError,
    SubscriptionCreationError,
    ValidationError,
)
from cleardrip.models import (
    BookingStatus,
    PaymentPurpose,
    PaymentOrderItem,
    Product,
    ServiceBooking,
    ServiceDefinition,
    ServiceSlot,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    utcnow,
)

logger = structlog.get_logger(component="purposes")


@dataclass
class PricedPurchase:
    amount: Decimal
    booking: Optional[ServiceBooking] = None
    subscription: Optional[Subscription] = None
    items: List[PaymentOrderItem] = field(default_factory=list)


def checked_price(value, message="Invalid total amount") -> Decimal:
    if value is None:
        raise InvalidPriceError(message)
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidPriceError(message)
    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(message)
    return price


class Purchase(ABC):
    purpose: PaymentPurpose

    @abstractmethod
    def resolve_price(self, db, user_id: str) -> PricedPurchase:
        """Compute the authoritative amount and stage any purpose-specific rows."""

    @classmethod
    @abstractmethod
    def on_captured(cls, db, order):
        """Apply the side effects of a successful payment."""

    @classmethod
    @abstractmethod
    def on_cancelled(cls, db, order):
        """Undo the side effects of order creation."""


@dataclass
class ServicePurchase(Purchase):
    service_id: Optional[str]
    slot_id: Optional[str] = None

    purpose = PaymentPurpose.SERVICE_BOOKING

    def resolve_price(self, db, user_id):
        if not self.service_id:
            raise ValidationError("Service ID is required")

        service = db.get(ServiceDefinition, self.service_id)
        if not service:
            raise NotFoundError("Service not found")
        price = checked_price(service.price, "Service price is invalid")

        if self.slot_id and not db.get(ServiceSlot, self.slot_id):
            raise NotFoundError("Service slot not found")

        booking = ServiceBooking(
            user_id=user_id,
            service_id=service.id,
            slot_id=self.slot_id,
            status=BookingStatus.PENDING,
        )
        db.add(booking)
        try:
            db.flush()
        except SQLAlchemyError as e:
            logger.error("booking_creation_failed", user_id=user_id, service_id=service.id, error=str(e))
            raise PersistenceError("Failed to create service booking")

        return PricedPurchase(amount=price, booking=booking)

    @classmethod
    def on_captured(cls, db, order):
        if order.booking is not None:
            order.booking.status = BookingStatus.IN_PROGRESS

    @classmethod
    def on_cancelled(cls, db, order):
        booking = order.booking
        if booking is not None:
            order.booking = None
            db.delete(booking)


@dataclass
class ProductLine:
    product_id: str
    quantity: Optional[int] = None


@dataclass
class ProductPurchase(Purchase):
    lines: List[ProductLine]

    purpose = PaymentPurpose.PRODUCT_PURCHASE

    def resolve_price(self, db, user_id):
        if not self.lines:
            raise ValidationError("Products array is required for product purchase")

        product_ids = {line.product_id for line in self.lines}
        products = db.scalars(select(Product).where(Product.id.in_(product_ids))).all()
        if not products:
            raise NotFoundError("No valid products found")
        by_id = {product.id: product for product in products}

        total = Decimal("0")
        items = []
        for line in self.lines:
            product = by_id.get(line.product_id)
            if product is None:
                raise InvalidProductId(f"Invalid product ID: {line.product_id}")

            quantity = line.quantity if line.quantity and line.quantity > 0 else 1
            price = checked_price(product.price, f"Invalid price for product {product.id}")
            subtotal = price * quantity
            total += subtotal

            items.append(PaymentOrderItem(
                product_id=product.id,
                quantity=quantity,
                price=price,
                subtotal=subtotal,
            ))

        return PricedPurchase(amount=total, items=items)

    @classmethod
    def on_captured(cls, db, order):
        for item in order.items:
            # Check and decrement in one statement so concurrent captures cannot overdraw
            result = db.execute(
                update(Product)
                .where(Product.id == item.product_id, Product.inventory >= item.quantity)
                .values(inventory=Product.inventory - item.quantity)
            )
            if result.rowcount != 1:
                logger.warning("insufficient_inventory", order_id=order.id,
                               product_id=item.product_id, quantity=item.quantity)
                raise InsufficientInventory(
                    f"Insufficient inventory for product {item.product_id}",
                    details={"productId": item.product_id, "quantity": item.quantity},
                )

    @classmethod
    def on_cancelled(cls, db, order):
        # Stock is taken at capture and captured orders cannot be cancelled
        pass


@dataclass
class SubscriptionPurchase(Purchase):
    plan_id: Optional[str]

    purpose = PaymentPurpose.SUBSCRIPTION

    def resolve_price(self, db, user_id):
        if not self.plan_id:
            raise ValidationError("Subscription plan ID is required")

        plan = db.get(SubscriptionPlan, self.plan_id)
        if not plan:
            raise NotFoundError("Subscription plan not found")
        price = checked_price(plan.price, "Subscription plan price is invalid")

        start = utcnow()
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.PENDING,
            start_date=start,
            end_date=start + timedelta(days=plan.duration_days or 30),
        )
        db.add(subscription)
        try:
            db.flush()
        except SQLAlchemyError as e:
            logger.error("subscription_creation_failed", user_id=user_id, plan_id=plan.id, error=str(e))
            raise SubscriptionCreationError()

        return PricedPurchase(amount=price, subscription=subscription)

    @classmethod
    def on_captured(cls, db, order):
        if order.subscription is not None:
            order.subscription.status = SubscriptionStatus.CONFIRMED

    @classmethod
    def on_cancelled(cls, db, order):
        if order.subscription is not None:
            order.subscription.status = SubscriptionStatus.CANCELLED


PURCHASE_TYPES = {
    PaymentPurpose.SERVICE_BOOKING: ServicePurchase,
    PaymentPurpose.PRODUCT_PURCHASE: ProductPurchase,
    PaymentPurpose.SUBSCRIPTION: SubscriptionPurchase,
}


def purchase_type(purpose: PaymentPurpose):
    return PURCHASE_TYPES.get(purpose)


def build_purchase(payment_for, service_id=None, slot_id=None, subscription_plan_id=None, products=None) -> Purchase:
    """Turn the checkout request's discriminator and arguments into a purchase variant."""
    if payment_for == "SERVICE":
        return ServicePurchase(service_id=service_id, slot_id=slot_id)
    if payment_for == "PRODUCT":
        lines = [ProductLine(product_id=p.product_id, quantity=p.quantity) for p in (products or [])]
        return ProductPurchase(lines=lines)
    if payment_for == "SUBSCRIPTION":
        return SubscriptionPurchase(plan_id=subscription_plan_id)
    raise ValidationError("Invalid payment purpose")

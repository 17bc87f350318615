import uuid
from decimal import Decimal

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cleardrip.errors import (
    Forbidden,
    InvalidPriceError,
    InvalidSignature,
    NotFoundError,
    OrderNotCancellable,
    OrderNotPayable,
    PaymentMismatch,
    PaymentNotCaptured,
    PersistenceError,
    Unauthorized,
    ValidationError,
)
from cleardrip.models import (
    PaymentOrder,
    PaymentStatus,
    PaymentTransaction,
    TransactionStatus,
    utcnow,
)
from cleardrip.notifications import dispatch_payment_confirmation
from cleardrip.purposes import purchase_type
from cleardrip.razorpay_service import to_minor_units

logger = structlog.get_logger(component="payments")

CAPTURED_STATUSES = ("captured", "authorized")


def find_order(db, razorpay_order_id):
    return db.scalars(
        select(PaymentOrder).where(PaymentOrder.razorpay_order_id == razorpay_order_id)
    ).first()


def find_recorded_transaction(db, order_id, razorpay_payment_id):
    """Return the transaction already recorded for this order or this gateway payment, if any."""
    return db.scalars(
        select(PaymentTransaction)
        .where(or_(
            (PaymentTransaction.order_id == order_id) & (PaymentTransaction.status == TransactionStatus.SUCCESS),
            PaymentTransaction.razorpay_payment_id == razorpay_payment_id,
        ))
        .order_by(PaymentTransaction.created_at)
    ).first()


def create_order(db, gateway, user_id, purchase):
    """
    Price the purchase, open a gateway order for it and persist the PENDING
    PaymentOrder. Rows staged while pricing (booking, subscription) are
    committed together with the order or not at all.
    """
    if not user_id:
        raise Unauthorized()

    try:
        priced = purchase.resolve_price(db, user_id)
        if priced.amount <= 0:
            raise InvalidPriceError()

        razorpay_order = gateway.create_order(
            priced.amount,
            receipt=f"rcpt_{uuid.uuid4().hex[:20]}",
            notes={"userId": user_id, "purpose": purchase.purpose.value},
        )

        order = PaymentOrder(
            razorpay_order_id=razorpay_order["id"],
            amount=priced.amount,
            purpose=purchase.purpose,
            status=PaymentStatus.PENDING,
            user_id=user_id,
            booking=priced.booking,
            subscription=priced.subscription,
            items=priced.items,
        )
        db.add(order)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order_persist_failed", user_id=user_id, purpose=purchase.purpose.value, error=str(e))
        raise PersistenceError("Failed to create order")
    except Exception:
        db.rollback()
        raise

    logger.info("order_created", order_id=order.id, razorpay_order_id=order.razorpay_order_id,
                purpose=order.purpose.value, amount=str(order.amount), user_id=user_id)
    return razorpay_order, order


def verify_payment(db, gateway, email_queue, order_id, payment_id, signature):
    """
    Reconcile a checkout callback with the gateway and record the payment.

    Returns ``(transaction, already_recorded)``. Repeated calls for a payment
    that was already recorded return the stored transaction and change nothing.
    """
    if not order_id or not payment_id or not signature:
        raise ValidationError("Missing required fields")

    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("signature_verification_failed", razorpay_order_id=order_id, razorpay_payment_id=payment_id)
        raise InvalidSignature()

    order = find_order(db, order_id)
    if not order:
        raise NotFoundError("Payment order not found")

    existing = find_recorded_transaction(db, order.id, payment_id)
    if existing:
        logger.info("payment_already_recorded", order_id=order.id, transaction_id=existing.id)
        return existing, True

    if order.status != PaymentStatus.PENDING:
        raise OrderNotPayable(f"Payment order is {order.status.value.lower()}")

    payment = gateway.fetch_payment(payment_id)

    expected = to_minor_units(order.amount)
    try:
        received = int(payment.get("amount"))
    except (TypeError, ValueError):
        received = None
    if received != expected:
        logger.error("payment_amount_mismatch", order_id=order.id, expected=expected, received=payment.get("amount"))
        raise PaymentMismatch(details={"expected": expected, "received": payment.get("amount")})

    if payment.get("order_id") and payment["order_id"] != order_id:
        logger.error("payment_order_mismatch", order_id=order.id, payment_order_id=payment["order_id"])
        raise PaymentMismatch("Payment does not belong to this order")

    status = str(payment.get("status") or "").lower()
    if status not in CAPTURED_STATUSES:
        logger.error("payment_not_captured", order_id=order.id, status=payment.get("status"))
        raise PaymentNotCaptured(details={"status": payment.get("status")})

    amount_paid = Decimal(received) / 100

    try:
        transaction = PaymentTransaction(
            order_id=order.id,
            razorpay_payment_id=payment_id,
            razorpay_signature=signature,
            status=TransactionStatus.SUCCESS,
            method=payment.get("method"),
            amount_paid=amount_paid,
            captured_at=utcnow(),
        )
        db.add(transaction)
        db.flush()

        moved = db.execute(
            update(PaymentOrder)
            .where(PaymentOrder.id == order.id, PaymentOrder.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.SUCCESS)
        )
        if moved.rowcount != 1:
            raise OrderNotPayable()

        handler = purchase_type(order.purpose)
        if handler is not None:
            handler.on_captured(db, order)

        db.commit()
    except (IntegrityError, OrderNotPayable):
        # Lost a race with a concurrent capture of the same order or payment
        db.rollback()
        existing = find_recorded_transaction(db, order.id, payment_id)
        if existing:
            logger.info("payment_recorded_concurrently", order_id=order.id, transaction_id=existing.id)
            return existing, True
        db.refresh(order)
        if order.status != PaymentStatus.PENDING:
            raise OrderNotPayable(f"Payment order is {order.status.value.lower()}")
        raise PersistenceError("Failed to record payment")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("payment_persist_failed", order_id=order.id, error=str(e))
        raise PersistenceError("Failed to record payment")
    except Exception:
        db.rollback()
        raise

    logger.info("payment_captured", order_id=order.id, transaction_id=transaction.id,
                purpose=order.purpose.value, amount_paid=str(amount_paid))

    dispatch_payment_confirmation(email_queue, order, amount_paid)
    return transaction, False


def cancel_payment(db, user_id, order_id):
    if not user_id:
        raise Unauthorized()
    if not order_id:
        raise ValidationError("orderId is required")

    order = find_order(db, order_id)
    if not order:
        raise NotFoundError("Payment order not found")
    if order.user_id != user_id:
        raise Forbidden()

    if order.status == PaymentStatus.SUCCESS:
        raise OrderNotCancellable()
    if order.status == PaymentStatus.CANCELLED:
        return order

    try:
        moved = db.execute(
            update(PaymentOrder)
            .where(PaymentOrder.id == order.id, PaymentOrder.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.CANCELLED)
        )
        if moved.rowcount != 1:
            raise OrderNotCancellable()

        handler = purchase_type(order.purpose)
        if handler is not None:
            handler.on_cancelled(db, order)

        db.commit()
    except OrderNotCancellable:
        db.rollback()
        db.refresh(order)
        if order.status == PaymentStatus.CANCELLED:
            return order
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order_cancel_failed", order_id=order.id, error=str(e))
        raise PersistenceError("Failed to cancel payment")
    except Exception:
        db.rollback()
        raise

    logger.info("order_cancelled", order_id=order.id, purpose=order.purpose.value, user_id=user_id)
    return order


def list_orders(db, user_id):
    if not user_id:
        raise Unauthorized()
    return db.scalars(
        select(PaymentOrder)
        .where(PaymentOrder.user_id == user_id)
        .order_by(PaymentOrder.created_at.desc())
    ).all()


def get_order(db, user_id, order_id):
    if not user_id:
        raise Unauthorized()

    order = find_order(db, order_id)
    if not order:
        raise NotFoundError("Payment order not found")
    if order.user_id != user_id:
        raise Forbidden()
    return order

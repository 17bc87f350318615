import json
import time
from html import escape

import structlog

from cleardrip.models import PaymentPurpose

logger = structlog.get_logger(component="notifications")

SUBJECTS = {
    PaymentPurpose.PRODUCT_PURCHASE: "Order Confirmation - Thank You for Your Purchase!",
    PaymentPurpose.SERVICE_BOOKING: "Service Booking Confirmed",
    PaymentPurpose.SUBSCRIPTION: "Subscription Activated - Welcome!",
}


class EmailQueue:
    """Redis list of JSON email jobs, consumed by the email worker."""

    def __init__(self, redis_client, name: str = "emailQueue", attempts: int = 3, backoff_ms: int = 1000):
        self.redis = redis_client
        self.name = name
        self.attempts = attempts
        self.backoff_ms = backoff_ms

    @property
    def waiting_key(self):
        return f"{self.name}:waiting"

    @property
    def delayed_key(self):
        return f"{self.name}:delayed"

    @property
    def processing_key(self):
        return f"{self.name}:processing"

    @property
    def failed_key(self):
        return f"{self.name}:failed"

    def add(self, name: str, data: dict, job_id: str = None, attempts: int = None, backoff_ms: int = None) -> str:
        job_id = job_id or f"{name}-{int(time.time() * 1000)}"
        job = {
            "id": job_id,
            "name": name,
            "data": data,
            "attempts": attempts or self.attempts,
            "backoff_ms": backoff_ms or self.backoff_ms,
            "attempts_made": 0,
        }
        self.redis.lpush(self.waiting_key, json.dumps(job))
        return job_id


def _money(value) -> str:
    return f"₹{float(value):.2f}"


def confirmation_subject(purpose) -> str:
    return SUBJECTS.get(purpose, "Payment Confirmed")


def confirmation_message(order, amount_paid):
    """Render the (text, html) bodies of a payment confirmation email."""
    user_name = (order.user.name if order.user and order.user.name else None) or "User"
    lines = [f"Hi {user_name},", ""]

    if order.purpose == PaymentPurpose.PRODUCT_PURCHASE:
        lines.append("Your order has been successfully placed and paid.")
        for item in order.items:
            product_name = item.product.name if item.product else "Product"
            lines.append(f"  {product_name} x {item.quantity} @ {_money(item.price)} = {_money(item.subtotal)}")
    elif order.purpose == PaymentPurpose.SERVICE_BOOKING:
        lines.append("Your service booking has been confirmed and paid. Our team will contact you shortly.")
        booking = order.booking
        if booking is not None and booking.service is not None:
            lines.append(f"  Service: {booking.service.name}")
        if booking is not None and booking.slot is not None:
            lines.append(f"  Scheduled: {booking.slot.start_time:%d %B %Y %H:%M}")
    elif order.purpose == PaymentPurpose.SUBSCRIPTION:
        lines.append("Your subscription has been successfully activated!")
        subscription = order.subscription
        if subscription is not None and subscription.plan is not None:
            lines.append(f"  Plan: {subscription.plan.name}")
        if subscription is not None and subscription.end_date is not None:
            lines.append(f"  Renews on: {subscription.end_date:%d %B %Y}")
    else:
        lines.append("Your payment has been received.")

    lines += [
        "",
        f"Total paid: {_money(amount_paid)}",
        f"Order ID: {order.razorpay_order_id}",
    ]

    text = "\n".join(lines)
    html = "".join(f"<p>{escape(line)}</p>" if line else "<br>" for line in lines)
    return text, f"<html><body>{html}</body></html>"


def dispatch_payment_confirmation(queue, order, amount_paid):
    """Queue the confirmation email. Never raises: the payment is already committed."""
    if queue is None:
        logger.warning("email_queue_unavailable", order_id=order.id)
        return None

    try:
        text, html = confirmation_message(order, amount_paid)
        job_id = queue.add(
            f"payment-confirmation-{order.id}",
            {
                "to": order.user.email if order.user else None,
                "subject": confirmation_subject(order.purpose),
                "message": text,
                "html": html,
            },
            job_id=f"payment-{order.id}-{int(time.time() * 1000)}",
        )
    except Exception as e:
        logger.error("confirmation_email_queue_failed", order_id=order.id, error=str(e))
        return None

    logger.info("confirmation_email_queued", order_id=order.id, job_id=job_id)
    return job_id

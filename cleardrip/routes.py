from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cleardrip import payments
from cleardrip.auth import get_current_user_id
from cleardrip.config import get_settings
from cleardrip.database import get_db
from cleardrip.purposes import build_purchase
from cleardrip.schemas import (
    CancelPaymentRequest,
    CreateOrderRequest,
    VerifyPaymentRequest,
    order_out,
    transaction_out,
)

router = APIRouter(prefix="/payment", tags=["payment"])


def get_gateway(request: Request):
    return request.app.state.gateway


def get_email_queue(request: Request):
    return getattr(request.app.state, "email_queue", None)


@router.post("/order", status_code=201)
def create_order_api(
    body: CreateOrderRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
):
    purchase = build_purchase(
        body.payment_for,
        service_id=body.service_id,
        slot_id=body.slot_id,
        subscription_plan_id=body.subscription_plan_id,
        products=body.products,
    )
    razorpay_order, order = payments.create_order(db, gateway, user_id, purchase)

    return {
        "success": True,
        "message": "Order created successfully",
        "key": get_settings().RAZORPAY_KEY_ID,
        "razorpayOrder": razorpay_order,
        "paymentOrder": order_out(order),
    }


@router.post("/verify")
def verify_payment_api(
    body: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    email_queue=Depends(get_email_queue),
):
    transaction, already_recorded = payments.verify_payment(
        db, gateway, email_queue, body.order_id, body.payment_id, body.signature
    )

    return {
        "success": True,
        "message": "Payment already recorded" if already_recorded else "Payment verified",
        "transaction": transaction_out(transaction),
    }


@router.post("/cancel")
def cancel_payment_api(
    body: CancelPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    payments.cancel_payment(db, user_id, body.order_id)
    return {"success": True}


@router.get("/orders")
def list_orders_api(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    orders = payments.list_orders(db, user_id)
    return {"success": True, "orders": [order_out(o) for o in orders]}


@router.get("/orders/{order_id}")
def get_order_api(order_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    order = payments.get_order(db, user_id, order_id)
    return {"success": True, "paymentOrder": order_out(order)}

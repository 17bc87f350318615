from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cleardrip.models import PaymentPurpose, PaymentStatus, TransactionStatus


class ProductRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    quantity: Optional[int] = None


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_for: Optional[str] = Field(None, alias="paymentFor")
    service_id: Optional[str] = Field(None, alias="serviceId")
    slot_id: Optional[str] = Field(None, alias="slotId")
    subscription_plan_id: Optional[str] = Field(None, alias="subscriptionPlanId")
    products: Optional[List[ProductRequest]] = None


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, alias="orderId")
    payment_id: Optional[str] = Field(None, alias="paymentId")
    signature: Optional[str] = None
    payment_for: Optional[str] = Field(None, alias="paymentFor")


class CancelPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, alias="orderId")


class OutModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ProductOut(OutModel):
    id: str
    name: str
    price: float
    inventory: int


class OrderItemOut(OutModel):
    id: str
    product_id: str
    quantity: int
    price: float
    subtotal: float
    product: Optional[ProductOut] = None


class TransactionOut(OutModel):
    id: str
    order_id: str
    razorpay_payment_id: str
    status: TransactionStatus
    method: Optional[str] = None
    amount_paid: float
    captured_at: Optional[datetime] = None


class PaymentOrderOut(OutModel):
    id: str
    razorpay_order_id: str
    amount: float
    purpose: PaymentPurpose
    status: PaymentStatus
    user_id: str
    booking_id: Optional[str] = None
    subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
    transaction: Optional[TransactionOut] = None


def order_out(order) -> dict:
    return PaymentOrderOut.model_validate(order).dump()


def transaction_out(transaction) -> dict:
    return TransactionOut.model_validate(transaction).dump()

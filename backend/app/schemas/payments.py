from typing import Optional

from pydantic import BaseModel


class ConfirmPaymentRequest(BaseModel):
    payment_intent: Optional[str] = None
    redirect_status: Optional[str] = None
    product_type: Optional[str] = None
    internal_reference: Optional[str] = None
    fanbases_product_id: Optional[str] = None
    user_id: Optional[str] = None
    checkout_session_id: Optional[str] = None


class ChargeRequest(BaseModel):
    product_type: Optional[str] = None
    product_id: Optional[str] = None
    amount_cents: Optional[int] = None
    description: Optional[str] = None


class CheckoutRequest(BaseModel):
    action: str = "create_checkout"
    internal_reference: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    base_url: Optional[str] = None


class CustomerRequest(BaseModel):
    action: str = "get_or_create"
    payment_id: Optional[str] = None

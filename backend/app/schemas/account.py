from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class SubscriptionOut(BaseModel):
    tier: Optional[str] = None
    status: Optional[str] = None
    current_period_end: Optional[str] = None


class MeResponse(BaseModel):
    id: str
    email: str
    role: str
    credits: float
    subscription_tier: str
    monthly_allowance: int = 0
    subscription: Optional[SubscriptionOut] = None


class TransactionResponse(BaseModel):
    id: int
    amount: float
    type: str
    payment_method: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    total: int
    limit: int
    offset: int


class CouponCreateRequest(BaseModel):
    code: str
    type: str = "trial"
    months: Optional[int] = 3
    discount_percent: Optional[int] = None
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None


class CreditAdjustRequest(BaseModel):
    delta: int
    reason: Optional[str] = None


class FanbasesProductRequest(BaseModel):
    fanbases_product_id: str
    product_type: str
    internal_reference: str
    price_cents: Optional[int] = None

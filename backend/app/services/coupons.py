from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.coupon import Coupon, CouponRedemption
from app.services.catalog import ProductDescriptor
from app.services.ledger import apply_credit_delta, as_utc, record_transaction, set_user_tier, utcnow


logger = logging.getLogger(__name__)

COUPON_TYPES = ("trial", "discount")


@dataclass(frozen=True)
class CouponOutcome:
    code: str
    applied: bool
    coupon_type: str | None = None
    credits_granted: int = 0
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "applied": self.applied}
        if self.coupon_type:
            out["type"] = self.coupon_type
        if self.applied:
            out["credits_granted"] = self.credits_granted
        if self.reason:
            out["reason"] = self.reason
        return out


def normalize_code(code: str | None) -> str:
    return str(code or "").strip().upper()


def get_coupon(db: Session, code: str) -> Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.query(Coupon).filter(Coupon.code == normalized).first()


def coupon_rejection(coupon: Coupon, now: datetime | None = None) -> str | None:
    """Return why ``coupon`` cannot be used right now, or None when it can."""
    now = now or utcnow()
    expires_at = as_utc(coupon.expires_at)
    if expires_at is not None and now > expires_at:
        return "expired"
    if coupon.max_uses is not None and int(coupon.uses or 0) >= int(coupon.max_uses):
        return "max_uses_reached"
    if (coupon.type or "").lower() not in COUPON_TYPES:
        return "unsupported_type"
    return None


def _claim_use(db: Session, coupon: Coupon) -> bool:
    # Conditional increment: two concurrent redemptions cannot both take the last use.
    claimed = (
        db.query(Coupon)
        .filter(Coupon.id == coupon.id)
        .filter(or_(Coupon.max_uses.is_(None), Coupon.uses < Coupon.max_uses))
        .update({Coupon.uses: Coupon.uses + 1}, synchronize_session=False)
    )
    return bool(claimed)


def apply_coupon(
    db: Session,
    *,
    code: str,
    user_id: str,
    product: ProductDescriptor,
    redemption_key: str,
    payment_method: str = "thrivecart",
    now: datetime | None = None,
) -> CouponOutcome:
    """Redeem ``code`` for ``user_id`` inside the caller's transaction.

    Trial coupons grant ``product.monthly_credits * months`` and move the
    user onto the product tier; discount coupons only consume a use, the
    provider has already priced the order. Nothing is committed here, so
    the use counter, the credit grant and the redemption row land together
    or not at all.
    """
    now = now or utcnow()
    normalized = normalize_code(code)
    coupon = get_coupon(db, normalized)
    if coupon is None:
        logger.warning("coupons.apply.rejected code=%s reason=not_found", normalized)
        return CouponOutcome(normalized, applied=False, reason="not_found")

    coupon_type = (coupon.type or "").lower()
    reason = coupon_rejection(coupon, now=now)
    if reason is None and coupon_type == "trial" and (product.monthly_credits <= 0 or not coupon.months):
        reason = "trial_requires_subscription"
    if reason is None:
        seen = db.query(CouponRedemption.id).filter(CouponRedemption.redemption_key == redemption_key).first()
        if seen is not None:
            reason = "already_redeemed"
    if reason is None and not _claim_use(db, coupon):
        reason = "max_uses_reached"
    if reason is not None:
        logger.warning("coupons.apply.rejected code=%s user_id=%s reason=%s", normalized, user_id, reason)
        return CouponOutcome(normalized, applied=False, coupon_type=coupon_type, reason=reason)

    credits = 0
    if coupon_type == "trial":
        months = int(coupon.months or 0)
        credits = product.monthly_credits * months
        apply_credit_delta(db, user_id, credits, now=now)
        if product.tier:
            set_user_tier(db, user_id, product.tier)
        record_transaction(
            db,
            user_id=user_id,
            amount=credits,
            type="trial",
            payment_method=payment_method,
            metadata={"coupon_code": normalized, "months": months, "tier": product.tier},
        )

    db.add(
        CouponRedemption(
            coupon_id=coupon.id,
            user_id=user_id,
            redemption_key=redemption_key,
            credits_granted=credits,
        )
    )
    logger.info(
        "coupons.apply.redeemed code=%s type=%s user_id=%s credits=%s", normalized, coupon_type, user_id, credits
    )
    return CouponOutcome(normalized, applied=True, coupon_type=coupon_type, credits_granted=credits)

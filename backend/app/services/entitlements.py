from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.services.catalog import ProductDescriptor, ProductNotFound
from app.services.coupons import apply_coupon, normalize_code
from app.services.idempotency import already_applied, find_purchase, owns_module
from app.services.ledger import (
    FREE_TIER,
    add_months,
    apply_credit_delta,
    apply_floored_debit,
    as_number,
    get_balance,
    get_subscription,
    record_purchase,
    record_transaction,
    set_allowance,
    set_user_tier,
    upsert_subscription,
    utcnow,
)


logger = logging.getLogger(__name__)


@dataclass
class GrantResult:
    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    already_processed: bool = False

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message, "details": self.details}
        if self.already_processed:
            out["already_processed"] = True
        return out


def _replay(charge_id: str) -> GrantResult:
    logger.info("entitlements.replay charge_id=%s", charge_id)
    return GrantResult(
        success=True,
        message="Payment already processed",
        details={"already_processed": True, "charge_id": charge_id},
        already_processed=True,
    )


def _commit_or_replay(db: Session, charge_id: str | None, result: GrantResult) -> GrantResult:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # The unique charge_id lost a race with a concurrent delivery.
        if charge_id and already_applied(db, charge_id):
            return _replay(charge_id)
        raise
    return result


def grant(
    db: Session,
    *,
    user_id: str,
    product: ProductDescriptor,
    charge_id: str | None,
    payment_method: str,
    price_cents: int | None = None,
    transaction_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    coupon_code: str | None = None,
    subscription_status: str = "active",
    period_start: datetime | None = None,
    period_end: datetime | None = None,
    provider_subscription_id: str | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Apply a verified payment for ``product`` to ``user_id``.

    The idempotency check runs before any write. Balance, subscription,
    transaction and purchase writes (and the coupon redemption, when a
    code is given) are committed together; a duplicate ``charge_id``
    that slips past the check is caught by the unique constraint and
    reported as a replay.
    """
    now = now or utcnow()
    if already_applied(db, charge_id):
        return _replay(str(charge_id))

    price = int(product.price_cents if price_cents is None else price_cents)
    base_metadata: dict[str, Any] = {
        "product_id": product.internal_reference,
        "charge_id": charge_id,
        "amount_cents": price,
    }
    if product.provider_product_id:
        base_metadata["provider_product_id"] = product.provider_product_id
    base_metadata.update(metadata or {})

    try:
        if product.kind == "module":
            if owns_module(db, user_id, product.internal_reference):
                logger.info("entitlements.module.already_owned user_id=%s module=%s", user_id, product.internal_reference)
                return GrantResult(
                    success=True,
                    message="Module already purchased",
                    details={"module": product.internal_reference, "already_owned": True},
                )
            record_purchase(
                db,
                user_id=user_id,
                product_id=product.internal_reference,
                product_type="module",
                amount_cents=price,
                charge_id=charge_id,
            )
            record_transaction(
                db,
                user_id=user_id,
                amount=0,
                type=transaction_type or "module_purchase",
                payment_method=payment_method,
                charge_id=charge_id,
                metadata=base_metadata,
            )
            result = GrantResult(
                success=True,
                message=f"Successfully unlocked module: {product.internal_reference}",
                details={"module": product.internal_reference},
            )
        elif product.kind == "topup":
            credits = int(product.credit_amount)
            new_balance = apply_credit_delta(db, user_id, credits, now=now)
            record_transaction(
                db,
                user_id=user_id,
                amount=credits,
                type=transaction_type or "topup",
                payment_method=payment_method,
                charge_id=charge_id,
                metadata=base_metadata,
            )
            record_purchase(
                db,
                user_id=user_id,
                product_id=product.internal_reference,
                product_type="topup",
                amount_cents=price,
                charge_id=charge_id,
            )
            result = GrantResult(
                success=True,
                message=f"Successfully added {credits} credits",
                details={"credits_added": credits, "new_balance": as_number(new_balance)},
            )
        elif product.kind == "subscription":
            tier = product.tier or product.internal_reference
            monthly = product.monthly_credits
            start = period_start or now
            end = period_end or add_months(start, 1)
            upsert_subscription(
                db,
                user_id=user_id,
                tier=tier,
                status=subscription_status,
                period_start=start,
                period_end=end,
                provider=payment_method,
                provider_subscription_id=provider_subscription_id or charge_id,
            )
            # Additive: an unspent balance carries over the renewal.
            new_balance = apply_credit_delta(db, user_id, monthly, now=now)
            set_user_tier(db, user_id, tier)
            set_allowance(db, user_id=user_id, tier=tier, monthly_allowance=monthly, renewal_date=end)
            record_transaction(
                db,
                user_id=user_id,
                amount=monthly,
                type=transaction_type or "subscription",
                payment_method=payment_method,
                charge_id=charge_id,
                metadata={**base_metadata, "tier": tier},
            )
            record_purchase(
                db,
                user_id=user_id,
                product_id=product.internal_reference,
                product_type="subscription",
                amount_cents=price,
                charge_id=charge_id,
            )
            result = GrantResult(
                success=True,
                message=f"Successfully activated {tier} subscription",
                details={
                    "tier": tier,
                    "monthly_credits": monthly,
                    "period_end": end.isoformat(),
                    "new_balance": as_number(new_balance),
                },
            )
        else:
            raise ProductNotFound(f"Unknown product type: {product.kind}")

        if coupon_code:
            outcome = apply_coupon(
                db,
                code=coupon_code,
                user_id=user_id,
                product=product,
                redemption_key=f"{normalize_code(coupon_code)}:{charge_id or user_id}",
                payment_method=payment_method,
                now=now,
            )
            result.details["coupon"] = outcome.as_dict()
            if outcome.credits_granted and "new_balance" in result.details:
                result.details["new_balance"] = as_number(get_balance(db, user_id))
    except Exception:
        db.rollback()
        raise

    result = _commit_or_replay(db, charge_id, result)
    if not result.already_processed:
        logger.info(
            "entitlements.grant.applied user_id=%s kind=%s product=%s charge_id=%s",
            user_id,
            product.kind,
            product.internal_reference,
            charge_id,
        )
    return result


def refund(
    db: Session,
    *,
    user_id: str,
    amount: int,
    refund_key: str,
    payment_method: str,
    original_charge_id: str | None = None,
    product: ProductDescriptor | None = None,
    downgrade_tier: bool = False,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Take back ``amount`` credits, flooring the balance at zero.

    The Subscription Record is left as it is; ``downgrade_tier`` only
    moves the account tier back to free.
    """
    now = now or utcnow()
    if already_applied(db, refund_key):
        return _replay(refund_key)

    try:
        new_balance = apply_floored_debit(db, user_id, amount, now=now)
        if downgrade_tier:
            set_user_tier(db, user_id, FREE_TIER)
        record_transaction(
            db,
            user_id=user_id,
            amount=-int(amount),
            type="refund",
            payment_method=payment_method,
            charge_id=original_charge_id,
            metadata={"original_charge_id": original_charge_id, **(metadata or {})},
        )
        original = find_purchase(db, original_charge_id)
        if original is not None:
            original.status = "refunded"
        product_id = product.internal_reference if product else (original.product_id if original else "refund")
        record_purchase(
            db,
            user_id=user_id,
            product_id=product_id,
            product_type="refund",
            amount_cents=-int(product.price_cents if product else 0),
            charge_id=refund_key,
        )
    except Exception:
        db.rollback()
        raise

    result = GrantResult(
        success=True,
        message="Refund processed",
        details={"credits_removed": int(amount), "new_balance": as_number(new_balance)},
    )
    result = _commit_or_replay(db, refund_key, result)
    if not result.already_processed:
        logger.info("entitlements.refund.applied user_id=%s amount=%s refund_key=%s", user_id, amount, refund_key)
    return result


def end_subscription(
    db: Session,
    *,
    user_id: str,
    status: str,
    downgrade: bool = True,
    cancelled_at: datetime | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Mark the subscription ended; with ``downgrade`` also drop the tier and allowance.

    ``cancelled_at`` is the provider's cancellation time when it sent one.
    The raw credit balance is never touched.
    """
    now = now or utcnow()
    try:
        sub = get_subscription(db, user_id)
        if sub is not None:
            sub.status = status
            if status == "cancelled":
                sub.cancelled_at = cancelled_at or now
        if downgrade:
            set_user_tier(db, user_id, FREE_TIER)
            set_allowance(db, user_id=user_id, tier=FREE_TIER, monthly_allowance=0)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("entitlements.subscription.ended user_id=%s status=%s downgrade=%s", user_id, status, downgrade)
    return GrantResult(success=True, message=f"Subscription {status}", details={"status": status})


def resume_subscription(db: Session, *, user_id: str, product: ProductDescriptor) -> GrantResult:
    if product.kind != "subscription":
        raise ProductNotFound(f"{product.internal_reference} is not a subscription product")
    tier = product.tier or product.internal_reference
    try:
        sub = get_subscription(db, user_id)
        if sub is not None:
            sub.status = "active"
            sub.tier = tier
            sub.cancelled_at = None
        set_user_tier(db, user_id, tier)
        allowance_renewal = sub.current_period_end if sub is not None else None
        set_allowance(
            db,
            user_id=user_id,
            tier=tier,
            monthly_allowance=product.monthly_credits,
            renewal_date=allowance_renewal,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("entitlements.subscription.resumed user_id=%s tier=%s", user_id, tier)
    return GrantResult(success=True, message="Subscription resumed", details={"tier": tier})

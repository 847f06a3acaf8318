from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.credit_transaction import CreditTransaction
from app.models.purchase import Purchase
from app.models.subscription import Subscription
from app.models.user import User
from app.models.user_credits import UserCredits


logger = logging.getLogger(__name__)

FREE_TIER = "free"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int = 1) -> datetime:
    month_index = value.month - 1 + int(months)
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def as_number(value: Any) -> int | float:
    d = Decimal(str(value or 0))
    if d == d.to_integral_value():
        return int(d)
    return float(d)


def normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def get_user(db: Session, user_id: str) -> User | None:
    if not user_id:
        return None
    return db.query(User).filter(User.id == str(user_id)).first()


def get_user_by_email(db: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(User).filter(func.lower(User.email) == normalized).first()


def get_or_create_user_by_email(db: Session, email: str, name: str | None = None) -> tuple[User, bool]:
    user = get_user_by_email(db, email)
    if user is not None:
        return user, False
    normalized = normalize_email(email)
    user = User(
        id=str(uuid4()),
        email=normalized,
        name=(name or normalized.split("@")[0]),
        credits=0,
        subscription_tier=FREE_TIER,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another delivery created the same email first.
        db.rollback()
        existing = get_user_by_email(db, email)
        if existing is None:
            raise
        return existing, False
    db.refresh(user)
    logger.info("ledger.user.created user_id=%s email=%s", user.id, normalized)
    return user, True


def get_balance(db: Session, user_id: str) -> Decimal:
    value = db.query(User.credits).filter(User.id == user_id).scalar()
    return Decimal(str(value or 0))


def apply_credit_delta(db: Session, user_id: str, delta: int | Decimal, now: datetime | None = None) -> Decimal:
    """Add ``delta`` to the balance with a single UPDATE and return the new balance.

    Does not commit; the caller owns the transaction.
    """
    now = now or utcnow()
    updated = (
        db.query(User)
        .filter(User.id == user_id)
        .update(
            {
                User.credits: func.coalesce(User.credits, 0) + as_number(delta),
                User.last_credit_update: now,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        raise LookupError(f"user {user_id} not found")
    return get_balance(db, user_id)


def apply_floored_debit(db: Session, user_id: str, amount: int | Decimal, now: datetime | None = None) -> Decimal:
    """Subtract ``amount`` from the balance, never going below zero."""
    now = now or utcnow()
    amount = as_number(amount)
    current = func.coalesce(User.credits, 0)
    updated = (
        db.query(User)
        .filter(User.id == user_id)
        .update(
            {
                User.credits: case((current - amount < 0, 0), else_=current - amount),
                User.last_credit_update: now,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        raise LookupError(f"user {user_id} not found")
    return get_balance(db, user_id)


def set_user_tier(db: Session, user_id: str, tier: str) -> None:
    db.query(User).filter(User.id == user_id).update({User.subscription_tier: tier}, synchronize_session=False)


def record_transaction(
    db: Session,
    *,
    user_id: str,
    amount: int | Decimal,
    type: str,
    payment_method: str | None,
    charge_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=user_id,
        amount=Decimal(str(amount)),
        type=type,
        payment_method=payment_method,
        charge_id=charge_id,
        transaction_metadata=(metadata or None),
    )
    db.add(entry)
    return entry


def record_purchase(
    db: Session,
    *,
    user_id: str,
    product_id: str,
    product_type: str,
    amount_cents: int,
    charge_id: str | None,
    status: str = "completed",
) -> Purchase:
    purchase = Purchase(
        user_id=user_id,
        product_id=product_id,
        product_type=product_type,
        amount_cents=int(amount_cents or 0),
        charge_id=charge_id,
        status=status,
    )
    db.add(purchase)
    return purchase


def get_subscription(db: Session, user_id: str) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


def upsert_subscription(
    db: Session,
    *,
    user_id: str,
    tier: str,
    status: str,
    period_start: datetime,
    period_end: datetime,
    provider: str | None,
    provider_subscription_id: str | None,
) -> Subscription:
    sub = get_subscription(db, user_id)
    if sub is None:
        sub = Subscription(user_id=user_id)
        db.add(sub)
    sub.tier = tier
    sub.status = status
    sub.current_period_start = period_start
    sub.current_period_end = period_end
    sub.cancelled_at = None
    sub.provider = provider
    sub.provider_subscription_id = provider_subscription_id or sub.provider_subscription_id
    return sub


def get_allowance(db: Session, user_id: str) -> UserCredits | None:
    return db.query(UserCredits).filter(UserCredits.user_id == user_id).first()


def set_allowance(
    db: Session,
    *,
    user_id: str,
    tier: str,
    monthly_allowance: int,
    renewal_date: datetime | None = None,
) -> UserCredits:
    row = get_allowance(db, user_id)
    if row is None:
        row = UserCredits(user_id=user_id)
        db.add(row)
    row.tier = tier
    row.monthly_allowance = int(monthly_allowance or 0)
    if renewal_date is not None or not monthly_allowance:
        row.renewal_date = renewal_date
    return row

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.models.credit_transaction import CreditTransaction
from app.models.purchase import Purchase
from app.schemas.account import MeResponse, SubscriptionOut, TransactionListResponse, TransactionResponse
from app.services.ledger import FREE_TIER, as_number, get_allowance, get_subscription, get_user


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/me", response_model=MeResponse)
async def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    user = get_user(db, current_user.id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    sub = get_subscription(db, current_user.id)
    allowance = get_allowance(db, current_user.id)

    sub_out = None
    if sub is not None:
        sub_out = SubscriptionOut(
            tier=sub.tier,
            status=sub.status,
            current_period_end=(sub.current_period_end.isoformat() if sub.current_period_end else None),
        )
    return MeResponse(
        id=user.id,
        email=user.email or current_user.email or "",
        role=current_user.role,
        credits=float(as_number(user.credits)),
        subscription_tier=user.subscription_tier or FREE_TIER,
        monthly_allowance=int(allowance.monthly_allowance or 0) if allowance is not None else 0,
        subscription=sub_out,
    )


@router.get("/me/transactions", response_model=TransactionListResponse)
async def my_transactions(
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = max(1, min(int(limit or 50), 200))
    offset = max(0, int(offset or 0))
    base = db.query(CreditTransaction).filter(CreditTransaction.user_id == current_user.id)
    total = int(base.with_entities(func.count(CreditTransaction.id)).scalar() or 0)
    rows = base.order_by(CreditTransaction.id.desc()).offset(offset).limit(limit).all()
    items = [
        TransactionResponse(
            id=row.id,
            amount=float(as_number(row.amount)),
            type=row.type,
            payment_method=row.payment_method,
            metadata=row.transaction_metadata,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return TransactionListResponse(items=items, total=total, limit=limit, offset=offset)


@router.get("/me/modules")
async def my_modules(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)) -> dict:
    rows = (
        db.query(Purchase.product_id)
        .filter(
            Purchase.user_id == current_user.id,
            Purchase.product_type == "module",
            Purchase.status == "completed",
        )
        .order_by(Purchase.id.asc())
        .all()
    )
    return {"modules": [product_id for (product_id,) in rows]}

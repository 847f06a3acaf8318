from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, require_admin
from app.models.coupon import Coupon
from app.models.fanbases import FanbasesProduct
from app.models.user import User
from app.schemas.account import CouponCreateRequest, CreditAdjustRequest, FanbasesProductRequest
from app.services.catalog import MAPPED_PRODUCT_TYPES, normalize_internal_reference
from app.services.coupons import COUPON_TYPES, normalize_code
from app.services.ledger import (
    apply_credit_delta,
    apply_floored_debit,
    as_number,
    get_user,
    record_transaction,
    utcnow,
)


logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _coupon_out(c: Coupon) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "type": c.type,
        "months": c.months,
        "discount_percent": c.discount_percent,
        "max_uses": c.max_uses,
        "uses": int(c.uses or 0),
        "expires_at": (c.expires_at.isoformat() if c.expires_at else None),
    }


@router.get("/admin/users")
async def admin_list_users(limit: int = 50, offset: int = 0, db: Session = Depends(get_db)) -> list[dict]:
    limit = max(1, min(int(limit or 50), 200))
    offset = max(0, int(offset or 0))
    rows = db.query(User).order_by(User.created_at.desc(), User.id.asc()).offset(offset).limit(limit).all()
    return [
        {
            "id": u.id,
            "email": u.email or "",
            "role": u.role or "user",
            "credits": as_number(u.credits),
            "subscription_tier": u.subscription_tier or "free",
        }
        for u in rows
    ]


@router.post("/admin/users/{user_id}/credits/adjust")
async def admin_adjust_credits(
    user_id: str,
    body: CreditAdjustRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    user_id = (user_id or "").strip()
    if not user_id or get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    delta = int(body.delta or 0)
    if delta == 0:
        raise HTTPException(status_code=400, detail="delta must be non-zero")

    now = utcnow()
    try:
        if delta > 0:
            balance = apply_credit_delta(db, user_id, delta, now=now)
        else:
            balance = apply_floored_debit(db, user_id, -delta, now=now)
        record_transaction(
            db,
            user_id=user_id,
            amount=delta,
            type="adjustment",
            payment_method="admin",
            metadata={"reason": (body.reason or "").strip(), "admin_id": admin.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("admin.credits.adjusted user_id=%s delta=%s admin_id=%s", user_id, delta, admin.id)
    return {"ok": True, "balance": as_number(balance)}


@router.get("/admin/coupons")
async def admin_list_coupons(db: Session = Depends(get_db)) -> list[dict]:
    rows = db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
    return [_coupon_out(c) for c in rows]


@router.post("/admin/coupons")
async def admin_create_coupon(body: CouponCreateRequest, db: Session = Depends(get_db)) -> dict:
    code = normalize_code(body.code)
    if not code:
        raise HTTPException(status_code=400, detail="Invalid code")
    coupon_type = (body.type or "").strip().lower()
    if coupon_type not in COUPON_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of: {', '.join(COUPON_TYPES)}")
    if coupon_type == "trial" and int(body.months or 0) <= 0:
        raise HTTPException(status_code=400, detail="Trial coupons need months > 0")
    if db.query(Coupon).filter(Coupon.code == code).first() is not None:
        raise HTTPException(status_code=400, detail="Coupon already exists")

    coupon = Coupon(
        code=code,
        type=coupon_type,
        months=body.months,
        discount_percent=body.discount_percent,
        max_uses=body.max_uses,
        uses=0,
        expires_at=body.expires_at,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return _coupon_out(coupon)


@router.delete("/admin/coupons/{code}")
async def admin_delete_coupon(code: str, db: Session = Depends(get_db)) -> dict:
    coupon = db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
    if coupon is None:
        raise HTTPException(status_code=404, detail="Coupon not found")
    db.delete(coupon)
    db.commit()
    return {"ok": True}


@router.get("/admin/fanbases/products")
async def admin_list_fanbases_products(db: Session = Depends(get_db)) -> list[dict]:
    rows = db.query(FanbasesProduct).order_by(FanbasesProduct.id.asc()).all()
    return [
        {
            "fanbases_product_id": p.fanbases_product_id,
            "product_type": p.product_type,
            "internal_reference": p.internal_reference,
            "price_cents": p.price_cents,
        }
        for p in rows
    ]


@router.post("/admin/fanbases/products")
async def admin_upsert_fanbases_product(body: FanbasesProductRequest, db: Session = Depends(get_db)) -> dict:
    product_type = (body.product_type or "").strip().lower()
    if product_type not in MAPPED_PRODUCT_TYPES:
        raise HTTPException(status_code=400, detail=f"product_type must be one of: {', '.join(MAPPED_PRODUCT_TYPES)}")
    fanbases_product_id = (body.fanbases_product_id or "").strip()
    reference = normalize_internal_reference(body.internal_reference)
    if not fanbases_product_id or not reference:
        raise HTTPException(status_code=400, detail="fanbases_product_id and internal_reference are required")

    taken = db.query(FanbasesProduct).filter(FanbasesProduct.fanbases_product_id == fanbases_product_id).first()
    if taken is not None and taken.internal_reference != reference:
        raise HTTPException(
            status_code=400,
            detail=f"Fanbases product {fanbases_product_id} is already mapped to {taken.internal_reference}",
        )
    row = db.query(FanbasesProduct).filter(FanbasesProduct.internal_reference == reference).first()
    if row is None:
        row = FanbasesProduct(internal_reference=reference)
        db.add(row)
    row.fanbases_product_id = fanbases_product_id
    row.product_type = product_type
    row.price_cents = body.price_cents
    db.commit()
    return {
        "ok": True,
        "fanbases_product_id": row.fanbases_product_id,
        "product_type": row.product_type,
        "internal_reference": row.internal_reference,
        "price_cents": row.price_cents,
    }

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.api.policy import CORS_HEADERS, error_response, internal_error_response, json_response
from app.core.database import get_db
from app.core.settings import Settings, get_settings
from app.services.catalog import (
    PRODUCT_KINDS,
    THRIVECART_PRODUCTS,
    ProductDescriptor,
    ProductNotFound,
    parse_thrivecart_product_id,
    resolve_thrivecart_product,
)
from app.services.entitlements import end_subscription, grant, refund, resume_subscription
from app.services.ledger import as_number, get_or_create_user_by_email, get_user_by_email, utcnow
from app.services.thrivecart import (
    END_EVENTS,
    SUBSCRIPTION_EVENTS,
    SUPPORTED_EVENTS,
    base_product,
    charge_key,
    coupon_code,
    customer_email,
    customer_name,
    order_id,
    parse_body,
)


logger = logging.getLogger(__name__)

router = APIRouter()

TOPUP_EVENTS = ["order.success", "order.refund"]


def _require_thrivecart_secret(settings: Settings) -> str:
    if not settings.thrivecart_secret:
        logger.error("thrivecart.config.missing_secret")
        raise HTTPException(status_code=500, detail="THRIVECART_SECRET is not configured")
    return settings.thrivecart_secret


def _verify_secret(body: dict[str, Any], settings: Settings) -> None:
    expected = _require_thrivecart_secret(settings)
    if str(body.get("thrivecart_secret") or "") != expected:
        raise HTTPException(status_code=403, detail="Invalid secret")


def _storage_connected(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("thrivecart.health.storage_unreachable", exc_info=True)
        return False


def _product_config(kinds: tuple[str, ...]) -> dict[str, Any]:
    return {
        str(pid): {"kind": p.kind, "reference": p.internal_reference, "credits": p.credit_amount}
        for pid, p in THRIVECART_PRODUCTS.items()
        if p.kind in kinds
    }


def _health(db: Session, events: list[str], kinds: tuple[str, ...]) -> Response:
    return json_response(
        {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "supabaseConnected": _storage_connected(db),
            "supportedEvents": events,
            "productConfig": _product_config(kinds),
        }
    )


def _account_state(db: Session, user_id: str, email: str) -> dict[str, Any]:
    user = get_user_by_email(db, email)
    if user is None:
        return {"user_id": user_id}
    return {"credits": as_number(user.credits), "tier": user.subscription_tier, "user_id": user.id}


def _grant_message(event: str, product: ProductDescriptor) -> str:
    if product.kind == "topup":
        return "Credits added"
    if product.kind == "module":
        return "Module unlocked"
    if event == "order.subscription_payment":
        return "Subscription renewed"
    return "Subscription activated"


def _process(
    db: Session,
    body: dict[str, Any],
    *,
    settings: Settings,
    events: list[str],
    kinds: tuple[str, ...],
    create_missing_users: bool,
    now: datetime,
) -> dict[str, Any]:
    _verify_secret(body, settings)

    event = str(body.get("event") or "").strip()
    mode = body.get("mode")
    if event not in events:
        logger.info("thrivecart.webhook.ignored event=%s", event)
        return {"success": True, "message": f"Event {event or 'unknown'} received but not processed", "mode": mode}

    email = customer_email(body)
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    product_id = parse_thrivecart_product_id(base_product(body))
    if product_id is None:
        raise HTTPException(status_code=400, detail="Product ID required")
    try:
        product = resolve_thrivecart_product(product_id, kinds=kinds)
    except ProductNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if create_missing_users:
        user, created = get_or_create_user_by_email(db, email, customer_name(body))
        if created:
            logger.info("thrivecart.webhook.user_created user_id=%s", user.id)
    else:
        user = get_user_by_email(db, email)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
    user_id = user.id

    key = charge_key(body, event, now)
    if key is None:
        logger.warning("thrivecart.webhook.no_order_id event=%s user_id=%s", event, user_id)
    metadata = {"thrivecart_product_id": product_id, "order_id": order_id(body), "event": event}

    if event in SUBSCRIPTION_EVENTS:
        result = grant(
            db,
            user_id=user_id,
            product=product,
            charge_id=key,
            payment_method="thrivecart",
            transaction_type="purchase" if product.kind == "topup" else None,
            metadata=metadata,
            coupon_code=coupon_code(body) if event == "order.success" else None,
            provider_subscription_id=order_id(body),
            now=now,
        )
        out = {
            "success": True,
            "message": "Order already processed" if result.already_processed else _grant_message(event, product),
            "mode": mode,
            **_account_state(db, user_id, email),
        }
        if result.already_processed:
            out["already_processed"] = True
        if "coupon" in result.details:
            out["coupon"] = result.details["coupon"]
        return out

    if event in END_EVENTS:
        result = end_subscription(db, user_id=user_id, status=END_EVENTS[event], downgrade=True, now=now)
        return {"success": True, "message": result.message, "mode": mode, **_account_state(db, user_id, email)}

    if event == "order.subscription_resumed":
        try:
            result = resume_subscription(db, user_id=user_id, product=product)
        except ProductNotFound as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return {"success": True, "message": result.message, "mode": mode, **_account_state(db, user_id, email)}

    # order.refund
    result = refund(
        db,
        user_id=user_id,
        amount=product.credit_amount,
        refund_key=f"refund:{key}" if key else f"refund:{user_id}:{now.isoformat()}",
        payment_method="thrivecart",
        original_charge_id=key,
        product=product,
        downgrade_tier=product.kind == "subscription",
        metadata=metadata,
        now=now,
    )
    out = {
        "success": True,
        "message": "Refund already processed" if result.already_processed else "Refund processed",
        "mode": mode,
        **_account_state(db, user_id, email),
    }
    if result.already_processed:
        out["already_processed"] = True
    return out


async def _handle(
    request: Request,
    db: Session,
    settings: Settings,
    *,
    events: list[str],
    kinds: tuple[str, ...],
    create_missing_users: bool,
) -> Response:
    raw_body = await request.body()
    try:
        body = parse_body(raw_body, request.headers.get("content-type"))
    except ValueError:
        return error_response(400, "Invalid request body")

    logger.info(
        "thrivecart.webhook.received path=%s event=%s product=%s",
        request.url.path,
        body.get("event"),
        base_product(body),
    )
    try:
        result = _process(
            db,
            body,
            settings=settings,
            events=events,
            kinds=kinds,
            create_missing_users=create_missing_users,
            now=utcnow(),
        )
    except HTTPException as exc:
        logger.warning("thrivecart.webhook.rejected status=%s detail=%s", exc.status_code, exc.detail)
        return error_response(exc.status_code, str(exc.detail))
    except Exception as exc:
        db.rollback()
        logger.exception("thrivecart.webhook.failed event=%s", body.get("event"))
        return internal_error_response("thrivecart", str(exc))
    return json_response(result)


@router.get("/thrivecart/webhook")
async def thrivecart_health(db: Session = Depends(get_db)) -> Response:
    return _health(db, SUPPORTED_EVENTS, PRODUCT_KINDS)


@router.head("/thrivecart/webhook")
async def thrivecart_head() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.options("/thrivecart/webhook")
async def thrivecart_options() -> Response:
    return Response(content="ok", status_code=200, headers=CORS_HEADERS)


@router.post("/thrivecart/webhook")
async def thrivecart_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Response:
    return await _handle(
        request,
        db,
        settings,
        events=SUPPORTED_EVENTS,
        kinds=PRODUCT_KINDS,
        create_missing_users=True,
    )


@router.get("/thrivecart/topup")
async def topup_health(db: Session = Depends(get_db)) -> Response:
    return _health(db, TOPUP_EVENTS, ("topup",))


@router.head("/thrivecart/topup")
async def topup_head() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.options("/thrivecart/topup")
async def topup_options() -> Response:
    return Response(content="ok", status_code=200, headers=CORS_HEADERS)


@router.post("/thrivecart/topup")
async def topup_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Response:
    return await _handle(
        request,
        db,
        settings,
        events=TOPUP_EVENTS,
        kinds=("topup",),
        create_missing_users=False,
    )

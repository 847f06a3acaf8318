from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.policy import CORS_HEADERS, error_response, internal_error_response, json_response
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user, user_id_from_request
from app.core.settings import Settings, get_settings
from app.models.checkout_session import CheckoutSession
from app.models.credit_transaction import CreditTransaction
from app.models.fanbases import FanbasesCustomer, FanbasesProduct
from app.models.webhook_log import WebhookLog
from app.schemas.payments import ChargeRequest, CheckoutRequest, ConfirmPaymentRequest, CustomerRequest
from app.services.catalog import (
    ProductDescriptor,
    ProductNotFound,
    describe,
    normalize_internal_reference,
    resolve_fanbases_product,
    resolve_fanbases_product_id,
)
from app.services.entitlements import GrantResult, end_subscription, grant, refund
from app.services.fanbases import (
    FanbasesClient,
    FanbasesError,
    default_payment_method,
    infer_event_type,
    signature_matches,
)
from app.services.idempotency import already_applied, find_purchase
from app.services.ledger import add_months, get_subscription, get_user, get_user_by_email, utcnow


logger = logging.getLogger(__name__)

router = APIRouter()


def get_fanbases_client(settings: Settings = Depends(get_settings)) -> FanbasesClient:
    if not settings.fanbases_api_key:
        logger.error("fanbases.config.missing_api_key")
        raise HTTPException(status_code=500, detail="FANBASES_API_KEY is not configured")
    return FanbasesClient(
        api_key=settings.fanbases_api_key,
        base_url=settings.fanbases_api_url,
        timeout_s=settings.fanbases_timeout_s,
    )


def _parse_iso8601(raw: str | None) -> datetime | None:
    if not raw:
        return None
    v = str(raw).strip()
    if not v:
        return None
    try:
        if v.endswith("Z"):
            v = v[:-1] + "+00:00"
        dt = datetime.fromisoformat(v)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except ValueError:
        return None


def _dollars_to_cents(raw: object) -> int | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return int(round(value * 100))


def _section(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name)
    return value if isinstance(value, dict) else {}


def _webhook_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    api_metadata = _section(payload, "api_metadata")
    data = api_metadata.get("data")
    if isinstance(data, dict):
        return data
    return _section(payload, "metadata")


def _log_webhook(db: Session, event_type: str, status: str, payload: dict[str, Any], user_id: str | None = None) -> None:
    db.add(WebhookLog(provider="fanbases", event_type=event_type, status=status, user_id=user_id, payload=payload))
    db.commit()


def _sync_customer(db: Session, user_id: str, buyer: dict[str, Any]) -> None:
    customer_id = str(buyer.get("id") or "").strip()
    if not customer_id:
        return
    row = db.query(FanbasesCustomer).filter(FanbasesCustomer.user_id == user_id).first()
    if row is None:
        row = FanbasesCustomer(user_id=user_id)
        db.add(row)
    row.fanbases_customer_id = customer_id
    row.email = buyer.get("email") or row.email
    db.commit()


def _product_from_webhook(
    db: Session,
    payload: dict[str, Any],
    metadata: dict[str, Any],
    *,
    kind: str | None = None,
) -> ProductDescriptor | None:
    item = _section(payload, "item")
    subscription = _section(payload, "subscription")
    for candidate in (item.get("id"), subscription.get("product_id")):
        if not candidate:
            continue
        try:
            product = resolve_fanbases_product_id(db, str(candidate))
        except ProductNotFound:
            continue
        if kind is None or product.kind == kind:
            return product

    reference = metadata.get("internal_reference")
    if reference:
        try:
            product = resolve_fanbases_product(db, str(reference), kind or metadata.get("product_type"))
        except ProductNotFound:
            return None
        if kind is None or product.kind == kind:
            return product
    return None


def _credited_amount(db: Session, charge_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
        .filter(
            CreditTransaction.charge_id == charge_id,
            CreditTransaction.type.in_(("topup", "purchase")),
            CreditTransaction.amount > 0,
        )
        .scalar()
    )
    return int(total or 0)


def _link_subscription(db: Session, user_id: str, subscription_id: str, start: datetime, end: datetime) -> None:
    sub = get_subscription(db, user_id)
    if sub is None or sub.provider_subscription_id == subscription_id:
        return
    sub.provider_subscription_id = subscription_id
    sub.current_period_start = start
    sub.current_period_end = end
    db.commit()
    logger.info("fanbases.webhook.subscription_linked user_id=%s subscription_id=%s", user_id, subscription_id)


def _apply_webhook_event(
    db: Session,
    event_type: str,
    payload: dict[str, Any],
    metadata: dict[str, Any],
    user_id: str,
) -> tuple[str, GrantResult | None]:
    """Apply one webhook event for a resolved user; returns the log status and the result."""
    now = utcnow()
    payment_id = str(payload.get("payment_id") or "").strip() or None
    subscription = _section(payload, "subscription")
    subscription_id = str(subscription.get("id") or "").strip() or None

    if event_type == "product.purchased":
        if metadata.get("action") == "setup_card":
            logger.info("fanbases.webhook.card_setup user_id=%s", user_id)
            return "card_setup", None
        product = _product_from_webhook(db, payload, metadata)
        if product is None:
            return "unmapped_product", None
        if payment_id is None:
            logger.warning("fanbases.webhook.no_payment_id event=%s user_id=%s", event_type, user_id)
        result = grant(
            db,
            user_id=user_id,
            product=product,
            charge_id=payment_id,
            payment_method="fanbases",
            price_cents=_dollars_to_cents(payload.get("product_price")),
            metadata={"event": event_type},
            now=now,
        )
        return "processed", result

    if event_type == "subscription.created":
        product = _product_from_webhook(db, payload, metadata, kind="subscription")
        if product is None:
            return "unmapped_product", None
        start = _parse_iso8601(subscription.get("start_date")) or now
        yearly = str(subscription.get("payment_frequency") or "").strip().lower() in ("yearly", "annual", "year")
        end = add_months(start, 12 if yearly else 1)
        # confirm-payment keys the same payment by its payment intent.
        key = payment_id or (f"subscription:{subscription_id}:created" if subscription_id else None)
        result = grant(
            db,
            user_id=user_id,
            product=product,
            charge_id=key,
            payment_method="fanbases",
            metadata={"event": event_type, "subscription_id": subscription_id},
            subscription_status="trialing" if subscription.get("is_free_trial") else "active",
            period_start=start,
            period_end=end,
            provider_subscription_id=subscription_id,
            now=now,
        )
        if result.already_processed and subscription_id:
            _link_subscription(db, user_id, subscription_id, start, end)
        return "processed", result

    if event_type == "subscription.renewed":
        current = get_subscription(db, user_id)
        if current is None:
            return "no_subscription", None
        try:
            product = describe("subscription", current.tier or "")
        except ProductNotFound:
            return "unmapped_product", None
        renewed_raw = str(subscription.get("renewed_at") or "").strip()
        renewed_at = _parse_iso8601(renewed_raw) or now
        sub_ref = subscription_id or current.provider_subscription_id or user_id
        result = grant(
            db,
            user_id=user_id,
            product=product,
            charge_id=f"subscription:{sub_ref}:renewed:{renewed_raw or now.strftime('%Y-%m')}",
            payment_method="fanbases",
            metadata={"event": event_type, "subscription_id": subscription_id},
            period_start=renewed_at,
            period_end=add_months(renewed_at, 1),
            provider_subscription_id=subscription_id or current.provider_subscription_id,
            now=now,
        )
        return "processed", result

    if event_type == "subscription.canceled":
        # Access runs until the paid period ends.
        result = end_subscription(
            db,
            user_id=user_id,
            status="cancelled",
            downgrade=False,
            cancelled_at=_parse_iso8601(subscription.get("cancelled_at")),
            now=now,
        )
        return "processed", result

    if event_type in ("subscription.expired", "subscription.completed"):
        return "processed", end_subscription(db, user_id=user_id, status="expired", downgrade=True, now=now)

    if event_type == "payment.refunded":
        if payment_id is None:
            return "processed", None
        credited = _credited_amount(db, payment_id)
        if credited > 0:
            result = refund(
                db,
                user_id=user_id,
                amount=credited,
                refund_key=f"refund:{payment_id}",
                payment_method="fanbases",
                original_charge_id=payment_id,
                metadata={"refund_amount": payload.get("refund_amount")},
                now=now,
            )
            return "processed", result
        purchase = find_purchase(db, payment_id)
        if purchase is not None and purchase.status != "refunded":
            purchase.status = "refunded"
            db.commit()
        return "processed", None

    if event_type in ("payment.succeeded", "payment.failed"):
        logger.info("fanbases.webhook.payment event=%s payment_id=%s user_id=%s", event_type, payment_id, user_id)
        return "processed", None

    return "unhandled", None


@router.options("/fanbases/webhook")
@router.options("/fanbases/charge")
@router.options("/fanbases/confirm-payment")
@router.options("/fanbases/checkout")
@router.options("/fanbases/customer")
async def fanbases_options() -> Response:
    return Response(content="ok", status_code=200, headers=CORS_HEADERS)


@router.post("/fanbases/webhook")
async def fanbases_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Response:
    if not settings.fanbases_webhook_secret:
        logger.error("fanbases.config.missing_webhook_secret")
        return error_response(500, "FANBASES_WEBHOOK_SECRET is not configured")

    raw_body = await request.body()
    if not signature_matches(raw_body, request.headers.get("x-webhook-signature"), settings.fanbases_webhook_secret):
        logger.warning("fanbases.webhook.invalid_signature")
        return error_response(401, "Invalid signature")
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        return error_response(400, "Invalid JSON")
    if not isinstance(payload, dict):
        return error_response(400, "Invalid JSON")

    event_type = infer_event_type(payload)
    buyer = _section(payload, "buyer")
    metadata = _webhook_metadata(payload)
    logger.info("fanbases.webhook.received event=%s payment_id=%s", event_type, payload.get("payment_id"))

    try:
        user = None
        if metadata.get("user_id"):
            user = get_user(db, str(metadata["user_id"]))
        if user is None and buyer.get("email"):
            user = get_user_by_email(db, str(buyer["email"]))
        if user is None:
            logger.warning("fanbases.webhook.user_not_found event=%s", event_type)
            _log_webhook(db, event_type, "user_not_found", payload)
            return json_response({"received": True, "warning": "User not found"})

        user_id = user.id
        _sync_customer(db, user_id, buyer)
        status, result = _apply_webhook_event(db, event_type, payload, metadata, user_id)
        _log_webhook(db, event_type, status, payload, user_id=user_id)
    except Exception as exc:
        db.rollback()
        logger.exception("fanbases.webhook.failed event=%s", event_type)
        return internal_error_response("fanbases", str(exc))

    out: dict[str, Any] = {"received": True, "event": event_type, "status": status}
    if result is not None:
        out["result"] = result.as_dict()
    return json_response(out)


@router.post("/fanbases/charge")
async def fanbases_charge(
    body: ChargeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    client: FanbasesClient = Depends(get_fanbases_client),
) -> Response:
    product_type = (body.product_type or "").strip().lower()
    product_id = (body.product_id or "").strip()
    if not product_type or not product_id or not body.amount_cents or body.amount_cents <= 0:
        return error_response(400, "Missing required fields: product_type, product_id, amount_cents")

    try:
        product = resolve_fanbases_product(db, product_id, product_type)
    except ProductNotFound as exc:
        return error_response(400, str(exc))

    try:
        customer = db.query(FanbasesCustomer).filter(FanbasesCustomer.user_id == current_user.id).first()
        if customer is None or not customer.fanbases_customer_id:
            remote = client.find_customer_by_email(current_user.email)
            if remote is None or not remote.get("id"):
                return json_response(
                    {"success": False, "needs_payment_method": True, "error": "No saved payment method"},
                    status_code=400,
                )
            if customer is None:
                customer = FanbasesCustomer(user_id=current_user.id)
                db.add(customer)
            customer.fanbases_customer_id = str(remote["id"])
            customer.email = current_user.email
            db.commit()

        payment_method_id = customer.payment_method_id
        if not payment_method_id:
            methods = client.list_payment_methods(customer.fanbases_customer_id)
            if not methods:
                return json_response(
                    {"success": False, "needs_payment_method": True, "error": "No saved payment method"},
                    status_code=400,
                )
            payment_method_id = str(default_payment_method(methods).get("id") or "")
            customer.payment_method_id = payment_method_id
            db.commit()

        charge_id = client.charge(
            customer_id=customer.fanbases_customer_id,
            payment_method_id=payment_method_id,
            amount_cents=int(body.amount_cents),
            description=body.description or f"{product.kind}: {product.internal_reference}",
            metadata={"user_id": current_user.id, "product_type": product.kind, "product_id": product.internal_reference},
        )
    except FanbasesError as exc:
        logger.warning("fanbases.charge.failed user_id=%s error=%s", current_user.id, exc)
        return json_response({"success": False, "error": str(exc)}, status_code=400)

    logger.info("fanbases.charge.succeeded user_id=%s charge_id=%s", current_user.id, charge_id)
    try:
        result = grant(
            db,
            user_id=current_user.id,
            product=product,
            charge_id=charge_id,
            payment_method="fanbases",
            price_cents=int(body.amount_cents),
            metadata={"source": "one_click"},
        )
    except Exception:
        db.rollback()
        # The card was charged; confirm-payment with this charge id completes the grant.
        logger.exception("fanbases.charge.grant_failed user_id=%s charge_id=%s", current_user.id, charge_id)
        return error_response(500, "Payment captured but entitlement grant failed", charge_id=charge_id)

    return json_response(
        {"success": True, "charge_id": charge_id, "message": result.message, "details": result.details}
    )


def _confirm_user_id(request: Request, body: ConfirmPaymentRequest, settings: Settings) -> str:
    fallback = (body.user_id or "").strip()
    token_user_id = None
    if request.headers.get("authorization"):
        try:
            token_user_id = user_id_from_request(request, settings)
        except HTTPException:
            if not fallback:
                raise
    user_id = token_user_id or fallback
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def _complete_checkout_sessions(db: Session, user_id: str, product: ProductDescriptor, session_id: str | None) -> None:
    try:
        query = db.query(CheckoutSession).filter(
            CheckoutSession.user_id == user_id,
            CheckoutSession.product_id == product.internal_reference,
            CheckoutSession.status == "pending",
        )
        if session_id:
            query = query.filter(CheckoutSession.session_id == session_id)
        updated = query.update({CheckoutSession.status: "completed", CheckoutSession.updated_at: utcnow()})
        db.commit()
        if updated:
            logger.info("fanbases.confirm.sessions_completed user_id=%s count=%s", user_id, updated)
    except Exception:
        db.rollback()
        logger.warning("fanbases.confirm.session_update_failed user_id=%s", user_id, exc_info=True)


@router.post("/fanbases/confirm-payment")
async def fanbases_confirm_payment(
    body: ConfirmPaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: FanbasesClient = Depends(get_fanbases_client),
) -> Response:
    try:
        user_id = _confirm_user_id(request, body, settings)
        if get_user(db, user_id) is None:
            return error_response(404, "User not found")

        payment_intent = (body.payment_intent or "").strip()
        if not payment_intent or not body.product_type or not body.internal_reference:
            return error_response(400, "Missing required fields: payment_intent, product_type, internal_reference")
        if (body.redirect_status or "").strip().lower() != "succeeded":
            return error_response(400, "Payment was not successful", status=body.redirect_status)

        if already_applied(db, payment_intent):
            logger.info("fanbases.confirm.replay payment_intent=%s", payment_intent)
            return json_response(
                {
                    "success": True,
                    "message": "Payment already processed",
                    "already_processed": True,
                    "details": {"already_processed": True, "charge_id": payment_intent},
                }
            )

        verified = False
        try:
            verified = client.verify_transaction(payment_intent)
        except FanbasesError as exc:
            logger.warning("fanbases.confirm.verify_failed payment_intent=%s error=%s", payment_intent, exc)
        if not verified:
            if settings.fanbases_strict_verification:
                return error_response(400, "Payment could not be verified", success=False)
            logger.warning("fanbases.confirm.unverified payment_intent=%s user_id=%s", payment_intent, user_id)

        try:
            product = resolve_fanbases_product(db, body.internal_reference, body.product_type)
        except ProductNotFound as exc:
            return error_response(400, str(exc))

        result = grant(
            db,
            user_id=user_id,
            product=product,
            charge_id=payment_intent,
            payment_method="fanbases",
            metadata={"verified": verified, "fanbases_product_id": body.fanbases_product_id},
        )
        if not result.already_processed:
            _complete_checkout_sessions(db, user_id, product, body.checkout_session_id)
        result.details["verified"] = verified
    except HTTPException as exc:
        return error_response(exc.status_code, str(exc.detail))
    except Exception as exc:
        db.rollback()
        logger.exception("fanbases.confirm.failed")
        return internal_error_response("fanbases", str(exc))

    return json_response(result.as_dict())


CARD_SETUP_REFERENCE = "card_setup_fee"

PAYMENT_METHOD_FIELDS = ("id", "type", "last4", "brand", "exp_month", "exp_year", "is_default")


def _with_query(url: str, params: dict[str, str | None]) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend((k, v) for k, v in params.items() if v)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _remote_product(client: FanbasesClient, fanbases_product_id: str) -> dict | None:
    try:
        remote = client.find_product(fanbases_product_id)
    except FanbasesError as exc:
        logger.warning("fanbases.checkout.product_lookup_failed product_id=%s error=%s", fanbases_product_id, exc)
        return None
    if not remote or not remote.get("payment_link"):
        return None
    return remote


@router.post("/fanbases/checkout")
async def fanbases_checkout(
    body: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    client: FanbasesClient = Depends(get_fanbases_client),
) -> Response:
    """Hand out the product's hosted payment link, tagged for the webhook and prefilled for the buyer."""
    action = (body.action or "").strip().lower()
    try:
        user = get_user(db, current_user.id)
        prefill = {
            "prefill[email]": current_user.email or None,
            "prefill[name]": (user.name if user is not None else None) or None,
        }

        if action == "create_checkout":
            reference = normalize_internal_reference(body.internal_reference or "")
            row = None
            if reference:
                row = db.query(FanbasesProduct).filter(FanbasesProduct.internal_reference == reference).first()
            if row is None:
                return error_response(404, f"Product not found: {reference or '(missing)'}")
            remote = _remote_product(client, row.fanbases_product_id)
            if remote is None:
                logger.error("fanbases.checkout.no_payment_link product_id=%s", row.fanbases_product_id)
                return error_response(500, "Payment link not available for this product")

            link = _with_query(
                str(remote["payment_link"]),
                {
                    "metadata[user_id]": current_user.id,
                    "metadata[product_type]": row.product_type,
                    "metadata[internal_reference]": row.internal_reference,
                    "metadata[fanbases_product_id]": row.fanbases_product_id,
                    **prefill,
                    "success_url": body.success_url,
                    "cancel_url": body.cancel_url,
                },
            )
            price_cents = _dollars_to_cents(remote.get("price"))
            if price_cents is None:
                price_cents = row.price_cents
            session = CheckoutSession(
                user_id=current_user.id,
                provider="fanbases",
                session_id=f"link_{int(time.time() * 1000)}",
                product_type=row.product_type,
                product_id=row.internal_reference,
                amount_cents=price_cents,
                status="pending",
            )
            db.add(session)
            if price_cents is not None and row.price_cents != price_cents:
                row.price_cents = price_cents
            db.commit()
            logger.info(
                "fanbases.checkout.created user_id=%s product=%s session_id=%s",
                current_user.id,
                row.internal_reference,
                session.session_id,
            )
            return json_response(
                {
                    "success": True,
                    "payment_link": link,
                    "product_type": row.product_type,
                    "amount_cents": price_cents,
                    "checkout_session_id": session.session_id,
                }
            )

        if action == "setup_card":
            row = db.query(FanbasesProduct).filter(FanbasesProduct.internal_reference == CARD_SETUP_REFERENCE).first()
            if row is None:
                logger.error("fanbases.checkout.card_setup_missing")
                return error_response(500, "Card setup product not configured")
            remote = _remote_product(client, row.fanbases_product_id)
            if remote is None:
                return error_response(500, "Card setup not available")
            base = (body.base_url or request.headers.get("origin") or "").rstrip("/")
            link = _with_query(
                str(remote["payment_link"]),
                {
                    "metadata[user_id]": current_user.id,
                    "metadata[action]": "setup_card",
                    **prefill,
                    "success_url": body.success_url or (f"{base}/settings?setup=complete" if base else None),
                    "cancel_url": body.cancel_url or (f"{base}/settings?setup=cancelled" if base else None),
                },
            )
            return json_response({"success": True, "payment_link": link})
    except Exception as exc:
        db.rollback()
        logger.exception("fanbases.checkout.failed action=%s", action)
        return internal_error_response("fanbases", str(exc))

    return error_response(400, "Invalid action")


def _store_default_method(customer: FanbasesCustomer, methods: list[dict]) -> None:
    chosen = default_payment_method(methods)
    if chosen is not None and chosen.get("id"):
        customer.payment_method_id = str(chosen["id"])


@router.post("/fanbases/customer")
async def fanbases_customer(
    body: CustomerRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    client: FanbasesClient = Depends(get_fanbases_client),
) -> Response:
    action = (body.action or "").strip().lower()
    try:
        customer = db.query(FanbasesCustomer).filter(FanbasesCustomer.user_id == current_user.id).first()

        if action == "get_or_create":
            if customer is None or not customer.fanbases_customer_id:
                # Filled in by the webhook once the buyer pays through a hosted link.
                if customer is None:
                    db.add(FanbasesCustomer(user_id=current_user.id, email=current_user.email))
                    db.commit()
                return json_response({"success": True, "customer_id": None, "has_payment_method": False})

            has_method = bool(customer.payment_method_id)
            try:
                methods = client.list_payment_methods(customer.fanbases_customer_id)
            except FanbasesError as exc:
                logger.warning("fanbases.customer.payment_methods_failed user_id=%s error=%s", current_user.id, exc)
            else:
                has_method = bool(methods)
                if methods and not customer.payment_method_id:
                    _store_default_method(customer, methods)
                    db.commit()
            return json_response(
                {"success": True, "customer_id": customer.fanbases_customer_id, "has_payment_method": has_method}
            )

        if action == "fetch_payment_methods":
            customer_id = customer.fanbases_customer_id if customer is not None else None
            if not customer_id and body.payment_id:
                remote = client.find_customer_by_email(current_user.email)
                if remote is not None and remote.get("id"):
                    customer_id = str(remote["id"])

            methods: list[dict] = []
            if customer_id:
                methods = client.list_payment_methods(customer_id)
                if customer is None:
                    customer = FanbasesCustomer(user_id=current_user.id, email=current_user.email)
                    db.add(customer)
                customer.fanbases_customer_id = customer_id
                _store_default_method(customer, methods)
                db.commit()
            return json_response(
                {
                    "success": True,
                    "customer_id": customer_id,
                    "payment_methods": [{k: m.get(k) for k in PAYMENT_METHOD_FIELDS} for m in methods],
                    "has_payment_method": bool(methods),
                }
            )
    except FanbasesError as exc:
        db.rollback()
        logger.warning("fanbases.customer.failed user_id=%s error=%s", current_user.id, exc)
        return json_response({"success": False, "error": str(exc)}, status_code=400)
    except Exception as exc:
        db.rollback()
        logger.exception("fanbases.customer.failed action=%s", action)
        return internal_error_response("fanbases", str(exc))

    return error_response(400, "Invalid action")

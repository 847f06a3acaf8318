from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any
from urllib.parse import parse_qsl


SUBSCRIPTION_EVENTS = {"order.success", "order.subscription_payment"}
END_EVENTS = {"order.subscription_cancelled": "cancelled", "order.subscription_paused": "paused"}
SUPPORTED_EVENTS = [
    "order.success",
    "order.subscription_payment",
    "order.subscription_cancelled",
    "order.subscription_paused",
    "order.subscription_resumed",
    "order.refund",
]

_BRACKETS = re.compile(r"[\[\]]")
_JSON_FIELDS = ("customer", "order", "subscriptions")


def unflatten_form(text: str) -> dict[str, Any]:
    """Decode ``customer[email]=a@b.c`` style form bodies into nested dicts."""
    data: dict[str, Any] = {}
    for key, value in parse_qsl(text or "", keep_blank_values=True):
        if "[" not in key:
            data[key] = value
            continue
        parts = [p for p in _BRACKETS.split(key) if p]
        if not parts:
            continue
        current = data
        for part in parts[:-1]:
            child = current.get(part)
            if not isinstance(child, dict):
                child = {}
                current[part] = child
            current = child
        current[parts[-1]] = value
    return data


def _decode_embedded_json(data: dict[str, Any]) -> dict[str, Any]:
    for name in _JSON_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value.strip().startswith(("{", "[")):
            try:
                data[name] = json.loads(value)
            except ValueError:
                pass
    return data


def parse_body(raw: bytes, content_type: str | None) -> dict[str, Any]:
    text = (raw or b"").decode("utf-8", errors="replace")
    if "application/json" in (content_type or "").lower():
        payload = json.loads(text or "{}")
        if not isinstance(payload, dict):
            raise ValueError("JSON body must be an object")
        return _decode_embedded_json(payload)
    return _decode_embedded_json(unflatten_form(text))


def _section(body: dict[str, Any], name: str) -> dict[str, Any]:
    value = body.get(name)
    return value if isinstance(value, dict) else {}


def customer_email(body: dict[str, Any]) -> str:
    return str(_section(body, "customer").get("email") or body.get("customer_email") or body.get("email") or "").strip()


def customer_name(body: dict[str, Any]) -> str | None:
    customer = _section(body, "customer")
    name = str(customer.get("name") or customer.get("first_name") or "").strip()
    return name or None


def base_product(body: dict[str, Any]) -> object:
    return body.get("base_product") or _section(body, "product").get("id")


def order_id(body: dict[str, Any]) -> str | None:
    value = str(_section(body, "order").get("id") or body.get("order_id") or "").strip()
    return value or None


def charge_key(body: dict[str, Any], event: str, now: datetime) -> str | None:
    """Idempotency key for one ThriveCart charge.

    Renewal payments reuse the order id, so without an invoice id the
    billing month tells them apart.
    """
    invoice = _section(body, "order").get("invoice_id") or body.get("invoice_id")
    if invoice:
        return f"thrivecart:{invoice}"
    oid = order_id(body)
    if not oid:
        return None
    if event == "order.subscription_payment":
        return f"thrivecart:{oid}:{now.strftime('%Y-%m')}"
    return f"thrivecart:{oid}"


def coupon_code(body: dict[str, Any]) -> str | None:
    value = body.get("coupon_code") or _section(body, "order").get("coupon_code") or body.get("coupon")
    if isinstance(value, dict):
        value = value.get("code")
    code = str(value or "").strip()
    return code or None

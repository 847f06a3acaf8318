from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import requests


logger = logging.getLogger(__name__)

WEBHOOK_EVENT_TYPES = [
    "payment.succeeded",
    "payment.failed",
    "payment.refunded",
    "product.purchased",
    "subscription.created",
    "subscription.renewed",
    "subscription.canceled",
    "subscription.completed",
    "subscription.expired",
]

VERIFIED_TRANSACTION_STATUSES = {"succeeded", "success", "paid", "completed"}


class FanbasesError(RuntimeError):
    pass


def webhook_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()


def signature_matches(raw_body: bytes, signature: str | None, secret: str) -> bool:
    sig = (signature or "").strip().lower()
    if not sig:
        return False
    return hmac.compare_digest(webhook_signature(raw_body, secret), sig)


def infer_event_type(payload: dict[str, Any]) -> str:
    """Best guess at the event type for deliveries that omit ``event_type``."""
    explicit = str(payload.get("event_type") or payload.get("type") or "").strip()
    if explicit:
        return explicit
    if payload.get("refund_amount") is not None:
        return "payment.refunded"
    subscription = payload.get("subscription")
    if isinstance(subscription, dict):
        if subscription.get("cancelled_at"):
            return "subscription.canceled"
        if subscription.get("completed_at"):
            return "subscription.completed"
        if subscription.get("expired_at"):
            return "subscription.expired"
        if subscription.get("renewed_at"):
            return "subscription.renewed"
        if subscription.get("start_date"):
            return "subscription.created"
    if payload.get("product_price") is not None:
        return "product.purchased"
    if payload.get("failure_reason"):
        return "payment.failed"
    if payload.get("payment_id") and payload.get("amount") is not None:
        return "payment.succeeded"
    return "unknown"


def _extract_list(payload: Any, *keys: str) -> list[dict]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if isinstance(data, list):
        return data
    for container in (data, payload):
        if not isinstance(container, dict):
            continue
        for key in keys:
            value = container.get(key)
            if isinstance(value, list):
                return value
    return []


def default_payment_method(methods: list[dict]) -> dict | None:
    for method in methods:
        if method.get("is_default"):
            return method
    return methods[0] if methods else None


class FanbasesClient:
    def __init__(self, *, api_key: str, base_url: str, timeout_s: float = 30.0) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = (base_url or "").strip().rstrip("/")
        self._timeout_s = float(timeout_s)

    def _request(self, method: str, path: str, *, params: dict | None = None, json: dict | None = None) -> Any:
        try:
            resp = requests.request(
                method,
                f"{self._base_url}{path}",
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "x-api-key": self._api_key,
                },
                params=params,
                json=json,
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            raise FanbasesError(f"Fanbases request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            logger.error("fanbases.request.invalid_json method=%s path=%s status=%s", method, path, resp.status_code)
            raise FanbasesError("Invalid response from payment provider")

        if resp.status_code >= 400:
            message = ""
            if isinstance(data, dict):
                message = str(data.get("message") or data.get("error") or "")
            raise FanbasesError(message or f"Fanbases error ({resp.status_code})")
        if isinstance(data, dict) and data.get("status") not in (None, "success"):
            raise FanbasesError(str(data.get("message") or data.get("error") or "Payment failed"))
        return data

    def list_customers(self, *, per_page: int = 200) -> list[dict]:
        data = self._request("GET", "/customers", params={"per_page": per_page})
        return _extract_list(data, "customers")

    def find_customer_by_email(self, email: str) -> dict | None:
        wanted = (email or "").strip().lower()
        if not wanted:
            return None
        for customer in self.list_customers():
            if str(customer.get("email") or "").strip().lower() == wanted:
                return customer
        return None

    def list_products(self, *, per_page: int = 100) -> list[dict]:
        data = self._request("GET", "/products", params={"per_page": per_page})
        return _extract_list(data, "products", "data")

    def find_product(self, product_id: str) -> dict | None:
        wanted = str(product_id or "").strip()
        for product in self.list_products():
            if str(product.get("id") or "") == wanted:
                return product
        logger.warning("fanbases.product.not_found product_id=%s", wanted)
        return None

    def list_payment_methods(self, customer_id: str) -> list[dict]:
        data = self._request("GET", f"/customers/{customer_id}/payment-methods")
        return _extract_list(data, "payment_methods")

    def charge(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        description: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        data = self._request(
            "POST",
            f"/customers/{customer_id}/charge",
            json={
                "payment_method_id": payment_method_id,
                "amount_cents": int(amount_cents),
                "description": description,
                "metadata": metadata or {},
            },
        )
        inner = data.get("data") if isinstance(data, dict) and isinstance(data.get("data"), dict) else {}
        charge_id = inner.get("charge_id") or (data.get("charge_id") if isinstance(data, dict) else None) or (
            data.get("id") if isinstance(data, dict) else None
        )
        if not charge_id:
            raise FanbasesError("Payment provider did not return a charge id")
        return str(charge_id)

    def get_transaction(self, transaction_id: str) -> dict:
        data = self._request("GET", f"/transactions/{transaction_id}")
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data if isinstance(data, dict) else {}

    def verify_transaction(self, transaction_id: str) -> bool:
        txn = self.get_transaction(transaction_id)
        status = str(txn.get("status") or txn.get("payment_status") or "").strip().lower()
        return status in VERIFIED_TRANSACTION_STATUSES

    def list_webhook_subscriptions(self) -> list[dict]:
        data = self._request("GET", "/webhook-subscriptions")
        return _extract_list(data, "webhook_subscriptions")

    def create_webhook_subscription(self, webhook_url: str, event_types: list[str] | None = None) -> dict:
        data = self._request(
            "POST",
            "/webhook-subscriptions",
            json={"webhook_url": webhook_url, "event_types": list(event_types or WEBHOOK_EVENT_TYPES)},
        )
        return data if isinstance(data, dict) else {}

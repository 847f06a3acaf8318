from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.fanbases import FanbasesProduct


PRODUCT_KINDS = ("topup", "subscription", "module")

# card_setup rows only carry the hosted card-setup link; they never grant.
MAPPED_PRODUCT_TYPES = PRODUCT_KINDS + ("card_setup",)


class ProductNotFound(LookupError):
    pass


@dataclass(frozen=True)
class ProductDescriptor:
    kind: str
    internal_reference: str
    credit_amount: int = 0
    tier: str | None = None
    price_cents: int = 0
    provider_product_id: str | None = None

    @property
    def monthly_credits(self) -> int:
        return self.credit_amount if self.kind == "subscription" else 0


TIER_CONFIG: dict[str, dict] = {
    "tier1": {"tier": "tier1", "monthly_credits": 10000, "price_cents": 2900},
    "tier2": {"tier": "tier2", "monthly_credits": 40000, "price_cents": 9900},
}

TIER_ALIASES: dict[str, str] = {
    "starter": "tier1",
    "pro": "tier2",
}

TOPUP_CONFIG: dict[str, int] = {
    "1000_credits": 1000,
    "2500_credits": 2500,
    "5000_credits": 5000,
    "10000_credits": 10000,
}

THRIVECART_PRODUCTS: dict[int, ProductDescriptor] = {
    7: ProductDescriptor("subscription", "tier1", credit_amount=10000, tier="tier1", price_cents=2900, provider_product_id="7"),
    8: ProductDescriptor("subscription", "tier2", credit_amount=40000, tier="tier2", price_cents=9900, provider_product_id="8"),
    9: ProductDescriptor("topup", "1000_credits", credit_amount=1000, price_cents=1000, provider_product_id="9"),
    10: ProductDescriptor("topup", "2500_credits", credit_amount=2500, price_cents=2500, provider_product_id="10"),
    12: ProductDescriptor("topup", "5000_credits", credit_amount=5000, price_cents=5000, provider_product_id="12"),
    13: ProductDescriptor("topup", "10000_credits", credit_amount=10000, price_cents=10000, provider_product_id="13"),
}

_CREDITS_RE = re.compile(r"(\d+)")


def parse_thrivecart_product_id(raw: object) -> int | None:
    value = str(raw or "").strip()
    if not value:
        return None
    try:
        product_id = int(float(value))
    except ValueError:
        return None
    return product_id if product_id > 0 else None


def resolve_thrivecart_product(product_id: int, *, kinds: tuple[str, ...] = PRODUCT_KINDS) -> ProductDescriptor:
    descriptor = THRIVECART_PRODUCTS.get(int(product_id))
    if descriptor is None or descriptor.kind not in kinds:
        valid = ", ".join(str(k) for k, d in THRIVECART_PRODUCTS.items() if d.kind in kinds)
        raise ProductNotFound(f"Unknown product ID: {product_id}. Valid IDs: {valid}")
    return descriptor


def normalize_internal_reference(reference: str) -> str:
    ref = (reference or "").strip()
    if ref.startswith("credits_"):
        return ref[len("credits_"):] + "_credits"
    return ref


def subscription_config(internal_reference: str) -> dict | None:
    ref = (internal_reference or "").strip().lower()
    ref = TIER_ALIASES.get(ref, ref)
    return TIER_CONFIG.get(ref)


def topup_credits(internal_reference: str) -> int:
    ref = (internal_reference or "").strip()
    if ref in TOPUP_CONFIG:
        return TOPUP_CONFIG[ref]
    match = _CREDITS_RE.search(ref)
    return int(match.group(1)) if match else 0


def _catalog_row(db: Session, internal_reference: str) -> FanbasesProduct | None:
    return db.query(FanbasesProduct).filter(FanbasesProduct.internal_reference == internal_reference).first()


def describe(
    kind: str,
    internal_reference: str,
    *,
    price_cents: int | None = None,
    provider_product_id: str | None = None,
) -> ProductDescriptor:
    """Build a descriptor from the static tier/top-up configuration.

    Top-ups fall back to the integer embedded in the reference
    (``"7500_credits"`` -> 7500). Unknown tiers and module slugs are not
    guessed; callers get ``ProductNotFound``.
    """
    kind = (kind or "").strip().lower()
    if kind == "topup":
        credits = topup_credits(internal_reference)
        if credits <= 0:
            raise ProductNotFound(f"Unknown top-up product: {internal_reference}")
        return ProductDescriptor(
            "topup",
            internal_reference,
            credit_amount=credits,
            price_cents=int(price_cents or 0),
            provider_product_id=provider_product_id,
        )
    if kind == "subscription":
        config = subscription_config(internal_reference)
        if config is None:
            raise ProductNotFound(f"Unknown subscription tier: {internal_reference}")
        return ProductDescriptor(
            "subscription",
            internal_reference,
            credit_amount=int(config["monthly_credits"]),
            tier=str(config["tier"]),
            price_cents=int(price_cents if price_cents is not None else config["price_cents"]),
            provider_product_id=provider_product_id,
        )
    if kind == "module":
        return ProductDescriptor(
            "module",
            internal_reference,
            price_cents=int(price_cents or 0),
            provider_product_id=provider_product_id,
        )
    raise ProductNotFound(f"Unknown product type: {kind or '(missing)'}")


def resolve_fanbases_product(db: Session, internal_reference: str, product_type: str | None = None) -> ProductDescriptor:
    """Resolve an ``internal_reference`` against ``fanbases_products`` first.

    A catalog row decides the kind and the price. Without a row only
    top-ups and known tiers resolve; module slugs must be mapped.
    """
    ref = normalize_internal_reference(internal_reference)
    if not ref:
        raise ProductNotFound("Missing internal_reference")
    row = _catalog_row(db, ref)
    if row is not None:
        return describe(
            row.product_type or product_type or "",
            ref,
            price_cents=row.price_cents,
            provider_product_id=row.fanbases_product_id,
        )
    kind = (product_type or "").strip().lower()
    if kind == "module":
        raise ProductNotFound(f"Unknown module: {ref}")
    return describe(kind, ref)


def resolve_fanbases_product_id(db: Session, fanbases_product_id: str) -> ProductDescriptor:
    pid = str(fanbases_product_id or "").strip()
    row = db.query(FanbasesProduct).filter(FanbasesProduct.fanbases_product_id == pid).first() if pid else None
    if row is None:
        raise ProductNotFound(f"No product mapping for Fanbases product {pid or '(missing)'}")
    return describe(
        row.product_type or "",
        row.internal_reference,
        price_cents=row.price_cents,
        provider_product_id=row.fanbases_product_id,
    )

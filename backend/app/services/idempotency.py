from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.purchase import Purchase


# A refunded charge was applied once; it must not be applied again.
CONSUMED_STATUSES = ("completed", "refunded")


def find_purchase(db: Session, charge_id: str | None) -> Purchase | None:
    if not charge_id:
        return None
    return db.query(Purchase).filter(Purchase.charge_id == str(charge_id)).first()


def already_applied(db: Session, charge_id: str | None) -> bool:
    if not charge_id:
        return False
    row = (
        db.query(Purchase.id)
        .filter(Purchase.charge_id == str(charge_id), Purchase.status.in_(CONSUMED_STATUSES))
        .first()
    )
    return row is not None


def owns_module(db: Session, user_id: str, product_id: str) -> bool:
    row = (
        db.query(Purchase.id)
        .filter(
            Purchase.user_id == user_id,
            Purchase.product_id == product_id,
            Purchase.product_type == "module",
            Purchase.status == "completed",
        )
        .first()
    )
    return row is not None

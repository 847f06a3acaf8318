from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.credit_transaction import CreditTransaction
from app.models.purchase import Purchase
from app.models import checkout_session, coupon, fanbases, subscription, user_credits, webhook_log  # noqa: F401
from app.services.catalog import describe, resolve_thrivecart_product
from app.services.entitlements import grant, refund
from app.services.ledger import get_balance, get_or_create_user_by_email


def main() -> None:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user, created = get_or_create_user_by_email(db, "buyer@example.com", "Buyer")
        assert created
        assert get_balance(db, user.id) == 0

        topup = resolve_thrivecart_product(9)
        grant(db, user_id=user.id, product=topup, charge_id="thrivecart:order-1", payment_method="thrivecart")
        assert get_balance(db, user.id) == 1000

        replay = grant(db, user_id=user.id, product=topup, charge_id="thrivecart:order-1", payment_method="thrivecart")
        assert replay.already_processed
        assert get_balance(db, user.id) == 1000

        pro = describe("subscription", "tier2")
        grant(db, user_id=user.id, product=pro, charge_id="fb-sub-1", payment_method="fanbases")
        assert get_balance(db, user.id) == 41000

        refund(
            db,
            user_id=user.id,
            amount=50000,
            refund_key="refund:fb-sub-1",
            payment_method="fanbases",
            original_charge_id="fb-sub-1",
        )
        assert get_balance(db, user.id) == 0

        txns = db.query(CreditTransaction).filter(CreditTransaction.user_id == user.id).all()
        assert len(txns) == 3, len(txns)
        purchases = db.query(Purchase).filter(Purchase.user_id == user.id).count()
        assert purchases == 3, purchases
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")

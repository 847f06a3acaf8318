import unittest

from factories import ApiTestCase, make_settings, make_token, seed_user

from fastapi import HTTPException

from app.core.security import decode_bearer_token
from app.models.coupon import Coupon, CouponRedemption
from app.models.fanbases import FanbasesProduct
from app.models.user import User
from app.services.catalog import resolve_thrivecart_product
from app.services.entitlements import grant
from app.services.ledger import get_balance


class TestBearerTokens(unittest.TestCase):
    def test_valid_token(self):
        claims = decode_bearer_token(make_token("user-1", "a@b.co"), make_settings())
        self.assertEqual(claims["sub"], "user-1")

    def test_expired_token(self):
        with self.assertRaises(HTTPException) as ctx:
            decode_bearer_token(make_token("user-1", "a@b.co", expires_in=-60), make_settings())
        self.assertEqual(ctx.exception.status_code, 401)

    def test_wrong_audience(self):
        with self.assertRaises(HTTPException):
            decode_bearer_token(make_token("user-1", "a@b.co", audience="anon"), make_settings())


class TestAccount(ApiTestCase):
    def test_first_visit_creates_free_account(self):
        resp = self.client.get("/api/me", headers=self.auth("new-user", "fresh@example.com"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["credits"], 0)
        self.assertEqual(body["subscription_tier"], "free")
        self.assertIsNone(body["subscription"])

    def test_me_after_purchase(self):
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")
            grant(db, user_id="user-1", product=resolve_thrivecart_product(7), charge_id="c-1", payment_method="thrivecart")
        body = self.client.get("/api/me", headers=self.auth()).json()
        self.assertEqual(body["credits"], 10000)
        self.assertEqual(body["subscription_tier"], "tier1")
        self.assertEqual(body["monthly_allowance"], 10000)
        self.assertEqual(body["subscription"]["status"], "active")

        txns = self.client.get("/api/me/transactions", headers=self.auth()).json()
        self.assertEqual(txns["total"], 1)
        self.assertEqual(txns["items"][0]["type"], "subscription")

    def test_modules(self):
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")
            db.add(FanbasesProduct(fanbases_product_id="prod_m", product_type="module", internal_reference="course-a"))
            db.commit()
        self.client.post(
            "/api/fanbases/confirm-payment",
            json={
                "payment_intent": "pi_m",
                "redirect_status": "succeeded",
                "product_type": "module",
                "internal_reference": "course-a",
            },
            headers=self.auth(),
        )
        self.assertEqual(self.client.get("/api/me/modules", headers=self.auth()).json(), {"modules": ["course-a"]})

    def test_requires_token(self):
        resp = self.client.get("/api/me")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["error"], "Missing bearer token")


class TestAdmin(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        with self.fresh() as db:
            seed_user(db, "admin-1", "admin@example.com")
            seed_user(db, "user-1", "buyer@example.com", credits=300)

    def admin(self) -> dict:
        return self.auth("admin-1", "admin@example.com")

    def test_non_admin_is_forbidden(self):
        resp = self.client.get("/api/admin/coupons", headers=self.auth())
        self.assertEqual(resp.status_code, 403)

    def test_coupon_lifecycle(self):
        resp = self.client.post("/api/admin/coupons", json={"code": "spring", "type": "trial", "months": 2, "max_uses": 5}, headers=self.admin())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["code"], "SPRING")

        dup = self.client.post("/api/admin/coupons", json={"code": "SPRING"}, headers=self.admin())
        self.assertEqual(dup.status_code, 400)

        listed = self.client.get("/api/admin/coupons", headers=self.admin()).json()
        self.assertEqual([c["code"] for c in listed], ["SPRING"])

        self.assertEqual(self.client.delete("/api/admin/coupons/spring", headers=self.admin()).status_code, 200)
        with self.fresh() as db:
            self.assertEqual(db.query(Coupon).count(), 0)

    def test_coupon_type_is_validated(self):
        resp = self.client.post("/api/admin/coupons", json={"code": "X", "type": "bogus"}, headers=self.admin())
        self.assertEqual(resp.status_code, 400)

    def test_adjust_credits_is_floored(self):
        resp = self.client.post("/api/admin/users/user-1/credits/adjust", json={"delta": -1000, "reason": "chargeback"}, headers=self.admin())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["balance"], 0)
        resp = self.client.post("/api/admin/users/user-1/credits/adjust", json={"delta": 250}, headers=self.admin())
        self.assertEqual(resp.json()["balance"], 250)
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 250)

    def test_adjust_unknown_user(self):
        resp = self.client.post("/api/admin/users/ghost/credits/adjust", json={"delta": 5}, headers=self.admin())
        self.assertEqual(resp.status_code, 404)

    def test_product_mapping_upsert(self):
        body = {"fanbases_product_id": "prod_1", "product_type": "topup", "internal_reference": "credits_2500", "price_cents": 2500}
        self.client.post("/api/admin/fanbases/products", json=body, headers=self.admin())
        resp = self.client.post("/api/admin/fanbases/products", json={**body, "fanbases_product_id": "prod_2"}, headers=self.admin())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["internal_reference"], "2500_credits")
        with self.fresh() as db:
            rows = db.query(FanbasesProduct).all()
            self.assertEqual([(r.fanbases_product_id, r.internal_reference) for r in rows], [("prod_2", "2500_credits")])

    def test_product_already_mapped_elsewhere(self):
        body = {"fanbases_product_id": "prod_1", "product_type": "topup", "internal_reference": "2500_credits"}
        self.client.post("/api/admin/fanbases/products", json=body, headers=self.admin())
        resp = self.client.post(
            "/api/admin/fanbases/products",
            json={**body, "internal_reference": "5000_credits"},
            headers=self.admin(),
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("already mapped", resp.json()["error"])
        with self.fresh() as db:
            self.assertEqual(db.query(FanbasesProduct).count(), 1)

    def test_card_setup_mapping(self):
        body = {"fanbases_product_id": "prod_card", "product_type": "card_setup", "internal_reference": "card_setup_fee"}
        resp = self.client.post("/api/admin/fanbases/products", json=body, headers=self.admin())
        self.assertEqual(resp.status_code, 200)

    def test_deleting_coupon_keeps_redemptions(self):
        with self.fresh() as db:
            db.add(Coupon(code="TRIAL3", type="trial", months=3, uses=0))
            db.commit()
            grant(
                db,
                user_id="user-1",
                product=resolve_thrivecart_product(7),
                charge_id="s-1",
                payment_method="thrivecart",
                coupon_code="TRIAL3",
            )
        self.assertEqual(self.client.delete("/api/admin/coupons/trial3", headers=self.admin()).status_code, 200)
        with self.fresh() as db:
            self.assertEqual(db.query(Coupon).count(), 0)
            self.assertEqual(db.query(CouponRedemption).count(), 1)

    def test_user_list(self):
        rows = self.client.get("/api/admin/users", headers=self.admin()).json()
        self.assertEqual({r["id"] for r in rows}, {"admin-1", "user-1"})
        with self.fresh() as db:
            self.assertEqual(db.query(User).count(), 2)


if __name__ == "__main__":
    unittest.main()

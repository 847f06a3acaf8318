import unittest
from urllib.parse import parse_qs, urlsplit

from factories import ApiTestCase, FakeFanbasesClient, make_token, seed_user

from app.api.endpoints.fanbases import get_fanbases_client
from app.models.checkout_session import CheckoutSession
from app.models.fanbases import FanbasesCustomer, FanbasesProduct
from app.models.purchase import Purchase
from app.services.ledger import get_balance
from main import app


def confirm_body(**overrides):
    body = {
        "payment_intent": "pi_1",
        "redirect_status": "succeeded",
        "product_type": "topup",
        "internal_reference": "2500_credits",
    }
    body.update(overrides)
    return body


class TestConfirmPayment(ApiTestCase):
    url = "/api/fanbases/confirm-payment"

    def setUp(self) -> None:
        super().setUp()
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")

    def test_double_confirmation_grants_once(self):
        first = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        second = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.json()["success"])
        self.assertEqual(first.json()["details"]["credits_added"], 2500)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.json()["already_processed"])
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 2500)

    def test_body_user_id_without_token(self):
        resp = self.client.post(self.url, json=confirm_body(user_id="user-1"))
        self.assertEqual(resp.status_code, 200)
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 2500)

    def test_no_identity(self):
        resp = self.client.post(self.url, json=confirm_body())
        self.assertEqual(resp.status_code, 401)

    def test_invalid_token_without_fallback(self):
        headers = {"Authorization": f"Bearer {make_token('user-1', 'buyer@example.com', secret='another-secret-that-is-long-enough-xx')}"}
        resp = self.client.post(self.url, json=confirm_body(), headers=headers)
        self.assertEqual(resp.status_code, 401)

    def test_unknown_user(self):
        resp = self.client.post(self.url, json=confirm_body(user_id="ghost"))
        self.assertEqual(resp.status_code, 404)

    def test_failed_redirect_status(self):
        resp = self.client.post(self.url, json=confirm_body(redirect_status="failed"), headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["status"], "failed")
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 0)

    def test_missing_fields(self):
        resp = self.client.post(self.url, json={"redirect_status": "succeeded"}, headers=self.auth())
        self.assertEqual(resp.status_code, 400)

    def test_unknown_product(self):
        resp = self.client.post(self.url, json=confirm_body(product_type="subscription", internal_reference="tier9"), headers=self.auth())
        self.assertEqual(resp.status_code, 400)

    def test_unverified_payment_is_granted_when_advisory(self):
        self.fanbases_client.verified = False
        resp = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["details"]["verified"])
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 2500)

    def test_verification_error_is_advisory(self):
        self.fanbases_client.verify_error = "timeout"
        resp = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        self.assertEqual(resp.status_code, 200)

    def test_strict_verification_blocks_grant(self):
        self.settings.fanbases_strict_verification = True
        self.fanbases_client.verified = False
        resp = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 0)

    def test_subscription_grant(self):
        resp = self.client.post(
            self.url,
            json=confirm_body(product_type="subscription", internal_reference="tier2"),
            headers=self.auth(),
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["details"]["tier"], "tier2")
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 40000)

    def test_module_is_owned_once(self):
        with self.fresh() as db:
            db.add(FanbasesProduct(fanbases_product_id="prod_m", product_type="module", internal_reference="course-a", price_cents=4900))
            db.commit()
        body = confirm_body(product_type="module", internal_reference="course-a")
        self.client.post(self.url, json=body, headers=self.auth())
        resp = self.client.post(self.url, json={**body, "payment_intent": "pi_2"}, headers=self.auth())
        self.assertTrue(resp.json()["details"]["already_owned"])
        with self.fresh() as db:
            self.assertEqual(db.query(Purchase).filter(Purchase.product_type == "module").count(), 1)

    def test_pending_checkout_session_is_completed(self):
        with self.fresh() as db:
            db.add(CheckoutSession(user_id="user-1", session_id="cs_1", product_type="topup", product_id="2500_credits", status="pending"))
            db.commit()
        self.client.post(self.url, json=confirm_body(checkout_session_id="cs_1"), headers=self.auth())
        with self.fresh() as db:
            self.assertEqual(db.query(CheckoutSession).one().status, "completed")

    def test_missing_api_key(self):
        app.dependency_overrides.pop(get_fanbases_client)
        self.settings.fanbases_api_key = None
        resp = self.client.post(self.url, json=confirm_body(), headers=self.auth())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "FANBASES_API_KEY is not configured")

    def test_options(self):
        resp = self.client.options(self.url)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["access-control-allow-origin"], "*")


class TestOneClickCharge(ApiTestCase):
    url = "/api/fanbases/charge"

    def setUp(self) -> None:
        super().setUp()
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")

    def _save_customer(self, payment_method_id=None):
        with self.fresh() as db:
            db.add(FanbasesCustomer(user_id="user-1", fanbases_customer_id="cus_1", payment_method_id=payment_method_id))
            db.commit()

    def body(self, **overrides):
        body = {"product_type": "topup", "product_id": "5000_credits", "amount_cents": 5000, "description": "5000 credits"}
        body.update(overrides)
        return body

    def test_requires_token(self):
        resp = self.client.post(self.url, json=self.body())
        self.assertEqual(resp.status_code, 401)

    def test_needs_payment_method(self):
        resp = self.client.post(self.url, json=self.body(), headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.json()["needs_payment_method"])

    def test_charge_grants_credits(self):
        self._save_customer()
        resp = self.client.post(self.url, json=self.body(), headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["charge_id"], "ch_test_1")
        self.assertEqual(self.fanbases_client.charges[0]["payment_method_id"], "pm_1")
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 5000)
            saved = db.query(FanbasesCustomer).one()
            self.assertEqual(saved.payment_method_id, "pm_1")

    def test_customer_found_at_provider(self):
        self.fanbases_client.customers["buyer@example.com"] = {"id": "cus_remote", "email": "buyer@example.com"}
        resp = self.client.post(self.url, json=self.body(), headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.fanbases_client.charges[0]["customer_id"], "cus_remote")
        with self.fresh() as db:
            self.assertEqual(db.query(FanbasesCustomer).one().fanbases_customer_id, "cus_remote")

    def test_credits_prefix_is_normalized(self):
        self._save_customer(payment_method_id="pm_1")
        resp = self.client.post(self.url, json=self.body(product_id="credits_5000"), headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 5000)

    def test_no_saved_methods_upstream(self):
        self._save_customer()
        self.fanbases_client.payment_methods = []
        resp = self.client.post(self.url, json=self.body(), headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.json()["needs_payment_method"])

    def test_provider_decline(self):
        self._save_customer(payment_method_id="pm_9")
        self.fanbases_client = FakeFanbasesClient(charge_error="Card declined")
        resp = self.client.post(self.url, json=self.body(), headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"success": False, "error": "Card declined"})
        with self.fresh() as db:
            self.assertEqual(get_balance(db, "user-1"), 0)

    def test_missing_fields(self):
        self._save_customer()
        resp = self.client.post(self.url, json=self.body(amount_cents=0), headers=self.auth())
        self.assertEqual(resp.status_code, 400)


class TestHostedCheckout(ApiTestCase):
    url = "/api/fanbases/checkout"

    def setUp(self) -> None:
        super().setUp()
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")
            db.add(FanbasesProduct(fanbases_product_id="prod_25", product_type="topup", internal_reference="2500_credits", price_cents=2000))
            db.commit()
        self.fanbases_client.products["prod_25"] = {
            "id": "prod_25",
            "price": 25.0,
            "payment_link": "https://pay.example.com/p/abc?ref=site",
        }

    def link_params(self, link: str) -> dict:
        return {k: v[0] for k, v in parse_qs(urlsplit(link).query).items()}

    def test_payment_link_is_tagged_and_prefilled(self):
        resp = self.client.post(
            self.url,
            json={"internal_reference": "credits_2500", "success_url": "https://app.example.com/confirm"},
            headers=self.auth(),
        )
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["amount_cents"], 2500)
        self.assertTrue(data["payment_link"].startswith("https://pay.example.com/p/abc?"))
        params = self.link_params(data["payment_link"])
        self.assertEqual(params["ref"], "site")
        self.assertEqual(params["metadata[user_id]"], "user-1")
        self.assertEqual(params["metadata[product_type]"], "topup")
        self.assertEqual(params["metadata[internal_reference]"], "2500_credits")
        self.assertEqual(params["metadata[fanbases_product_id]"], "prod_25")
        self.assertEqual(params["prefill[email]"], "buyer@example.com")
        self.assertEqual(params["prefill[name]"], "buyer")
        self.assertEqual(params["success_url"], "https://app.example.com/confirm")
        self.assertNotIn("cancel_url", params)
        with self.fresh() as db:
            session = db.query(CheckoutSession).one()
            self.assertEqual((session.status, session.product_id, session.amount_cents), ("pending", "2500_credits", 2500))
            self.assertEqual(session.session_id, data["checkout_session_id"])
            self.assertEqual(db.query(FanbasesProduct).one().price_cents, 2500)

    def test_confirm_completes_the_checkout(self):
        session_id = self.client.post(self.url, json={"internal_reference": "2500_credits"}, headers=self.auth()).json()["checkout_session_id"]
        resp = self.client.post(
            "/api/fanbases/confirm-payment",
            json=confirm_body(checkout_session_id=session_id),
            headers=self.auth(),
        )
        self.assertEqual(resp.status_code, 200)
        with self.fresh() as db:
            self.assertEqual(db.query(CheckoutSession).one().status, "completed")
            self.assertEqual(get_balance(db, "user-1"), 2500)

    def test_unknown_product(self):
        resp = self.client.post(self.url, json={"internal_reference": "tier9"}, headers=self.auth())
        self.assertEqual(resp.status_code, 404)

    def test_missing_payment_link(self):
        self.fanbases_client.products.clear()
        resp = self.client.post(self.url, json={"internal_reference": "2500_credits"}, headers=self.auth())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "Payment link not available for this product")
        with self.fresh() as db:
            self.assertEqual(db.query(CheckoutSession).count(), 0)

    def test_card_setup_link(self):
        with self.fresh() as db:
            db.add(FanbasesProduct(fanbases_product_id="prod_card", product_type="card_setup", internal_reference="card_setup_fee", price_cents=100))
            db.commit()
        self.fanbases_client.products["prod_card"] = {"id": "prod_card", "price": 1.0, "payment_link": "https://pay.example.com/p/card"}
        resp = self.client.post(
            self.url,
            json={"action": "setup_card", "base_url": "https://app.example.com/"},
            headers=self.auth(),
        )
        self.assertEqual(resp.status_code, 200)
        params = self.link_params(resp.json()["payment_link"])
        self.assertEqual(params["metadata[action]"], "setup_card")
        self.assertEqual(params["metadata[user_id]"], "user-1")
        self.assertEqual(params["success_url"], "https://app.example.com/settings?setup=complete")
        self.assertEqual(params["cancel_url"], "https://app.example.com/settings?setup=cancelled")

    def test_card_setup_not_configured(self):
        resp = self.client.post(self.url, json={"action": "setup_card"}, headers=self.auth())
        self.assertEqual(resp.status_code, 500)

    def test_invalid_action(self):
        resp = self.client.post(self.url, json={"action": "refund_everything"}, headers=self.auth())
        self.assertEqual(resp.status_code, 400)

    def test_requires_token(self):
        resp = self.client.post(self.url, json={"internal_reference": "2500_credits"})
        self.assertEqual(resp.status_code, 401)


class TestCustomerLookup(ApiTestCase):
    url = "/api/fanbases/customer"

    def setUp(self) -> None:
        super().setUp()
        with self.fresh() as db:
            seed_user(db, "user-1", "buyer@example.com")

    def test_first_lookup_creates_placeholder(self):
        resp = self.client.post(self.url, json={"action": "get_or_create"}, headers=self.auth())
        self.assertEqual(resp.json(), {"success": True, "customer_id": None, "has_payment_method": False})
        with self.fresh() as db:
            row = db.query(FanbasesCustomer).one()
            self.assertIsNone(row.fanbases_customer_id)
            self.assertEqual(row.email, "buyer@example.com")

    def test_known_customer_stores_default_method(self):
        with self.fresh() as db:
            db.add(FanbasesCustomer(user_id="user-1", fanbases_customer_id="cus_1"))
            db.commit()
        self.fanbases_client.payment_methods = [{"id": "pm_1"}, {"id": "pm_2", "is_default": True}]
        resp = self.client.post(self.url, json={"action": "get_or_create"}, headers=self.auth())
        self.assertEqual(resp.json(), {"success": True, "customer_id": "cus_1", "has_payment_method": True})
        with self.fresh() as db:
            self.assertEqual(db.query(FanbasesCustomer).one().payment_method_id, "pm_2")

    def test_method_lookup_failure_is_not_fatal(self):
        with self.fresh() as db:
            db.add(FanbasesCustomer(user_id="user-1", fanbases_customer_id="cus_1", payment_method_id="pm_9"))
            db.commit()
        self.fanbases_client.methods_error = "timeout"
        resp = self.client.post(self.url, json={"action": "get_or_create"}, headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["has_payment_method"])

    def test_fetch_methods_finds_customer_by_email(self):
        self.fanbases_client.customers["buyer@example.com"] = {"id": "cus_remote", "email": "buyer@example.com"}
        self.fanbases_client.payment_methods = [{"id": "pm_1", "brand": "visa", "last4": "4242", "token": "secret"}]
        resp = self.client.post(self.url, json={"action": "fetch_payment_methods", "payment_id": "pay_1"}, headers=self.auth())
        data = resp.json()
        self.assertEqual(data["customer_id"], "cus_remote")
        self.assertTrue(data["has_payment_method"])
        self.assertEqual(data["payment_methods"][0]["last4"], "4242")
        self.assertNotIn("token", data["payment_methods"][0])
        with self.fresh() as db:
            row = db.query(FanbasesCustomer).one()
            self.assertEqual((row.fanbases_customer_id, row.payment_method_id), ("cus_remote", "pm_1"))

    def test_fetch_methods_without_customer(self):
        resp = self.client.post(self.url, json={"action": "fetch_payment_methods"}, headers=self.auth())
        self.assertEqual(resp.json(), {"success": True, "customer_id": None, "payment_methods": [], "has_payment_method": False})

    def test_provider_error(self):
        with self.fresh() as db:
            db.add(FanbasesCustomer(user_id="user-1", fanbases_customer_id="cus_1"))
            db.commit()
        self.fanbases_client.methods_error = "Fanbases error (503)"
        resp = self.client.post(self.url, json={"action": "fetch_payment_methods"}, headers=self.auth())
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"success": False, "error": "Fanbases error (503)"})


if __name__ == "__main__":
    unittest.main()

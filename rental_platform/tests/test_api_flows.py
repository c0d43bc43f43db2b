import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from booking_fixtures import memory_sessionmaker, seed_pricelist, seed_product, seed_rate  # noqa: E402

import RentalMan as app_module  # noqa: E402


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.engine, SessionLocal = memory_sessionmaker()
        with SessionLocal() as db:
            product = seed_product(db, total=5, max_days=30)
            pricelist = seed_pricelist(db)
            seed_rate(db, pricelist, product, price="10.00")
            self.product_id = product.ProductID
            self.pricelist_id = pricelist.PricelistID

        def override_get_rental_db():
            db = SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_rental_db] = override_get_rental_db
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.engine.dispose()

    def _reserve(self, quantity, start="2026-01-10T00:00:00", end="2026-01-15T00:00:00", status="RESERVED"):
        return self.client.post(
            "/api/rentals",
            json={
                "customerID": 11,
                "status": status,
                "rentalItems": [
                    {
                        "productID": self.product_id,
                        "rentalType": "DAILY",
                        "quantity": quantity,
                        "startDate": start,
                        "endDate": end,
                    }
                ],
            },
        )

    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/healthz").json(), {"status": "ok"})

    def test_availability_and_oversell_mapping(self):
        created = self._reserve(3)
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["rentalNumber"], f"RNT-{body['rentalID']:05d}")
        self.assertEqual(body["fulfillmentStatus"], "RESERVED")
        self.assertEqual(float(body["total"]), 192.0)

        availability = self.client.get(
            f"/api/products/{self.product_id}/availability",
            params={"startDate": "2026-01-12T00:00:00", "endDate": "2026-01-18T00:00:00", "quantity": 3},
        )
        self.assertEqual(availability.status_code, 200)
        self.assertEqual(availability.json()["freeUnits"], 2)
        self.assertFalse(availability.json()["available"])

        rejected = self._reserve(3, start="2026-01-12T00:00:00", end="2026-01-18T00:00:00")
        self.assertEqual(rejected.status_code, 409)
        self.assertEqual(rejected.json()["code"], "insufficient_availability")
        self.assertEqual(rejected.json()["freeUnits"], 2)

        accepted = self._reserve(2, start="2026-01-12T00:00:00", end="2026-01-18T00:00:00")
        self.assertEqual(accepted.status_code, 201)

    def test_error_codes(self):
        window = self._reserve(1, start="2026-01-15T00:00:00", end="2026-01-10T00:00:00")
        self.assertEqual(window.status_code, 400)
        self.assertEqual(window.json()["code"], "invalid_window")

        missing = self.client.get("/api/rentals/999")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "rental_not_found")

        too_long = self._reserve(1, start="2026-01-01T00:00:00", end="2026-03-01T00:00:00")
        self.assertEqual(too_long.status_code, 422)
        self.assertEqual(too_long.json()["code"], "duration_out_of_bounds")

        no_rate = self.client.post(
            "/api/quote",
            json={
                "productID": self.product_id,
                "pricelistID": self.pricelist_id,
                "rentalType": "HOURLY",
                "startDate": "2026-01-10T00:00:00",
                "endDate": "2026-01-11T00:00:00",
            },
        )
        self.assertEqual(no_rate.status_code, 422)
        self.assertEqual(no_rate.json()["code"], "rate_not_found")

        empty_cart = self.client.post("/api/rentals", json={"customerID": 1, "rentalItems": []})
        self.assertEqual(empty_cart.status_code, 422)

    def test_quote(self):
        response = self.client.post(
            "/api/quote",
            json={
                "productID": self.product_id,
                "pricelistID": self.pricelist_id,
                "rentalType": "DAILY",
                "quantity": 2,
                "startDate": "2026-01-10T00:00:00Z",
                "endDate": "2026-01-13T00:00:00Z",
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["billableUnits"], 3)
        self.assertEqual(float(body["totalPrice"]), 60.0)
        self.assertEqual(body["currency"], "USD")

    def test_status_flow_and_terminal_state(self):
        rental_id = self._reserve(1, status="QUOTATION").json()["rentalID"]
        for status in ("QUOTATION_SENT", "RESERVED", "PICKED_UP", "RETURNED"):
            response = self.client.post(f"/api/rentals/{rental_id}/status", json={"status": status})
            self.assertEqual(response.status_code, 200, response.text)
            self.assertEqual(response.json()["fulfillmentStatus"], status)

        again = self.client.post(f"/api/rentals/{rental_id}/status", json={"status": "CANCELLED"})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "illegal_transition")

        listed = self.client.get("/api/rentals", params={"status": "RETURNED"})
        self.assertEqual([row["rentalID"] for row in listed.json()], [rental_id])

    def test_invoice_and_payment_flow(self):
        rental = self._reserve(1).json()
        item_id = rental["rentalItems"][0]["rentalItemID"]

        invoice = self.client.post(f"/api/rentals/{rental['rentalID']}/invoices", json={})
        self.assertEqual(invoice.status_code, 201)
        invoice_body = invoice.json()
        self.assertEqual(float(invoice_body["total"]), 54.0)
        self.assertEqual(invoice_body["rentalItemIDs"], [item_id])

        paid = self.client.post(
            f"/api/invoices/{invoice_body['invoiceID']}/payments",
            json={"amount": "54.00", "method": "CREDIT_CARD", "transactionRef": "ch_1"},
        )
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["status"], "PAID")
        self.assertEqual(self.client.get(f"/api/rentals/{rental['rentalID']}").json()["invoiceStatus"], "FULLY_INVOICED")

        reopened = self.client.post(
            f"/api/rentals/{rental['rentalID']}/items/{item_id}/invoice-status",
            json={"invoiceStatus": "TO_INVOICE"},
        )
        self.assertEqual(reopened.status_code, 200)
        self.assertEqual(reopened.json()["invoiceStatus"], "TO_INVOICE")

    def test_cart_estimate_and_checkout(self):
        cart = {
            "customerID": 5,
            "lines": [
                {
                    "productID": self.product_id,
                    "quantity": 2,
                    "startDate": "2026-02-01T00:00:00",
                    "endDate": "2026-02-03T00:00:00",
                }
            ],
        }
        estimate = self.client.post("/api/cart/estimate", json=cart)
        self.assertEqual(estimate.status_code, 200)
        self.assertEqual(float(estimate.json()["subtotal"]), 40.0)
        self.assertEqual(float(estimate.json()["total"]), 51.2)
        self.assertEqual(self.client.get("/api/rentals").json(), [])

        checkout = self.client.post("/api/cart/checkout", json=cart)
        self.assertEqual(checkout.status_code, 201)
        self.assertEqual(float(checkout.json()["total"]), 51.2)

        anonymous = self.client.post("/api/cart/checkout", json={"lines": cart["lines"]})
        self.assertEqual(anonymous.status_code, 400)


if __name__ == "__main__":
    unittest.main()

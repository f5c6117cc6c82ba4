"""Tests for the public FastAPI routes."""

import asyncio
import inspect

import pytest


@pytest.fixture
def products(store):
    tree = asyncio.run(store.create_document("products", {
        "title": "Noble Fir", "description": "", "price": 450, "category": "trees", "images": [],
    }))
    baubles = asyncio.run(store.create_document("products", {
        "title": "Gold Bauble Set", "description": "", "price": 60, "category": "decorations", "images": [],
    }))
    return {"tree": tree, "baubles": baubles}


TREE_OPTIONS = {"height": "2.1 m", "width": "1.5 m", "type": "Noble Fir", "rental_period": 45, "decor_level": 50}
DETAILS = {"name": "Ana Lim", "email": "ana@example.com", "phone": "91234567", "street_address": "10 Bayfront Ave"}


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "Twinkle Jingle API is running"}

    def test_database_check(self, client, products):
        data = client.get("/test").json()
        assert data["connection_status"] == "Connected"
        assert "products" in data["collections"]


class TestCatalog:
    def test_list_and_filter(self, client, products):
        assert len(client.get("/api/products").json()) == 2
        trees = client.get("/api/products", params={"category": "trees"}).json()
        assert [p["title"] for p in trees] == ["Noble Fir"]
        found = client.get("/api/products", params={"q": "bauble"}).json()
        assert [p["id"] for p in found] == [products["baubles"]["id"]]

    def test_get_product(self, client, products):
        response = client.get(f"/api/products/{products['tree']['id']}")
        assert response.status_code == 200
        assert response.json()["price"] == 450

    def test_missing_product(self, client):
        assert client.get("/api/products/nope").status_code == 404

    def test_tree_options(self, client):
        data = client.get("/api/tree-options").json()
        assert [p["days"] for p in data["rental_periods"]] == [45, 60, 90]
        assert data["event_sizes"] == ["small", "medium", "large"]

    def test_inquiry(self, client, store):
        response = client.post("/api/inquiries", json={
            "name": "Ana", "email": "ana@example.com", "message": "Wedding in December?",
        })
        assert response.status_code == 201
        assert store.docs("inquiries")[0]["message"] == "Wedding in December?"

    def test_file_not_found(self, client):
        assert client.get("/api/files/missing").status_code == 404

    def test_file_served(self, client, blob_store):
        url = asyncio.run(blob_store.upload("tree.png", b"\x89PNG", "image/png"))
        response = client.get(url)
        assert response.status_code == 200
        assert response.content == b"\x89PNG"
        assert response.headers["content-type"] == "image/png"


class TestDeliveryAndDiscountRoutes:
    def test_default_configuration(self, client):
        data = client.get("/api/delivery/configuration").json()
        assert data["model"] == "zone"
        assert {z["id"] for z in data["zones"]} >= {"central", "sentosa"}

    def test_quote(self, client):
        data = client.post("/api/delivery/quote", json={"postal_code": "098269"}).json()
        assert data["zone_id"] == "sentosa"
        assert data["fee"] == 80

    def test_quote_unknown_postal_code(self, client):
        response = client.post("/api/delivery/quote", json={"postal_code": "999999"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Delivery is not available for postal code 999999"

    def test_validate_discount(self, client, store, save10):
        asyncio.run(store.create_document("discount_codes", save10))
        data = client.post("/api/discounts/validate", json={"code": "save10", "subtotal": 80}).json()
        assert data["amount"] == 8

    def test_validate_unknown_discount(self, client):
        response = client.post("/api/discounts/validate", json={"code": "NOPE", "subtotal": 80})
        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid or expired discount code", "kind": "not_found"}


class TestCheckoutRoutes:
    def test_tree_checkout_end_to_end(self, client, products, store, gateway):
        response = client.post("/api/checkout", json={
            "product_id": products["tree"]["id"], "tree_options": TREE_OPTIONS,
        })
        assert response.status_code == 201
        session = response.json()
        sid = session["id"]
        assert session["steps"] == ["scheduling", "details", "payment", "submitted"]

        assert client.put(f"/api/checkout/{sid}/schedule", json={"men_power": 3}).status_code == 200
        assert client.post(f"/api/checkout/{sid}/advance").json()["step"] == "details"
        assert client.put(f"/api/checkout/{sid}/details", json=DETAILS).status_code == 200
        snap = client.put(f"/api/checkout/{sid}/delivery", json={"postal_code": "018956"}).json()
        assert snap["customer"]["delivery_fee"] == 40
        assert snap["quote"]["total"] == 450 + 0 + 120 + 40
        assert client.post(f"/api/checkout/{sid}/advance").json()["step"] == "payment"

        intent = client.post(f"/api/checkout/{sid}/payment-intent").json()
        assert intent["amount_cents"] == 61000
        done = client.post(f"/api/checkout/{sid}/pay", json={"payment_method": "pm_card_visa"}).json()
        assert done["step"] == "submitted"
        assert done["order"]["total_amount"] == 610
        assert store.docs("orders")[0]["product_id"] == products["tree"]["id"]

    def test_price_comes_from_catalog(self, client, products):
        session = client.post("/api/checkout", json={"product_id": products["baubles"]["id"]}).json()
        assert session["quote"]["base"] == 60
        assert session["steps"][0] == "details"

    def test_schedule_rejection(self, client, products):
        sid = client.post("/api/checkout", json={
            "product_id": products["tree"]["id"], "tree_options": TREE_OPTIONS,
        }).json()["id"]
        response = client.put(f"/api/checkout/{sid}/schedule", json={"rental_period": 30})
        assert response.status_code == 400
        assert response.json()["detail"] == "Rental period of 30 days is not available"

    def test_partial_schedule_update_keeps_other_fields(self, client, products):
        sid = client.post("/api/checkout", json={
            "product_id": products["tree"]["id"], "tree_options": TREE_OPTIONS,
        }).json()["id"]
        client.put(f"/api/checkout/{sid}/schedule", json={"men_power": 5})
        snap = client.put(f"/api/checkout/{sid}/schedule", json={"installation_date": "2026-12-08"}).json()
        assert snap["schedule"]["men_power"] == 5
        assert snap["schedule"]["rental_period"] == 45
        assert snap["schedule"]["installation_service"] is True

    def test_gift_card_checkout(self, client, store):
        sid = client.post("/api/checkout", json={
            "gift_card": {"amount": 75, "is_for_self": True},
        }).json()["id"]
        client.put(f"/api/checkout/{sid}/details", json={"name": "Ana", "email": "a@b.co", "phone": "1"})
        assert client.post(f"/api/checkout/{sid}/advance").status_code == 200
        client.post(f"/api/checkout/{sid}/pay", json={"payment_method": "pm_card_visa"})
        assert store.docs("orders")[0]["total_amount"] == 75

    def test_gift_card_amount_validated(self, client):
        response = client.post("/api/checkout", json={"gift_card": {"amount": 9.99, "is_for_self": True}})
        assert response.status_code == 422

    def test_exactly_one_item(self, client, products):
        response = client.post("/api/checkout", json={
            "product_id": products["tree"]["id"], "gift_card": {"amount": 50, "is_for_self": True},
        })
        assert response.status_code == 400

    def test_upon_request_event(self, client, store):
        event = asyncio.run(store.create_document("events_services", {
            "name": "Gala", "category": "corporate", "price": 0, "price_type": "upon_request",
        }))
        response = client.post("/api/checkout", json={"event_service_id": event["id"]})
        assert response.status_code == 400
        assert "inquiry" in response.json()["detail"]

    def test_discount_routes(self, client, products, store, save10):
        asyncio.run(store.create_document("discount_codes", save10))
        sid = client.post("/api/checkout", json={"product_id": products["baubles"]["id"]}).json()["id"]
        snap = client.post(f"/api/checkout/{sid}/discount", json={"code": "SAVE10"}).json()
        assert snap["discount"]["amount"] == 6
        assert client.post(f"/api/checkout/{sid}/discount", json={"code": "NOPE"}).status_code == 400
        snap = client.delete(f"/api/checkout/{sid}/discount").json()
        assert snap["discount"] is None

    def test_missing_session(self, client):
        assert client.get("/api/checkout/nope").status_code == 404
        assert client.post("/api/checkout/nope/advance").status_code == 404

    def test_abandon(self, client, products):
        sid = client.post("/api/checkout", json={"product_id": products["baubles"]["id"]}).json()["id"]
        assert client.delete(f"/api/checkout/{sid}").json() == {"ok": True}
        assert client.get(f"/api/checkout/{sid}").status_code == 404

    def test_store_outage(self, client, products, store):
        sid = client.post("/api/checkout", json={"product_id": products["baubles"]["id"]}).json()["id"]
        client.put(f"/api/checkout/{sid}/details", json=DETAILS)
        client.put(f"/api/checkout/{sid}/delivery", json={"zone_id": "central"})
        client.post(f"/api/checkout/{sid}/advance")
        store.fail_writes = True
        response = client.post(f"/api/checkout/{sid}/pay", json={"payment_method": "pm_card_visa"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Error placing order. Please try again."

    def test_delivery_locked_after_details(self, client, products, store):
        sid = client.post("/api/checkout", json={"product_id": products["baubles"]["id"]}).json()["id"]
        client.put(f"/api/checkout/{sid}/details", json=DETAILS)
        client.put(f"/api/checkout/{sid}/delivery", json={"zone_id": "central"})
        client.post(f"/api/checkout/{sid}/advance")
        response = client.put(f"/api/checkout/{sid}/delivery", json={"postal_code": "999999"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Go back to the details step to change this"
        assert client.get(f"/api/checkout/{sid}").json()["customer"]["delivery_fee"] == 40

    def test_session_routes_run_on_the_event_loop(self):
        from twinkle.main import app

        routes = [r for r in app.routes if getattr(r, "path", "").startswith("/api/checkout")]
        assert routes
        for route in routes:
            assert inspect.iscoroutinefunction(route.endpoint), route.path

"""
HTTP API tests.

Verifies:
- Every resource endpoint requires a bearer token (health does not)
- Status codes: 201 created, 404 unknown id, 409 conflict, 422 validation
- Insufficient stock responses carry product, available and requested
- Response envelopes: single resource key, paginated lists, {"ok": true} on delete
- CORS headers for configured origins
"""

from stockledger.extensions import db
from stockledger.models import Product
from stockledger.services import auth_service


def _create_product(client, headers, category, **overrides):
    body = {"name": "Denim Jacket", "category_id": category.id, "cost_price": "4.00", "selling_price": "9.50"}
    body.update(overrides)
    return client.post("/api/v1/products", json=body, headers=headers)


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestAuthentication:
    def test_missing_token(self, client, db_session):
        response = client.get("/api/v1/products")
        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_unknown_token(self, client, db_session):
        response = client.get("/api/v1/sales", headers={"Authorization": "Bearer not-a-real-token"})
        assert response.status_code == 401
        assert response.get_json() == {"error": "Invalid or revoked token"}

    def test_revoked_token(self, client, token):
        assert auth_service.revoke_api_token(token) is True
        response = client.get("/api/v1/stock-movements", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_health_is_public(self, client, db_session):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["ledger"]["status"] == "healthy"


# =============================================================================
# CATALOG
# =============================================================================


class TestProductRoutes:
    def test_create_with_opening_stock(self, client, headers, category):
        response = _create_product(client, headers, category, stock=12)

        assert response.status_code == 201
        product = response.get_json()["product"]
        assert product["sku"] == "AG000001"
        assert product["stock"] == 12
        assert product["selling_price"] == 9.5

        movements = client.get(
            f"/api/v1/stock-movements?product_id={product['id']}", headers=headers
        ).get_json()
        assert movements["count"] == 1
        assert movements["items"][0]["reason"] == "adjustment"

    def test_missing_fields(self, client, headers, category):
        response = client.post("/api/v1/products", json={"name": "No price"}, headers=headers)
        assert response.status_code == 422
        assert "category_id" in response.get_json()["details"]

    def test_unknown_field(self, client, headers, category):
        response = _create_product(client, headers, category, version_id=3)
        assert response.status_code == 422
        assert response.get_json()["details"] == {"version_id": "not allowed"}

    def test_duplicate_sku(self, client, headers, category):
        _create_product(client, headers, category, sku="JK-1")
        response = _create_product(client, headers, category, sku="JK-1")
        assert response.status_code == 409

    def test_unknown_product(self, client, headers):
        assert client.get("/api/v1/products/999", headers=headers).status_code == 404
        assert client.put("/api/v1/products/999", json={"name": "x"}, headers=headers).status_code == 404

    def test_list_envelope(self, client, headers, category):
        for i in range(3):
            _create_product(client, headers, category, name=f"Shirt {i}")

        body = client.get("/api/v1/products?per_page=2&search=shirt", headers=headers).get_json()

        assert body["count"] == 2
        assert body["pagination"] == {
            "page": 1,
            "per_page": 2,
            "total": 3,
            "total_pages": 2,
            "has_next": True,
            "has_prev": False,
        }

    def test_delete_referenced_product(self, client, headers, category):
        product = _create_product(client, headers, category, stock=1).get_json()["product"]
        response = client.delete(f"/api/v1/products/{product['id']}", headers=headers)
        assert response.status_code == 409

    def test_delete_unreferenced_product(self, client, headers, category):
        product = _create_product(client, headers, category).get_json()["product"]
        response = client.delete(f"/api/v1/products/{product['id']}", headers=headers)
        assert response.status_code == 200
        assert response.get_json() == {"ok": True}


# =============================================================================
# TRANSACTIONS
# =============================================================================


class TestTransactionRoutes:
    def test_purchase_then_sale(self, client, headers, category, supplier):
        product = _create_product(client, headers, category).get_json()["product"]

        purchase = client.post(
            "/api/v1/purchases",
            json={"supplier_id": supplier.id, "items": [{"product_id": product["id"], "quantity": 10, "cost_price": 2}]},
            headers=headers,
        )
        assert purchase.status_code == 201
        assert purchase.get_json()["purchase"]["total_amount"] == 20.0

        sale = client.post(
            "/api/v1/sales",
            json={"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 4, "selling_price": "9.50"}]},
            headers=headers,
        )
        assert sale.status_code == 201
        assert sale.get_json()["sale"]["total_amount"] == 38.0
        assert db.session.get(Product, product["id"]).stock == 6

    def test_insufficient_stock_details(self, client, headers, category):
        product = _create_product(client, headers, category, name="Wool Coat", stock=2).get_json()["product"]

        response = client.post(
            "/api/v1/sales",
            json={"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 3, "selling_price": 1}]},
            headers=headers,
        )

        assert response.status_code == 422
        body = response.get_json()
        assert body["details"] == {
            "product_id": product["id"],
            "product_name": "Wool Coat",
            "available": 2,
            "requested": 3,
        }
        assert "Available: 2, Requested: 3" in body["error"]
        assert client.get("/api/v1/sales", headers=headers).get_json()["pagination"]["total"] == 0

    def test_sale_validation(self, client, headers, category):
        product = _create_product(client, headers, category, stock=5).get_json()["product"]
        cases = [
            {"items": [{"product_id": product["id"], "quantity": 1, "selling_price": 1}]},
            {"customer_name": "Jane", "items": []},
            {"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 0, "selling_price": 1}]},
            {"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 1.5, "selling_price": 1}]},
            {"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 1, "selling_price": -1}]},
        ]
        for body in cases:
            assert client.post("/api/v1/sales", json=body, headers=headers).status_code == 422

    def test_non_object_body_is_rejected(self, client, headers, category):
        for path in ("/api/v1/sales", "/api/v1/purchases", "/api/v1/stock-movements", "/api/v1/products"):
            response = client.post(path, json=["x"], headers=headers)
            assert response.status_code == 422, path
            assert "expected an object" in response.get_json()["error"]

    def test_quantity_beyond_integer_range(self, client, headers, category):
        product = _create_product(client, headers, category, stock=5).get_json()["product"]
        response = client.post(
            "/api/v1/sales",
            json={"customer_name": "Jane",
                  "items": [{"product_id": product["id"], "quantity": 10**20, "selling_price": 1}]},
            headers=headers,
        )
        assert response.status_code == 422
        assert response.get_json()["details"] == {"items.0.quantity": "is out of range"}

    def test_sale_for_unknown_product(self, client, headers, db_session):
        response = client.post(
            "/api/v1/sales",
            json={"customer_name": "Jane", "items": [{"product_id": 4040, "quantity": 1, "selling_price": 1}]},
            headers=headers,
        )
        assert response.status_code == 404

    def test_purchase_unknown_supplier(self, client, headers, category):
        product = _create_product(client, headers, category).get_json()["product"]
        response = client.post(
            "/api/v1/purchases",
            json={"supplier_id": 999, "items": [{"product_id": product["id"], "quantity": 1, "cost_price": 1}]},
            headers=headers,
        )
        assert response.status_code == 404

    def test_delete_sale(self, client, headers, category):
        product = _create_product(client, headers, category, stock=5).get_json()["product"]
        sale = client.post(
            "/api/v1/sales",
            json={"customer_name": "Jane", "items": [{"product_id": product["id"], "quantity": 5, "selling_price": 1}]},
            headers=headers,
        ).get_json()["sale"]

        response = client.delete(f"/api/v1/sales/{sale['id']}", headers=headers)

        assert response.get_json() == {"ok": True}
        assert client.get(f"/api/v1/sales/{sale['id']}", headers=headers).status_code == 404
        assert db.session.get(Product, product["id"]).stock == 5


# =============================================================================
# STOCK MOVEMENTS
# =============================================================================


class TestStockMovementRoutes:
    def test_manual_adjustment(self, client, headers, category):
        product = _create_product(client, headers, category, stock=5).get_json()["product"]

        response = client.post(
            "/api/v1/stock-movements",
            json={"product_id": product["id"], "type": "out", "quantity": 2, "reason": "adjustment", "notes": "Torn"},
            headers=headers,
        )

        assert response.status_code == 201
        movement = response.get_json()["stock_movement"]
        assert movement["signed_quantity"] == -2
        assert db.session.get(Product, product["id"]).stock == 3

    def test_adjustment_rejections(self, client, headers, category):
        product = _create_product(client, headers, category, stock=5).get_json()["product"]
        base = {"product_id": product["id"], "type": "out", "quantity": 1, "notes": "x"}

        sale_reason = client.post("/api/v1/stock-movements", json={**base, "reason": "sale"}, headers=headers)
        assert sale_reason.status_code == 422
        assert "reason" in sale_reason.get_json()["details"]

        no_notes = client.post(
            "/api/v1/stock-movements", json={k: v for k, v in base.items() if k != "notes"}, headers=headers
        )
        assert no_notes.status_code == 422

        too_many = client.post("/api/v1/stock-movements", json={**base, "quantity": 6}, headers=headers)
        assert too_many.status_code == 422
        assert too_many.get_json()["details"]["available"] == 5

        extra_field = client.post("/api/v1/stock-movements", json={**base, "source_id": 1}, headers=headers)
        assert extra_field.status_code == 422

        huge = client.post("/api/v1/stock-movements", json={**base, "type": "in", "quantity": 10**20}, headers=headers)
        assert huge.status_code == 422
        assert huge.get_json()["details"] == {"quantity": "is out of range"}
        assert db.session.get(Product, product["id"]).stock == 5

    def test_purchase_movement_is_read_only(self, client, headers, category, supplier):
        product = _create_product(client, headers, category).get_json()["product"]
        client.post(
            "/api/v1/purchases",
            json={"supplier_id": supplier.id, "items": [{"product_id": product["id"], "quantity": 3, "cost_price": 1}]},
            headers=headers,
        )
        movement = client.get(
            "/api/v1/stock-movements?reason=purchase", headers=headers
        ).get_json()["items"][0]

        assert client.put(
            f"/api/v1/stock-movements/{movement['id']}", json={"quantity": 1}, headers=headers
        ).status_code == 409
        assert client.delete(f"/api/v1/stock-movements/{movement['id']}", headers=headers).status_code == 409

    def test_reconciliation(self, client, headers, category):
        product = _create_product(client, headers, category, stock=4).get_json()["product"]

        body = client.get("/api/v1/stock-movements/reconciliation", headers=headers).get_json()
        assert body == {"consistent": True, "items": [], "count": 0}

        db.session.query(Product).filter_by(id=product["id"]).update({"stock": 1})
        db.session.commit()

        body = client.get("/api/v1/stock-movements/reconciliation", headers=headers).get_json()
        assert body["consistent"] is False
        assert body["items"][0]["difference"] == -3

        health = client.get("/api/v1/health")
        assert health.status_code == 200
        assert health.get_json()["checks"]["ledger"]["status"] == "degraded"


# =============================================================================
# AUDIT LOG AND CORS
# =============================================================================


class TestAuditAndCors:
    def test_audit_logs(self, client, headers, category):
        product = _create_product(client, headers, category).get_json()["product"]
        client.put(f"/api/v1/products/{product['id']}", json={"name": "Renamed"}, headers=headers)

        body = client.get(
            f"/api/v1/audit-logs?model_type=Product&model_id={product['id']}", headers=headers
        ).get_json()

        assert body["count"] == 2
        assert {entry["action"] for entry in body["items"]} == {"created", "updated"}

    def test_cors_for_allowed_origin(self, client, db_session):
        response = client.get("/api/v1/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_no_cors_for_other_origin(self, client, db_session):
        response = client.get("/api/v1/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in response.headers

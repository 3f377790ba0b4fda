# Overview: Pytest coverage for products, stock movements and manual adjustments.

from grid_manager.extensions import db
from grid_manager.models import Product, StockMovement
from grid_manager.services import order_service, settings_service

from conftest import actor_for, login_headers, refreshed


class TestProductCrud:
    """/api/products"""

    def test_create_with_initial_stock(self, client, manager_a):
        headers = login_headers(client, manager_a)
        resp = client.post(
            "/api/products",
            json={
                "sku": "RJ45-100",
                "name": "Conector RJ45",
                "price": "1.50",
                "cost": "0.80",
                "tax_rate": "10.5",
                "category": "Conectores",
                "initial_stock": 200,
            },
            headers=headers,
        )
        assert resp.status_code == 201
        product = resp.json["product"]
        assert product["price_cents"] == 150
        assert product["tax_rate_bps"] == 1050
        assert product["current_stock"] == 200

        movements = db.session.query(StockMovement).filter_by(product_id=product["id"]).all()
        assert [(m.type, m.quantity, m.reference) for m in movements] == [("ADJUSTMENT", 200, "INITIAL")]

    def test_duplicate_sku_is_409(self, client, manager_a, product_a):
        resp = client.post(
            "/api/products",
            json={"sku": product_a.sku, "name": "Dup"},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 409

    def test_stock_is_not_writable(self, client, manager_a, product_a):
        resp = client.put(
            f"/api/products/{product_a.id}",
            json={"current_stock": 500},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 400
        assert refreshed(Product, product_a.id).current_stock == 10

    def test_list_filters(self, client, manager_a, product_a, product_a2):
        headers = login_headers(client, manager_a)
        body = client.get("/api/products?low_stock=true", headers=headers).json
        assert [p["sku"] for p in body["items"]] == [product_a2.sku]

        body = client.get("/api/products?search=cable", headers=headers).json
        assert [p["sku"] for p in body["items"]] == [product_a.sku]

    def test_categories(self, client, manager_a, product_a):
        headers = login_headers(client, manager_a)
        client.put(f"/api/products/{product_a.id}", json={"category": "Cables"}, headers=headers)
        assert client.get("/api/products/categories", headers=headers).json["items"] == ["Cables"]


class TestProductDeactivation:
    """DELETE /api/products/<id> is a soft delete."""

    def test_unused_product_deactivated(self, client, manager_a, product_a):
        resp = client.delete(f"/api/products/{product_a.id}", headers=login_headers(client, manager_a))
        assert resp.status_code == 200
        assert refreshed(Product, product_a.id).is_active is False

    def test_product_on_open_sale_is_409(self, client, manager_a, branch_a, customer_a, product_a):
        order_service.create_sale(
            actor=actor_for(manager_a),
            customer_id=customer_a.id,
            branch_id=branch_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
        )
        resp = client.delete(f"/api/products/{product_a.id}", headers=login_headers(client, manager_a))
        assert resp.status_code == 409
        assert refreshed(Product, product_a.id).is_active is True


class TestStockAdjustments:
    """POST /api/products/<id>/stock-adjustments"""

    def test_adjustment_moves_stock(self, client, manager_a, product_a):
        headers = login_headers(client, manager_a)
        resp = client.post(
            f"/api/products/{product_a.id}/stock-adjustments",
            json={"quantity": -3, "notes": "Broken in transit"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json["product"]["current_stock"] == 7
        assert resp.json["movement"]["quantity"] == -3

        movements = client.get(f"/api/products/{product_a.id}/stock-movements", headers=headers).json
        assert movements["pagination"]["total"] == 1

    def test_cannot_go_negative(self, client, manager_a, product_a):
        resp = client.post(
            f"/api/products/{product_a.id}/stock-adjustments",
            json={"quantity": -11},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 400
        assert refreshed(Product, product_a.id).current_stock == 10

    def test_negative_allowed_by_setting(self, client, org_a, manager_a, product_a):
        settings_service.update_system_config(org_a.id, {"allow_negative_stock": True})
        resp = client.post(
            f"/api/products/{product_a.id}/stock-adjustments",
            json={"quantity": -11},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 201
        assert refreshed(Product, product_a.id).current_stock == -1

    def test_zero_rejected(self, client, manager_a, product_a):
        resp = client.post(
            f"/api/products/{product_a.id}/stock-adjustments",
            json={"quantity": 0},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 400

    def test_seller_denied(self, client, seller_a, product_a):
        resp = client.post(
            f"/api/products/{product_a.id}/stock-adjustments",
            json={"quantity": 5},
            headers=login_headers(client, seller_a),
        )
        assert resp.status_code == 403

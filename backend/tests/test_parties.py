# Overview: Pytest coverage for customers, suppliers and their accounts.

import pytest

from grid_manager.extensions import db
from grid_manager.models import AuditLog, Customer, Supplier
from grid_manager.services import order_service, party_service
from grid_manager.validation import ValidationError

from conftest import actor_for, login_headers, refreshed


def _confirmed_sale(user, customer, branch, product, quantity=1):
    sale = order_service.create_sale(
        actor=actor_for(user),
        customer_id=customer.id,
        branch_id=branch.id,
        items=[{"product_id": product.id, "quantity": quantity}],
    )
    return order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(user))


class TestCustomerApi:
    """CRUD on /api/customers"""

    def test_create_and_get(self, client, manager_a):
        headers = login_headers(client, manager_a)
        resp = client.post(
            "/api/customers",
            json={"name": "Ferreteria Sur", "email": "Compras@Sur.test", "credit_limit": "1500.00"},
            headers=headers,
        )
        assert resp.status_code == 201
        customer = resp.json["customer"]
        assert customer["email"] == "compras@sur.test"
        assert customer["credit_limit_cents"] == 150000
        assert customer["current_balance_cents"] == 0

        resp = client.get(f"/api/customers/{customer['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.json["customer"]["name"] == "Ferreteria Sur"

        audit = db.session.query(AuditLog).filter_by(resource="customer", resource_id=customer["id"]).one()
        assert audit.action == "CREATE"

    def test_duplicate_email_is_409(self, client, manager_a, customer_a):
        headers = login_headers(client, manager_a)
        resp = client.post("/api/customers", json={"name": "Otro", "email": "CLIENTE@uno.test"}, headers=headers)
        assert resp.status_code == 409

    def test_name_required(self, client, manager_a):
        resp = client.post("/api/customers", json={"email": "a@b.test"}, headers=login_headers(client, manager_a))
        assert resp.status_code == 400

    def test_balance_not_writable(self, client, manager_a, customer_a):
        headers = login_headers(client, manager_a)
        resp = client.put(
            f"/api/customers/{customer_a.id}", json={"current_balance_cents": 999}, headers=headers
        )
        assert resp.status_code == 400
        assert refreshed(Customer, customer_a.id).current_balance_cents == 0

    def test_update(self, client, manager_a, customer_a):
        headers = login_headers(client, manager_a)
        resp = client.put(f"/api/customers/{customer_a.id}", json={"phone": "+54 11 5555-0000"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json["customer"]["phone"] == "+54 11 5555-0000"

    def test_list_search(self, client, manager_a, customer_a):
        headers = login_headers(client, manager_a)
        client.post("/api/customers", json={"name": "Zeta SRL"}, headers=headers)

        body = client.get("/api/customers?search=zeta", headers=headers).json
        assert [c["name"] for c in body["items"]] == ["Zeta SRL"]

        body = client.get("/api/customers?sort_by=name&sort_order=asc", headers=headers).json
        assert [c["name"] for c in body["items"]] == ["Cliente Uno", "Zeta SRL"]


class TestCollections:
    """Collections decrement the customer balance."""

    def test_collection_against_confirmed_sale(self, client, manager_a, branch_a, customer_a, product_a):
        sale = _confirmed_sale(manager_a, customer_a, branch_a, product_a, quantity=2)
        headers = login_headers(client, manager_a)

        resp = client.post(
            f"/api/customers/{customer_a.id}/collections",
            json={"amount": "100.00", "payment_method": "CASH", "sale_id": sale.id},
            headers=headers,
        )
        assert resp.status_code == 201
        assert refreshed(Customer, customer_a.id).current_balance_cents == 24200 - 10000

        account = client.get(f"/api/customers/{customer_a.id}/account", headers=headers).json
        assert account["current_balance_cents"] == 14200
        assert {e["type"] for e in account["entries"]} == {"SALE", "COLLECTION"}
        assert account["entries"][0]["balance_cents"] == 14200

    def test_non_positive_amount_rejected(self, db_session, manager_a, customer_a):
        with pytest.raises(ValidationError):
            party_service.record_collection(
                org_id=customer_a.org_id,
                customer_id=customer_a.id,
                amount_cents=0,
                payment_method="CASH",
                actor=actor_for(manager_a),
            )

    def test_draft_sale_cannot_be_collected(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = order_service.create_sale(
            actor=actor_for(manager_a),
            customer_id=customer_a.id,
            branch_id=branch_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
        )
        with pytest.raises(ValidationError):
            party_service.record_collection(
                org_id=customer_a.org_id,
                customer_id=customer_a.id,
                amount_cents=500,
                payment_method="CASH",
                actor=actor_for(manager_a),
                sale_id=sale.id,
            )

    def test_seller_cannot_record_collection(self, client, seller_a, customer_a):
        resp = client.post(
            f"/api/customers/{customer_a.id}/collections",
            json={"amount": "10.00", "payment_method": "CASH"},
            headers=login_headers(client, seller_a),
        )
        assert resp.status_code == 403


class TestSupplierAccounts:
    """Supplier payments against received purchases."""

    def test_payment_reduces_supplier_balance(self, client, manager_a, branch_a, supplier_a, product_a):
        actor = actor_for(manager_a)
        purchase = order_service.create_purchase(
            actor=actor,
            supplier_id=supplier_a.id,
            branch_id=branch_a.id,
            items=[{"product_id": product_a.id, "quantity": 1, "unit_price": "100.00"}],
        )
        order_service.transition_purchase_status(purchase.id, "RECEIVED", actor)
        assert refreshed(Supplier, supplier_a.id).current_balance_cents == 12100

        headers = login_headers(client, manager_a)
        resp = client.post(
            f"/api/suppliers/{supplier_a.id}/payments",
            json={"amount": "21.00", "payment_method": "TRANSFER", "purchase_id": purchase.id},
            headers=headers,
        )
        assert resp.status_code == 201
        assert refreshed(Supplier, supplier_a.id).current_balance_cents == 10000

        account = client.get(f"/api/suppliers/{supplier_a.id}/account", headers=headers).json
        assert account["current_balance_cents"] == 10000
        assert len(account["entries"]) == 2

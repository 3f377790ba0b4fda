# Overview: Pytest coverage for the order status transition handler.

"""
Order status transition tests.

Verifies:
- Confirming a sale takes stock out per line and charges the customer
- Cancelling a CONFIRMED sale restores stock and balance exactly
- Receiving a purchase adds stock and credits the supplier balance
- A second confirm (even from a stale in-memory copy) is rejected
- Undeclared, unknown and same-status transitions change nothing
- Insufficient stock blocks confirmation unless negative stock is allowed
- A line whose product vanished turns the transition into a not-found
- Parallel confirms from separate connections apply effects once
"""

import threading

import pytest
from sqlalchemy import delete, update

from grid_manager import create_app
from grid_manager.config import TestingConfig
from grid_manager.extensions import db
from grid_manager.models import AuditLog, Customer, Product, Sale, StockMovement, Supplier
from grid_manager.models.auth import ROLE_MANAGER
from grid_manager.models.catalog import MOVEMENT_IN, MOVEMENT_OUT
from grid_manager.services import order_service, settings_service, tenant_service
from grid_manager.services.auth_service import create_user
from grid_manager.services.order_service import (
    InsufficientStockError,
    InvalidTransitionError,
    OrderNotFoundError,
)

from conftest import PASSWORD, actor_for, login_headers, refreshed


def _sale(user, customer, branch, *lines):
    return order_service.create_sale(
        actor=actor_for(user),
        customer_id=customer.id,
        branch_id=branch.id,
        items=[{"product_id": p.id, "quantity": q} for p, q in lines],
    )


def _movements(product_id):
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


# =============================================================================
# SALE CONFIRMATION
# =============================================================================


class TestSaleConfirmation:
    """DRAFT/PENDING -> CONFIRMED applies stock and balance effects."""

    def test_worked_example_totals_and_effects(
        self, db_session, manager_a, branch_a, customer_a, product_a, product_a2
    ):
        """2 x 100.00 + 1 x 50.00 at 21%: 250.00 + 52.50 = 302.50."""
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2), (product_a2, 1))

        assert sale.subtotal_cents == 25000
        assert sale.tax_cents == 5250
        assert sale.total_cents == 30250
        assert sale.to_dict()["total"] == "302.50"
        assert sale.status == "DRAFT"

        order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        assert refreshed(Product, product_a.id).current_stock == 8
        assert refreshed(Product, product_a2.id).current_stock == 4
        assert refreshed(Customer, customer_a.id).current_balance_cents == 30250
        assert refreshed(Sale, sale.id).status == "CONFIRMED"

    def test_confirm_writes_out_movements_with_sale_reference(
        self, db_session, manager_a, branch_a, customer_a, product_a
    ):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 3))
        order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        movements = _movements(product_a.id)
        assert len(movements) == 1
        assert movements[0].type == MOVEMENT_OUT
        assert movements[0].quantity == -3
        assert movements[0].reference == sale.number
        assert movements[0].branch_id == branch_a.id
        assert movements[0].created_by_user_id == manager_a.id

    def test_pending_then_confirm(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 1))
        actor = actor_for(manager_a)

        order_service.transition_sale_status(sale.id, "PENDING", actor)
        assert refreshed(Product, product_a.id).current_stock == 10

        order_service.transition_sale_status(sale.id, "CONFIRMED", actor)
        assert refreshed(Product, product_a.id).current_stock == 9

    def test_status_change_is_audited(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 1))
        order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        entry = (
            db.session.query(AuditLog)
            .filter_by(resource="sale", resource_id=sale.id, action="STATUS_CHANGE")
            .one()
        )
        assert entry.old_values == {"status": "DRAFT"}
        assert entry.new_values == {"status": "CONFIRMED"}
        assert entry.user_id == manager_a.id


# =============================================================================
# SALE CANCELLATION
# =============================================================================


class TestSaleCancellation:
    """CONFIRMED -> CANCELLED reverses exactly what confirmation applied."""

    def test_confirm_then_cancel_restores_state(
        self, db_session, manager_a, branch_a, customer_a, product_a, product_a2
    ):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2), (product_a2, 1))
        actor = actor_for(manager_a)

        order_service.transition_sale_status(sale.id, "CONFIRMED", actor)
        order_service.transition_sale_status(sale.id, "CANCELLED", actor)

        assert refreshed(Product, product_a.id).current_stock == 10
        assert refreshed(Product, product_a2.id).current_stock == 5
        assert refreshed(Customer, customer_a.id).current_balance_cents == 0

        movements = _movements(product_a.id)
        assert [(m.type, m.quantity) for m in movements] == [(MOVEMENT_OUT, -2), (MOVEMENT_IN, 2)]
        assert sum(m.quantity for m in movements) == 0

    def test_cancel_draft_has_no_side_effects(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2))
        order_service.transition_sale_status(sale.id, "CANCELLED", actor_for(manager_a))

        assert refreshed(Product, product_a.id).current_stock == 10
        assert refreshed(Customer, customer_a.id).current_balance_cents == 0
        assert _movements(product_a.id) == []

    def test_cancelled_is_terminal(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 1))
        actor = actor_for(manager_a)
        order_service.transition_sale_status(sale.id, "CANCELLED", actor)

        with pytest.raises(InvalidTransitionError):
            order_service.transition_sale_status(sale.id, "CONFIRMED", actor)

        assert refreshed(Product, product_a.id).current_stock == 10


# =============================================================================
# PURCHASE RECEIPT
# =============================================================================


class TestPurchaseReceipt:
    """DRAFT/PENDING -> RECEIVED adds stock and credits the supplier."""

    def test_receive_adds_stock_and_supplier_balance(
        self, db_session, manager_a, branch_a, supplier_a, product_a, product_a2
    ):
        purchase = order_service.create_purchase(
            actor=actor_for(manager_a),
            supplier_id=supplier_a.id,
            branch_id=branch_a.id,
            items=[
                {"product_id": product_a.id, "quantity": 5},
                {"product_id": product_a2.id, "quantity": 2, "unit_price": "20.00"},
            ],
        )
        # 5 x 60.00 + 2 x 20.00 = 340.00, 21% tax = 71.40
        assert purchase.number.startswith("CPR-")
        assert purchase.subtotal_cents == 34000
        assert purchase.tax_cents == 7140
        assert purchase.total_cents == 41140

        order_service.transition_purchase_status(purchase.id, "RECEIVED", actor_for(manager_a))

        assert refreshed(Product, product_a.id).current_stock == 15
        assert refreshed(Product, product_a2.id).current_stock == 7
        assert refreshed(Supplier, supplier_a.id).current_balance_cents == 41140

        movements = _movements(product_a.id)
        assert [(m.type, m.quantity, m.reference) for m in movements] == [
            (MOVEMENT_IN, 5, purchase.number)
        ]

    def test_received_is_terminal(self, db_session, manager_a, branch_a, supplier_a, product_a):
        purchase = order_service.create_purchase(
            actor=actor_for(manager_a),
            supplier_id=supplier_a.id,
            branch_id=branch_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
        )
        actor = actor_for(manager_a)
        order_service.transition_purchase_status(purchase.id, "RECEIVED", actor)

        for target in ("CANCELLED", "DRAFT", "PENDING"):
            with pytest.raises(InvalidTransitionError):
                order_service.transition_purchase_status(purchase.id, target, actor)

        assert refreshed(Product, product_a.id).current_stock == 11

    def test_purchase_rejects_sale_only_status(self, db_session, manager_a, branch_a, supplier_a, product_a):
        purchase = order_service.create_purchase(
            actor=actor_for(manager_a),
            supplier_id=supplier_a.id,
            branch_id=branch_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
        )
        with pytest.raises(InvalidTransitionError, match="Invalid purchase status"):
            order_service.transition_purchase_status(purchase.id, "CONFIRMED", actor_for(manager_a))


# =============================================================================
# REJECTED TRANSITIONS
# =============================================================================


class TestRejectedTransitions:
    """Rejected transitions raise and leave every entity untouched."""

    def test_double_confirm_applies_effects_once(
        self, db_session, manager_a, branch_a, customer_a, product_a
    ):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2))
        actor = actor_for(manager_a)
        order_service.transition_sale_status(sale.id, "CONFIRMED", actor)

        with pytest.raises(InvalidTransitionError, match="already CONFIRMED"):
            order_service.transition_sale_status(sale.id, "CONFIRMED", actor)

        assert refreshed(Product, product_a.id).current_stock == 8
        assert refreshed(Customer, customer_a.id).current_balance_cents == sale.total_cents
        assert len(_movements(product_a.id)) == 1

    def test_confirm_rereads_status_under_lock(
        self, db_session, manager_a, branch_a, customer_a, product_a
    ):
        """A committed CONFIRMED wins over a stale DRAFT copy in the session."""
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2))
        stale = db.session.get(Sale, sale.id)
        assert stale.status == "DRAFT"

        # Another writer confirms it outside the ORM session.
        with db.engine.begin() as conn:
            conn.execute(update(Sale).where(Sale.id == sale.id).values(status="CONFIRMED"))
        assert stale.status == "DRAFT"

        with pytest.raises(InvalidTransitionError):
            order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        assert refreshed(Product, product_a.id).current_stock == 10
        assert _movements(product_a.id) == []

    def test_confirmed_back_to_draft_rejected(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2))
        actor = actor_for(manager_a)
        order_service.transition_sale_status(sale.id, "CONFIRMED", actor)

        with pytest.raises(InvalidTransitionError) as exc_info:
            order_service.transition_sale_status(sale.id, "DRAFT", actor)

        assert exc_info.value.details["from"] == "CONFIRMED"
        assert exc_info.value.details["allowed"] == ["CANCELLED"]
        assert refreshed(Sale, sale.id).status == "CONFIRMED"
        assert refreshed(Product, product_a.id).current_stock == 8

    def test_same_status_rejected(self, db_session, manager_a, branch_a, customer_a, product_a):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 1))
        with pytest.raises(InvalidTransitionError, match="already DRAFT"):
            order_service.transition_sale_status(sale.id, "DRAFT", actor_for(manager_a))

    @pytest.mark.parametrize("status", ["RECEIVED", "SHIPPED", "", None, 7])
    def test_unknown_status_rejected(self, db_session, manager_a, branch_a, customer_a, product_a, status):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 1))
        with pytest.raises(InvalidTransitionError):
            order_service.transition_sale_status(sale.id, status, actor_for(manager_a))
        assert refreshed(Sale, sale.id).status == "DRAFT"

    def test_missing_sale(self, db_session, manager_a):
        with pytest.raises(OrderNotFoundError):
            order_service.transition_sale_status(999999, "CONFIRMED", actor_for(manager_a))


# =============================================================================
# STOCK GUARD
# =============================================================================


class TestStockGuard:
    """Confirmation re-checks stock at transition time."""

    def test_insufficient_stock_blocks_confirm(
        self, db_session, manager_a, branch_a, customer_a, product_a, product_a2
    ):
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2), (product_a2, 5))

        # Stock drops after the sale was drafted.
        db.session.query(Product).filter_by(id=product_a2.id).update({Product.current_stock: 3})
        db.session.commit()

        with pytest.raises(InsufficientStockError) as exc_info:
            order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        assert exc_info.value.details["items"] == [
            {"product_id": product_a2.id, "requested_quantity": 5, "current_stock": 3}
        ]
        assert refreshed(Sale, sale.id).status == "DRAFT"
        assert refreshed(Product, product_a.id).current_stock == 10
        assert refreshed(Customer, customer_a.id).current_balance_cents == 0
        assert _movements(product_a.id) == []

    def test_insufficient_stock_is_an_invalid_transition(self):
        assert issubclass(InsufficientStockError, InvalidTransitionError)

    def test_negative_stock_allowed_by_setting(
        self, db_session, org_a, manager_a, branch_a, customer_a, product_a
    ):
        settings_service.update_system_config(org_a.id, {"allow_negative_stock": True})
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 12))

        order_service.transition_sale_status(sale.id, "CONFIRMED", actor_for(manager_a))

        assert refreshed(Product, product_a.id).current_stock == -2

    def test_creation_checks_stock(self, db_session, manager_a, branch_a, customer_a, product_a):
        with pytest.raises(InsufficientStockError):
            _sale(manager_a, customer_a, branch_a, (product_a, 11))
        assert db.session.query(Sale).count() == 0


# =============================================================================
# VANISHED PRODUCTS
# =============================================================================


class TestVanishedProduct:
    """A line whose product row is gone makes the whole transition a 404."""

    @pytest.mark.parametrize("allow_negative", [False, True])
    def test_confirm_is_not_found_and_changes_nothing(
        self, client, org_a, manager_a, branch_a, customer_a, product_a, product_a2, allow_negative
    ):
        settings_service.update_system_config(org_a.id, {"allow_negative_stock": allow_negative})
        sale = _sale(manager_a, customer_a, branch_a, (product_a, 2), (product_a2, 1))
        missing_id = product_a2.id

        db.session.execute(delete(Product).where(Product.id == missing_id))
        db.session.commit()

        resp = client.patch(
            f"/api/sales/{sale.id}/status",
            json={"status": "CONFIRMED"},
            headers=login_headers(client, manager_a),
        )

        assert resp.status_code == 404
        assert resp.json["details"] == {"product_id": missing_id}
        assert refreshed(Sale, sale.id).status == "DRAFT"
        assert refreshed(Product, product_a.id).current_stock == 10
        assert refreshed(Customer, customer_a.id).current_balance_cents == 0
        assert db.session.query(StockMovement).count() == 0

    def test_receive_is_not_found(self, db_session, manager_a, branch_a, supplier_a, product_a, product_a2):
        actor = actor_for(manager_a)
        purchase = order_service.create_purchase(
            actor=actor,
            supplier_id=supplier_a.id,
            branch_id=branch_a.id,
            items=[
                {"product_id": product_a.id, "quantity": 4},
                {"product_id": product_a2.id, "quantity": 1},
            ],
        )
        db.session.execute(delete(Product).where(Product.id == product_a2.id))
        db.session.commit()

        with pytest.raises(OrderNotFoundError):
            order_service.transition_purchase_status(purchase.id, "RECEIVED", actor)

        assert refreshed(Product, product_a.id).current_stock == 10
        assert refreshed(Supplier, supplier_a.id).current_balance_cents == 0
        assert db.session.query(StockMovement).count() == 0


# =============================================================================
# CONCURRENT CONFIRMATION
# =============================================================================


class TestConcurrentConfirm:
    """Parallel confirms of one sale apply exactly one set of side effects."""

    THREADS = 4

    @pytest.fixture
    def file_app(self, tmp_path):
        """App on a file-backed SQLite database so threads get their own connections."""
        config = type(
            "FileDatabaseConfig",
            (TestingConfig,),
            {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}"},
        )
        app = create_app(config)
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.engine.dispose()

    def _seed(self):
        org = tenant_service.create_organization("Concurrency Org", "concurrency")
        branch = tenant_service.create_branch(org.id, "Main")
        user = create_user(
            org_id=org.id,
            email="manager@concurrency.test",
            name="Manager",
            password=PASSWORD,
            role=ROLE_MANAGER,
        )
        customer = Customer(org_id=org.id, name="Parallel Customer")
        product = Product(
            org_id=org.id, sku="PAR-1", name="Parallel", price_cents=10000, tax_rate_bps=2100, current_stock=10
        )
        db.session.add_all([customer, product])
        db.session.commit()

        actor = actor_for(user)
        sale = order_service.create_sale(
            actor=actor,
            customer_id=customer.id,
            branch_id=branch.id,
            items=[{"product_id": product.id, "quantity": 3}],
        )
        return actor, sale.id, product.id, customer.id

    def test_only_one_confirm_wins(self, file_app):
        with file_app.app_context():
            actor, sale_id, product_id, customer_id = self._seed()

        barrier = threading.Barrier(self.THREADS)
        results = []
        lock = threading.Lock()

        def confirm():
            with file_app.app_context():
                barrier.wait()
                try:
                    order_service.transition_sale_status(sale_id, "CONFIRMED", actor)
                    outcome = "ok"
                except InvalidTransitionError as e:
                    outcome = str(e)
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=confirm) for _ in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(results) == ["Sale is already CONFIRMED"] * (self.THREADS - 1) + ["ok"]

        with file_app.app_context():
            assert db.session.get(Product, product_id).current_stock == 7
            assert db.session.get(Customer, customer_id).current_balance_cents == 12100
            assert db.session.query(StockMovement).filter_by(product_id=product_id).count() == 1
            assert db.session.query(AuditLog).filter_by(action="STATUS_CHANGE").count() == 1

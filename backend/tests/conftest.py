"""
Pytest fixtures for Grid Manager backend tests.

Provides test database setup, two tenants with branches, one user per role,
a small catalog, a customer and a supplier, plus auth helpers for the
test client.
"""

import pytest

from grid_manager import create_app
from grid_manager.config import TestingConfig
from grid_manager.extensions import db
from grid_manager.models import Customer, Product, Supplier
from grid_manager.models.auth import ROLE_ADMIN, ROLE_ANALYST, ROLE_MANAGER, ROLE_SELLER
from grid_manager.services import tenant_service
from grid_manager.services.auth_service import create_user
from grid_manager.services.tenant_service import Actor


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    return tenant_service.create_organization("Org A - Acme Corp", "acme")


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    return tenant_service.create_organization("Org B - Beta Inc", "beta")


@pytest.fixture(scope='function')
def branch_a(db_session, org_a):
    return tenant_service.create_branch(org_a.id, "Central A")


@pytest.fixture(scope='function')
def branch_a2(db_session, org_a):
    return tenant_service.create_branch(org_a.id, "North A")


@pytest.fixture(scope='function')
def branch_b(db_session, org_b):
    return tenant_service.create_branch(org_b.id, "Central B")


def _user(org, role, email, branch=None):
    return create_user(
        org_id=org.id,
        email=email,
        name=f"{role.title()} {org.slug}",
        password=PASSWORD,
        role=role,
        branch_id=branch.id if branch else None,
    )


@pytest.fixture(scope='function')
def admin_a(db_session, org_a):
    return _user(org_a, ROLE_ADMIN, "admin@acme.test")


@pytest.fixture(scope='function')
def manager_a(db_session, org_a):
    return _user(org_a, ROLE_MANAGER, "manager@acme.test")


@pytest.fixture(scope='function')
def analyst_a(db_session, org_a):
    return _user(org_a, ROLE_ANALYST, "analyst@acme.test")


@pytest.fixture(scope='function')
def seller_a(db_session, org_a, branch_a):
    """SELLER pinned to branch_a."""
    return _user(org_a, ROLE_SELLER, "seller@acme.test", branch_a)


@pytest.fixture(scope='function')
def seller_a2(db_session, org_a, branch_a):
    """Second SELLER in branch_a."""
    return _user(org_a, ROLE_SELLER, "seller2@acme.test", branch_a)


@pytest.fixture(scope='function')
def admin_b(db_session, org_b):
    return _user(org_b, ROLE_ADMIN, "admin@beta.test")


def _product(org, sku, name, price_cents, stock, tax_rate_bps=2100, cost_cents=0, min_stock=0):
    product = Product(
        org_id=org.id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        cost_cents=cost_cents,
        tax_rate_bps=tax_rate_bps,
        current_stock=stock,
        min_stock=min_stock,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session, org_a):
    """100.00 at 21%, 10 in stock."""
    return _product(org_a, "PROD-A-001", "Cable UTP", 10000, 10, cost_cents=6000)


@pytest.fixture(scope='function')
def product_a2(db_session, org_a):
    """50.00 at 21%, 5 in stock."""
    return _product(org_a, "PROD-A-002", "Switch 8p", 5000, 5, cost_cents=3000, min_stock=5)


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    return _product(org_b, "PROD-B-001", "Beta Widget", 2000, 50)


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, name="Cliente Uno", email="cliente@uno.test")
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, org_b):
    customer = Customer(org_id=org_b.id, name="Beta Customer")
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier_a(db_session, org_a):
    supplier = Supplier(org_id=org_a.id, name="Proveedor Uno", email="ventas@proveedor.test")
    db.session.add(supplier)
    db.session.commit()
    return supplier


def actor_for(user) -> Actor:
    """Service-level Actor for a fixture user."""
    return Actor.from_user(user)


def refreshed(model, entity_id):
    """Reload an entity from the database, discarding identity-map state."""
    db.session.expire_all()
    return db.session.get(model, entity_id)


def get_auth_token(client, email: str, password: str = PASSWORD, org_slug: str | None = None) -> str:
    """Helper to get auth token for a user."""
    payload = {'email': email, 'password': password}
    if org_slug:
        payload['org_slug'] = org_slug
    response = client.post('/api/auth/login', json=payload)
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def login_headers(client, user) -> dict:
    return auth_headers(get_auth_token(client, user.email))

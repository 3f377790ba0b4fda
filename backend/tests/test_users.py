# Overview: Pytest coverage for organization user management.

"""
User management tests.

Verifies:
- /api/users is MANAGER+ and scoped to the caller's organization
- Only an ADMIN may touch ADMIN users or grant the ADMIN role
- Deactivation and branch moves revoke sessions
- Password changes: self needs the current password, others need MANAGER+
"""

import pytest

from grid_manager.extensions import db
from grid_manager.models import AuditLog, SessionToken, User
from grid_manager.services import session_service, user_service
from grid_manager.services.auth_service import verify_password
from grid_manager.services.permission_service import PermissionDeniedError

from conftest import PASSWORD, actor_for, get_auth_token, login_headers, refreshed


NEW_PASSWORD = "Changed456$"


class TestUserListing:
    """GET /api/users"""

    def test_filters_and_search(self, client, admin_a, manager_a, seller_a, admin_b, branch_a):
        headers = login_headers(client, manager_a)

        body = client.get("/api/users", headers=headers).json
        assert body["pagination"]["total"] == 3
        assert admin_b.email not in [u["email"] for u in body["items"]]

        body = client.get("/api/users?role=SELLER", headers=headers).json
        assert [u["id"] for u in body["items"]] == [seller_a.id]
        body = client.get(f"/api/users?branch_id={branch_a.id}", headers=headers).json
        assert [u["id"] for u in body["items"]] == [seller_a.id]
        body = client.get("/api/users?search=ADMIN@acme", headers=headers).json
        assert [u["id"] for u in body["items"]] == [admin_a.id]
        assert all("password_hash" not in u for u in body["items"])

        assert client.get("/api/users?role=OWNER", headers=headers).status_code == 400

    def test_seller_and_analyst_denied(self, client, seller_a, analyst_a):
        for user in (seller_a, analyst_a):
            assert client.get("/api/users", headers=login_headers(client, user)).status_code == 403

    def test_other_tenant_user_is_404(self, client, manager_a, admin_b):
        headers = login_headers(client, manager_a)
        assert client.get(f"/api/users/{admin_b.id}", headers=headers).status_code == 404
        assert client.put(f"/api/users/{admin_b.id}", json={"name": "X"}, headers=headers).status_code == 404


class TestUserCreate:
    """POST /api/users"""

    def test_manager_creates_seller(self, client, manager_a, branch_a):
        resp = client.post(
            "/api/users",
            json={"email": "Nuevo@Acme.test", "name": "Nuevo", "password": PASSWORD, "branch_id": branch_a.id},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 201
        assert resp.json["user"]["role"] == "SELLER"
        assert resp.json["user"]["email"] == "nuevo@acme.test"
        assert db.session.query(AuditLog).filter_by(resource="user", action="CREATE").count() == 1
        assert get_auth_token(client, "nuevo@acme.test") is not None

    def test_manager_cannot_create_admin(self, client, manager_a):
        resp = client.post(
            "/api/users",
            json={"email": "boss@acme.test", "name": "Boss", "password": PASSWORD, "role": "ADMIN"},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 403
        assert db.session.query(User).filter_by(email="boss@acme.test").count() == 0

    @pytest.mark.parametrize("payload", [
        {"email": "weak@acme.test", "name": "Weak", "password": "short"},
        {"email": "manager@acme.test", "name": "Dup", "password": PASSWORD},
        {"email": "nobody", "name": "Bad", "password": PASSWORD},
    ])
    def test_invalid_create(self, client, manager_a, payload):
        resp = client.post("/api/users", json=payload, headers=login_headers(client, manager_a))
        assert resp.status_code == 400


class TestUserUpdate:
    """PUT /api/users/<id>"""

    def test_update_profile_and_audit(self, client, manager_a, seller_a):
        resp = client.put(
            f"/api/users/{seller_a.id}",
            json={"name": "Vendedora Centro", "role": "ANALYST"},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "ANALYST"

        audit = db.session.query(AuditLog).filter_by(resource="user", resource_id=seller_a.id).one()
        assert audit.old_values["role"] == "SELLER"
        assert audit.new_values["name"] == "Vendedora Centro"

    def test_manager_cannot_touch_admins(self, client, manager_a, admin_a, seller_a):
        headers = login_headers(client, manager_a)
        assert client.put(f"/api/users/{admin_a.id}", json={"name": "X"}, headers=headers).status_code == 403
        resp = client.put(f"/api/users/{seller_a.id}", json={"role": "ADMIN"}, headers=headers)
        assert resp.status_code == 403
        assert refreshed(User, seller_a.id).role == "SELLER"

    def test_admin_can_promote(self, client, admin_a, manager_a):
        resp = client.put(f"/api/users/{manager_a.id}", json={"role": "ADMIN"}, headers=login_headers(client, admin_a))
        assert resp.status_code == 200

    def test_cannot_deactivate_or_demote_self(self, client, manager_a):
        headers = login_headers(client, manager_a)
        assert client.put(f"/api/users/{manager_a.id}", json={"status": "INACTIVE"}, headers=headers).status_code == 400
        assert client.put(f"/api/users/{manager_a.id}", json={"role": "SELLER"}, headers=headers).status_code == 400
        assert refreshed(User, manager_a.id).status == "ACTIVE"

    def test_deactivation_revokes_sessions(self, client, manager_a, seller_a):
        seller_headers = login_headers(client, seller_a)
        resp = client.put(
            f"/api/users/{seller_a.id}", json={"status": "INACTIVE"}, headers=login_headers(client, manager_a)
        )
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=seller_headers).status_code == 401
        assert all(s.is_revoked for s in db.session.query(SessionToken).filter_by(user_id=seller_a.id))

    def test_branch_move(self, client, manager_a, seller_a, branch_a2, branch_b):
        headers = login_headers(client, manager_a)
        session_service.create_session(seller_a.id)

        resp = client.put(f"/api/users/{seller_a.id}", json={"branch_id": branch_b.id}, headers=headers)
        assert resp.status_code == 400
        assert refreshed(User, seller_a.id).branch_id != branch_b.id

        resp = client.put(f"/api/users/{seller_a.id}", json={"branch_id": branch_a2.id}, headers=headers)
        assert resp.status_code == 200
        assert db.session.query(SessionToken).filter_by(user_id=seller_a.id, is_revoked=False).count() == 0

    def test_email_taken_is_409(self, client, manager_a, seller_a):
        resp = client.put(
            f"/api/users/{seller_a.id}", json={"email": "MANAGER@acme.test"}, headers=login_headers(client, manager_a)
        )
        assert resp.status_code == 409


class TestChangePassword:
    """POST /api/users/<id>/change-password"""

    def test_own_password_needs_current(self, client, seller_a):
        headers = login_headers(client, seller_a)
        url = f"/api/users/{seller_a.id}/change-password"

        resp = client.post(url, json={"current_password": "Wrong123!", "new_password": NEW_PASSWORD}, headers=headers)
        assert resp.status_code == 400
        resp = client.post(url, json={"current_password": PASSWORD, "new_password": "weak"}, headers=headers)
        assert resp.status_code == 400

        resp = client.post(url, json={"current_password": PASSWORD, "new_password": NEW_PASSWORD}, headers=headers)
        assert resp.status_code == 200
        assert verify_password(NEW_PASSWORD, refreshed(User, seller_a.id).password_hash)
        # the caller stays signed in
        assert client.get("/api/auth/me", headers=headers).status_code == 200

    def test_seller_cannot_change_others(self, client, seller_a, seller_a2):
        resp = client.post(
            f"/api/users/{seller_a2.id}/change-password",
            json={"new_password": NEW_PASSWORD},
            headers=login_headers(client, seller_a),
        )
        assert resp.status_code == 403
        assert verify_password(PASSWORD, refreshed(User, seller_a2.id).password_hash)

    def test_manager_resets_seller(self, client, manager_a, seller_a):
        seller_headers = login_headers(client, seller_a)
        resp = client.post(
            f"/api/users/{seller_a.id}/change-password",
            json={"new_password": NEW_PASSWORD},
            headers=login_headers(client, manager_a),
        )
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=seller_headers).status_code == 401
        assert get_auth_token(client, seller_a.email, NEW_PASSWORD) is not None

        audit = db.session.query(AuditLog).filter_by(resource="user", resource_id=seller_a.id).one()
        assert audit.new_values == {"password_changed": True}

    def test_manager_cannot_reset_admin(self, db_session, manager_a, admin_a):
        with pytest.raises(PermissionDeniedError):
            user_service.change_password(
                org_id=manager_a.org_id, user_id=admin_a.id, new_password=NEW_PASSWORD, actor=actor_for(manager_a)
            )

# Overview: Pytest coverage for authentication, sessions and role checks.

"""
Authentication and authorization tests.

Verifies:
- Login returns an opaque token whose hash (not the token) is stored
- Bad credentials are 401 and logged as LOGIN_FAILED
- An email shared by two organizations needs org_slug
- Logout, idle timeout and deactivated users end the session
- Role hierarchy SELLER < ANALYST < MANAGER < ADMIN is enforced with 403
- Tenant sign-up creates an organization, its branch and an ADMIN in one step
"""

from datetime import timedelta

import pytest

from grid_manager.extensions import db
from grid_manager.models import Branch, Organization, SecurityEvent, SessionToken, User
from grid_manager.models.auth import ROLE_ADMIN, ROLE_ANALYST, ROLE_MANAGER, ROLE_SELLER, USER_INACTIVE
from grid_manager.services import auth_service, permission_service, session_service, tenant_service
from grid_manager.services.auth_service import PasswordValidationError, UserCreationError
from grid_manager.time_utils import utcnow

from conftest import PASSWORD, auth_headers, get_auth_token


class TestLogin:
    """POST /api/auth/login"""

    def test_login_success(self, client, manager_a, org_a):
        resp = client.post("/api/auth/login", json={"email": "MANAGER@acme.test", "password": PASSWORD})
        assert resp.status_code == 200

        body = resp.json
        assert body["user"]["email"] == "manager@acme.test"
        assert "password_hash" not in body["user"]
        assert body["org_id"] == org_a.id
        assert len(body["token"]) == 64

        stored = db.session.query(SessionToken).filter_by(user_id=manager_a.id).one()
        assert stored.token_hash == session_service.hash_token(body["token"])
        assert stored.token_hash != body["token"]

    def test_wrong_password(self, client, manager_a):
        resp = client.post("/api/auth/login", json={"email": manager_a.email, "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid credentials"

        event = db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.success is False

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "x@y.z"}).status_code == 400

    def test_ambiguous_email_needs_org_slug(self, client, org_a, org_b):
        for org in (org_a, org_b):
            auth_service.create_user(
                org_id=org.id, email="shared@example.test", name="Shared", password=PASSWORD, role=ROLE_ADMIN
            )

        assert get_auth_token(client, "shared@example.test") is None

        resp = client.post(
            "/api/auth/login",
            json={"email": "shared@example.test", "password": PASSWORD, "org_slug": "beta"},
        )
        assert resp.status_code == 200
        assert resp.json["org_id"] == org_b.id

    def test_inactive_org_cannot_login(self, client, manager_a, org_a):
        org_a.is_active = False
        db.session.commit()
        assert get_auth_token(client, manager_a.email) is None


class TestSessions:
    """Bearer session lifecycle."""

    def test_me_and_logout(self, client, seller_a, branch_a):
        token = get_auth_token(client, seller_a.email)
        headers = auth_headers(token)

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json["branch_id"] == branch_a.id

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_missing_and_garbage_tokens(self, client, db_session):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers=auth_headers("not-a-token")).status_code == 401

    def test_idle_session_is_revoked(self, client, manager_a):
        token = get_auth_token(client, manager_a.email)
        session = db.session.query(SessionToken).filter_by(user_id=manager_a.id).one()
        session.last_used_at = utcnow() - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db.session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

        db.session.expire_all()
        session = db.session.query(SessionToken).filter_by(user_id=manager_a.id).one()
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_deactivated_user_loses_session(self, client, manager_a):
        token = get_auth_token(client, manager_a.email)
        manager_a.status = USER_INACTIVE
        db.session.commit()
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_cleanup_removes_old_revoked_sessions(self, db_session, manager_a):
        session, _ = session_service.create_session(manager_a.id)
        session.created_at = utcnow() - session_service.SESSION_RETENTION - timedelta(days=1)
        session.is_revoked = True
        db.session.commit()

        assert session_service.cleanup_expired_sessions() == 1
        assert db.session.query(SessionToken).count() == 0


class TestUserCreation:
    """auth_service.create_user"""

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, db_session, org_a, password):
        with pytest.raises(PasswordValidationError):
            auth_service.create_user(org_id=org_a.id, email="weak@acme.test", name="Weak", password=password)

    def test_duplicate_email_in_org(self, db_session, org_a, manager_a):
        with pytest.raises(UserCreationError):
            auth_service.create_user(
                org_id=org_a.id, email="Manager@Acme.test", name="Dup", password=PASSWORD
            )

    def test_branch_must_belong_to_org(self, db_session, org_a, branch_b):
        with pytest.raises(UserCreationError):
            auth_service.create_user(
                org_id=org_a.id, email="x@acme.test", name="X", password=PASSWORD, branch_id=branch_b.id
            )


class TestRoleHierarchy:
    """SELLER < ANALYST < MANAGER < ADMIN"""

    @pytest.mark.parametrize(
        "role,minimum,allowed",
        [
            (ROLE_SELLER, ROLE_SELLER, True),
            (ROLE_SELLER, ROLE_ANALYST, False),
            (ROLE_ANALYST, ROLE_MANAGER, False),
            (ROLE_MANAGER, ROLE_ANALYST, True),
            (ROLE_ADMIN, ROLE_MANAGER, True),
            (None, ROLE_SELLER, False),
        ],
    )
    def test_role_satisfies(self, role, minimum, allowed):
        assert permission_service.role_satisfies(role, minimum) is allowed

    def test_seller_denied_reports(self, client, seller_a):
        resp = client.get("/api/reports/dashboard", headers=auth_headers(get_auth_token(client, seller_a.email)))
        assert resp.status_code == 403

    def test_analyst_allowed_reports(self, client, analyst_a):
        resp = client.get("/api/reports/dashboard", headers=auth_headers(get_auth_token(client, analyst_a.email)))
        assert resp.status_code == 200


class TestTenantRegistration:
    """POST /api/auth/register-tenant"""

    PAYLOAD = {
        "tenant_name": "Ferretería del Sur",
        "name": "Lucia Gomez",
        "email": "Lucia@Sur.test",
        "password": PASSWORD,
    }

    def test_register_creates_tenant_and_signs_in(self, client, db_session):
        resp = client.post("/api/auth/register-tenant", json=self.PAYLOAD)
        assert resp.status_code == 201

        body = resp.json
        assert body["organization"]["slug"] == "ferreteria-del-sur"
        assert body["branch"]["name"] == "Main Branch"
        assert body["user"]["role"] == "ADMIN"
        assert body["user"]["email"] == "lucia@sur.test"
        assert body["user"]["org_id"] == body["organization"]["id"]

        me = client.get("/api/auth/me", headers=auth_headers(body["token"]))
        assert me.status_code == 200
        assert me.json["org_id"] == body["organization"]["id"]

    def test_same_name_gets_suffixed_slug(self, client, db_session):
        client.post("/api/auth/register-tenant", json=self.PAYLOAD)
        resp = client.post(
            "/api/auth/register-tenant", json={**self.PAYLOAD, "email": "otra@sur.test"}
        )
        assert resp.status_code == 201
        assert resp.json["organization"]["slug"] == "ferreteria-del-sur-2"

    def test_weak_password_creates_nothing(self, client, db_session):
        resp = client.post("/api/auth/register-tenant", json={**self.PAYLOAD, "password": "weakpass"})
        assert resp.status_code == 400
        assert db.session.query(Organization).count() == 0
        assert db.session.query(Branch).count() == 0
        assert db.session.query(User).count() == 0

    @pytest.mark.parametrize("missing", ["tenant_name", "name", "email", "password"])
    def test_missing_field(self, client, db_session, missing):
        payload = {k: v for k, v in self.PAYLOAD.items() if k != missing}
        resp = client.post("/api/auth/register-tenant", json=payload)
        assert resp.status_code == 400
        assert missing in resp.json["error"]

    def test_disabled_by_config(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_TENANT_REGISTRATION", False)
        assert client.post("/api/auth/register-tenant", json=self.PAYLOAD).status_code == 403

    def test_slugify(self):
        assert tenant_service.slugify("  Café & Té S.A. ") == "cafe-te-s-a"
        assert tenant_service.slugify("!!!") == "org"

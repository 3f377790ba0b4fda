# Overview: Pytest coverage for the flask CLI command groups.

from datetime import timedelta

from grid_manager.extensions import db
from grid_manager.models import Branch, Organization, SessionToken, User
from grid_manager.services import session_service
from grid_manager.time_utils import utcnow

from conftest import refreshed


class TestSystemInit:
    """flask system init"""

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0
        assert "Created organization" in result.output

        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0
        assert "Using existing organization" in result.output

        assert db.session.query(Organization).filter_by(slug="default").count() == 1
        assert db.session.query(Branch).count() == 1
        admin = db.session.query(User).one()
        assert admin.email == "admin@gridmanager.local"
        assert admin.role == "ADMIN"


class TestOrgCommands:
    def test_create_list_and_add_branch(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["orgs", "create", "--name", "Delta SA", "--slug", "delta"])
        assert "PASS" in result.output
        org = db.session.query(Organization).filter_by(slug="delta").one()

        result = runner.invoke(args=["orgs", "add-branch", "--org-id", str(org.id), "--name", "Rosario"])
        assert "PASS Created branch: Rosario" in result.output

        result = runner.invoke(args=["orgs", "list"])
        assert "delta" in result.output
        assert "Rosario" in result.output

    def test_duplicate_slug_reported(self, app, org_a):
        result = app.test_cli_runner().invoke(args=["orgs", "create", "--name", "Other", "--slug", "acme"])
        assert "FAIL" in result.output


class TestUserCommands:
    def test_list_filters_by_org(self, app, admin_a, admin_b, org_b):
        result = app.test_cli_runner().invoke(args=["users", "list", "--org-id", str(org_b.id)])
        assert admin_b.email in result.output
        assert admin_a.email not in result.output

    def test_create_rejects_weak_password(self, app, org_a):
        result = app.test_cli_runner().invoke(
            args=[
                "users", "create", "--org-id", str(org_a.id), "--email", "weak@acme.test",
                "--name", "Weak", "--password", "short", "--role", "SELLER",
            ]
        )
        assert "Password validation failed" in result.output
        assert db.session.query(User).filter_by(email="weak@acme.test").count() == 0

    def test_deactivate_revokes_sessions(self, app, manager_a):
        session_service.create_session(manager_a.id)

        result = app.test_cli_runner().invoke(args=["users", "deactivate", "--user-id", str(manager_a.id)])
        assert "revoked 1 sessions" in result.output
        assert refreshed(User, manager_a.id).status == "INACTIVE"
        assert all(s.is_revoked for s in db.session.query(SessionToken).all())


class TestMaintenance:
    def test_cleanup_sessions(self, app, manager_a):
        session_service.create_session(manager_a.id)
        old = db.session.query(SessionToken).one()
        old.is_revoked = True
        old.created_at = utcnow() - timedelta(days=40)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-sessions"])
        assert result.output.strip() == "Deleted 1 expired or revoked sessions."
        assert db.session.query(SessionToken).count() == 0

import pytest
from werkzeug.security import generate_password_hash

from app.rukem import create_app
from app.rukem.auth import AuthState, LoginThrottle, throttle
from app.rukem.db import session_scope
from app.rukem.models import Base, User
from scripts.init_db import seed_roles


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        roles = seed_roles(s)
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(roles["admin_rw"])
        op = User(email="operator@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        op.roles.append(roles["operator"])
        s.add_all([admin, op])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _fresh_throttle():
    throttle._attempts.clear()
    yield
    throttle._attempts.clear()


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_public_index_and_stats(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"RUKEM" in r.data

    r = client.get("/public/stats")
    assert r.status_code == 200
    assert r.json == {"members": 0, "balance": 0, "benefits_paid": 0, "benefits_count": 0, "deaths": 0}


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Dashboard" in r.data


def test_bad_password_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=True)
    assert b"Invalid credentials." in r.data
    r = client.get("/admin/")
    assert r.status_code == 302


def test_auth_state_resolved_per_request(app):
    from flask import g

    from app.rukem.auth import load_current_user

    with app.test_request_context("/admin/"):
        load_current_user()
        assert g.auth_state == AuthState.ANONYMOUS
        assert g.current_user is None


def test_operator_cannot_open_benefits(client):
    _login(client, "operator@example.com")
    r = client.get("/admin/")
    assert r.status_code == 200
    r = client.get("/admin/benefits")
    assert r.status_code == 403


def test_post_without_csrf_token_rejected(client):
    _login(client)
    r = client.post("/admin/ledger/new", data={"direction": "in", "amount": "1000", "category": "dues"})
    assert r.status_code == 400


def test_logout(client):
    _login(client)
    r = client.get("/auth/logout")
    assert r.status_code == 302
    r = client.get("/admin/")
    assert r.status_code == 302


def test_audit_and_me_pages(client):
    _login(client)
    assert client.get("/admin/me").status_code == 200
    r = client.get("/admin/audit")
    assert r.status_code == 200
    assert b"auth.login" in r.data


def test_accounts_managed_by_admin_only(app, client):
    _login(client, "operator@example.com")
    assert client.get("/admin/accounts").status_code == 403
    client.get("/auth/logout")

    _login(client)
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    r = client.post(
        "/admin/accounts/new",
        data={"csrf_token": "test-token", "email": "rt01@example.com", "password": "longenough"},
        follow_redirects=True,
    )
    assert b"Account created for rt01@example.com." in r.data

    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "rt01@example.com").one().is_active


def test_account_rules(app):
    from app.rukem.accounts import create_account, update_account, update_profile
    from app.rukem.errors import InvalidTransitionError, ValidationError

    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        with pytest.raises(ValidationError) as exc:
            create_account(s, email="operator@example.com", password="short", actor=admin)
        assert "An account with this email already exists." in exc.value.errors
        assert len(exc.value.errors) == 2

        with pytest.raises(InvalidTransitionError):
            update_account(s, admin, actor=admin, is_active=False, role_ids=[])

        op = s.query(User).filter(User.email == "operator@example.com").one()
        update_account(s, op, actor=admin, is_active=False, role_ids=[])
        assert not op.is_active
        assert op.roles == []

        with pytest.raises(ValidationError):
            update_profile(s, admin, full_name="Pak RW", password="longenough", password_confirm="different")


def test_deactivated_account_is_signed_out(app, client):
    _login(client, "operator@example.com")
    assert client.get("/admin/").status_code == 200

    with session_scope(app) as s:
        s.query(User).filter(User.email == "operator@example.com").one().is_active = False

    r = client.get("/admin/")
    assert r.status_code == 302


def test_login_throttle_window():
    t = LoginThrottle(limit=2, window_seconds=60)
    assert not t.blocked("10.0.0.1")
    t.hit("10.0.0.1")
    t.hit("10.0.0.1")
    assert t.blocked("10.0.0.1")
    assert not t.blocked("10.0.0.2")
    t.reset("10.0.0.1")
    assert not t.blocked("10.0.0.1")


def test_repeated_failures_lock_out_login(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Too many login attempts." in r.data
    assert client.get("/admin/").status_code == 302

import io
from datetime import date

import pytest
from openpyxl import load_workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.rukem import create_app
from app.rukem.db import session_scope
from app.rukem.models import AuditEvent, Base, User
from app.rukem.modules.benefits.service import approve_claim, create_claim
from app.rukem.modules.deaths.service import record_death
from app.rukem.modules.ledger.models import Direction, LedgerCategory
from app.rukem.modules.ledger.service import append_entry
from app.rukem.modules.members.service import create_member
from app.rukem.modules.reports.exporters import build_report, render
from app.rukem.modules.reports import service as stats_service
from app.rukem.modules.reports.service import dashboard_stats, public_stats, recent_deaths
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
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(roles["admin_rw"])
        s.add(u)
        s.flush()
        create_member(s, {"household_head_name": "Ani", "rt": "001", "rw": "002"}, u)
        budi = create_member(s, {"household_head_name": "Budi", "register_membership": True}, u)
        append_entry(
            s,
            direction=Direction.IN,
            amount=10_000_000,
            category=LedgerCategory.DUES,
            entry_date=date.today(),
            memo="Dues",
            user=u,
        )
        death = record_death(s, member_id=budi.id, date_of_death=date.today(), user=u)
        claim = create_claim(s, death_id=death.id, amount=5_000_000, user=u)
        approve_claim(s, claim.id, u)
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    return c


def _admin(s) -> User:
    return s.query(User).filter(User.email == "admin@example.com").one()


def test_dashboard_stats(app):
    with session_scope(app) as s:
        stats = dashboard_stats(s)
    assert stats["total_members"] == 2
    assert stats["deceased_members"] == 1
    assert stats["active_members"] == 1
    assert stats["pending_claims"] == 0
    assert stats["unverified_deaths"] == 1
    assert stats["total_in"] == 10_000_000
    assert stats["total_out"] == 5_000_000
    assert stats["balance"] == 5_000_000
    assert stats["benefits_paid_this_year"] == 5_000_000
    assert stats["benefits_count_this_year"] == 1


def test_public_stats_refresh_after_commit(app):
    with session_scope(app) as s:
        assert public_stats(s)["balance"] == 5_000_000

    with session_scope(app) as s:
        append_entry(
            s,
            direction=Direction.IN,
            amount=1_000,
            category=LedgerCategory.DONATION,
            entry_date=date.today(),
            memo=None,
            user=_admin(s),
        )
    with session_scope(app) as s:
        assert public_stats(s)["balance"] == 5_001_000


def test_public_stats_kept_after_rollback(app):
    sm = app.extensions["sqlalchemy_sessionmaker"]
    with session_scope(app) as s:
        before = public_stats(s)

    s = sm()
    try:
        create_member(s, {"household_head_name": "Citra"}, _admin(s))
        s.rollback()
    finally:
        s.close()

    with session_scope(app) as s:
        assert public_stats(s) == before


def test_public_stats_expire_for_other_writers(app, monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(stats_service, "_clock", lambda: clock[0])

    with session_scope(app) as s:
        assert public_stats(s)["balance"] == 5_000_000

    # another worker or a CLI script: own engine, no commit hooks in this process
    other = create_engine(app.config["DATABASE_URL"])
    try:
        with Session(other) as s:
            append_entry(
                s,
                direction=Direction.IN,
                amount=100_000,
                category=LedgerCategory.DONATION,
                entry_date=date.today(),
                memo="Donation via script",
                user=_admin(s),
            )
            s.commit()
    finally:
        other.dispose()

    with session_scope(app) as s:
        assert public_stats(s)["balance"] == 5_000_000

    clock[0] += stats_service.DEFAULT_CACHE_SECONDS + 1
    with session_scope(app) as s:
        assert public_stats(s)["balance"] == 5_100_000


def test_recent_deaths(app):
    with session_scope(app) as s:
        rows = recent_deaths(s)
    assert len(rows) == 1
    assert rows[0]["name"] == "Budi"
    assert rows[0]["claim_state"] == "completed"


def test_ledger_report_running_balance(app):
    with session_scope(app) as s:
        report = build_report(s, "ledger")
    assert report.headers[-1] == "Balance"
    assert [row[-1] for row in report.rows] == [10_000_000, 5_000_000]


def test_unknown_report_rejected(app):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            build_report(s, "payroll")


def test_render_formats(app):
    with session_scope(app) as s:
        report = build_report(s, "members")

    data, mimetype, filename = render(report, "csv")
    assert mimetype == "text/csv"
    assert filename.endswith(".csv")
    assert b"Budi" in data

    data, mimetype, _ = render(report, "xlsx", "RUKEM Test")
    wb = load_workbook(io.BytesIO(data))
    ws = wb.active
    assert ws["A1"].value == "RUKEM Test - " + report.title

    data, mimetype, _ = render(report, "pdf")
    assert mimetype == "application/pdf"
    assert data.startswith(b"%PDF")


@pytest.mark.parametrize(
    "fmt,mimetype",
    [
        ("csv", "text/csv"),
        ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
        ("pdf", "application/pdf"),
    ],
)
def test_export_routes(app, client, fmt, mimetype):
    r = client.get(f"/admin/reports/ledger.{fmt}")
    assert r.status_code == 200
    assert r.mimetype == mimetype
    assert "attachment" in r.headers["Content-Disposition"]

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == f"report.export_{fmt}").count() == 1


def test_export_unknown_dataset_404(client):
    assert client.get("/admin/reports/payroll.csv").status_code == 404
    assert client.get("/admin/reports/members.docx").status_code == 404


def test_reports_index(client):
    r = client.get("/admin/reports")
    assert r.status_code == 200

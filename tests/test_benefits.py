from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from werkzeug.security import generate_password_hash

from app.rukem import create_app
from app.rukem.db import session_scope
from app.rukem.errors import (
    DuplicateRecordError,
    InvalidTransitionError,
    MemberNotEligibleError,
    NoDeathRecordError,
    ValidationError,
)
from app.rukem.models import AuditEvent, Base, User
from app.rukem.modules.benefits import service as benefits_service
from app.rukem.modules.benefits.models import BenefitClaim, ClaimStatus
from app.rukem.modules.benefits.service import approve_claim, can_transition_to, create_claim
from app.rukem.modules.deaths.service import record_death
from app.rukem.modules.ledger.models import Direction, LedgerCategory, LedgerEntry, LedgerSource
from app.rukem.modules.ledger.service import current_balance
from app.rukem.modules.members.service import create_member
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
        budi = create_member(s, {"household_head_name": "Budi", "register_membership": True}, u)
        death = record_death(s, member_id=budi.id, date_of_death=date(2024, 3, 1), user=u)
        app.config["TEST_DEATH_ID"] = death.id
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with c.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return c


def _admin(s) -> User:
    return s.query(User).filter(User.email == "admin@example.com").one()


def _claim(app, amount=5_000_000) -> int:
    with session_scope(app) as s:
        claim = create_claim(s, death_id=app.config["TEST_DEATH_ID"], amount=amount, user=_admin(s))
        assert claim.status == ClaimStatus.PENDING
        return claim.id


def test_approve_writes_one_payout_entry(app):
    claim_id = _claim(app)
    today = date.today()

    with session_scope(app) as s:
        claim = approve_claim(s, claim_id, _admin(s), today=today)
        assert claim.status == ClaimStatus.APPROVED
        assert claim.disbursed_on == today
        assert claim.approved_by_user_id is not None

    with session_scope(app) as s:
        entries = s.query(LedgerEntry).all()
        assert len(entries) == 1
        e = entries[0]
        assert e.direction == Direction.OUT
        assert e.category == LedgerCategory.BENEFIT_PAYOUT
        assert e.source == LedgerSource.BENEFIT_APPROVAL
        assert e.amount == 5_000_000
        assert e.entry_date == today
        assert e.benefit_claim_id == claim_id
        assert "Budi" in e.memo
        assert current_balance(s) == -5_000_000


@pytest.mark.parametrize("amount", [None, 0])
def test_approve_without_amount_skips_ledger(app, amount):
    claim_id = _claim(app, amount=amount)
    with session_scope(app) as s:
        claim = approve_claim(s, claim_id, _admin(s))
        assert claim.status == ClaimStatus.APPROVED
    with session_scope(app) as s:
        assert s.query(LedgerEntry).count() == 0


def test_double_approve_rejected(app):
    claim_id = _claim(app)
    with session_scope(app) as s:
        approve_claim(s, claim_id, _admin(s))

    with session_scope(app) as s:
        with pytest.raises(InvalidTransitionError):
            approve_claim(s, claim_id, _admin(s))

    with session_scope(app) as s:
        assert s.query(LedgerEntry).count() == 1


def test_concurrent_approvals_write_one_entry(app):
    claim_id = _claim(app)
    sm = app.extensions["sqlalchemy_sessionmaker"]

    s1 = sm()
    s2 = sm()
    try:
        # s1 still sees the claim as pending when s2 commits its approval
        stale = s1.get(BenefitClaim, claim_id)
        assert stale.status == ClaimStatus.PENDING
        user1 = _admin(s1)

        approve_claim(s2, claim_id, _admin(s2))
        s2.commit()

        with pytest.raises(InvalidTransitionError) as exc:
            approve_claim(s1, claim_id, user1)
        assert "already been processed" in str(exc.value)
        s1.rollback()
    finally:
        s1.close()
        s2.close()

    with session_scope(app) as s:
        assert s.query(LedgerEntry).count() == 1


def test_claim_requires_death_record(app):
    with session_scope(app) as s:
        with pytest.raises(NoDeathRecordError):
            create_claim(s, death_id=9999, amount=1000, user=_admin(s))
        with pytest.raises(NoDeathRecordError):
            create_claim(s, death_id=None, amount=1000, user=_admin(s))


def test_claim_requires_registered_membership(app):
    with session_scope(app) as s:
        u = _admin(s)
        ani = create_member(s, {"household_head_name": "Ani"}, u)
        death = record_death(s, member_id=ani.id, date_of_death=date(2024, 2, 1), user=u)
        with pytest.raises(MemberNotEligibleError):
            create_claim(s, death_id=death.id, amount=1000, user=u)


def test_one_claim_per_death(app):
    _claim(app)
    with session_scope(app) as s:
        with pytest.raises(DuplicateRecordError):
            create_claim(s, death_id=app.config["TEST_DEATH_ID"], amount=1000, user=_admin(s))


def test_negative_amount_rejected(app):
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            create_claim(s, death_id=app.config["TEST_DEATH_ID"], amount=-1, user=_admin(s))
        with pytest.raises(ValidationError):
            create_claim(s, death_id=app.config["TEST_DEATH_ID"], amount=1000, payment_method="cheque", user=_admin(s))


def test_transition_table():
    claim = BenefitClaim(status=ClaimStatus.PENDING)
    assert can_transition_to(claim, ClaimStatus.APPROVED) == (True, [])
    ok, errors = can_transition_to(claim, ClaimStatus.DISBURSED)
    assert not ok and errors

    claim.status = ClaimStatus.APPROVED
    ok, _ = can_transition_to(claim, ClaimStatus.APPROVED)
    assert not ok


def test_benefit_routes(app, client):
    r = client.get("/admin/benefits/new")
    assert r.status_code == 200
    assert b"Budi" in r.data

    r = client.post(
        "/admin/benefits/new",
        data={
            "csrf_token": "test-token",
            "death_record_id": str(app.config["TEST_DEATH_ID"]),
            "amount": "5.000.000",
            "payment_method": "cash",
        },
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Benefit claim created." in r.data

    with session_scope(app) as s:
        claim_id = s.query(BenefitClaim.id).scalar()

    r = client.post(f"/admin/benefits/{claim_id}/approve", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Claim approved and payout recorded in the ledger." in r.data

    r = client.post(f"/admin/benefits/{claim_id}/approve", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Cannot change a claim from" in r.data

    with session_scope(app) as s:
        assert s.query(LedgerEntry).count() == 1

    r = client.get("/admin/benefits?status=approved")
    assert r.status_code == 200
    assert b"Budi" in r.data


def test_failed_payout_leaves_claim_pending(app, client, monkeypatch):
    claim_id = _claim(app)

    def _ledger_down(*args, **kwargs):
        raise OperationalError("INSERT INTO ledger_entries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(benefits_service, "append_entry", _ledger_down)

    r = client.post(f"/admin/benefits/{claim_id}/approve", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Connection lost, check your network." in r.data

    with session_scope(app) as s:
        claim = s.get(BenefitClaim, claim_id)
        assert claim.status == ClaimStatus.PENDING
        assert claim.approved_by_user_id is None
        assert claim.disbursed_on is None
        assert s.query(LedgerEntry).count() == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "benefit.approve").count() == 0

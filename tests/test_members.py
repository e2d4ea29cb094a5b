"""Tests for the member registry."""
import io
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.rukem import create_app
from app.rukem.db import session_scope
from app.rukem.errors import DeceasedMemberError, DuplicateRecordError, InvalidTransitionError, ValidationError
from app.rukem.models import AuditEvent, Base, User
from app.rukem.modules.deaths.service import record_death
from app.rukem.modules.members.models import ApprovalStatus, Member, MembershipStatus
from app.rukem.modules.members.parsers import parse_members_csv
from app.rukem.modules.members.service import (
    active_members,
    approve_registration,
    create_member,
    delete_member,
    import_members,
    lifecycle_counts,
    reject_registration,
    submit_registration,
    update_member,
    upsert_membership,
)
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
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _admin(s) -> User:
    return s.query(User).filter(User.email == "admin@example.com").one()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"


def test_create_member_requires_name(app):
    with session_scope(app) as s:
        with pytest.raises(ValidationError) as exc:
            create_member(s, {"household_head_name": "  "}, _admin(s))
        assert "Household head name is required." in exc.value.errors


def test_create_member_validates_nik_and_gender(app):
    with session_scope(app) as s:
        with pytest.raises(ValidationError) as exc:
            create_member(s, {"household_head_name": "Budi", "national_id": "123", "gender": "X"}, _admin(s))
        assert len(exc.value.errors) == 2


def test_member_number_unique(app):
    with session_scope(app) as s:
        create_member(s, {"household_head_name": "Budi", "member_number": "A-001"}, _admin(s))
    with session_scope(app) as s:
        with pytest.raises(DuplicateRecordError):
            create_member(s, {"household_head_name": "Sari", "member_number": "A-001"}, _admin(s))


def test_create_member_with_membership(app):
    with session_scope(app) as s:
        m = create_member(s, {"household_head_name": "Budi", "register_membership": True}, _admin(s))
        member_id = m.id
    with session_scope(app) as s:
        m = s.get(Member, member_id)
        assert m.membership is not None
        assert m.membership.is_eligible
        actions = {e.action for e in s.query(AuditEvent).all()}
        assert {"member.create", "membership.create"} <= actions


def test_exited_membership_marks_member_exited(app):
    with session_scope(app) as s:
        u = _admin(s)
        m = create_member(s, {"household_head_name": "Budi"}, u)
        upsert_membership(s, m, {"registered": True, "membership_status": MembershipStatus.EXITED}, u)
        s.flush()
        assert m.exited is True
        assert m.lifecycle_status == "exited"
        assert m not in active_members(s)
        assert not m.membership.is_eligible


def test_update_member_cannot_bypass_membership_exit(app):
    with session_scope(app) as s:
        u = _admin(s)
        m = create_member(s, {"household_head_name": "Budi", "register_membership": True}, u)
        update_member(s, m, {"household_head_name": "Budi", "exited": True}, u)
        s.flush()
        assert m.exited is False
        assert m.membership.status == MembershipStatus.ACTIVE
        assert m.membership.is_eligible
        assert m in active_members(s)


def test_deceased_member_is_immutable(app):
    with session_scope(app) as s:
        u = _admin(s)
        m = create_member(s, {"household_head_name": "Budi"}, u)
        record_death(s, member_id=m.id, date_of_death=date(2024, 3, 1), user=u)
        member_id = m.id

    with session_scope(app) as s:
        u = _admin(s)
        m = s.get(Member, member_id)
        assert m.is_deceased
        assert m.lifecycle_status == "deceased"
        with pytest.raises(DeceasedMemberError):
            update_member(s, m, {"household_head_name": "Budi Santoso"}, u)
        with pytest.raises(DeceasedMemberError):
            delete_member(s, m, u)
        with pytest.raises(DeceasedMemberError):
            upsert_membership(s, m, {"registered": True}, u)


def test_active_members_excludes_deceased_and_pending(app):
    with session_scope(app) as s:
        u = _admin(s)
        budi = create_member(s, {"household_head_name": "Budi"}, u)
        create_member(s, {"household_head_name": "Ani"}, u)
        submit_registration(s, {"household_head_name": "Citra"})
        record_death(s, member_id=budi.id, date_of_death=date(2024, 3, 1), user=u)

    with session_scope(app) as s:
        names = [m.household_head_name for m in active_members(s)]
        assert names == ["Ani"]
        counts = lifecycle_counts(s)
        assert counts == {"active": 1, "exited": 0, "deceased": 1}


def test_update_member_records_diff(app):
    with session_scope(app) as s:
        u = _admin(s)
        m = create_member(s, {"household_head_name": "Budi", "phone": "0811"}, u)
        update_member(s, m, {"household_head_name": "Budi", "phone": "0812"}, u, reason="new number")
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "member.update").one()
        assert ev.reason == "new number"
        assert '"phone"' in ev.metadata_json


def test_registration_approve_once(app):
    with session_scope(app) as s:
        u = _admin(s)
        m = submit_registration(s, {"household_head_name": "Dewi"})
        assert m.approval_status == ApprovalStatus.PENDING
        approve_registration(s, m, u)
        assert m.approval_status == ApprovalStatus.ACTIVE
        assert m.membership is not None and m.membership.registered
        with pytest.raises(InvalidTransitionError):
            reject_registration(s, m, u)


def test_parse_members_csv():
    data = (
        "Nama,NIK,Jenis Kelamin,Tanggal Lahir,RT,RW\n"
        "Budi,3201010101010001,Laki-laki,1960-05-01,001,002\n"
        ",,,,,\n"
        ",3201010101010002,P,,001,002\n"
    ).encode("utf-8")
    rows, errors = parse_members_csv(data)
    assert len(rows) == 1
    assert rows[0]["household_head_name"] == "Budi"
    assert rows[0]["gender"] == "L"
    assert rows[0]["rt"] == "001"
    assert rows[0]["_row_number"] == 2
    assert len(errors) == 1
    assert errors[0].row_number == 4


def test_import_members_reports_bad_rows(app):
    rows = [
        {"_row_number": 2, "household_head_name": "Budi", "birth_date": "1960-05-01"},
        {"_row_number": 3, "household_head_name": "Sari", "birth_date": "05/01/1960"},
    ]
    with session_scope(app) as s:
        created, errors = import_members(s, rows, _admin(s))
    assert created == 1
    assert len(errors) == 1
    assert errors[0].startswith("Row 3:")


def test_member_routes(client):
    _login(client)
    r = client.post(
        "/admin/members/new",
        data={"csrf_token": "test-token", "household_head_name": "Budi", "rt": "001", "rw": "002"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Member created." in r.data

    r = client.get("/admin/members?q=Bud")
    assert r.status_code == 200
    assert b"Budi" in r.data


def test_duplicate_member_number_flash_names_the_number(client):
    _login(client)
    data = {"csrf_token": "test-token", "household_head_name": "Budi", "member_number": "A-001"}
    r = client.post("/admin/members/new", data=data, follow_redirects=True)
    assert b"Member created." in r.data

    r = client.post("/admin/members/new", data={**data, "household_head_name": "Sari"})
    assert r.status_code == 400
    assert b"A-001" in r.data
    assert b"is already in use." in r.data


def test_edit_blocked_for_deceased_member(app, client):
    with session_scope(app) as s:
        u = _admin(s)
        m = create_member(s, {"household_head_name": "Budi"}, u)
        record_death(s, member_id=m.id, date_of_death=date(2024, 3, 1), user=u)
        member_id = m.id

    _login(client)
    r = client.get(f"/admin/members/{member_id}/edit", follow_redirects=True)
    assert b"Deceased members cannot be edited or deleted." in r.data

    r = client.post(
        f"/admin/members/{member_id}/delete",
        data={"csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Deceased members cannot be edited or deleted." in r.data
    with session_scope(app) as s:
        assert s.get(Member, member_id) is not None


def test_import_route(client):
    _login(client)
    csv_bytes = b"Household Head,Phone\nBudi,0811\nSari,0812\n"
    r = client.post(
        "/admin/members/import",
        data={"csrf_token": "test-token", "csv_file": (io.BytesIO(csv_bytes), "members.csv")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Import completed: created 2." in r.data


def test_public_registration(app, client):
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    r = client.post(
        "/register",
        data={"csrf_token": "test-token", "household_head_name": "Eka", "member_number": "X-9"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    with session_scope(app) as s:
        m = s.query(Member).filter(Member.household_head_name == "Eka").one()
        assert m.approval_status == ApprovalStatus.PENDING
        # registry numbers are assigned by staff only
        assert m.member_number is None


def test_parse_members_xlsx():
    from openpyxl import Workbook

    from app.rukem.modules.members.parsers import parse_members_file

    wb = Workbook()
    ws = wb.active
    ws.append(["Nama Kepala Keluarga", "NIK", "Tanggal Lahir", "RT"])
    ws.append(["Budi", 3201010101010001, date(1960, 5, 1), 1])
    ws.append([None, "3201010101010002", None, 2])
    buf = io.BytesIO()
    wb.save(buf)

    rows, errors = parse_members_file("register.xlsx", buf.getvalue())
    assert len(rows) == 1
    assert rows[0]["national_id"] == "3201010101010001"
    assert rows[0]["birth_date"] == "1960-05-01"
    assert rows[0]["rt"] == "1"
    assert [e.row_number for e in errors] == [3]


def _xlsx_bytes(*rows) -> bytes:
    from openpyxl import Workbook

    wb = Workbook()
    for row in rows:
        wb.active.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.mark.parametrize(
    "rows, fails",
    [
        ([["Nama"], ["Budi"]], False),
        ([], True),
    ],
)
def test_parse_members_xlsx_closes_workbook(monkeypatch, rows, fails):
    from app.rukem.modules.members import parsers

    closed = []
    real_load = parsers.load_workbook

    def _tracking_load(*args, **kwargs):
        wb = real_load(*args, **kwargs)
        real_close = wb.close

        def _close():
            closed.append(True)
            real_close()

        wb.close = _close
        return wb

    monkeypatch.setattr(parsers, "load_workbook", _tracking_load)
    if fails:
        with pytest.raises(ValueError):
            parsers.parse_members_xlsx(_xlsx_bytes(*rows))
    else:
        parsed, _ = parsers.parse_members_xlsx(_xlsx_bytes(*rows))
        assert [r["household_head_name"] for r in parsed] == ["Budi"]
    assert closed == [True]


def test_member_detail_shows_history(app, client):
    with session_scope(app) as s:
        m = create_member(s, {"household_head_name": "Budi", "phone": "0811"}, _admin(s))
        member_id = m.id

    _login(client)
    r = client.get(f"/admin/members/{member_id}")
    assert r.status_code == 200
    assert b"member.create" in r.data

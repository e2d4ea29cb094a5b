from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.audit import entity_history
from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.models import User
from app.rukem.modules.members.models import DuesStanding, DuesType, LifecycleStatus, Member, MembershipStatus
from app.rukem.modules.members.parsers import parse_members_file
from app.rukem.modules.members.service import (
    DATE_FIELDS,
    TEXT_FIELDS,
    approve_registration,
    create_member,
    delete_member,
    import_members,
    lifecycle_counts,
    pending_registrations,
    query_members,
    reject_registration,
    update_member,
    upsert_membership,
)
from app.rukem.rbac import require_permission

bp = Blueprint("members", __name__)

PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _member_or_404(member_id: int) -> Member:
    member = db_session().get(Member, member_id)
    if not member:
        abort(404)
    return member


def _member_form() -> dict:
    payload = {f: request.form.get(f) for f in TEXT_FIELDS + DATE_FIELDS if f in request.form}
    return payload


def _membership_form() -> dict:
    return {
        "registered": request.form.get("registered") == "1",
        "membership_status": request.form.get("membership_status"),
        "dues_type": request.form.get("dues_type"),
        "dues_standing": request.form.get("dues_standing"),
        "membership_start_date": request.form.get("membership_start_date"),
        "membership_note": request.form.get("membership_note"),
    }


def _failed(e: Exception) -> None:
    db_session().rollback()
    flash(readable_error_message(e), "danger")


# ---------- List ----------
@bp.get("/members")
@require_permission("members.view")
def members_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    try:
        page = max(1, int(request.args.get("page") or 1))
    except ValueError:
        page = 1

    q = query_members(s, search=search, status=status)
    total = q.count()
    members = q.order_by(Member.household_head_name.asc()).offset((page - 1) * PAGE_SIZE).limit(PAGE_SIZE).all()

    return render_template(
        "admin/members/list.html",
        members=members,
        search=search,
        status=status,
        statuses=LifecycleStatus.ALL,
        counts=lifecycle_counts(s),
        page=page,
        total=total,
        page_size=PAGE_SIZE,
    )


# ---------- New ----------
@bp.get("/members/new")
@require_permission("members.create")
def members_new_get():
    return render_template(
        "admin/members/form.html",
        member=None,
        form={},
        membership_statuses=MembershipStatus.ALL,
        dues_types=DuesType.ALL,
        dues_standings=DuesStanding.ALL,
    )


@bp.post("/members/new")
@require_permission("members.create")
def members_new_post():
    s = db_session()
    u = _current_user()
    payload = _member_form()
    if request.form.get("register_membership") == "1":
        payload.update(_membership_form())
        payload["register_membership"] = True

    try:
        member = create_member(s, payload, u)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
        return render_template(
            "admin/members/form.html",
            member=None,
            form=request.form,
            membership_statuses=MembershipStatus.ALL,
            dues_types=DuesType.ALL,
            dues_standings=DuesStanding.ALL,
        ), 400

    flash("Member created.", "success")
    return redirect(url_for("members.member_detail", member_id=member.id))


# ---------- Detail ----------
@bp.get("/members/<int:member_id>")
@require_permission("members.view")
def member_detail(member_id: int):
    member = _member_or_404(member_id)
    return render_template(
        "admin/members/detail.html",
        member=member,
        events=entity_history(db_session(), "Member", member.id),
        membership_statuses=MembershipStatus.ALL,
        dues_types=DuesType.ALL,
        dues_standings=DuesStanding.ALL,
    )


# ---------- Edit ----------
@bp.get("/members/<int:member_id>/edit")
@require_permission("members.edit")
def member_edit_get(member_id: int):
    member = _member_or_404(member_id)
    if member.is_deceased:
        flash("Deceased members cannot be edited or deleted.", "danger")
        return redirect(url_for("members.member_detail", member_id=member.id))
    return render_template("admin/members/form.html", member=member, form={})


@bp.post("/members/<int:member_id>/edit")
@require_permission("members.edit")
def member_edit_post(member_id: int):
    s = db_session()
    u = _current_user()
    member = _member_or_404(member_id)
    payload = _member_form()
    reason = (request.form.get("reason") or "").strip() or None

    try:
        update_member(s, member, payload, u, reason=reason)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
        return redirect(url_for("members.member_detail", member_id=member_id))

    flash("Member updated.", "success")
    return redirect(url_for("members.member_detail", member_id=member.id))


# ---------- Delete ----------
@bp.post("/members/<int:member_id>/delete")
@require_permission("members.delete")
def member_delete_post(member_id: int):
    s = db_session()
    u = _current_user()
    member = _member_or_404(member_id)
    reason = (request.form.get("reason") or "").strip() or None

    try:
        delete_member(s, member, u, reason=reason)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
        return redirect(url_for("members.member_detail", member_id=member_id))

    flash("Member deleted.", "success")
    return redirect(url_for("members.members_list"))


# ---------- Membership ----------
@bp.post("/members/<int:member_id>/membership")
@require_permission("members.edit")
def member_membership_post(member_id: int):
    s = db_session()
    u = _current_user()
    member = _member_or_404(member_id)

    try:
        upsert_membership(s, member, _membership_form(), u)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
    else:
        flash("Membership saved.", "success")
    return redirect(url_for("members.member_detail", member_id=member_id))


# ---------- Import ----------
@bp.get("/members/import")
@require_permission("members.import")
def members_import_get():
    return render_template("admin/members/import.html")


@bp.post("/members/import")
@require_permission("members.import")
def members_import_post():
    s = db_session()
    u = _current_user()

    f = request.files.get("csv_file")
    if not f or not f.filename:
        flash("Choose a CSV or Excel file to import.", "danger")
        return redirect(url_for("members.members_import_get"))

    try:
        rows, parse_errors = parse_members_file(f.filename, f.read())
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("members.members_import_get"))

    created, row_errors = import_members(s, rows, u)
    s.commit()

    errors = [f"Row {e.row_number}: {e.message}" for e in parse_errors] + row_errors
    if errors:
        flash(f"Import completed with {len(errors)} errors; created {created}.", "danger")
        return render_template("admin/members/import.html", errors=errors)

    flash(f"Import completed: created {created}.", "success")
    return redirect(url_for("members.members_list"))


# ---------- Registrations ----------
@bp.get("/members/registrations")
@require_permission("members.approve")
def registrations_list():
    s = db_session()
    return render_template("admin/members/registrations.html", members=pending_registrations(s))


@bp.post("/members/registrations/<int:member_id>/approve")
@require_permission("members.approve")
def registration_approve_post(member_id: int):
    s = db_session()
    u = _current_user()
    member = _member_or_404(member_id)
    try:
        approve_registration(s, member, u)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
    else:
        flash(f"Registration of {member.household_head_name} approved.", "success")
    return redirect(url_for("members.registrations_list"))


@bp.post("/members/registrations/<int:member_id>/reject")
@require_permission("members.approve")
def registration_reject_post(member_id: int):
    s = db_session()
    u = _current_user()
    member = _member_or_404(member_id)
    reason = (request.form.get("reason") or "").strip() or None
    try:
        reject_registration(s, member, u, reason=reason)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        _failed(e)
    else:
        flash(f"Registration of {member.household_head_name} rejected.", "success")
    return redirect(url_for("members.registrations_list"))

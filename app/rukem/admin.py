from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.accounts import create_account, update_account, update_profile
from app.rukem.audit import AUDIT_PAGE_LIMIT, query_events
from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.models import Role, User
from app.rukem.modules.ledger.service import monthly_summary
from app.rukem.modules.reports.service import dashboard_stats, recent_deaths
from app.rukem.rbac import require_permission
from app.rukem.utils import parse_date

bp = Blueprint("admin", __name__)

AUDIT_ENTITY_TYPES = ("Member", "Membership", "DeathRecord", "BenefitClaim", "LedgerEntry", "User")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _date_arg(name: str):
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return parse_date(raw)
    except ValueError:
        flash(f"{name} must be YYYY-MM-DD", "danger")
        return None


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    try:
        s.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        current_app.logger.error("Dashboard DB check failed: %s", e)
        s.rollback()
        db_connected = False

    if not db_connected:
        return render_template("admin/index.html", stats=None, recent_deaths=[], summary=[], db_connected=False)
    return render_template(
        "admin/index.html",
        stats=dashboard_stats(s),
        recent_deaths=recent_deaths(s),
        summary=monthly_summary(s, months=current_app.config.get("LEDGER_SUMMARY_MONTHS", 6)),
        db_connected=True,
    )


# ---------- Own profile ----------
@bp.get("/me")
@require_permission("admin.view")
def me():
    user = _current_user()
    return render_template(
        "admin/me.html",
        user=user,
        role_keys=sorted(r.key for r in user.roles),
        perm_keys=sorted(user.permission_keys),
    )


@bp.post("/me")
@require_permission("admin.view")
def me_update():
    s = db_session()
    try:
        update_profile(
            s,
            _current_user(),
            full_name=request.form.get("full_name"),
            password=request.form.get("password") or "",
            password_confirm=request.form.get("password_confirm") or "",
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
    else:
        flash("Profile updated.", "success")
    return redirect(url_for("admin.me"))


# ---------- Audit trail ----------
@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    if entity_type not in AUDIT_ENTITY_TYPES:
        entity_type = ""

    events = (
        query_events(
            s,
            action=action,
            actor_email=actor_email,
            entity_type=entity_type,
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
        )
        .limit(AUDIT_PAGE_LIMIT)
        .all()
    )
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        entity_type=entity_type,
        entity_types=AUDIT_ENTITY_TYPES,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


# ---------- Staff accounts ----------
@bp.get("/accounts")
@require_permission("users.manage")
def accounts_list():
    s = db_session()
    return render_template(
        "admin/accounts/list.html",
        users=s.query(User).order_by(User.email.asc()).all(),
        roles=s.query(Role).order_by(Role.name.asc()).all(),
    )


@bp.post("/accounts/new")
@require_permission("users.manage")
def accounts_new_post():
    s = db_session()
    try:
        user = create_account(
            s,
            email=request.form.get("email") or "",
            password=request.form.get("password") or "",
            full_name=request.form.get("full_name"),
            rt=request.form.get("rt"),
            rw=request.form.get("rw"),
            role_ids=request.form.getlist("role_ids"),
            actor=_current_user(),
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
    else:
        flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("admin.accounts_list"))


@bp.post("/accounts/<int:user_id>/update")
@require_permission("users.manage")
def accounts_update(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    try:
        update_account(
            s,
            user,
            actor=_current_user(),
            is_active=request.form.get("is_active") == "1",
            role_ids=request.form.getlist("role_ids"),
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
    else:
        flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("admin.accounts_list"))

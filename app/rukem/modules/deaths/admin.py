from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.audit import entity_history
from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.models import User
from app.rukem.modules.deaths.models import DeathRecord, VerificationStatus
from app.rukem.modules.deaths.service import query_deaths, record_death, verify_death
from app.rukem.modules.members.service import active_members
from app.rukem.rbac import require_permission
from app.rukem.utils import parse_date, parse_time

bp = Blueprint("deaths", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/deaths")
@require_permission("deaths.view")
def deaths_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    deaths = query_deaths(s, search=search, status=status).all()
    return render_template(
        "admin/deaths/list.html",
        deaths=deaths,
        search=search,
        status=status,
        statuses=VerificationStatus.ALL,
    )


@bp.get("/deaths/new")
@require_permission("deaths.create")
def deaths_new_get():
    s = db_session()
    return render_template("admin/deaths/new.html", members=active_members(s), form={})


@bp.post("/deaths/new")
@require_permission("deaths.create")
def deaths_new_post():
    s = db_session()
    u = _current_user()

    try:
        member_id = int(request.form.get("member_id") or 0)
        date_of_death = parse_date(request.form.get("date_of_death"))
        time_of_death = parse_time(request.form.get("time_of_death"))
    except ValueError:
        flash("Invalid member, date or time.", "danger")
        return redirect(url_for("deaths.deaths_new_get"))

    try:
        death = record_death(
            s,
            member_id=member_id,
            date_of_death=date_of_death,
            time_of_death=time_of_death,
            place_of_death=request.form.get("place_of_death"),
            reporter_name=request.form.get("reporter_name"),
            certificate_number=request.form.get("certificate_number"),
            note=request.form.get("note"),
            user=u,
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
        return render_template("admin/deaths/new.html", members=active_members(s), form=request.form), 400

    flash(f"Death of {death.member.household_head_name} recorded.", "success")
    return redirect(url_for("deaths.death_detail", death_id=death.id))


@bp.get("/deaths/<int:death_id>")
@require_permission("deaths.view")
def death_detail(death_id: int):
    s = db_session()
    death = s.get(DeathRecord, death_id)
    if not death:
        abort(404)
    return render_template("admin/deaths/detail.html", death=death, events=entity_history(s, "DeathRecord", death.id))


@bp.post("/deaths/<int:death_id>/verify")
@require_permission("deaths.verify")
def death_verify_post(death_id: int):
    s = db_session()
    u = _current_user()
    death = s.get(DeathRecord, death_id)
    if not death:
        abort(404)

    try:
        verify_death(s, death, u)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
    else:
        flash("Death record verified.", "success")
    return redirect(url_for("deaths.death_detail", death_id=death_id))

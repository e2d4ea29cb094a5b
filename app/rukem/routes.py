from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.modules.members.service import DATE_FIELDS, TEXT_FIELDS, submit_registration
from app.rukem.modules.reports.service import public_stats, recent_deaths

bp = Blueprint("routes", __name__)

# Fields a member of the public may fill in; registry numbers are staff-only.
PUBLIC_FIELDS = tuple(f for f in TEXT_FIELDS + DATE_FIELDS if f not in ("member_number", "data_number", "bookkeeping_date"))


@bp.get("/")
def index():
    s = db_session()
    return render_template("public/index.html", stats=public_stats(s), recent_deaths=recent_deaths(s))


@bp.get("/public/stats")
def stats_json():
    return public_stats(db_session())


@bp.get("/register")
def register_get():
    return render_template("public/register.html", form={})


@bp.post("/register")
def register_post():
    s = db_session()
    payload = {f: request.form.get(f) for f in PUBLIC_FIELDS if f in request.form}
    try:
        member = submit_registration(s, payload)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
        return render_template("public/register.html", form=request.form), 400

    current_app.logger.info("Self-registration submitted member_id=%s", member.id)
    flash("Registration received. An administrator will review it shortly.", "success")
    return redirect(url_for("routes.index"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness probe. No DB access."""
    return "ok", 200

from __future__ import annotations

from datetime import date

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.models import User
from app.rukem.modules.ledger.models import Direction, LedgerCategory
from app.rukem.modules.ledger.service import (
    append_entry,
    ledger_totals,
    monthly_summary,
    opening_balance,
    query_entries,
    running_balances,
)
from app.rukem.rbac import require_permission
from app.rukem.utils import parse_amount, parse_date, parse_date_range

bp = Blueprint("ledger", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/ledger")
@require_permission("ledger.view")
def ledger_list():
    s = db_session()
    start, end = parse_date_range(request.args.get("start"), request.args.get("end"))
    direction = (request.args.get("direction") or "").strip()

    entries = query_entries(s, start=start, end=end).all()
    rows = running_balances(entries, opening=opening_balance(s, start) if start else 0)
    if direction in Direction.ALL:
        rows = [(e, bal) for e, bal in rows if e.direction == direction]
    # Newest first for display; balances were computed in ledger order.
    rows.reverse()

    total_in, total_out = ledger_totals(s)
    return render_template(
        "admin/ledger/list.html",
        rows=rows,
        start=start,
        end=end,
        direction=direction,
        total_in=total_in,
        total_out=total_out,
        balance=total_in - total_out,
        summary=monthly_summary(s, months=current_app.config.get("LEDGER_SUMMARY_MONTHS", 6)),
    )


@bp.get("/ledger/new")
@require_permission("ledger.create")
def ledger_new_get():
    return render_template(
        "admin/ledger/new.html",
        categories=LedgerCategory.LABELS,
        today=date.today(),
        form={},
    )


@bp.post("/ledger/new")
@require_permission("ledger.create")
def ledger_new_post():
    s = db_session()
    u = _current_user()

    try:
        amount = parse_amount(request.form.get("amount"))
        entry_date = parse_date(request.form.get("entry_date"))
    except ValueError:
        flash("Invalid amount or date.", "danger")
        return redirect(url_for("ledger.ledger_new_get"))

    try:
        append_entry(
            s,
            direction=(request.form.get("direction") or "").strip(),
            amount=amount,
            category=(request.form.get("category") or "").strip(),
            entry_date=entry_date,
            memo=request.form.get("memo"),
            user=u,
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
        return render_template(
            "admin/ledger/new.html",
            categories=LedgerCategory.LABELS,
            today=date.today(),
            form=request.form,
        ), 400

    flash("Ledger entry added.", "success")
    return redirect(url_for("ledger.ledger_list"))

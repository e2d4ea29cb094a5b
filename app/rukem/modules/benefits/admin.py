from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.rukem.audit import entity_history
from app.rukem.db import db_session
from app.rukem.errors import WorkflowError, readable_error_message
from app.rukem.models import User
from app.rukem.modules.benefits.models import BenefitClaim, ClaimStatus, PaymentMethod
from app.rukem.modules.benefits.service import CLAIM_TRANSITIONS, approve_claim, create_claim, query_claims
from app.rukem.modules.deaths.service import claimable_deaths
from app.rukem.rbac import require_permission
from app.rukem.utils import parse_amount

bp = Blueprint("benefits", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/benefits")
@require_permission("benefits.view")
def claims_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    claims = query_claims(s, status=status).all()
    return render_template(
        "admin/benefits/list.html",
        claims=claims,
        status=status,
        # Only statuses a claim can actually reach are offered as filters.
        statuses=(ClaimStatus.PENDING, ClaimStatus.APPROVED),
    )


@bp.get("/benefits/new")
@require_permission("benefits.create")
def claims_new_get():
    s = db_session()
    return render_template(
        "admin/benefits/new.html",
        deaths=claimable_deaths(s),
        payment_methods=PaymentMethod.ALL,
        default_amount=current_app.config.get("DEFAULT_BENEFIT_AMOUNT"),
    )


@bp.post("/benefits/new")
@require_permission("benefits.create")
def claims_new_post():
    s = db_session()
    u = _current_user()

    try:
        death_id = int(request.form.get("death_record_id") or 0) or None
        amount = parse_amount(request.form.get("amount"))
    except ValueError:
        flash("Invalid death record or amount.", "danger")
        return redirect(url_for("benefits.claims_new_get"))

    try:
        claim = create_claim(
            s,
            death_id=death_id,
            amount=amount,
            user=u,
            payment_method=(request.form.get("payment_method") or "").strip() or None,
        )
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
        return redirect(url_for("benefits.claims_new_get"))

    flash("Benefit claim created.", "success")
    return redirect(url_for("benefits.claim_detail", claim_id=claim.id))


@bp.get("/benefits/<int:claim_id>")
@require_permission("benefits.view")
def claim_detail(claim_id: int):
    s = db_session()
    claim = s.get(BenefitClaim, claim_id)
    if not claim:
        abort(404)
    return render_template(
        "admin/benefits/detail.html",
        claim=claim,
        available_transitions=CLAIM_TRANSITIONS.get(claim.status, set()),
        events=entity_history(s, "BenefitClaim", claim.id),
    )


@bp.post("/benefits/<int:claim_id>/approve")
@require_permission("benefits.approve")
def claim_approve_post(claim_id: int):
    s = db_session()
    u = _current_user()

    try:
        claim = approve_claim(s, claim_id, u)
        s.commit()
    except (WorkflowError, SQLAlchemyError) as e:
        s.rollback()
        flash(readable_error_message(e), "danger")
        return redirect(url_for("benefits.claim_detail", claim_id=claim_id))

    if claim.amount:
        flash("Claim approved and payout recorded in the ledger.", "success")
    else:
        flash("Claim approved. No amount set, so no ledger entry was made.", "warning")
    return redirect(url_for("benefits.claim_detail", claim_id=claim_id))

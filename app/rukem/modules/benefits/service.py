"""
Benefit workflow: death record -> claim -> approval -> ledger debit.

Approval is a single transaction. The claim update only matches a row that
is still pending, so of two racing approvers exactly one wins and exactly
one ledger entry is written.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.rukem.audit import record_event
from app.rukem.errors import (
    DuplicateRecordError,
    InvalidTransitionError,
    MemberNotEligibleError,
    NoDeathRecordError,
    ReferenceNotFoundError,
    ValidationError,
)
from app.rukem.modules.deaths.models import DeathRecord
from app.rukem.modules.ledger.models import Direction, LedgerCategory, LedgerSource
from app.rukem.modules.ledger.service import append_entry

from .models import BenefitClaim, ClaimStatus, PaymentMethod

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.rukem.models import User

logger = logging.getLogger(__name__)

# Only pending -> approved is exposed. DISBURSED/REJECTED have no inbound edge.
CLAIM_TRANSITIONS = {
    ClaimStatus.PENDING: {ClaimStatus.APPROVED},
    ClaimStatus.APPROVED: set(),
    ClaimStatus.DISBURSED: set(),
    ClaimStatus.REJECTED: set(),
}

PAYOUT_MEMO = "Payment of benefit - Alm. {name}"


def can_transition_to(claim: BenefitClaim, new_status: str) -> tuple[bool, list[str]]:
    errors = []
    if claim.status not in CLAIM_TRANSITIONS:
        errors.append(f"Current status '{claim.status}' is invalid")
        return False, errors
    if new_status not in CLAIM_TRANSITIONS[claim.status]:
        errors.append(f"Cannot change a claim from '{claim.status}' to '{new_status}'.")
        return False, errors
    return True, []


def get_claim(s: "Session", claim_id: int) -> BenefitClaim:
    claim = s.get(BenefitClaim, claim_id)
    if claim is None:
        raise ReferenceNotFoundError()
    return claim


def create_claim(
    s: "Session",
    *,
    death_id: int | None,
    amount: int | None,
    user: "User",
    payment_method: str | None = None,
) -> BenefitClaim:
    """
    Open a pending claim for a death record.

    Preconditions, checked in order:
      1. the death record exists (NoDeathRecordError)
      2. the member holds a registered, active membership (MemberNotEligibleError)
      3. no claim exists yet for this death (DuplicateRecordError)
      4. amount, when given, is not negative (ValidationError)
    """
    death = s.get(DeathRecord, death_id) if death_id is not None else None
    if death is None:
        raise NoDeathRecordError()

    member = death.member
    if member is None:
        raise ReferenceNotFoundError()
    membership = member.membership
    if membership is None or not membership.is_eligible:
        raise MemberNotEligibleError()

    existing = s.query(BenefitClaim.id).filter(BenefitClaim.death_record_id == death.id).first()
    if existing:
        raise DuplicateRecordError()

    errors = []
    if amount is not None and amount < 0:
        errors.append("Amount cannot be negative.")
    if payment_method and payment_method not in PaymentMethod.ALL:
        errors.append(f"Invalid payment method. Must be one of: {', '.join(PaymentMethod.ALL)}")
    if errors:
        raise ValidationError(errors)

    now = datetime.utcnow()
    claim = BenefitClaim(
        death_record=death,
        member_id=member.id,
        amount=amount,
        status=ClaimStatus.PENDING,
        payment_method=payment_method or None,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(claim)
    try:
        s.flush()
    except IntegrityError as e:
        raise DuplicateRecordError() from e

    record_event(
        s,
        actor=user,
        action="benefit.create",
        entity_type="BenefitClaim",
        entity_id=str(claim.id),
        metadata={"death_record_id": death.id, "member_id": member.id, "amount": amount},
    )
    logger.info("Benefit claim created id=%s death_record_id=%s amount=%s", claim.id, death.id, amount)
    return claim


def approve_claim(s: "Session", claim_id: int, user: "User", today: date | None = None) -> BenefitClaim:
    """
    pending -> approved, plus the payout ledger entry when amount > 0.

    Both writes happen in the caller's transaction; the caller commits once.
    A claim with no amount (or 0) is approved without a ledger entry.
    """
    today = today or date.today()
    claim = get_claim(s, claim_id)
    ok, errors = can_transition_to(claim, ClaimStatus.APPROVED)
    if not ok:
        logger.warning("Rejected approval of claim id=%s: %s", claim.id, "; ".join(errors))
        raise InvalidTransitionError("; ".join(errors))

    member_name = claim.member.household_head_name if claim.member else ""
    amount = claim.amount

    now = datetime.utcnow()
    result = s.execute(
        update(BenefitClaim)
        .where(BenefitClaim.id == claim.id, BenefitClaim.status == ClaimStatus.PENDING)
        .values(
            status=ClaimStatus.APPROVED,
            approved_by_user_id=user.id,
            approved_at=now,
            disbursed_on=today,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        # Another approver committed first.
        logger.warning("Lost approval race for claim id=%s", claim.id)
        raise InvalidTransitionError("This claim has already been processed.")
    s.refresh(claim)

    if amount and amount > 0:
        append_entry(
            s,
            direction=Direction.OUT,
            amount=amount,
            category=LedgerCategory.BENEFIT_PAYOUT,
            entry_date=today,
            memo=PAYOUT_MEMO.format(name=member_name),
            user=user,
            source=LedgerSource.BENEFIT_APPROVAL,
            benefit_claim_id=claim.id,
        )

    record_event(
        s,
        actor=user,
        action="benefit.approve",
        entity_type="BenefitClaim",
        entity_id=str(claim.id),
        metadata={"amount": amount, "member_name": member_name, "disbursed_on": str(today)},
    )
    logger.info("Benefit claim approved id=%s amount=%s by user_id=%s", claim.id, amount, user.id)
    return claim


def query_claims(s: "Session", *, status: str = ""):
    q = s.query(BenefitClaim)
    if status in ClaimStatus.ALL:
        q = q.filter(BenefitClaim.status == status)
    return q.order_by(BenefitClaim.created_at.desc(), BenefitClaim.id.desc())

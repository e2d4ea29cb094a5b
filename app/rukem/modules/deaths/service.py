"""
Death recorder.

A member gets at most one death record. Once it exists the member is
deceased for every other module. Verification is one-way.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.rukem.audit import record_event
from app.rukem.errors import DuplicateRecordError, InvalidTransitionError, ReferenceNotFoundError, ValidationError
from app.rukem.utils import normalize_text

from .models import DeathRecord, VerificationStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.rukem.models import User

logger = logging.getLogger(__name__)


def record_death(
    s: "Session",
    *,
    member_id: int,
    date_of_death: date | None,
    user: "User",
    time_of_death: time | None = None,
    place_of_death: str | None = None,
    reporter_name: str | None = None,
    certificate_number: str | None = None,
    note: str | None = None,
) -> DeathRecord:
    """Insert a pending death record for a member that has none yet."""
    from app.rukem.modules.members.models import Member

    if date_of_death is None:
        raise ValidationError("Date of death is required.")
    if date_of_death > date.today():
        raise ValidationError("Date of death cannot be in the future.")

    member = s.get(Member, member_id)
    if member is None:
        raise ReferenceNotFoundError()
    existing = s.query(DeathRecord.id).filter(DeathRecord.member_id == member_id).first()
    if existing:
        raise DuplicateRecordError()

    now = datetime.utcnow()
    death = DeathRecord(
        member=member,
        date_of_death=date_of_death,
        time_of_death=time_of_death,
        place_of_death=normalize_text(place_of_death),
        reporter_name=normalize_text(reporter_name),
        certificate_number=normalize_text(certificate_number),
        note=normalize_text(note),
        verification_status=VerificationStatus.PENDING,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(death)
    try:
        s.flush()
    except IntegrityError as e:
        # Concurrent report for the same member won the unique constraint.
        raise DuplicateRecordError() from e

    record_event(
        s,
        actor=user,
        action="death.create",
        entity_type="DeathRecord",
        entity_id=str(death.id),
        metadata={
            "member_id": member.id,
            "member_name": member.household_head_name,
            "date_of_death": str(date_of_death),
        },
    )
    logger.info("Death recorded id=%s member_id=%s", death.id, member.id)
    return death


def verify_death(s: "Session", death: DeathRecord, user: "User") -> DeathRecord:
    """
    pending -> verified. The update only matches a still-pending row, so a
    second (or concurrent) verification fails instead of overwriting the
    first verifier.
    """
    now = datetime.utcnow()
    result = s.execute(
        update(DeathRecord)
        .where(DeathRecord.id == death.id, DeathRecord.verification_status == VerificationStatus.PENDING)
        .values(
            verification_status=VerificationStatus.VERIFIED,
            verified_at=now,
            verified_by_user_id=user.id,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        logger.warning("Rejected verification of death id=%s (already %s)", death.id, death.verification_status)
        raise InvalidTransitionError("Death record is already verified.")
    s.refresh(death)

    record_event(
        s,
        actor=user,
        action="death.verify",
        entity_type="DeathRecord",
        entity_id=str(death.id),
        metadata={"member_id": death.member_id},
    )
    logger.info("Death verified id=%s by user_id=%s", death.id, user.id)
    return death


def get_death(s: "Session", death_id: int) -> DeathRecord:
    death = s.get(DeathRecord, death_id)
    if death is None:
        raise ReferenceNotFoundError()
    return death


def query_deaths(s: "Session", *, search: str = "", status: str = ""):
    from app.rukem.modules.members.models import Member

    q = s.query(DeathRecord).join(Member, DeathRecord.member_id == Member.id)
    if search:
        q = q.filter(Member.household_head_name.ilike(f"%{search}%"))
    if status in VerificationStatus.ALL:
        q = q.filter(DeathRecord.verification_status == status)
    return q.order_by(DeathRecord.date_of_death.desc(), DeathRecord.id.desc())


def claimable_deaths(s: "Session") -> list[DeathRecord]:
    """Death records that have no benefit claim yet (claim-creation picker)."""
    from app.rukem.modules.benefits.models import BenefitClaim

    claimed = select(BenefitClaim.death_record_id)
    return (
        s.query(DeathRecord)
        .filter(DeathRecord.id.not_in(claimed))
        .order_by(DeathRecord.date_of_death.desc())
        .all()
    )

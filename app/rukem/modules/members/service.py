"""
Member registry service.

Members are the root of the lifecycle: a death record may later point at
one, which turns the member read-only everywhere in the application.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.rukem.audit import record_event
from app.rukem.errors import DeceasedMemberError, DuplicateRecordError, InvalidTransitionError, ReferenceNotFoundError, ValidationError
from app.rukem.utils import normalize_text, parse_date

from .models import ApprovalStatus, DuesStanding, DuesType, LifecycleStatus, Member, Membership, MembershipStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.rukem.models import User

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "member_number",
    "data_number",
    "household_head_name",
    "family_card_number",
    "national_id",
    "birth_place",
    "gender",
    "religion",
    "marital_status",
    "occupation",
    "education",
    "nationality",
    "address",
    "rt",
    "rw",
    "village",
    "district",
    "city",
    "province",
    "postal_code",
    "phone",
    "email",
)
DATE_FIELDS = ("bookkeeping_date", "registered_on", "birth_date")
VALID_GENDERS = ("L", "P")


def validate_member_payload(payload: dict) -> list[str]:
    """Validate member creation/update payload. Returns list of errors."""
    errors = []
    if not (payload.get("household_head_name") or "").strip():
        errors.append("Household head name is required.")
    gender = (payload.get("gender") or "").strip().upper()
    if gender and gender not in VALID_GENDERS:
        errors.append("Gender must be L or P.")
    for field in DATE_FIELDS:
        raw = payload.get(field)
        if isinstance(raw, date):
            continue
        try:
            parse_date(raw)
        except ValueError:
            errors.append(f"Invalid date for {field.replace('_', ' ')}. Use YYYY-MM-DD.")
    nik = (payload.get("national_id") or "").strip()
    if nik and (not nik.isdigit() or len(nik) != 16):
        errors.append("National ID (NIK) must be 16 digits.")
    kk = (payload.get("family_card_number") or "").strip()
    if kk and (not kk.isdigit() or len(kk) != 16):
        errors.append("Family card number (KK) must be 16 digits.")
    return errors


def _member_values(payload: dict) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in TEXT_FIELDS:
        if field in payload:
            values[field] = normalize_text(payload.get(field))
    for field in DATE_FIELDS:
        if field in payload:
            raw = payload.get(field)
            values[field] = raw if isinstance(raw, date) else parse_date(raw)
    if values.get("gender"):
        values["gender"] = values["gender"].upper()
    return values


def _ensure_member_number_free(s: "Session", member_number: str | None, *, exclude_id: int | None = None) -> None:
    if not member_number:
        return
    q = s.query(Member.id).filter(Member.member_number == member_number)
    if exclude_id is not None:
        q = q.filter(Member.id != exclude_id)
    if q.first():
        raise DuplicateRecordError(f"Member number '{member_number}' is already in use.")


def get_member(s: "Session", member_id: int) -> Member:
    member = s.get(Member, member_id)
    if member is None:
        raise ReferenceNotFoundError()
    return member


def create_member(
    s: "Session",
    payload: dict,
    user: "User | None",
    *,
    approval_status: str = ApprovalStatus.ACTIVE,
) -> Member:
    """Create a member. Staff-created members are approved immediately."""
    errors = validate_member_payload(payload)
    if errors:
        raise ValidationError(errors)
    values = _member_values(payload)
    _ensure_member_number_free(s, values.get("member_number"))

    now = datetime.utcnow()
    member = Member(
        **values,
        exited=False,
        approval_status=approval_status,
        approved_at=now if approval_status == ApprovalStatus.ACTIVE and user else None,
        approved_by_user_id=user.id if approval_status == ApprovalStatus.ACTIVE and user else None,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    if values.get("registered_on") is None:
        member.registered_on = now.date()
    s.add(member)
    s.flush()

    if payload.get("register_membership"):
        upsert_membership(s, member, payload, user)

    record_event(
        s,
        actor=user,
        action="member.create",
        entity_type="Member",
        entity_id=str(member.id),
        metadata={"name": member.household_head_name, "approval_status": member.approval_status},
    )
    logger.info("Member created id=%s approval_status=%s", member.id, member.approval_status)
    return member


def _ensure_alive(member: Member) -> None:
    if member.is_deceased:
        raise DeceasedMemberError()


def update_member(s: "Session", member: Member, payload: dict, user: "User", reason: str | None = None) -> Member:
    """
    Update personal fields. Deceased members are immutable. Exit status is
    only changed through upsert_membership() so it matches the membership.
    """
    _ensure_alive(member)
    errors = validate_member_payload(payload)
    if errors:
        raise ValidationError(errors)
    values = _member_values(payload)
    _ensure_member_number_free(s, values.get("member_number"), exclude_id=member.id)

    changes = {}
    for field, new in values.items():
        old = getattr(member, field)
        if old != new:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(member, field, new)

    member.updated_at = datetime.utcnow()
    member.updated_by_user_id = user.id

    if changes:
        record_event(
            s,
            actor=user,
            action="member.update",
            entity_type="Member",
            entity_id=str(member.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return member


def delete_member(s: "Session", member: Member, user: "User", reason: str | None = None) -> None:
    _ensure_alive(member)
    record_event(
        s,
        actor=user,
        action="member.delete",
        entity_type="Member",
        entity_id=str(member.id),
        reason=reason,
        metadata={"name": member.household_head_name, "member_number": member.member_number},
    )
    s.delete(member)
    logger.info("Member deleted id=%s", member.id)


def validate_membership_payload(payload: dict) -> list[str]:
    errors = []
    status = (payload.get("membership_status") or "").strip()
    if status and status not in MembershipStatus.ALL:
        errors.append(f"Invalid membership status. Must be one of: {', '.join(MembershipStatus.ALL)}")
    dues_type = (payload.get("dues_type") or "").strip()
    if dues_type and dues_type not in DuesType.ALL:
        errors.append(f"Invalid dues type. Must be one of: {', '.join(DuesType.ALL)}")
    standing = (payload.get("dues_standing") or "").strip()
    if standing and standing not in DuesStanding.ALL:
        errors.append(f"Invalid dues standing. Must be one of: {', '.join(DuesStanding.ALL)}")
    raw_start = payload.get("membership_start_date")
    if raw_start and not isinstance(raw_start, date):
        try:
            parse_date(raw_start)
        except ValueError:
            errors.append("Invalid membership start date. Use YYYY-MM-DD.")
    return errors


def upsert_membership(s: "Session", member: Member, payload: dict, user: "User | None") -> Membership:
    """
    Create or update the member's RUKEM membership record.
    Marking the membership exited also flags the member as exited.
    """
    _ensure_alive(member)
    errors = validate_membership_payload(payload)
    if errors:
        raise ValidationError(errors)

    ms = member.membership
    created = ms is None
    if ms is None:
        ms = Membership(member_id=member.id)
        member.membership = ms
        s.add(ms)

    raw_registered = payload.get("registered", True)
    ms.registered = raw_registered not in (False, "0", "false", "off", "")
    ms.status = (payload.get("membership_status") or ms.status or MembershipStatus.ACTIVE).strip()
    ms.dues_type = (payload.get("dues_type") or ms.dues_type or DuesType.MONTHLY).strip()
    ms.dues_standing = (payload.get("dues_standing") or ms.dues_standing or DuesStanding.CURRENT).strip()
    raw_start = payload.get("membership_start_date")
    if raw_start:
        ms.start_date = raw_start if isinstance(raw_start, date) else parse_date(raw_start)
    elif ms.start_date is None:
        ms.start_date = member.registered_on
    if "membership_note" in payload:
        ms.note = normalize_text(payload.get("membership_note"))
    ms.updated_at = datetime.utcnow()

    member.exited = ms.status == MembershipStatus.EXITED

    record_event(
        s,
        actor=user,
        action="membership.create" if created else "membership.update",
        entity_type="Membership",
        entity_id=str(member.id),
        metadata={
            "registered": ms.registered,
            "status": ms.status,
            "dues_type": ms.dues_type,
            "dues_standing": ms.dues_standing,
        },
    )
    return ms


def active_members(s: "Session") -> list[Member]:
    """
    Members that may still be reported deceased: approved, not exited and
    without a death record. This is the picker for new death records.
    """
    from app.rukem.modules.deaths.models import DeathRecord

    deceased_ids = select(DeathRecord.member_id)
    return (
        s.query(Member)
        .filter(Member.exited.is_(False))
        .filter(Member.approval_status == ApprovalStatus.ACTIVE)
        .filter(Member.id.not_in(deceased_ids))
        .order_by(Member.household_head_name.asc())
        .all()
    )


def query_members(s: "Session", *, search: str = "", status: str = ""):
    """Listing query for approved members, filtered by lifecycle status."""
    from app.rukem.modules.deaths.models import DeathRecord

    q = s.query(Member).filter(Member.approval_status == ApprovalStatus.ACTIVE)
    if search:
        like_pat = f"%{search}%"
        q = q.filter(
            or_(
                Member.household_head_name.ilike(like_pat),
                Member.member_number.ilike(like_pat),
                Member.national_id.ilike(like_pat),
                Member.family_card_number.ilike(like_pat),
            )
        )
    deceased_ids = select(DeathRecord.member_id)
    if status == LifecycleStatus.DECEASED:
        q = q.filter(Member.id.in_(deceased_ids))
    elif status == LifecycleStatus.EXITED:
        q = q.filter(Member.exited.is_(True), Member.id.not_in(deceased_ids))
    elif status == LifecycleStatus.ACTIVE:
        q = q.filter(Member.exited.is_(False), Member.id.not_in(deceased_ids))
    return q


def lifecycle_counts(s: "Session") -> dict[str, int]:
    counts = {k: 0 for k in LifecycleStatus.ALL}
    for status in LifecycleStatus.ALL:
        counts[status] = query_members(s, status=status).count()
    return counts


# ─────────────────────────────────────────────────────────────────────────────
# Self-registration
# ─────────────────────────────────────────────────────────────────────────────


def submit_registration(s: "Session", payload: dict) -> Member:
    """Public registration form: the member waits for staff approval."""
    return create_member(s, payload, None, approval_status=ApprovalStatus.PENDING)


def pending_registrations(s: "Session") -> list[Member]:
    return (
        s.query(Member)
        .filter(Member.approval_status == ApprovalStatus.PENDING)
        .order_by(Member.created_at.asc())
        .all()
    )


def _review_registration(s: "Session", member: Member, user: "User", new_status: str, reason: str | None) -> Member:
    if member.approval_status != ApprovalStatus.PENDING:
        raise InvalidTransitionError(f"Registration is already {member.approval_status}.")
    member.approval_status = new_status
    member.approved_at = datetime.utcnow()
    member.approved_by_user_id = user.id
    member.updated_at = member.approved_at
    member.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="member.registration_approve" if new_status == ApprovalStatus.ACTIVE else "member.registration_reject",
        entity_type="Member",
        entity_id=str(member.id),
        reason=reason,
        metadata={"name": member.household_head_name},
    )
    return member


def approve_registration(s: "Session", member: Member, user: "User") -> Member:
    member = _review_registration(s, member, user, ApprovalStatus.ACTIVE, None)
    if member.membership is None:
        upsert_membership(s, member, {"registered": True}, user)
    return member


def reject_registration(s: "Session", member: Member, user: "User", reason: str | None = None) -> Member:
    return _review_registration(s, member, user, ApprovalStatus.REJECTED, reason)


# ─────────────────────────────────────────────────────────────────────────────
# Bulk import
# ─────────────────────────────────────────────────────────────────────────────


def import_members(s: "Session", rows: list[dict], user: "User") -> tuple[int, list[str]]:
    """
    Create members from parsed CSV rows. Rows that fail validation or clash
    with an existing member number are skipped and reported; create_member
    checks both before it writes anything.
    """
    created = 0
    errors: list[str] = []
    for row in rows:
        row_number = row.pop("_row_number", None)
        try:
            create_member(s, row, user)
            created += 1
        except (ValidationError, DuplicateRecordError) as e:
            errors.append(f"Row {row_number}: {e}")
    record_event(
        s,
        actor=user,
        action="member.import",
        entity_type="Member",
        entity_id="import",
        metadata={"created": created, "errors": len(errors)},
    )
    return created, errors

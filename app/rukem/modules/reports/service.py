"""
Aggregate statistics for the dashboard and the public landing page.

Results are cached per database and dropped whenever a committed
transaction in this process touches one of the source tables (see
app.rukem.notifications). Writes from other workers or scripts are picked
up when an entry expires after STATS_CACHE_SECONDS.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import TYPE_CHECKING

from flask import current_app, has_app_context
from sqlalchemy import extract, func

from app.rukem import notifications
from app.rukem.modules.benefits.models import BenefitClaim, ClaimStatus
from app.rukem.modules.deaths.models import DeathRecord
from app.rukem.modules.ledger.service import ledger_totals
from app.rukem.modules.members.models import ApprovalStatus, Member

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

SOURCE_TABLES = ("members", "memberships", "death_records", "benefit_claims", "ledger_entries")

DEFAULT_CACHE_SECONDS = 30

_cache: dict[tuple[str, str], tuple[float, dict]] = {}
_cache_lock = threading.Lock()
_clock = time.monotonic


def _invalidate(table: str) -> None:
    with _cache_lock:
        if _cache:
            logger.debug("Stats cache cleared after write to %s", table)
        _cache.clear()


notifications.subscribe(SOURCE_TABLES, _invalidate)


def _cache_key(s: "Session", name: str) -> tuple[str, str]:
    return (str(s.get_bind().url), name)


def _ttl() -> int:
    if has_app_context():
        return int(current_app.config.get("STATS_CACHE_SECONDS", DEFAULT_CACHE_SECONDS))
    return DEFAULT_CACHE_SECONDS


def _cached(s: "Session", name: str, compute) -> dict:
    key = _cache_key(s, name)
    now = _clock()
    with _cache_lock:
        hit = _cache.get(key)
    if hit is not None and hit[0] > now:
        return dict(hit[1])
    value = compute(s)
    with _cache_lock:
        _cache[key] = (now + _ttl(), value)
    return dict(value)


def _compute_dashboard(s: "Session") -> dict:
    total_members = (
        s.query(func.count(Member.id))
        .filter(Member.exited.is_(False), Member.approval_status == ApprovalStatus.ACTIVE)
        .scalar()
        or 0
    )
    deceased = s.query(func.count(DeathRecord.id)).scalar() or 0
    pending_registrations = (
        s.query(func.count(Member.id)).filter(Member.approval_status == ApprovalStatus.PENDING).scalar() or 0
    )
    pending_claims = (
        s.query(func.count(BenefitClaim.id)).filter(BenefitClaim.status == ClaimStatus.PENDING).scalar() or 0
    )
    unverified_deaths = (
        s.query(func.count(DeathRecord.id)).filter(DeathRecord.verification_status == "pending").scalar() or 0
    )

    year = date.today().year
    benefits_sum, benefits_count = (
        s.query(func.coalesce(func.sum(BenefitClaim.amount), 0), func.count(BenefitClaim.id))
        .filter(BenefitClaim.status == ClaimStatus.APPROVED)
        .filter(extract("year", BenefitClaim.disbursed_on) == year)
        .one()
    )

    total_in, total_out = ledger_totals(s)
    return {
        "total_members": int(total_members),
        "deceased_members": int(deceased),
        "active_members": max(0, int(total_members) - int(deceased)),
        "pending_registrations": int(pending_registrations),
        "pending_claims": int(pending_claims),
        "unverified_deaths": int(unverified_deaths),
        "total_in": total_in,
        "total_out": total_out,
        "balance": total_in - total_out,
        "benefits_paid_this_year": int(benefits_sum or 0),
        "benefits_count_this_year": int(benefits_count or 0),
    }


def dashboard_stats(s: "Session") -> dict:
    return _cached(s, "dashboard", _compute_dashboard)


def public_stats(s: "Session") -> dict:
    """The subset shown to anonymous visitors."""
    stats = dashboard_stats(s)
    return {
        "members": stats["total_members"],
        "balance": stats["balance"],
        "benefits_paid": stats["benefits_paid_this_year"],
        "benefits_count": stats["benefits_count_this_year"],
        "deaths": stats["deceased_members"],
    }


def recent_deaths(s: "Session", limit: int = 5) -> list[dict]:
    rows = s.query(DeathRecord).order_by(DeathRecord.date_of_death.desc(), DeathRecord.id.desc()).limit(limit).all()
    out = []
    for d in rows:
        claim = d.benefit_claim
        out.append(
            {
                "id": d.id,
                "name": d.member.household_head_name if d.member else "",
                "rt_rw": d.member.rt_rw if d.member else "-",
                "date_of_death": d.date_of_death,
                "verification_status": d.verification_status,
                "claim_state": "completed" if claim and claim.status == ClaimStatus.APPROVED else "in_process",
            }
        )
    return out

"""
Cash ledger service.

The balance has one source of truth: sum(in) - sum(out) over every entry.
`balance_after` is written for display when an entry is appended and is
never read back to compute a balance.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func

from app.rukem.audit import record_event
from app.rukem.errors import ValidationError
from app.rukem.utils import normalize_text

from .models import Direction, LedgerCategory, LedgerEntry, LedgerSource

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.rukem.models import User

logger = logging.getLogger(__name__)

MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def validate_entry(direction: str | None, amount: int | None, category: str | None, entry_date: date | None) -> list[str]:
    errors = []
    if direction not in Direction.ALL:
        errors.append("Direction must be 'in' or 'out'.")
    if category not in LedgerCategory.ALL:
        errors.append(f"Invalid category. Must be one of: {', '.join(LedgerCategory.ALL)}")
    if amount is None:
        errors.append("Amount is required.")
    elif amount <= 0:
        errors.append("Amount must be greater than zero.")
    if entry_date is None:
        errors.append("Date is required.")
    return errors


def ledger_totals(s: "Session") -> tuple[int, int]:
    """(total_in, total_out) over the whole ledger."""
    total_in, total_out = s.query(
        func.coalesce(func.sum(case((LedgerEntry.direction == Direction.IN, LedgerEntry.amount), else_=0)), 0),
        func.coalesce(func.sum(case((LedgerEntry.direction == Direction.OUT, LedgerEntry.amount), else_=0)), 0),
    ).one()
    return int(total_in), int(total_out)


def current_balance(s: "Session") -> int:
    total_in, total_out = ledger_totals(s)
    return total_in - total_out


def append_entry(
    s: "Session",
    *,
    direction: str,
    amount: int | None,
    category: str,
    entry_date: date | None,
    memo: str | None,
    user: "User | None",
    source: str = LedgerSource.MANUAL,
    benefit_claim_id: int | None = None,
) -> LedgerEntry:
    """Insert one ledger row. Callers commit; this only flushes."""
    errors = validate_entry(direction, amount, category, entry_date)
    if source not in LedgerSource.ALL:
        errors.append(f"Invalid source '{source}'.")
    if errors:
        raise ValidationError(errors)

    balance = current_balance(s)
    balance += amount if direction == Direction.IN else -amount  # type: ignore[operator]

    entry = LedgerEntry(
        entry_date=entry_date,
        direction=direction,
        category=category,
        memo=normalize_text(memo),
        amount=amount,
        balance_after=balance,
        source=source,
        benefit_claim_id=benefit_claim_id,
        created_at=datetime.utcnow(),
        created_by_user_id=user.id if user else None,
    )
    s.add(entry)
    s.flush()

    record_event(
        s,
        actor=user,
        action="ledger.append",
        entity_type="LedgerEntry",
        entity_id=str(entry.id),
        metadata={
            "direction": direction,
            "category": category,
            "amount": amount,
            "entry_date": str(entry_date),
            "source": source,
            "benefit_claim_id": benefit_claim_id,
        },
    )
    logger.info("Ledger entry id=%s %s %s (%s)", entry.id, direction, amount, source)
    return entry


def query_entries(s: "Session", *, start: date | None = None, end: date | None = None, direction: str = ""):
    q = s.query(LedgerEntry)
    if start:
        q = q.filter(LedgerEntry.entry_date >= start)
    if end:
        q = q.filter(LedgerEntry.entry_date <= end)
    if direction in Direction.ALL:
        q = q.filter(LedgerEntry.direction == direction)
    return q.order_by(LedgerEntry.entry_date.asc(), LedgerEntry.id.asc())


def running_balances(entries: Iterable[LedgerEntry], opening: int = 0) -> list[tuple[LedgerEntry, int]]:
    """Pair each entry (in ledger order) with the balance after it."""
    out = []
    balance = opening
    for e in entries:
        balance += e.signed_amount
        out.append((e, balance))
    return out


def opening_balance(s: "Session", before: date) -> int:
    """Derived balance of all entries dated strictly before `before`."""
    total_in, total_out = s.query(
        func.coalesce(func.sum(case((LedgerEntry.direction == Direction.IN, LedgerEntry.amount), else_=0)), 0),
        func.coalesce(func.sum(case((LedgerEntry.direction == Direction.OUT, LedgerEntry.amount), else_=0)), 0),
    ).filter(LedgerEntry.entry_date < before).one()
    return int(total_in) - int(total_out)


def _month_start(d: date, back: int) -> date:
    idx = d.year * 12 + (d.month - 1) - back
    return date(idx // 12, idx % 12 + 1, 1)


def monthly_summary(s: "Session", months: int = 6, today: date | None = None) -> list[dict]:
    """
    Inflow/outflow per calendar month for the last `months` months
    (current month included), oldest first. Empty months are zeros.
    """
    today = today or date.today()
    months = max(1, months)
    first = _month_start(today, months - 1)

    buckets: dict[str, dict] = {}
    for back in range(months - 1, -1, -1):
        m = _month_start(today, back)
        key = f"{m.year:04d}-{m.month:02d}"
        buckets[key] = {"month": key, "label": f"{MONTH_ABBR[m.month - 1]} {m.year}", "inflow": 0, "outflow": 0}

    rows = (
        s.query(LedgerEntry.entry_date, LedgerEntry.direction, LedgerEntry.amount)
        .filter(LedgerEntry.entry_date >= first, LedgerEntry.entry_date <= today)
        .all()
    )
    for entry_date, direction, amount in rows:
        key = f"{entry_date.year:04d}-{entry_date.month:02d}"
        bucket = buckets.get(key)
        if bucket is None:
            continue
        if direction == Direction.IN:
            bucket["inflow"] += int(amount)
        else:
            bucket["outflow"] += int(amount)
    return list(buckets.values())

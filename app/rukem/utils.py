from __future__ import annotations

from datetime import date, time


def normalize_text(s: str | None) -> str | None:
    if s is None:
        return None
    s = str(s).strip()
    return s or None


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (HTML <input type="date">)."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_time(s: str | None) -> time | None:
    """Parse HH:MM or HH:MM:SS."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return time.fromisoformat(s)


def parse_amount(s: str | int | None) -> int | None:
    """
    Parse a rupiah amount typed by a user: "5.000.000", "5,000,000", "Rp 5000000".
    Returns None for blank input; raises ValueError for anything non-numeric.
    """
    if s is None:
        return None
    if isinstance(s, int):
        return s
    cleaned = s.strip().lower().replace("rp", "").replace(" ", "")
    if not cleaned:
        return None
    # Rupiah has no minor unit in practice; treat "," and "." as grouping.
    cleaned = cleaned.replace(".", "").replace(",", "")
    if not cleaned.lstrip("-").isdigit():
        raise ValueError(f"Invalid amount: {s!r}")
    return int(cleaned)


def format_rupiah(value: int | None) -> str:
    if value is None:
        return "—"
    sign = "-" if value < 0 else ""
    return f"{sign}Rp {abs(int(value)):,}".replace(",", ".")


def parse_date_range(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    """Parse an optional report date range; invalid bounds are dropped."""
    out: list[date | None] = []
    for raw in (start, end):
        try:
            out.append(parse_date(raw))
        except ValueError:
            out.append(None)
    return out[0], out[1]

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.rukem.models import Base


class Direction:
    IN = "in"
    OUT = "out"
    ALL = (IN, OUT)


class LedgerCategory:
    DUES = "dues"
    DONATION = "donation"
    BENEFIT_PAYOUT = "benefit_payout"
    OPERATIONAL = "operational"
    OTHER = "other"
    ALL = (DUES, DONATION, BENEFIT_PAYOUT, OPERATIONAL, OTHER)

    LABELS = {
        DUES: "Dues",
        DONATION: "Donation",
        BENEFIT_PAYOUT: "Benefit payout",
        OPERATIONAL: "Operational",
        OTHER: "Other",
    }


class LedgerSource:
    MANUAL = "manual"
    BENEFIT_APPROVAL = "benefit_approval"
    IMPORT = "import"
    ALL = (MANUAL, BENEFIT_APPROVAL, IMPORT)


class LedgerEntry(Base):
    """Append-only cash book row. Never updated or deleted once written."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        Index("idx_ledger_entries_entry_date", "entry_date"),
        Index("idx_ledger_entries_direction", "direction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Informational snapshot; the balance is always derived from the sums.
    balance_after: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    source: Mapped[str] = mapped_column(String(32), nullable=False, default=LedgerSource.MANUAL)
    benefit_claim_id: Mapped[int | None] = mapped_column(
        ForeignKey("benefit_claims.id", ondelete="RESTRICT"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == Direction.IN else -self.amount

    @property
    def category_label(self) -> str:
        return LedgerCategory.LABELS.get(self.category, self.category)

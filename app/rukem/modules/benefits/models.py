from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.rukem.models import Base

if TYPE_CHECKING:
    from app.rukem.modules.deaths.models import DeathRecord
    from app.rukem.modules.members.models import Member


class ClaimStatus:
    """
    Benefit claim status. Only pending -> approved is reachable; DISBURSED and
    REJECTED are stored values the schema accepts but no operation sets.
    """

    PENDING = "pending"
    APPROVED = "approved"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    ALL = (PENDING, APPROVED, DISBURSED, REJECTED)


class PaymentMethod:
    CASH = "cash"
    TRANSFER = "transfer"
    E_WALLET = "e-wallet"
    ALL = (CASH, TRANSFER, E_WALLET)


class BenefitClaim(Base):
    __tablename__ = "benefit_claims"
    __table_args__ = (
        Index("idx_benefit_claims_status", "status"),
        Index("idx_benefit_claims_member", "member_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # One claim per death record.
    death_record_id: Mapped[int] = mapped_column(
        ForeignKey("death_records.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)

    # Whole rupiah. Null/0 claims can be approved but never touch the ledger.
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ClaimStatus.PENDING)
    payment_method: Mapped[str | None] = mapped_column(String(16), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    disbursed_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    death_record: Mapped["DeathRecord"] = relationship("DeathRecord", back_populates="benefit_claim", lazy="selectin")
    member: Mapped["Member"] = relationship("Member", lazy="selectin")

    @property
    def is_pending(self) -> bool:
        return self.status == ClaimStatus.PENDING

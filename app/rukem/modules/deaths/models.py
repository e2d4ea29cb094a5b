from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.rukem.models import Base

if TYPE_CHECKING:
    from app.rukem.modules.benefits.models import BenefitClaim
    from app.rukem.modules.members.models import Member


class VerificationStatus:
    PENDING = "pending"
    VERIFIED = "verified"
    ALL = (PENDING, VERIFIED)


class DeathRecord(Base):
    __tablename__ = "death_records"
    __table_args__ = (
        Index("idx_death_records_date_of_death", "date_of_death"),
        Index("idx_death_records_verification_status", "verification_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # One death record per member; the unique constraint is the final guard.
    member_id: Mapped[int] = mapped_column(
        ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, unique=True
    )

    date_of_death: Mapped[date] = mapped_column(Date, nullable=False)
    time_of_death: Mapped[time | None] = mapped_column(Time, nullable=True)
    place_of_death: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reporter_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    certificate_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # pending -> verified, never back
    verification_status: Mapped[str] = mapped_column(String(16), nullable=False, default=VerificationStatus.PENDING)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    verified_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    member: Mapped["Member"] = relationship("Member", back_populates="death_record", lazy="selectin")
    benefit_claim: Mapped["BenefitClaim | None"] = relationship(
        "BenefitClaim",
        back_populates="death_record",
        uselist=False,
        lazy="selectin",
    )

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.rukem.models import Base

if TYPE_CHECKING:
    from app.rukem.modules.deaths.models import DeathRecord


class ApprovalStatus:
    """Review state of a member record (self-registrations start pending)."""

    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    ALL = (PENDING, ACTIVE, REJECTED)


class LifecycleStatus:
    ACTIVE = "active"
    EXITED = "exited"
    DECEASED = "deceased"
    ALL = (ACTIVE, EXITED, DECEASED)


class MembershipStatus:
    ACTIVE = "active"
    EXITED = "exited"
    ALL = (ACTIVE, EXITED)


class DuesType:
    MONTHLY = "monthly"
    PER_INCIDENT = "per_incident"
    ALL = (MONTHLY, PER_INCIDENT)


class DuesStanding:
    CURRENT = "current"
    DELINQUENT = "delinquent"
    ALL = (CURRENT, DELINQUENT)


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        Index("idx_members_name", "household_head_name"),
        Index("idx_members_rt_rw", "rt", "rw"),
        Index("idx_members_approval_status", "approval_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Registry numbers
    member_number: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    data_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bookkeeping_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    registered_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Household head identity
    household_head_name: Mapped[str] = mapped_column(String(255), nullable=False)
    family_card_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    national_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    birth_place: Mapped[str | None] = mapped_column(String(128), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(1), nullable=True)  # "L" / "P"
    religion: Mapped[str | None] = mapped_column(String(64), nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occupation: Mapped[str | None] = mapped_column(String(128), nullable=True)
    education: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nationality: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Address / contact
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    rt: Mapped[str | None] = mapped_column(String(8), nullable=True)
    rw: Mapped[str | None] = mapped_column(String(8), nullable=True)
    village: Mapped[str | None] = mapped_column(String(128), nullable=True)
    district: Mapped[str | None] = mapped_column(String(128), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    province: Mapped[str | None] = mapped_column(String(128), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Left the association while alive
    exited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default=ApprovalStatus.ACTIVE)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    membership: Mapped["Membership | None"] = relationship(
        "Membership",
        back_populates="member",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    death_record: Mapped["DeathRecord | None"] = relationship(
        "DeathRecord",
        back_populates="member",
        uselist=False,
        lazy="selectin",
    )

    @property
    def is_deceased(self) -> bool:
        return self.death_record is not None

    @property
    def lifecycle_status(self) -> str:
        if self.is_deceased:
            return LifecycleStatus.DECEASED
        if self.exited:
            return LifecycleStatus.EXITED
        return LifecycleStatus.ACTIVE

    @property
    def rt_rw(self) -> str:
        if not self.rt and not self.rw:
            return "-"
        return f"{self.rt or '-'}/{self.rw or '-'}"


class Membership(Base):
    """RUKEM membership status of a member (one-to-one)."""

    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, unique=True)

    registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MembershipStatus.ACTIVE)
    dues_type: Mapped[str] = mapped_column(String(16), nullable=False, default=DuesType.MONTHLY)
    dues_standing: Mapped[str] = mapped_column(String(16), nullable=False, default=DuesStanding.CURRENT)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    member: Mapped["Member"] = relationship("Member", back_populates="membership", lazy="selectin")

    @property
    def is_eligible(self) -> bool:
        return bool(self.registered) and self.status == MembershipStatus.ACTIVE

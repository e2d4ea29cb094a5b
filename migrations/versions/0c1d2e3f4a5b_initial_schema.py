"""initial schema: accounts, audit, members, deaths, benefits, ledger

Revision ID: 0c1d2e3f4a5b
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0c1d2e3f4a5b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Accounts / RBAC
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("rt", sa.String(8), nullable=True),
        sa.Column("rw", sa.String(8), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # Members
    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_number", sa.String(64), nullable=True, unique=True),
        sa.Column("data_number", sa.String(64), nullable=True),
        sa.Column("bookkeeping_date", sa.Date(), nullable=True),
        sa.Column("registered_on", sa.Date(), nullable=True),
        sa.Column("household_head_name", sa.String(255), nullable=False),
        sa.Column("family_card_number", sa.String(32), nullable=True),
        sa.Column("national_id", sa.String(32), nullable=True),
        sa.Column("birth_place", sa.String(128), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(1), nullable=True),
        sa.Column("religion", sa.String(64), nullable=True),
        sa.Column("marital_status", sa.String(64), nullable=True),
        sa.Column("occupation", sa.String(128), nullable=True),
        sa.Column("education", sa.String(128), nullable=True),
        sa.Column("nationality", sa.String(64), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("rt", sa.String(8), nullable=True),
        sa.Column("rw", sa.String(8), nullable=True),
        sa.Column("village", sa.String(128), nullable=True),
        sa.Column("district", sa.String(128), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("province", sa.String(128), nullable=True),
        sa.Column("postal_code", sa.String(16), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("exited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approval_status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("idx_members_name", "members", ["household_head_name"])
    op.create_index("idx_members_rt_rw", "members", ["rt", "rw"])
    op.create_index("idx_members_approval_status", "members", ["approval_status"])

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("registered", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("dues_type", sa.String(16), nullable=False, server_default="monthly"),
        sa.Column("dues_standing", sa.String(16), nullable=False, server_default="current"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(),
    )

    # Deaths (one per member)
    op.create_table(
        "death_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, unique=True),
        sa.Column("date_of_death", sa.Date(), nullable=False),
        sa.Column("time_of_death", sa.Time(), nullable=True),
        sa.Column("place_of_death", sa.String(255), nullable=True),
        sa.Column("reporter_name", sa.String(255), nullable=True),
        sa.Column("certificate_number", sa.String(128), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("verification_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verified_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("idx_death_records_date_of_death", "death_records", ["date_of_death"])
    op.create_index("idx_death_records_verification_status", "death_records", ["verification_status"])

    # Benefit claims (one per death record)
    op.create_table(
        "benefit_claims",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "death_record_id",
            sa.Integer(),
            sa.ForeignKey("death_records.id", ondelete="RESTRICT"),
            nullable=False,
            unique=True,
        ),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("disbursed_on", sa.Date(), nullable=True),
        *_timestamps(),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("idx_benefit_claims_status", "benefit_claims", ["status"])
    op.create_index("idx_benefit_claims_member", "benefit_claims", ["member_id"])

    # Cash ledger (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=True),
        sa.Column("source", sa.String(32), nullable=False, server_default="manual"),
        sa.Column(
            "benefit_claim_id",
            sa.Integer(),
            sa.ForeignKey("benefit_claims.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
    )
    op.create_index("idx_ledger_entries_entry_date", "ledger_entries", ["entry_date"])
    op.create_index("idx_ledger_entries_direction", "ledger_entries", ["direction"])


def downgrade() -> None:
    op.drop_index("idx_ledger_entries_direction", table_name="ledger_entries")
    op.drop_index("idx_ledger_entries_entry_date", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("idx_benefit_claims_member", table_name="benefit_claims")
    op.drop_index("idx_benefit_claims_status", table_name="benefit_claims")
    op.drop_table("benefit_claims")
    op.drop_index("idx_death_records_verification_status", table_name="death_records")
    op.drop_index("idx_death_records_date_of_death", table_name="death_records")
    op.drop_table("death_records")
    op.drop_table("memberships")
    op.drop_index("idx_members_approval_status", table_name="members")
    op.drop_index("idx_members_rt_rw", table_name="members")
    op.drop_index("idx_members_name", table_name="members")
    op.drop_table("members")
    op.drop_index("idx_audit_events_entity", table_name="audit_events")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_index("idx_audit_events_created_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")

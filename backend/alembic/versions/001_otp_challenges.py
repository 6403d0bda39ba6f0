"""OTP challenges: one row per issued login verification code.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

challenge_status = sa.Enum(
    "pending",
    "verified",
    "expired",
    "attempts_exhausted",
    "superseded",
    name="otp_challenge_status",
)


def upgrade() -> None:
    op.create_table(
        "otp_challenges",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_email", sa.String(255), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts_remaining", sa.Integer(), nullable=False),
        sa.Column("status", challenge_status, nullable=False, server_default="pending"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issue_seq", sa.Integer(), nullable=False),
    )
    op.create_index("ix_otp_challenges_id", "otp_challenges", ["id"])
    op.create_index("ix_otp_challenges_subject_email", "otp_challenges", ["subject_email"])
    op.create_index("ix_otp_challenges_status", "otp_challenges", ["status"])
    op.create_index(
        "uq_otp_challenges_pending_email",
        "otp_challenges",
        ["subject_email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        "uq_otp_challenges_email_seq",
        "otp_challenges",
        ["subject_email", "issue_seq"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uq_otp_challenges_email_seq", table_name="otp_challenges")
    op.drop_index("uq_otp_challenges_pending_email", table_name="otp_challenges")
    op.drop_index("ix_otp_challenges_status", table_name="otp_challenges")
    op.drop_index("ix_otp_challenges_subject_email", table_name="otp_challenges")
    op.drop_index("ix_otp_challenges_id", table_name="otp_challenges")
    op.drop_table("otp_challenges")
    challenge_status.drop(op.get_bind(), checkfirst=True)

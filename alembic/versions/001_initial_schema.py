"""Initial schema: appointments and audit_log.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Appointments ───────────────────────────────────────────────────

    op.create_table(
        "appointments",
        sa.Column("patient_id", sa.BigInteger(), nullable=False),
        sa.Column("doctor_id", sa.BigInteger(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=False), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("reason", sa.String(500)),
        sa.Column("notes", sa.String(1000)),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_appointments_positive_duration"),
    )
    op.create_index("ix_appointments_status", "appointments", ["status"])
    op.create_index("ix_appointments_doctor_start", "appointments", ["doctor_id", "start_time"])
    op.create_index("ix_appointments_patient_start", "appointments", ["patient_id", "start_time"])

    # ── Audit trail ────────────────────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True)),
        sa.Column("actor_id", sa.String(100), comment="User ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="admin, assistant, doctor, patient, system"),
        sa.Column("data", postgresql.JSONB()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_appointment_id", "audit_log", ["appointment_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("appointments")

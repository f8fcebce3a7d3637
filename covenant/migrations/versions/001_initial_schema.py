"""Initial schema - properties, violations, monthly bills and audit log.

Revision ID: 001
Revises:
Create Date: 2026-09-01 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("owner_name", sa.String(length=255), nullable=False),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("owner_phone", sa.String(length=50), nullable=True),
        sa.Column("resident_since", sa.Date(), nullable=True),
        sa.Column(
            "land_area_sqft", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"
        ),
        sa.Column("rules_text", sa.Text(), nullable=True),
        sa.Column("compliance_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("financial_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("combined_score", sa.Integer(), nullable=False, server_default="100"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_properties_owner_email", "properties", ["owner_email"], unique=False)
    op.create_index("idx_property_compliance", "properties", ["compliance_score"], unique=False)

    op.create_table(
        "violations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("rule_cited", sa.Text(), nullable=True),
        sa.Column("remediation", sa.Text(), nullable=True),
        sa.Column("deadline_days", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("evidence_ref", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column(
            "fine_amount", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"
        ),
        sa.Column("notice_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_violations_property_id", "violations", ["property_id"], unique=False)
    op.create_index("ix_violations_status", "violations", ["status"], unique=False)
    op.create_index(
        "idx_violation_property_status", "violations", ["property_id", "status"], unique=False
    )
    op.create_index(
        "idx_violation_property_created", "violations", ["property_id", "created_at"], unique=False
    )

    op.create_table(
        "monthly_bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("billing_month", sa.Date(), nullable=False),
        sa.Column("base_amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "violation_fines", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"
        ),
        sa.Column("total_amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="pending"),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("property_id", "billing_month", name="uq_bill_property_month"),
    )
    op.create_index("ix_monthly_bills_property_id", "monthly_bills", ["property_id"], unique=False)
    op.create_index("ix_monthly_bills_status", "monthly_bills", ["status"], unique=False)
    op.create_index("idx_bill_status_due", "monthly_bills", ["status", "due_date"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_audit_logs_entity_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity_type", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("idx_bill_status_due", table_name="monthly_bills")
    op.drop_index("ix_monthly_bills_status", table_name="monthly_bills")
    op.drop_index("ix_monthly_bills_property_id", table_name="monthly_bills")
    op.drop_table("monthly_bills")

    op.drop_index("idx_violation_property_created", table_name="violations")
    op.drop_index("idx_violation_property_status", table_name="violations")
    op.drop_index("ix_violations_status", table_name="violations")
    op.drop_index("ix_violations_property_id", table_name="violations")
    op.drop_table("violations")

    op.drop_index("idx_property_compliance", table_name="properties")
    op.drop_index("ix_properties_owner_email", table_name="properties")
    op.drop_table("properties")

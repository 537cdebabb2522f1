"""
001 — Initial schema: assessment ledger

    risk_assessments         append-only, one row per order attempt
    order_assessment_heads   current assessment per order
    review_decisions         first reviewer wins (PK = assessment_id)
    payment_captures         capture seal per order

Revision ID: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "risk_assessments",
        sa.Column("assessment_id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(100), nullable=False),
        sa.Column("customer_id", sa.String(100), nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="1"),
        sa.Column("policy_version", sa.String(40), nullable=False),

        sa.Column("signals", JSON, nullable=False),
        sa.Column("external_judgment", JSON, nullable=True),
        sa.Column("external_score", sa.Float, nullable=True),
        sa.Column("external_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("rules_subscore", sa.Float, nullable=False),
        sa.Column("rules_complete", sa.Boolean, nullable=False, server_default=sa.true()),

        sa.Column("aggregated_score", sa.Float, nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("recommendation", sa.String(10), nullable=False),
        sa.Column("reason_code", sa.String(40), nullable=True),
        sa.Column("rationale", sa.Text, nullable=False, server_default=""),

        sa.Column("submission_snapshot", JSON, nullable=False),
        sa.Column(
            "supersedes", sa.String(36),
            sa.ForeignKey("risk_assessments.assessment_id"), nullable=True, unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.UniqueConstraint("order_id", "attempt", name="uq_risk_assessments_order_attempt"),
    )

    op.create_index("ix_risk_assessments_order_id", "risk_assessments", ["order_id"])
    op.create_index("ix_risk_assessments_customer_id", "risk_assessments", ["customer_id"])
    op.create_index("ix_risk_assessments_level", "risk_assessments", ["level"])
    op.create_index("ix_risk_assessments_recommendation", "risk_assessments", ["recommendation"])
    op.create_index("ix_risk_assessments_created_at", "risk_assessments", ["created_at"])

    op.create_table(
        "order_assessment_heads",
        sa.Column("order_id", sa.String(100), primary_key=True),
        sa.Column(
            "assessment_id", sa.String(36),
            sa.ForeignKey("risk_assessments.assessment_id"), nullable=False, unique=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "review_decisions",
        sa.Column(
            "assessment_id", sa.String(36),
            sa.ForeignKey("risk_assessments.assessment_id"), primary_key=True,
        ),
        sa.Column("order_id", sa.String(100), nullable=False),
        sa.Column("reviewer_id", sa.String(100), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_review_decisions_order_id", "review_decisions", ["order_id"])

    op.create_table(
        "payment_captures",
        sa.Column("order_id", sa.String(100), primary_key=True),
        sa.Column(
            "assessment_id", sa.String(36),
            sa.ForeignKey("risk_assessments.assessment_id"), nullable=False,
        ),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("payment_captures")
    op.drop_table("review_decisions")
    op.drop_table("order_assessment_heads")
    op.drop_index("ix_risk_assessments_created_at", table_name="risk_assessments")
    op.drop_index("ix_risk_assessments_recommendation", table_name="risk_assessments")
    op.drop_index("ix_risk_assessments_level", table_name="risk_assessments")
    op.drop_index("ix_risk_assessments_customer_id", table_name="risk_assessments")
    op.drop_index("ix_risk_assessments_order_id", table_name="risk_assessments")
    op.drop_table("risk_assessments")

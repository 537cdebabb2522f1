"""
Persistent audit tables — append-only assessment log with a per-order head pointer.

    risk_assessments         one immutable row per assessment attempt
    order_assessment_heads   current pointer per order (the only row ever updated)
    review_decisions         at most one per assessment (first reviewer wins)
    payment_captures         seals an order once payment is captured

`superseded_by` is derived from the successor's `supersedes` column; stored
assessments are never rewritten.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RiskAssessmentRow(Base):
    __tablename__ = "risk_assessments"
    __table_args__ = (
        UniqueConstraint("order_id", "attempt", name="uq_risk_assessments_order_attempt"),
    )

    assessment_id = Column(String(36), primary_key=True)
    order_id = Column(String(100), nullable=False, index=True)
    customer_id = Column(String(100), nullable=False, index=True)
    attempt = Column(Integer, nullable=False, default=1)
    policy_version = Column(String(40), nullable=False)

    # ── Evidence ──
    signals = Column(JSON, nullable=False)
    external_judgment = Column(JSON, nullable=True)
    external_score = Column(Float, nullable=True)
    external_available = Column(Boolean, nullable=False, default=False)
    rules_subscore = Column(Float, nullable=False)
    rules_complete = Column(Boolean, nullable=False, default=True)

    # ── Outcome ──
    aggregated_score = Column(Float, nullable=False)
    level = Column(String(10), nullable=False, index=True)
    recommendation = Column(String(10), nullable=False, index=True)
    reason_code = Column(String(40), nullable=True)
    rationale = Column(Text, nullable=False, default="")

    # ── Audit ──
    submission_snapshot = Column(JSON, nullable=False)
    supersedes = Column(String(36), ForeignKey("risk_assessments.assessment_id"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<RiskAssessmentRow {self.assessment_id} order={self.order_id} rec={self.recommendation}>"


class OrderAssessmentHead(Base):
    __tablename__ = "order_assessment_heads"

    order_id = Column(String(100), primary_key=True)
    assessment_id = Column(String(36), ForeignKey("risk_assessments.assessment_id"), nullable=False, unique=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class ReviewDecisionRow(Base):
    __tablename__ = "review_decisions"

    assessment_id = Column(String(36), ForeignKey("risk_assessments.assessment_id"), primary_key=True)
    order_id = Column(String(100), nullable=False, index=True)
    reviewer_id = Column(String(100), nullable=False)
    outcome = Column(String(20), nullable=False)
    notes = Column(Text, nullable=False, default="")
    decided_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class PaymentCaptureRow(Base):
    __tablename__ = "payment_captures"

    order_id = Column(String(100), primary_key=True)
    assessment_id = Column(String(36), ForeignKey("risk_assessments.assessment_id"), nullable=False)
    captured_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

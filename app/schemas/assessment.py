"""
Assessment records, review decisions and the payloads returned to collaborators.

The checkout collaborator only ever sees recommendation, score, level and a
customer-safe reason code. Signals and their evidence are reviewer-only.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.submission import OrderSubmission


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Recommendation(str, Enum):
    APPROVE = "APPROVE"
    VERIFY = "VERIFY"
    DECLINE = "DECLINE"


class ReasonCode(str, Enum):
    """Customer-safe codes. Never carry rule names or evidence."""
    VERIFICATION_REQUIRED = "VERIFICATION_REQUIRED"
    ORDER_DECLINED = "ORDER_DECLINED"
    INCOMPLETE_INFORMATION = "INCOMPLETE_INFORMATION"


class JudgmentFailure(str, Enum):
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    INVALID_RESPONSE = "invalid_response"
    TRANSPORT_ERROR = "transport_error"
    DISABLED = "disabled"
    SKIPPED = "skipped"


class ReviewOutcome(str, Enum):
    CONFIRM = "CONFIRM"
    OVERRIDE_APPROVE = "OVERRIDE_APPROVE"
    OVERRIDE_DECLINE = "OVERRIDE_DECLINE"


class AdmissionState(str, Enum):
    AWAITING_ASSESSMENT = "AWAITING_ASSESSMENT"
    ADMITTED = "ADMITTED"
    HELD_FOR_REVIEW = "HELD_FOR_REVIEW"
    REFUSED = "REFUSED"


# ── Value objects ──

class Signal(BaseModel):
    """One deterministic rule evaluation."""
    model_config = ConfigDict(frozen=True)

    name: str
    weight: float = Field(ge=0)
    triggered: bool
    severity: Severity
    evidence: dict[str, Any] = {}


class ExternalJudgmentResult(BaseModel):
    """
    Opinion from the external classification service.

    An unavailable result has no score at all; it is never filled with a
    neutral default.
    """
    model_config = ConfigDict(frozen=True)

    source_available: bool
    score: Optional[float] = Field(None, ge=0, le=100)
    rationale: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    failure_reason: Optional[JudgmentFailure] = None
    latency_ms: Optional[int] = None

    @model_validator(mode="after")
    def check_availability(self) -> "ExternalJudgmentResult":
        if self.source_available:
            if self.score is None or self.confidence is None:
                raise ValueError("available judgment requires score and confidence")
            if self.failure_reason is not None:
                raise ValueError("available judgment cannot carry a failure reason")
        else:
            if self.score is not None:
                raise ValueError("unavailable judgment cannot carry a score")
            if self.failure_reason is None:
                raise ValueError("unavailable judgment requires a failure reason")
        return self

    @classmethod
    def unavailable(cls, reason: JudgmentFailure, latency_ms: Optional[int] = None) -> "ExternalJudgmentResult":
        return cls(source_available=False, failure_reason=reason, latency_ms=latency_ms)


# ── Entities ──

class RiskAssessment(BaseModel):
    """
    One immutable assessment of one order attempt.

    `superseded_by` is not stored on the record; the ledger derives it from
    the successor's `supersedes` pointer when reading.
    """
    model_config = ConfigDict(frozen=True)

    assessment_id: str
    order_id: str
    customer_id: str
    attempt: int = Field(1, ge=1)
    policy_version: str

    signals: list[Signal]
    external_judgment: Optional[ExternalJudgmentResult] = None
    rules_subscore: float = Field(ge=0, le=100)
    rules_complete: bool = True

    aggregated_score: float = Field(ge=0, le=100)
    level: RiskLevel
    recommendation: Recommendation
    reason_code: Optional[ReasonCode] = None
    rationale: str = ""

    submission_snapshot: dict[str, Any] = {}
    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None
    created_at: datetime

    @property
    def triggered_signals(self) -> list[Signal]:
        return [s for s in self.signals if s.triggered]


class ReviewDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    assessment_id: str
    order_id: str
    reviewer_id: str
    outcome: ReviewOutcome
    notes: str = ""
    decided_at: datetime


class AdmissionDecision(BaseModel):
    """Answer of the admission gate. `allowed` is true only in ADMITTED."""
    order_id: str
    allowed: bool
    state: AdmissionState
    assessment_id: Optional[str] = None
    recommendation: Optional[Recommendation] = None
    review_outcome: Optional[ReviewOutcome] = None
    reason: str
    sealed: bool = False
    checked_at: datetime


# ── API payloads ──

class AssessmentRequest(BaseModel):
    """POST /v1/risk/assess"""
    order_id: str = Field(min_length=1, max_length=100)
    attempt: int = Field(1, ge=1)
    submission: OrderSubmission


class ReassessmentRequest(BaseModel):
    """POST /v1/risk/reassess — supersedes `expected_assessment_id`."""
    order_id: str = Field(min_length=1, max_length=100)
    expected_assessment_id: str
    submission: OrderSubmission


class AssessmentResponse(BaseModel):
    """Returned to the checkout collaborator. No rule evidence."""
    order_id: str
    assessment_id: str
    recommendation: Recommendation
    score: float
    level: RiskLevel
    reason_code: Optional[ReasonCode] = None
    customer_message: Optional[str] = None
    replayed: bool = False


class ReviewRequest(BaseModel):
    outcome: ReviewOutcome
    notes: str = Field("", max_length=4000)


class CaptureConfirmation(BaseModel):
    assessment_id: str


class PendingReviewPage(BaseModel):
    items: list[RiskAssessment]
    total: int
    limit: int
    offset: int
    has_more: bool

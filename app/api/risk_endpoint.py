"""
POST /v1/risk/assess     → checkout collaborator, synchronous decision
POST /v1/risk/reassess   → new attempt superseding the current assessment
GET  /v1/risk/assessments/{order_id}[/history]  → reviewer view with evidence

GET  /v1/admission/{order_id}           → payment collaborator, may capture proceed?
POST /v1/admission/{order_id}/captured  → capture confirmation, seals the order

The checkout response carries recommendation, score, level and a
customer-safe reason. Rule evidence only leaves through reviewer routes.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_admission_gate, get_ledger, get_pipeline
from app.core.auth import require_reviewer, verify_token
from app.core.config import Settings, get_settings
from app.core.errors import AssessmentNotFoundError
from app.models.database import check_db
from app.schemas.assessment import (
    AdmissionDecision,
    AssessmentRequest,
    AssessmentResponse,
    CaptureConfirmation,
    ReassessmentRequest,
    RiskAssessment,
)
from app.scoring.policy import DecisionPolicy
from app.services.admission import AdmissionGate
from app.services.assessment import AssessmentOutcome, AssessmentPipeline
from app.services.ledger import AssessmentLedger

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/risk", tags=["risk"])
admission_router = APIRouter(prefix="/v1/admission", tags=["admission"])


def _to_response(outcome: AssessmentOutcome) -> AssessmentResponse:
    a = outcome.assessment
    return AssessmentResponse(
        order_id=a.order_id,
        assessment_id=a.assessment_id,
        recommendation=a.recommendation,
        score=a.aggregated_score,
        level=a.level,
        reason_code=a.reason_code,
        customer_message=DecisionPolicy.customer_message(a.reason_code),
        replayed=outcome.replayed,
    )


@router.post(
    "/assess",
    response_model=AssessmentResponse,
    summary="Assess an order before payment capture",
    description="Called synchronously by checkout. Returns APPROVE / VERIFY / DECLINE.",
)
async def assess_order(
    request: AssessmentRequest,
    token_payload: dict = Depends(verify_token),
    pipeline: AssessmentPipeline = Depends(get_pipeline),
) -> AssessmentResponse:
    logger.info(
        "risk_assessment_started",
        order_id=request.order_id,
        attempt=request.attempt,
        customer_id=request.submission.customer.customer_id,
        caller=token_payload.get("sub", "unknown"),
    )
    outcome = await pipeline.assess(request.order_id, request.submission, attempt=request.attempt)
    return _to_response(outcome)


@router.post("/reassess", response_model=AssessmentResponse)
async def reassess_order(
    request: ReassessmentRequest,
    token_payload: dict = Depends(verify_token),
    pipeline: AssessmentPipeline = Depends(get_pipeline),
) -> AssessmentResponse:
    logger.info(
        "risk_reassessment_started",
        order_id=request.order_id,
        expected_assessment_id=request.expected_assessment_id,
        caller=token_payload.get("sub", "unknown"),
    )
    outcome = await pipeline.reassess(request.order_id, request.submission, request.expected_assessment_id)
    return _to_response(outcome)


@router.get("/assessments/{order_id}", response_model=RiskAssessment)
async def current_assessment(
    order_id: str,
    _: dict = Depends(require_reviewer),
    ledger: AssessmentLedger = Depends(get_ledger),
) -> RiskAssessment:
    current = await ledger.current_for(order_id)
    if current is None:
        raise AssessmentNotFoundError(f"Order {order_id} has not been assessed", details={"order_id": order_id})
    return current


@router.get("/assessments/{order_id}/history", response_model=list[RiskAssessment])
async def assessment_history(
    order_id: str,
    _: dict = Depends(require_reviewer),
    ledger: AssessmentLedger = Depends(get_ledger),
) -> list[RiskAssessment]:
    history = await ledger.history_for(order_id)
    if not history:
        raise AssessmentNotFoundError(f"Order {order_id} has not been assessed", details={"order_id": order_id})
    return history


@router.get("/health", tags=["health"])
async def health(settings: Settings = Depends(get_settings)):
    database_ok = await check_db() if settings.ledger_backend == "sql" else None
    return {
        "status": "ok",
        "service": settings.app_name,
        "ledger_backend": settings.ledger_backend,
        "database_ok": database_ok,
    }


# ── Admission ──

@admission_router.get("/{order_id}", response_model=AdmissionDecision)
async def admission_check(
    order_id: str,
    _: dict = Depends(verify_token),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> AdmissionDecision:
    return await gate.can_capture_payment(order_id)


@admission_router.post("/{order_id}/captured", response_model=AdmissionDecision)
async def confirm_capture(
    order_id: str,
    body: CaptureConfirmation,
    token_payload: dict = Depends(verify_token),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> AdmissionDecision:
    logger.info(
        "payment_capture_reported",
        order_id=order_id,
        assessment_id=body.assessment_id,
        caller=token_payload.get("sub", "unknown"),
    )
    return await gate.confirm_capture(order_id, body.assessment_id)

"""
Admission gate — may payment capture proceed for this order?

Pure read-then-decide over the ledger. Nothing is cached: every check reads
the current assessment and its review afresh, so a review or a supersession
is visible on the very next call.

    no assessment                    → AWAITING_ASSESSMENT  (deny)
    APPROVE                          → ADMITTED             (allow)
    VERIFY, no review                → HELD_FOR_REVIEW      (deny)
    DECLINE, no review               → REFUSED              (deny)
    VERIFY/DECLINE + OVERRIDE_APPROVE → ADMITTED            (allow)
    VERIFY/DECLINE + CONFIRM / OVERRIDE_DECLINE → REFUSED   (deny)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.errors import AdmissionDeniedError
from app.core.metrics import ADMISSION_CHECKS_TOTAL
from app.schemas.assessment import (
    AdmissionDecision,
    AdmissionState,
    Recommendation,
    ReviewDecision,
    ReviewOutcome,
    RiskAssessment,
)
from app.services.ledger import AssessmentLedger

logger = structlog.get_logger()


def derive_state(
    assessment: Optional[RiskAssessment], review: Optional[ReviewDecision],
) -> tuple[AdmissionState, str]:
    if assessment is None:
        return AdmissionState.AWAITING_ASSESSMENT, "Order has not been assessed"

    if review is not None:
        if review.outcome == ReviewOutcome.OVERRIDE_APPROVE:
            return AdmissionState.ADMITTED, f"Approved on review by {review.reviewer_id}"
        return AdmissionState.REFUSED, f"Refused on review ({review.outcome.value})"

    if assessment.recommendation == Recommendation.APPROVE:
        return AdmissionState.ADMITTED, "Approved by risk assessment"
    if assessment.recommendation == Recommendation.VERIFY:
        return AdmissionState.HELD_FOR_REVIEW, "Held for manual verification"
    return AdmissionState.REFUSED, "Declined by risk assessment"


class AdmissionGate:

    def __init__(self, ledger: AssessmentLedger) -> None:
        self.ledger = ledger

    async def can_capture_payment(self, order_id: str) -> AdmissionDecision:
        assessment = await self.ledger.current_for(order_id)
        review = await self.ledger.review_for(assessment.assessment_id) if assessment else None
        state, reason = derive_state(assessment, review)

        decision = AdmissionDecision(
            order_id=order_id,
            allowed=state == AdmissionState.ADMITTED,
            state=state,
            assessment_id=assessment.assessment_id if assessment else None,
            recommendation=assessment.recommendation if assessment else None,
            review_outcome=review.outcome if review else None,
            reason=reason,
            sealed=await self.ledger.is_sealed(order_id),
            checked_at=datetime.now(timezone.utc),
        )
        ADMISSION_CHECKS_TOTAL.labels(state=state.value).inc()
        logger.info(
            "admission_checked",
            order_id=order_id,
            state=state.value,
            allowed=decision.allowed,
            assessment_id=decision.assessment_id,
        )
        return decision

    async def confirm_capture(self, order_id: str, assessment_id: str) -> AdmissionDecision:
        """Seal the order after the payment collaborator captured funds."""
        decision = await self.can_capture_payment(order_id)
        if not decision.allowed:
            raise AdmissionDeniedError(
                f"Order {order_id} is not admitted for capture ({decision.state.value})",
                details={"order_id": order_id, "state": decision.state.value},
            )
        if decision.assessment_id != assessment_id:
            raise AdmissionDeniedError(
                f"Assessment {assessment_id} is not the current assessment for order {order_id}",
                details={"order_id": order_id, "current_assessment_id": decision.assessment_id},
            )

        await self.ledger.mark_captured(order_id, assessment_id)
        logger.info("payment_capture_confirmed", order_id=order_id, assessment_id=assessment_id)
        return decision.model_copy(update={"sealed": True})

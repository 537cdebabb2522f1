"""
Review workflow — human decisions on VERIFY / DECLINE assessments.

First reviewer wins. A review is accepted only for the current assessment of
an order, only when that assessment asked for a human (VERIFY or DECLINE),
and OVERRIDE_APPROVE always needs a written justification.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.errors import ReviewNotAllowedError
from app.core.metrics import REVIEWS_TOTAL
from app.schemas.assessment import (
    PendingReviewPage,
    Recommendation,
    ReviewDecision,
    ReviewOutcome,
    RiskLevel,
)
from app.services.event_publisher import publish_review_event
from app.services.ledger import AssessmentLedger

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100


class ReviewWorkflow:

    def __init__(self, ledger: AssessmentLedger) -> None:
        self.ledger = ledger

    async def submit_review(
        self,
        assessment_id: str,
        reviewer_id: str,
        outcome: ReviewOutcome,
        notes: str = "",
    ) -> ReviewDecision:
        assessment = await self.ledger.require(assessment_id)

        if assessment.recommendation == Recommendation.APPROVE:
            raise ReviewNotAllowedError(
                f"Assessment {assessment_id} was approved and needs no review",
                details={"assessment_id": assessment_id, "recommendation": assessment.recommendation.value},
            )
        if assessment.superseded_by is not None:
            raise ReviewNotAllowedError(
                f"Assessment {assessment_id} was superseded by {assessment.superseded_by}",
                details={"assessment_id": assessment_id, "superseded_by": assessment.superseded_by},
            )
        if outcome == ReviewOutcome.OVERRIDE_APPROVE and not notes.strip():
            raise ReviewNotAllowedError(
                "OVERRIDE_APPROVE requires a written justification",
                details={"assessment_id": assessment_id},
            )

        review = await self.ledger.append_review(ReviewDecision(
            assessment_id=assessment_id,
            order_id=assessment.order_id,
            reviewer_id=reviewer_id,
            outcome=outcome,
            notes=notes.strip(),
            decided_at=datetime.now(timezone.utc),
        ))

        REVIEWS_TOTAL.labels(outcome=outcome.value).inc()
        log = logger.warning if outcome == ReviewOutcome.OVERRIDE_APPROVE else logger.info
        log(
            "review_submitted",
            assessment_id=assessment_id,
            order_id=assessment.order_id,
            reviewer_id=reviewer_id,
            outcome=outcome.value,
            recommendation=assessment.recommendation.value,
            score=assessment.aggregated_score,
        )
        await publish_review_event(review)
        return review

    async def pending(
        self, level: Optional[RiskLevel] = None, limit: int = 50, offset: int = 0,
    ) -> PendingReviewPage:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        items, total = await self.ledger.pending_reviews(level=level, limit=limit, offset=offset)
        return PendingReviewPage(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )

"""
Assessment pipeline — score → judge → record, one order at a time.

The external judgment call is the only network await. Everything else is the
pure RiskScorer plus one conditional ledger write. Two concurrent assess()
calls for the same order both compute, exactly one wins the ledger write, and
the loser returns the winner's record with `replayed=True`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from app.core.errors import AssessmentNotFoundError, LedgerConflictError
from app.core.metrics import ASSESSMENTS_TOTAL, ASSESSMENT_REPLAYS_TOTAL, LEDGER_CONFLICTS_TOTAL
from app.schemas.assessment import ExternalJudgmentResult, JudgmentFailure, RiskAssessment
from app.schemas.submission import OrderSubmission
from app.scoring.engine import RiskScorer
from app.services.event_publisher import publish_assessment_event
from app.services.judgment import ExternalJudgmentAdapter
from app.services.ledger import AssessmentLedger

logger = structlog.get_logger()


@dataclass(frozen=True)
class AssessmentOutcome:
    assessment: RiskAssessment
    replayed: bool = False


class AssessmentPipeline:

    def __init__(
        self,
        scorer: RiskScorer,
        judgment: ExternalJudgmentAdapter,
        ledger: AssessmentLedger,
        judgment_timeout_seconds: float = 2.0,
    ) -> None:
        self.scorer = scorer
        self.judgment = judgment
        self.ledger = ledger
        self.judgment_timeout_seconds = judgment_timeout_seconds

    async def assess(self, order_id: str, submission: OrderSubmission, attempt: int = 1) -> AssessmentOutcome:
        current = await self.ledger.current_for(order_id)
        if current is not None:
            return self._replayed(current, reason="already_assessed")

        assessment = await self._evaluate(order_id, submission, attempt=attempt)
        try:
            stored = await self.ledger.record(assessment)
        except LedgerConflictError as e:
            if e.current is None:
                raise
            return self._replayed(e.current, reason="lost_race")
        return await self._recorded(stored)

    async def reassess(
        self, order_id: str, submission: OrderSubmission, expected_current_id: str,
    ) -> AssessmentOutcome:
        """New attempt that supersedes `expected_current_id`; a stale id is a conflict."""
        current = await self.ledger.current_for(order_id)
        if current is None:
            raise AssessmentNotFoundError(
                f"Order {order_id} has no assessment to supersede", details={"order_id": order_id},
            )
        if current.assessment_id != expected_current_id:
            LEDGER_CONFLICTS_TOTAL.inc()
            raise LedgerConflictError(order_id, current=current)

        replacement = await self._evaluate(
            order_id, submission, attempt=current.attempt + 1, supersedes=current.assessment_id,
        )
        stored = await self.ledger.supersede(current.assessment_id, replacement)
        logger.info(
            "assessment_superseded",
            order_id=order_id,
            old_assessment_id=current.assessment_id,
            new_assessment_id=stored.assessment_id,
            recommendation=stored.recommendation.value,
        )
        return await self._recorded(stored)

    # ── Internals ──

    async def _evaluate(
        self, order_id: str, submission: OrderSubmission, attempt: int, supersedes: Optional[str] = None,
    ) -> RiskAssessment:
        rules = self.scorer.run_rules(submission)
        if rules.complete:
            judgment = await self.judgment.assess(
                submission, timeout=self.judgment_timeout_seconds, signals=rules.signals,
            )
        else:
            judgment = ExternalJudgmentResult.unavailable(JudgmentFailure.SKIPPED)

        return self.scorer.build_assessment(
            order_id=order_id,
            submission=submission,
            rules=rules,
            judgment=judgment,
            attempt=attempt,
            supersedes=supersedes,
        )

    async def _recorded(self, assessment: RiskAssessment) -> AssessmentOutcome:
        ASSESSMENTS_TOTAL.labels(recommendation=assessment.recommendation.value).inc()
        logger.info(
            "assessment_recorded",
            assessment_id=assessment.assessment_id,
            order_id=assessment.order_id,
            attempt=assessment.attempt,
            recommendation=assessment.recommendation.value,
            score=assessment.aggregated_score,
        )
        await publish_assessment_event(assessment)
        return AssessmentOutcome(assessment=assessment)

    def _replayed(self, assessment: RiskAssessment, reason: str) -> AssessmentOutcome:
        ASSESSMENT_REPLAYS_TOTAL.inc()
        logger.info(
            "assessment_replayed",
            order_id=assessment.order_id,
            assessment_id=assessment.assessment_id,
            reason=reason,
        )
        return AssessmentOutcome(assessment=assessment, replayed=True)

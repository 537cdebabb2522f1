"""
Risk scoring engine

Orchestrates the synchronous part of an assessment:
  1. Signal extraction + rule battery
  2. Score aggregation (rules + optional external judgment)
  3. Recommendation + customer-safe reason code
  4. Immutable RiskAssessment record

The external judgment call itself happens in the async pipeline
(app.services.assessment); this module never touches the network.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.errors import IncompleteSubmissionError
from app.schemas.assessment import (
    ExternalJudgmentResult,
    RiskAssessment,
    Signal,
)
from app.schemas.submission import OrderSubmission
from app.scoring.aggregator import AggregateResult, ScoreAggregator
from app.scoring.config import ReferenceData, RiskPolicyConfig
from app.scoring.policy import DecisionPolicy
from app.scoring.rules import RuleEngine

logger = structlog.get_logger()


@dataclass(frozen=True)
class RuleStage:
    signals: list[Signal]
    complete: bool = True
    missing: list[str] = field(default_factory=list)


class RiskScorer:

    def __init__(self, config: RiskPolicyConfig, reference: ReferenceData) -> None:
        self.config = config
        self.rule_engine = RuleEngine(config, reference)
        self.aggregator = ScoreAggregator(config)
        self.policy = DecisionPolicy(config)

    def run_rules(self, submission: OrderSubmission) -> RuleStage:
        """
        Rule stage. Missing rule inputs do not raise: they produce a single
        incomplete-evaluation signal weighted at the VERIFY threshold.
        """
        try:
            return RuleStage(signals=self.rule_engine.evaluate(submission))
        except IncompleteSubmissionError as e:
            logger.warning("rules_incomplete", missing=e.missing)
            return RuleStage(
                signals=self.rule_engine.evaluate_incomplete(e.missing),
                complete=False,
                missing=e.missing,
            )

    def build_assessment(
        self,
        *,
        order_id: str,
        submission: OrderSubmission,
        rules: RuleStage,
        judgment: Optional[ExternalJudgmentResult],
        attempt: int = 1,
        supersedes: Optional[str] = None,
    ) -> RiskAssessment:
        result = self.aggregator.aggregate(rules.signals, judgment)
        recommendation = self.policy.decide(result.score, result.level, rules_complete=rules.complete)
        reason_code = self.policy.reason_code(recommendation, rules_complete=rules.complete)

        assessment = RiskAssessment(
            assessment_id=str(uuid.uuid4()),
            order_id=order_id,
            customer_id=submission.customer.customer_id,
            attempt=attempt,
            policy_version=self.config.version,
            signals=rules.signals,
            external_judgment=judgment,
            rules_subscore=result.rules_subscore,
            rules_complete=rules.complete,
            aggregated_score=result.score,
            level=result.level,
            recommendation=recommendation,
            reason_code=reason_code,
            rationale=self.policy.rationale(rules.signals, _judgment_note(judgment, result)),
            submission_snapshot=submission.model_dump(mode="json"),
            supersedes=supersedes,
            created_at=datetime.now(timezone.utc),
        )

        logger.info(
            "risk_evaluation_complete",
            assessment_id=assessment.assessment_id,
            order_id=order_id,
            attempt=attempt,
            score=result.score,
            level=result.level.value,
            recommendation=recommendation.value,
            rules_subscore=result.rules_subscore,
            judgment_used=result.judgment_used,
            triggered=[s.name for s in rules.signals if s.triggered],
        )
        return assessment

    def recompute(self, assessment: RiskAssessment) -> AggregateResult:
        """Re-derive the score from a stored record's own evidence."""
        return self.aggregator.aggregate(assessment.signals, assessment.external_judgment)


def _judgment_note(judgment: Optional[ExternalJudgmentResult], result: AggregateResult) -> str:
    if judgment is None:
        return "External judgment not requested."
    if not judgment.source_available:
        return f"External judgment unavailable ({judgment.failure_reason.value}); scored as adverse."
    if not result.judgment_used:
        return f"External judgment discounted (confidence {judgment.confidence:.2f})."
    return f"External judgment {judgment.score:.0f}/100: {judgment.rationale or 'no rationale given'}"

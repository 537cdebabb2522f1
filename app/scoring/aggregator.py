"""
Score aggregation — rule signals + optional external judgment → one score.

    rules_subscore = min(100, Σ weight of fired signals)
                     lifted to the DECLINE threshold if any fired signal is HIGH
    blended        = w_rules · rules_subscore + w_judgment · opinion
    opinion        = judgment.score            if the judgment is usable
                   = 100 (most adverse)        if unavailable / skipped / low confidence
    score          = max(blended, rules_subscore) when rules_subscore ≥ DECLINE threshold
                   = blended                   otherwise

Rules always carry at least half the weight, and a missing opinion counts as
the worst opinion. So losing the external service can only ever raise a
score, and a rules-only DECLINE cannot be talked down.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.schemas.assessment import ExternalJudgmentResult, RiskLevel, Severity, Signal
from app.scoring.config import RiskPolicyConfig

MAX_SCORE = 100.0
ADVERSE_OPINION = 100.0


@dataclass(frozen=True)
class AggregateResult:
    score: float
    level: RiskLevel
    rules_subscore: float
    judgment_used: bool
    rules_floor_applied: bool


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


class ScoreAggregator:

    def __init__(self, config: RiskPolicyConfig) -> None:
        self._config = config

    def rules_subscore(self, signals: list[Signal]) -> float:
        fired = [s for s in signals if s.triggered]
        subscore = min(MAX_SCORE, sum(s.weight for s in fired))
        if self._config.aggregation.high_severity_floor and any(s.severity == Severity.HIGH for s in fired):
            subscore = max(subscore, self._config.decline_threshold)
        return subscore

    def judgment_usable(self, judgment: Optional[ExternalJudgmentResult]) -> bool:
        return (
            judgment is not None
            and judgment.source_available
            and judgment.confidence >= self._config.aggregation.min_judgment_confidence
        )

    def aggregate(
        self,
        signals: list[Signal],
        judgment: Optional[ExternalJudgmentResult] = None,
    ) -> AggregateResult:
        agg = self._config.aggregation
        rules = self.rules_subscore(signals)

        used = self.judgment_usable(judgment)
        opinion = judgment.score if used else ADVERSE_OPINION
        blended = agg.rules_weight * rules + agg.judgment_weight * opinion

        floor_applied = rules >= self._config.decline_threshold
        score = max(blended, rules) if floor_applied else blended
        score = round(clamp(score, 0.0, MAX_SCORE), 2)

        return AggregateResult(
            score=score,
            level=self.level_for(score),
            rules_subscore=round(rules, 2),
            judgment_used=used,
            rules_floor_applied=floor_applied,
        )

    def level_for(self, score: float) -> RiskLevel:
        bands = self._config.bands
        if score >= bands.critical_min:
            return RiskLevel.CRITICAL
        if score >= bands.high_min:
            return RiskLevel.HIGH
        if score >= bands.medium_min:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

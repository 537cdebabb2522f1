"""
Decision policy — score + level → APPROVE / VERIFY / DECLINE.

    LOW, MEDIUM  → APPROVE
    HIGH         → VERIFY   (hold, human or secondary confirmation)
    CRITICAL     → DECLINE  (refuse, no capture attempted)

The score band and the supplied level are both consulted and the more
severe answer wins. An incomplete rules stage can never come out better
than VERIFY.
"""
from __future__ import annotations

from typing import Optional

from app.schemas.assessment import ReasonCode, Recommendation, RiskLevel, Signal
from app.scoring.config import RiskPolicyConfig

LEVEL_TO_RECOMMENDATION = {
    RiskLevel.LOW: Recommendation.APPROVE,
    RiskLevel.MEDIUM: Recommendation.APPROVE,
    RiskLevel.HIGH: Recommendation.VERIFY,
    RiskLevel.CRITICAL: Recommendation.DECLINE,
}

_SEVERITY_ORDER = {
    Recommendation.APPROVE: 0,
    Recommendation.VERIFY: 1,
    Recommendation.DECLINE: 2,
}

CUSTOMER_MESSAGES = {
    ReasonCode.VERIFICATION_REQUIRED: (
        "Your order requires additional verification before processing. "
        "Our team will contact you shortly."
    ),
    ReasonCode.INCOMPLETE_INFORMATION: (
        "We need a little more information before we can process your order. "
        "Our team will contact you shortly."
    ),
    ReasonCode.ORDER_DECLINED: (
        "We are unable to process your order at this time. "
        "Please contact support for assistance."
    ),
}


def most_severe(*recommendations: Recommendation) -> Recommendation:
    return max(recommendations, key=_SEVERITY_ORDER.__getitem__)


class DecisionPolicy:

    def __init__(self, config: RiskPolicyConfig) -> None:
        self._config = config

    def decide(self, score: float, level: RiskLevel, rules_complete: bool = True) -> Recommendation:
        by_score = self._band(score)
        by_level = LEVEL_TO_RECOMMENDATION[level]
        recommendation = most_severe(by_score, by_level)
        if not rules_complete:
            recommendation = most_severe(recommendation, Recommendation.VERIFY)
        return recommendation

    def _band(self, score: float) -> Recommendation:
        if score >= self._config.decline_threshold:
            return Recommendation.DECLINE
        if score >= self._config.verify_threshold:
            return Recommendation.VERIFY
        return Recommendation.APPROVE

    @staticmethod
    def reason_code(recommendation: Recommendation, rules_complete: bool = True) -> Optional[ReasonCode]:
        if recommendation == Recommendation.DECLINE:
            return ReasonCode.ORDER_DECLINED
        if recommendation == Recommendation.VERIFY:
            return ReasonCode.VERIFICATION_REQUIRED if rules_complete else ReasonCode.INCOMPLETE_INFORMATION
        return None

    @staticmethod
    def customer_message(reason_code: Optional[ReasonCode]) -> Optional[str]:
        return CUSTOMER_MESSAGES.get(reason_code) if reason_code else None

    @staticmethod
    def rationale(signals: list[Signal], judgment_note: str) -> str:
        """Reviewer-facing summary. Not returned to customers."""
        fired = [s.name for s in signals if s.triggered]
        if fired:
            text = f"Detected {len(fired)} risk factor(s): {', '.join(fired)}."
        else:
            text = "No rule-based risk factors detected."
        return f"{text} {judgment_note}".strip()

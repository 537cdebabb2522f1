"""
Rule battery — deterministic fraud heuristics.

Each check:
  1. Reads facts from the FeatureSet
  2. Decides whether it fires
  3. Returns the evidence a reviewer needs to understand why

Weights and severities are applied by the RuleEngine from the policy
config, not here. Every enabled rule produces a Signal, fired or not, in the
fixed order of the policy's rule table.
"""
from __future__ import annotations

from typing import Any, Callable

import structlog

from app.schemas.assessment import Severity, Signal
from app.schemas.submission import OrderSubmission
from app.scoring.config import ReferenceData, RiskPolicyConfig, RuleThresholds
from app.scoring.signals import FeatureSet, SignalExtractor

logger = structlog.get_logger()

CheckResult = tuple[bool, dict[str, Any]]

INCOMPLETE_SIGNAL = "rules_evaluation_incomplete"


# ═══════════════════════════════════════════════════════════════
# 1. Disposable / temporary email domain
# ═══════════════════════════════════════════════════════════════
def check_disposable_email(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.disposable_email, {"email_domain": f.email_domain}


# ═══════════════════════════════════════════════════════════════
# 2. Prepaid / anonymous payment instrument
# ═══════════════════════════════════════════════════════════════
def check_prepaid_instrument(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.anonymous_instrument, {"payment_method": f.payment_method}


# ═══════════════════════════════════════════════════════════════
# 3. New account + high order value
# ═══════════════════════════════════════════════════════════════
def check_new_account_high_value(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    fired = f.account_age_days < t.new_account_max_age_days and f.order_amount > t.new_account_min_amount
    return fired, {"account_age_days": f.account_age_days, "order_amount": f.order_amount}


# ═══════════════════════════════════════════════════════════════
# 4. Prior chargebacks
# ═══════════════════════════════════════════════════════════════
def check_chargeback_history(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.prior_chargeback_count > 0, {"prior_chargebacks": f.prior_chargeback_count}


# ═══════════════════════════════════════════════════════════════
# 5. Order velocity (same identity / fingerprint, rolling window)
# ═══════════════════════════════════════════════════════════════
def check_order_velocity(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    fired = f.orders_in_velocity_window >= t.velocity_max_orders
    return fired, {
        "orders_in_window": f.orders_in_velocity_window,
        "window_minutes": t.velocity_window_minutes,
    }


# ═══════════════════════════════════════════════════════════════
# 6. Network origin vs. billing country
# ═══════════════════════════════════════════════════════════════
def check_geo_billing_mismatch(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    fired = bool(f.ip_country and f.billing_country and f.ip_country != f.billing_country)
    return fired, {"ip_country": f.ip_country, "billing_country": f.billing_country}


# ═══════════════════════════════════════════════════════════════
# 7. Known bad actor (email, fingerprint or IP listed)
# ═══════════════════════════════════════════════════════════════
def check_known_bad_actor(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return bool(f.bad_actor_hits), {"matched_on": list(f.bad_actor_hits)}


# ═══════════════════════════════════════════════════════════════
# 8. Implausible name / address combination
# ═══════════════════════════════════════════════════════════════
def check_implausible_identity(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return bool(f.identity_anomalies), {"anomalies": list(f.identity_anomalies)}


# ═══════════════════════════════════════════════════════════════
# 9. Rush order (service wanted before fraud can surface)
# ═══════════════════════════════════════════════════════════════
def check_rush_order(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.is_rush_order, {}


# ═══════════════════════════════════════════════════════════════
# 10. No phone number (identity harder to verify)
# ═══════════════════════════════════════════════════════════════
def check_missing_phone(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return not f.has_phone, {}


# ═══════════════════════════════════════════════════════════════
# 11. Large order amount
# ═══════════════════════════════════════════════════════════════
def check_large_order(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.order_amount > t.large_order_amount, {"order_amount": f.order_amount}


# ═══════════════════════════════════════════════════════════════
# 12. Many services in one order
# ═══════════════════════════════════════════════════════════════
def check_multiple_services(f: FeatureSet, t: RuleThresholds) -> CheckResult:
    return f.service_count > t.multiple_services_max, {"service_count": f.service_count}


CHECKS: dict[str, Callable[[FeatureSet, RuleThresholds], CheckResult]] = {
    "disposable_email": check_disposable_email,
    "prepaid_instrument": check_prepaid_instrument,
    "new_account_high_value": check_new_account_high_value,
    "chargeback_history": check_chargeback_history,
    "order_velocity": check_order_velocity,
    "geo_billing_mismatch": check_geo_billing_mismatch,
    "known_bad_actor": check_known_bad_actor,
    "implausible_identity": check_implausible_identity,
    "rush_order": check_rush_order,
    "missing_phone": check_missing_phone,
    "large_order": check_large_order,
    "multiple_services": check_multiple_services,
}


class RuleEngine:
    """Runs the configured rule battery. Pure and total for validated submissions."""

    def __init__(self, config: RiskPolicyConfig, reference: ReferenceData) -> None:
        self._config = config
        self._extractor = SignalExtractor(reference, config.thresholds)

    def evaluate(self, submission: OrderSubmission) -> list[Signal]:
        """Raises IncompleteSubmissionError when required rule inputs are absent."""
        return self.evaluate_features(self._extractor.extract(submission))

    def evaluate_features(self, features: FeatureSet) -> list[Signal]:
        signals: list[Signal] = []
        for name, settings in self._config.rules.items():
            if not settings.enabled:
                continue
            fired, evidence = CHECKS[name](features, self._config.thresholds)
            signals.append(Signal(
                name=name,
                weight=settings.weight,
                triggered=fired,
                severity=settings.severity,
                evidence=evidence,
            ))

        logger.debug(
            "rules_evaluated",
            policy_version=self._config.version,
            triggered=[s.name for s in signals if s.triggered],
        )
        return signals

    def evaluate_incomplete(self, missing: list[str]) -> list[Signal]:
        """Stands in for the battery when rule inputs are missing; weighted at the VERIFY threshold."""
        return [Signal(
            name=INCOMPLETE_SIGNAL,
            weight=self._config.verify_threshold,
            triggered=True,
            severity=Severity.MEDIUM,
            evidence={"missing": list(missing)},
        )]

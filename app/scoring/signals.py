"""
Signal extraction — turns an OrderSubmission into the normalized facts the
rule battery reads.

Pure: no I/O, no clock. Time-window counts are taken relative to
`submission.submitted_at`, so the same submission always yields the same
feature set.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from app.core.errors import IncompleteSubmissionError
from app.schemas.submission import OrderSubmission, PaymentMethod
from app.scoring.config import ReferenceData, RuleThresholds

ANONYMOUS_INSTRUMENTS = frozenset({PaymentMethod.PREPAID_CARD, PaymentMethod.GIFT_CARD})

_US_ZIP = re.compile(r"^\d{5}(-\d{4})?$")
_REPEATED_FILLER = re.compile(r"(.)\1{3,}")
_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class FeatureSet:
    email_domain: str
    disposable_email: bool
    anonymous_instrument: bool
    payment_method: str
    account_age_days: int
    prior_order_count: int
    prior_chargeback_count: int
    order_amount: float
    service_count: int
    is_rush_order: bool
    has_phone: bool
    orders_in_velocity_window: int
    billing_country: Optional[str]
    ip_country: Optional[str]
    bad_actor_hits: tuple[str, ...]
    identity_anomalies: tuple[str, ...]


class SignalExtractor:
    """Builds a FeatureSet; raises IncompleteSubmissionError if rule inputs are missing."""

    REQUIRED_FACTS = ("account_age_days", "prior_chargeback_count")

    def __init__(self, reference: ReferenceData, thresholds: RuleThresholds) -> None:
        self._reference = reference
        self._thresholds = thresholds

    def extract(self, submission: OrderSubmission) -> FeatureSet:
        behavior = submission.behavior
        missing = [f for f in self.REQUIRED_FACTS if getattr(behavior, f) is None]
        if missing:
            raise IncompleteSubmissionError(missing)

        email = submission.customer.email.lower()
        email_domain = email.rsplit("@", 1)[1]

        return FeatureSet(
            email_domain=email_domain,
            disposable_email=email_domain in self._reference.disposable_email_domains,
            anonymous_instrument=behavior.payment_method in ANONYMOUS_INSTRUMENTS,
            payment_method=behavior.payment_method.value,
            account_age_days=behavior.account_age_days,
            prior_order_count=behavior.prior_order_count or 0,
            prior_chargeback_count=behavior.prior_chargeback_count,
            order_amount=submission.order.amount,
            service_count=len(submission.order.services),
            is_rush_order=submission.order.is_rush_order,
            has_phone=bool(submission.customer.phone and submission.customer.phone.strip()),
            orders_in_velocity_window=self._count_recent_orders(submission),
            billing_country=submission.billing.country if submission.billing else None,
            ip_country=behavior.ip_country,
            bad_actor_hits=self._bad_actor_hits(submission, email),
            identity_anomalies=_identity_anomalies(submission),
        )

    def _count_recent_orders(self, submission: OrderSubmission) -> int:
        window_start = submission.submitted_at - timedelta(minutes=self._thresholds.velocity_window_minutes)
        return sum(
            1 for t in submission.behavior.recent_order_times
            if window_start <= t <= submission.submitted_at
        )

    def _bad_actor_hits(self, submission: OrderSubmission, email: str) -> tuple[str, ...]:
        ref = self._reference
        behavior = submission.behavior
        hits = []
        if email in ref.bad_actor_emails:
            hits.append("email")
        if behavior.device_fingerprint and behavior.device_fingerprint in ref.bad_actor_fingerprints:
            hits.append("device_fingerprint")
        if behavior.ip_address and behavior.ip_address in ref.bad_actor_ips:
            hits.append("ip_address")
        return tuple(hits)


def _identity_anomalies(submission: OrderSubmission) -> tuple[str, ...]:
    anomalies = []
    name = (submission.customer.name or "").strip()
    if name:
        if _DIGIT.search(name):
            anomalies.append("name_contains_digits")
        if len(name.split()) < 2 or sum(c.isalpha() for c in name) < 4:
            anomalies.append("name_too_short")
        if _REPEATED_FILLER.search(name.lower()):
            anomalies.append("name_repeated_characters")

    billing = submission.billing
    if billing is not None:
        if billing.country == "US" and not _US_ZIP.match(billing.zip.strip()):
            anomalies.append("zip_malformed")
        if not _DIGIT.search(billing.street):
            anomalies.append("street_without_number")
        if _REPEATED_FILLER.search(billing.street.lower()) or _REPEATED_FILLER.search(billing.city.lower()):
            anomalies.append("address_repeated_characters")
    return tuple(anomalies)

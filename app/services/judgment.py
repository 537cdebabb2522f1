"""
External judgment adapter — one bounded call to the behavioral classifier.

Contract: assess() always returns an ExternalJudgmentResult and never raises
for service trouble. Timeout, transport failure, non-2xx and schema-invalid
responses all become `source_available=False` with a failure reason; the
aggregator then scores the missing opinion as adverse.

Retry budget: one retry at half the timeout, only for timeouts, transport
errors and 5xx. A 4xx or a malformed body will not get better by asking
again.

Only minimised features leave the process: no names, emails, phone numbers,
street addresses, raw IPs or customer ids.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Union

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from app.core.metrics import JUDGMENT_LATENCY_SECONDS, JUDGMENT_RESULTS_TOTAL
from app.schemas.assessment import ExternalJudgmentResult, JudgmentFailure, Signal
from app.schemas.submission import OrderSubmission

logger = structlog.get_logger()

RETRY_TIMEOUT_FACTOR = 0.5


class JudgmentResponse(BaseModel):
    """Expected body of a 2xx classifier response."""
    score: float = Field(ge=0, le=100)
    rationale: str
    confidence: float = Field(ge=0, le=1)


@dataclass(frozen=True)
class _Failure:
    reason: JudgmentFailure
    retryable: bool
    detail: str = ""


def build_request_payload(submission: OrderSubmission, signals: Optional[list[Signal]] = None) -> dict:
    behavior = submission.behavior
    submitted_hour = submission.submitted_at.replace(minute=0, second=0, microsecond=0)
    return {
        "order": {
            "amount": submission.order.amount,
            "currency": submission.order.currency,
            "service_count": len(submission.order.services),
            "is_rush_order": submission.order.is_rush_order,
            "submitted_hour": submitted_hour.isoformat(),
        },
        "customer": {
            "email_domain": submission.customer.email.rsplit("@", 1)[1].lower(),
            "has_phone": bool(submission.customer.phone),
            "account_age_days": behavior.account_age_days,
            "prior_order_count": behavior.prior_order_count,
            "prior_chargeback_count": behavior.prior_chargeback_count,
        },
        "payment_method": behavior.payment_method.value,
        "network": {
            "ip_country": behavior.ip_country,
            "billing_country": submission.billing.country if submission.billing else None,
            "billing_state": submission.billing.state if submission.billing else None,
            "recent_order_count": len(behavior.recent_order_times),
        },
        "triggered_rules": [s.name for s in (signals or []) if s.triggered],
    }


class ExternalJudgmentAdapter:

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 2.0,
        enabled: bool = True,
    ) -> None:
        self._client = client
        self._url = url
        self._timeout = timeout_seconds
        self._enabled = enabled
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def assess(
        self,
        submission: OrderSubmission,
        timeout: Optional[float] = None,
        signals: Optional[list[Signal]] = None,
    ) -> ExternalJudgmentResult:
        if not self._enabled:
            JUDGMENT_RESULTS_TOTAL.labels(outcome=JudgmentFailure.DISABLED.value).inc()
            return ExternalJudgmentResult.unavailable(JudgmentFailure.DISABLED)

        if timeout is None:
            timeout = self._timeout
        payload = build_request_payload(submission, signals)
        t0 = time.perf_counter()

        outcome = await self._attempt(payload, timeout)
        attempts = 1
        if isinstance(outcome, _Failure) and outcome.retryable:
            logger.info("judgment_retry", reason=outcome.reason.value, detail=outcome.detail)
            outcome = await self._attempt(payload, timeout * RETRY_TIMEOUT_FACTOR)
            attempts = 2

        elapsed = time.perf_counter() - t0
        latency_ms = int(elapsed * 1000)
        JUDGMENT_LATENCY_SECONDS.observe(elapsed)

        if isinstance(outcome, _Failure):
            JUDGMENT_RESULTS_TOTAL.labels(outcome=outcome.reason.value).inc()
            logger.warning(
                "judgment_unavailable",
                reason=outcome.reason.value,
                detail=outcome.detail,
                attempts=attempts,
                latency_ms=latency_ms,
            )
            return ExternalJudgmentResult.unavailable(outcome.reason, latency_ms=latency_ms)

        JUDGMENT_RESULTS_TOTAL.labels(outcome="available").inc()
        logger.info(
            "judgment_received",
            score=outcome.score,
            confidence=outcome.confidence,
            attempts=attempts,
            latency_ms=latency_ms,
        )
        return ExternalJudgmentResult(
            source_available=True,
            score=outcome.score,
            rationale=outcome.rationale,
            confidence=outcome.confidence,
            latency_ms=latency_ms,
        )

    async def _attempt(self, payload: dict, timeout: float) -> Union[JudgmentResponse, _Failure]:
        try:
            response = await asyncio.wait_for(
                self._client.post(self._url, json=payload, headers=self._headers, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return _Failure(JudgmentFailure.TIMEOUT, retryable=True, detail=f"no answer within {timeout:.2f}s")
        except httpx.HTTPError as e:
            return _Failure(JudgmentFailure.TRANSPORT_ERROR, retryable=True, detail=str(e))

        if response.status_code >= 500:
            return _Failure(JudgmentFailure.HTTP_ERROR, retryable=True, detail=f"status {response.status_code}")
        if not response.is_success:
            return _Failure(JudgmentFailure.HTTP_ERROR, retryable=False, detail=f"status {response.status_code}")

        try:
            return JudgmentResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            return _Failure(JudgmentFailure.INVALID_RESPONSE, retryable=False, detail=str(e)[:200])

    async def aclose(self) -> None:
        await self._client.aclose()

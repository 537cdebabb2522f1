"""
Service wiring for the HTTP layer.

One ServiceContainer per application, built in the lifespan handler (or
installed directly on `app.state.container` by tests). Routes pull the
service they need through the small Depends() getters below.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from app.core.config import Settings
from app.models.database import get_session_factory
from app.scoring.config import load_policy, load_reference_data
from app.scoring.engine import RiskScorer
from app.services.admission import AdmissionGate
from app.services.assessment import AssessmentPipeline
from app.services.judgment import ExternalJudgmentAdapter
from app.services.ledger import AssessmentLedger, InMemoryAssessmentLedger, SqlAssessmentLedger
from app.services.review import ReviewWorkflow


@dataclass
class ServiceContainer:
    settings: Settings
    scorer: RiskScorer
    judgment: ExternalJudgmentAdapter
    ledger: AssessmentLedger
    pipeline: AssessmentPipeline
    admission: AdmissionGate
    review: ReviewWorkflow

    async def aclose(self) -> None:
        await self.judgment.aclose()


def build_ledger(settings: Settings) -> AssessmentLedger:
    if settings.ledger_backend == "memory":
        return InMemoryAssessmentLedger()
    if settings.ledger_backend == "sql":
        return SqlAssessmentLedger(get_session_factory())
    raise ValueError(f"Unknown ledger backend: {settings.ledger_backend}")


def build_container(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    ledger: Optional[AssessmentLedger] = None,
) -> ServiceContainer:
    scorer = RiskScorer(load_policy(settings), load_reference_data(settings))
    judgment = ExternalJudgmentAdapter(
        client=http_client or httpx.AsyncClient(),
        url=settings.judgment_url,
        api_key=settings.judgment_api_key,
        timeout_seconds=settings.judgment_timeout_seconds,
        enabled=settings.judgment_enabled,
    )
    ledger = ledger or build_ledger(settings)
    return ServiceContainer(
        settings=settings,
        scorer=scorer,
        judgment=judgment,
        ledger=ledger,
        pipeline=AssessmentPipeline(
            scorer, judgment, ledger, judgment_timeout_seconds=settings.judgment_timeout_seconds,
        ),
        admission=AdmissionGate(ledger),
        review=ReviewWorkflow(ledger),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_pipeline(request: Request) -> AssessmentPipeline:
    return get_container(request).pipeline


def get_ledger(request: Request) -> AssessmentLedger:
    return get_container(request).ledger


def get_admission_gate(request: Request) -> AdmissionGate:
    return get_container(request).admission


def get_review_workflow(request: Request) -> ReviewWorkflow:
    return get_container(request).review

"""
Reviewer API — queue of held / declined orders and review submission.

  GET  /v1/review/pending?level=&limit=&offset=
  POST /v1/review/{assessment_id}

The reviewer id is always the token subject, never a body field.
"""
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_review_workflow
from app.core.auth import require_reviewer
from app.schemas.assessment import PendingReviewPage, ReviewDecision, ReviewRequest, RiskLevel
from app.services.review import MAX_PAGE_SIZE, ReviewWorkflow

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/review", tags=["review"])


@router.get("/pending", response_model=PendingReviewPage)
async def pending_reviews(
    level: Optional[RiskLevel] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    _: dict = Depends(require_reviewer),
    workflow: ReviewWorkflow = Depends(get_review_workflow),
) -> PendingReviewPage:
    return await workflow.pending(level=level, limit=limit, offset=offset)


@router.post("/{assessment_id}", response_model=ReviewDecision, status_code=201)
async def submit_review(
    assessment_id: str,
    body: ReviewRequest,
    token_payload: dict = Depends(require_reviewer),
    workflow: ReviewWorkflow = Depends(get_review_workflow),
) -> ReviewDecision:
    reviewer_id = token_payload.get("sub", "unknown")
    return await workflow.submit_review(assessment_id, reviewer_id, body.outcome, body.notes)

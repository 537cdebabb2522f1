"""
Review workflow preconditions and first-reviewer-wins.
"""
import asyncio

import pytest

from app.core.errors import AssessmentNotFoundError, ReviewConflictError, ReviewNotAllowedError
from app.schemas.assessment import Recommendation, ReviewOutcome, RiskLevel
from app.services.review import ReviewWorkflow
from tests.factories import make_assessment


@pytest.fixture
def workflow(ledger) -> ReviewWorkflow:
    return ReviewWorkflow(ledger)


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_approved_assessment_cannot_be_reviewed(self, ledger, workflow):
        a = await ledger.record(make_assessment(recommendation=Recommendation.APPROVE, level=RiskLevel.LOW))
        with pytest.raises(ReviewNotAllowedError):
            await workflow.submit_review(a.assessment_id, "rev-1", ReviewOutcome.CONFIRM, "fine")
        assert await ledger.review_for(a.assessment_id) is None

    @pytest.mark.asyncio
    async def test_unknown_assessment(self, workflow):
        with pytest.raises(AssessmentNotFoundError):
            await workflow.submit_review("does-not-exist", "rev-1", ReviewOutcome.CONFIRM)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", ["", "   "])
    async def test_override_approve_needs_justification(self, ledger, workflow, notes):
        a = await ledger.record(make_assessment())
        with pytest.raises(ReviewNotAllowedError):
            await workflow.submit_review(a.assessment_id, "rev-1", ReviewOutcome.OVERRIDE_APPROVE, notes)

    @pytest.mark.asyncio
    async def test_superseded_assessment_cannot_be_reviewed(self, ledger, workflow):
        first = await ledger.record(make_assessment())
        await ledger.supersede(first.assessment_id, make_assessment(attempt=2))
        with pytest.raises(ReviewNotAllowedError):
            await workflow.submit_review(first.assessment_id, "rev-1", ReviewOutcome.CONFIRM)


class TestSubmit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("recommendation,level", [
        (Recommendation.VERIFY, RiskLevel.HIGH),
        (Recommendation.DECLINE, RiskLevel.CRITICAL),
    ])
    async def test_review_recorded(self, ledger, workflow, recommendation, level):
        a = await ledger.record(make_assessment(recommendation=recommendation, level=level))
        review = await workflow.submit_review(
            a.assessment_id, "rev-1", ReviewOutcome.OVERRIDE_APPROVE, "  customer called, ID verified  ",
        )
        assert review.order_id == a.order_id
        assert review.notes == "customer called, ID verified"
        assert await ledger.review_for(a.assessment_id) == review

    @pytest.mark.asyncio
    async def test_concurrent_reviewers_one_wins(self, ledger, workflow):
        a = await ledger.record(make_assessment())
        results = await asyncio.gather(
            workflow.submit_review(a.assessment_id, "alice", ReviewOutcome.CONFIRM, "looks off"),
            workflow.submit_review(a.assessment_id, "bob", ReviewOutcome.OVERRIDE_APPROVE, "looks fine"),
            return_exceptions=True,
        )
        decisions = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ReviewConflictError)]
        assert len(decisions) == 1 and len(conflicts) == 1
        assert conflicts[0].existing == decisions[0]


class TestPending:
    @pytest.mark.asyncio
    async def test_page_shape(self, ledger, workflow):
        for i in range(3):
            await ledger.record(make_assessment(order_id=f"ORD-{i}"))
        page = await workflow.pending(limit=2)
        assert page.total == 3
        assert len(page.items) == 2
        assert page.has_more is True

        last = await workflow.pending(limit=2, offset=2)
        assert len(last.items) == 1
        assert last.has_more is False

    @pytest.mark.asyncio
    async def test_limit_is_bounded(self, workflow):
        page = await workflow.pending(limit=10_000, offset=-5)
        assert page.limit == 100
        assert page.offset == 0

"""
Assessment ledger contract — run against both backends.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import LedgerConflictError, LedgerSealedError, ReviewConflictError, ReviewNotAllowedError
from app.schemas.assessment import Recommendation, ReviewDecision, ReviewOutcome, RiskLevel
from tests.factories import make_assessment


def _review(assessment, reviewer="rev-1", outcome=ReviewOutcome.CONFIRM) -> ReviewDecision:
    return ReviewDecision(
        assessment_id=assessment.assessment_id,
        order_id=assessment.order_id,
        reviewer_id=reviewer,
        outcome=outcome,
        notes="checked",
        decided_at=datetime.now(timezone.utc),
    )


class TestRecord:
    @pytest.mark.asyncio
    async def test_first_write_becomes_current(self, any_ledger):
        a = make_assessment()
        stored = await any_ledger.record(a)
        assert stored.assessment_id == a.assessment_id
        current = await any_ledger.current_for("ORD-1")
        assert current.assessment_id == a.assessment_id
        assert current.superseded_by is None

    @pytest.mark.asyncio
    async def test_unknown_order_has_no_current(self, any_ledger):
        assert await any_ledger.current_for("nope") is None
        assert await any_ledger.get("nope") is None
        assert await any_ledger.history_for("nope") == []

    @pytest.mark.asyncio
    async def test_replay_same_assessment_is_idempotent(self, any_ledger):
        a = make_assessment()
        await any_ledger.record(a)
        again = await any_ledger.record(a)
        assert again.assessment_id == a.assessment_id
        assert len(await any_ledger.history_for("ORD-1")) == 1

    @pytest.mark.asyncio
    async def test_second_first_write_conflicts_with_current(self, any_ledger):
        winner = make_assessment()
        await any_ledger.record(winner)
        with pytest.raises(LedgerConflictError) as exc:
            await any_ledger.record(make_assessment())
        assert exc.value.current.assessment_id == winner.assessment_id
        assert exc.value.to_dict()["details"]["current_assessment_id"] == winner.assessment_id

    @pytest.mark.asyncio
    async def test_stored_record_round_trips(self, any_ledger):
        a = make_assessment(score=62.5)
        await any_ledger.record(a)
        loaded = await any_ledger.get(a.assessment_id)
        assert loaded.aggregated_score == 62.5
        assert loaded.signals == a.signals
        assert loaded.external_judgment == a.external_judgment
        assert loaded.submission_snapshot == a.submission_snapshot
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_orders_are_independent(self, any_ledger):
        await any_ledger.record(make_assessment(order_id="A"))
        await any_ledger.record(make_assessment(order_id="B"))
        assert (await any_ledger.current_for("A")).order_id == "A"
        assert (await any_ledger.current_for("B")).order_id == "B"


class TestSupersede:
    @pytest.mark.asyncio
    async def test_supersede_moves_head_and_links_chain(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        second = await any_ledger.supersede(first.assessment_id, make_assessment(attempt=2))

        current = await any_ledger.current_for("ORD-1")
        assert current.assessment_id == second.assessment_id
        assert current.supersedes == first.assessment_id

        old = await any_ledger.get(first.assessment_id)
        assert old.superseded_by == second.assessment_id
        assert old.aggregated_score == first.aggregated_score

        history = await any_ledger.history_for("ORD-1")
        assert [h.assessment_id for h in history] == [first.assessment_id, second.assessment_id]

    @pytest.mark.asyncio
    async def test_stale_supersede_conflicts(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        second = await any_ledger.supersede(first.assessment_id, make_assessment(attempt=2))
        with pytest.raises(LedgerConflictError) as exc:
            await any_ledger.supersede(first.assessment_id, make_assessment(attempt=3))
        assert exc.value.current.assessment_id == second.assessment_id

    @pytest.mark.asyncio
    async def test_supersede_unknown_order_conflicts(self, any_ledger):
        with pytest.raises(LedgerConflictError):
            await any_ledger.supersede("missing", make_assessment(order_id="ORD-9", attempt=2))

    @pytest.mark.asyncio
    async def test_duplicate_attempt_number_conflicts(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        with pytest.raises(LedgerConflictError):
            await any_ledger.supersede(first.assessment_id, make_assessment(attempt=1))


class TestReviews:
    @pytest.mark.asyncio
    async def test_first_reviewer_wins(self, any_ledger):
        a = await any_ledger.record(make_assessment())
        await any_ledger.append_review(_review(a, reviewer="alice"))
        with pytest.raises(ReviewConflictError) as exc:
            await any_ledger.append_review(_review(a, reviewer="bob", outcome=ReviewOutcome.OVERRIDE_APPROVE))
        assert exc.value.details["reviewer_id"] == "alice"
        assert (await any_ledger.review_for(a.assessment_id)).reviewer_id == "alice"

    @pytest.mark.asyncio
    async def test_review_of_superseded_assessment_rejected(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        await any_ledger.supersede(first.assessment_id, make_assessment(attempt=2))
        with pytest.raises(ReviewNotAllowedError):
            await any_ledger.append_review(_review(first))
        assert await any_ledger.review_for(first.assessment_id) is None

    @pytest.mark.asyncio
    async def test_pending_queue(self, any_ledger):
        now = datetime.now(timezone.utc)
        older = await any_ledger.record(make_assessment(order_id="O1", created_at=now - timedelta(minutes=5)))
        newer = await any_ledger.record(make_assessment(
            order_id="O2", recommendation=Recommendation.DECLINE, level=RiskLevel.CRITICAL, score=90, created_at=now,
        ))
        await any_ledger.record(make_assessment(
            order_id="O3", recommendation=Recommendation.APPROVE, level=RiskLevel.LOW, score=10,
        ))
        reviewed = await any_ledger.record(make_assessment(order_id="O4"))
        await any_ledger.append_review(_review(reviewed))

        items, total = await any_ledger.pending_reviews()
        assert total == 2
        assert [i.assessment_id for i in items] == [newer.assessment_id, older.assessment_id]

        items, total = await any_ledger.pending_reviews(level=RiskLevel.CRITICAL)
        assert total == 1 and items[0].order_id == "O2"

        items, total = await any_ledger.pending_reviews(limit=1, offset=1)
        assert total == 2
        assert [i.assessment_id for i in items] == [older.assessment_id]

    @pytest.mark.asyncio
    async def test_superseded_assessments_leave_the_queue(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        await any_ledger.supersede(first.assessment_id, make_assessment(
            attempt=2, recommendation=Recommendation.APPROVE, level=RiskLevel.LOW, score=5,
        ))
        items, total = await any_ledger.pending_reviews()
        assert total == 0 and items == []


class TestCaptureSeal:
    @pytest.mark.asyncio
    async def test_sealed_order_rejects_new_assessments(self, any_ledger):
        a = await any_ledger.record(make_assessment(recommendation=Recommendation.APPROVE, level=RiskLevel.LOW))
        await any_ledger.mark_captured("ORD-1", a.assessment_id)
        assert await any_ledger.is_sealed("ORD-1")
        with pytest.raises(LedgerSealedError):
            await any_ledger.supersede(a.assessment_id, make_assessment(attempt=2))

    @pytest.mark.asyncio
    async def test_capture_is_idempotent(self, any_ledger):
        a = await any_ledger.record(make_assessment())
        await any_ledger.mark_captured("ORD-1", a.assessment_id)
        await any_ledger.mark_captured("ORD-1", a.assessment_id)
        assert await any_ledger.is_sealed("ORD-1")

    @pytest.mark.asyncio
    async def test_capture_of_stale_assessment_conflicts(self, any_ledger):
        first = await any_ledger.record(make_assessment())
        await any_ledger.supersede(first.assessment_id, make_assessment(attempt=2))
        with pytest.raises(LedgerConflictError):
            await any_ledger.mark_captured("ORD-1", first.assessment_id)
        assert not await any_ledger.is_sealed("ORD-1")


class TestSingleWriter:
    @pytest.mark.asyncio
    async def test_concurrent_first_writes_leave_one_current(self, ledger):
        candidates = [make_assessment() for _ in range(20)]
        results = await asyncio.gather(*(ledger.record(c) for c in candidates), return_exceptions=True)

        winners = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, LedgerConflictError)]
        assert len(winners) == 1
        assert len(conflicts) == 19
        assert all(c.current.assessment_id == winners[0].assessment_id for c in conflicts)

        history = await ledger.history_for("ORD-1")
        assert len(history) == 1
        assert [h for h in history if h.superseded_by is None] == history

    @pytest.mark.asyncio
    async def test_concurrent_supersedes_single_successor(self, ledger):
        first = await ledger.record(make_assessment())
        replacements = [make_assessment(attempt=2) for _ in range(10)]
        results = await asyncio.gather(
            *(ledger.supersede(first.assessment_id, r) for r in replacements), return_exceptions=True,
        )
        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, LedgerConflictError) for r in results) == 9
        assert len(await ledger.history_for("ORD-1")) == 2


class TestSqlConcurrency:
    """Separate connections against one SQLite file; writers contend for real."""

    @pytest.mark.asyncio
    async def test_concurrent_first_writes_leave_one_current(self, file_sql_ledger):
        candidates = [make_assessment() for _ in range(12)]
        results = await asyncio.gather(*(file_sql_ledger.record(c) for c in candidates), return_exceptions=True)

        winners = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, LedgerConflictError)]
        assert len(winners) == 1
        assert len(conflicts) == 11
        assert all(c.current.assessment_id == winners[0].assessment_id for c in conflicts)

        history = await file_sql_ledger.history_for("ORD-1")
        assert [h.assessment_id for h in history] == [winners[0].assessment_id]
        assert (await file_sql_ledger.current_for("ORD-1")).assessment_id == winners[0].assessment_id

    @pytest.mark.asyncio
    async def test_concurrent_supersedes_single_successor(self, file_sql_ledger):
        first = await file_sql_ledger.record(make_assessment())
        replacements = [make_assessment(attempt=2) for _ in range(8)]
        results = await asyncio.gather(
            *(file_sql_ledger.supersede(first.assessment_id, r) for r in replacements), return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(winners) == 1
        assert sum(isinstance(r, LedgerConflictError) for r in results) == 7
        assert (await file_sql_ledger.get(first.assessment_id)).superseded_by == winners[0].assessment_id

    @pytest.mark.asyncio
    async def test_capture_and_supersede_never_both_commit(self, file_sql_ledger):
        for i in range(6):
            order_id = f"ORD-CAP-{i}"
            first = await file_sql_ledger.record(make_assessment(order_id=order_id))
            replacement = make_assessment(
                order_id=order_id, attempt=2, recommendation=Recommendation.DECLINE, level=RiskLevel.CRITICAL, score=90,
            )

            captured, superseded = await asyncio.gather(
                file_sql_ledger.mark_captured(order_id, first.assessment_id),
                file_sql_ledger.supersede(first.assessment_id, replacement),
                return_exceptions=True,
            )
            current = await file_sql_ledger.current_for(order_id)

            if await file_sql_ledger.is_sealed(order_id):
                assert captured is None
                assert isinstance(superseded, LedgerSealedError)
                assert current.assessment_id == first.assessment_id
            else:
                assert isinstance(captured, LedgerConflictError)
                assert superseded.assessment_id == replacement.assessment_id
                assert current.assessment_id == replacement.assessment_id

    @pytest.mark.asyncio
    async def test_review_lands_only_on_the_current_assessment(self, file_sql_ledger):
        for i in range(6):
            order_id = f"ORD-REV-{i}"
            first = await file_sql_ledger.record(make_assessment(order_id=order_id))
            replacement = make_assessment(order_id=order_id, attempt=2)

            reviewed, superseded = await asyncio.gather(
                file_sql_ledger.append_review(_review(first)),
                file_sql_ledger.supersede(first.assessment_id, replacement),
                return_exceptions=True,
            )

            assert superseded.assessment_id == replacement.assessment_id
            if isinstance(reviewed, Exception):
                assert isinstance(reviewed, ReviewNotAllowedError)
                assert await file_sql_ledger.review_for(first.assessment_id) is None
            else:
                assert (await file_sql_ledger.review_for(first.assessment_id)).reviewer_id == "rev-1"

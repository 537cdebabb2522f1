"""
Assessment ledger — append-only log of assessments with one current pointer per order.

Writes are compare-and-swap on the order's head:
  * a first assessment (supersedes=None) succeeds only if the order has no head
  * a replacement (supersedes=X) succeeds only if the head is still X
Anything else raises LedgerConflictError carrying the current record. Callers
must use that record, not retry with a fresh decision.

Replaying a write with an assessment_id that is already stored returns the
stored record (idempotent per order + attempt).

Two backends share the contract:
  InMemoryAssessmentLedger — asyncio.Lock, for local development and tests
  SqlAssessmentLedger      — SQLAlchemy async, constraints and head-row locks do the serialising
Persistence errors are never swallowed.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import (
    AssessmentNotFoundError,
    LedgerConflictError,
    LedgerSealedError,
    ReviewConflictError,
    ReviewNotAllowedError,
)
from app.core.metrics import LEDGER_CONFLICTS_TOTAL
from app.models.risk_assessment import (
    OrderAssessmentHead,
    PaymentCaptureRow,
    ReviewDecisionRow,
    RiskAssessmentRow,
)
from app.schemas.assessment import (
    ExternalJudgmentResult,
    Recommendation,
    ReviewDecision,
    ReviewOutcome,
    RiskAssessment,
    RiskLevel,
    Signal,
)

logger = structlog.get_logger()

REVIEWABLE = (Recommendation.VERIFY, Recommendation.DECLINE)


class AssessmentLedger(ABC):

    @abstractmethod
    async def record(self, assessment: RiskAssessment) -> RiskAssessment:
        """Append `assessment` if the order's head still equals `assessment.supersedes`."""

    async def supersede(self, old_id: str, replacement: RiskAssessment) -> RiskAssessment:
        """Append `replacement` as the successor of `old_id`."""
        if replacement.supersedes not in (None, old_id):
            raise ValueError("replacement already points at a different predecessor")
        return await self.record(replacement.model_copy(update={"supersedes": old_id}))

    @abstractmethod
    async def current_for(self, order_id: str) -> Optional[RiskAssessment]: ...

    @abstractmethod
    async def get(self, assessment_id: str) -> Optional[RiskAssessment]: ...

    @abstractmethod
    async def history_for(self, order_id: str) -> list[RiskAssessment]: ...

    @abstractmethod
    async def append_review(self, review: ReviewDecision) -> ReviewDecision: ...

    @abstractmethod
    async def review_for(self, assessment_id: str) -> Optional[ReviewDecision]: ...

    @abstractmethod
    async def pending_reviews(
        self, level: Optional[RiskLevel] = None, limit: int = 50, offset: int = 0,
    ) -> tuple[list[RiskAssessment], int]: ...

    @abstractmethod
    async def mark_captured(self, order_id: str, assessment_id: str) -> None: ...

    @abstractmethod
    async def is_sealed(self, order_id: str) -> bool: ...

    async def require(self, assessment_id: str) -> RiskAssessment:
        found = await self.get(assessment_id)
        if found is None:
            raise AssessmentNotFoundError(
                f"Assessment {assessment_id} not found", details={"assessment_id": assessment_id},
            )
        return found


def _conflict(order_id: str, current: Optional[RiskAssessment], attempted: RiskAssessment) -> LedgerConflictError:
    LEDGER_CONFLICTS_TOTAL.inc()
    logger.info(
        "ledger_conflict",
        order_id=order_id,
        attempted_assessment_id=attempted.assessment_id,
        expected_head=attempted.supersedes,
        current_assessment_id=current.assessment_id if current else None,
    )
    return LedgerConflictError(order_id, current=current)


def _not_current(review: ReviewDecision) -> ReviewNotAllowedError:
    return ReviewNotAllowedError(
        f"Assessment {review.assessment_id} is no longer current for order {review.order_id}",
        details={"assessment_id": review.assessment_id, "order_id": review.order_id},
    )


# ═══════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════

class InMemoryAssessmentLedger(AssessmentLedger):

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._assessments: dict[str, RiskAssessment] = {}
        self._order_log: dict[str, list[str]] = {}
        self._heads: dict[str, str] = {}
        self._successors: dict[str, str] = {}
        self._attempts: set[tuple[str, int]] = set()
        self._reviews: dict[str, ReviewDecision] = {}
        self._captures: dict[str, str] = {}

    def _view(self, assessment_id: Optional[str]) -> Optional[RiskAssessment]:
        if assessment_id is None:
            return None
        stored = self._assessments[assessment_id]
        return stored.model_copy(update={"superseded_by": self._successors.get(assessment_id)})

    async def record(self, assessment: RiskAssessment) -> RiskAssessment:
        order_id = assessment.order_id
        async with self._lock:
            if assessment.assessment_id in self._assessments:
                return self._view(assessment.assessment_id)
            if order_id in self._captures:
                raise LedgerSealedError(order_id)

            head = self._heads.get(order_id)
            if head != assessment.supersedes or (order_id, assessment.attempt) in self._attempts:
                raise _conflict(order_id, self._view(head), assessment)

            stored = assessment.model_copy(update={"superseded_by": None})
            self._assessments[stored.assessment_id] = stored
            self._order_log.setdefault(order_id, []).append(stored.assessment_id)
            self._attempts.add((order_id, stored.attempt))
            self._heads[order_id] = stored.assessment_id
            if stored.supersedes:
                self._successors[stored.supersedes] = stored.assessment_id
            return self._view(stored.assessment_id)

    async def current_for(self, order_id: str) -> Optional[RiskAssessment]:
        return self._view(self._heads.get(order_id))

    async def get(self, assessment_id: str) -> Optional[RiskAssessment]:
        return self._view(assessment_id) if assessment_id in self._assessments else None

    async def history_for(self, order_id: str) -> list[RiskAssessment]:
        return [self._view(a) for a in self._order_log.get(order_id, [])]

    async def append_review(self, review: ReviewDecision) -> ReviewDecision:
        async with self._lock:
            if self._heads.get(review.order_id) != review.assessment_id:
                raise _not_current(review)
            existing = self._reviews.get(review.assessment_id)
            if existing is not None:
                raise ReviewConflictError(review.assessment_id, existing=existing)
            self._reviews[review.assessment_id] = review
            return review

    async def review_for(self, assessment_id: str) -> Optional[ReviewDecision]:
        return self._reviews.get(assessment_id)

    async def pending_reviews(
        self, level: Optional[RiskLevel] = None, limit: int = 50, offset: int = 0,
    ) -> tuple[list[RiskAssessment], int]:
        pending = [
            self._view(a) for a in self._heads.values()
            if self._assessments[a].recommendation in REVIEWABLE
            and a not in self._reviews
            and (level is None or self._assessments[a].level == level)
        ]
        pending.sort(key=lambda a: a.created_at, reverse=True)
        return pending[offset:offset + limit], len(pending)

    async def mark_captured(self, order_id: str, assessment_id: str) -> None:
        async with self._lock:
            sealed_with = self._captures.get(order_id)
            if sealed_with == assessment_id:
                return
            if sealed_with is not None:
                raise LedgerSealedError(order_id)
            if self._heads.get(order_id) != assessment_id:
                LEDGER_CONFLICTS_TOTAL.inc()
                raise LedgerConflictError(
                    order_id,
                    current=self._view(self._heads.get(order_id)),
                    message=f"Assessment {assessment_id} is not current for order {order_id}",
                )
            self._captures[order_id] = assessment_id

    async def is_sealed(self, order_id: str) -> bool:
        return order_id in self._captures


# ═══════════════════════════════════════════════════════════════
# SQL backend
# ═══════════════════════════════════════════════════════════════

class _StaleHead(Exception):
    pass


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _to_row(a: RiskAssessment) -> RiskAssessmentRow:
    judgment = a.external_judgment
    return RiskAssessmentRow(
        assessment_id=a.assessment_id,
        order_id=a.order_id,
        customer_id=a.customer_id,
        attempt=a.attempt,
        policy_version=a.policy_version,
        signals=[s.model_dump(mode="json") for s in a.signals],
        external_judgment=judgment.model_dump(mode="json") if judgment else None,
        external_score=judgment.score if judgment else None,
        external_available=bool(judgment and judgment.source_available),
        rules_subscore=a.rules_subscore,
        rules_complete=a.rules_complete,
        aggregated_score=a.aggregated_score,
        level=a.level.value,
        recommendation=a.recommendation.value,
        reason_code=a.reason_code.value if a.reason_code else None,
        rationale=a.rationale,
        submission_snapshot=a.submission_snapshot,
        supersedes=a.supersedes,
        created_at=a.created_at,
    )


def _to_domain(row: RiskAssessmentRow, superseded_by: Optional[str]) -> RiskAssessment:
    return RiskAssessment(
        assessment_id=row.assessment_id,
        order_id=row.order_id,
        customer_id=row.customer_id,
        attempt=row.attempt,
        policy_version=row.policy_version,
        signals=[Signal.model_validate(s) for s in row.signals],
        external_judgment=(
            ExternalJudgmentResult.model_validate(row.external_judgment) if row.external_judgment else None
        ),
        rules_subscore=row.rules_subscore,
        rules_complete=row.rules_complete,
        aggregated_score=row.aggregated_score,
        level=RiskLevel(row.level),
        recommendation=Recommendation(row.recommendation),
        reason_code=row.reason_code,
        rationale=row.rationale,
        submission_snapshot=row.submission_snapshot,
        supersedes=row.supersedes,
        superseded_by=superseded_by,
        created_at=_aware(row.created_at),
    )


def _review_to_domain(row: ReviewDecisionRow) -> ReviewDecision:
    return ReviewDecision(
        assessment_id=row.assessment_id,
        order_id=row.order_id,
        reviewer_id=row.reviewer_id,
        outcome=ReviewOutcome(row.outcome),
        notes=row.notes,
        decided_at=_aware(row.decided_at),
    )


class SqlAssessmentLedger(AssessmentLedger):

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def _successor_of(self, session: AsyncSession, assessment_id: str) -> Optional[str]:
        result = await session.execute(
            select(RiskAssessmentRow.assessment_id).where(RiskAssessmentRow.supersedes == assessment_id)
        )
        return result.scalar_one_or_none()

    async def _load(self, session: AsyncSession, assessment_id: str) -> Optional[RiskAssessment]:
        row = await session.get(RiskAssessmentRow, assessment_id)
        if row is None:
            return None
        return _to_domain(row, await self._successor_of(session, assessment_id))

    async def _locked_head(self, session: AsyncSession, order_id: str) -> Optional[OrderAssessmentHead]:
        result = await session.execute(
            select(OrderAssessmentHead).where(OrderAssessmentHead.order_id == order_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _captured(self, session: AsyncSession, order_id: str) -> bool:
        result = await session.execute(
            select(PaymentCaptureRow.order_id).where(PaymentCaptureRow.order_id == order_id)
        )
        return result.scalar_one_or_none() is not None

    async def record(self, assessment: RiskAssessment) -> RiskAssessment:
        order_id = assessment.order_id
        try:
            async with self._session_factory() as session, session.begin():
                replay = await self._load(session, assessment.assessment_id)
                if replay is not None:
                    return replay

                session.add(_to_row(assessment))
                await session.flush()

                if assessment.supersedes is None:
                    session.add(OrderAssessmentHead(order_id=order_id, assessment_id=assessment.assessment_id))
                    await session.flush()
                else:
                    result = await session.execute(
                        update(OrderAssessmentHead)
                        .where(
                            OrderAssessmentHead.order_id == order_id,
                            OrderAssessmentHead.assessment_id == assessment.supersedes,
                        )
                        .values(assessment_id=assessment.assessment_id, updated_at=datetime.now(timezone.utc))
                    )
                    if result.rowcount != 1:
                        raise _StaleHead()

                # The head row is locked from here on, so a concurrent capture is visible.
                if await self._captured(session, order_id):
                    raise LedgerSealedError(order_id)
        except (IntegrityError, _StaleHead):
            raise _conflict(order_id, await self.current_for(order_id), assessment) from None

        logger.info(
            "ledger_appended",
            assessment_id=assessment.assessment_id,
            order_id=order_id,
            supersedes=assessment.supersedes,
        )
        return assessment.model_copy(update={"superseded_by": None})

    async def current_for(self, order_id: str) -> Optional[RiskAssessment]:
        async with self._session_factory() as session:
            head = await session.get(OrderAssessmentHead, order_id)
            if head is None:
                return None
            return await self._load(session, head.assessment_id)

    async def get(self, assessment_id: str) -> Optional[RiskAssessment]:
        async with self._session_factory() as session:
            return await self._load(session, assessment_id)

    async def history_for(self, order_id: str) -> list[RiskAssessment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RiskAssessmentRow)
                .where(RiskAssessmentRow.order_id == order_id)
                .order_by(RiskAssessmentRow.attempt, RiskAssessmentRow.created_at)
            )
            rows = result.scalars().all()
        successors = {r.supersedes: r.assessment_id for r in rows if r.supersedes}
        return [_to_domain(r, successors.get(r.assessment_id)) for r in rows]

    async def append_review(self, review: ReviewDecision) -> ReviewDecision:
        try:
            async with self._session_factory() as session, session.begin():
                head = await self._locked_head(session, review.order_id)
                if head is None or head.assessment_id != review.assessment_id:
                    raise _not_current(review)
                session.add(ReviewDecisionRow(
                    assessment_id=review.assessment_id,
                    order_id=review.order_id,
                    reviewer_id=review.reviewer_id,
                    outcome=review.outcome.value,
                    notes=review.notes,
                    decided_at=review.decided_at,
                ))
        except IntegrityError:
            raise ReviewConflictError(
                review.assessment_id, existing=await self.review_for(review.assessment_id),
            ) from None
        return review

    async def review_for(self, assessment_id: str) -> Optional[ReviewDecision]:
        async with self._session_factory() as session:
            row = await session.get(ReviewDecisionRow, assessment_id)
            return _review_to_domain(row) if row else None

    async def pending_reviews(
        self, level: Optional[RiskLevel] = None, limit: int = 50, offset: int = 0,
    ) -> tuple[list[RiskAssessment], int]:
        conditions = [
            RiskAssessmentRow.recommendation.in_([r.value for r in REVIEWABLE]),
            ReviewDecisionRow.assessment_id.is_(None),
        ]
        if level is not None:
            conditions.append(RiskAssessmentRow.level == level.value)

        base = (
            select(RiskAssessmentRow)
            .join(OrderAssessmentHead, OrderAssessmentHead.assessment_id == RiskAssessmentRow.assessment_id)
            .outerjoin(ReviewDecisionRow, ReviewDecisionRow.assessment_id == RiskAssessmentRow.assessment_id)
            .where(*conditions)
        )
        async with self._session_factory() as session:
            total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
            result = await session.execute(
                base.order_by(RiskAssessmentRow.created_at.desc()).limit(limit).offset(offset)
            )
            rows = result.scalars().all()
        return [_to_domain(r, None) for r in rows], total

    async def mark_captured(self, order_id: str, assessment_id: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                head = await self._locked_head(session, order_id)
                existing = await session.get(PaymentCaptureRow, order_id)
                if existing is not None:
                    if existing.assessment_id == assessment_id:
                        return
                    raise LedgerSealedError(order_id)
                if head is None or head.assessment_id != assessment_id:
                    raise _StaleHead()
                session.add(PaymentCaptureRow(order_id=order_id, assessment_id=assessment_id))
        except _StaleHead:
            LEDGER_CONFLICTS_TOTAL.inc()
            raise LedgerConflictError(
                order_id,
                current=await self.current_for(order_id),
                message=f"Assessment {assessment_id} is not current for order {order_id}",
            ) from None
        except IntegrityError:
            raise LedgerSealedError(order_id) from None

    async def is_sealed(self, order_id: str) -> bool:
        async with self._session_factory() as session:
            return await session.get(PaymentCaptureRow, order_id) is not None

"""
Kafka event publisher — fire-and-forget.

Publishes assessment and review events for downstream consumers
(review dashboards, monitoring, data warehouse sync).
Gracefully degrades if Kafka is unavailable; the ledger stays the
source of truth.
"""
from __future__ import annotations

import json
from typing import Any

import structlog
from app.core.config import get_settings
from app.schemas.assessment import ReviewDecision, RiskAssessment

logger = structlog.get_logger()

_producer = None


async def _get_producer():
    global _producer
    settings = get_settings()
    if not settings.kafka_enabled:
        return None
    if _producer is None:
        from aiokafka import AIOKafkaProducer
        producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap)
        await producer.start()
        _producer = producer
    return _producer


async def _publish(event: dict[str, Any], key: str) -> None:
    settings = get_settings()
    if not settings.kafka_enabled:
        return

    try:
        producer = await _get_producer()
        if producer:
            await producer.send_and_wait(
                settings.kafka_topic_risk_events,
                json.dumps(event).encode("utf-8"),
                key=key.encode("utf-8"),
            )
            logger.info("kafka_event_published", event_type=event["event_type"], order_id=key)
    except Exception as e:
        # Fire-and-forget: log but don't fail the request
        logger.warning("kafka_publish_failed", event_type=event["event_type"], error=str(e))


async def publish_assessment_event(assessment: RiskAssessment) -> None:
    await _publish(
        {
            "event_type": "RISK_ASSESSMENT_RECORDED",
            "assessment_id": assessment.assessment_id,
            "order_id": assessment.order_id,
            "attempt": assessment.attempt,
            "supersedes": assessment.supersedes,
            "recommendation": assessment.recommendation.value,
            "level": assessment.level.value,
            "score": assessment.aggregated_score,
            "policy_version": assessment.policy_version,
            "created_at": assessment.created_at.isoformat(),
        },
        key=assessment.order_id,
    )


async def publish_review_event(review: ReviewDecision) -> None:
    await _publish(
        {
            "event_type": "REVIEW_DECISION_RECORDED",
            "assessment_id": review.assessment_id,
            "order_id": review.order_id,
            "reviewer_id": review.reviewer_id,
            "outcome": review.outcome.value,
            "decided_at": review.decided_at.isoformat(),
        },
        key=review.order_id,
    )


async def close_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None

"""
Risk gate exception hierarchy.

Every failure the pipeline surfaces to a caller carries a deterministic code:

- RG_INPUT_INVALID:       submission failed validation, nothing recorded
- RG_RULES_INCOMPLETE:    rule inputs missing (handled internally → VERIFY)
- RG_LEDGER_CONFLICT:     order already assessed, use the current record
- RG_LEDGER_SEALED:       payment captured, assessment chain is closed
- RG_REVIEW_CONFLICT:     assessment already reviewed
- RG_REVIEW_NOT_ALLOWED:  review precondition failed
- RG_NOT_FOUND:           unknown order / assessment
- RG_ADMISSION_DENIED:    capture confirmed for an order the gate does not admit
- RG_CONFIG_INVALID:      scoring policy or reference data rejected

External judgment failures are deliberately absent: they are converted to an
unavailable result, never raised.
"""
from __future__ import annotations

from typing import Any, Optional


class RiskGateError(Exception):
    """Base class: code + human message + structured details."""

    code: str = "RG_INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class SubmissionValidationError(RiskGateError):
    code = "RG_INPUT_INVALID"
    status_code = 422


class IncompleteSubmissionError(RiskGateError):
    """Raised by the signal extractor when rule inputs were not supplied."""

    code = "RG_RULES_INCOMPLETE"
    status_code = 422

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"Rule inputs missing: {', '.join(missing)}",
            details={"missing": missing},
        )
        self.missing = missing


class LedgerConflictError(RiskGateError):
    """Another write won the race for this order; read the current record instead."""

    code = "RG_LEDGER_CONFLICT"
    status_code = 409

    def __init__(self, order_id: str, current=None, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Order {order_id} already assessed",
            details={
                "order_id": order_id,
                "current_assessment_id": current.assessment_id if current else None,
            },
        )
        self.order_id = order_id
        self.current = current


class LedgerSealedError(RiskGateError):
    code = "RG_LEDGER_SEALED"
    status_code = 409

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Payment for order {order_id} was captured; assessments are closed",
            details={"order_id": order_id},
        )
        self.order_id = order_id


class ReviewConflictError(RiskGateError):
    code = "RG_REVIEW_CONFLICT"
    status_code = 409

    def __init__(self, assessment_id: str, existing=None) -> None:
        details: dict[str, Any] = {"assessment_id": assessment_id}
        if existing is not None:
            details.update(
                reviewer_id=existing.reviewer_id,
                outcome=existing.outcome.value,
                decided_at=existing.decided_at.isoformat(),
            )
        super().__init__(f"Assessment {assessment_id} already reviewed", details=details)
        self.assessment_id = assessment_id
        self.existing = existing


class ReviewNotAllowedError(RiskGateError):
    code = "RG_REVIEW_NOT_ALLOWED"
    status_code = 422


class AssessmentNotFoundError(RiskGateError):
    code = "RG_NOT_FOUND"
    status_code = 404


class AdmissionDeniedError(RiskGateError):
    code = "RG_ADMISSION_DENIED"
    status_code = 409


class PolicyConfigError(RiskGateError):
    code = "RG_CONFIG_INVALID"

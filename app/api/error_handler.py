"""Domain exception → JSON response mapping."""
from __future__ import annotations

import structlog
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import RiskGateError, SubmissionValidationError

logger = structlog.get_logger()


async def risk_gate_exception_handler(request: Request, exc: RiskGateError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("request_rejected", path=request.url.path, code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = SubmissionValidationError(
        "Request failed validation",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    logger.info("request_invalid", path=request.url.path, error_count=len(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

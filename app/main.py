"""
LegalOps Risk Gate — FastAPI Application Entry Point

POST /v1/risk/assess             → pre-payment risk decision (checkout)
GET  /v1/admission/{order_id}    → may payment capture proceed (payment)
GET  /v1/review/pending          → manual review queue (reviewers)
GET  /v1/risk/health             → health check
GET  /docs                       → OpenAPI / Swagger UI
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from app.api.deps import build_container
from app.api.error_handler import risk_gate_exception_handler, validation_exception_handler
from app.api.review_endpoint import router as review_router
from app.api.risk_endpoint import admission_router, router as risk_router
from app.core.config import get_settings
from app.core.errors import RiskGateError
from app.models.database import dispose_engine
from app.services.event_publisher import close_producer

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if get_settings().app_env == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(get_settings().log_level),
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        app.state.container = build_container(settings)
    container = app.state.container
    logger.info(
        "risk_gate_starting",
        policy_version=container.scorer.config.version,
        ledger_backend=settings.ledger_backend,
        judgment_enabled=container.judgment.enabled,
    )
    yield
    logger.info("risk_gate_shutting_down")
    if owns_container:
        await container.aclose()
        app.state.container = None
    await close_producer()
    await dispose_engine()


app = FastAPI(
    title="LegalOps Risk Gate",
    description="Pre-payment risk assessment for legal-document orders",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (checkout + reviewer console) ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

# ── Errors ──
app.add_exception_handler(RiskGateError, risk_gate_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# ── Prometheus metrics ──
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ──
app.include_router(risk_router)
app.include_router(admission_router)
app.include_router(review_router)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "legalops-risk-gate",
        "version": "1.0.0",
        "docs": "/docs",
        "assess": "POST /v1/risk/assess",
    }

"""
Prometheus instruments for the risk gate. Exposed via /metrics (see main.py).
"""
from prometheus_client import Counter, Histogram

ASSESSMENTS_TOTAL = Counter(
    "risk_gate_assessments_total",
    "Risk assessments recorded, by recommendation",
    ["recommendation"],
)

ASSESSMENT_REPLAYS_TOTAL = Counter(
    "risk_gate_assessment_replays_total",
    "Assessment requests answered from the ledger instead of a fresh decision",
)

JUDGMENT_RESULTS_TOTAL = Counter(
    "risk_gate_judgment_results_total",
    "External judgment calls, by outcome",
    ["outcome"],
)

JUDGMENT_LATENCY_SECONDS = Histogram(
    "risk_gate_judgment_latency_seconds",
    "Wall time spent waiting on the external judgment service",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0),
)

LEDGER_CONFLICTS_TOTAL = Counter(
    "risk_gate_ledger_conflicts_total",
    "Ledger compare-and-swap failures",
)

ADMISSION_CHECKS_TOTAL = Counter(
    "risk_gate_admission_checks_total",
    "Admission gate checks, by resulting state",
    ["state"],
)

REVIEWS_TOTAL = Counter(
    "risk_gate_reviews_total",
    "Review decisions recorded, by outcome",
    ["outcome"],
)

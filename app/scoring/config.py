"""
Versioned scoring policy + reference lists.

Weights, severities, thresholds and score bands are configuration, not code:
they can be retuned by shipping a new JSON policy file (RISK_POLICY_PATH)
without touching rule logic. Every assessment stores the `version` of the
policy that produced it.

Default bands follow the platform's documented risk bands:
    0-25   LOW       → APPROVE
    26-50  MEDIUM    → APPROVE
    51-75  HIGH      → VERIFY
    76-100 CRITICAL  → DECLINE
These are product defaults awaiting confirmation, not engineering constants.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.core.config import Settings
from app.core.errors import PolicyConfigError
from app.schemas.assessment import Severity

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════════
# Rule battery. Evaluation order is the order of this mapping
# ═══════════════════════════════════════════════════════════════
DEFAULT_RULES: dict[str, dict] = {
    "disposable_email": {"weight": 25, "severity": Severity.MEDIUM},
    "prepaid_instrument": {"weight": 15, "severity": Severity.MEDIUM},
    "new_account_high_value": {"weight": 20, "severity": Severity.MEDIUM},
    "chargeback_history": {"weight": 40, "severity": Severity.HIGH},
    "order_velocity": {"weight": 20, "severity": Severity.MEDIUM},
    "geo_billing_mismatch": {"weight": 15, "severity": Severity.MEDIUM},
    "known_bad_actor": {"weight": 100, "severity": Severity.HIGH},
    "implausible_identity": {"weight": 15, "severity": Severity.MEDIUM},
    "rush_order": {"weight": 10, "severity": Severity.LOW},
    "missing_phone": {"weight": 5, "severity": Severity.LOW},
    "large_order": {"weight": 10, "severity": Severity.MEDIUM},
    "multiple_services": {"weight": 15, "severity": Severity.MEDIUM},
}

DEFAULT_DISPOSABLE_DOMAINS = frozenset({
    "tempmail.com", "guerrillamail.com", "10minutemail.com",
    "throwaway.email", "mailinator.com", "trashmail.com",
    "yopmail.com", "maildrop.cc",
})


class RuleSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    weight: float = Field(ge=0, le=100)
    severity: Severity


class RuleThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    new_account_max_age_days: int = Field(1, ge=0, description="account age strictly below this is 'new'")
    new_account_min_amount: float = Field(500.0, ge=0, description="order amount strictly above this is 'high value'")
    velocity_window_minutes: int = Field(60, gt=0)
    velocity_max_orders: int = Field(3, gt=0, description="this many prior orders inside the window triggers")
    large_order_amount: float = Field(1000.0, ge=0)
    multiple_services_max: int = Field(5, ge=0, description="more services than this triggers")


class AggregationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    rules_weight: float = Field(0.6, ge=0, le=1)
    judgment_weight: float = Field(0.4, ge=0, le=1)
    min_judgment_confidence: float = Field(0.5, ge=0, le=1)
    high_severity_floor: bool = True

    @model_validator(mode="after")
    def rules_dominate(self) -> "AggregationSettings":
        if abs(self.rules_weight + self.judgment_weight - 1.0) > 1e-9:
            raise ValueError("rules_weight + judgment_weight must equal 1.0")
        if self.rules_weight < self.judgment_weight:
            raise ValueError("rules_weight must be >= judgment_weight")
        return self


class LevelBands(BaseModel):
    """Lower bounds (inclusive) of each level above LOW."""
    model_config = ConfigDict(frozen=True)

    medium_min: float = 26.0
    high_min: float = 51.0
    critical_min: float = 76.0

    @model_validator(mode="after")
    def ascending(self) -> "LevelBands":
        if not 0 < self.medium_min < self.high_min < self.critical_min <= 100:
            raise ValueError("bands must satisfy 0 < medium < high < critical <= 100")
        return self


class RiskPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "2025.11-1"
    rules: dict[str, RuleSettings] = Field(default_factory=lambda: {
        name: RuleSettings(**rule) for name, rule in DEFAULT_RULES.items()
    })
    thresholds: RuleThresholds = RuleThresholds()
    aggregation: AggregationSettings = AggregationSettings()
    bands: LevelBands = LevelBands()

    @field_validator("rules", mode="before")
    @classmethod
    def merge_with_defaults(cls, v):
        """A policy file only lists the rules it retunes; the rest keep defaults."""
        supplied = dict(v or {})
        unknown = set(supplied) - set(DEFAULT_RULES)
        if unknown:
            raise ValueError(f"unknown rules: {sorted(unknown)}")
        merged = {}
        for name, default in DEFAULT_RULES.items():
            override = supplied.get(name)
            if isinstance(override, RuleSettings):
                merged[name] = override
            else:
                merged[name] = {**default, **(override or {})}
        return merged

    @property
    def verify_threshold(self) -> float:
        return self.bands.high_min

    @property
    def decline_threshold(self) -> float:
        return self.bands.critical_min

    @classmethod
    def from_file(cls, path: str | Path) -> "RiskPolicyConfig":
        return cls.model_validate(_read_json(path))


class ReferenceData(BaseModel):
    """Read-only lookup lists consulted by the rule battery."""
    model_config = ConfigDict(frozen=True)

    disposable_email_domains: frozenset[str] = DEFAULT_DISPOSABLE_DOMAINS
    bad_actor_emails: frozenset[str] = frozenset()
    bad_actor_fingerprints: frozenset[str] = frozenset()
    bad_actor_ips: frozenset[str] = frozenset()

    @field_validator("disposable_email_domains", "bad_actor_emails", mode="after")
    @classmethod
    def lowercase(cls, v: frozenset[str]) -> frozenset[str]:
        return frozenset(item.strip().lower() for item in v)

    @classmethod
    def from_file(cls, path: str | Path) -> "ReferenceData":
        return cls.model_validate(_read_json(path))


def _read_json(path: str | Path) -> dict:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise PolicyConfigError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e


def load_policy(settings: Settings) -> RiskPolicyConfig:
    return _load(RiskPolicyConfig, settings.risk_policy_path, "risk_policy")


def load_reference_data(settings: Settings) -> ReferenceData:
    return _load(ReferenceData, settings.reference_data_path, "reference_data")


def _load(model, path: Optional[str], label: str):
    if not path:
        logger.info("config_defaults_used", config=label)
        return model()
    try:
        loaded = model.from_file(path)
    except ValidationError as e:
        raise PolicyConfigError(
            f"Invalid {label} in {path}",
            details={"path": path, "errors": e.errors(include_url=False)},
        ) from e
    logger.info("config_loaded", config=label, path=path, version=getattr(loaded, "version", None))
    return loaded

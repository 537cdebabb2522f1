"""
Inbound order submission from the checkout collaborator.

The checkout flow sends everything the pipeline needs in one payload: the
order, the customer, and the behavioral facts supplied by the identity/session
collaborator. The risk gate never fetches order or customer data itself.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PREPAID_CARD = "prepaid_card"
    GIFT_CARD = "gift_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    STRIPE = "stripe"


# ── Sub-models ──

class CustomerIdentity(BaseModel):
    """Authenticated customer identity — provided by the identity collaborator."""
    model_config = ConfigDict(frozen=True)

    customer_id: str = Field(min_length=1, max_length=100)
    name: Optional[str] = Field(None, max_length=200)
    email: str = Field(max_length=320)
    phone: Optional[str] = Field(None, max_length=40)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        local, sep, domain = v.strip().partition("@")
        if not sep or not local or not domain or "@" in domain:
            raise ValueError("email must look like local@domain")
        return v.strip()


class BillingDetails(BaseModel):
    """Declared billing address."""
    model_config = ConfigDict(frozen=True)

    street: str
    city: str
    state: str
    zip: str
    country: str = Field("US", min_length=2, max_length=2, description="ISO-3166 alpha-2")

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()


class OrderContents(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: float = Field(gt=0, description="Order total in `currency`")
    currency: str = "USD"
    services: tuple[str, ...] = ()
    is_rush_order: bool = False


class BehavioralMetadata(BaseModel):
    """
    Account history and session hints.

    account_age_days / prior_chargeback_count are required by the rule
    battery; when the identity collaborator cannot supply them the
    submission is still accepted but the rules stage is marked incomplete.
    """
    model_config = ConfigDict(frozen=True)

    account_age_days: Optional[int] = Field(None, ge=0)
    prior_order_count: Optional[int] = Field(None, ge=0)
    prior_chargeback_count: Optional[int] = Field(None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.STRIPE
    ip_address: Optional[str] = None
    ip_country: Optional[str] = Field(None, min_length=2, max_length=2)
    user_agent: Optional[str] = None
    device_fingerprint: Optional[str] = None
    recent_order_times: tuple[datetime, ...] = Field(
        (),
        description="Timestamps of recent orders from the same identity or fingerprint",
    )

    @field_validator("ip_country")
    @classmethod
    def upper_ip_country(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator("recent_order_times")
    @classmethod
    def require_timezone(cls, v: tuple[datetime, ...]) -> tuple[datetime, ...]:
        if any(t.tzinfo is None for t in v):
            raise ValueError("recent_order_times must be timezone-aware")
        return v


# ── Top-level submission ──

class OrderSubmission(BaseModel):
    """
    Immutable snapshot assessed for one attempt.

    `submitted_at` anchors every time-window check so that evaluating the
    same submission twice always yields the same signals.
    """
    model_config = ConfigDict(frozen=True)

    customer: CustomerIdentity
    order: OrderContents
    behavior: BehavioralMetadata = BehavioralMetadata()
    billing: Optional[BillingDetails] = None
    submitted_at: datetime

    @field_validator("submitted_at")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("submitted_at must be timezone-aware")
        return v

"""
Ledger Policy - Business parameters of the posting engine

The LedgerPolicy collects every tunable rule in one validated model:
amount limits, text bounds, the service-code catalogue, pagination bounds
and the overdraft switch. Defaults match what the care provider runs with.
"""

import os
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

DEFAULT_SERVICE_CODES = [
    "SDA_RENT",  # Specialist Disability Accommodation rental
    "SIL_SUPPORT",  # Supported Independent Living hours
    "CORE_SUPPORT",
    "CAPACITY_BUILDING",
    "TRANSPORT",
    "EQUIPMENT",  # Assistive technology and equipment
    "THERAPY",  # Allied health and therapy services
    "RESPITE",  # Short-term accommodation and respite
    "OTHER",
]

ENV_PREFIX = "CARE_LEDGER_"


class LedgerPolicy(BaseModel):
    """
    Business parameters for funding and transaction rules

    Overdraft override stays off unless explicitly enabled: with it off,
    a post that would drive a contract negative is always blocked, even
    when the caller asks to force it.
    """

    funding_amount_max: Decimal = Field(
        default=Decimal("999999.99"),
        gt=0,
        description="Largest amount a single funding contract may hold",
    )

    transaction_amount_max: Decimal = Field(
        default=Decimal("999999.99"),
        gt=0,
        description="Largest unit price or billed amount of one transaction",
    )

    transaction_quantity_max: Decimal = Field(
        default=Decimal("10000"),
        gt=0,
        description="Most units a single transaction may bill",
    )

    funding_description_max_length: int = Field(
        default=200,
        ge=1,
        description="Maximum characters in a funding record description",
    )

    transaction_description_max_length: int = Field(
        default=500,
        ge=1,
        description="Maximum characters in a transaction description",
    )

    transaction_note_max_length: int = Field(
        default=1000,
        ge=1,
        description="Maximum characters in a transaction note",
    )

    void_reason_max_length: int = Field(
        default=1000,
        ge=1,
        description="Maximum characters in a void reason",
    )

    service_codes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SERVICE_CODES),
        min_length=1,
        description="Known service codes a transaction may be billed under",
    )

    allow_overdraft_override: bool = Field(
        default=False,
        description="Whether a forced post may drive a contract below zero",
    )

    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    bulk_max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Thread pool size for bulk post/void",
    )

    recent_window_days: int = Field(
        default=30,
        ge=1,
        description="Look-back window for 'recent' transaction counts",
    )

    @model_validator(mode="after")
    def _check_page_bounds(self) -> "LedgerPolicy":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self

    def is_known_service_code(self, code: str) -> bool:
        return code in self.service_codes

    def clamp_page_size(self, page_size: int | None) -> int:
        """Clamp a requested page size into [1, max_page_size]"""
        if page_size is None:
            return self.default_page_size
        return max(1, min(page_size, self.max_page_size))

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "LedgerPolicy":
        """
        Build a policy from CARE_LEDGER_* environment variables

        Unset variables keep their defaults. List values (SERVICE_CODES) are
        comma-separated.

        Example:
            CARE_LEDGER_ALLOW_OVERDRAFT_OVERRIDE=true
            CARE_LEDGER_SERVICE_CODES=SDA_RENT,THERAPY
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            if field.annotation == list[str]:
                values[name] = [part.strip() for part in raw.split(",") if part.strip()]
            elif field.annotation is bool:
                values[name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            else:
                values[name] = raw
        return cls(**values)

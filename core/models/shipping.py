"""Shipping method domain models.

Costs are in cents. Weight is grams, distance is kilometres.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class CalculationType(str, Enum):
    """How a method's cost grows beyond its base."""

    FLAT = "flat"                      # base cost only
    WEIGHT_BASED = "weight_based"      # + each tier whose weight threshold is met
    DISTANCE_BASED = "distance_based"  # + each tier whose distance threshold is met


class RateTier(BaseModel):
    """Surcharge added once the shipment reaches `threshold`."""

    threshold: int = Field(..., ge=0)
    cost_cents: int = Field(..., ge=0)


class ShippingMethodCreate(BaseModel):
    """Data required to create a shipping method."""

    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(None, max_length=1000)
    base_cost_cents: int = Field(..., ge=0)
    calculation_type: CalculationType = CalculationType.FLAT
    rates: list[RateTier] = []
    estimated_days: int = Field(..., ge=0)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_rates(self) -> "ShippingMethodCreate":
        """Tiered methods need tiers."""
        if self.calculation_type != CalculationType.FLAT and not self.rates:
            raise ValueError(f"{self.calculation_type.value} shipping requires rates")
        return self


class ShippingMethod(BaseModel):
    """Full shipping method entity as stored."""

    id: UUID
    merchant_id: UUID
    name: str
    code: str
    description: str | None
    base_cost_cents: int
    calculation_type: CalculationType
    rates: list[RateTier] = []
    estimated_days: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("rates", mode="before")
    @classmethod
    def null_rates(cls, v):
        return v or []

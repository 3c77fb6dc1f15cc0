"""Coupon domain models.

Money is in cents. A coupon's `value` depends on its type:
- PERCENTAGE: basis points of the subtotal (1000 = 10%)
- FIXED: cents off the subtotal
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_PERCENTAGE_BPS = 10000


def normalize_code(code: str) -> str:
    """Coupon codes are case-insensitive; store and compare upper-case."""
    return code.strip().upper()


class CouponType(str, Enum):
    """How a coupon's value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponCreate(BaseModel):
    """Data required to create a coupon."""

    code: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(None, max_length=500)
    type: CouponType
    value: int = Field(..., ge=1)
    min_purchase_cents: int | None = Field(None, ge=0)
    max_discount_cents: int | None = Field(None, ge=0)
    usage_limit: int | None = Field(None, ge=1)
    per_customer_limit: int | None = Field(None, ge=1)
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize(cls, v: str) -> str:
        code = normalize_code(v)
        if not code:
            raise ValueError("code must not be blank")
        return code

    @model_validator(mode="after")
    def check_value_and_window(self) -> "CouponCreate":
        """Percentages top out at 100%; the window must move forward."""
        if self.type == CouponType.PERCENTAGE and self.value > MAX_PERCENTAGE_BPS:
            raise ValueError("percentage value cannot exceed 10000 bps (100%)")
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class CouponUpdate(BaseModel):
    """Fields a merchant may change. Code and type are fixed at creation."""

    description: str | None = Field(None, max_length=500)
    value: int | None = Field(None, ge=1)
    min_purchase_cents: int | None = Field(None, ge=0)
    max_discount_cents: int | None = Field(None, ge=0)
    usage_limit: int | None = Field(None, ge=1)
    per_customer_limit: int | None = Field(None, ge=1)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool | None = None

    @field_validator("value", "start_date", "is_active")
    @classmethod
    def not_null(cls, v, info):
        """Omit a field to keep it; only the optional columns accept null."""
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class Coupon(BaseModel):
    """
    Full coupon entity as stored.

    Frozen: the engine works on immutable snapshots, never on live rows.
    """

    id: UUID
    merchant_id: UUID
    code: str
    description: str | None = None
    type: CouponType
    value: int
    min_purchase_cents: int | None = None
    max_discount_cents: int | None = None
    usage_limit: int | None = None
    used_count: int = 0
    per_customer_limit: int | None = None
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}

    @property
    def remaining_uses(self) -> int | None:
        """Redemptions left before the global cap, None when uncapped."""
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - self.used_count, 0)


class CouponUsage(BaseModel):
    """One redemption of a coupon against a finalized order."""

    id: UUID
    coupon_id: UUID
    order_id: UUID
    customer_id: UUID
    discount_cents: int
    created_at: datetime

    model_config = {"from_attributes": True}

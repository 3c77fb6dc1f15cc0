"""Pricing and checkout configuration."""

from pydantic import BaseModel, Field


class PricingConfig(BaseModel):
    """
    Pricing configuration.

    Tax is owned by whoever deploys the service; the pipeline only applies
    the rate it is handed. Rates are basis points (1000 = 10%).
    """

    tax_rate_bps: int = Field(
        default=1000,
        description="Tax rate applied to the discounted subtotal",
        ge=0,
        le=10000,
    )
    invoice_due_days: int = Field(
        default=7,
        description="Days between invoice issue and due date",
        ge=0,
        le=365,
    )
    number_max_attempts: int = Field(
        default=5,
        description="Attempts at a unique order/invoice number before giving up",
        ge=1,
        le=20,
    )
    currency: str = Field(
        default="USD",
        description="ISO 4217 code; all amounts are in its minor unit",
        min_length=3,
        max_length=3,
    )

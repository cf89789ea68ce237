"""Supply Schemas — registering a property's token supply and reading its buckets.

Invariants:
    - SupplyCreate: 1 <= minimum_investment <= maximum_investment <= total_supply
    - token_price > 0, two decimal places
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SupplyCreate(BaseModel):
    """Register token supply for a property."""
    property_id: str = Field(min_length=1, max_length=64)
    total_supply: int = Field(gt=0)
    token_price: Decimal = Field(gt=0, max_digits=18, decimal_places=2)
    minimum_investment: int = Field(1, ge=1)
    maximum_investment: int | None = Field(None, ge=1)

    @field_validator("property_id")
    @classmethod
    def strip_property_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("property_id cannot be empty or whitespace")
        return v

    @model_validator(mode="after")
    def validate_limits(self):
        if self.minimum_investment > self.total_supply:
            raise ValueError("minimum_investment cannot exceed total_supply")
        if self.maximum_investment is not None:
            if self.maximum_investment < self.minimum_investment:
                raise ValueError(
                    "maximum_investment cannot be below minimum_investment",
                )
        return self


class PriceUpdate(BaseModel):
    token_price: Decimal = Field(gt=0, max_digits=18, decimal_places=2)


class SupplyResponse(BaseModel):
    """Public view of a property's token supply."""
    model_config = ConfigDict(from_attributes=True)

    property_id: str
    total_supply: int
    available_supply: int
    reserved_supply: int
    issued_supply: int
    token_price: Decimal
    minimum_investment: int
    maximum_investment: int | None
    version: int
    updated_at: datetime

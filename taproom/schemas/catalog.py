"""
Catalogue Schemas.

Reference data owned by the backend product catalogue. The counter treats
these as read-only and snapshots them locally for offline use.
"""
from typing import Optional

from pydantic import AliasChoices, Field, field_validator

from taproom.schemas.base import WireSchema


class Zone(WireSchema):
    """A physical storage/service area being counted."""
    id: int
    name: str
    description: Optional[str] = None


class Product(WireSchema):
    """A countable item: a keg product when sold by volume, otherwise bottle/can."""
    id: int
    name: str
    upc: Optional[str] = None
    is_sold_by_volume: bool = False
    bottle_size_ml: Optional[int] = None

    # Scale calibration, may be missing
    empty_weight_grams: Optional[float] = None
    full_weight_grams: Optional[float] = None

    # Prior sealed-unit count, seeds the backup stepper
    backup_count: int = 0

    # Last known expected total, the variance baseline
    current_count_bottles: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("currentCountBottles", "current_count_bottles", "currentCount"),
    )

    @field_validator('is_sold_by_volume', mode='before')
    @classmethod
    def _null_is_bottle(cls, v):
        return bool(v) if v is not None else False

    @field_validator('backup_count', mode='before')
    @classmethod
    def _null_backup_is_zero(cls, v):
        return v if v is not None else 0

    @property
    def is_keg(self) -> bool:
        return self.is_sold_by_volume

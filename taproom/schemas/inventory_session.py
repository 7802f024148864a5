"""
Inventory Session Schemas.

Session records, per-product draft input, captured counts, offline queue
entries, keg summaries and the variance report.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import Field

from taproom.schemas.base import WireSchema


class SessionStatus(str, Enum):
    """Status of an inventory session."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ============================================================================
# SESSION SCHEMAS
# ============================================================================

class InventorySession(WireSchema):
    """One counting pass over a zone."""
    id: int
    zone_id: int
    status: SessionStatus = SessionStatus.IN_PROGRESS
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.IN_PROGRESS


class StartSessionResult(WireSchema):
    """Outcome of a session start: ``reused`` when the backend handed back an existing session."""
    session: InventorySession
    reused: bool = False


class SessionCountRecord(WireSchema):
    """A count as persisted by the backend, shown read-only for finished sessions."""
    id: Optional[int] = None
    session_id: int
    product_id: int
    counted_bottles: float = 0
    counted_partial_oz: Optional[float] = None  # Millilitres, despite the backend's name
    expected_count: Optional[float] = None
    created_at: Optional[datetime] = None


class CompletedSession(WireSchema):
    session: InventorySession
    counts: List[SessionCountRecord] = []


# ============================================================================
# KEG SCHEMAS
# ============================================================================

class TappedKeg(WireSchema):
    keg_id: int
    tap_number: Optional[int] = None
    remaining_percent: float = 0  # Fraction 0-1 of the keg left, last known


class KegSummary(WireSchema):
    """Tapped and on-deck kegs for one product."""
    tapped: List[TappedKeg] = []
    on_deck_count: int = 0
    total_keg_equivalent: float = 0

    @property
    def tap_numbers(self) -> List[int]:
        return [k.tap_number for k in self.tapped if k.tap_number is not None]


class KegLevel(WireSchema):
    """Live reading from a keg sensor."""
    tap_number: int
    fill_level_percent: float  # 0-100
    keg_size_oz: Optional[float] = None
    remaining_oz: Optional[float] = None
    tapping_date: Optional[datetime] = None


LiveKegLevels = Dict[int, KegLevel]


# ============================================================================
# DRAFT INPUT (per product, while in input mode)
# ============================================================================

class BottleDraft(WireSchema):
    kind: Literal["bottle"] = "bottle"
    partial_percent: float = Field(default=0, ge=0, le=100)
    backup_count: int = Field(default=0, ge=0)
    scale_weight_grams: Optional[float] = None
    is_manual_estimate: bool = True


class KegDraft(WireSchema):
    kind: Literal["keg"] = "keg"
    cooler_stock: int = Field(default=0, ge=0)


CountDraft = Annotated[Union[BottleDraft, KegDraft], Field(discriminator="kind")]


# ============================================================================
# CAPTURED COUNTS
# ============================================================================

class BottleCount(WireSchema):
    """Sealed backup bottles/cans."""
    kind: Literal["bottle"] = "bottle"
    backup: int = Field(ge=0)


class KegCount(WireSchema):
    """Full kegs in the cooler (on deck)."""
    kind: Literal["keg"] = "keg"
    cooler: int = Field(ge=0)


CountQuantity = Annotated[Union[BottleCount, KegCount], Field(discriminator="kind")]


class CountData(WireSchema):
    """A captured measurement, held per product for the life of the session."""
    product_id: int
    quantity: CountQuantity
    counted_partial_ml: Optional[float] = None  # None for kegs
    total_units: float
    is_manual_estimate: bool = True
    scale_weight_grams: Optional[float] = None

    @property
    def is_keg(self) -> bool:
        return isinstance(self.quantity, KegCount)

    @property
    def counted_bottles(self) -> int:
        """The single transport field: backups for bottles, cooler stock for kegs."""
        if isinstance(self.quantity, KegCount):
            return self.quantity.cooler
        return self.quantity.backup


class SaveCountRequest(WireSchema):
    """Body of ``POST /api/inventory/counts``."""
    session_id: int
    product_id: int
    counted_bottles: int
    counted_partial_ml: Optional[float] = Field(default=None, alias="countedPartialOz")
    is_manual_estimate: bool = True
    scale_weight_grams: Optional[float] = None
    is_keg: bool = False


class OfflineCount(WireSchema):
    """Self-contained snapshot of a count captured while offline."""
    session_id: int
    product_id: int
    product_name: str
    counted_bottles: int
    partial_percent: float = 0  # Raw slider value, converted at replay time
    total_units: float
    is_manual_estimate: bool = True
    scale_weight_grams: Optional[float] = None
    timestamp: int  # Epoch milliseconds
    bottle_size_ml: int
    is_keg: bool = False


# ============================================================================
# VARIANCE REPORT
# ============================================================================

class VarianceLine(WireSchema):
    product_id: int
    product_name: str
    is_keg: bool = False
    expected: float
    counted: float
    variance: float
    is_large_variance: bool
    is_manual_estimate: bool = True


class VarianceReport(WireSchema):
    session_id: int
    lines: List[VarianceLine] = []
    large_variance_count: int = 0
    pending_offline_count: int = 0

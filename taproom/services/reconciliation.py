"""
Unit Reconciliation Engine.

Pure calculation layer, zero I/O: converts what the operator enters (slider
percentages, stepper counts, scale readings, keg fill levels) into "total
units on hand" and variance against the expected figure.

Two disjoint unit models, chosen by ``product.is_sold_by_volume``:

    Bottle/can:  total = partial_percent / 100 + backup_count
    Keg:         total = sum(tapped keg fraction) + cooler_stock

Identical inputs always give identical outputs; nothing here is cached, so
callers recompute on every input change.
"""
import math
import time
from typing import Dict, Iterable, List, Mapping, Optional

from taproom.config import settings
from taproom.core.errors import InvalidCountInputError, KegDataNotReadyError
from taproom.schemas.catalog import Product
from taproom.schemas.inventory_session import (
    BottleCount, BottleDraft, CountData, KegCount, KegDraft, KegLevel,
    KegSummary, OfflineCount, SaveCountRequest, TappedKeg, VarianceLine,
    VarianceReport,
)

# Scale fallbacks when a product has no calibration
DEFAULT_EMPTY_WEIGHT_GRAMS = 200.0
FULL_WEIGHT_OFFSET_GRAMS = 200.0

# Fixed, not configurable
LARGE_VARIANCE_THRESHOLD = 2.0

SLIDER_STEP = 5


def bottle_size_for(product: Product) -> int:
    """Bottle size in ml, falling back to the standard 750 ml bottle."""
    return product.bottle_size_ml or settings.DEFAULT_BOTTLE_SIZE_ML


# ============================================================================
# BOTTLE MODEL
# ============================================================================

def validate_partial_percent(partial_percent: float, slider: bool = False) -> float:
    """Reject out-of-range fills; slider values must also sit on the 5% grid."""
    if partial_percent is None or math.isnan(partial_percent):
        raise InvalidCountInputError("Partial fill is required.")
    if partial_percent < 0 or partial_percent > 100:
        raise InvalidCountInputError(
            f"Partial fill must be between 0 and 100, got {partial_percent}.",
            partial_percent=partial_percent,
        )
    if slider and partial_percent % SLIDER_STEP != 0:
        raise InvalidCountInputError(
            f"Partial fill moves in steps of {SLIDER_STEP}, got {partial_percent}.",
            partial_percent=partial_percent,
        )
    return partial_percent


def validate_whole_count(value: int, label: str) -> int:
    if value is None or value < 0 or int(value) != value:
        raise InvalidCountInputError(f"{label} must be a whole number of 0 or more.", value=value)
    return int(value)


def bottle_total_units(partial_percent: float, backup_count: int) -> float:
    """Open bottle fraction plus sealed backups."""
    return partial_percent / 100 + backup_count


def partial_volume_ml(partial_percent: float, bottle_size_ml: Optional[int]) -> float:
    """Volume left in the open bottle. The backend stores volume, not percent."""
    size = bottle_size_ml or settings.DEFAULT_BOTTLE_SIZE_ML
    return (partial_percent / 100) * size


def scale_weight_to_percent(weight_grams: float, product: Product) -> int:
    """
    Convert a gross scale reading into a fill percentage.

    Missing or degenerate calibration falls back to an empty weight of 200 g
    and a full weight of bottle size + 200 g; this never raises.
    """
    bottle_size = bottle_size_for(product)
    empty = product.empty_weight_grams
    full = product.full_weight_grams
    if empty is None or empty < 0:
        empty = DEFAULT_EMPTY_WEIGHT_GRAMS
    if full is None or full <= empty:
        full = bottle_size + FULL_WEIGHT_OFFSET_GRAMS
    if full <= empty:
        empty = DEFAULT_EMPTY_WEIGHT_GRAMS
        full = bottle_size + FULL_WEIGHT_OFFSET_GRAMS

    liquid_weight_range = full - empty
    weight = weight_grams if weight_grams and weight_grams > 0 else 0.0
    current_liquid = max(0.0, weight - empty)
    # Half-up rounding, matching the scale display
    percent_full = math.floor(current_liquid / liquid_weight_range * 100 + 0.5)
    return int(min(100, max(0, percent_full)))


# ============================================================================
# KEG MODEL
# ============================================================================

def tapped_keg_fraction(keg: TappedKeg, live_levels: Optional[Mapping[int, KegLevel]] = None) -> float:
    """Fraction of a tapped keg left; a live sensor reading wins over the stored value."""
    if live_levels and keg.tap_number is not None:
        level = live_levels.get(keg.tap_number)
        if level is not None:
            return level.fill_level_percent / 100
    return keg.remaining_percent


def keg_total_units(
    summary: Optional[KegSummary],
    cooler_stock: int,
    live_levels: Optional[Mapping[int, KegLevel]] = None,
) -> float:
    """Tapped fractions plus full kegs in the cooler; 0 while the summary is loading."""
    if summary is None:
        return 0.0
    tapped_total = sum(tapped_keg_fraction(k, live_levels) for k in summary.tapped)
    return tapped_total + cooler_stock


def is_safe_to_total(product: Product, keg_summary: Optional[KegSummary]) -> bool:
    return not product.is_keg or keg_summary is not None


# ============================================================================
# DRAFTS AND CAPTURED COUNTS
# ============================================================================

def new_draft(product: Product):
    """Fresh input state for a product, seeded from its stored backup count."""
    if product.is_keg:
        return KegDraft(cooler_stock=0)
    return BottleDraft(
        partial_percent=0,
        backup_count=product.backup_count or 0,
        scale_weight_grams=None,
        is_manual_estimate=True,
    )


def with_manual_partial(draft: BottleDraft, partial_percent: float) -> BottleDraft:
    """Slider touched: the value is an estimate and any scale reading is discarded."""
    validate_partial_percent(partial_percent, slider=True)
    return draft.model_copy(update={
        "partial_percent": partial_percent,
        "is_manual_estimate": True,
        "scale_weight_grams": None,
    })


def with_scale_reading(draft: BottleDraft, product: Product, weight_grams: float) -> BottleDraft:
    """Scale captured: the partial is derived from weight, not estimated."""
    if weight_grams is None or weight_grams < 0:
        raise InvalidCountInputError("Scale weight must be 0 g or more.", weight_grams=weight_grams)
    return draft.model_copy(update={
        "partial_percent": scale_weight_to_percent(weight_grams, product),
        "is_manual_estimate": False,
        "scale_weight_grams": weight_grams,
    })


def compute_total_units(
    product: Product,
    draft,
    keg_summary: Optional[KegSummary] = None,
    live_levels: Optional[Mapping[int, KegLevel]] = None,
) -> float:
    """Total units on hand for the current input state."""
    if product.is_keg:
        cooler = draft.cooler_stock if isinstance(draft, KegDraft) else 0
        return keg_total_units(keg_summary, cooler, live_levels)
    if not isinstance(draft, BottleDraft):
        raise InvalidCountInputError(f"Product {product.id} is counted in bottles.")
    return bottle_total_units(draft.partial_percent, draft.backup_count)


def build_count_data(
    product: Product,
    draft,
    keg_summary: Optional[KegSummary] = None,
    live_levels: Optional[Mapping[int, KegLevel]] = None,
) -> CountData:
    """Freeze the current input into a count record."""
    if product.is_keg:
        if keg_summary is None:
            raise KegDataNotReadyError(product.id)
        if not isinstance(draft, KegDraft):
            raise InvalidCountInputError(f"Product {product.id} is counted in kegs.")
        return CountData(
            product_id=product.id,
            quantity=KegCount(cooler=draft.cooler_stock),
            counted_partial_ml=None,
            total_units=keg_total_units(keg_summary, draft.cooler_stock, live_levels),
            is_manual_estimate=True,
            scale_weight_grams=None,
        )

    if not isinstance(draft, BottleDraft):
        raise InvalidCountInputError(f"Product {product.id} is counted in bottles.")
    return CountData(
        product_id=product.id,
        quantity=BottleCount(backup=draft.backup_count),
        counted_partial_ml=partial_volume_ml(draft.partial_percent, bottle_size_for(product)),
        total_units=bottle_total_units(draft.partial_percent, draft.backup_count),
        is_manual_estimate=draft.is_manual_estimate,
        scale_weight_grams=draft.scale_weight_grams,
    )


def save_request(session_id: int, count: CountData) -> SaveCountRequest:
    """Serialise a count onto the backend's single quantity field."""
    return SaveCountRequest(
        session_id=session_id,
        product_id=count.product_id,
        counted_bottles=count.counted_bottles,
        counted_partial_ml=count.counted_partial_ml,
        is_manual_estimate=count.is_manual_estimate,
        scale_weight_grams=count.scale_weight_grams,
        is_keg=count.is_keg,
    )


def to_offline_count(
    session_id: int,
    product: Product,
    draft,
    count: CountData,
    timestamp_ms: Optional[int] = None,
) -> OfflineCount:
    """Snapshot a count with everything needed to replay it without the catalogue."""
    partial_percent = draft.partial_percent if isinstance(draft, BottleDraft) else 0
    return OfflineCount(
        session_id=session_id,
        product_id=product.id,
        product_name=product.name,
        counted_bottles=count.counted_bottles,
        partial_percent=partial_percent,
        total_units=count.total_units,
        is_manual_estimate=count.is_manual_estimate,
        scale_weight_grams=count.scale_weight_grams,
        timestamp=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        bottle_size_ml=bottle_size_for(product),
        is_keg=product.is_keg,
    )


def replay_request(entry: OfflineCount) -> SaveCountRequest:
    """Rebuild the save call from the entry's own bottle size and keg flag."""
    partial_ml = None
    if not entry.is_keg:
        partial_ml = partial_volume_ml(entry.partial_percent, entry.bottle_size_ml)
    return SaveCountRequest(
        session_id=entry.session_id,
        product_id=entry.product_id,
        counted_bottles=entry.counted_bottles,
        counted_partial_ml=partial_ml,
        is_manual_estimate=entry.is_manual_estimate,
        scale_weight_grams=entry.scale_weight_grams,
        is_keg=entry.is_keg,
    )


# ============================================================================
# VARIANCE
# ============================================================================

def compute_variance(counted: float, expected: Optional[float]) -> float:
    return counted - (expected or 0)


def is_large_variance(variance: float) -> bool:
    return abs(variance) > LARGE_VARIANCE_THRESHOLD


def build_variance_report(
    session_id: int,
    counts: Iterable[CountData],
    products: Mapping[int, Product],
    pending_offline_count: int = 0,
) -> VarianceReport:
    """
    Compare every captured count with its product's expected total.

    Counts for products missing from the catalogue are skipped.
    """
    lines: List[VarianceLine] = []
    for count in counts:
        product = products.get(count.product_id)
        if product is None:
            continue
        expected = product.current_count_bottles or 0
        variance = compute_variance(count.total_units, expected)
        lines.append(VarianceLine(
            product_id=product.id,
            product_name=product.name,
            is_keg=product.is_keg,
            expected=expected,
            counted=count.total_units,
            variance=variance,
            is_large_variance=is_large_variance(variance),
            is_manual_estimate=count.is_manual_estimate,
        ))

    return VarianceReport(
        session_id=session_id,
        lines=lines,
        large_variance_count=sum(1 for line in lines if line.is_large_variance),
        pending_offline_count=pending_offline_count,
    )


def index_products(products: Iterable[Product]) -> Dict[int, Product]:
    return {p.id: p for p in products}

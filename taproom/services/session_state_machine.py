"""
Counting Session State Machine

This module is the SINGLE SOURCE OF TRUTH for counting-mode transitions.
The Session Controller changes mode only through ``transition()``.

Each mode carries its own payload (``InputState`` holds the product being
counted, ``ReviewState`` the variance report) so no mode can see another
mode's leftovers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from taproom.core.errors import InvalidModeTransitionError
from taproom.schemas.catalog import Product
from taproom.schemas.inventory_session import (
    BottleDraft, CompletedSession, KegDraft, KegSummary, LiveKegLevels, VarianceReport,
)


# =============================================================================
# MODE DEFINITIONS
# =============================================================================

class CountMode(str, Enum):
    """Counting modes - use these instead of strings."""
    SETUP = "setup"
    LIST = "list"
    SCAN = "scan"
    INPUT = "input"
    REVIEW = "review"
    VIEW_COMPLETED = "view_completed"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_mode -> [list of allowed next modes]
MODE_TRANSITIONS: Dict[CountMode, List[CountMode]] = {
    CountMode.SETUP: [
        CountMode.LIST,             # Start session, quick scan off
        CountMode.SCAN,             # Start session, quick scan on
        CountMode.VIEW_COMPLETED,   # Deep link to a finished session
    ],
    CountMode.LIST: [
        CountMode.SCAN,             # Switch to scanner
        CountMode.INPUT,            # Tap a product / search match
        CountMode.REVIEW,           # Finish session
        CountMode.SETUP,            # Back / cancel session
        CountMode.VIEW_COMPLETED,
    ],
    CountMode.SCAN: [
        CountMode.LIST,             # Switch to list
        CountMode.INPUT,            # Scan decoded
        CountMode.REVIEW,           # Finish session
        CountMode.SETUP,            # Back / cancel session
        CountMode.VIEW_COMPLETED,
    ],
    CountMode.INPUT: [
        CountMode.LIST,             # Save or back, quick scan off
        CountMode.SCAN,             # Save or back, quick scan on
        CountMode.SETUP,            # Cancel session
    ],
    CountMode.REVIEW: [
        CountMode.LIST,             # Back
        CountMode.SETUP,            # Submitted / cancelled
    ],
    CountMode.VIEW_COMPLETED: [
        CountMode.SETUP,            # Start new count for this zone / back
        CountMode.VIEW_COMPLETED,   # Open another finished session
    ],
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (CountMode.SETUP, CountMode.LIST): "Start Count",
    (CountMode.SETUP, CountMode.SCAN): "Start Count",
    (CountMode.SETUP, CountMode.VIEW_COMPLETED): "Open Finished Count",
    (CountMode.LIST, CountMode.SCAN): "Scan",
    (CountMode.LIST, CountMode.INPUT): "Select Item",
    (CountMode.LIST, CountMode.REVIEW): "Finish Session",
    (CountMode.SCAN, CountMode.LIST): "Browse List",
    (CountMode.SCAN, CountMode.INPUT): "Item Scanned",
    (CountMode.SCAN, CountMode.REVIEW): "Finish Session",
    (CountMode.INPUT, CountMode.LIST): "Save & Continue",
    (CountMode.INPUT, CountMode.SCAN): "Save & Scan Next",
    (CountMode.REVIEW, CountMode.LIST): "Back to List",
    (CountMode.REVIEW, CountMode.SETUP): "Submit",
    (CountMode.VIEW_COMPLETED, CountMode.SETUP): "Start New Count",
}


# =============================================================================
# MODE PAYLOADS
# =============================================================================

@dataclass
class SetupState:
    zone_id: Optional[int] = None
    mode: CountMode = field(default=CountMode.SETUP, init=False)


@dataclass
class ListState:
    search_query: str = ""
    mode: CountMode = field(default=CountMode.LIST, init=False)


@dataclass
class ScanState:
    last_code: Optional[str] = None
    mode: CountMode = field(default=CountMode.SCAN, init=False)


@dataclass
class InputState:
    """
    A product being counted.

    ``keg_summary`` is None while loading; ``request_token`` ties async
    results (summary fetch, live level refresh) to this particular
    selection. ``return_mode`` is the list/scan mode the operator came from.
    """
    product: Product
    draft: Union[BottleDraft, KegDraft]
    return_mode: CountMode
    request_token: int = 0
    keg_summary: Optional[KegSummary] = None
    keg_summary_failed: bool = False
    live_levels: LiveKegLevels = field(default_factory=dict)
    mode: CountMode = field(default=CountMode.INPUT, init=False)

    @property
    def keg_loading(self) -> bool:
        return self.product.is_keg and self.keg_summary is None


@dataclass
class ReviewState:
    report: VarianceReport
    mode: CountMode = field(default=CountMode.REVIEW, init=False)


@dataclass
class ViewCompletedState:
    completed: CompletedSession
    mode: CountMode = field(default=CountMode.VIEW_COMPLETED, init=False)


ModeState = Union[SetupState, ListState, ScanState, InputState, ReviewState, ViewCompletedState]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_mode: CountMode, new_mode: CountMode) -> bool:
    """Check if a transition is allowed."""
    return new_mode in MODE_TRANSITIONS.get(current_mode, [])


def get_allowed_transitions(current_mode: CountMode) -> List[CountMode]:
    return MODE_TRANSITIONS.get(current_mode, [])


def get_transition_action(current_mode: CountMode, new_mode: CountMode) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get(
        (current_mode, new_mode),
        f"{current_mode.value} -> {new_mode.value}"
    )


def validate_transition(current_mode: CountMode, new_mode: CountMode) -> None:
    """
    Validate a mode transition. Raises InvalidModeTransitionError if invalid.

    Staying in the same browsing mode is always allowed.
    """
    if current_mode == new_mode and current_mode in (CountMode.LIST, CountMode.SCAN, CountMode.SETUP):
        return

    if not can_transition(current_mode, new_mode):
        allowed = [m.value for m in get_allowed_transitions(current_mode)]
        raise InvalidModeTransitionError(current_mode.value, new_mode.value, allowed)


def transition(current: ModeState, new_state: ModeState) -> ModeState:
    """Validate and return the new mode payload."""
    validate_transition(current.mode, new_state.mode)
    return new_state


def browse_mode(quick_scan: bool) -> CountMode:
    """Where the quick recount loop returns to."""
    return CountMode.SCAN if quick_scan else CountMode.LIST


def browse_state(mode: CountMode) -> ModeState:
    if mode == CountMode.SCAN:
        return ScanState()
    return ListState()

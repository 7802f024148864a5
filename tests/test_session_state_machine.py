"""Mode transition table and per-mode payloads."""
import pytest

from taproom.core.errors import InvalidModeTransitionError
from taproom.schemas.catalog import Product
from taproom.schemas.inventory_session import BottleDraft, KegDraft, KegSummary, VarianceReport
from taproom.services.session_state_machine import (
    CountMode, InputState, ListState, ReviewState, ScanState, SetupState,
    browse_mode, browse_state, can_transition, get_transition_action,
    transition, validate_transition,
)


def test_setup_enters_list_or_scan():
    assert can_transition(CountMode.SETUP, CountMode.LIST)
    assert can_transition(CountMode.SETUP, CountMode.SCAN)
    assert not can_transition(CountMode.SETUP, CountMode.INPUT)
    assert not can_transition(CountMode.SETUP, CountMode.REVIEW)


def test_input_only_returns_to_browsing_or_setup():
    assert can_transition(CountMode.INPUT, CountMode.LIST)
    assert can_transition(CountMode.INPUT, CountMode.SCAN)
    assert not can_transition(CountMode.INPUT, CountMode.REVIEW)


def test_review_goes_back_to_list_not_scan():
    assert can_transition(CountMode.REVIEW, CountMode.LIST)
    assert not can_transition(CountMode.REVIEW, CountMode.SCAN)


def test_invalid_transition_lists_allowed_modes():
    with pytest.raises(InvalidModeTransitionError) as exc_info:
        validate_transition(CountMode.SETUP, CountMode.REVIEW)
    assert "list" in exc_info.value.message
    assert exc_info.value.status_code == 409


def test_staying_in_a_browsing_mode_is_allowed():
    validate_transition(CountMode.LIST, CountMode.LIST)
    validate_transition(CountMode.SCAN, CountMode.SCAN)
    with pytest.raises(InvalidModeTransitionError):
        validate_transition(CountMode.REVIEW, CountMode.REVIEW)


def test_transition_returns_new_payload():
    new_state = transition(ListState(), ReviewState(report=VarianceReport(session_id=1)))
    assert new_state.mode == CountMode.REVIEW


def test_quick_scan_decides_browse_mode():
    assert browse_mode(True) == CountMode.SCAN
    assert browse_mode(False) == CountMode.LIST
    assert isinstance(browse_state(CountMode.SCAN), ScanState)
    assert isinstance(browse_state(CountMode.LIST), ListState)


def test_keg_input_is_loading_until_summary_arrives():
    keg = Product(id=10, name="Hazy IPA", is_sold_by_volume=True)
    state = InputState(product=keg, draft=KegDraft(), return_mode=CountMode.SCAN)
    assert state.keg_loading
    state.keg_summary = KegSummary()
    assert not state.keg_loading


def test_bottle_input_never_loads():
    wine = Product(id=1, name="House Cabernet")
    state = InputState(product=wine, draft=BottleDraft(), return_mode=CountMode.LIST)
    assert not state.keg_loading
    assert state.mode == CountMode.INPUT


def test_helpers():
    assert get_transition_action(CountMode.INPUT, CountMode.SCAN) == "Save & Scan Next"
    assert SetupState(zone_id=3).mode == CountMode.SETUP

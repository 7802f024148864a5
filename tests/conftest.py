"""
Shared fixtures for the counter tests.

The inventory backend and the keg sensor bridge are replaced by in-memory
fakes; the local store is a fresh SQLite file per test.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from taproom.core.errors import CollaboratorUnavailableError, InventoryApiError
from taproom.database import build_engine, build_session_factory, init_db
from taproom.schemas.catalog import Product, Zone
from taproom.schemas.inventory_session import (
    CompletedSession, InventorySession, KegLevel, KegSummary, SaveCountRequest,
    SessionCountRecord, SessionStatus, StartSessionResult, TappedKeg,
)
from taproom.services.notification_service import NotificationService
from taproom.services.offline_sync_service import OfflineSyncService
from taproom.services.session_controller import SessionController


# ─── Catalogue ────────────────────────────────────────────────────────────────

ZONES = [
    Zone(id=1, name="Main Bar"),
    Zone(id=2, name="Walk-in Cooler", description="Back of house"),
]

PRODUCTS = [
    Product(
        id=1, name="House Cabernet", upc="0001", bottle_size_ml=750,
        empty_weight_grams=500, full_weight_grams=1250, backup_count=2,
        current_count_bottles=3,
    ),
    Product(id=2, name="Craft Lager Can", upc="0002", bottle_size_ml=355, current_count_bottles=24),
    Product(id=3, name="Well Vodka", upc="0003", bottle_size_ml=750, current_count_bottles=5),
    Product(id=10, name="Hazy IPA", upc="0010", is_sold_by_volume=True, current_count_bottles=2),
    Product(id=11, name="Pilsner", upc="0011", is_sold_by_volume=True, current_count_bottles=1),
]


# ─── Fakes ────────────────────────────────────────────────────────────────────

class FakeInventoryApi:
    """In-memory stand-in for InventoryApiClient."""

    def __init__(self):
        self.zones: List[Zone] = list(ZONES)
        self.products: List[Product] = list(PRODUCTS)
        self.sessions: Dict[int, InventorySession] = {}
        self.active_session: Optional[InventorySession] = None
        self.saved: List[SaveCountRequest] = []
        self.keg_summaries: Dict[int, KegSummary] = {
            10: KegSummary(
                tapped=[
                    TappedKeg(keg_id=100, tap_number=1, remaining_percent=0.5),
                    TappedKeg(keg_id=101, tap_number=2, remaining_percent=0.25),
                ],
                on_deck_count=2,
                total_keg_equivalent=2.75,
            ),
            11: KegSummary(
                tapped=[TappedKeg(keg_id=110, tap_number=12, remaining_percent=0.8)],
                on_deck_count=0,
                total_keg_equivalent=0.8,
            ),
        }
        # product_id -> Event gating the keg summary response
        self.keg_gates: Dict[int, asyncio.Event] = {}
        self.keg_summary_error: Optional[Exception] = None
        self.codes: Dict[str, Product] = {}
        self.reachable = True
        self.save_errors: List[Exception] = []
        self.lookups: List[str] = []
        # code -> Event gating the barcode lookup response
        self.lookup_gates: Dict[str, asyncio.Event] = {}
        self._next_session_id = 100

    def _check(self):
        if not self.reachable:
            raise CollaboratorUnavailableError("Inventory backend unreachable: connection refused")

    async def start_session(self, zone_id: int) -> StartSessionResult:
        self._check()
        if self.active_session is not None:
            return StartSessionResult(session=self.active_session, reused=True)
        self._next_session_id += 1
        session = InventorySession(
            id=self._next_session_id,
            zone_id=zone_id,
            status=SessionStatus.IN_PROGRESS,
            started_at=datetime.now(timezone.utc),
        )
        self.sessions[session.id] = session
        self.active_session = session
        return StartSessionResult(session=session, reused=False)

    async def get_active_session(self) -> Optional[InventorySession]:
        self._check()
        return self.active_session

    async def _set_status(self, session_id: int, status: SessionStatus) -> InventorySession:
        self._check()
        session = self.sessions[session_id].model_copy(update={
            "status": status,
            "completed_at": datetime.now(timezone.utc),
        })
        self.sessions[session_id] = session
        if self.active_session is not None and self.active_session.id == session_id:
            self.active_session = None
        return session

    async def finish_session(self, session_id: int) -> InventorySession:
        return await self._set_status(session_id, SessionStatus.COMPLETED)

    async def cancel_session(self, session_id: int) -> InventorySession:
        return await self._set_status(session_id, SessionStatus.CANCELLED)

    async def get_session_counts(self, session_id: int) -> CompletedSession:
        self._check()
        session = self.sessions.get(session_id)
        if session is None:
            raise InventoryApiError(404, "Session not found", {"error": "Session not found"})
        counts = [
            SessionCountRecord(
                id=i + 1,
                session_id=session_id,
                product_id=s.product_id,
                counted_bottles=s.counted_bottles,
                counted_partial_oz=s.counted_partial_ml,
            )
            for i, s in enumerate(self.saved) if s.session_id == session_id
        ]
        return CompletedSession(session=session, counts=counts)

    async def save_count(self, request: SaveCountRequest) -> dict:
        self._check()
        if self.save_errors:
            raise self.save_errors.pop(0)
        self.saved.append(request)
        return {"id": len(self.saved)}

    async def fetch_keg_summary(self, product_id: int) -> KegSummary:
        self._check()
        gate = self.keg_gates.get(product_id)
        if gate is not None:
            await gate.wait()
        if self.keg_summary_error is not None:
            raise self.keg_summary_error
        return self.keg_summaries.get(product_id, KegSummary())

    async def fetch_zones(self) -> List[Zone]:
        self._check()
        return list(self.zones)

    async def fetch_products(self) -> List[Product]:
        self._check()
        return list(self.products)

    async def lookup_product_by_code(self, code: str) -> Optional[Product]:
        self._check()
        self.lookups.append(code)
        gate = self.lookup_gates.get(code)
        if gate is not None:
            await gate.wait()
        return self.codes.get(code)

    async def ping(self) -> bool:
        return self.reachable


class FakeKegLevelService:
    def __init__(self, levels: Optional[Dict[int, float]] = None):
        self.is_configured = True
        self.levels = levels or {}
        self.calls: List[List[int]] = []
        self.error: Optional[Exception] = None
        # Readings still inside the cache TTL, served when the bridge fails
        self.cached: Dict[int, float] = {}

    async def fetch_live_keg_levels(self, tap_numbers):
        taps = list(tap_numbers)
        self.calls.append(taps)
        if self.error is not None:
            raise self.error
        return {
            t: KegLevel(tap_number=t, fill_level_percent=self.levels[t])
            for t in taps if t in self.levels
        }

    async def cached_keg_levels(self, tap_numbers):
        return {
            t: KegLevel(tap_number=t, fill_level_percent=self.cached[t])
            for t in tap_numbers if t in self.cached
        }


class FakePoller:
    """Records start/stop instead of scheduling."""

    def __init__(self):
        self.job = None
        self.started = 0
        self.stopped = 0

    @property
    def is_polling(self) -> bool:
        return self.job is not None

    def start(self, refresh, *args):
        self.job = (refresh, args)
        self.started += 1

    def stop(self):
        if self.job is not None:
            self.stopped += 1
        self.job = None

    async def tick(self):
        refresh, args = self.job
        await refresh(*args)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def api():
    return FakeInventoryApi()


@pytest.fixture
def notifier():
    return NotificationService()


@pytest.fixture
def keg_levels():
    return FakeKegLevelService()


@pytest.fixture
def poller():
    return FakePoller()


@pytest.fixture
def sync(api, session_factory, notifier):
    return OfflineSyncService(api, session_factory=session_factory, notifier=notifier, max_attempts=3)


@pytest_asyncio.fixture
async def controller(api, sync, notifier, keg_levels, poller):
    controller = SessionController(
        api,
        sync,
        notifier=notifier,
        keg_levels=keg_levels,
        poller=poller,
        duplicate_scan_window=3.0,
    )
    await controller.load_catalog()
    yield controller
    await controller.close()


@pytest.fixture
def notified(notifier):
    """Types of the notifications raised so far."""
    def _types():
        return [n.type for n in notifier.pending()]
    return _types

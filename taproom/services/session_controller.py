"""
Counting Session Controller

Drives one operator's count from zone selection through per-product capture
to the variance review and submit.

Flow:
    setup -> list|scan -> input -> list|scan -> ... -> review -> setup
    setup -> view_completed -> setup

Quick recount loop: after a save the operator lands straight back on the
scanner (quick scan on) or the list (off), ready for the next product.

Every failure leaves the previous mode in place and is reported as an
operator notification as well as raised to the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import ValidationError

from taproom.config import settings
from taproom.core.errors import (
    CollaboratorUnavailableError, InvalidCountInputError, InvalidModeTransitionError,
    KegDataNotReadyError, NoActiveSessionError, OfflineSessionStartError,
    ProductNotFoundError, SessionConflictError, TaproomError, ZoneNotFoundError,
)
from taproom.schemas.catalog import Product, Zone
from taproom.schemas.counting import CounterSnapshot, NotificationResponse
from taproom.schemas.inventory_session import (
    BottleDraft, CompletedSession, CountData, InventorySession, KegDraft,
    VarianceReport,
)
from taproom.services import reconciliation
from taproom.services.inventory_api_client import InventoryApiClient
from taproom.services.keg_level_service import KegLevelService
from taproom.services.notification_service import NotificationService, NotificationType
from taproom.services.offline_sync_service import OfflineSyncService
from taproom.services.session_state_machine import (
    CountMode, InputState, ListState, ModeState, ReviewState, ScanState,
    SetupState, ViewCompletedState, browse_mode, browse_state,
    get_allowed_transitions, get_transition_action, transition, validate_transition,
)

logger = logging.getLogger(__name__)

QUICK_SCAN_PREFERENCE = "quick_scan"


@dataclass
class SaveOutcome:
    count: CountData
    queued_offline: bool = False


class SessionController:
    """
    One per device. Owns the mode state, the session's captured counts and
    the async work tied to the product on screen (keg summary fetch, live
    level polling, scan de-duplication timer).
    """

    def __init__(
        self,
        api: InventoryApiClient,
        sync: OfflineSyncService,
        notifier: Optional[NotificationService] = None,
        keg_levels: Optional[KegLevelService] = None,
        poller=None,
        duplicate_scan_window: Optional[float] = None,
    ):
        self.api = api
        self.sync = sync
        self.notifier = notifier or sync.notifier
        self.keg_levels = keg_levels
        self.poller = poller
        self.duplicate_scan_window = (
            duplicate_scan_window
            if duplicate_scan_window is not None
            else settings.SCAN_DUPLICATE_WINDOW_SECONDS
        )

        self.state: ModeState = SetupState()
        self.session: Optional[InventorySession] = None
        self.zones: List[Zone] = []
        self.products: List[Product] = []
        self.counts: Dict[int, CountData] = {}
        self.quick_scan: bool = False

        self._request_token = 0
        self._keg_task: Optional[asyncio.Task] = None
        self._last_scan_code: Optional[str] = None
        self._scan_reset_handle: Optional[asyncio.TimerHandle] = None

    # ==================== HELPERS ====================

    @property
    def mode(self) -> CountMode:
        return self.state.mode

    @property
    def products_by_id(self) -> Dict[int, Product]:
        return reconciliation.index_products(self.products)

    def _set_state(self, new_state: ModeState) -> None:
        previous = self.state.mode
        self.state = transition(self.state, new_state)
        if previous != new_state.mode:
            action = get_transition_action(previous, new_state.mode)
            logger.debug(f"{action}: {previous.value} -> {new_state.mode.value}")

    def _refuse(
        self,
        error: TaproomError,
        notification_type: NotificationType = NotificationType.ERROR,
    ) -> TaproomError:
        """Report a refused action to the operator; the caller raises it."""
        self.notifier.error(notification_type, error.message)
        return error

    def _require_mode(self, *modes: CountMode, target: Optional[CountMode] = None) -> None:
        if self.mode not in modes:
            target_value = target.value if target else "/".join(m.value for m in modes)
            allowed = [m.value for m in get_allowed_transitions(self.mode)]
            raise InvalidModeTransitionError(self.mode.value, target_value, allowed)

    def _require_session(self) -> InventorySession:
        if self.session is None:
            raise NoActiveSessionError()
        return self.session

    def _require_input(self) -> InputState:
        if not isinstance(self.state, InputState):
            raise InvalidModeTransitionError(self.mode.value, CountMode.INPUT.value)
        return self.state

    def _require_bottle_draft(self) -> InputState:
        state = self._require_input()
        if not isinstance(state.draft, BottleDraft):
            raise InvalidCountInputError(f"{state.product.name} is counted in kegs, not bottles.")
        return state

    def _zone_name(self, zone_id: Optional[int]) -> str:
        for zone in self.zones:
            if zone.id == zone_id:
                return zone.name
        return "zone"

    def _is_current(self, token: int) -> bool:
        return isinstance(self.state, InputState) and self.state.request_token == token

    # ==================== CATALOGUE & PREFERENCES ====================

    async def initialize(self) -> None:
        """Load preferences and the catalogue, then pick up any session in progress."""
        await self.load_preferences()
        await self.load_catalog()
        if self.sync.is_online:
            try:
                await self.resume_active_session()
            except CollaboratorUnavailableError as e:
                logger.warning(f"Could not check for an active session: {e.message}")

    async def load_preferences(self) -> None:
        self.quick_scan = bool(await self.sync.get_preference(QUICK_SCAN_PREFERENCE, False))

    async def load_catalog(self) -> bool:
        """
        Load zones and products. Online: fetch and snapshot; offline or on a
        failed fetch: the last snapshot. Returns True when served from cache.
        """
        if self.sync.is_online:
            try:
                zones = await self.api.fetch_zones()
                products = await self.api.fetch_products()
            except CollaboratorUnavailableError as e:
                logger.warning(f"Catalogue fetch failed, using local snapshot: {e.message}")
                await self.sync.set_connectivity(False)
            else:
                self.zones, self.products = zones, products
                await self.sync.cache_catalog(zones, products)
                return False

        self.zones = await self.sync.cached_zones()
        self.products = await self.sync.cached_products()
        logger.info(f"Loaded catalogue snapshot: {len(self.zones)} zones, {len(self.products)} products")
        return True

    async def set_quick_scan(self, enabled: bool) -> None:
        self.quick_scan = enabled
        await self.sync.set_preference(QUICK_SCAN_PREFERENCE, enabled)

    # ==================== SESSION LIFECYCLE ====================

    def select_zone(self, zone_id: int) -> None:
        self._require_mode(CountMode.SETUP)
        if self.zones and zone_id not in {z.id for z in self.zones}:
            raise ZoneNotFoundError(zone_id)
        self.state = SetupState(zone_id=zone_id)

    def _enter_session(self, session: InventorySession) -> None:
        if self.session is None or self.session.id != session.id:
            self.counts = {}
        self.session = session
        self._set_state(browse_state(browse_mode(self.quick_scan)))
        self.notifier.notify(
            NotificationType.SESSION_ACTIVE,
            f"Counting in {self._zone_name(session.zone_id)}",
        )

    async def start_session(self, zone_id: Optional[int] = None) -> InventorySession:
        """
        Start (or adopt) the session for a zone.

        The backend's in-progress session is adopted when it belongs to the
        same zone. One for another zone is never cancelled from here.
        """
        self._require_mode(CountMode.SETUP, target=browse_mode(self.quick_scan))
        if zone_id is None:
            zone_id = self.state.zone_id
        if zone_id is None:
            raise InvalidCountInputError("Select a zone before starting a count.")
        if not self.sync.is_online:
            raise self._refuse(OfflineSessionStartError())

        try:
            result = await self.api.start_session(zone_id)
        except CollaboratorUnavailableError as e:
            await self.sync.set_connectivity(False)
            raise self._refuse(OfflineSessionStartError()) from e

        session = result.session
        if result.reused and session.zone_id != zone_id:
            logger.info(
                f"Refused start for zone {zone_id}: session {session.id} active in zone {session.zone_id}"
            )
            raise self._refuse(
                SessionConflictError(session.id, session.zone_id, zone_id),
                NotificationType.SESSION_CONFLICT,
            )

        if result.reused:
            logger.info(f"Adopting in-progress session {session.id} for zone {zone_id}")
        self.state = SetupState(zone_id=zone_id)
        self._enter_session(session)
        return session

    async def resume_active_session(self) -> Optional[InventorySession]:
        """Adopt the backend's in-progress session, if any."""
        self._require_mode(CountMode.SETUP)
        session = await self.api.get_active_session()
        if session is None:
            return None
        logger.info(f"Resuming session {session.id} (zone {session.zone_id})")
        self.state = SetupState(zone_id=session.zone_id)
        self._enter_session(session)
        return session

    async def finish_session(self) -> VarianceReport:
        """Open the review with a variance report built from the current counts."""
        session = self._require_session()
        self._require_mode(CountMode.LIST, CountMode.SCAN, target=CountMode.REVIEW)
        report = reconciliation.build_variance_report(
            session.id,
            self.counts.values(),
            self.products_by_id,
            pending_offline_count=await self.sync.pending_count(),
        )
        self._set_state(ReviewState(report=report))
        return report

    async def submit_session(self) -> InventorySession:
        """
        Flush the offline queue, then mark the session completed and leave
        the session flow. Stays in review if either step fails.
        """
        session = self._require_session()
        self._require_mode(CountMode.REVIEW, target=CountMode.SETUP)
        if not self.sync.is_online:
            raise self._refuse(CollaboratorUnavailableError("Submitting a count needs a connection."))

        if await self.sync.pending_count():
            await self.sync.sync_offline_counts()

        # FAILED entries count too: they are only dropped once the backend accepts them
        unsynced = await self.sync.outstanding_for_session(session.id)
        if unsynced:
            raise self._refuse(
                CollaboratorUnavailableError(
                    f"{unsynced} offline count(s) for this session still need to sync. Try again.",
                    session_id=session.id,
                    unsynced=unsynced,
                ),
                NotificationType.SYNC_PARTIAL,
            )

        try:
            completed = await self.api.finish_session(session.id)
        except TaproomError as e:
            raise self._refuse(e, NotificationType.ERROR)

        logger.info(f"Session {session.id} submitted with {len(self.counts)} count(s)")
        self.notifier.notify(
            NotificationType.SESSION_SUBMITTED,
            f"{len(self.counts)} item(s) counted in {self._zone_name(session.zone_id)}.",
        )
        self._end_session()
        return completed

    async def cancel_session(self) -> InventorySession:
        session = self._require_session()
        self._require_mode(
            CountMode.LIST, CountMode.SCAN, CountMode.INPUT, CountMode.REVIEW,
            target=CountMode.SETUP,
        )
        try:
            cancelled = await self.api.cancel_session(session.id)
        except TaproomError as e:
            raise self._refuse(e, NotificationType.ERROR)

        logger.info(f"Session {session.id} cancelled")
        self.notifier.notify(NotificationType.SESSION_CANCELLED, "Count discarded.")
        self._end_session(zone_id=session.zone_id)
        return cancelled

    def _end_session(self, zone_id: Optional[int] = None) -> None:
        self._leave_input()
        self.session = None
        self.counts = {}
        self._set_state(SetupState(zone_id=zone_id))

    # ==================== BROWSING ====================

    def show_list(self) -> None:
        self._require_session()
        self._require_mode(CountMode.LIST, CountMode.SCAN, target=CountMode.LIST)
        self._request_token += 1
        self._set_state(ListState())

    def show_scanner(self) -> None:
        self._require_session()
        self._require_mode(CountMode.LIST, CountMode.SCAN, target=CountMode.SCAN)
        self._request_token += 1
        self._set_state(ScanState())

    def search_products(self, query: str) -> List[Product]:
        """Case-insensitive match on name or UPC over the loaded catalogue."""
        needle = (query or "").strip().lower()
        if isinstance(self.state, ListState):
            self.state.search_query = query or ""
        if not needle:
            return list(self.products)
        return [
            p for p in self.products
            if needle in p.name.lower() or (p.upc and needle in p.upc.lower())
        ]

    async def select_product(self, product_id: int) -> InputState:
        self._require_session()
        self._require_mode(CountMode.LIST, CountMode.SCAN, target=CountMode.INPUT)
        product = self.products_by_id.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return self._enter_input(product)

    # ==================== SCANNING ====================

    def _clear_last_scan(self) -> None:
        self._last_scan_code = None
        self._scan_reset_handle = None

    def _cancel_scan_timer(self) -> None:
        if self._scan_reset_handle is not None:
            self._scan_reset_handle.cancel()
            self._scan_reset_handle = None

    def _is_duplicate_scan(self, code: str) -> bool:
        """The same code again inside the window is the scanner re-reading one label."""
        if code == self._last_scan_code:
            return True
        self._last_scan_code = code
        self._cancel_scan_timer()
        loop = asyncio.get_running_loop()
        self._scan_reset_handle = loop.call_later(self.duplicate_scan_window, self._clear_last_scan)
        return False

    async def _resolve_code(self, code: str) -> Optional[Product]:
        product = None
        if self.sync.is_online:
            try:
                product = await self.api.lookup_product_by_code(code)
            except CollaboratorUnavailableError as e:
                logger.warning(f"Barcode lookup unavailable, using local catalogue: {e.message}")

        if product is None:
            product = next((p for p in self.products if p.upc == code), None)
        if product is None:
            product = await self.sync.find_cached_product_by_upc(code)
        if product is None:
            return None
        # Prefer the catalogue copy, it carries counts and calibration
        return self.products_by_id.get(product.id, product)

    async def handle_scan(self, code: str) -> Optional[InputState]:
        """
        Resolve a decoded barcode and open the product for counting.

        Duplicate reads are ignored. Unknown codes leave the scanner open.
        """
        self._require_session()
        self._require_mode(CountMode.SCAN, target=CountMode.INPUT)
        code = (code or "").strip()
        if not code:
            raise InvalidCountInputError("Scanned code is empty.")

        if self._is_duplicate_scan(code):
            logger.debug(f"Ignoring duplicate scan {code}")
            return None

        self.state.last_code = code
        self._request_token += 1
        token = self._request_token
        product = await self._resolve_code(code)

        if token != self._request_token or self.mode != CountMode.SCAN:
            logger.debug(f"Dropping stale lookup for {code}")
            return None
        if product is None:
            self.notifier.error(
                NotificationType.PRODUCT_NOT_FOUND,
                f"No product matches barcode {code}.",
            )
            return None
        return self._enter_input(product)

    # ==================== INPUT ====================

    def _enter_input(self, product: Product) -> InputState:
        self._leave_input()
        self._request_token += 1
        state = InputState(
            product=product,
            draft=reconciliation.new_draft(product),
            return_mode=self.mode,
            request_token=self._request_token,
        )
        self._set_state(state)
        if product.is_keg:
            self._keg_task = asyncio.create_task(self._load_keg_summary(product, state.request_token))
        return state

    def _leave_input(self) -> None:
        """Tear down everything bound to the product on screen."""
        if self._keg_task is not None and not self._keg_task.done():
            self._keg_task.cancel()
        self._keg_task = None
        if self.poller is not None:
            self.poller.stop()
        if isinstance(self.state, InputState):
            self._request_token += 1

    async def _load_keg_summary(self, product: Product, token: int) -> None:
        try:
            summary = await self.api.fetch_keg_summary(product.id)
        except (TaproomError, ValidationError) as e:
            if not self._is_current(token):
                return
            logger.warning(f"Keg summary for product {product.id} failed: {e}")
            self.state.keg_summary_failed = True
            self.notifier.error(
                NotificationType.KEG_DATA_FAILED,
                f"Could not load kegs for {product.name}. Saving stays disabled.",
            )
            return

        if not self._is_current(token):
            logger.debug(f"Discarding stale keg summary for product {product.id}")
            return

        self.state.keg_summary = summary
        self.state.keg_summary_failed = False

        if self.keg_levels is not None and self.keg_levels.is_configured and summary.tap_numbers:
            await self._refresh_live_levels(token)
            if self.poller is not None and self._is_current(token):
                self.poller.start(self._refresh_live_levels, token)

    async def _refresh_live_levels(self, token: int) -> None:
        if not self._is_current(token):
            if self.poller is not None:
                self.poller.stop()
            return
        taps = self.state.keg_summary.tap_numbers if self.state.keg_summary else []
        try:
            levels = await self.keg_levels.fetch_live_keg_levels(taps)
        except TaproomError as e:
            levels = await self.keg_levels.cached_keg_levels(taps)
            logger.warning(
                f"Live keg levels unavailable, {len(levels)} cached reading(s) used: {e.message}"
            )
        if self._is_current(token):
            self.state.live_levels.update(levels)

    async def wait_for_keg_data(self) -> None:
        """Wait for the in-flight keg summary fetch, if any."""
        if self._keg_task is not None:
            await asyncio.gather(self._keg_task, return_exceptions=True)

    async def reload_keg_summary(self) -> None:
        """Retry a failed keg summary fetch for the product on screen."""
        state = self._require_input()
        if not state.product.is_keg:
            raise InvalidCountInputError(f"{state.product.name} is not a keg product.")
        self._leave_input()
        self._request_token += 1
        state.request_token = self._request_token
        state.keg_summary = None
        state.keg_summary_failed = False
        state.live_levels = {}
        self._keg_task = asyncio.create_task(self._load_keg_summary(state.product, state.request_token))

    def set_partial_percent(self, partial_percent: float) -> BottleDraft:
        state = self._require_bottle_draft()
        state.draft = reconciliation.with_manual_partial(state.draft, partial_percent)
        return state.draft

    def apply_scale_weight(self, weight_grams: float) -> BottleDraft:
        state = self._require_bottle_draft()
        state.draft = reconciliation.with_scale_reading(state.draft, state.product, weight_grams)
        return state.draft

    def set_backup_count(self, value: int) -> BottleDraft:
        state = self._require_bottle_draft()
        value = reconciliation.validate_whole_count(value, "Backup count")
        state.draft = state.draft.model_copy(update={"backup_count": value})
        return state.draft

    def set_cooler_stock(self, value: int) -> KegDraft:
        state = self._require_input()
        if not isinstance(state.draft, KegDraft):
            raise InvalidCountInputError(f"{state.product.name} is counted in bottles, not kegs.")
        value = reconciliation.validate_whole_count(value, "Cooler stock")
        state.draft = state.draft.model_copy(update={"cooler_stock": value})
        return state.draft

    def current_total_units(self) -> float:
        state = self._require_input()
        return reconciliation.compute_total_units(
            state.product, state.draft, state.keg_summary, state.live_levels,
        )

    def can_save(self) -> bool:
        if not isinstance(self.state, InputState):
            return False
        return reconciliation.is_safe_to_total(self.state.product, self.state.keg_summary)

    async def save_count(self) -> SaveOutcome:
        """
        Capture the product on screen and return to the scanner or list.

        Offline, or when the online save fails, the count goes to the local
        queue instead.
        """
        session = self._require_session()
        state = self._require_input()
        product = state.product

        if not self.can_save():
            raise self._refuse(KegDataNotReadyError(product.id), NotificationType.KEG_DATA_LOADING)
        count = reconciliation.build_count_data(
            product, state.draft, state.keg_summary, state.live_levels,
        )

        summary = f"{product.name}: {count.total_units:.1f} units"
        queued = not self.sync.is_online
        if not queued:
            try:
                await self.api.save_count(reconciliation.save_request(session.id, count))
            except TaproomError as e:
                logger.error(f"Save failed for product {product.id}, queueing offline: {e.message}")
                self.notifier.error(
                    NotificationType.SAVE_FAILED,
                    f"{product.name} was saved on this device and will sync later.",
                )
                if isinstance(e, CollaboratorUnavailableError):
                    await self.sync.set_connectivity(False)
                queued = True
            else:
                self.notifier.notify(NotificationType.COUNT_SAVED, summary)
        else:
            self.notifier.notify(NotificationType.COUNT_SAVED_OFFLINE, summary)

        if queued:
            await self.sync.enqueue(
                reconciliation.to_offline_count(session.id, product, state.draft, count)
            )

        self.counts[product.id] = count
        self._leave_input()
        self._set_state(browse_state(browse_mode(self.quick_scan)))
        return SaveOutcome(count=count, queued_offline=queued)

    # ==================== NAVIGATION ====================

    def back(self) -> ModeState:
        """Mode-aware back navigation."""
        if isinstance(self.state, InputState):
            return_mode = self.state.return_mode
            self._leave_input()
            self._set_state(browse_state(return_mode))
        elif self.mode in (CountMode.LIST, CountMode.SCAN):
            zone_id = self.session.zone_id if self.session else None
            self._set_state(SetupState(zone_id=zone_id))
        elif self.mode == CountMode.REVIEW:
            self._set_state(ListState())
        elif self.mode == CountMode.VIEW_COMPLETED:
            self._set_state(SetupState())
        return self.state

    # ==================== FINISHED SESSIONS ====================

    async def open_completed_session(self, session_id: int) -> CompletedSession:
        """Read-only view of a finished session's persisted counts."""
        validate_transition(self.mode, CountMode.VIEW_COMPLETED)
        completed = await self.api.get_session_counts(session_id)
        self._set_state(ViewCompletedState(completed=completed))
        return completed

    def start_new_count_for_zone(self) -> SetupState:
        if not isinstance(self.state, ViewCompletedState):
            raise InvalidModeTransitionError(self.mode.value, CountMode.SETUP.value)
        zone_id = self.state.completed.session.zone_id
        self._set_state(SetupState(zone_id=zone_id))
        return self.state

    # ==================== SNAPSHOT / LIFECYCLE ====================

    async def snapshot(self, drain_notifications: bool = True) -> CounterSnapshot:
        state = self.state
        data = {
            "mode": state.mode.value,
            "allowed_modes": [m.value for m in get_allowed_transitions(state.mode)],
            "quick_scan": self.quick_scan,
            "is_online": self.sync.is_online,
            "pending_offline_count": await self.sync.pending_count(),
            "session": self.session,
            "zone_id": self.session.zone_id if self.session else None,
            "counted_product_ids": sorted(self.counts),
        }

        if isinstance(state, SetupState):
            data["zone_id"] = state.zone_id
        elif isinstance(state, ListState):
            data["search_query"] = state.search_query
        elif isinstance(state, ScanState):
            data["last_scanned_code"] = state.last_code
        elif isinstance(state, InputState):
            data.update(
                product=state.product,
                draft=state.draft,
                keg_summary=state.keg_summary,
                keg_loading=state.keg_loading,
                keg_summary_failed=state.keg_summary_failed,
                live_levels=list(state.live_levels.values()),
                total_units=self.current_total_units(),
                can_save=self.can_save(),
            )
        elif isinstance(state, ReviewState):
            data["report"] = state.report
        elif isinstance(state, ViewCompletedState):
            data["completed"] = state.completed
            data["zone_id"] = state.completed.session.zone_id

        notifications = self.notifier.drain() if drain_notifications else self.notifier.pending()
        data["notifications"] = [
            NotificationResponse(
                id=n.id,
                type=n.type.value,
                title=n.title,
                description=n.description,
                variant=n.variant.value,
                created_at=n.created_at,
            )
            for n in notifications
        ]
        return CounterSnapshot(**data)

    async def close(self) -> None:
        """Cancel in-flight fetches, polling and timers."""
        self._cancel_scan_timer()
        self._last_scan_code = None
        task = self._keg_task
        self._leave_input()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

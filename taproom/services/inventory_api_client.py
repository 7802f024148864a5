"""
Inventory Backend Client

HTTP client for the remote inventory backend that owns sessions, counts,
the product catalogue and keg records. The counter only reads reference
data and writes counts/session status through here.

API surface:
- POST  /api/inventory/sessions          start a session (400 + session when one exists)
- GET   /api/inventory/sessions/active   the caller's in-progress session or null
- GET   /api/inventory/sessions/{id}     session with its counts
- PATCH /api/inventory/sessions/{id}     complete / cancel
- POST  /api/inventory/counts            save one count
- GET   /api/kegs/product/{id}/summary   tapped + on-deck kegs
- GET   /api/products, /api/zones        catalogue
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from taproom.config import settings
from taproom.core.errors import CollaboratorUnavailableError, InventoryApiError
from taproom.schemas.catalog import Product, Zone
from taproom.schemas.inventory_session import (
    CompletedSession, InventorySession, KegSummary, SaveCountRequest,
    SessionStatus, StartSessionResult,
)

logger = logging.getLogger(__name__)


class InventoryApiClient:
    """
    Client for the inventory backend.

    Usage:
        client = InventoryApiClient()
        result = await client.start_session(zone_id=3)
        await client.save_count(request)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.INVENTORY_API_URL).rstrip('/')
        self.api_token = api_token if api_token is not None else settings.INVENTORY_API_TOKEN
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _send(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                return await client.request(
                    method.upper(), url, headers=self._headers(), json=data, params=params
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Inventory API timeout: {method} {endpoint}")
            raise CollaboratorUnavailableError(f"Inventory backend timed out: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"Inventory API unreachable: {method} {endpoint} - {e}")
            raise CollaboratorUnavailableError(f"Inventory backend unreachable: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        logger.error(f"Inventory API error: {response.status_code} - {response.text}")
        body = self._json(response)
        payload = body if isinstance(body, dict) else {}
        raise InventoryApiError(
            status_code=response.status_code,
            message=payload.get("error") or payload.get("message") or response.text,
            payload=payload,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Any:
        """Make a request and return the decoded JSON body."""
        response = await self._send(method, endpoint, data=data, params=params)
        self._raise_for_status(response)
        return self._json(response)

    # ==================== SESSIONS ====================

    async def start_session(self, zone_id: int) -> StartSessionResult:
        """
        Start a session for a zone.

        The backend refuses a second in-progress session with a 400 that
        carries the existing one; that session is handed back with
        ``reused=True`` and the caller decides whether to adopt it.
        """
        response = await self._send("POST", "/api/inventory/sessions", data={"zoneId": zone_id})

        if response.status_code == 400:
            body = self._json(response)
            if isinstance(body, dict) and body.get("session"):
                existing = InventorySession.model_validate(body["session"])
                logger.info(f"Backend returned existing session {existing.id} (zone {existing.zone_id})")
                return StartSessionResult(session=existing, reused=True)

        self._raise_for_status(response)
        session = InventorySession.model_validate(self._json(response))
        logger.info(f"Started inventory session {session.id} for zone {zone_id}")
        return StartSessionResult(session=session, reused=False)

    async def get_active_session(self) -> Optional[InventorySession]:
        data = await self._request("GET", "/api/inventory/sessions/active")
        if not data:
            return None
        return InventorySession.model_validate(data)

    async def get_session_counts(self, session_id: int) -> CompletedSession:
        data = await self._request("GET", f"/api/inventory/sessions/{session_id}")
        return CompletedSession.model_validate(data)

    async def _update_session_status(self, session_id: int, status: SessionStatus) -> InventorySession:
        data = await self._request(
            "PATCH", f"/api/inventory/sessions/{session_id}", data={"status": status.value}
        )
        logger.info(f"Session {session_id} marked {status.value}")
        return InventorySession.model_validate(data)

    async def finish_session(self, session_id: int) -> InventorySession:
        return await self._update_session_status(session_id, SessionStatus.COMPLETED)

    async def cancel_session(self, session_id: int) -> InventorySession:
        return await self._update_session_status(session_id, SessionStatus.CANCELLED)

    # ==================== COUNTS ====================

    async def save_count(self, request: SaveCountRequest) -> Dict:
        """Persist one count. ``countedPartialOz`` carries millilitres."""
        data = await self._request(
            "POST", "/api/inventory/counts", data=request.model_dump(by_alias=True)
        )
        return data or {}

    # ==================== KEGS ====================

    async def fetch_keg_summary(self, product_id: int) -> KegSummary:
        data = await self._request("GET", f"/api/kegs/product/{product_id}/summary")
        return KegSummary.model_validate(data or {})

    # ==================== CATALOGUE ====================

    async def fetch_zones(self) -> List[Zone]:
        data = await self._request("GET", "/api/zones")
        return [Zone.model_validate(z) for z in data or []]

    async def fetch_products(self) -> List[Product]:
        data = await self._request("GET", "/api/products")
        return [Product.model_validate(p) for p in data or []]

    async def lookup_product_by_code(self, code: str) -> Optional[Product]:
        """Resolve a scanned barcode; None when the backend does not know it."""
        try:
            data = await self._request("GET", f"/api/products/lookup/{code}")
        except InventoryApiError as e:
            if e.status_code == 404:
                return None
            raise
        if not data:
            return None
        return Product.model_validate(data)

    # ==================== CONNECTIVITY ====================

    async def ping(self) -> bool:
        """True when the backend answers its health endpoint."""
        try:
            await self._request("GET", "/api/health")
            return True
        except (CollaboratorUnavailableError, InventoryApiError) as e:
            logger.debug(f"Inventory API ping failed: {e}")
            return False

"""
Live Keg Level Service (PourMyBeer m2m API)

Reads live fill levels from the keg sensor bridge for the taps holding a
product's tapped kegs. Live readings override the last stored keg fraction
while a keg product is being counted.

Tap addressing: tap 12 is device 1 line 2; taps below 10 sit on device 1.
"""
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

import httpx

from taproom.config import settings
from taproom.core.errors import KegLevelServiceError
from taproom.schemas.inventory_session import KegLevel, LiveKegLevels
from taproom.services.cache_service import CacheService, get_cache
from taproom.services.notification_service import NotificationService, NotificationType

logger = logging.getLogger(__name__)

# Cache key for the bridge auth token
PMB_TOKEN_CACHE_KEY = "pmb:auth_token"

# Client identity sent with the token request
PMB_CLIENT_ID = 1001
PMB_CLIENT_NAME = "WellStocked"

SIMULATED_KEG_SIZE_OZ = 1984.0  # 1/2 barrel


def tap_address(tap_number: int) -> tuple[int, int]:
    """Map a tap number onto the bridge's (device_id, line_num)."""
    device_id = tap_number // 10 or 1
    line_num = tap_number % 10 or tap_number
    return device_id, line_num


class KegLevelService:
    """
    Client for the keg sensor bridge.

    Usage:
        service = KegLevelService(notifier=notifier)
        if service.is_configured:
            levels = await service.fetch_live_keg_levels([1, 2])
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        simulation_mode: Optional[bool] = None,
        cache: Optional[CacheService] = None,
        notifier: Optional[NotificationService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.server_url = (server_url if server_url is not None else settings.PMB_SERVER_URL).rstrip('/')
        self.username = username if username is not None else settings.PMB_USERNAME
        self.password = password if password is not None else settings.PMB_PASSWORD
        self.simulation_mode = (
            simulation_mode if simulation_mode is not None else settings.PMB_SIMULATION_MODE
        )
        self.cache = cache or get_cache()
        self.notifier = notifier
        self._transport = transport
        # Last fill percent per (device, line), for kick detection
        self._previous_levels: Dict[tuple[int, int], float] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.server_url) or self.simulation_mode

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def _get_token(self) -> str:
        """Get a bridge auth token, cached for its one-hour lifetime."""
        cached_token = await self.cache.get(PMB_TOKEN_CACHE_KEY)
        if cached_token:
            return cached_token

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.server_url}/m2m/api/authtoken",
                    json={
                        "username": self.username,
                        "password": self.password,
                        "id": PMB_CLIENT_ID,
                        "name": PMB_CLIENT_NAME,
                        "type": "json-server-control",
                        "version": 1,
                    },
                )
        except httpx.HTTPError as e:
            raise KegLevelServiceError(f"Keg sensor bridge unreachable: {e}") from e

        if response.status_code != 200:
            logger.error(f"PMB auth failed: {response.status_code} - {response.text}")
            raise KegLevelServiceError(f"Keg sensor authentication failed: {response.status_code}")

        token = response.json().get("authtoken")
        if not token:
            raise KegLevelServiceError("Keg sensor authentication returned no token")

        await self.cache.set(PMB_TOKEN_CACHE_KEY, token, settings.PMB_TOKEN_TTL)
        return token

    async def fetch_live_keg_levels(self, tap_numbers: Iterable[int]) -> LiveKegLevels:
        """
        Read live levels for the given taps.

        Taps that fail to answer are logged and left out of the result.
        """
        taps = [t for t in tap_numbers if t is not None]
        if not taps:
            return {}
        if not self.is_configured:
            raise KegLevelServiceError("Keg sensor bridge is not configured")

        if self.simulation_mode:
            levels = self._simulated_levels(taps)
        else:
            levels = await self._read_levels(taps)

        for tap_number, level in levels.items():
            await self.cache.set_keg_level(tap_number, level.model_dump(mode="json"))
        return levels

    async def cached_keg_levels(self, tap_numbers: Iterable[int]) -> LiveKegLevels:
        """Last readings still inside the cache TTL."""
        levels: LiveKegLevels = {}
        for tap_number in tap_numbers:
            data = await self.cache.get_keg_level(tap_number)
            if data:
                levels[tap_number] = KegLevel.model_validate(data)
        return levels

    async def _read_levels(self, taps: list[int]) -> LiveKegLevels:
        token = await self._get_token()
        headers = {"Authorization": f"Bearer {token}"}
        results: LiveKegLevels = {}

        async with self._client() as client:
            for tap_number in taps:
                device_id, line_num = tap_address(tap_number)
                try:
                    response = await client.post(
                        f"{self.server_url}/m2m/api/getkeglevels",
                        headers=headers,
                        json={"device_id": device_id, "line_num": line_num},
                    )
                    if response.status_code == 401:
                        # Token revoked before its TTL; fetch a new one next refresh
                        await self.cache.delete(PMB_TOKEN_CACHE_KEY)
                        logger.warning(f"PMB rejected the auth token reading tap {tap_number}")
                        continue
                    if response.status_code != 200:
                        logger.warning(
                            f"PMB level read failed for tap {tap_number}: {response.status_code}"
                        )
                        continue
                    level = self._parse_level(tap_number, response.json())
                except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                    logger.error(f"Failed to get keg level for tap {tap_number}: {e}")
                    continue

                results[tap_number] = level
                self._track_kick(tap_number, (device_id, line_num), level.fill_level_percent)

        return results

    @staticmethod
    def _parse_level(tap_number: int, data: dict) -> KegLevel:
        """Decode a bridge reading. ``fill_level_perc`` is hundredths of a percent."""
        keg_size_oz = data["fill_level_keg_size"] / (10 ** data.get("fill_level_keg_size_dp", 0))
        fill_percent = data["fill_level_perc"] / 100
        tapping_date = None
        if data.get("tapping_date"):
            tapping_date = datetime.fromtimestamp(data["tapping_date"], tz=timezone.utc)
        return KegLevel(
            tap_number=tap_number,
            fill_level_percent=fill_percent,
            keg_size_oz=keg_size_oz,
            remaining_oz=(fill_percent / 100) * keg_size_oz,
            tapping_date=tapping_date,
        )

    def _track_kick(self, tap_number: int, key: tuple[int, int], fill_percent: float) -> None:
        previous = self._previous_levels.get(key)
        if previous is not None and previous > 0 and fill_percent == 0:
            logger.info(f"Keg kicked on tap {tap_number} (device {key[0]}, line {key[1]})")
            if self.notifier:
                self.notifier.notify(
                    NotificationType.KEG_KICKED,
                    f"Tap {tap_number} just ran dry.",
                )
        self._previous_levels[key] = fill_percent

    @staticmethod
    def _simulated_levels(taps: list[int]) -> LiveKegLevels:
        """Stable pseudo-levels, seeded by tap number."""
        now = datetime.now(timezone.utc)
        results: LiveKegLevels = {}
        for tap_number in taps:
            rng = random.Random(tap_number)
            fill_percent = round(30 + rng.random() * 60, 2)
            results[tap_number] = KegLevel(
                tap_number=tap_number,
                fill_level_percent=fill_percent,
                keg_size_oz=SIMULATED_KEG_SIZE_OZ,
                remaining_oz=(fill_percent / 100) * SIMULATED_KEG_SIZE_OZ,
                tapping_date=now - timedelta(days=rng.randint(0, 6)),
            )
        return results

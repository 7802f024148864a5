"""
Keg Level Jobs

While a keg product is on the input screen its live tap levels are refreshed
on a fixed interval. Only one keg product is on screen at a time, so there
is a single job id; starting a new poll replaces the previous one.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from taproom.config import settings

logger = logging.getLogger(__name__)

KEG_LEVEL_JOB_ID = 'keg_level_refresh'


class KegLevelPoller:
    """Adds and removes the keg level refresh job on the scheduler."""

    def __init__(self, scheduler=None, interval_seconds: Optional[int] = None):
        if scheduler is None:
            from taproom.jobs.scheduler import scheduler
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds or settings.KEG_LEVEL_REFRESH_SECONDS

    @property
    def is_polling(self) -> bool:
        return self.scheduler.get_job(KEG_LEVEL_JOB_ID) is not None

    def start(self, refresh: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Run ``refresh(*args)`` every interval until stopped."""
        # Pending jobs on a scheduler that has not started are not replaced by id
        self.stop()
        self.scheduler.add_job(
            refresh,
            'interval',
            seconds=self.interval_seconds,
            args=list(args),
            id=KEG_LEVEL_JOB_ID,
            name='Keg Level Refresh',
            replace_existing=True,
        )
        logger.debug(f"Keg level refresh every {self.interval_seconds}s")

    def stop(self) -> None:
        if self.is_polling:
            self.scheduler.remove_job(KEG_LEVEL_JOB_ID)
            logger.debug("Keg level refresh stopped")

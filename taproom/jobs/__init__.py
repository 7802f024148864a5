"""
Background Jobs Module

Handles scheduled tasks for:
- Connectivity probing (drives offline queue replay)
- Live keg level refresh while a keg is being counted
"""

from taproom.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from taproom.jobs.connectivity_jobs import check_connectivity
from taproom.jobs.keg_level_jobs import KegLevelPoller, KEG_LEVEL_JOB_ID

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "check_connectivity",
    "KegLevelPoller",
    "KEG_LEVEL_JOB_ID",
]

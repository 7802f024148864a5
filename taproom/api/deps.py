import logging

from fastapi import Depends, HTTPException, Request, status

from taproom.services.offline_sync_service import OfflineSyncService
from taproom.services.session_controller import SessionController


logger = logging.getLogger(__name__)


def get_controller(request: Request) -> SessionController:
    """
    Dependency to get the device's session controller.

    Built once in the application lifespan and kept on ``app.state``.
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Counter is still starting up",
        )
    return controller


def get_sync_service(
    controller: SessionController = Depends(get_controller),
) -> OfflineSyncService:
    return controller.sync

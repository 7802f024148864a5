"""
Counting errors.

Every error carries an HTTP status code and a machine-readable code so the
device API can hand it to the UI as a transient notification. None of these
change the controller's mode: the operator stays where they were.
"""
from typing import Any, Dict, Optional


class TaproomError(Exception):
    """Base class for counting errors."""

    status_code: int = 400
    code: str = "TAPROOM_ERROR"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class SessionConflictError(TaproomError):
    """Another zone already has an in-progress session."""

    status_code = 409
    code = "SESSION_CONFLICT"

    def __init__(self, active_session_id: int, active_zone_id: int, requested_zone_id: int):
        super().__init__(
            "Another zone already has a count in progress. "
            "Finish or cancel that session before starting a new one.",
            active_session_id=active_session_id,
            active_zone_id=active_zone_id,
            requested_zone_id=requested_zone_id,
        )
        self.active_session_id = active_session_id
        self.active_zone_id = active_zone_id
        self.requested_zone_id = requested_zone_id


class OfflineSessionStartError(TaproomError):
    """Sessions can only be started with a live connection."""

    status_code = 503
    code = "OFFLINE_SESSION_START"

    def __init__(self):
        super().__init__("Starting a count needs a connection. Reconnect and try again.")


class NoActiveSessionError(TaproomError):
    status_code = 409
    code = "NO_ACTIVE_SESSION"

    def __init__(self):
        super().__init__("No count session is active.")


class KegDataNotReadyError(TaproomError):
    """Keg summary is still loading; saving now would write a false total."""

    status_code = 409
    code = "KEG_DATA_NOT_READY"

    def __init__(self, product_id: int):
        super().__init__("Please wait for keg data to load.", product_id=product_id)
        self.product_id = product_id


class InvalidModeTransitionError(TaproomError):
    status_code = 409
    code = "INVALID_MODE_TRANSITION"

    def __init__(self, current_mode: str, target_mode: str, allowed: Optional[list] = None):
        allowed = allowed or []
        if allowed:
            message = (
                f"Cannot go from '{current_mode}' to '{target_mode}'. "
                f"Allowed: {', '.join(allowed)}"
            )
        else:
            message = f"Cannot leave '{current_mode}' for '{target_mode}'."
        super().__init__(message, current_mode=current_mode, target_mode=target_mode)
        self.current_mode = current_mode
        self.target_mode = target_mode


class ProductNotFoundError(TaproomError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, reference: Any):
        super().__init__(f"No product matches '{reference}'.", reference=str(reference))


class InvalidCountInputError(TaproomError):
    status_code = 422
    code = "INVALID_COUNT_INPUT"


class CollaboratorUnavailableError(TaproomError):
    """The inventory backend could not be reached."""

    status_code = 503
    code = "COLLABORATOR_UNAVAILABLE"


class InventoryApiError(TaproomError):
    """The inventory backend answered with an error."""

    code = "INVENTORY_API_ERROR"

    def __init__(self, status_code: int, message: str, payload: Optional[Dict] = None):
        super().__init__(f"Inventory API error ({status_code}): {message}")
        self.status_code = status_code
        self.payload = payload or {}


class KegLevelServiceError(TaproomError):
    status_code = 502
    code = "KEG_LEVEL_SERVICE_ERROR"


class ZoneNotFoundError(TaproomError):
    status_code = 404
    code = "ZONE_NOT_FOUND"

    def __init__(self, zone_id: Any):
        super().__init__(f"No zone with id {zone_id}.", zone_id=zone_id)

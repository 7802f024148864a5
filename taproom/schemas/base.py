"""
Base Schema Classes for Pydantic Models

RULE: Anything exchanged with the inventory backend inherits from WireSchema.
The backend speaks camelCase JSON; Python code uses snake_case attributes.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireSchema(BaseModel):
    """
    Base class for models read from or sent to the inventory backend.

    Features:
    - Accepts camelCase (wire) or snake_case (Python) keys
    - Ignores attributes the backend adds that the counter does not use
    - Dump with ``model_dump(by_alias=True)`` to produce wire JSON

    Usage:
        class Zone(WireSchema):
            id: int
            name: str
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra='ignore',
    )


class DeviceSchema(BaseModel):
    """
    Base class for the device-local API consumed by the counting UI.

    These stay snake_case and are never sent to the backend.
    """
    model_config = ConfigDict(
        from_attributes=True,
        extra='ignore',
    )

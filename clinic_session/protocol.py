"""Envelope helpers for live-update channel frames.

Every frame in either direction is a JSON text object ``{"type", "data"}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ChannelParseError


class ChannelMessageType(Enum):
    """Event types broadcast by the clinic backends."""

    PATIENT_CREATED = "patient_created"
    PATIENT_DELETED = "patient_deleted"
    PATIENT_HIS_ID_UPDATE = "patient_his_id_update"
    ENCOUNTER_CREATED = "encounter_created"
    ENCOUNTER_STATUS_UPDATED = "encounter_status_updated"


@dataclass(frozen=True)
class ChannelEvent:
    """A decoded inbound envelope.

    ``type`` stays a plain string so events the client does not know about
    can still be routed to subscribers registered under that name.
    """

    type: str
    data: Any = None

    @property
    def known_type(self) -> ChannelMessageType | None:
        try:
            return ChannelMessageType(self.type)
        except ValueError:
            return None


def message_type_key(message_type: str | ChannelMessageType) -> str:
    """Normalize a message type to its wire name."""
    if isinstance(message_type, ChannelMessageType):
        return message_type.value
    return message_type


def build_envelope(
    message_type: str | ChannelMessageType, data: Any = None
) -> dict[str, Any]:
    """Build an outbound envelope."""
    return {"type": message_type_key(message_type), "data": data}


def parse_envelope(raw: str) -> ChannelEvent:
    """Decode one text frame.

    Raises:
        ChannelParseError: If the frame is not JSON, not an object, or has
            no string ``type``.
    """
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as err:
        raise ChannelParseError(f"Frame is not valid JSON: {err}") from err

    if not isinstance(decoded, dict):
        raise ChannelParseError("Frame is not a JSON object")

    message_type = decoded.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise ChannelParseError("Frame has no message type")

    return ChannelEvent(type=message_type, data=decoded.get("data"))

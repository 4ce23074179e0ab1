"""Push notification payload parsing.

Recognized payloads carry campaign identifiers under an ``mp`` key::

    {"aps": {...}, "mp": {"m": <message id>, "c": <campaign id>}}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

PAYLOAD_KEY = "mp"
CAMPAIGN_RECEIVED_EVENT = "$campaign_received"
LAUNCH_NOTIFICATION_KEY = "remote_notification"


@dataclass(frozen=True)
class PushCampaign:
    campaign_id: Any
    message_id: Any

    def to_properties(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "message_id": self.message_id,
            "message_type": "push",
        }


def parse_push_payload(payload: Any) -> Optional[PushCampaign]:
    """Extract campaign identifiers, or None for unrecognized payloads."""
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring push payload of type %s", type(payload).__name__)
        return None
    section = payload.get(PAYLOAD_KEY)
    if section is None:
        logger.debug("Push payload carries no campaign data")
        return None
    if not isinstance(section, Mapping):
        logger.warning("Malformed push payload: %r", payload)
        return None
    message_id = section.get("m")
    campaign_id = section.get("c")
    if message_id is None or campaign_id is None:
        logger.warning("Malformed push payload: %r", payload)
        return None
    return PushCampaign(campaign_id=campaign_id, message_id=message_id)


def push_payload_from_launch_options(launch_options: Mapping[str, Any] | None) -> Any:
    """Return the notification payload the app was launched with, if any."""
    if not launch_options:
        return None
    return launch_options.get(LAUNCH_NOTIFICATION_KEY)

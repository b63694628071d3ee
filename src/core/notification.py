"""
Webhook Notification Decoding

The inbound payload is validated with pydantic and turned into a typed
Notification. Anything that cannot be processed raises ValidationError,
which the dispatcher acknowledges without retry.
"""

from datetime import tzinfo
from typing import Any, Dict, Optional

import pydantic
from pydantic import BaseModel, Field

from .errors import ValidationError
from .models import Notification, UsageEvent

HANDLED_TYPES = ("created", "updated")


class ResourceRef(BaseModel):
    """Resource summary embedded in the notification."""
    name: Optional[str] = None


class NotificationDetails(BaseModel):
    log: Optional[Dict[str, Any]] = Field(None, description="The resource log (usage event)")
    resource: Optional[ResourceRef] = None


class WebhookPayload(BaseModel):
    """Top-level webhook body."""
    type: str = Field(..., description="Event type: created or updated")
    details: NotificationDetails = Field(default_factory=NotificationDetails)


def decode_notification(raw: Any, tz: tzinfo) -> Notification:
    """Validate a raw JSON payload and decode it into a Notification."""
    try:
        payload = WebhookPayload.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Malformed notification: {e.error_count()} error(s)")

    if payload.details.log is None:
        raise ValidationError("Missing log data in payload")

    if payload.type not in HANDLED_TYPES:
        raise ValidationError(f"Notification type {payload.type!r} is not handled")

    return Notification(
        type=payload.type,
        log=UsageEvent.from_api(payload.details.log, tz),
        resource_name=payload.details.resource.name if payload.details.resource else None,
    )

"""
Usage Store Access

Raw CRUD against the facility tracker's resource logs and resources. Replace
calls carry the record's lockVersion; a stale token is rejected with 409 and
surfaces as ConflictError.
"""

from datetime import tzinfo
from typing import Any, Dict, Optional

import httpx
import structlog

from core.errors import ConflictError, UsageStoreError, ValidationError
from core.http import ApiClient, response_json
from core.models import ResourcePricingConfig, UsageEvent

logger = structlog.get_logger()


class UsageStore:
    """Resource-log and resource endpoints of the usage store."""

    def __init__(self, api: ApiClient, tz: tzinfo):
        self.api = api
        self.tz = tz

    def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.api.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error("usage_store_unreachable", method=method, path=path, error=str(e))
            raise UsageStoreError(f"Usage store unreachable: {e}")

    def fetch_event(self, event_id: int) -> UsageEvent:
        """Read a usage event including its current version token."""
        response = self._call("GET", f"resource-logs/{event_id}")
        if response.status_code != 200:
            raise UsageStoreError(
                f"Failed to read usage event {event_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return UsageEvent.from_api(response_json(response) or {}, self.tz)

    def replace_event(
        self,
        event_id: int,
        changes: Dict[str, Any],
        lock_version: Optional[int],
    ) -> Optional[UsageEvent]:
        """
        Write changed fields guarded by the version token.

        Returns the updated event when the store echoes it back.

        Raises:
            ConflictError: the version token was stale
            UsageStoreError: any other non-success status
        """
        body = dict(changes)
        body["lockVersion"] = lock_version
        response = self._call("PUT", f"resource-logs/{event_id}", json=body)

        if response.status_code == 409:
            raise ConflictError(event_id, lock_version)
        if response.status_code not in (200, 204):
            raise UsageStoreError(
                f"Failed to update usage event {event_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        data = response_json(response)
        return UsageEvent.from_api(data, self.tz) if isinstance(data, dict) else None

    def create_event(self, payload: Dict[str, Any]) -> UsageEvent:
        response = self._call("POST", "resource-logs", json=payload)
        if response.status_code not in (200, 201):
            raise UsageStoreError(
                f"Failed to create usage event: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return UsageEvent.from_api(response_json(response) or {}, self.tz)

    def delete_event(self, event_id: int) -> bool:
        """Delete a usage event. Returns False if it was already gone."""
        response = self._call("DELETE", f"resource-logs/{event_id}")
        if response.status_code == 404:
            return False
        if response.status_code not in (200, 204):
            raise UsageStoreError(
                f"Failed to delete usage event {event_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return True

    def fetch_pricing(self, resource_id: int) -> ResourcePricingConfig:
        """
        Load the pricing configuration from a resource's metadata.

        Raises:
            ValidationError: resource unknown or metadata incomplete
            UsageStoreError: any other non-success status
        """
        response = self._call("GET", f"resources/{resource_id}")
        if response.status_code == 404:
            raise ValidationError(f"Resource #{resource_id} does not exist")
        if response.status_code != 200:
            raise UsageStoreError(
                f"Failed to read resource {resource_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        data = response_json(response) or {}
        try:
            return ResourcePricingConfig.from_metadata(data.get("metadata"), data.get("name"))
        except ValidationError as e:
            raise ValidationError(f"Missing metadata for resource #{resource_id}: {e}")

"""
Activity Mutator

All writes to usage events go through one optimistic read-modify-write loop:
read the record fresh (with its version token), derive the changes from that
fresh copy, write them back with the token. A stale token is retried up to a
fixed ceiling with a fixed backoff; nothing is locked or queued.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from core.errors import ConflictError
from core.models import UsageEvent
from core.timeutil import format_api

from .usage_store import UsageStore

logger = structlog.get_logger()

Transform = Callable[[UsageEvent], Dict[str, Any]]


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.warning(
        "usage_event_version_conflict",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


def optimistic_update(
    read: Callable[[], UsageEvent],
    write: Callable[[UsageEvent, Dict[str, Any]], Optional[UsageEvent]],
    transform: Transform,
    attempts: int = 5,
    backoff: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[UsageEvent]:
    """
    Optimistic read-modify-write with bounded retry.

    Args:
        read: Returns the current record including its version token
        write: Persists changes for a record; raises ConflictError on a stale token
        transform: Derives the changes from the freshly read record
        attempts: Maximum number of read/write rounds
        backoff: Fixed delay between rounds (seconds)

    Raises:
        ConflictError: the last conflict once all attempts are used up
    """
    def attempt() -> Optional[UsageEvent]:
        record = read()
        return write(record, transform(record))

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=_log_conflict,
        sleep=sleep,
        reraise=True,
    )
    return retrying(attempt)


class ActivityMutator:
    """Timestamp, metadata, create and delete operations on usage events."""

    def __init__(
        self,
        store: UsageStore,
        attempts: int = 5,
        backoff: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.attempts = attempts
        self.backoff = backoff
        self._sleep = sleep

    def _update(self, event_id: int, transform: Transform) -> Optional[UsageEvent]:
        return optimistic_update(
            read=lambda: self.store.fetch_event(event_id),
            write=lambda record, changes: self.store.replace_event(
                record.id, changes, record.lock_version
            ),
            transform=transform,
            attempts=self.attempts,
            backoff=self.backoff,
            sleep=self._sleep,
        )

    def update_timestamps(
        self,
        event_id: int,
        new_start: datetime,
        new_end: datetime,
    ) -> Optional[UsageEvent]:
        """Move a usage event's window to [new_start, new_end]."""
        updated = self._update(
            event_id,
            lambda record: {
                "createdAt": format_api(new_start),
                "stoppedAt": format_api(new_end),
            },
        )
        logger.info(
            "usage_event_timestamps_updated",
            event_id=event_id,
            start=format_api(new_start),
            end=format_api(new_end),
        )
        return updated

    def update_metadata(
        self,
        event_id: int,
        new_fields: Dict[str, Any],
        merge: bool = True,
    ) -> Optional[UsageEvent]:
        """
        Write metadata fields.

        With merge=True the fields are laid over the metadata read in the
        same attempt, so a retry after a conflict keeps whatever the winning
        writer added.
        """
        def transform(record: UsageEvent) -> Dict[str, Any]:
            metadata = dict(record.metadata) if merge else {}
            metadata.update(new_fields)
            return {"metadata": metadata}

        updated = self._update(event_id, transform)
        logger.info(
            "usage_event_metadata_updated",
            event_id=event_id,
            fields=sorted(new_fields),
            merge=merge,
        )
        return updated

    def delete_event(self, event_id: int) -> bool:
        """Delete a usage event; an already-missing event counts as deleted."""
        deleted = self.store.delete_event(event_id)
        if deleted:
            logger.info("usage_event_deleted", event_id=event_id)
        else:
            logger.info("usage_event_already_gone", event_id=event_id)
        return True

    def create_event(
        self,
        template: UsageEvent,
        start: datetime,
        end: datetime,
    ) -> UsageEvent:
        """Create a new event copying `template` onto [start, end]."""
        created = self.store.create_event(template.to_create_payload(start, end))
        logger.info(
            "usage_event_created",
            event_id=created.id,
            source_event_id=template.id,
            start=format_api(start),
            end=format_api(end),
        )
        return created

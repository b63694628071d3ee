"""
Notification Dispatcher

Single place that maps pipeline outcomes and errors onto the webhook
acknowledgment contract:

    200  work done (deleted, shrunk, split, billed)
    202  acknowledged, nothing to do (ignored, skipped, validation)
    500  failed run (auth, fetch, conflict exhausted, billing, usage store)

The upstream tracker re-notifies on later state changes, so nothing here
retries the pipeline.
"""

from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any, Callable, ContextManager, Dict, Optional, Sequence

import structlog

from core.errors import ReconciliationError, ValidationError
from core.notification import decode_notification

from .reconciler import ReconcileOutcome, ReconcileResult, Reconciler

logger = structlog.get_logger()

ReconcilerFactory = Callable[[], ContextManager[Reconciler]]

DONE_OUTCOMES = (
    ReconcileOutcome.DELETED,
    ReconcileOutcome.SHRUNK,
    ReconcileOutcome.SPLIT,
    ReconcileOutcome.BILLED,
)


@dataclass
class Acknowledgment:
    """Response handed back to the notifier."""
    status_code: int
    message: str
    result: Optional[ReconcileResult] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status_code >= 500

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status_code, "message": self.message}
        if self.result is not None:
            body["result"] = self.result.to_dict()
        body.update(self.details)
        return body


def acknowledge_result(result: ReconcileResult) -> Acknowledgment:
    status = 200 if result.outcome in DONE_OUTCOMES else 202
    return Acknowledgment(status_code=status, message=result.message, result=result)


def acknowledge_error(error: ReconciliationError) -> Acknowledgment:
    if not error.fatal:
        logger.info("notification_acknowledged", reason=str(error))
        return Acknowledgment(status_code=202, message=str(error))

    logger.error(
        "reconciliation_failed",
        error_type=type(error).__name__,
        error=str(error),
    )
    return Acknowledgment(
        status_code=500,
        message=f"Server error: {error}",
        details={"error_type": type(error).__name__},
    )


def dispatch(
    raw_payload: Any,
    factory: ReconcilerFactory,
    tz: tzinfo,
    allowed_resources: Sequence[int],
) -> Acknowledgment:
    """
    Decode, filter and reconcile one notification.

    Args:
        raw_payload: Parsed JSON body of the webhook
        factory: Opens a Reconciler for this invocation
        tz: Timezone for naive timestamps in the payload
        allowed_resources: Resource ids this deployment bills for
    """
    if not allowed_resources:
        return Acknowledgment(
            status_code=202,
            message="IDs of the resources to be considered must be configured, e.g. ?resources=1322,1516",
        )

    try:
        notification = decode_notification(raw_payload, tz)
    except ValidationError as e:
        return acknowledge_error(e)

    resource_id = notification.log.resource_id
    if resource_id not in allowed_resources:
        return Acknowledgment(
            status_code=202,
            message=f"Resource ID {resource_id} is not handled by this webhook.",
        )

    logger.info(
        "notification_received",
        type=notification.type,
        event_id=notification.log.id,
        resource_id=resource_id,
    )

    try:
        with factory() as reconciler:
            result = reconciler.reconcile(notification)
    except ReconciliationError as e:
        return acknowledge_error(e)

    return acknowledge_result(result)

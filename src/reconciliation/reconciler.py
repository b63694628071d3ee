"""
Usage Reconciler

Consumes one usage-event notification and drives it towards a terminal state:

    IGNORED  - already billed, or still running
    DELETED  - no finished job in the window
    SHRUNK   - one job, window narrowed to the job's window
    SPLIT    - several jobs, one new event per job
    BILLED   - one job matching the window to the second; charged and marked
    SKIPPED  - a job ends before it starts, or the windows are out of order

Shrunk and split events come back through the webhook and are expected to
land in the BILLED branch on their next pass. No charge is ever posted unless
the usage window and the job window are identical in UTC seconds.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import httpx
import structlog

from billing.charges import ChargePoster, ChargeReceipt
from billing.pricing import ChargeTemplates, compute_charges
from core.config import Settings
from core.errors import TimestampOrderError, ValidationError
from core.http import ApiClient
from core.models import (
    ChargeLine,
    Notification,
    PrintJob,
    ResourcePricingConfig,
    UsageEvent,
    total_amount,
)
from core.timeutil import format_api, same_second, to_epoch
from persistence.activity import ActivityMutator
from persistence.usage_store import UsageStore
from vendor.formlabs import FormlabsAuth, JobFetcher

logger = structlog.get_logger()


class ReconcileOutcome(Enum):
    """Terminal state of one reconciliation pass."""
    IGNORED = "IGNORED"
    DELETED = "DELETED"
    SHRUNK = "SHRUNK"
    SPLIT = "SPLIT"
    BILLED = "BILLED"
    SKIPPED = "SKIPPED"


@dataclass
class ReconcileResult:
    """What one pass did to a usage event."""
    outcome: ReconcileOutcome
    event_id: int
    message: str
    jobs: List[PrintJob] = field(default_factory=list)
    charges: List[ChargeLine] = field(default_factory=list)
    receipts: List[ChargeReceipt] = field(default_factory=list)
    created_event_ids: List[int] = field(default_factory=list)

    @property
    def billed(self) -> bool:
        return self.outcome == ReconcileOutcome.BILLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "event_id": self.event_id,
            "message": self.message,
            "jobs": [job.guid for job in self.jobs],
            "charges": [line.to_dict() for line in self.charges],
            "created_event_ids": self.created_event_ids,
        }


def check_order(event: UsageEvent, job: PrintJob) -> None:
    """
    Require created_at <= started_at <= effective_end <= stopped_at.

    Raises:
        TimestampOrderError: if the windows are inconsistent
    """
    points = [
        to_epoch(event.created_at),
        to_epoch(job.started_at),
        to_epoch(job.effective_end),
        to_epoch(event.stopped_at),
    ]
    if points != sorted(points):
        raise TimestampOrderError(
            f"Usage event {event.id} [{format_api(event.created_at)}, "
            f"{format_api(event.stopped_at)}] does not contain job {job.guid} "
            f"[{format_api(job.started_at)}, {format_api(job.effective_end)}] in order"
        )


def check_job_order(job: PrintJob) -> None:
    """
    Require started_at <= effective_end for a vendor job.

    Raises:
        TimestampOrderError: if the job ends before it starts
    """
    if to_epoch(job.effective_end) < to_epoch(job.started_at):
        raise TimestampOrderError(
            f"Print job {job.guid} ends ({format_api(job.effective_end)}) before it "
            f"starts ({format_api(job.started_at)})"
        )


def windows_match(event: UsageEvent, job: PrintJob) -> bool:
    return same_second(event.created_at, job.started_at) and same_second(
        event.stopped_at, job.effective_end
    )


class Reconciler:
    """
    The reconciliation state machine.

    Flow:
    1. Skip billed or still-running events
    2. Load the resource's pricing configuration
    3. Fetch finished jobs inside the usage window
    4. Delete, shrink, split or bill depending on the job count and match
    """

    def __init__(
        self,
        settings: Settings,
        store: UsageStore,
        fetcher: JobFetcher,
        mutator: ActivityMutator,
        poster: ChargePoster,
    ):
        self.settings = settings
        self.tz = settings.tz
        self.store = store
        self.fetcher = fetcher
        self.mutator = mutator
        self.poster = poster
        self.templates = ChargeTemplates(
            base=settings.charge_template,
            surcharge=settings.surcharge_template,
        )

    def reconcile(self, notification: Notification) -> ReconcileResult:
        """
        Run one reconciliation pass for a notification.

        Raises:
            ValidationError: resource pricing configuration unusable
            AuthError, FetchError: vendor side failed
            ConflictError: version conflicts outlasted the retry ceiling
            BillingPostError: a charge was rejected (earlier lines stay posted)
            UsageStoreError: usage store failed otherwise
        """
        event = notification.log

        with structlog.contextvars.bound_contextvars(
            event_id=event.id, resource_id=event.resource_id
        ):
            if event.has_marker(self.settings.billed_marker):
                logger.info("usage_event_already_billed")
                return ReconcileResult(
                    ReconcileOutcome.IGNORED, event.id, "Usage event already billed"
                )

            if not event.is_stopped:
                logger.debug("usage_event_still_running")
                return ReconcileResult(
                    ReconcileOutcome.IGNORED, event.id, "Event is not a stop; nothing to do"
                )

            pricing = self.store.fetch_pricing(event.resource_id)
            jobs = self.fetcher.fetch_jobs_in_window(
                pricing.printer_serial, event.created_at, event.stopped_at
            )

            if not jobs:
                return self._delete(event)

            try:
                for job in jobs:
                    check_job_order(job)
            except TimestampOrderError as e:
                return self._skip(event, jobs, e)

            if len(jobs) > 1:
                return self._split(event, jobs)

            job = jobs[0]
            if not windows_match(event, job):
                return self._shrink(event, job)

            try:
                check_order(event, job)
            except TimestampOrderError as e:
                return self._skip(event, jobs, e)

            device_name = notification.resource_name or pricing.device_name
            return self._bill(event, job, pricing, device_name)

    def _skip(
        self,
        event: UsageEvent,
        jobs: List[PrintJob],
        error: TimestampOrderError,
    ) -> ReconcileResult:
        logger.warning("reconcile_skipped_order_violation", error=str(error))
        return ReconcileResult(ReconcileOutcome.SKIPPED, event.id, str(error), jobs=jobs)

    def _delete(self, event: UsageEvent) -> ReconcileResult:
        self.mutator.delete_event(event.id)
        logger.info("reconcile_deleted_empty_window")
        return ReconcileResult(
            ReconcileOutcome.DELETED,
            event.id,
            f"No finished print job in window; usage event {event.id} deleted",
        )

    def _shrink(self, event: UsageEvent, job: PrintJob) -> ReconcileResult:
        self.mutator.update_timestamps(event.id, job.started_at, job.effective_end)
        logger.info(
            "reconcile_shrunk",
            job_guid=job.guid,
            start=format_api(job.started_at),
            end=format_api(job.effective_end),
        )
        return ReconcileResult(
            ReconcileOutcome.SHRUNK,
            event.id,
            f"Usage event {event.id} shrunk to print job {job.guid}",
            jobs=[job],
        )

    def _split(self, event: UsageEvent, jobs: List[PrintJob]) -> ReconcileResult:
        self.mutator.delete_event(event.id)
        created = [
            self.mutator.create_event(event, job.started_at, job.effective_end)
            for job in jobs
        ]
        logger.info("reconcile_split", jobs=len(jobs), created=[e.id for e in created])
        return ReconcileResult(
            ReconcileOutcome.SPLIT,
            event.id,
            f"Usage event {event.id} split into {len(created)} events",
            jobs=jobs,
            created_event_ids=[e.id for e in created],
        )

    def _bill(
        self,
        event: UsageEvent,
        job: PrintJob,
        pricing: ResourcePricingConfig,
        device_name: Optional[str],
    ) -> ReconcileResult:
        if event.member_id is None:
            raise ValidationError(f"Usage event {event.id} has no member to bill")

        lines = compute_charges(
            job,
            pricing,
            self.tz,
            event_id=event.id,
            device_name=device_name,
            templates=self.templates,
        )
        receipts = self.poster.post_lines(event.member_id, lines)

        total = total_amount(lines)
        self.mutator.update_metadata(
            event.id,
            {
                self.settings.billed_marker: {
                    "printJob": job.guid,
                    "amount": str(total),
                    "billedAt": format_api(datetime.now(timezone.utc)),
                }
            },
            merge=True,
        )

        logger.info(
            "reconcile_billed",
            job_guid=job.guid,
            member_id=event.member_id,
            amount=str(total),
            lines=len(lines),
        )
        return ReconcileResult(
            ReconcileOutcome.BILLED,
            event.id,
            f"Charge created: {total}",
            jobs=[job],
            charges=lines,
            receipts=receipts,
        )


@contextmanager
def open_reconciler(
    settings: Settings,
    transport: Optional[httpx.BaseTransport] = None,
) -> Iterator[Reconciler]:
    """Build a Reconciler with fresh HTTP clients for one invocation."""
    tz = settings.tz
    fabman = ApiClient(
        settings.fabman_api_url,
        token=settings.fabman_token,
        timeout=settings.http_timeout,
        transport=transport,
    )
    formlabs = ApiClient(
        settings.formlabs_api_url,
        timeout=settings.http_timeout,
        transport=transport,
    )
    try:
        store = UsageStore(fabman, tz)
        auth = FormlabsAuth(
            settings.formlabs_token_url,
            settings.formlabs_client_id,
            settings.formlabs_username,
            settings.formlabs_password,
            timeout=settings.http_timeout,
            transport=transport,
        )
        yield Reconciler(
            settings=settings,
            store=store,
            fetcher=JobFetcher(
                formlabs,
                auth,
                tz,
                page_size=settings.page_size,
                lookback=timedelta(hours=settings.max_print_hours),
            ),
            mutator=ActivityMutator(
                store,
                attempts=settings.update_max_attempts,
                backoff=settings.update_backoff,
            ),
            poster=ChargePoster(fabman),
        )
    finally:
        fabman.close()
        formlabs.close()

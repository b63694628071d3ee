"""
Pytest Configuration and Fixtures
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

# Set test environment
os.environ["FABCHARGE_WEBHOOK_TOKEN"] = "test-webhook-token"
os.environ["FABCHARGE_TIMEZONE"] = "Europe/Vienna"

from core.config import Settings  # noqa: E402
from core.errors import ConflictError, UsageStoreError, ValidationError  # noqa: E402
from core.models import (  # noqa: E402
    BillingMode,
    MaterialOverride,
    PrintJob,
    ResourcePricingConfig,
    RunSuccess,
    UsageEvent,
)
from core.timeutil import format_api  # noqa: E402

T0 = datetime(2024, 5, 6, 8, 0, 0, tzinfo=timezone.utc)


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)


class FakeUsageStore:
    """
    In-memory stand-in for the usage store HTTP API.

    Enforces lockVersion on replace exactly like the real store: a write
    carrying a stale version is rejected with ConflictError. `before_write`
    lets a test interleave a competing writer between read and write.
    """

    def __init__(self, tz=timezone.utc):
        self.tz = tz
        self.events = {}
        self.resources = {}
        self.deleted = []
        self.created = []
        self.writes = []
        self.before_write = None
        self._next_id = 1000

    def add_event(self, event: UsageEvent) -> UsageEvent:
        stored = UsageEvent(
            id=event.id,
            resource_id=event.resource_id,
            member_id=event.member_id,
            created_at=event.created_at,
            stopped_at=event.stopped_at,
            stop_type=event.stop_type,
            metadata=dict(event.metadata),
            lock_version=event.lock_version or 1,
        )
        self.events[event.id] = stored
        return stored

    def fetch_event(self, event_id):
        if event_id not in self.events:
            raise UsageStoreError(f"Failed to read usage event {event_id}: HTTP 404", 404)
        return self.events[event_id]

    def replace_event(self, event_id, changes, lock_version):
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook()

        current = self.events[event_id]
        if lock_version != current.lock_version:
            raise ConflictError(event_id, lock_version)

        data = {
            "id": current.id,
            "resource": current.resource_id,
            "member": current.member_id,
            "createdAt": format_api(current.created_at),
            "stoppedAt": format_api(current.stopped_at) if current.stopped_at else None,
            "stopType": current.stop_type,
            "metadata": dict(current.metadata),
            "lockVersion": current.lock_version + 1,
        }
        data.update(changes)
        updated = UsageEvent.from_api(data, self.tz)
        self.events[event_id] = updated
        self.writes.append((event_id, dict(changes)))
        return updated

    def create_event(self, payload):
        self._next_id += 1
        data = dict(payload)
        data["id"] = self._next_id
        data["lockVersion"] = 1
        created = UsageEvent.from_api(data, self.tz)
        self.events[created.id] = created
        self.created.append(created)
        return created

    def delete_event(self, event_id):
        if event_id not in self.events:
            return False
        del self.events[event_id]
        self.deleted.append(event_id)
        return True

    def fetch_pricing(self, resource_id):
        if resource_id not in self.resources:
            raise ValidationError(f"Resource #{resource_id} does not exist")
        return self.resources[resource_id]


class FakeFetcher:
    """Returns canned jobs, filtered to the requested window."""

    def __init__(self, jobs=None, error=None):
        self.jobs = list(jobs or [])
        self.error = error
        self.calls = []

    def fetch_jobs_in_window(self, device_serial, window_start, window_end):
        self.calls.append((device_serial, window_start, window_end))
        if self.error is not None:
            raise self.error
        return [
            j for j in self.jobs
            if window_start <= j.effective_end <= window_end
        ]


class FakePoster:
    """Records posted charge lines; optionally fails on the n-th post."""

    def __init__(self, fail_on=None, error=None):
        self.posted = []
        self.fail_on = fail_on
        self.error = error

    def post_lines(self, member_id, lines):
        receipts = []
        for line in lines:
            if self.fail_on is not None and len(self.posted) == self.fail_on:
                raise self.error
            self.posted.append((member_id, line))
            receipts.append(line)
        return receipts


@pytest.fixture
def settings():
    """Settings with fast retries for tests."""
    return Settings(
        webhook_token="test-webhook-token",
        allowed_resources=(1322,),
        timezone="Europe/Vienna",
        update_backoff=0.0,
    )


@pytest.fixture
def fake_store():
    return FakeUsageStore()


@pytest.fixture
def pricing():
    """Default-mode pricing for a Form 3 with one material override."""
    return ResourcePricingConfig(
        printer_serial="Form3XYZ",
        default_price_per_ml=Decimal("1.0"),
        billing_mode=BillingMode.DEFAULT,
        material_overrides={
            "FLFL8001": MaterialOverride(name="Flexible80A", price_per_ml=Decimal("0.13")),
        },
        device_name="Form 3 (Lab)",
    )


@pytest.fixture
def make_event():
    """Factory for stopped usage events."""
    def _make(event_id=42, start=T0, end=T0 + minutes(30), stop_type="normal",
              metadata=None, member_id=7, resource_id=1322):
        return UsageEvent(
            id=event_id,
            resource_id=resource_id,
            member_id=member_id,
            created_at=start,
            stopped_at=end,
            stop_type=stop_type,
            metadata=metadata or {},
            lock_version=1,
        )
    return _make


@pytest.fixture
def make_job():
    """Factory for finished print jobs."""
    def _make(guid="job-1", start=T0, end=T0 + minutes(30), volume="12.5",
              material="FLFL8001", name="bracket.form", success_only=False):
        if success_only:
            return PrintJob(
                guid=guid, name=name, material_code=material,
                volume_ml=Decimal(volume), started_at=start,
                run_success=RunSuccess(status="SUCCESS", created_at=end),
                status="FINISHED",
            )
        return PrintJob(
            guid=guid, name=name, material_code=material,
            volume_ml=Decimal(volume), started_at=start, finished_at=end,
            status="FINISHED",
        )
    return _make

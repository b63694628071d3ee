"""
Domain Entities

Raw JSON from the usage store, the vendor API and the webhook is decoded once
into these types at the boundary. Nothing downstream reads untyped maps.
"""

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .timeutil import format_api, parse_timestamp, to_epoch

RUN_SUCCESS = "SUCCESS"


def _decimal(value: Any, what: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{what} is not a number: {value!r}")


def _ref_id(value: Any) -> Optional[int]:
    """Usage store references are either bare ids or embedded objects."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("id")
    return int(value) if value is not None else None


class BillingMode(Enum):
    """How a resource turns a job into charge lines."""
    DEFAULT = "default"
    SURCHARGE = "surcharge"


class ChargeKind(Enum):
    BASE = "BASE"
    SURCHARGE = "SURCHARGE"


@dataclass(frozen=True)
class UsageEvent:
    """
    One continuous equipment-use interval recorded by the usage store.

    `stop_type` is None while the resource is still in use. `lock_version`
    is the optimistic-concurrency token echoed back on every replace.
    """
    id: int
    resource_id: int
    member_id: Optional[int]
    created_at: datetime
    stopped_at: Optional[datetime] = None
    stop_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    lock_version: Optional[int] = None

    @property
    def is_stopped(self) -> bool:
        return self.stop_type is not None

    def has_marker(self, key: str) -> bool:
        return bool(self.metadata.get(key))

    @classmethod
    def from_api(cls, data: Dict[str, Any], tz: tzinfo) -> "UsageEvent":
        """Decode a resource log object."""
        try:
            event_id = int(data["id"])
            resource_id = _ref_id(data.get("resource"))
            member_id = _ref_id(data.get("member"))
            created_at = parse_timestamp(data.get("createdAt"), tz)
            stopped_at = parse_timestamp(data.get("stoppedAt"), tz)
            lock_version = data.get("lockVersion")
            if lock_version is not None:
                lock_version = int(lock_version)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed usage event: {e}")

        if resource_id is None or created_at is None:
            raise ValidationError(f"Usage event {event_id} lacks resource or createdAt")

        stop_type = data.get("stopType") or None
        if stop_type is not None:
            if stopped_at is None:
                raise ValidationError(f"Usage event {event_id} is stopped but has no stoppedAt")
            if to_epoch(stopped_at) < to_epoch(created_at):
                raise ValidationError(f"Usage event {event_id} stops before it starts")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError(f"Usage event {event_id} metadata is not an object")

        return cls(
            id=event_id,
            resource_id=resource_id,
            member_id=member_id,
            created_at=created_at,
            stopped_at=stopped_at,
            stop_type=stop_type,
            metadata=dict(metadata),
            lock_version=lock_version,
        )

    def to_create_payload(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Payload for a new event that copies this one onto another window."""
        payload: Dict[str, Any] = {
            "resource": self.resource_id,
            "member": self.member_id,
            "createdAt": format_api(start),
            "stoppedAt": format_api(end),
            "metadata": dict(self.metadata),
        }
        if self.stop_type is not None:
            payload["stopType"] = self.stop_type
        return payload


@dataclass(frozen=True)
class RunSuccess:
    status: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PrintJob:
    """A single print run as recorded by the vendor."""
    guid: str
    name: str
    material_code: Optional[str]
    volume_ml: Decimal
    started_at: Optional[datetime]
    finished_at: Optional[datetime] = None
    run_success: Optional[RunSuccess] = None
    status: Optional[str] = None

    @property
    def effective_end(self) -> Optional[datetime]:
        """
        When the job counts as done.

        The finish timestamp if present, else the success confirmation time
        when the run is explicitly marked successful. None means in progress.
        """
        if self.finished_at is not None:
            return self.finished_at
        if self.run_success and self.run_success.status == RUN_SUCCESS:
            return self.run_success.created_at
        return None

    @property
    def is_matchable(self) -> bool:
        return self.started_at is not None and self.effective_end is not None

    @classmethod
    def from_api(cls, data: Dict[str, Any], tz: tzinfo) -> "PrintJob":
        """Decode a vendor print record. Raises ValueError on bad timestamps."""
        run_success = None
        raw_success = data.get("print_run_success")
        if isinstance(raw_success, dict) and raw_success.get("print_run_success"):
            run_success = RunSuccess(
                status=str(raw_success["print_run_success"]),
                created_at=parse_timestamp(raw_success.get("created_at"), tz),
            )

        volume = data.get("volume_ml")
        try:
            volume_ml = Decimal(str(volume)) if volume is not None else Decimal("0")
        except InvalidOperation:
            raise ValueError(f"volume_ml is not a number: {volume!r}")

        return cls(
            guid=str(data.get("guid", "")),
            name=str(data.get("name") or ""),
            material_code=data.get("material") or None,
            volume_ml=volume_ml,
            started_at=parse_timestamp(data.get("print_started_at"), tz),
            finished_at=parse_timestamp(data.get("print_finished_at"), tz),
            run_success=run_success,
            status=data.get("status"),
        )


@dataclass(frozen=True)
class MaterialOverride:
    name: str
    price_per_ml: Decimal


@dataclass(frozen=True)
class ResourcePricingConfig:
    """
    Pricing configuration stored in a resource's metadata.

    Shape (material codes are top-level keys next to the defaults):

        {
            "printer_serial": "Form3XYZ",
            "price_per_ml": 1.0,
            "billing_mode": "surcharge",
            "FLFL8001": {"name": "Flexible80A", "price_per_ml": 0.13}
        }
    """
    printer_serial: str
    default_price_per_ml: Decimal
    billing_mode: BillingMode = BillingMode.DEFAULT
    material_overrides: Dict[str, MaterialOverride] = field(default_factory=dict)
    device_name: Optional[str] = None

    def override_for(self, material_code: Optional[str]) -> Optional[MaterialOverride]:
        if not material_code:
            return None
        return self.material_overrides.get(material_code)

    @classmethod
    def from_metadata(
        cls,
        metadata: Optional[Dict[str, Any]],
        device_name: Optional[str] = None,
    ) -> "ResourcePricingConfig":
        if not isinstance(metadata, dict):
            raise ValidationError("Resource has no metadata")
        if not metadata.get("printer_serial") or metadata.get("price_per_ml") is None:
            raise ValidationError("Resource metadata lacks printer_serial or price_per_ml")

        raw_mode = str(metadata.get("billing_mode") or BillingMode.DEFAULT.value).lower()
        try:
            mode = BillingMode(raw_mode)
        except ValueError:
            raise ValidationError(f"Unknown billing_mode: {raw_mode}")

        overrides = {}
        for key, value in metadata.items():
            if isinstance(value, dict) and value.get("price_per_ml") is not None:
                overrides[key] = MaterialOverride(
                    name=str(value.get("name") or key),
                    price_per_ml=_decimal(value["price_per_ml"], f"{key}.price_per_ml"),
                )

        return cls(
            printer_serial=str(metadata["printer_serial"]),
            default_price_per_ml=_decimal(metadata["price_per_ml"], "price_per_ml"),
            billing_mode=mode,
            material_overrides=overrides,
            device_name=device_name,
        )


@dataclass(frozen=True)
class ChargeLine:
    """One line to post to the billing API."""
    kind: ChargeKind
    description: str
    amount: Decimal
    date_time: str
    linked_event_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "amount": str(self.amount),
            "date_time": self.date_time,
            "linked_event_id": self.linked_event_id,
        }


@dataclass(frozen=True)
class Notification:
    """A decoded usage-event webhook notification."""
    type: str
    log: UsageEvent
    resource_name: Optional[str] = None


def total_amount(lines: List[ChargeLine]) -> Decimal:
    return sum((line.amount for line in lines), Decimal("0.00"))

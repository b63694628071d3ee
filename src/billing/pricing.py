"""
Pricing Engine

Turns a finished print job and its resource's pricing configuration into one
or two charge lines. Pure: no I/O, no clock.

Billing modes:
- default:   volume x (material price if overridden, else default price)
- surcharge: volume x default price as the base line, plus a separate
             line for (material price - default price) x volume when the
             material is overridden and more expensive

All amounts are Decimal, rounded half-up to two places.
"""

from dataclasses import dataclass
from datetime import tzinfo
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from core.config import DEFAULT_CHARGE_TEMPLATE, DEFAULT_SURCHARGE_TEMPLATE
from core.models import (
    BillingMode,
    ChargeKind,
    ChargeLine,
    MaterialOverride,
    PrintJob,
    ResourcePricingConfig,
)
from core.timeutil import format_local

CENTS = Decimal("0.01")
UNKNOWN_DEVICE = "unknown device"


def round_amount(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ChargeTemplates:
    """str.format templates for charge descriptions."""
    base: str = DEFAULT_CHARGE_TEMPLATE
    surcharge: str = DEFAULT_SURCHARGE_TEMPLATE


def resolve_unit_price(
    job: PrintJob,
    pricing: ResourcePricingConfig,
) -> Tuple[Decimal, Optional[MaterialOverride]]:
    """Unit price for a job in default mode, and the override that supplied it."""
    override = pricing.override_for(job.material_code)
    if override is not None:
        return override.price_per_ml, override
    return pricing.default_price_per_ml, None


def compute_charges(
    job: PrintJob,
    pricing: ResourcePricingConfig,
    tz: tzinfo,
    event_id: Optional[int] = None,
    device_name: Optional[str] = None,
    templates: ChargeTemplates = ChargeTemplates(),
) -> List[ChargeLine]:
    """
    Compute the charge lines for a job.

    The first (base) line is linked to `event_id`; a surcharge line never is.
    The charge timestamp is the job's effective end in local time.

    Raises:
        ValueError: if the job has no effective end
    """
    if job.effective_end is None:
        raise ValueError(f"Print job {job.guid} is not finished")

    date_time = format_local(job.effective_end, tz)
    device = device_name or pricing.device_name or UNKNOWN_DEVICE
    base_description = templates.base.format(job_name=job.name, device_name=device)

    if pricing.billing_mode == BillingMode.DEFAULT:
        unit_price, _ = resolve_unit_price(job, pricing)
        return [
            ChargeLine(
                kind=ChargeKind.BASE,
                description=base_description,
                amount=round_amount(job.volume_ml * unit_price),
                date_time=date_time,
                linked_event_id=event_id,
            )
        ]

    lines = [
        ChargeLine(
            kind=ChargeKind.BASE,
            description=base_description,
            amount=round_amount(job.volume_ml * pricing.default_price_per_ml),
            date_time=date_time,
            linked_event_id=event_id,
        )
    ]

    override = pricing.override_for(job.material_code)
    if override is not None:
        delta = override.price_per_ml - pricing.default_price_per_ml
        if delta > 0:
            lines.append(
                ChargeLine(
                    kind=ChargeKind.SURCHARGE,
                    description=templates.surcharge.format(
                        job_name=job.name,
                        device_name=device,
                        volume_ml=format(job.volume_ml.normalize(), "f"),
                        material_name=override.name,
                    ),
                    amount=round_amount(job.volume_ml * delta),
                    date_time=date_time,
                )
            )

    return lines

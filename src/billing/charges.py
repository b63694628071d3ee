"""
Charge Poster

Posts charges for a member to the billing API. A rejected charge is fatal
for the rest of the invocation; lines already posted are not rolled back.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import structlog

from core.errors import BillingPostError
from core.http import ApiClient, response_json
from core.models import ChargeLine

logger = structlog.get_logger()

SUCCESS_CODES = (200, 201, 204)


@dataclass
class ChargeReceipt:
    """Outcome of a posted charge."""
    status_code: int
    charge_id: Optional[int] = None
    amount: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "charge_id": self.charge_id,
            "amount": str(self.amount),
        }


class ChargePoster:
    """Creates charges through the billing API."""

    def __init__(self, api: ApiClient):
        self.api = api

    def post_charge(
        self,
        member_id: int,
        date_time: str,
        description: str,
        amount: Decimal,
        linked_event_id: Optional[int] = None,
    ) -> ChargeReceipt:
        """
        Post a single charge.

        Args:
            member_id: Member to bill
            date_time: Local timestamp, YYYY-MM-DDTHH:MM:SS
            description: Human-readable charge text
            amount: Price, already rounded
            linked_event_id: Usage event to link the charge to (base line only)

        Raises:
            BillingPostError: on transport failure or non-success status
        """
        payload: Dict[str, Any] = {
            "member": member_id,
            "dateTime": date_time,
            "description": description,
            "price": float(amount),
        }
        if linked_event_id is not None:
            payload["resourceLog"] = linked_event_id

        try:
            response = self.api.post("charges", json=payload)
        except httpx.RequestError as e:
            logger.error("charge_post_failed", member_id=member_id, error=str(e))
            raise BillingPostError(f"Billing API unreachable: {e}")

        if response.status_code not in SUCCESS_CODES:
            logger.error(
                "charge_post_failed",
                member_id=member_id,
                status_code=response.status_code,
                amount=str(amount),
            )
            raise BillingPostError(
                f"Failed to create charge: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        body = response_json(response)
        charge_id = body.get("id") if isinstance(body, dict) else None

        logger.info(
            "charge_posted",
            member_id=member_id,
            charge_id=charge_id,
            amount=str(amount),
            linked_event_id=linked_event_id,
        )

        return ChargeReceipt(
            status_code=response.status_code,
            charge_id=charge_id,
            amount=amount,
        )

    def post_lines(self, member_id: int, lines: List[ChargeLine]) -> List[ChargeReceipt]:
        """Post lines in order, stopping at the first failure."""
        return [
            self.post_charge(
                member_id=member_id,
                date_time=line.date_time,
                description=line.description,
                amount=line.amount,
                linked_event_id=line.linked_event_id,
            )
            for line in lines
        ]

"""
Tests for the Charge Poster
"""

import json
from decimal import Decimal

import httpx
import pytest

from billing.charges import ChargePoster
from core.errors import BillingPostError
from core.http import ApiClient
from core.models import ChargeKind, ChargeLine


def make_poster(handler):
    api = ApiClient("https://tracker.test/api/v1/", token="fabman-token",
                    transport=httpx.MockTransport(handler))
    return ChargePoster(api)


def line(amount, linked=None, kind=ChargeKind.BASE):
    return ChargeLine(
        kind=kind,
        description="Formlabs print",
        amount=Decimal(amount),
        date_time="2024-05-06T10:30:00",
        linked_event_id=linked,
    )


class TestPostCharge:
    """Request shape and status handling."""

    def test_payload_shape(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": 555})

        receipt = make_poster(handler).post_charge(
            member_id=7,
            date_time="2024-05-06T10:30:00",
            description='Formlabs print "bracket.form" on Form 3',
            amount=Decimal("1.63"),
            linked_event_id=42,
        )

        assert seen["path"] == "/api/v1/charges"
        assert seen["auth"] == "Bearer fabman-token"
        assert seen["body"] == {
            "member": 7,
            "dateTime": "2024-05-06T10:30:00",
            "description": 'Formlabs print "bracket.form" on Form 3',
            "price": 1.63,
            "resourceLog": 42,
        }
        assert receipt.charge_id == 555
        assert receipt.status_code == 201

    def test_unlinked_charge_omits_resource_log(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": 1})

        make_poster(handler).post_charge(7, "2024-05-06T10:30:00", "surcharge", Decimal("2.00"))
        assert "resourceLog" not in bodies[0]

    @pytest.mark.parametrize("status", [200, 201, 204])
    def test_success_codes(self, status):
        poster = make_poster(lambda request: httpx.Response(status))
        receipt = poster.post_charge(7, "2024-05-06T10:30:00", "x", Decimal("1.00"))
        assert receipt.status_code == status
        assert receipt.charge_id is None

    def test_rejected_charge_raises(self):
        poster = make_poster(lambda request: httpx.Response(422, json={"detail": "bad"}))
        with pytest.raises(BillingPostError) as exc_info:
            poster.post_charge(7, "2024-05-06T10:30:00", "x", Decimal("1.00"))
        assert exc_info.value.status_code == 422
        assert exc_info.value.fatal

    def test_unreachable_billing_api(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(BillingPostError):
            make_poster(handler).post_charge(7, "2024-05-06T10:30:00", "x", Decimal("1.00"))


class TestPostLines:
    """Lines are posted in order and stop at the first failure."""

    def test_stops_at_first_failure(self):
        calls = []

        def handler(request):
            calls.append(json.loads(request.content)["price"])
            if len(calls) == 2:
                return httpx.Response(500)
            return httpx.Response(201, json={"id": len(calls)})

        poster = make_poster(handler)
        with pytest.raises(BillingPostError):
            poster.post_lines(7, [line("1.25", 42), line("1.63"), line("3.00")])

        assert calls == [1.25, 1.63]

    def test_receipts_in_order(self):
        counter = iter(range(100, 200))
        poster = make_poster(lambda request: httpx.Response(201, json={"id": next(counter)}))

        receipts = poster.post_lines(7, [line("1.25", 42), line("1.63", kind=ChargeKind.SURCHARGE)])

        assert [r.charge_id for r in receipts] == [100, 101]
        assert [r.amount for r in receipts] == [Decimal("1.25"), Decimal("1.63")]

"""Tests for provider webhook normalizers."""

import pytest
from passline_schemas import EventKind, POSProvider

from apps.web.pos.exceptions import POSWebhookError
from apps.web.pos.services.normalizers import normalize, payload_digest


class TestSquare:
    """Square order and payment notifications."""

    def test_order_updated(self):
        payload = {
            "type": "order.updated",
            "event_id": "evt-sq-1",
            "merchant_id": "M1",
            "location_id": "LSQ1",
            "data": {
                "type": "order_updated",
                "object": {
                    "order_updated": {
                        "order_id": "sq-order-001",
                        "location_id": "LSQ1",
                        "state": "OPEN",
                        "version": 3,
                    }
                },
            },
        }

        [event] = normalize("square", payload)

        assert event.provider == POSProvider.SQUARE
        assert event.external_event_id == "evt-sq-1"
        assert event.event_kind == EventKind.ORDER
        assert event.external_order_id == "sq-order-001"
        assert event.location_id == "LSQ1"
        assert event.status_hint == "OPEN"
        assert event.payload == payload

    def test_payment_updated(self):
        payload = {
            "type": "payment.updated",
            "event_id": "evt-sq-2",
            "data": {
                "object": {
                    "payment": {
                        "id": "pay-1",
                        "order_id": "sq-order-001",
                        "location_id": "LSQ1",
                        "status": "COMPLETED",
                        "amount_money": {"amount": 1000, "currency": "USD"},
                    }
                }
            },
        }

        [event] = normalize("square", payload)

        assert event.event_kind == EventKind.PAYMENT
        assert event.payment_id == "pay-1"
        assert event.external_order_id == "sq-order-001"
        assert event.status_hint == "COMPLETED"
        assert event.amount_cents == 1000
        assert event.currency == "USD"

    def test_unknown_type(self):
        [event] = normalize("square", {"type": "inventory.count.updated", "event_id": "e"})

        assert event.event_kind == EventKind.UNKNOWN
        assert event.external_order_id is None

    def test_missing_event_id_uses_digest(self):
        payload = {"type": "order.updated", "data": {}}

        [event] = normalize("square", payload)

        assert event.external_event_id == payload_digest(payload)


class TestClover:
    """Clover groups sub-events per merchant."""

    def test_fans_out_per_sub_event(self):
        payload = {
            "appId": "APP1",
            "merchants": {
                "MCLV1": [
                    {"objectId": "O:ORDER1", "type": "UPDATE", "ts": 1709294400000},
                    {"objectId": "P:PAY1", "type": "CREATE", "ts": 1709294400001},
                ],
                "MCLV2": [
                    {"objectId": "O:ORDER2", "type": "CREATE", "ts": 1709294400002},
                ],
            },
        }

        events = normalize("clover", payload)

        assert len(events) == 3
        order_event, payment_event, other = events
        assert order_event.event_kind == EventKind.ORDER
        assert order_event.external_order_id == "ORDER1"
        assert order_event.location_id == "MCLV1"
        assert order_event.external_event_id == "MCLV1:UPDATE:O:ORDER1:1709294400000"
        assert payment_event.event_kind == EventKind.PAYMENT
        assert payment_event.payment_id == "PAY1"
        assert payment_event.external_order_id is None
        assert other.location_id == "MCLV2"

    def test_prefix_on_type(self):
        payload = {"merchants": {"M": [{"objectId": "ORDER9", "type": "O:UPDATE", "ts": 1}]}}

        [event] = normalize("clover", payload)

        assert event.event_kind == EventKind.ORDER
        assert event.external_order_id == "ORDER9"

    def test_missing_merchants(self):
        with pytest.raises(POSWebhookError):
            normalize("clover", {"appId": "APP1"})

    def test_hco_approved(self):
        payload = {
            "Type": "PAYMENT",
            "Id": "hco-evt-1",
            "MerchantId": "MCLV1",
            "Status": "APPROVED",
            "Data": "CLV-ORDER-1",
        }

        [event] = normalize("clover", payload, channel="hco")

        assert event.external_event_id == "hco-evt-1"
        assert event.event_kind == EventKind.PAYMENT
        assert event.external_order_id == "CLV-ORDER-1"
        assert event.status_hint == "COMPLETED"

    def test_hco_declined_is_not_routable(self):
        payload = {"Id": "hco-evt-2", "MerchantId": "MCLV1", "Status": "DECLINED"}

        [event] = normalize("clover", payload, channel="hco")

        assert event.event_kind == EventKind.UNKNOWN


class TestToast:
    """Toast order and payment notifications."""

    def test_order_event(self):
        payload = {
            "eventType": "ORDER_UPDATED",
            "eventId": "toast-evt-1",
            "restaurantGuid": "rest-guid-001",
            "data": {"orderGuid": "toast-order-1"},
        }

        [event] = normalize("toast", payload)

        assert event.event_kind == EventKind.ORDER
        assert event.external_order_id == "toast-order-1"
        assert event.location_id == "rest-guid-001"

    def test_payment_event(self):
        payload = {
            "eventType": "PAYMENT_UPDATED",
            "guid": "toast-evt-2",
            "details": {
                "restaurantGuid": "rest-guid-001",
                "orderGuid": "toast-order-1",
                "paymentGuid": "pay-9",
                "paymentStatus": "COMPLETED",
            },
        }

        [event] = normalize("toast", payload)

        assert event.external_event_id == "toast-evt-2"
        assert event.event_kind == EventKind.PAYMENT
        assert event.payment_id == "pay-9"
        assert event.location_id == "rest-guid-001"


class TestDispatch:
    """Tests for normalize() dispatch."""

    def test_mock_payload(self):
        [event] = normalize(
            "mock",
            {
                "event_type": "payment.completed",
                "event_id": "m-1",
                "order_id": "o-1",
                "location_id": "mock-location",
                "status": "COMPLETED",
                "amount": "450",
            },
        )

        assert event.event_kind == EventKind.PAYMENT
        assert event.amount_cents == 450

    def test_unknown_channel(self):
        with pytest.raises(POSWebhookError):
            normalize("square", {}, channel="hco")

    def test_non_object_payload(self):
        with pytest.raises(POSWebhookError):
            normalize("toast", ["not", "an", "object"])

    def test_digest_is_order_independent(self):
        assert payload_digest({"a": 1, "b": 2}) == payload_digest({"b": 2, "a": 1})

"""Tests for event validation, shaping and submission."""

import asyncio
import json

import httpx
import pytest

from services.conversion.app.commands import parse_value, shape_event, submit
from services.conversion.app.context import ClientContext
from services.conversion.app.events import COMMERCE_FIELDS, ConversionEventName, ConversionRequest
from services.conversion.app.provider import ConversionsClient
from services.shared.errors import ConfigurationError, ValidationError

CTX = ClientContext(ip="203.0.113.7", user_agent="pytest", ttclid=None, ttp=None, url="https://shop.test")

ORDER_BODY = {
    "value": 48,
    "currency": "USD",
    "content_id": "prod-001",
    "content_type": "product",
    "content_name": "Whipped Tallow Balm 4oz",
    "email": "Jane@X.com",
}


class RecordingProvider:
    def __init__(self, status=200, body=None):
        self.calls = []
        self.status = status
        self.body = body if body is not None else {"code": 0, "message": "OK"}

    def __call__(self, request):
        self.calls.append(json.loads(request.content))
        return httpx.Response(self.status, json=self.body)


def _client(conversion_settings, provider):
    return ConversionsClient(conversion_settings, transport=httpx.MockTransport(provider))


@pytest.mark.parametrize("event", [ConversionEventName.PLACE_AN_ORDER, ConversionEventName.ADD_TO_CART])
@pytest.mark.parametrize("missing", COMMERCE_FIELDS)
def test_each_commerce_field_is_required(event, missing):
    body = ConversionRequest(**{k: v for k, v in ORDER_BODY.items() if k != missing})

    with pytest.raises(ValidationError) as exc_info:
        shape_event(event, body, CTX, "flat")

    assert exc_info.value.fields == [missing]
    assert exc_info.value.message == f"Missing required field: {missing}"


def test_blank_string_counts_as_missing():
    body = ConversionRequest(**{**ORDER_BODY, "currency": "  "})
    with pytest.raises(ValidationError) as exc_info:
        shape_event(ConversionEventName.ADD_TO_CART, body, CTX, "flat")
    assert exc_info.value.fields == ["currency"]


def test_registration_needs_no_commerce_fields():
    event_id, payload = shape_event(ConversionEventName.COMPLETE_REGISTRATION, ConversionRequest(), CTX, "flat")

    assert payload["event"] == "CompleteRegistration"
    assert payload["event_id"] == event_id
    assert "value" not in payload


@pytest.mark.parametrize("raw, parsed", [(0, 0.0), ("0", 0.0), (48, 48.0), ("19.99", 19.99), (None, None), ("", None)])
def test_value_accepted(raw, parsed):
    assert parse_value(raw) == parsed


@pytest.mark.parametrize("raw", [-1, "-0.01", "abc", "12abc", True, "nan", "inf", [1]])
def test_value_rejected(raw):
    with pytest.raises(ValidationError) as exc_info:
        parse_value(raw)
    assert exc_info.value.fields == ["value"]


def test_value_zero_order_is_sent():
    body = ConversionRequest(**{**ORDER_BODY, "value": 0})
    _, payload = shape_event(ConversionEventName.PLACE_AN_ORDER, body, CTX, "flat")
    assert payload["value"] == 0.0


def test_event_id_is_honored_or_generated():
    body = ConversionRequest(**ORDER_BODY, event_id="evt-fixed")
    assert shape_event(ConversionEventName.ADD_TO_CART, body, CTX, "flat")[0] == "evt-fixed"

    generated, payload = shape_event(ConversionEventName.ADD_TO_CART, ConversionRequest(**ORDER_BODY), CTX, "flat")
    assert len(generated) == 36
    assert payload["event_id"] == generated


def test_submit_returns_provider_response(conversion_settings):
    provider = RecordingProvider(body={"code": 0, "message": "OK", "request_id": "r-9"})
    client = _client(conversion_settings, provider)
    body = ConversionRequest(**ORDER_BODY, event_id="evt-1")

    result = asyncio.run(submit(ConversionEventName.PLACE_AN_ORDER, body, CTX, client))

    assert result["ok"] is True
    assert result["event"] == "PlaceAnOrder"
    assert result["event_id"] == "evt-1"
    assert result["tiktok"]["request_id"] == "r-9"
    assert "timestamp" in result
    assert provider.calls[0]["event_id"] == "evt-1"
    assert "Jane@X.com" not in json.dumps(provider.calls[0])


def test_same_event_id_is_forwarded_twice_with_identical_payload(conversion_settings):
    provider = RecordingProvider()
    client = _client(conversion_settings, provider)
    body = ConversionRequest(**ORDER_BODY, event_id="evt-dup")

    for _ in range(2):
        asyncio.run(submit(ConversionEventName.ADD_TO_CART, body, CTX, client, event_time=1735689600))

    assert len(provider.calls) == 2
    assert json.dumps(provider.calls[0], sort_keys=True) == json.dumps(provider.calls[1], sort_keys=True)


def test_validation_runs_before_config_check():
    with pytest.raises(ValidationError):
        asyncio.run(submit(ConversionEventName.ADD_TO_CART, ConversionRequest(), CTX, None))


def test_missing_client_is_configuration_error():
    with pytest.raises(ConfigurationError):
        asyncio.run(submit(ConversionEventName.COMPLETE_REGISTRATION, ConversionRequest(), CTX, None))


def test_nested_mode_and_pixel_code(conversion_settings):
    provider = RecordingProvider()
    client = _client(conversion_settings, provider)

    asyncio.run(
        submit(
            ConversionEventName.PLACE_AN_ORDER,
            ConversionRequest(**ORDER_BODY),
            CTX,
            client,
            mode="nested",
            pixel_code="PIXEL1",
        )
    )

    sent = provider.calls[0]
    assert sent["pixel_code"] == "PIXEL1"
    assert sent["properties"]["content_id"] == "prod-001"
    assert sent["user"]["ip"] == "203.0.113.7"

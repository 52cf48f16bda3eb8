import json
import uuid
from typing import Any, Callable, List

import httpx
import pytest

from govee_lan_gateway.capabilities import ControlCapability
from govee_lan_gateway.cloud import (
    API_KEY_HEADER,
    CloudClient,
    CloudError,
    InvalidCapabilityError,
)
from govee_lan_gateway.config import Config

_DEVICES_BODY = {
    "code": 200,
    "message": "success",
    "data": [
        {
            "sku": "H6076",
            "device": "AA:BB:CC:DD:EE:FF:00:11",
            "deviceName": "Floor Lamp",
            "type": "devices.types.light",
            "capabilities": [
                {
                    "type": "devices.capabilities.on_off",
                    "instance": "powerSwitch",
                    "parameters": {
                        "dataType": "ENUM",
                        "options": [{"name": "on", "value": 1}, {"name": "off", "value": 0}],
                    },
                },
                {
                    "type": "devices.capabilities.range",
                    "instance": "brightness",
                    "parameters": {
                        "unit": "unit.percent",
                        "dataType": "INTEGER",
                        "range": {"min": 1, "max": 100, "precision": 1},
                    },
                },
                {
                    "type": "devices.capabilities.segment_color_setting",
                    "instance": "segmentedColorRgb",
                    "parameters": {
                        "dataType": "STRUCT",
                        "fields": [
                            {
                                "fieldName": "segment",
                                "dataType": "Array",
                                "size": {"min": 1, "max": 15},
                                "elementRange": {"min": 0, "max": 14},
                                "elementType": "INTEGER",
                                "required": True,
                            }
                        ],
                    },
                },
            ],
        }
    ],
}


def _client(handler: Callable[[httpx.Request], httpx.Response], **overrides: Any) -> CloudClient:
    config = Config(govee_api_key="secret-key", **overrides)
    return CloudClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_list_devices_parses_capabilities() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_DEVICES_BODY)

    devices = await _client(handler).list_devices()

    assert seen[0].method == "GET"
    assert str(seen[0].url) == "https://openapi.api.govee.com/router/api/v1/user/devices"
    assert seen[0].headers[API_KEY_HEADER] == "secret-key"
    assert len(devices) == 1
    device = devices[0]
    assert device.device_name == "Floor Lamp"
    assert [cap.instance for cap in device.capabilities] == ["powerSwitch", "brightness", "segmentedColorRgb"]
    assert device.capabilities[1].parameters.range is not None
    assert device.capabilities[1].parameters.range.max == 100
    segment = device.capabilities[2].parameters.composite_fields
    assert segment is not None and segment[0].element_range is not None


@pytest.mark.asyncio
async def test_device_serializes_with_wire_names() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_DEVICES_BODY)

    devices = await _client(handler).list_devices()
    payload = devices[0].to_dict()

    assert payload["deviceName"] == "Floor Lamp"
    assert payload["capabilities"][0]["parameters"]["options"][0] == {"name": "on", "value": 1}
    field = payload["capabilities"][2]["parameters"]["fields"][0]
    assert field["fieldName"] == "segment"
    assert field["elementRange"] == {"min": 0, "max": 14}
    assert "range" not in payload["capabilities"][0]["parameters"]


@pytest.mark.asyncio
async def test_non_200_status_carries_body_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid api key")

    with pytest.raises(CloudError) as excinfo:
        await _client(handler).list_devices()

    assert excinfo.value.status == 401
    assert excinfo.value.upstream
    assert "401" in str(excinfo.value)
    assert "invalid api key" in str(excinfo.value)


@pytest.mark.asyncio
async def test_application_error_code_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 429, "message": "rate limited", "data": []})

    with pytest.raises(CloudError) as excinfo:
        await _client(handler).list_devices()

    assert excinfo.value.code == 429
    assert "rate limited" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unparseable_body_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(CloudError):
        await _client(handler).list_devices()


@pytest.mark.asyncio
async def test_transport_failure_is_not_upstream() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CloudError) as excinfo:
        await _client(handler).list_devices()

    assert excinfo.value.status is None
    assert not excinfo.value.upstream


@pytest.mark.asyncio
async def test_control_device_posts_request_envelope() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 200, "message": "success"})

    capability = ControlCapability("devices.capabilities.on_off", "powerSwitch", 1)
    await _client(handler).control_device("H6076", "AA:BB", capability)

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/router/api/v1/device/control"
    assert request.headers["content-type"] == "application/json"
    body = json.loads(request.content)
    uuid.UUID(body["requestId"])
    assert body["payload"] == {
        "sku": "H6076",
        "device": "AA:BB",
        "capability": {"type": "devices.capabilities.on_off", "instance": "powerSwitch", "value": 1},
    }


@pytest.mark.asyncio
async def test_control_device_uses_fresh_request_ids() -> None:
    ids: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        ids.append(json.loads(request.content)["requestId"])
        return httpx.Response(200, json={"code": 200, "message": "success"})

    client = _client(handler)
    capability = ControlCapability("devices.capabilities.range", "brightness", 40)
    await client.control_device("H6076", "AA:BB", capability)
    await client.control_device("H6076", "AA:BB", capability)
    assert len(set(ids)) == 2


@pytest.mark.asyncio
async def test_control_device_rejected_by_vendor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 400, "message": "device not found"})

    capability = ControlCapability("devices.capabilities.on_off", "powerSwitch", 0)
    with pytest.raises(CloudError) as excinfo:
        await _client(handler).control_device("H6076", "AA:BB", capability)
    assert excinfo.value.code == 400


@pytest.mark.asyncio
async def test_invalid_capability_makes_no_request() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 200})

    with pytest.raises(InvalidCapabilityError):
        await _client(handler).control_device("H6076", "AA:BB", ControlCapability("", "powerSwitch", 1))
    assert seen == []


@pytest.mark.asyncio
async def test_base_url_override() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 200, "message": "success", "data": []})

    devices = await _client(handler, cloud_base_url="http://mock.local").list_devices()
    assert devices == []
    assert seen[0].url.host == "mock.local"


@pytest.mark.asyncio
async def test_sparse_capability_schema_still_parses() -> None:
    sparse = {
        "code": 200,
        "message": "success",
        "data": [
            {
                "sku": "H7060",
                "device": "AA:BB:CC:DD:EE:FF:00:22",
                "capabilities": [
                    {
                        "type": "devices.capabilities.range",
                        "instance": "brightness",
                        "parameters": {"dataType": "INTEGER", "range": {"precision": 1}},
                    },
                    {
                        "type": "devices.capabilities.music_setting",
                        "instance": "musicMode",
                        "parameters": {
                            "dataType": "STRUCT",
                            "fields": [{"dataType": "ENUM", "options": [{"value": 1}]}],
                        },
                    },
                ],
            }
        ],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=sparse)

    devices = await _client(handler).list_devices()

    capabilities = devices[0].capabilities
    brightness_range = capabilities[0].parameters.range
    assert brightness_range is not None
    assert (brightness_range.min, brightness_range.max) == (0, 0)
    fields = capabilities[1].parameters.composite_fields
    assert fields is not None
    assert fields[0].field_name == ""
    assert fields[0].options is not None and fields[0].options[0].name == ""

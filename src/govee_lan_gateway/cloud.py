"""Client for the Govee cloud (OpenAPI) REST endpoints."""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .capabilities import ControlCapability
from .config import Config
from .logging import get_logger
from .metrics import record_cloud_request

DEVICE_TYPE_LIGHT = "devices.types.light"
DEVICE_TYPE_AIR_PURIFIER = "devices.types.air_purifier"
DEVICE_TYPE_THERMOMETER = "devices.types.thermometer"
DEVICE_TYPE_SOCKET = "devices.types.socket"
DEVICE_TYPE_SENSOR = "devices.types.sensor"
DEVICE_TYPE_HEATER = "devices.types.heater"
DEVICE_TYPE_HUMIDIFIER = "devices.types.humidifier"
DEVICE_TYPE_DEHUMIDIFIER = "devices.types.dehumidifier"
DEVICE_TYPE_ICE_MAKER = "devices.types.ice_maker"
DEVICE_TYPE_AROMA_DIFFUSER = "devices.types.aroma_diffuser"
DEVICE_TYPE_BOX = "devices.types.box"

DEVICES_PATH = "/router/api/v1/user/devices"
CONTROL_PATH = "/router/api/v1/device/control"
API_KEY_HEADER = "Govee-API-Key"


class CloudError(Exception):
    """Raised when the cloud API call fails.

    ``status`` is the HTTP status when a response arrived, ``code`` the
    application code from the response body when one was parsed.
    """

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def upstream(self) -> bool:
        """True when the vendor answered, as opposed to a transport failure."""

        return self.status is not None


class InvalidCapabilityError(ValueError):
    """Raised when a control capability lacks its type or instance."""


def validate_capability(capability: ControlCapability) -> None:
    if not capability.type or not capability.instance:
        raise InvalidCapabilityError("invalid capability: type and instance are required")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ParameterRange(_WireModel):
    min: int = 0
    max: int = 0
    precision: int = 1


class ParameterSize(_WireModel):
    min: int = 0
    max: int = 0


class ParameterOption(_WireModel):
    name: str = ""
    value: Any = None


class ParameterField(_WireModel):
    field_name: str = Field(default="", alias="fieldName")
    data_type: str = Field(default="", alias="dataType")
    required: bool = False
    size: Optional[ParameterSize] = None
    element_range: Optional[ParameterSize] = Field(default=None, alias="elementRange")
    element_type: Optional[str] = Field(default=None, alias="elementType")
    options: Optional[List[ParameterOption]] = None
    range: Optional[ParameterRange] = None
    unit: Optional[str] = None


class CapabilityParameters(_WireModel):
    """Descriptive schema of the values a capability accepts."""

    unit: Optional[str] = None
    data_type: str = Field(default="", alias="dataType")
    options: Optional[List[ParameterOption]] = None
    range: Optional[ParameterRange] = None
    composite_fields: Optional[List[ParameterField]] = Field(default=None, alias="fields")


class Capability(_WireModel):
    type: str
    instance: str
    parameters: CapabilityParameters = Field(default_factory=CapabilityParameters)


class Device(_WireModel):
    """A device as reported by the cloud device listing."""

    sku: str
    device: str
    device_name: str = Field(default="", alias="deviceName")
    type: str = ""
    capabilities: List[Capability] = Field(default_factory=list)


class DeviceListResponse(_WireModel):
    code: int
    message: str = ""
    data: List[Device] = Field(default_factory=list)


class ControlResult(_WireModel):
    code: int
    message: str = ""


class CloudClient:
    """Thin async wrapper over the device list and control endpoints."""

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.logger = get_logger("govee.cloud")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.cloud_base_url,
            timeout=config.cloud_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            API_KEY_HEADER: self.config.govee_api_key or "",
        }

    async def _request(self, operation: str, method: str, path: str, body: Optional[bytes] = None) -> bytes:
        url = f"{self.config.cloud_base_url}{path}"
        self.logger.info("Making request to Govee API", extra={"method": method, "url": url})
        try:
            response = await self._client.request(method, url, headers=self._headers(), content=body)
        except httpx.HTTPError as exc:
            record_cloud_request(operation, "transport_error")
            raise CloudError(f"making request to Govee API: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            record_cloud_request(operation, "http_error")
            self.logger.warning(
                "Govee API error response",
                extra={"status": response.status_code, "body": response.text},
            )
            raise CloudError(
                f"govee api returned status {response.status_code}: {response.text}",
                status=response.status_code,
            )
        return response.content

    async def list_devices(self) -> List[Device]:
        """Fetch every device on the account together with its capabilities."""

        body = await self._request("list_devices", "GET", DEVICES_PATH)
        try:
            parsed = DeviceListResponse.model_validate_json(body)
        except ValidationError as exc:
            record_cloud_request("list_devices", "invalid_body")
            self.logger.warning("Failed to parse device list", extra={"body": body.decode("utf-8", "replace")})
            raise CloudError(f"parsing response body: {exc}", status=httpx.codes.OK) from exc

        if parsed.code != 200:
            record_cloud_request("list_devices", "api_error")
            raise CloudError(
                f"govee api error: {parsed.message} (code: {parsed.code})",
                status=httpx.codes.OK,
                code=parsed.code,
            )

        record_cloud_request("list_devices", "success")
        self.logger.info("Fetched devices", extra={"count": len(parsed.data)})
        return parsed.data

    async def control_device(self, sku: str, device: str, capability: ControlCapability) -> None:
        """Send one capability change through the cloud."""

        validate_capability(capability)
        request = {
            "requestId": str(uuid.uuid4()),
            "payload": {
                "sku": sku,
                "device": device,
                "capability": capability.to_dict(),
            },
        }
        try:
            body = json.dumps(request).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CloudError(f"marshaling request body: {exc}") from exc
        self.logger.debug("Control request payload", extra={"payload": request})

        response_body = await self._request("control", "POST", CONTROL_PATH, body)
        try:
            parsed = ControlResult.model_validate_json(response_body)
        except ValidationError as exc:
            record_cloud_request("control", "invalid_body")
            raise CloudError(f"parsing response body: {exc}", status=httpx.codes.OK) from exc

        if parsed.code != 200:
            record_cloud_request("control", "api_error")
            self.logger.warning(
                "Govee API rejected control request",
                extra={"body": response_body.decode("utf-8", "replace")},
            )
            raise CloudError(
                f"govee api error: {parsed.message} (code: {parsed.code})",
                status=httpx.codes.OK,
                code=parsed.code,
            )

        record_cloud_request("control", "success")
        self.logger.info("Controlled device via cloud API", extra={"device_id": device, "sku": sku})

"""HTTP API server for device listing and control."""

from __future__ import annotations

import asyncio
import time
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from .capabilities import ControlCapability
from .cloud import CloudError, InvalidCapabilityError
from .config import Config
from .control import LanControlError
from .discovery import DiscoveryError
from .gateway import DeviceGateway
from .logging import get_logger, redact_mapping
from .metrics import METRICS_CONTENT_TYPE, latest_metrics, observe_request

API_PREFIX = "/api/v1"
CONTROL_SUCCESS_MESSAGE = "Device control command sent successfully"

_ERROR_TITLES = {
    status.HTTP_400_BAD_REQUEST: "Bad request",
    status.HTTP_404_NOT_FOUND: "Not found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "Method not allowed",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "Internal server error",
}


class CapabilityIn(BaseModel):
    """Capability part of a control request."""

    type: str = ""
    instance: str = ""
    value: Any = None


class ControlIn(BaseModel):
    """Payload for controlling a device."""

    sku: str = ""
    device: str = ""
    capability: CapabilityIn = Field(default_factory=CapabilityIn)


def error_response(code: int, description: Optional[str] = None) -> JSONResponse:
    """Build the ``{error, description, code}`` error envelope."""

    content: Dict[str, Any] = {
        "error": _ERROR_TITLES.get(code) or HTTPStatus(code).phrase,
        "code": code,
    }
    if description:
        content["description"] = description
    return JSONResponse(status_code=code, content=content)


def _method_not_allowed_description(exc: StarletteHTTPException) -> Optional[str]:
    allow = (exc.headers or {}).get("Allow", "")
    methods = [method.strip() for method in allow.split(",") if method.strip() and method.strip() != "HEAD"]
    if not methods:
        return None
    return f"Only {' or '.join(methods)} method is allowed for this endpoint"


def create_app(config: Config, gateway: DeviceGateway) -> FastAPI:
    """Create and configure a FastAPI application."""

    logger = get_logger("govee.api")
    request_logger = get_logger("govee.api.middleware")
    app = FastAPI(
        title="Govee LAN Gateway API",
        docs_url="/docs" if config.api_docs else None,
        redoc_url="/redoc" if config.api_docs else None,
        openapi_url="/openapi.json" if config.api_docs else None,
    )

    @app.middleware("http")
    async def _logging_middleware(request: Request, call_next: Callable[..., Any]) -> Response:
        start = time.perf_counter()
        redacted_headers = redact_mapping(dict(request.headers))
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled API error", extra={"path": request.url.path})
            response = error_response(status.HTTP_500_INTERNAL_SERVER_ERROR)
        duration_seconds = time.perf_counter() - start
        path_template = getattr(request.scope.get("route"), "path", request.url.path)
        observe_request(request.method, path_template, response.status_code, duration_seconds)
        request_logger.info(
            "Handled request",
            extra={
                "method": request.method,
                "path": path_template,
                "status": response.status_code,
                "duration_ms": round(duration_seconds * 1000, 2),
                "client": request.client.host if request.client else None,
                "headers": redacted_headers,
            },
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Govee-API-Key"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        request_logger.warning(
            "API error",
            extra={"path": request.url.path, "status": exc.status_code, "detail": exc.detail},
        )
        description: Optional[str] = None
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            description = _method_not_allowed_description(exc)
        elif isinstance(exc.detail, str) and exc.detail != HTTPStatus(exc.status_code).phrase:
            description = exc.detail
        return error_response(exc.status_code, description)

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_logger.warning(
            "Validation error",
            extra={"path": request.url.path, "errors": exc.errors()},
        )
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body format")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=latest_metrics(), media_type=METRICS_CONTENT_TYPE)

    @app.get(f"{API_PREFIX}/devices")
    async def list_devices() -> dict[str, Any]:
        try:
            devices = await gateway.list_devices()
        except CloudError as exc:
            logger.error("Error fetching devices", extra={"error": str(exc)})
            description = str(exc) if exc.upstream else "Failed to fetch devices from Govee API"
            raise HTTPException(status_code=500, detail=description) from exc
        return {"success": True, "data": [device.to_dict() for device in devices]}

    @app.get(f"{API_PREFIX}/devices/lan")
    async def list_lan_devices() -> dict[str, Any]:
        try:
            devices = await gateway.discover_lan()
        except DiscoveryError as exc:
            logger.error("Error discovering LAN devices", extra={"error": str(exc)})
            raise HTTPException(status_code=500, detail="Failed to discover LAN devices") from exc
        return {"success": True, "data": [device.to_dict() for device in devices]}

    @app.get(f"{API_PREFIX}/devices/lan/status")
    async def lan_device_status(ip: str = Query(default="")) -> dict[str, Any]:
        if not ip:
            raise HTTPException(status_code=400, detail="Missing required query parameter: ip")
        try:
            device_status = await gateway.lan_status(ip)
        except LanControlError as exc:
            logger.error("Error querying LAN device status", extra={"ip": ip, "error": str(exc)})
            raise HTTPException(status_code=500, detail=f"Failed to query device status: {exc}") from exc
        return {"success": True, "data": device_status.to_dict()}

    @app.post(f"{API_PREFIX}/devices/control")
    async def control_device(payload: ControlIn) -> dict[str, Any]:
        logger.info("Received control request", extra={"payload": payload.model_dump()})
        if not payload.sku or not payload.device:
            raise HTTPException(status_code=400, detail="Missing required fields: sku and device")
        if not payload.capability.type or not payload.capability.instance:
            raise HTTPException(
                status_code=400,
                detail="Missing required capability fields: type and instance",
            )
        capability = ControlCapability(
            type=payload.capability.type,
            instance=payload.capability.instance,
            value=payload.capability.value,
        )
        try:
            path = await gateway.control(payload.sku, payload.device, capability)
        except InvalidCapabilityError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CloudError as exc:
            logger.error("Error controlling device", extra={"device_id": payload.device, "error": str(exc)})
            description = str(exc) if exc.upstream else "Failed to control device"
            raise HTTPException(status_code=500, detail=description) from exc
        logger.info("Control request completed", extra={"device_id": payload.device, "path": path})
        return {"success": True, "message": CONTROL_SUCCESS_MESSAGE}

    return app


class ApiService:
    """Lifecycle wrapper for the FastAPI/uvicorn server."""

    def __init__(self, config: Config, gateway: DeviceGateway) -> None:
        self.config = config
        self.gateway = gateway
        self.logger = get_logger("govee.api")
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        if self._server:
            return
        app = create_app(self.config, self.gateway)
        uvicorn_config = uvicorn.Config(
            app,
            host=self.config.api_host,
            port=self.config.api_port,
            log_config=None,
            loop="asyncio",
        )
        self._server = uvicorn.Server(config=uvicorn_config)
        self._server_task = asyncio.create_task(self._server.serve())
        self.logger.info("API server starting", extra={"port": self.config.api_port})

    async def stop(self) -> None:
        if not self._server:
            return
        self.logger.info("Stopping API server")
        self._server.should_exit = True
        if self._server_task:
            await self._server_task
        self._server = None
        self._server_task = None

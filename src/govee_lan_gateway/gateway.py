"""Device gateway choosing between LAN and cloud control."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from .capabilities import ControlCapability, translate
from .cloud import CloudClient, Device, validate_capability
from .config import Config
from .control import LanControlError, LanController
from .discovery import DiscoveryError, discover
from .logging import get_logger
from .metrics import record_control_path, record_lan_fallback
from .protocol import ControlResponse, ScanResult

DiscoverFn = Callable[[Config, Optional[float]], Awaitable[List[ScanResult]]]

PATH_LAN = "lan"
PATH_CLOUD = "cloud"


class DeviceGateway:
    """Route device listing and control to the LAN or cloud path.

    The gateway holds no per-request state; every discovery and every LAN
    command uses fresh sockets. Scans are serialized because they share the
    fixed reply port.
    """

    def __init__(
        self,
        config: Config,
        cloud: CloudClient,
        controller: Optional[LanController] = None,
        discover_fn: Optional[DiscoverFn] = None,
    ) -> None:
        self.config = config
        self.cloud = cloud
        self.controller = controller or LanController(config)
        self._discover = discover_fn or discover
        self._scan_lock = asyncio.Lock()
        self.logger = get_logger("govee.gateway")

    async def list_devices(self) -> List[Device]:
        """List devices from the cloud; LAN scans carry no capability data."""

        return await self.cloud.list_devices()

    async def discover_lan(self, timeout: Optional[float] = None) -> List[ScanResult]:
        return await self._scan(timeout)

    async def lan_status(self, ip: str) -> ControlResponse:
        return await self.controller.get_status(ip)

    async def _scan(self, timeout: Optional[float]) -> List[ScanResult]:
        async with self._scan_lock:
            return await self._discover(self.config, timeout)

    async def control(self, sku: str, device_id: str, capability: ControlCapability) -> str:
        """Apply ``capability`` to a device and return the path that did it.

        LAN is tried first when enabled. The first scan response (in receive
        order) carrying ``device_id`` is the only LAN target attempted; any
        LAN failure falls back to the cloud, whose errors propagate.
        """

        validate_capability(capability)
        log_extra = {"device_id": device_id, "sku": sku, "capability": capability.type}

        if self.config.lan_enabled:
            if await self._try_lan(device_id, capability, log_extra):
                record_control_path(PATH_LAN)
                return PATH_LAN

        await self.cloud.control_device(sku, device_id, capability)
        record_control_path(PATH_CLOUD)
        return PATH_CLOUD

    async def _try_lan(self, device_id: str, capability: ControlCapability, log_extra: dict) -> bool:
        try:
            devices = await self._scan(self.config.control_discovery_timeout)
        except DiscoveryError as exc:
            self.logger.warning(
                "Failed to discover LAN devices, falling back to cloud API",
                extra={**log_extra, "error": str(exc)},
            )
            record_lan_fallback("discovery_error")
            return False

        target = next((device for device in devices if device.device == device_id), None)
        if target is None:
            self.logger.info("Device not found on LAN, using cloud API", extra=log_extra)
            record_lan_fallback("not_found")
            return False

        command = translate(capability)
        if command is None:
            self.logger.info(
                "Capability has no LAN equivalent, falling back to cloud API",
                extra={**log_extra, "instance": capability.instance},
            )
            record_lan_fallback("unsupported")
            return False

        try:
            await command.apply(self.controller, target.ip)
        except LanControlError as exc:
            self.logger.warning(
                "Failed to control device via LAN, falling back to cloud API",
                extra={**log_extra, "ip": target.ip, "error": str(exc)},
            )
            record_lan_fallback("control_error")
            return False

        self.logger.info("Controlled device via LAN", extra={**log_extra, "ip": target.ip})
        return True

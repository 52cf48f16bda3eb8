"""One-shot LAN control of Govee devices."""

from __future__ import annotations

import asyncio
import socket
import time
from typing import Any, Mapping, Optional, Tuple

from .config import Config
from .logging import get_logger
from .metrics import observe_lan_command
from .protocol import (
    CONTROL_COMMANDS,
    Color,
    ControlRequest,
    ControlResponse,
    ProtocolError,
    decode_control_response,
    encode_message,
)


class LanControlError(Exception):
    """Base class for LAN control failures."""

    def __init__(self, ip: str, message: str) -> None:
        super().__init__(f"{message} ({ip})")
        self.ip = ip


class LanResolveError(LanControlError):
    """The device address could not be resolved."""


class LanConnectError(LanControlError):
    """A UDP endpoint for the device could not be created."""


class LanEncodeError(LanControlError):
    """The control request could not be serialized."""


class LanSendError(LanControlError):
    """Writing the control request failed."""


class LanReceiveError(LanControlError):
    """Reading the device reply failed."""


class LanTimeoutError(LanReceiveError):
    """The device did not reply within the status timeout."""


class LanDecodeError(LanControlError):
    """The device reply could not be decoded."""


def clamp(value: int, minimum: int, maximum: int) -> int:
    if value < minimum:
        return minimum
    if value > maximum:
        return maximum
    return value


class _ControlProtocol(asyncio.DatagramProtocol):
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.reply: asyncio.Future[bytes] = loop.create_future()

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        if not self.reply.done():
            self.reply.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.reply.done():
            self.reply.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.reply.done():
            if exc:
                self.reply.set_exception(exc)
            else:
                self.reply.cancel()


class LanController:
    """Send single control datagrams to devices on port 4003.

    Every call opens a fresh UDP endpoint and closes it before returning.
    Nothing is retried.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.port = config.device_control_port
        self.status_timeout = config.device_status_timeout
        self.logger = get_logger("govee.lan")

    async def turn_on(self, ip: str) -> None:
        await self.request(ip, ControlRequest.turn(True))

    async def turn_off(self, ip: str) -> None:
        await self.request(ip, ControlRequest.turn(False))

    async def set_brightness(self, ip: str, brightness: int) -> None:
        await self.request(ip, ControlRequest.brightness(clamp(brightness, 1, 100)))

    async def set_color(self, ip: str, r: int, g: int, b: int) -> None:
        color = Color(r=clamp(r, 0, 255), g=clamp(g, 0, 255), b=clamp(b, 0, 255))
        await self.request(ip, ControlRequest.color(color))

    async def get_status(self, ip: str) -> ControlResponse:
        response = await self.request(ip, ControlRequest.status())
        assert response is not None
        return response

    async def send_command(
        self, ip: str, cmd: str, data: Optional[Mapping[str, Any]] = None
    ) -> Optional[ControlResponse]:
        """Send an arbitrary command; a reply is awaited only for ``devStatus``."""

        if cmd not in CONTROL_COMMANDS:
            raise LanEncodeError(ip, f"unsupported LAN command {cmd!r}")
        return await self.request(ip, ControlRequest(cmd, dict(data or {})))

    async def request(self, ip: str, message: ControlRequest) -> Optional[ControlResponse]:
        started = time.perf_counter()
        result = "error"
        try:
            response = await self._exchange(ip, message)
            result = "success"
            return response
        except LanTimeoutError:
            result = "timeout"
            raise
        finally:
            observe_lan_command(message.cmd, result, time.perf_counter() - started)

    async def _exchange(self, ip: str, message: ControlRequest) -> Optional[ControlResponse]:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                ip, self.port, family=socket.AF_INET, type=socket.SOCK_DGRAM
            )
        except (socket.gaierror, UnicodeError) as exc:
            raise LanResolveError(ip, f"failed to resolve device address: {exc}") from exc
        if not infos:
            raise LanResolveError(ip, "failed to resolve device address")
        remote = infos[0][4]

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _ControlProtocol(loop),
                remote_addr=remote,
            )
        except OSError as exc:
            raise LanConnectError(ip, f"failed to connect to device: {exc}") from exc

        try:
            try:
                payload = encode_message(message)
            except ProtocolError as exc:
                raise LanEncodeError(ip, f"failed to marshal control request: {exc}") from exc

            try:
                transport.sendto(payload)
            except OSError as exc:
                raise LanSendError(ip, f"failed to send control request: {exc}") from exc
            self.logger.debug(
                "Sent LAN command",
                extra={"ip": ip, "port": self.port, "cmd": message.cmd},
            )

            if not message.expects_reply:
                return None

            try:
                data = await asyncio.wait_for(protocol.reply, timeout=self.status_timeout)
            except asyncio.TimeoutError as exc:
                raise LanTimeoutError(
                    ip, f"no response within {self.status_timeout}s"
                ) from exc
            except OSError as exc:
                raise LanReceiveError(ip, f"failed to read response: {exc}") from exc

            try:
                response = decode_control_response(data)
            except ProtocolError as exc:
                raise LanDecodeError(ip, f"failed to unmarshal response: {exc}") from exc
            self.logger.debug(
                "Received LAN status",
                extra={"ip": ip, "status": response.to_dict()["msg"]["data"]},
            )
            return response
        finally:
            transport.close()

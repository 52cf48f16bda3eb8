"""One-shot LAN discovery for Govee devices."""

from __future__ import annotations

import asyncio
import socket
import time
from typing import List, Optional, Sequence, Tuple

from .config import Config
from .logging import get_logger
from .metrics import observe_discovery_cycle, record_discovery_error, record_discovery_response
from .protocol import ProtocolError, ScanResult, decode_scan_response, encode_message, scan_request


class DiscoveryError(OSError):
    """Raised when a scan cannot be set up or is aborted by a socket error.

    ``partial`` holds whatever responses had arrived before the abort. They
    are kept for diagnostics only and are not returned to callers.
    """

    def __init__(self, message: str, partial: Sequence[ScanResult] = ()) -> None:
        super().__init__(message)
        self.partial: Tuple[ScanResult, ...] = tuple(partial)


def _create_send_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
        sock.bind(("0.0.0.0", 0))
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


def _create_reply_socket(port: int) -> socket.socket:
    # No address reuse: one scan owns the reply port at a time.
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(("", port))
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects scan responses arriving on the reply port for one scan."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.results: List[ScanResult] = []
        self.failed: asyncio.Future[None] = loop.create_future()
        self.logger = get_logger("govee.discovery.protocol")

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        self.logger.debug(
            "Discovery transport ready",
            extra={"local": transport.get_extra_info("sockname")},
        )

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            self.error_received(exc)
        self.transport = None

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        try:
            result = decode_scan_response(data)
        except ProtocolError as exc:
            record_discovery_error("invalid_payload")
            self.logger.warning(
                "Ignoring malformed scan response",
                extra={"from": addr, "error": str(exc)},
            )
            return
        record_discovery_response()
        self.logger.debug(
            "Received scan response",
            extra={"from": addr, "device_id": result.device, "ip": result.ip, "sku": result.sku},
        )
        self.results.append(result)

    def error_received(self, exc: Exception) -> None:
        record_discovery_error("socket_error")
        self.logger.error(
            "Error reading scan responses",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        if not self.failed.done():
            self.failed.set_exception(exc)


async def discover(config: Config, timeout: Optional[float] = None) -> List[ScanResult]:
    """Multicast one scan request and collect replies until the timeout.

    Replies are returned in receive order without deduplication. A socket
    error while collecting aborts the scan with :class:`DiscoveryError`, as
    does a second scan started while another one holds the reply port.
    """

    logger = get_logger("govee.discovery")
    window = config.discovery_timeout if timeout is None else max(0.0, timeout)
    target = (config.discovery_multicast_address, config.discovery_multicast_port)
    loop = asyncio.get_running_loop()
    started = time.perf_counter()
    result = "ok"

    try:
        try:
            payload = encode_message(scan_request())
        except ProtocolError as exc:
            raise DiscoveryError(f"failed to encode scan request: {exc}") from exc
        try:
            send_sock = _create_send_socket()
        except OSError as exc:
            raise DiscoveryError(f"failed to create UDP send socket: {exc}") from exc
        try:
            try:
                reply_sock = _create_reply_socket(config.discovery_reply_port)
            except OSError as exc:
                raise DiscoveryError(
                    f"failed to listen on UDP port {config.discovery_reply_port}: {exc}"
                ) from exc
            try:
                transport, protocol = await loop.create_datagram_endpoint(
                    lambda: DiscoveryProtocol(loop),
                    sock=reply_sock,
                )
            except OSError as exc:
                reply_sock.close()
                raise DiscoveryError(f"failed to create UDP server: {exc}") from exc
            try:
                try:
                    await loop.sock_sendto(send_sock, payload, target)
                except OSError as exc:
                    raise DiscoveryError(f"failed to send scan request: {exc}") from exc
                logger.debug(
                    "Scan request sent",
                    extra={"target": target, "timeout": window},
                )

                await asyncio.wait({protocol.failed}, timeout=window)
                if protocol.failed.done():
                    exc = protocol.failed.exception()
                    raise DiscoveryError(
                        f"error reading scan responses: {exc}", partial=protocol.results
                    ) from exc
                results = list(protocol.results)
            finally:
                transport.close()
        finally:
            send_sock.close()
    except Exception:
        result = "error"
        raise
    finally:
        observe_discovery_cycle(result, time.perf_counter() - started)

    logger.info(
        "Discovery finished",
        extra={"devices": len(results), "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
    )
    return results

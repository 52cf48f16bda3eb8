"""Entrypoint for the Govee LAN gateway."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Iterable, Optional

from .api import ApiService
from .cloud import CloudClient
from .config import Config, load_config
from .gateway import DeviceGateway
from .logging import configure_logging, get_logger


async def _run_async(config: Config) -> None:
    logger = get_logger("govee")
    stop_event = asyncio.Event()

    def _request_shutdown(sig: Optional[str] = None) -> None:
        if not stop_event.is_set():
            logger.warning("Shutdown requested", extra={"signal": sig})
            stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_shutdown, sig.name)

    cloud = CloudClient(config)
    gateway = DeviceGateway(config, cloud)
    service = ApiService(config, gateway)
    await service.start()
    logger.info(
        "Gateway started",
        extra={"api_port": config.api_port, "lan_enabled": config.lan_enabled},
    )

    try:
        await stop_event.wait()
    finally:
        await service.stop()
        await cloud.aclose()
        logger.info("Gateway shutdown complete")


def run(cli_args: Optional[Iterable[str]] = None) -> None:
    """CLI entrypoint used by the console script."""

    config = load_config(cli_args)
    configure_logging(config)
    logger = get_logger("govee")
    logger.info("Loaded configuration", extra={"config": config.logging_dict()})
    try:
        asyncio.run(_run_async(config))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")


if __name__ == "__main__":
    run()

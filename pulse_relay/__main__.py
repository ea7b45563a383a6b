"""Entry point for pulse-relay."""

import argparse
import asyncio
import logging
import signal

from .collaborators import JsonFileStore, TelemetryEvents
from .config import Config, load_config, load_token
from .log import setup_logging
from .orchestrator import TelemetryOrchestrator
from .uplink import resolve_endpoint

logger = logging.getLogger(__name__)


def _log_status(status: str) -> None:
    logger.info("Status: %s", status)


async def run(config: Config, url: str, token: str, device: str | None, background: bool) -> None:
    """Run the relay until SIGINT/SIGTERM."""
    config.uplink.url = resolve_endpoint(url, config.uplink.url)
    orchestrator = TelemetryOrchestrator.from_config(
        config,
        store=JsonFileStore(config.app.state_file),
        token=token,
        events=TelemetryEvents(status_changed=_log_status),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, orchestrator.stop)

    if background:
        orchestrator.enter_background()

    logger.info("Relaying heart rate to %s", config.uplink.url)
    await orchestrator.run(address=device)


def main() -> None:
    """CLI entry point."""
    config = load_config()

    parser = argparse.ArgumentParser(description="BLE heart rate to WebSocket relay")
    parser.add_argument("-u", "--url", default=config.uplink.url, help="Telemetry endpoint (ws:// or wss://)")
    parser.add_argument("-t", "--token", default=None, help="Auth token sent with every sample")
    parser.add_argument("-d", "--device", default=config.device.address or None, help="Device address (skip scanning)")
    parser.add_argument(
        "-b",
        "--background",
        action="store_true",
        help="Keep the host awake and log periodic status notifications",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    # Setup logging before anything else
    log_level = "DEBUG" if args.verbose else config.app.log_level
    setup_logging(log_level)

    token = args.token if args.token is not None else load_token(config.uplink)
    asyncio.run(run(config, args.url, token, args.device, args.background))


if __name__ == "__main__":
    main()

"""CLI entry point for the BLE poller."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .ble.bleak_provider import BleakProvider
from .ble.provider import BleProvider, ProviderInitError
from .ble.simulated import SimulatedProvider
from .config import AppConfig, load_config, validate_config
from .poller import Poller

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ble-poller",
        description="Poll a BLE peripheral for its heart beat value",
    )
    parser.add_argument(
        "address",
        nargs="?",
        help="MAC address of the peripheral (default: match by name)",
    )
    parser.add_argument("--name", help="Device name to match when no address is given")
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("--adapter", help="Bluetooth adapter to use (e.g. hci0)")
    parser.add_argument("--log-dir", help="Directory for the NDJSON journal")
    parser.add_argument(
        "--count",
        type=int,
        help="Stop after this many poll iterations",
    )
    parser.add_argument(
        "--scan",
        type=float,
        metavar="SECONDS",
        help="Scan for SECONDS, list discovered devices and exit",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use a simulated peripheral instead of the Bluetooth adapter",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Command line options win over configuration file values."""
    if args.address:
        config.target.mac = args.address
    if args.name:
        config.target.name = args.name
    if args.adapter:
        config.target.adapter = args.adapter
    if args.log_dir:
        config.logging.dir = args.log_dir
    if args.debug:
        config.logging.mode = "verbose"
    return config


async def open_provider(config: AppConfig, simulate: bool = False) -> BleProvider:
    if simulate:
        return SimulatedProvider.demo(config)
    return await BleakProvider.create(config.target.adapter)


async def scan_devices(provider: BleProvider, seconds: float) -> int:
    """List what the provider discovers within ``seconds``."""
    await provider.start_discovery()
    print(f"Scanning for {seconds:g}s...")
    await asyncio.sleep(seconds)

    devices = await provider.list_devices()
    print(f"Found {len(devices)} devices")
    for device in devices:
        print(
            f"Address = {device.address} Name = {device.name!r} "
            f"Connected = {device.connected} RSSI = {device.rssi}"
        )
        device.release()
    return len(devices)


def install_signal_handlers(poller: Poller) -> None:
    """Route SIGINT/SIGTERM to the poller's stop flag."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, poller.request_stop)
        except (NotImplementedError, RuntimeError):
            # No add_signal_handler on Windows event loops
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(poller.request_stop))


async def run(args: argparse.Namespace) -> int:
    """Run the poller for parsed arguments; returns the exit status."""
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    apply_overrides(config, args)

    errors = validate_config(config)
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    logger.info("BLE heart beat poller")

    try:
        provider = await open_provider(config, simulate=args.simulate)
    except ProviderInitError as e:
        logger.error(str(e))
        return 1

    try:
        if args.scan is not None:
            await scan_devices(provider, args.scan)
            return 0

        poller = Poller(config, provider)
        install_signal_handlers(poller)
        try:
            await poller.run(max_iterations=args.count)
        finally:
            poller.close()
        logger.info(f"Poller stopped after {poller.iterations} iterations, {poller.reading_count} readings")
    finally:
        await provider.close()

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    try:
        status = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nPoller stopped by user")
        status = 0

    sys.exit(status)


if __name__ == "__main__":
    main()

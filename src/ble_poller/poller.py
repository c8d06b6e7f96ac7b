"""Polling loop: find the peripheral, connect, read one value, disconnect, repeat."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .ble.provider import BleProvider, DeviceHandle
from .config import AppConfig
from .decode import decode_u16_le
from .logs import NdjsonLogger
from .matcher import TargetDescriptor, find_by_uuid, match_device

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    """How a single poll iteration ended."""

    READING = "reading"
    SHORT_PAYLOAD = "short_payload"
    READ_FAILED = "read_failed"
    CONNECT_FAILED = "connect_failed"
    NO_SERVICES = "no_services"
    SERVICE_NOT_FOUND = "service_not_found"
    CANCELLED = "cancelled"


# Outcomes reached after a connection was made and torn down again; the loop
# cools down after these and backs off after the rest.
_CONNECTED_OUTCOMES = frozenset({
    PollOutcome.READING,
    PollOutcome.SHORT_PAYLOAD,
    PollOutcome.READ_FAILED,
})


@dataclass(frozen=True)
class Reading:
    """One decoded value read from the peripheral."""

    value: int
    raw: bytes
    address: str
    timestamp_ns: int

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "raw": self.raw.hex(),
            "ts": self.timestamp_ns,
        }


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    address: Optional[str] = None
    reading: Optional[Reading] = None


class Poller:
    """Repeatedly locates, connects to and reads one value from the target.

    Every provider failure except initialization is logged and turned into a
    retry; ``run`` only returns once a stop was requested (or the optional
    iteration cap is reached).
    """

    def __init__(self, config: AppConfig, provider: BleProvider) -> None:
        self.config = config
        self.provider = provider
        self.target = TargetDescriptor.from_config(config.target)

        self.journal = NdjsonLogger(
            config.logging.dir,
            config.logging.file_prefix,
            mode=config.logging.mode,
        )

        # Set once, from the signal handler; never cleared.
        self._stop_event = asyncio.Event()

        self._iterations = 0
        self._reading_count = 0
        self._last_reading: Optional[Reading] = None
        self._outcomes: Dict[str, int] = {outcome.value: 0 for outcome in PollOutcome}

        self._on_reading: Optional[Callable[[Reading], None]] = None

    def set_reading_callback(self, callback: Callable[[Reading], None]) -> None:
        """Set callback for every successful reading."""
        self._on_reading = callback

    def request_stop(self) -> None:
        """Ask the loop to exit. Safe to call from a signal handler on the loop."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def reading_count(self) -> int:
        return self._reading_count

    def get_status(self) -> Dict[str, Any]:
        return {
            "target": self.target.describe(),
            "iterations": self._iterations,
            "readings": self._reading_count,
            "last_reading": self._last_reading.value if self._last_reading else None,
            "outcomes": dict(self._outcomes),
        }

    async def run(self, max_iterations: Optional[int] = None) -> None:
        """Start discovery and poll until stopped."""
        started = await self.provider.start_discovery()
        logger.info(f"Started = {'true' if started else 'false'}")
        self.journal.status("Discovery started", {"started": started, "target": self.target.describe()})

        try:
            while not self.stop_requested:
                result = await self.poll_once()
                if result.outcome is PollOutcome.CANCELLED:
                    break
                if max_iterations is not None and self._iterations >= max_iterations:
                    break

                if result.outcome in _CONNECTED_OUTCOMES:
                    await self._sleep(self.config.timing.cooldown_sec)
                else:
                    await self._sleep(self.config.timing.retry_backoff_sec)
        finally:
            self.journal.status("Poller stopped", self.get_status())

    async def poll_once(self) -> PollResult:
        """Run one find/connect/read/disconnect iteration."""
        self._iterations += 1

        device = await self.find_target()
        if device is None:
            return self._record(PollResult(PollOutcome.CANCELLED))

        try:
            result = await self._session(device)
        finally:
            device.release()

        return self._record(result)

    async def find_target(self) -> Optional[DeviceHandle]:
        """Poll the discovery list until the target shows up or a stop is requested."""
        logger.info(f"Discovering {self.target.describe()} ....")

        while not self.stop_requested:
            try:
                devices = await self.provider.list_devices()
            except Exception as e:
                logger.warning(f"Listing devices failed: {e}")
                devices = []

            self.journal.debug("Discovered devices", {
                "devices": [
                    {"address": d.address, "name": d.name, "rssi": d.rssi, "connected": d.connected}
                    for d in devices
                ],
            })

            device = match_device(devices, self.target)
            if device is not None:
                return device

            await self._sleep(self.config.timing.discovery_poll_sec)

        return None

    async def _session(self, device: DeviceHandle) -> PollResult:
        try:
            await device.connect()
        except Exception as e:
            logger.error(f"Error: connecting to {device.address} failed: {e}")
            self.journal.error("Connect failed", address=device.address, data=_error_data(e))
            return PollResult(PollOutcome.CONNECT_FAILED, device.address)

        logger.info(
            f"Found device Name = {device.name} Address = {device.address} "
            f"Connected = {device.connected} RSSI = {device.rssi}"
        )
        self.journal.status("Connected", {
            "address": device.address,
            "name": device.name,
            "rssi": device.rssi,
        })

        try:
            return await self._read(device)
        finally:
            await self._disconnect(device)

    async def _read(self, device: DeviceHandle) -> PollResult:
        gatt = self.config.gatt

        try:
            services = await device.list_services()
        except Exception as e:
            logger.error(f"Error: listing services of {device.address} failed: {e}")
            self.journal.error("Service discovery failed", address=device.address, data=_error_data(e))
            services = []

        self.journal.debug("Discovered services", {
            "address": device.address,
            "uuids": [s.uuid for s in services],
        })

        if not services:
            logger.warning(f"No services reported by {device.address}")
            return PollResult(PollOutcome.NO_SERVICES, device.address)

        service = find_by_uuid(services, gatt.service_uuid)
        if service is None:
            logger.warning(f"Could not find service {gatt.service_uuid}")
            self.journal.error("Service not found", address=device.address, data={"uuid": gatt.service_uuid})
            return PollResult(PollOutcome.SERVICE_NOT_FOUND, device.address)

        try:
            characteristics = await service.list_characteristics()
        except Exception as e:
            logger.error(f"Error: listing characteristics failed: {e}")
            characteristics = []

        self.journal.debug("Discovered characteristics", {
            "service": service.uuid,
            "uuids": [c.uuid for c in characteristics],
        })

        value_char = find_by_uuid(characteristics, gatt.value_uuid)
        config_char = find_by_uuid(characteristics, gatt.config_uuid)

        if value_char is None or config_char is None:
            missing = [
                uuid for uuid, char in ((gatt.value_uuid, value_char), (gatt.config_uuid, config_char))
                if char is None
            ]
            logger.warning(f"Could not find characteristics: {', '.join(missing)}")
            self.journal.error("Characteristics missing", address=device.address, data={"missing": missing})

        try:
            if value_char is None:
                raise LookupError(f"value characteristic {gatt.value_uuid} unavailable")
            payload = await value_char.read_value()
        except Exception as e:
            logger.error(f"Error: reading from {device.address} failed: {e}")
            self.journal.error("Read failed", address=device.address, data=_error_data(e))
            return PollResult(PollOutcome.READ_FAILED, device.address)

        value = decode_u16_le(payload)
        if value is None:
            logger.warning(f"Short payload from {device.address}: {payload.hex() or '<empty>'}")
            self.journal.error("Short payload", address=device.address, data={"raw": payload.hex()})
            return PollResult(PollOutcome.SHORT_PAYLOAD, device.address)

        reading = Reading(value, payload, device.address, time.monotonic_ns())
        logger.info(f"Heart beat: {value}")
        self.journal.event("reading", address=device.address, data=reading.to_dict())

        if self._on_reading:
            try:
                self._on_reading(reading)
            except Exception as e:
                logger.error(f"Reading callback failed: {e}")
                self.journal.error("Reading callback failed", address=device.address, data=_error_data(e))

        return PollResult(PollOutcome.READING, device.address, reading)

    async def _disconnect(self, device: DeviceHandle) -> None:
        try:
            await device.disconnect()
        except Exception as e:
            logger.warning(f"Error during disconnect from {device.address}: {e}")
            self.journal.error("Disconnect failed", address=device.address, data=_error_data(e))

    async def _sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, returning early if a stop is requested."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _record(self, result: PollResult) -> PollResult:
        self._outcomes[result.outcome.value] += 1
        if result.reading is not None:
            self._reading_count += 1
            self._last_reading = result.reading
        return result

    def close(self) -> None:
        self.journal.close()


def _error_data(e: BaseException) -> Dict[str, str]:
    return {"error": str(e), "type": type(e).__name__}

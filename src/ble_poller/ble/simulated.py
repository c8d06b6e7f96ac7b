"""Scripted in-memory BLE provider for offline runs and tests."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Union

from .provider import BleProvider, CharacteristicHandle, DeviceHandle, ServiceHandle
from ..config import AppConfig


logger = logging.getLogger(__name__)

# A characteristic value: fixed bytes, an exception to raise on read, or a
# callable producing either per read.
ValueSource = Union[bytes, Exception, Callable[[], bytes]]

# A scripted failure: one exception for every call, or a list consumed one
# entry per call (None meaning success; an exhausted list means success).
ErrorScript = Union[None, Exception, List[Optional[Exception]]]


def _next_error(script: ErrorScript) -> Optional[Exception]:
    if isinstance(script, list):
        return script.pop(0) if script else None
    return script


class SimulatedPeripheral:
    """Remote device state shared by every handle minted for it."""

    def __init__(
        self,
        address: str,
        name: Optional[str] = None,
        rssi: Optional[int] = -60,
        services: Optional[Dict[str, Dict[str, ValueSource]]] = None,
        connect_error: ErrorScript = None,
        disconnect_error: ErrorScript = None,
    ) -> None:
        self.address = address
        self.name = name
        self.rssi = rssi
        self.services: Dict[str, Dict[str, ValueSource]] = services or {}
        self.connect_error = connect_error
        self.disconnect_error = disconnect_error
        self.connected = False

        self.connect_calls = 0
        self.disconnect_calls = 0
        self.read_calls = 0
        self.handles: List[SimulatedDevice] = []

    def handle(self) -> SimulatedDevice:
        device = SimulatedDevice(self)
        self.handles.append(device)
        return device


class SimulatedDevice(DeviceHandle):
    """Handle on a SimulatedPeripheral, as a scan would return it."""

    def __init__(self, peripheral: SimulatedPeripheral) -> None:
        super().__init__(peripheral.address, peripheral.name, peripheral.rssi)
        self.peripheral = peripheral

    @property
    def connected(self) -> bool:
        return self.peripheral.connected

    async def _connect(self) -> None:
        self.peripheral.connect_calls += 1
        error = _next_error(self.peripheral.connect_error)
        if error is not None:
            raise error
        self.peripheral.connected = True

    async def _disconnect(self) -> None:
        self.peripheral.disconnect_calls += 1
        self.peripheral.connected = False
        error = _next_error(self.peripheral.disconnect_error)
        if error is not None:
            raise error

    async def _list_services(self) -> List[ServiceHandle]:
        if not self.connected:
            raise ConnectionError(f"Not connected to {self.address}")
        return [
            SimulatedService(self, uuid, chars)
            for uuid, chars in self.peripheral.services.items()
        ]


class SimulatedService(ServiceHandle):
    def __init__(self, device: SimulatedDevice, uuid: str, chars: Dict[str, ValueSource]) -> None:
        super().__init__(device, uuid)
        self._chars = chars

    async def _list_characteristics(self) -> List[CharacteristicHandle]:
        return [SimulatedCharacteristic(self, uuid, source) for uuid, source in self._chars.items()]


class SimulatedCharacteristic(CharacteristicHandle):
    def __init__(self, service: SimulatedService, uuid: str, source: ValueSource) -> None:
        super().__init__(service, uuid)
        self._source = source

    async def _read_value(self) -> bytes:
        peripheral = self.service.device.peripheral
        peripheral.read_calls += 1
        if not peripheral.connected:
            raise ConnectionError(f"Not connected to {peripheral.address}")

        value = self._source
        if callable(value) and not isinstance(value, Exception):
            value = value()
        if isinstance(value, Exception):
            raise value
        return bytes(value)


class SimulatedProvider(BleProvider):
    """Returns scripted discovery results, one scan per ``list_devices`` call.

    Every call mints fresh device handles. Once the script is exhausted the
    last scan is repeated.
    """

    def __init__(
        self,
        scans: Optional[Sequence[Sequence[SimulatedPeripheral]]] = None,
        start_ok: bool = True,
    ) -> None:
        self._scans: List[List[SimulatedPeripheral]] = [list(scan) for scan in (scans or [[]])]
        self.start_ok = start_ok
        self.scanning = False
        self.list_calls = 0
        self._on_list: Optional[Callable[[int], None]] = None

    def set_list_callback(self, callback: Callable[[int], None]) -> None:
        """Set callback run on every ``list_devices`` call with the call number."""
        self._on_list = callback

    async def start_discovery(self) -> bool:
        self.scanning = self.start_ok
        return self.start_ok

    async def stop_discovery(self) -> None:
        self.scanning = False

    async def list_devices(self) -> List[DeviceHandle]:
        self.list_calls += 1
        if self._on_list:
            self._on_list(self.list_calls)
        index = min(self.list_calls - 1, len(self._scans) - 1)
        return [peripheral.handle() for peripheral in self._scans[index]]

    @classmethod
    def demo(cls, config: AppConfig) -> SimulatedProvider:
        """A provider exposing the configured target, answering with a varying pulse."""
        state = {"beat": 60}

        def next_value() -> bytes:
            state["beat"] = 60 + (state["beat"] - 59) % 40
            return state["beat"].to_bytes(2, "little")

        peripheral = SimulatedPeripheral(
            address=config.target.mac or "00:11:22:33:44:55",
            name=config.target.name,
            services={
                config.gatt.service_uuid: {
                    config.gatt.config_uuid: b"\x01",
                    config.gatt.value_uuid: next_value,
                },
            },
        )
        logger.info(f"Simulating {peripheral.name} at {peripheral.address}")
        return cls([[peripheral]])

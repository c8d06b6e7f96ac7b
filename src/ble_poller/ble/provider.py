"""BLE provider capability set and handle types.

A provider hands out device handles from its discovery list. A device handle
belongs to one poll iteration: service and characteristic handles obtained
from it stay valid only while the connection that produced them is up, and the
device handle itself is released at the end of the iteration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional


class ProviderError(Exception):
    """Base class for provider errors."""


class ProviderInitError(ProviderError):
    """The BLE provider could not be initialized (no adapter, no stack)."""


class StaleHandleError(ProviderError):
    """A handle was used after its connection was torn down or it was released."""


class DeviceHandle(ABC):
    """A discovered peripheral."""

    def __init__(self, address: str, name: Optional[str] = None, rssi: Optional[int] = None) -> None:
        self.address = address
        self.name = name
        self.rssi = rssi
        self._session = 0
        self._released = False

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the peripheral is currently connected."""

    @property
    def released(self) -> bool:
        return self._released

    @property
    def session(self) -> int:
        """Connection generation; bumped whenever the connection is torn down."""
        return self._session

    async def connect(self) -> None:
        self._check_not_released()
        await self._connect()

    async def disconnect(self) -> None:
        try:
            await self._disconnect()
        finally:
            self._session += 1

    async def list_services(self) -> List[ServiceHandle]:
        self._check_not_released()
        return await self._list_services()

    def release(self) -> None:
        """Give up the handle; every handle derived from it becomes stale."""
        self._released = True
        self._session += 1
        self._release()

    def check_session(self, session: int) -> None:
        self._check_not_released()
        if session != self._session:
            raise StaleHandleError(f"Connection to {self.address} was torn down")

    def _check_not_released(self) -> None:
        if self._released:
            raise StaleHandleError(f"Device handle {self.address} was released")

    @abstractmethod
    async def _connect(self) -> None:
        ...

    @abstractmethod
    async def _disconnect(self) -> None:
        ...

    @abstractmethod
    async def _list_services(self) -> List[ServiceHandle]:
        ...

    def _release(self) -> None:
        """Drop backend references. Subclasses override when they hold any."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self.address!r}, name={self.name!r})"


class ServiceHandle(ABC):
    """A GATT service of a connected device."""

    def __init__(self, device: DeviceHandle, uuid: str) -> None:
        self.device = device
        self.uuid = uuid
        self._session = device.session

    async def list_characteristics(self) -> List[CharacteristicHandle]:
        self.device.check_session(self._session)
        return await self._list_characteristics()

    @abstractmethod
    async def _list_characteristics(self) -> List[CharacteristicHandle]:
        ...


class CharacteristicHandle(ABC):
    """A GATT characteristic of a service on a connected device."""

    def __init__(self, service: ServiceHandle, uuid: str) -> None:
        self.service = service
        self.uuid = uuid
        self._session = service.device.session

    async def read_value(self) -> bytes:
        self.service.device.check_session(self._session)
        return bytes(await self._read_value())

    @abstractmethod
    async def _read_value(self) -> bytes:
        ...


class BleProvider(ABC):
    """Discovery side of the BLE stack."""

    @abstractmethod
    async def start_discovery(self) -> bool:
        """Begin background scanning. Returns whether scanning started."""

    @abstractmethod
    async def stop_discovery(self) -> None:
        ...

    @abstractmethod
    async def list_devices(self) -> List[DeviceHandle]:
        """Devices discovered so far, in discovery order."""

    async def close(self) -> None:
        await self.stop_discovery()

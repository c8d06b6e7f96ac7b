"""BLE provider backed by Bleak."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError

from .provider import (
    BleProvider,
    CharacteristicHandle,
    DeviceHandle,
    ProviderInitError,
    ServiceHandle,
)


logger = logging.getLogger(__name__)


def _adapter_kwargs(adapter: Optional[str]) -> Dict[str, Any]:
    return {"adapter": adapter} if adapter else {}


class BleakDeviceHandle(DeviceHandle):
    """Device from the scanner's discovery list; owns a BleakClient while connected."""

    def __init__(
        self,
        ble_device: BLEDevice,
        name: Optional[str] = None,
        rssi: Optional[int] = None,
        adapter: Optional[str] = None,
    ) -> None:
        super().__init__(ble_device.address, name, rssi)
        self._ble_device: Optional[BLEDevice] = ble_device
        self._adapter = adapter
        self._client: Optional[BleakClient] = None

    @property
    def connected(self) -> bool:
        return bool(self._client and self._client.is_connected)

    @property
    def client(self) -> BleakClient:
        if self._client is None or not self._client.is_connected:
            raise BleakError(f"Not connected to {self.address}")
        return self._client

    async def _connect(self) -> None:
        self._client = BleakClient(self._ble_device, **_adapter_kwargs(self._adapter))
        try:
            await self._client.connect()
        except BaseException:
            self._client = None
            raise

    async def _disconnect(self) -> None:
        if self._client is None:
            return
        try:
            if self._client.is_connected:
                await self._client.disconnect()
        finally:
            self._client = None

    async def _list_services(self) -> List[ServiceHandle]:
        return [BleakServiceHandle(self, service) for service in self.client.services]

    def _release(self) -> None:
        self._client = None
        self._ble_device = None


class BleakServiceHandle(ServiceHandle):
    def __init__(self, device: BleakDeviceHandle, service: BleakGATTService) -> None:
        super().__init__(device, service.uuid)
        self._service = service

    async def _list_characteristics(self) -> List[CharacteristicHandle]:
        return [BleakCharacteristicHandle(self, char) for char in self._service.characteristics]


class BleakCharacteristicHandle(CharacteristicHandle):
    def __init__(self, service: BleakServiceHandle, char: BleakGATTCharacteristic) -> None:
        super().__init__(service, char.uuid)
        self._char = char

    async def _read_value(self) -> bytes:
        device: BleakDeviceHandle = self.service.device
        return await device.client.read_gatt_char(self._char)


class BleakProvider(BleProvider):
    """Background BleakScanner plus one BleakClient per connection."""

    def __init__(self, scanner: BleakScanner, adapter: Optional[str] = None) -> None:
        self.adapter = adapter
        self._scanner = scanner
        self._scanning = False

    @classmethod
    async def create(cls, adapter: Optional[str] = "hci0") -> BleakProvider:
        """Open the adapter and start scanning.

        Raises ProviderInitError when the Bluetooth stack or adapter is
        unavailable.
        """
        try:
            scanner = BleakScanner(**_adapter_kwargs(adapter))
            provider = cls(scanner, adapter)
            await scanner.start()
        except Exception as e:
            raise ProviderInitError(f"Error while initializing Bluetooth: {e}") from e

        provider._scanning = True
        logger.debug(f"Bleak scanner open on adapter {adapter or 'default'}")
        return provider

    @property
    def scanning(self) -> bool:
        return self._scanning

    async def start_discovery(self) -> bool:
        if self._scanning:
            return True
        try:
            await self._scanner.start()
        except Exception as e:
            logger.error(f"Failed to start discovery: {e}")
            return False
        self._scanning = True
        return True

    async def stop_discovery(self) -> None:
        if not self._scanning:
            return
        self._scanning = False
        try:
            await self._scanner.stop()
        except Exception as e:
            logger.warning(f"Error while stopping discovery: {e}")

    async def list_devices(self) -> List[DeviceHandle]:
        handles: List[DeviceHandle] = []
        for ble_device, adv in self._scanner.discovered_devices_and_advertisement_data.values():
            name = adv.local_name or ble_device.name
            handles.append(BleakDeviceHandle(ble_device, name=name, rssi=adv.rssi, adapter=self.adapter))
        return handles

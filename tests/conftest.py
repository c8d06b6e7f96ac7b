"""Shared fixtures for poller tests."""

import pytest

from ble_poller.ble.simulated import SimulatedPeripheral
from ble_poller.config import AppConfig, GattConfig, LoggingConfig, TargetConfig, TimingConfig

SERVICE_UUID = GattConfig.service_uuid
CONFIG_UUID = GattConfig.config_uuid
VALUE_UUID = GattConfig.value_uuid


@pytest.fixture
def make_config(tmp_path):
    """Build an AppConfig with zero delays and a journal under tmp_path."""

    def _make(mac: str = "", name: str = "Intech_BLE", poll_sec: float = 0.0) -> AppConfig:
        return AppConfig(
            target=TargetConfig(mac=mac, name=name),
            timing=TimingConfig(discovery_poll_sec=poll_sec, retry_backoff_sec=0.0, cooldown_sec=0.0),
            logging=LoggingConfig(dir=str(tmp_path / "logs")),
        )

    return _make


def build_peripheral(
    address: str = "AA:BB:CC:DD:EE:FF",
    name: str = "Intech_BLE",
    value=b"\x10\x02",
    chars=None,
    services=None,
    **kwargs,
) -> SimulatedPeripheral:
    """Peripheral exposing the heart beat service unless told otherwise."""
    if services is None:
        if chars is None:
            chars = {CONFIG_UUID: b"\x01", VALUE_UUID: value}
        services = {SERVICE_UUID: chars}
    return SimulatedPeripheral(address=address, name=name, services=services, **kwargs)


@pytest.fixture
def make_peripheral():
    return build_peripheral

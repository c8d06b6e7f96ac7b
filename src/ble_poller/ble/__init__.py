"""BLE provider implementations."""

from .provider import BleProvider, ProviderError, ProviderInitError, StaleHandleError
from .simulated import SimulatedPeripheral, SimulatedProvider

__all__ = [
    "BleProvider",
    "ProviderError",
    "ProviderInitError",
    "StaleHandleError",
    "SimulatedPeripheral",
    "SimulatedProvider",
]

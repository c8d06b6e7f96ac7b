"""Target descriptor and the linear matchers used by the poller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, TypeVar

from .config import DEFAULT_DEVICE_NAME, TargetConfig

T = TypeVar("T")


@dataclass(frozen=True)
class TargetDescriptor:
    """The peripheral to look for: a MAC address, or a name when none is given."""

    address: Optional[str] = None
    name: str = DEFAULT_DEVICE_NAME

    @classmethod
    def from_config(cls, target: TargetConfig) -> TargetDescriptor:
        return cls(address=target.mac or None, name=target.name)

    @property
    def by_address(self) -> bool:
        return bool(self.address)

    def matches(self, address: Optional[str], name: Optional[str]) -> bool:
        """Address match when an address is configured, name match otherwise.

        Addresses compare case-insensitively; names compare exactly.
        """
        if self.by_address:
            return address is not None and address.upper() == self.address.upper()
        return name is not None and name == self.name

    def describe(self) -> str:
        if self.by_address:
            return self.address
        return self.name


def match_device(devices: Iterable[T], target: TargetDescriptor) -> Optional[T]:
    """Return the first device in list order matching ``target``, or ``None``."""
    for device in devices:
        if target.matches(getattr(device, "address", None), getattr(device, "name", None)):
            return device
    return None


def same_uuid(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two UUID strings ignoring case."""
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def find_by_uuid(items: Iterable[T], uuid: str) -> Optional[T]:
    """Return the first item whose ``uuid`` attribute equals ``uuid``."""
    for item in items:
        if same_uuid(getattr(item, "uuid", None), uuid):
            return item
    return None

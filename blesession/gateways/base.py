"""Adapter gateway interface and the events it emits."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, Union

from blesession.core.model import PeripheralInfo, PeripheralRecord


@dataclass(frozen=True)
class PeripheralDiscovered:
    record: PeripheralRecord


@dataclass(frozen=True)
class ScanStopped:
    pass


@dataclass(frozen=True)
class PeripheralConnected:
    device_id: str


@dataclass(frozen=True)
class PeripheralDisconnected:
    device_id: str


@dataclass(frozen=True)
class CharacteristicUpdated:
    device_id: str
    characteristic_uuid: str
    value: bytes


GatewayEvent = Union[
    PeripheralDiscovered,
    ScanStopped,
    PeripheralConnected,
    PeripheralDisconnected,
    CharacteristicUpdated,
]
GatewayListener = Callable[[GatewayEvent], None]


class AdapterGateway(Protocol):
    """Host-side view of a vendor BLE stack.

    Listeners registered with :meth:`subscribe` may be invoked from any thread.
    """

    async def start(self) -> None:
        """Initialize the adapter; raise if it is unusable."""

    def subscribe(self, listener: GatewayListener) -> Callable[[], None]:
        """Register an event listener and return a callable that removes it."""

    async def scan(
        self,
        service_filters: Sequence[str],
        timeout_s: float,
        allow_duplicates: bool,
    ) -> None:
        """Start a scan that stops by itself after ``timeout_s``."""

    async def stop_scan(self) -> None:
        """Stop the running scan, if any."""

    async def connect(self, device_id: str) -> None:
        """Connect to a peripheral; raise on failure."""

    async def disconnect(self, device_id: str) -> None:
        """Disconnect from a peripheral."""

    async def retrieve_services(self, device_id: str) -> PeripheralInfo:
        """Enumerate services and characteristics of a connected peripheral."""

    async def start_notification(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
    ) -> None:
        """Subscribe to value updates of a characteristic."""

    async def write(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        payload: bytes,
        *,
        with_response: bool = True,
    ) -> None:
        """Write a value to a characteristic."""

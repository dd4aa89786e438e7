from __future__ import annotations

from collections.abc import Callable, Sequence

import pytest

from blesession.core.model import (
    CharacteristicDescriptor,
    PeripheralInfo,
    PeripheralRecord,
    ScanSettings,
    ServiceDescriptor,
    SessionProfile,
)
from blesession.gateways.base import GatewayEvent, GatewayListener, PeripheralDiscovered, ScanStopped

BATTERY_SERVICE = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL = "00002a19-0000-1000-8000-00805f9b34fb"
WRITE_CHAR = "00002a1a-0000-1000-8000-00805f9b34fb"


class FakeGateway:
    def __init__(
        self,
        *,
        advertisements: Sequence[PeripheralRecord] = (),
        auto_stop: bool = False,
    ) -> None:
        self.calls: list[tuple] = []
        self.listeners: list[GatewayListener] = []
        self.advertisements = list(advertisements)
        self.auto_stop = auto_stop
        self.peripherals: dict[str, PeripheralInfo] = {}
        self.fail_start: Exception | None = None
        self.fail_scan: Exception | None = None
        self.fail_connect: dict[str, Exception] = {}
        self.fail_write: Exception | None = None
        self.fail_notify: Exception | None = None
        self.on_connect: Callable[[str], None] | None = None

    def emit(self, event: GatewayEvent) -> None:
        for listener in list(self.listeners):
            listener(event)

    def subscribe(self, listener: GatewayListener) -> Callable[[], None]:
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    async def start(self) -> None:
        self.calls.append(("start",))
        if self.fail_start:
            raise self.fail_start

    async def scan(self, service_filters, timeout_s, allow_duplicates) -> None:
        self.calls.append(("scan", tuple(service_filters), timeout_s, allow_duplicates))
        if self.fail_scan:
            raise self.fail_scan
        for record in self.advertisements:
            self.emit(PeripheralDiscovered(record=record))
        if self.auto_stop:
            self.emit(ScanStopped())

    async def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    async def connect(self, device_id: str) -> None:
        self.calls.append(("connect", device_id))
        if self.on_connect:
            self.on_connect(device_id)
        if device_id in self.fail_connect:
            raise self.fail_connect[device_id]

    async def disconnect(self, device_id: str) -> None:
        self.calls.append(("disconnect", device_id))

    async def retrieve_services(self, device_id: str) -> PeripheralInfo:
        self.calls.append(("retrieve_services", device_id))
        return self.peripherals.get(device_id, PeripheralInfo())

    async def start_notification(self, device_id, service_uuid, characteristic_uuid) -> None:
        self.calls.append(("start_notification", device_id, service_uuid, characteristic_uuid))
        if self.fail_notify:
            raise self.fail_notify

    async def write(self, device_id, service_uuid, characteristic_uuid, payload, *, with_response=True) -> None:
        self.calls.append(("write", device_id, service_uuid, characteristic_uuid, payload, with_response))
        if self.fail_write:
            raise self.fail_write

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


def battery_info() -> PeripheralInfo:
    return PeripheralInfo(
        services=(ServiceDescriptor(uuid=BATTERY_SERVICE),),
        characteristics=(
            CharacteristicDescriptor(uuid=BATTERY_LEVEL, service_uuid=BATTERY_SERVICE, properties=("read", "notify")),
        ),
    )


@pytest.fixture
def profile() -> SessionProfile:
    return SessionProfile(
        id="test",
        name="Test",
        service_uuid=BATTERY_SERVICE,
        notify_char_uuid=BATTERY_LEVEL,
        write_char_uuid=WRITE_CHAR,
        write_with_response=False,
        scan=ScanSettings(timeout_s=5.0, allow_duplicates=True),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

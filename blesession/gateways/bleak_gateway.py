"""Adapter gateway implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from blesession.core.errors import AdapterUnavailableError
from blesession.core.model import (
    CharacteristicDescriptor,
    PeripheralInfo,
    PeripheralRecord,
    ServiceDescriptor,
)
from blesession.gateways.base import (
    CharacteristicUpdated,
    GatewayEvent,
    GatewayListener,
    PeripheralConnected,
    PeripheralDisconnected,
    PeripheralDiscovered,
    ScanStopped,
)

LOGGER = logging.getLogger(__name__)


class BleakGateway:
    def __init__(self, *, adapter: str | None = None, connect_timeout_s: float = 10.0) -> None:
        self.adapter = adapter
        self.connect_timeout_s = connect_timeout_s
        self._listeners: list[GatewayListener] = []
        self._scanner: BleakScanner | None = None
        self._scan_timer: asyncio.Task[None] | None = None
        self._seen: set[str] = set()
        self._allow_duplicates = True
        self._devices: dict[str, Any] = {}
        self._clients: dict[str, BleakClient] = {}

    def subscribe(self, listener: GatewayListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def start(self) -> None:
        kwargs: dict[str, Any] = {"adapter": self.adapter} if self.adapter else {}
        # bleak opens the backend lazily; a short start/stop reaches the radio.
        try:
            scanner = BleakScanner(**kwargs)
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            raise AdapterUnavailableError(f"BLE adapter unavailable: {exc}") from exc
        LOGGER.debug("BLE adapter %s is available", self.adapter or "<default>")

    async def scan(
        self,
        service_filters: Sequence[str],
        timeout_s: float,
        allow_duplicates: bool,
    ) -> None:
        self._cancel_timer()
        await self._halt_scanner()
        self._seen.clear()
        self._allow_duplicates = allow_duplicates

        kwargs: dict[str, Any] = {"detection_callback": self._on_detection}
        if service_filters:
            kwargs["service_uuids"] = list(service_filters)
        if self.adapter:
            kwargs["adapter"] = self.adapter
        scanner = BleakScanner(**kwargs)
        await scanner.start()
        self._scanner = scanner
        self._scan_timer = asyncio.create_task(self._stop_after(timeout_s))
        LOGGER.debug("Scan started for %.1fs (filters=%s)", timeout_s, list(service_filters))

    async def stop_scan(self) -> None:
        self._cancel_timer()
        if await self._halt_scanner():
            self._emit(ScanStopped())

    async def connect(self, device_id: str) -> None:
        target = self._devices.get(device_id, device_id)
        kwargs: dict[str, Any] = {
            "disconnected_callback": lambda _client: self._on_disconnect(device_id),
            "timeout": self.connect_timeout_s,
        }
        if self.adapter:
            kwargs["adapter"] = self.adapter
        client = BleakClient(target, **kwargs)
        await client.connect()
        self._clients[device_id] = client
        self._emit(PeripheralConnected(device_id=device_id))

    async def disconnect(self, device_id: str) -> None:
        client = self._clients.pop(device_id, None)
        if client is None:
            return
        await client.disconnect()

    async def retrieve_services(self, device_id: str) -> PeripheralInfo:
        client = self._require_client(device_id)
        services: list[ServiceDescriptor] = []
        characteristics: list[CharacteristicDescriptor] = []
        for service in client.services:
            services.append(ServiceDescriptor(uuid=str(service.uuid).lower()))
            for char in service.characteristics:
                characteristics.append(
                    CharacteristicDescriptor(
                        uuid=str(char.uuid).lower(),
                        service_uuid=str(service.uuid).lower(),
                        properties=tuple(char.properties),
                    )
                )
        return PeripheralInfo(services=tuple(services), characteristics=tuple(characteristics))

    async def start_notification(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
    ) -> None:
        client = self._require_client(device_id)

        def _handler(_: Any, data: bytearray) -> None:
            self._emit(
                CharacteristicUpdated(
                    device_id=device_id,
                    characteristic_uuid=characteristic_uuid,
                    value=bytes(data),
                )
            )

        await client.start_notify(
            self._characteristic(client, service_uuid, characteristic_uuid),
            _handler,
        )

    async def write(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        payload: bytes,
        *,
        with_response: bool = True,
    ) -> None:
        client = self._require_client(device_id)
        await client.write_gatt_char(
            self._characteristic(client, service_uuid, characteristic_uuid),
            payload,
            response=with_response,
        )

    def _require_client(self, device_id: str) -> BleakClient:
        client = self._clients.get(device_id)
        if client is None or not client.is_connected:
            raise BleakError(f"Device {device_id} is not connected")
        return client

    @staticmethod
    def _characteristic(client: BleakClient, service_uuid: str, characteristic_uuid: str) -> Any:
        service = client.services.get_service(service_uuid)
        if service is None:
            raise BleakError(f"Service {service_uuid} not found")
        char = service.get_characteristic(characteristic_uuid)
        if char is None:
            raise BleakError(
                f"Characteristic {characteristic_uuid} not found in service {service_uuid}"
            )
        return char

    def _on_detection(self, device: Any, advertisement: Any) -> None:
        address = device.address
        if not self._allow_duplicates:
            if address in self._seen:
                return
            self._seen.add(address)
        self._devices[address] = device
        name = device.name or getattr(advertisement, "local_name", None) or None
        rssi = getattr(advertisement, "rssi", None)
        self._emit(PeripheralDiscovered(record=PeripheralRecord(id=address, name=name, rssi=rssi)))

    def _on_disconnect(self, device_id: str) -> None:
        self._clients.pop(device_id, None)
        self._emit(PeripheralDisconnected(device_id=device_id))

    async def _stop_after(self, timeout_s: float) -> None:
        await asyncio.sleep(timeout_s)
        self._scan_timer = None
        if await self._halt_scanner():
            self._emit(ScanStopped())

    def _cancel_timer(self) -> None:
        if self._scan_timer is not None:
            self._scan_timer.cancel()
            self._scan_timer = None

    async def _halt_scanner(self) -> bool:
        scanner = self._scanner
        if scanner is None:
            return False
        self._scanner = None
        try:
            await scanner.stop()
        except BleakError as exc:
            LOGGER.warning("Stopping BLE scanner failed: %s", exc)
        return True

    def _emit(self, event: GatewayEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Gateway listener raised for %s", type(event).__name__)

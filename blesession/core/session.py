"""Session manager used by the CLI and other display surfaces.

A :class:`SessionManager` is the single owner of scan and connection state.
Commands run on the event loop that called :meth:`SessionManager.start`;
adapter events may arrive from any thread and are queued onto that loop, so
every mutation happens in one place. Each queued event is tagged with the scan
and connection epochs current when it was received. ``start_scan`` and
``connect``/``disconnect`` bump those epochs, which is how late events from a
superseded scan or connection are recognized and dropped. ``stop_scan`` bumps
the scan epoch too, so nothing from a cancelled scan reaches the state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from blesession.core.errors import (
    AdapterUnavailableError,
    ConnectError,
    InvalidStateError,
    NotConnectedError,
    NotificationError,
    PermissionDeniedError,
    ScanError,
    WriteError,
)
from blesession.core.model import (
    CharacteristicDescriptor,
    CharacteristicUpdate,
    ConnectionPhase,
    ConnectionState,
    PeripheralInfo,
    PeripheralRecord,
    ScanPhase,
    ServiceDescriptor,
    SessionEvent,
    SessionEventKind,
    SessionProfile,
    SessionState,
)
from blesession.core.permissions import PermissionCheck, always_granted, request_permission
from blesession.core.state import (
    ConnectionTrigger,
    ScanTrigger,
    next_scan_phase,
    require_connection_phase,
)
from blesession.gateways.base import (
    AdapterGateway,
    CharacteristicUpdated,
    GatewayEvent,
    PeripheralConnected,
    PeripheralDisconnected,
    PeripheralDiscovered,
    ScanStopped,
)

LOGGER = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]
_TaggedEvent = tuple[int, int, GatewayEvent]


class SessionManager:
    def __init__(
        self,
        gateway: AdapterGateway,
        profile: SessionProfile,
        *,
        permission_check: PermissionCheck = always_granted,
    ) -> None:
        self.gateway = gateway
        self.profile = profile
        self.permission_check = permission_check

        self._scan_phase = ScanPhase.IDLE
        self._discovered: dict[str, PeripheralRecord] = {}
        self._connection = ConnectionState.disconnected()
        self._services: tuple[ServiceDescriptor, ...] = ()
        self._characteristics: tuple[CharacteristicDescriptor, ...] = ()
        self._scan_epoch = 0
        self._connect_epoch = 0

        self._listeners: list[SessionListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[_TaggedEvent] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._unsubscribe_gateway: Callable[[], None] | None = None

    # Lifecycle

    async def start(self) -> None:
        if self._dispatcher is not None:
            raise InvalidStateError("Session is already started")
        try:
            await self.gateway.start()
        except AdapterUnavailableError:
            raise
        except Exception as exc:
            raise AdapterUnavailableError(f"BLE adapter failed to start: {exc}") from exc

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._unsubscribe_gateway = self.gateway.subscribe(self._receive)
        self._dispatcher = asyncio.create_task(self._dispatch(self._queue))
        LOGGER.debug("Session started with profile '%s'", self.profile.id)

    async def stop(self) -> None:
        if self._dispatcher is None:
            return
        if self._unsubscribe_gateway is not None:
            self._unsubscribe_gateway()
            self._unsubscribe_gateway = None
        try:
            await self.stop_scan()
            await self.disconnect()
        finally:
            self._dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None
            self._queue = None
            self._loop = None
            LOGGER.debug("Session stopped")

    async def __aenter__(self) -> SessionManager:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def started(self) -> bool:
        return self._dispatcher is not None

    # Display surface

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> SessionState:
        return SessionState(
            scan_phase=self._scan_phase,
            discovered=tuple(self._discovered.values()),
            connection=self._connection,
            services=self._services,
            characteristics=self._characteristics,
        )

    @property
    def state(self) -> SessionState:
        return self.snapshot()

    async def settle(self) -> None:
        """Wait until every adapter event received so far has been applied."""
        queue = self._require_started()
        await asyncio.sleep(0)
        await queue.join()

    # Commands

    async def start_scan(self) -> SessionState:
        self._require_started()
        if not await request_permission(self.permission_check):
            raise PermissionDeniedError("Location permission is required to scan for BLE peripherals")

        scan = self.profile.scan
        try:
            if self._scan_phase is ScanPhase.SCANNING:
                await self.gateway.stop_scan()
            self._scan_epoch += 1
            self._discovered.clear()
            self._scan_transition(ScanTrigger.START)
            self._notify()
            await self.gateway.scan(scan.service_filters, scan.timeout_s, scan.allow_duplicates)
        except Exception as exc:
            if self._scan_transition(ScanTrigger.SCAN_FAILED):
                self._notify()
            raise ScanError(f"Adapter failed to start scan: {exc}") from exc

        LOGGER.info("Scanning for %.1fs", scan.timeout_s)
        return self.snapshot()

    async def stop_scan(self) -> SessionState:
        self._require_started()
        if not self._scan_transition(ScanTrigger.STOP):
            return self.snapshot()
        self._notify()
        self._scan_epoch += 1
        try:
            await self.gateway.stop_scan()
        except Exception as exc:
            self._report_error(ScanError(f"Adapter failed to stop scan: {exc}"))
        return self.snapshot()

    async def connect(self, device_id: str) -> SessionState:
        self._require_started()
        if device_id not in self._discovered:
            raise InvalidStateError(f"Peripheral {device_id} was not discovered in the current scan")

        current = self._connection
        if current.device_id == device_id:
            if current.is_connected:
                return self.snapshot()
            raise InvalidStateError(f"Already connecting to {device_id}")
        if current.device_id is not None:
            LOGGER.info("Disconnecting %s before connecting to %s", current.device_id, device_id)
            await self._release(current.device_id)

        self._connect_epoch += 1
        epoch = self._connect_epoch
        self._transition_connection(ConnectionTrigger.CONNECT, device_id)
        try:
            await self.gateway.connect(device_id)
            info = await self.gateway.retrieve_services(device_id)
        except asyncio.CancelledError:
            self._abandon_attempt(epoch)
            raise
        except Exception as exc:
            self._abandon_attempt(epoch)
            await self._disconnect_quietly(device_id)
            raise ConnectError(f"Connection to {device_id} failed: {exc}") from exc

        if epoch != self._connect_epoch:
            await self._disconnect_quietly(device_id)
            raise ConnectError(f"Connection to {device_id} was superseded")

        self._transition_connection(ConnectionTrigger.CONNECT_SUCCEEDED, device_id, info)
        LOGGER.info(
            "Connected to %s (%d services, %d characteristics)",
            device_id,
            len(info.services),
            len(info.characteristics),
        )
        await self._start_default_notification(device_id, epoch)
        return self.snapshot()

    async def disconnect(self) -> SessionState:
        self._require_started()
        device_id = self._connection.device_id
        if device_id is not None:
            await self._release(device_id)
        return self.snapshot()

    async def send_data(self, data: bytes | str) -> None:
        self._require_started()
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        device_id = self._connection.device_id
        if not self._connection.is_connected or device_id is None:
            raise NotConnectedError("No peripheral is connected")

        char_uuid = self.profile.write_char_uuid
        if char_uuid is None:
            raise WriteError(f"Profile '{self.profile.id}' defines no write characteristic")
        try:
            await self.gateway.write(
                device_id,
                self.profile.service_uuid,
                char_uuid,
                payload,
                with_response=self.profile.write_with_response,
            )
        except Exception as exc:
            raise WriteError(f"Write to {device_id} failed: {exc}") from exc
        LOGGER.debug("Sent %d bytes to %s", len(payload), device_id)

    # Adapter event handlers

    def on_discovered(self, record: PeripheralRecord) -> None:
        if self._scan_phase is not ScanPhase.SCANNING:
            LOGGER.debug("Ignoring discovery of %s outside a scan", record.id)
            return
        if record.id in self._discovered:
            return
        self._discovered[record.id] = record
        LOGGER.debug("Discovered %s (%s, rssi=%s)", record.id, record.display_name, record.rssi)
        self._notify()

    def on_scan_stopped(self) -> None:
        if self._scan_transition(ScanTrigger.SCAN_STOPPED):
            LOGGER.info("Scan stopped with %d peripherals", len(self._discovered))
            self._notify()

    def on_connected(self, device_id: str) -> None:
        LOGGER.debug("Adapter reports connection to %s", device_id)

    def on_disconnected(self, device_id: str) -> None:
        if not self._connection.is_connected or self._connection.device_id != device_id:
            LOGGER.debug("Ignoring disconnect from %s", device_id)
            return
        self._transition_connection(ConnectionTrigger.LINK_LOST)
        LOGGER.info("Disconnected from %s", device_id)

    def on_characteristic_update(self, device_id: str, characteristic_uuid: str, payload: bytes) -> None:
        if not self._connection.is_connected or self._connection.device_id != device_id:
            LOGGER.debug("Dropping update from %s on %s", device_id, characteristic_uuid)
            return
        LOGGER.debug("Received %d bytes from %s on %s", len(payload), device_id, characteristic_uuid)
        self._emit(
            SessionEvent(
                kind=SessionEventKind.CHARACTERISTIC_UPDATE,
                state=self.snapshot(),
                update=CharacteristicUpdate(
                    device_id=device_id,
                    characteristic_uuid=characteristic_uuid,
                    value=payload,
                ),
            )
        )

    # Internals

    def _require_started(self) -> asyncio.Queue[_TaggedEvent]:
        if self._queue is None:
            raise InvalidStateError("Session is not started")
        return self._queue

    def _receive(self, event: GatewayEvent) -> None:
        loop = self._loop
        if loop is None:
            return
        tagged = (self._scan_epoch, self._connect_epoch, event)
        try:
            loop.call_soon_threadsafe(self._enqueue, tagged)
        except RuntimeError:
            LOGGER.debug("Event loop closed; dropping %s", type(event).__name__)

    def _enqueue(self, tagged: _TaggedEvent) -> None:
        if self._queue is not None:
            self._queue.put_nowait(tagged)

    async def _dispatch(self, queue: asyncio.Queue[_TaggedEvent]) -> None:
        while True:
            scan_epoch, connect_epoch, event = await queue.get()
            try:
                self._apply(scan_epoch, connect_epoch, event)
            except Exception:
                LOGGER.exception("Failed to apply %s", type(event).__name__)
            finally:
                queue.task_done()

    def _apply(self, scan_epoch: int, connect_epoch: int, event: GatewayEvent) -> None:
        if isinstance(event, (PeripheralDiscovered, ScanStopped)) and scan_epoch != self._scan_epoch:
            LOGGER.debug("Dropping stale %s from an earlier scan", type(event).__name__)
            return
        if (
            isinstance(event, (PeripheralConnected, PeripheralDisconnected))
            and connect_epoch != self._connect_epoch
        ):
            LOGGER.debug("Dropping stale %s for %s", type(event).__name__, event.device_id)
            return

        if isinstance(event, PeripheralDiscovered):
            self.on_discovered(event.record)
        elif isinstance(event, ScanStopped):
            self.on_scan_stopped()
        elif isinstance(event, PeripheralConnected):
            self.on_connected(event.device_id)
        elif isinstance(event, PeripheralDisconnected):
            self.on_disconnected(event.device_id)
        elif isinstance(event, CharacteristicUpdated):
            self.on_characteristic_update(event.device_id, event.characteristic_uuid, event.value)

    def _scan_transition(self, trigger: ScanTrigger) -> bool:
        target = next_scan_phase(self._scan_phase, trigger)
        if target is None:
            return False
        self._scan_phase = target
        return True

    def _transition_connection(
        self,
        trigger: ConnectionTrigger,
        device_id: str | None = None,
        info: PeripheralInfo | None = None,
    ) -> None:
        phase = require_connection_phase(self._connection.phase, trigger)
        if phase is ConnectionPhase.CONNECTED and device_id is not None:
            self._connection = ConnectionState.connected(device_id)
            self._services = info.services if info else ()
            self._characteristics = info.characteristics if info else ()
        else:
            if phase is ConnectionPhase.CONNECTING and device_id is not None:
                self._connection = ConnectionState.connecting(device_id)
            else:
                self._connection = ConnectionState.disconnected()
            self._services = ()
            self._characteristics = ()
        self._notify()

    def _abandon_attempt(self, epoch: int) -> None:
        if epoch == self._connect_epoch:
            self._transition_connection(ConnectionTrigger.CONNECT_FAILED)

    async def _release(self, device_id: str) -> None:
        self._connect_epoch += 1
        self._transition_connection(ConnectionTrigger.DISCONNECT)
        try:
            await self.gateway.disconnect(device_id)
        except Exception as exc:
            self._report_error(ConnectError(f"Disconnect from {device_id} failed: {exc}"))
            return
        LOGGER.info("Disconnected from %s", device_id)

    async def _disconnect_quietly(self, device_id: str) -> None:
        try:
            await self.gateway.disconnect(device_id)
        except Exception as exc:
            LOGGER.debug("Cleanup disconnect from %s failed: %s", device_id, exc)

    async def _start_default_notification(self, device_id: str, epoch: int) -> None:
        char_uuid = self.profile.notify_char_uuid
        if char_uuid is None:
            return
        try:
            await self.gateway.start_notification(device_id, self.profile.service_uuid, char_uuid)
        except Exception as exc:
            if epoch == self._connect_epoch:
                self._report_error(
                    NotificationError(f"Could not start notifications on {char_uuid}: {exc}")
                )
            return
        LOGGER.info("Started notification on %s", char_uuid)

    def _notify(self) -> None:
        self._emit(SessionEvent(kind=SessionEventKind.STATE_CHANGED, state=self.snapshot()))

    def _report_error(self, error: Exception) -> None:
        LOGGER.warning("%s", error)
        self._emit(SessionEvent(kind=SessionEventKind.ERROR, state=self.snapshot(), error=error))

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Session listener raised for %s", event.kind.value)

from __future__ import annotations

import asyncio
import random

import pytest

from blesession.core.errors import (
    AdapterUnavailableError,
    InvalidStateError,
    PermissionDeniedError,
    ScanError,
)
from blesession.core.model import PeripheralRecord, ScanPhase, SessionEvent, SessionEventKind
from blesession.core.session import SessionManager
from blesession.gateways.base import PeripheralDiscovered, ScanStopped
from conftest import FakeGateway

A = PeripheralRecord(id="AA:AA:AA:AA:AA:AA", name="Sensor A", rssi=-60)
B = PeripheralRecord(id="BB:BB:BB:BB:BB:BB", name=None, rssi=-72)


def test_duplicate_discoveries_are_ignored(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            events: list[SessionEvent] = []
            await session.start_scan()
            session.subscribe(events.append)

            gateway.emit(PeripheralDiscovered(record=A))
            gateway.emit(PeripheralDiscovered(record=B))
            gateway.emit(PeripheralDiscovered(record=PeripheralRecord(id=A.id, name="renamed", rssi=-40)))
            await session.settle()

            assert session.snapshot().discovered == (A, B)
            assert len(events) == 2

    asyncio.run(scenario())


@pytest.mark.parametrize("seed", range(5))
def test_discovered_never_holds_duplicate_ids(gateway: FakeGateway, profile, seed: int) -> None:
    rng = random.Random(seed)
    ids = [f"00:00:00:00:00:{i:02X}" for i in range(6)]
    reports = [rng.choice(ids) for _ in range(40)]

    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            for device_id in reports:
                gateway.emit(PeripheralDiscovered(record=PeripheralRecord(id=device_id)))
            await session.settle()

            discovered = [r.id for r in session.snapshot().discovered]
            assert len(discovered) == len(set(discovered))
            assert discovered == list(dict.fromkeys(reports))

    asyncio.run(scenario())


def test_start_scan_uses_profile_settings(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            state = await session.start_scan()
            assert state.scan_phase is ScanPhase.SCANNING

    asyncio.run(scenario())
    assert ("scan", (), 5.0, True) in gateway.calls


def test_start_scan_clears_previous_results(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            gateway.emit(PeripheralDiscovered(record=A))
            gateway.emit(ScanStopped())
            await session.settle()
            assert session.snapshot().scan_phase is ScanPhase.STOPPED
            assert session.snapshot().discovered == (A,)

            state = await session.start_scan()
            assert state.discovered == ()
            assert state.scan_phase is ScanPhase.SCANNING

    asyncio.run(scenario())


def test_stop_scan_when_not_scanning_is_noop(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            state = await session.stop_scan()
            assert state.scan_phase is ScanPhase.IDLE

            await session.start_scan()
            await session.stop_scan()
            state = await session.stop_scan()
            assert state.scan_phase is ScanPhase.STOPPED

    asyncio.run(scenario())
    assert gateway.names().count("stop_scan") == 1


def test_scan_stopped_event_moves_to_stopped(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            gateway.emit(ScanStopped())
            await session.settle()
            assert session.snapshot().scan_phase is ScanPhase.IDLE

            await session.start_scan()
            gateway.emit(ScanStopped())
            await session.settle()
            assert session.snapshot().scan_phase is ScanPhase.STOPPED

    asyncio.run(scenario())


def test_restart_while_scanning_stops_adapter_scan_first(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            await session.start_scan()

    asyncio.run(scenario())
    assert gateway.names()[:4] == ["start", "scan", "stop_scan", "scan"]


def test_late_events_from_previous_scan_are_dropped(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            gateway.emit(PeripheralDiscovered(record=A))
            gateway.emit(ScanStopped())

            await session.start_scan()
            gateway.emit(PeripheralDiscovered(record=B))
            await session.settle()

            state = session.snapshot()
            assert state.discovered == (B,)
            assert state.scan_phase is ScanPhase.SCANNING

    asyncio.run(scenario())


def test_permission_denied_leaves_state_unchanged(gateway: FakeGateway, profile) -> None:
    async def deny() -> bool:
        return False

    async def scenario() -> None:
        async with SessionManager(gateway, profile, permission_check=deny) as session:
            with pytest.raises(PermissionDeniedError):
                await session.start_scan()
            assert session.snapshot().scan_phase is ScanPhase.IDLE

    asyncio.run(scenario())
    assert "scan" not in gateway.names()


def test_scan_failure_raises_scan_error(gateway: FakeGateway, profile) -> None:
    gateway.fail_scan = RuntimeError("radio off")

    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            with pytest.raises(ScanError, match="radio off"):
                await session.start_scan()
            assert session.snapshot().scan_phase is ScanPhase.STOPPED

    asyncio.run(scenario())


def test_commands_require_started_session(gateway: FakeGateway, profile) -> None:
    session = SessionManager(gateway, profile)

    with pytest.raises(InvalidStateError):
        asyncio.run(session.start_scan())


def test_adapter_unavailable_on_start(gateway: FakeGateway, profile) -> None:
    gateway.fail_start = OSError("no adapter")
    session = SessionManager(gateway, profile)

    with pytest.raises(AdapterUnavailableError, match="no adapter"):
        asyncio.run(session.start())
    assert not session.started
    assert gateway.listeners == []


def test_stop_releases_gateway_listener(gateway: FakeGateway, profile) -> None:
    session = SessionManager(gateway, profile)

    async def scenario() -> None:
        await session.start()
        assert len(gateway.listeners) == 1
        with pytest.raises(InvalidStateError):
            await session.start()
        await session.stop()
        await session.stop()

    asyncio.run(scenario())
    assert gateway.listeners == []
    assert not session.started


def test_listener_errors_do_not_break_dispatch(gateway: FakeGateway, profile) -> None:
    def broken(_: SessionEvent) -> None:
        raise RuntimeError("boom")

    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            seen: list[SessionEventKind] = []
            session.subscribe(broken)
            session.subscribe(lambda event: seen.append(event.kind))
            await session.start_scan()
            gateway.emit(PeripheralDiscovered(record=A))
            await session.settle()
            assert session.snapshot().discovered == (A,)
            assert seen == [SessionEventKind.STATE_CHANGED, SessionEventKind.STATE_CHANGED]

    asyncio.run(scenario())


def test_discovery_after_stop_scan_is_dropped(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            await session.stop_scan()
            gateway.emit(PeripheralDiscovered(record=A))
            gateway.emit(ScanStopped())
            await session.settle()

            state = session.snapshot()
            assert state.scan_phase is ScanPhase.STOPPED
            assert state.discovered == ()

    asyncio.run(scenario())


def test_discovery_while_idle_is_dropped(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            events: list[SessionEvent] = []
            session.subscribe(events.append)
            gateway.emit(PeripheralDiscovered(record=B))
            await session.settle()

            state = session.snapshot()
            assert state.scan_phase is ScanPhase.IDLE
            assert state.discovered == ()
            assert events == []

    asyncio.run(scenario())


def test_discovery_after_scan_timeout_is_dropped(gateway: FakeGateway, profile) -> None:
    async def scenario() -> None:
        async with SessionManager(gateway, profile) as session:
            await session.start_scan()
            gateway.emit(PeripheralDiscovered(record=A))
            gateway.emit(ScanStopped())
            gateway.emit(PeripheralDiscovered(record=B))
            await session.settle()

            assert session.snapshot().discovered == (A,)

    asyncio.run(scenario())

"""Transition tables for the scan and connection sub-machines.

The two machines are independent: a scan may run or idle regardless of the
connection. Each table maps ``(phase, trigger)`` to the next phase; a pair
missing from the table means the trigger does not apply and is ignored.
"""

from __future__ import annotations

from enum import Enum

from blesession.core.errors import InvalidStateError
from blesession.core.model import ConnectionPhase, ScanPhase


class ScanTrigger(str, Enum):
    START = "start"
    STOP = "stop"
    SCAN_STOPPED = "scan_stopped"
    SCAN_FAILED = "scan_failed"


class ConnectionTrigger(str, Enum):
    CONNECT = "connect"
    CONNECT_SUCCEEDED = "connect_succeeded"
    CONNECT_FAILED = "connect_failed"
    DISCONNECT = "disconnect"
    LINK_LOST = "link_lost"


SCAN_TRANSITIONS: dict[tuple[ScanPhase, ScanTrigger], ScanPhase] = {
    (ScanPhase.IDLE, ScanTrigger.START): ScanPhase.SCANNING,
    (ScanPhase.STOPPED, ScanTrigger.START): ScanPhase.SCANNING,
    # Restart; the adapter scan is stopped before the new one is issued.
    (ScanPhase.SCANNING, ScanTrigger.START): ScanPhase.SCANNING,
    (ScanPhase.SCANNING, ScanTrigger.STOP): ScanPhase.STOPPED,
    (ScanPhase.SCANNING, ScanTrigger.SCAN_STOPPED): ScanPhase.STOPPED,
    (ScanPhase.SCANNING, ScanTrigger.SCAN_FAILED): ScanPhase.STOPPED,
}

CONNECTION_TRANSITIONS: dict[tuple[ConnectionPhase, ConnectionTrigger], ConnectionPhase] = {
    (ConnectionPhase.DISCONNECTED, ConnectionTrigger.CONNECT): ConnectionPhase.CONNECTING,
    (ConnectionPhase.CONNECTING, ConnectionTrigger.CONNECT_SUCCEEDED): ConnectionPhase.CONNECTED,
    (ConnectionPhase.CONNECTING, ConnectionTrigger.CONNECT_FAILED): ConnectionPhase.DISCONNECTED,
    (ConnectionPhase.CONNECTING, ConnectionTrigger.DISCONNECT): ConnectionPhase.DISCONNECTED,
    (ConnectionPhase.CONNECTED, ConnectionTrigger.DISCONNECT): ConnectionPhase.DISCONNECTED,
    (ConnectionPhase.CONNECTED, ConnectionTrigger.LINK_LOST): ConnectionPhase.DISCONNECTED,
}


def next_scan_phase(phase: ScanPhase, trigger: ScanTrigger) -> ScanPhase | None:
    return SCAN_TRANSITIONS.get((phase, trigger))


def next_connection_phase(
    phase: ConnectionPhase,
    trigger: ConnectionTrigger,
) -> ConnectionPhase | None:
    return CONNECTION_TRANSITIONS.get((phase, trigger))


def require_connection_phase(
    phase: ConnectionPhase,
    trigger: ConnectionTrigger,
) -> ConnectionPhase:
    """Like :func:`next_connection_phase`, but an unknown pair is an error."""
    target = next_connection_phase(phase, trigger)
    if target is None:
        raise InvalidStateError(
            f"Connection cannot handle '{trigger.value}' while {phase.value}"
        )
    return target

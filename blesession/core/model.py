"""Core data models shared by the session manager, gateways, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class PeripheralRecord:
    id: str
    name: str | None = None
    rssi: int | None = None

    @property
    def display_name(self) -> str:
        return self.name or "Unknown Device"


@dataclass(frozen=True)
class ServiceDescriptor:
    uuid: str


@dataclass(frozen=True)
class CharacteristicDescriptor:
    uuid: str
    service_uuid: str
    properties: tuple[str, ...] = ()


@dataclass(frozen=True)
class PeripheralInfo:
    services: tuple[ServiceDescriptor, ...] = ()
    characteristics: tuple[CharacteristicDescriptor, ...] = ()


class ScanPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPED = "stopped"


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionState:
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    device_id: str | None = None

    @classmethod
    def disconnected(cls) -> ConnectionState:
        return cls()

    @classmethod
    def connecting(cls, device_id: str) -> ConnectionState:
        return cls(phase=ConnectionPhase.CONNECTING, device_id=device_id)

    @classmethod
    def connected(cls, device_id: str) -> ConnectionState:
        return cls(phase=ConnectionPhase.CONNECTED, device_id=device_id)

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot handed to display surfaces."""

    scan_phase: ScanPhase = ScanPhase.IDLE
    discovered: tuple[PeripheralRecord, ...] = ()
    connection: ConnectionState = field(default_factory=ConnectionState)
    services: tuple[ServiceDescriptor, ...] = ()
    characteristics: tuple[CharacteristicDescriptor, ...] = ()


@dataclass(frozen=True)
class CharacteristicUpdate:
    device_id: str
    characteristic_uuid: str
    value: bytes


class SessionEventKind(str, Enum):
    STATE_CHANGED = "state_changed"
    CHARACTERISTIC_UPDATE = "characteristic_update"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    state: SessionState
    update: CharacteristicUpdate | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class ScanSettings:
    service_filters: tuple[str, ...] = ()
    timeout_s: float = 5.0
    allow_duplicates: bool = True


@dataclass(frozen=True)
class SessionProfile:
    id: str
    name: str
    service_uuid: str
    notify_char_uuid: str | None = None
    write_char_uuid: str | None = None
    write_with_response: bool = True
    scan: ScanSettings = field(default_factory=ScanSettings)

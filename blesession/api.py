"""Stable public API for building tooling on top of blesession.

This module is the supported integration surface for third-party callers
(GUI/TUI frontends, services, scripts). Avoid importing from private/internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from blesession.core.errors import (
    AdapterUnavailableError,
    BlesessionError,
    ConnectError,
    DeviceSelectionError,
    InvalidStateError,
    NotConnectedError,
    NotificationError,
    PermissionDeniedError,
    ProfileLoadError,
    ProfileValidationError,
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
    ScanSettings,
    ServiceDescriptor,
    SessionEvent,
    SessionEventKind,
    SessionProfile,
    SessionState,
)
from blesession.core.permissions import PermissionCheck, always_granted
from blesession.core.profile_loader import load_profiles
from blesession.core.session import SessionListener, SessionManager
from blesession.gateways.base import AdapterGateway
from blesession.gateways.bleak_gateway import BleakGateway

__all__ = [
    "AdapterUnavailableError",
    "BlesessionError",
    "ConnectError",
    "DeviceSelectionError",
    "InvalidStateError",
    "NotConnectedError",
    "NotificationError",
    "PermissionDeniedError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ScanError",
    "WriteError",
    "CharacteristicDescriptor",
    "CharacteristicUpdate",
    "ConnectionPhase",
    "ConnectionState",
    "PeripheralInfo",
    "PeripheralRecord",
    "ScanPhase",
    "ScanSettings",
    "ServiceDescriptor",
    "SessionEvent",
    "SessionEventKind",
    "SessionProfile",
    "SessionState",
    "PermissionCheck",
    "SessionListener",
    "SessionManager",
    "AdapterGateway",
    "BleakGateway",
    "Client",
]


class Client:
    """Public entry point for creating BLE sessions.

    A `Client` loads session profiles once and hands out unstarted
    :class:`SessionManager` instances; use them as async context managers::

        async with Client().open_session() as session:
            await session.start_scan()
    """

    def __init__(
        self,
        *,
        gateway: AdapterGateway | None = None,
        permission_check: PermissionCheck = always_granted,
    ) -> None:
        self._loaded = load_profiles()
        self._gateway = gateway
        self._permission_check = permission_check

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._loaded.warnings

    def list_profiles(self) -> list[SessionProfile]:
        return sorted(self._loaded.profiles.values(), key=lambda p: p.id)

    def get_profile(self, profile_id: str | None = None) -> SessionProfile:
        return self._loaded.get(profile_id)

    def open_session(self, profile_id: str | None = None) -> SessionManager:
        gateway = self._gateway or BleakGateway()
        return SessionManager(
            gateway,
            self.get_profile(profile_id),
            permission_check=self._permission_check,
        )

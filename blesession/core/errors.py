"""Domain-specific errors for blesession."""


class BlesessionError(Exception):
    """Base error for blesession."""


class ProfileValidationError(BlesessionError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(BlesessionError):
    """Raised when loading profile sources fails."""


class DeviceSelectionError(BlesessionError):
    """Raised when a device hint cannot resolve a single discovered peripheral."""


class InvalidStateError(BlesessionError):
    """Raised when a command is issued in a session state that cannot accept it."""


class PermissionDeniedError(BlesessionError):
    """Raised when the platform permission check refuses a scan."""


class AdapterUnavailableError(BlesessionError):
    """Raised when the BLE adapter gateway fails to initialize."""


class ScanError(BlesessionError):
    """Raised when the adapter refuses to start a scan."""


class ConnectError(BlesessionError):
    """Raised when a connection attempt fails or is superseded."""


class NotConnectedError(BlesessionError):
    """Raised when data is sent without an active connection."""


class WriteError(BlesessionError):
    """Raised when the adapter rejects a characteristic write."""


class NotificationError(BlesessionError):
    """Raised when subscribing to characteristic notifications fails."""

"""Domain-specific errors for taplink."""


class TaplinkError(Exception):
    """Base error for taplink."""


class ValidationError(TaplinkError):
    """Raised when caller input is rejected before touching the link."""


class DisconnectedError(TaplinkError):
    """Raised when no live characteristic is available, or it vanished mid-operation."""


class SessionBusyError(TaplinkError):
    """Raised when connect() is called while another connect attempt is in flight."""


class ProtocolError(TaplinkError):
    """Raised for malformed or unknown control frames. Logged, never surfaced."""


class ProfileValidationError(TaplinkError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(TaplinkError):
    """Raised when loading profile sources fails."""


class TransportError(TaplinkError):
    """Base transport error."""


class DeviceNotFoundError(TransportError):
    """Raised when no advertising device matches the requested profile."""


class TransportConnectError(TransportError):
    """Raised on connect, service discovery or subscribe failures."""


class TransportSendError(TransportError):
    """Raised when a characteristic write fails."""


class TransportTimeoutError(TransportError):
    """Raised when a transport operation times out."""


class TransportReadError(TransportError):
    """Raised when a characteristic read fails."""

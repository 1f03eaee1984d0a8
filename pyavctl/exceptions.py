"""Exceptions raised by pyavctl."""


class AvControlError(Exception):
    """Base class for all pyavctl errors."""


class CommandTimeout(AvControlError):
    """No correlated response arrived within the response window."""


class ConnectionFailure(AvControlError):
    """The stream to the device could not be opened or broke."""


class ParseError(AvControlError):
    """A line received from the device matches no known response."""


class CommandNotSupported(AvControlError):
    """The requested intent cannot be expressed for this channel or zone."""


class AuthenticationFailure(AvControlError):
    """The device rejected the session credentials."""


class ProtocolViolation(AvControlError, ValueError):
    """A caller passed a value the protocol cannot represent (e.g. bad zone)."""


class DeviceError(AvControlError):
    """The device answered with an error code."""

    def __init__(self, code: str, text: str):
        super().__init__(f"Got error status {text} ({code})")
        self.code = code
        self.text = text

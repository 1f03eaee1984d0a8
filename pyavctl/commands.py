"""Wire model for the Pioneer-style AVR line protocol.

Commands are short ASCII strings terminated by a carriage return. Responses
start with a fixed prefix per zone, optionally followed by a fixed-width
parameter:

    ?P\r      -> PWR0      (zone 1 power query, 0 means ON)
    ?ZV\r     -> ZV45      (zone 2 volume query)
    093VL\r   -> VOL093    (zone 1 set volume, parameter goes first)
    ?FL\r     -> FL02564F4C202D34302E306442202020 (display "VOL -40.0dB   ")

Response and command types are registries of immutable values rather than
enums so that each carries its own zone table and patterns.
"""

import re
from typing import Dict, Optional, Tuple

from pyavctl.exceptions import CommandNotSupported, ParseError, ProtocolViolation

COMMAND_TERMINATOR = "\r"

# Parameter values for POWER_STATE and MUTE_STATE responses
ON_VALUE = "0"
OFF_VALUE = "1"


class ResponseType:
    """A kind of message the device can send, with one prefix per zone."""

    def __init__(self, name: str, is_error: bool, parameter_pattern: str, *zone_prefixes: str):
        self.name = name
        self.is_error = is_error
        self.parameter_pattern = parameter_pattern
        self.zone_prefixes: Tuple[str, ...] = zone_prefixes
        self._zone_patterns = tuple(
            re.compile(f"{re.escape(prefix)}({parameter_pattern})") for prefix in zone_prefixes
        )

    def match(self, line: str) -> Optional[Tuple[int, str]]:
        """Return (zone, parameter) if the whole line is this response type."""
        for index, pattern in enumerate(self._zone_patterns):
            matched = pattern.fullmatch(line)
            if matched is not None:
                return index + 1, matched.group(1)
        return None

    def __repr__(self):
        return f"ResponseType.{self.name}"


NONE = ResponseType("NONE", False, "")
POWER_STATE = ResponseType("POWER_STATE", False, "[0-1]", "PWR", "APR", "BPR")
VOLUME_LEVEL = ResponseType("VOLUME_LEVEL", False, "[0-9]{2,3}", "VOL", "ZV", "YV")
MUTE_STATE = ResponseType("MUTE_STATE", False, "[0-1]", "MUT", "Z2MUT", "Z3MUT")
INPUT_SOURCE_CHANNEL = ResponseType("INPUT_SOURCE_CHANNEL", False, "[0-9]{2}", "FN", "Z2F", "Z3F")
DISPLAY_INFORMATION = ResponseType("DISPLAY_INFORMATION", False, "[0-9a-fA-F]{30}", "FL")
UNKNOWN_COMMAND = ResponseType("UNKNOWN_COMMAND", True, "", "E4")
UNKNOWN_PARAMETER = ResponseType("UNKNOWN_PARAMETER", True, "", "E6")
GENERIC_ERROR = ResponseType("GENERIC_ERROR", True, "", "R")

# Matching order. First match wins.
RESPONSE_TYPES: Tuple[ResponseType, ...] = (
    NONE,
    POWER_STATE,
    VOLUME_LEVEL,
    MUTE_STATE,
    INPUT_SOURCE_CHANNEL,
    DISPLAY_INFORMATION,
    UNKNOWN_COMMAND,
    UNKNOWN_PARAMETER,
    GENERIC_ERROR,
)


class Response:
    """A parsed message from the device. Immutable once built."""

    __slots__ = ("_response_type", "_zone", "_parameter")

    def __init__(self, response_type: ResponseType, zone: int, parameter: Optional[str] = None):
        self._response_type = response_type
        self._zone = zone
        self._parameter = parameter

    @property
    def response_type(self) -> ResponseType:
        return self._response_type

    @property
    def zone(self) -> int:
        return self._zone

    @property
    def parameter(self) -> Optional[str]:
        return self._parameter

    @classmethod
    def none(cls, zone: int) -> "Response":
        """The result of a command sent without waiting for an answer."""
        return cls(NONE, zone)

    def __eq__(self, other):
        if not isinstance(other, Response):
            return NotImplemented
        return (self._response_type, self._zone, self._parameter) == (
            other._response_type, other._zone, other._parameter)

    def __hash__(self):
        return hash((self._response_type.name, self._zone, self._parameter))

    def __repr__(self):
        return f"Response({self._response_type.name}, zone={self._zone}, parameter={self._parameter!r})"


def parse_response(line: str) -> Response:
    """Parse one line received from the device.

    Raises:
        ParseError: if the line is empty or matches no response type.
    """
    if not line:
        raise ParseError("Empty response")
    for response_type in RESPONSE_TYPES:
        if response_type is NONE:
            continue
        matched = response_type.match(line)
        if matched is not None:
            zone, parameter = matched
            return Response(response_type, zone, parameter or None)
    raise ParseError(f"No matching response type for {line!r}")


class CommandType:
    """A kind of command with its literal per-zone strings and expected answer."""

    def __init__(self, name: str, response_type: ResponseType, *zone_commands: str, parameterized=False):
        self.name = name
        self.response_type = response_type
        self.zone_commands: Tuple[str, ...] = zone_commands
        self.parameterized = parameterized

    def command_for_zone(self, zone: int) -> str:
        if zone < 1:
            raise ProtocolViolation(f"Zone {zone} is out of range for {self.name}")
        if zone > len(self.zone_commands):
            raise CommandNotSupported(f"{self.name} is not available for zone {zone}")
        return self.zone_commands[zone - 1]

    def __repr__(self):
        return f"CommandType.{self.name}"


POWER_ON = CommandType("POWER_ON", NONE, "PO", "APO", "BPO", "ZEO")
POWER_OFF = CommandType("POWER_OFF", NONE, "PF", "APF", "BPF", "ZEF")
POWER_QUERY = CommandType("POWER_QUERY", POWER_STATE, "?P", "?AP", "?BP", "?ZEP")
VOLUME_UP = CommandType("VOLUME_UP", VOLUME_LEVEL, "VU", "ZU", "YU", "HZU")
VOLUME_DOWN = CommandType("VOLUME_DOWN", VOLUME_LEVEL, "VD", "ZD", "YD", "HZD")
VOLUME_QUERY = CommandType("VOLUME_QUERY", VOLUME_LEVEL, "?V", "?ZV", "?YV", "?HZV")
MUTE_ON = CommandType("MUTE_ON", MUTE_STATE, "MO", "Z2MO", "Z3MO", "HZMO")
MUTE_OFF = CommandType("MUTE_OFF", MUTE_STATE, "MF", "Z2MF", "Z3MF", "HZMF")
MUTE_QUERY = CommandType("MUTE_QUERY", MUTE_STATE, "?M", "?Z2M", "?Z3M", "?HZM")
INPUT_CHANGE_CYCLIC = CommandType("INPUT_CHANGE_CYCLIC", INPUT_SOURCE_CHANNEL, "FU")
INPUT_CHANGE_REVERSE = CommandType("INPUT_CHANGE_REVERSE", INPUT_SOURCE_CHANNEL, "FD")
LISTENING_MODE_CHANGE_CYCLIC = CommandType("LISTENING_MODE_CHANGE_CYCLIC", NONE, "0010SR")
LISTENING_MODE_QUERY = CommandType("LISTENING_MODE_QUERY", NONE, "?S")
INPUT_QUERY = CommandType("INPUT_QUERY", INPUT_SOURCE_CHANNEL, "?F", "?ZS", "?ZT", "?ZEA")
DISPLAY_QUERY = CommandType("DISPLAY_QUERY", DISPLAY_INFORMATION, "?FL")

VOLUME_SET = CommandType("VOLUME_SET", VOLUME_LEVEL, "VL", "ZV", "YV", "HZV", parameterized=True)
INPUT_CHANNEL_SET = CommandType(
    "INPUT_CHANNEL_SET", INPUT_SOURCE_CHANNEL, "FN", "ZS", "ZT", "ZEA", parameterized=True
)

COMMAND_TYPES: Dict[str, CommandType] = {
    command_type.name: command_type
    for command_type in (
        POWER_ON, POWER_OFF, POWER_QUERY,
        VOLUME_UP, VOLUME_DOWN, VOLUME_QUERY,
        MUTE_ON, MUTE_OFF, MUTE_QUERY,
        INPUT_CHANGE_CYCLIC, INPUT_CHANGE_REVERSE,
        LISTENING_MODE_CHANGE_CYCLIC, LISTENING_MODE_QUERY,
        INPUT_QUERY, DISPLAY_QUERY,
        VOLUME_SET, INPUT_CHANNEL_SET,
    )
}


class Command:
    """A command addressed to one zone, ready to be written to the wire.

    Args:
        command_type: What to send
        zone: Target zone (1-based)
        parameter: Value for parameterized commands (e.g. "093" for VOLUME_SET)
    """

    def __init__(self, command_type: CommandType, zone: int = 1, parameter: Optional[str] = None):
        self.command_type = command_type
        self.zone = zone
        self.parameter = parameter
        # Resolve now so an unavailable zone fails where the command is built
        self._zone_command = command_type.command_for_zone(zone)

    @property
    def expected_response_type(self) -> ResponseType:
        return self.command_type.response_type

    def is_response_expected(self) -> bool:
        return self.command_type.response_type is not NONE

    def matches(self, response: Response) -> bool:
        """Whether a received response answers this command. Errors always do."""
        if response.response_type.is_error:
            return True
        return response.response_type is self.expected_response_type and response.zone == self.zone

    def serialize(self) -> str:
        if self.command_type.parameterized:
            if self.parameter is None:
                raise ProtocolViolation(f"{self.command_type.name} needs a parameter")
            return f"{self.parameter}{self._zone_command}{COMMAND_TERMINATOR}"
        return f"{self._zone_command}{COMMAND_TERMINATOR}"

    def __repr__(self):
        return f"Command({self.command_type.name}, zone={self.zone}, parameter={self.parameter!r})"


def decode_display_information(parameter: str) -> str:
    """Decode the FL payload: 2 hex digits of flags then 14 hex-encoded characters."""
    text = parameter[2:]
    return "".join(chr(int(text[i:i + 2], 16)) for i in range(0, len(text), 2))


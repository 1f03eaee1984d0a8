"""PJLink class 1 client for projectors and displays.

On connect the device greets with ``PJLINK 0`` (no authentication) or
``PJLINK 1 <random>``. In the latter case the first command of the session
is prefixed with md5(random + password) as lowercase hex:

    PJLINK 1 498e4a67
    5d8409bc1c3fa39749434aa3a5c38682%1POWR ?\r   ->  %1POWR=1

A wrong password is answered with ``PJLINK ERRA``.
"""

import asyncio
import hashlib
import logging
import re
from asyncio import Future
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pyavctl.config import DEFAULT_PJLINK_PORT, PJLinkConfig
from pyavctl.exceptions import (
    AuthenticationFailure,
    CommandTimeout,
    ConnectionFailure,
    DeviceError,
    ParseError,
    ProtocolViolation,
)
from pyavctl.listener import AvrListener, MultiplexingListener

DEFAULT_RESPONSE_TIMEOUT = 5.0
DEFAULT_CONNECT_TIMEOUT = 5.0

GREETING = re.compile(r"PJLINK ([01])(?: (\S+))?")
AUTHENTICATION_ERROR = "PJLINK ERRA"
ACKNOWLEDGE = "OK"
LINE_SEPARATOR = re.compile(r"\r\n|\r|\n")

# Channel ids emitted on refresh
CHANNEL_POWER = "power"
CHANNEL_INPUT = "input"
CHANNEL_AUDIO_MUTE = "audioMute"
CHANNEL_VIDEO_MUTE = "videoMute"


class ErrorCode(Enum):
    UNDEFINED_COMMAND = ("ERR1", "Undefined command")
    OUT_OF_PARAMETER = ("ERR2", "Out of parameter")
    UNAVAILABLE_TIME = ("ERR3", "Unavailable time")
    DEVICE_FAILURE = ("ERR4", "Projector/Display failure")

    def __init__(self, code, text):
        self.code = code
        self.text = text

    @classmethod
    def for_code(cls, code: str) -> Optional["ErrorCode"]:
        for error_code in cls:
            if error_code.code == code.upper():
                return error_code
        return None


class PowerState(Enum):
    OFF = "0"
    ON = "1"
    COOLING = "2"
    WARM_UP = "3"


class InputType(Enum):
    RGB = "1"
    VIDEO = "2"
    DIGITAL = "3"
    STORAGE = "4"
    NETWORK = "5"


class Input:
    """A PJLink input: type digit followed by a number digit, e.g. "31" for Digital 1."""

    def __init__(self, value: str):
        self.value = value
        self.validate()

    def validate(self):
        if len(self.value) != 2 or not self.value[1].isdigit():
            raise ProtocolViolation(f"Illegal input description: {self.value}")
        if self.value[0] not in {input_type.value for input_type in InputType}:
            raise ProtocolViolation(f"Unknown input channel type: {self.value}")

    @property
    def input_type(self) -> InputType:
        return InputType(self.value[0])

    @property
    def input_number(self) -> int:
        return int(self.value[1])

    def __eq__(self, other):
        return isinstance(other, Input) and other.value == self.value

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return f"Input({self.input_type.name} {self.input_number})"


class MuteInstruction(Enum):
    VIDEO_ON = "11"
    VIDEO_OFF = "10"
    AUDIO_ON = "21"
    AUDIO_OFF = "20"
    AUDIO_AND_VIDEO_ON = "31"
    AUDIO_AND_VIDEO_OFF = "30"


class IdentificationProperty(Enum):
    NAME = "NAME"
    MANUFACTURER = "INF1"
    MODEL = "INF2"
    CLASS = "CLSS"
    OTHER_INFORMATION = "INFO"
    LAMP_HOURS = "LAMP"
    ERROR_STATUS = "ERST"


def authentication_digest(challenge: str, password: str) -> str:
    return hashlib.md5((challenge + password).encode("utf-8")).hexdigest()


def build_request(command: str, parameter: str) -> str:
    return f"%1{command} {parameter}\r"


def parse_response(command: str, line: str) -> str:
    """Extract the value of a "%1CMD=VALUE" response.

    Raises:
        AuthenticationFailure: for "PJLINK ERRA"
        DeviceError: for ERR1..ERR4
        ParseError: if the line does not answer command
    """
    if line == AUTHENTICATION_ERROR:
        raise AuthenticationFailure("Authentication error, wrong password provided?")
    prefix = f"%1{command}="
    if not line.upper().startswith(prefix):
        raise ParseError(f"Expected response to {command}, got {line!r}")
    value = line[len(prefix):]
    error_code = ErrorCode.for_code(value)
    if error_code is not None:
        raise DeviceError(error_code.code, error_code.text)
    return value


def parse_mute_state(value: str) -> Tuple[bool, bool]:
    """Return (video muted, audio muted) from an AVMT query value."""
    if value == MuteInstruction.AUDIO_AND_VIDEO_ON.value:
        return True, True
    if value == MuteInstruction.VIDEO_ON.value:
        return True, False
    if value == MuteInstruction.AUDIO_ON.value:
        return False, True
    if value in ("30", "10", "20"):
        return False, False
    raise ParseError(f"Unknown mute state {value!r}")


class PJLinkProtocol(asyncio.Protocol):
    """One PJLink session. Requests are serialized, one answer per request."""

    _pending: Optional[Future]
    _greeting: Optional[Future]

    def __init__(
        self,
        hostname,
        port=DEFAULT_PJLINK_PORT,
        password: Optional[str] = None,
        response_timeout=DEFAULT_RESPONSE_TIMEOUT,
        connect_timeout=DEFAULT_CONNECT_TIMEOUT,
    ):
        self._logger = logging.getLogger(__name__)
        self._hostname = hostname
        self._port = port
        self._password = password
        self._response_timeout = response_timeout
        self._connect_timeout = connect_timeout

        self._connected = False
        self._transport = None
        self._received_message = ""
        self._lock = asyncio.Lock()
        self._greeting = None
        self._pending = None
        # Digest to put in front of the next request of this session
        self._prefix = ""
        self.authentication_required: Optional[bool] = None

    @property
    def connection_name(self) -> str:
        return f"{self._hostname}:{self._port}"

    async def async_connect(self):
        """Open the session and process the greeting."""
        self._greeting = asyncio.get_running_loop().create_future()
        try:
            await asyncio.wait_for(self._open_connection(), self._connect_timeout)
            greeting = await asyncio.wait_for(self._greeting, self._response_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            self.close()
            raise ConnectionFailure(f"Unable to open PJLink session with {self.connection_name}: {e!r}") from e
        self._process_greeting(greeting)

    async def _open_connection(self):
        await asyncio.get_running_loop().create_connection(
            lambda: self, host=self._hostname, port=self._port
        )

    def _process_greeting(self, greeting: str):
        if greeting == AUTHENTICATION_ERROR:
            self.close()
            raise AuthenticationFailure("Authentication error, wrong password provided?")
        matched = GREETING.fullmatch(greeting)
        if matched is None:
            self.close()
            raise ParseError(f"Unexpected PJLink greeting {greeting!r}")
        self.authentication_required = matched.group(1) == "1"
        if self.authentication_required:
            if not self._password:
                self.close()
                raise AuthenticationFailure(f"{self.connection_name} requires a password")
            self._prefix = authentication_digest(matched.group(2) or "", self._password)
        else:
            self._prefix = ""

    def close(self):
        if self._transport:
            self._transport.close()
        self._connected = False

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._connected = True
        self._transport = transport
        self._received_message = ""
        self._logger.info(f"Connection Made: {self.connection_name}")

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._connected = False
        self._transport = None
        for future in (self._greeting, self._pending):
            if future is not None and not future.done():
                future.set_exception(ConnectionFailure(f"Connection to {self.connection_name} lost"))
        self._logger.info(f"PJLink session with {self.connection_name} closed")

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"data_received client: {data}")
        self._received_message += data.decode("ascii", errors="ignore")
        *lines, self._received_message = LINE_SEPARATOR.split(self._received_message)
        for line in lines:
            line = line.strip()
            if not line:
                continue
            if self._greeting is not None and not self._greeting.done():
                self._greeting.set_result(line)
            elif self._pending is not None and not self._pending.done():
                self._pending.set_result(line)
            else:
                self._logger.debug(f"Ignoring unsolicited line {line!r}")

    async def execute(self, command: str, parameter: str) -> str:
        """Send one request and return the value of its response."""
        async with self._lock:
            if not self._connected:
                await self.async_connect()
            request = self._prefix + build_request(command, parameter)
            self._prefix = ""
            self._pending = asyncio.get_running_loop().create_future()
            try:
                self._logger.debug(f"SEND: {request.encode()}")
                self._transport.write(request.encode("utf-8"))
                line = await asyncio.wait_for(self._pending, self._response_timeout)
            except asyncio.TimeoutError:
                raise CommandTimeout(
                    f"No response to {command} from {self.connection_name} within {self._response_timeout}s"
                ) from None
            finally:
                self._pending = None
        return parse_response(command, line)


def listener_value(value):
    """Power states are reported by name, inputs by their two-digit code."""
    if isinstance(value, PowerState):
        return value.name
    if isinstance(value, Input):
        return value.value
    return value


class PJLinkDevice:
    """Projector or display reachable over PJLink.

    Args:
        config: Connection and refresh settings
        listener: Optional listener notified with refreshed values
        protocol: Session to use instead of a TCP session built from config
    """

    def __init__(
        self,
        config: PJLinkConfig,
        listener: Optional[AvrListener] = None,
        protocol: Optional[PJLinkProtocol] = None,
        **kwargs,
    ):
        self._logger = logging.getLogger(__name__)
        self._config = config
        if protocol is None:
            protocol = PJLinkProtocol(config.ip_address, config.tcp_port, config.admin_password, **kwargs)
        self._protocol = protocol
        self._callback = MultiplexingListener()
        if listener is not None:
            self._callback.register_listener(listener)
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def protocol(self) -> PJLinkProtocol:
        return self._protocol

    def register_listener(self, listener: AvrListener):
        self._callback.register_listener(listener)

    async def _acknowledged(self, command: str, parameter: str):
        value = await self._protocol.execute(command, parameter)
        if value.upper() != ACKNOWLEDGE:
            raise ParseError(f"Expected acknowledgement for {command}, got {value!r}")

    async def power_on(self):
        await self._acknowledged("POWR", "1")

    async def power_off(self):
        await self._acknowledged("POWR", "0")

    async def get_power_state(self) -> PowerState:
        value = await self._protocol.execute("POWR", "?")
        try:
            return PowerState(value)
        except ValueError:
            raise ParseError(f"Unknown power state {value!r}") from None

    async def select_input(self, target: Input):
        await self._acknowledged("INPT", target.value)

    async def get_input(self) -> Input:
        value = await self._protocol.execute("INPT", "?")
        try:
            return Input(value)
        except ProtocolViolation as e:
            raise ParseError(str(e)) from e

    async def set_mute(self, instruction: MuteInstruction):
        await self._acknowledged("AVMT", instruction.value)

    async def get_mute_state(self) -> Tuple[bool, bool]:
        """Return (video muted, audio muted)."""
        return parse_mute_state(await self._protocol.execute("AVMT", "?"))

    async def get_identification(self, identification: IdentificationProperty) -> str:
        return await self._protocol.execute(identification.value, "?")

    async def get_identifications(self) -> Dict[IdentificationProperty, str]:
        """Query every identification property, skipping the ones the device does not know."""
        result = {}
        for identification in IdentificationProperty:
            try:
                result[identification] = await self.get_identification(identification)
            except DeviceError as e:
                self._logger.debug(f"{identification.value} not available: {e}")
        return result

    async def refresh(self) -> Dict[str, Any]:
        """Poll the values enabled in the configuration and notify the listeners."""
        values: Dict[str, Any] = {}
        if self._config.refresh_power:
            values[CHANNEL_POWER] = await self.get_power_state()
        if self._config.refresh_mute:
            values[CHANNEL_VIDEO_MUTE], values[CHANNEL_AUDIO_MUTE] = await self.get_mute_state()
        if self._config.refresh_input_channel:
            values[CHANNEL_INPUT] = await self.get_input()
        for channel, value in values.items():
            self._callback.state_changed(channel, listener_value(value))
        return values

    def start_polling(self):
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._poll())

    async def _poll(self):
        failing = False
        try:
            while True:
                try:
                    await self.refresh()
                    failing = False
                except AuthenticationFailure as e:
                    self._logger.error(f"Stopping PJLink polling of {self._protocol.connection_name}: {e}")
                    self._callback.error(str(e))
                    return
                except (CommandTimeout, ConnectionFailure, DeviceError, ParseError) as e:
                    # Log once per failure streak
                    if not failing:
                        self._logger.warning(f"PJLink refresh of {self._protocol.connection_name} failed: {e}")
                    failing = True
                await asyncio.sleep(self._config.refresh)
        except asyncio.CancelledError:
            self._logger.debug("PJLink polling cancelled")

    def close(self):
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None
        self._protocol.close()

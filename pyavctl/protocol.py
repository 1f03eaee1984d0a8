import asyncio
import logging
import re
from abc import ABC, abstractmethod
from asyncio import Future, Task
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import serial_asyncio

from pyavctl.commands import Command, Response, parse_response
from pyavctl.config import DEFAULT_AVR_PORT, AvrConfig
from pyavctl.exceptions import CommandTimeout, ConnectionFailure, ParseError
from pyavctl.listener import ConnectionListener

# The receiver terminates lines with CR, some firmwares with CRLF
LINE_SEPARATOR = re.compile(r"\r\n|\r|\n")

DEFAULT_RESPONSE_TIMEOUT = 0.5
DEFAULT_NOTIFICATION_DELAY = 0.25
DEFAULT_CONNECT_TIMEOUT = 5.0
SERIAL_BAUDRATE = 9600


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class AvrProtocol(asyncio.Protocol, ABC):
    """Line protocol client for one receiver.

    Subclasses name the connection and open the transport (TCP or serial).

    Only one command is in flight at a time. While a command waits for its
    answer, each received line is checked against it: a line of the expected
    type for the same zone, or any error line, is handed to the sender. Every
    other line is a notification and goes to the listeners, debounced per
    response type so a turning volume knob yields one callback per window.
    """

    _received_message: str
    _pending: Optional[Tuple[Command, Future]]
    _notification_tasks: Dict[str, Task[Any]]
    _listeners: List[ConnectionListener]

    def __init__(
        self,
        response_timeout=DEFAULT_RESPONSE_TIMEOUT,
        notification_delay=DEFAULT_NOTIFICATION_DELAY,
        connect_timeout=DEFAULT_CONNECT_TIMEOUT,
    ):
        self._logger = logging.getLogger(__name__)
        self._response_timeout = response_timeout
        self._notification_delay = notification_delay
        self._connect_timeout = connect_timeout

        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._transport = None
        self.peer_name = None
        self._received_message = ""
        self._listeners = []
        # Held across write + wait so answers cannot be attributed to the wrong command
        self._send_lock = asyncio.Lock()
        self._pending = None
        # Response type name -> scheduled delivery of the latest notification
        self._notification_tasks = {}

    @property
    @abstractmethod
    def connection_name(self) -> str:
        pass

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def register_listener(self, listener: ConnectionListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: ConnectionListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            self._logger.info("Listener isn't registered")

    @abstractmethod
    async def _open_connection(self):
        pass

    async def async_connect(self):
        """Open the stream. Raises ConnectionFailure if the device is unreachable."""
        if self._state is ConnectionState.CONNECTED:
            return
        self._closed = False
        self._state = ConnectionState.CONNECTING
        self._logger.debug(f"Connecting to {self.connection_name}")
        try:
            await asyncio.wait_for(self._open_connection(), self._connect_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            self._state = ConnectionState.DISCONNECTED
            raise ConnectionFailure(f"Unable to connect to {self.connection_name}: {e!r}") from e

    def close(self):
        self._closed = True
        self._cancel_notifications()
        if self._transport:
            self._transport.close()
        else:
            self._state = ConnectionState.DISCONNECTED

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self._received_message = ""
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.connection_name}")
        self._notify("connected")

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._handle_connection_broken(exc)

    def _handle_connection_broken(self, cause: Optional[BaseException]):
        """Single place where a broken stream is turned into a disconnection event."""
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        transport, self._transport = self._transport, None
        if transport is not None and not transport.is_closing():
            transport.close()

        # Release a sender still waiting for its answer
        if self._pending is not None:
            _, future = self._pending
            if not future.done():
                future.set_exception(ConnectionFailure(f"Connection to {self.connection_name} lost"))
        self._cancel_notifications()

        if self._closed:
            # Only info in here as close has been called.
            self._logger.info(f"Disconnected from {self.connection_name} not reconnecting")
            return
        self._logger.warning(f"Disconnected from {self.connection_name}. Cause: {cause}")
        self._notify("disconnected", cause)

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"data_received client: {data}")
        self._received_message += data.decode("ascii", errors="ignore")
        # The last chunk has no terminator yet, keep it for the next packet
        *lines, self._received_message = LINE_SEPARATOR.split(self._received_message)
        for line in lines:
            line = line.strip()
            if line:
                self._process_received_line(line)

    def _process_received_line(self, line: str):
        try:
            response = parse_response(line)
        except ParseError as e:
            self._logger.debug(f"RECV: dropped line from {self.connection_name}: {e}")
            return

        if self._pending is not None:
            command, future = self._pending
            if not future.done() and command.matches(response):
                self._logger.debug(f"RECV: {response} answers {command}")
                future.set_result(response)
                return
        self._logger.debug(f"RECV: notification {response}")
        self._schedule_notification(response)

    def _schedule_notification(self, response: Response):
        key = response.response_type.name
        old_task = self._notification_tasks.get(key)
        if old_task is not None and not old_task.done():
            old_task.cancel()
        self._notification_tasks[key] = asyncio.get_running_loop().create_task(
            self._debounce_notification(key, response)
        )

    async def _debounce_notification(self, key: str, response: Response):
        """Deliver the notification unless a newer one of the same type supersedes it."""
        try:
            await asyncio.sleep(self._notification_delay)
        except asyncio.CancelledError:
            self._logger.debug(f"Notification {response} superseded")
            return
        if self._notification_tasks.get(key) is asyncio.current_task():
            del self._notification_tasks[key]
        self._notify("notification_received", response)

    def _cancel_notifications(self):
        for task in self._notification_tasks.values():
            if not task.done():
                task.cancel()
        self._notification_tasks.clear()

    def _notify(self, method: str, *args):
        # Listener failures must not break the connection
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as e:
                self._logger.error(f"Exception in {method}() callback: {e}", exc_info=True)

    def _write(self, command: Command):
        message = command.serialize()
        if self._transport is None or self._transport.is_closing():
            error = ConnectionFailure(f"Not connected to {self.connection_name}")
            self._handle_connection_broken(error)
            raise error
        self._logger.debug(f"SEND: {message.encode()}")
        try:
            self._transport.write(message.encode("ascii"))
        except (OSError, RuntimeError) as e:
            self._handle_connection_broken(e)
            raise ConnectionFailure(f"Failed to write to {self.connection_name}: {e!r}") from e

    async def send_command(self, command: Command, wait_for_response: bool = True) -> Response:
        """Send a command and return its answer.

        Connects first if needed. Commands that expect no answer, or that are
        sent with wait_for_response=False, return a NONE response right away.

        Raises:
            ConnectionFailure: if the device cannot be reached or the stream breaks
            CommandTimeout: if no answer arrives within the response timeout
        """
        async with self._send_lock:
            if self._state is not ConnectionState.CONNECTED:
                await self.async_connect()

            if not wait_for_response or not command.is_response_expected():
                self._write(command)
                return Response.none(command.zone)

            future = asyncio.get_running_loop().create_future()
            self._pending = (command, future)
            try:
                self._write(command)
                return await asyncio.wait_for(future, self._response_timeout)
            except asyncio.TimeoutError:
                raise CommandTimeout(
                    f"No response to {command} from {self.connection_name} "
                    f"within {self._response_timeout}s"
                ) from None
            finally:
                self._pending = None


class IpAvrProtocol(AvrProtocol):
    """Receiver reached over TCP (telnet-style port, 23 or 8102)."""

    def __init__(self, hostname, port=DEFAULT_AVR_PORT, **kwargs):
        super().__init__(**kwargs)
        self._hostname = hostname
        self._port = port

    @property
    def connection_name(self) -> str:
        return f"{self._hostname}:{self._port}"

    async def _open_connection(self):
        await asyncio.get_running_loop().create_connection(
            lambda: self, host=self._hostname, port=self._port
        )


class SerialAvrProtocol(AvrProtocol):
    """Receiver reached over an RS-232 port."""

    def __init__(self, serial_port, baudrate=SERIAL_BAUDRATE, **kwargs):
        super().__init__(**kwargs)
        self._serial_port = serial_port
        self._baudrate = baudrate

    @property
    def connection_name(self) -> str:
        return self._serial_port

    async def _open_connection(self):
        await serial_asyncio.create_serial_connection(
            asyncio.get_running_loop(), lambda: self, self._serial_port, baudrate=self._baudrate
        )


def create_protocol(config: AvrConfig, **kwargs) -> AvrProtocol:
    """Build the TCP or serial connection described by the configuration."""
    if config.use_serial:
        return SerialAvrProtocol(config.serial_port, **kwargs)
    return IpAvrProtocol(config.ip_address, config.tcp_port, **kwargs)

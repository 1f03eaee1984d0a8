"""Pioneer AVR - zone control on top of the line protocol connection.

This module maps intents (power, volume, mute, input, listening mode) to
command sequences and turns answers and notifications into channel state:
- Double power-on pulse (first one only wakes the CPU)
- Direct set-volume or burst stepping, depending on the model
- Zone re-query after power-on, channels cleared after power-off
- Health checker that probes the receiver while it is offline and
  re-syncs every zone once it is back
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Set, Union

from pyavctl.burst import BurstCommandSender
from pyavctl.commands import (
    DISPLAY_INFORMATION,
    DISPLAY_QUERY,
    INPUT_CHANGE_CYCLIC,
    INPUT_CHANGE_REVERSE,
    INPUT_CHANNEL_SET,
    INPUT_QUERY,
    INPUT_SOURCE_CHANNEL,
    LISTENING_MODE_CHANGE_CYCLIC,
    LISTENING_MODE_QUERY,
    MUTE_OFF,
    MUTE_ON,
    MUTE_QUERY,
    MUTE_STATE,
    NONE,
    OFF_VALUE,
    ON_VALUE,
    POWER_OFF,
    POWER_ON,
    POWER_QUERY,
    POWER_STATE,
    VOLUME_DOWN,
    VOLUME_LEVEL,
    VOLUME_QUERY,
    VOLUME_SET,
    VOLUME_UP,
    Command,
    CommandType,
    Response,
    decode_display_information,
)
from pyavctl.config import ZONE_CHANNEL_ID_PATTERN, AvrConfig
from pyavctl.exceptions import AvControlError, CommandNotSupported, CommandTimeout, ConnectionFailure
from pyavctl.listener import AvrListener, ConnectionListener, MultiplexingListener
from pyavctl.models import ModelProperties
from pyavctl.protocol import AvrProtocol, create_protocol
from pyavctl.volume import VolumeConverter

DEFAULT_CHECK_INTERVAL = 10.0
DEFAULT_CHECK_INITIAL_DELAY = 1.0
# The second power-on has to follow the wake-up one after 100 ms
DEFAULT_POWER_ON_DELAY = 0.1


class _Undefined:
    def __repr__(self):
        return "UNDEF"


UNDEF = _Undefined()


class Channel(Enum):
    POWER = "power"
    VOLUME_DB = "volumeDb"
    VOLUME_DIMMER = "volumeDimmer"
    MUTE = "mute"
    SET_INPUT_SOURCE = "setInputSource"
    LISTENING_MODE = "listeningMode"
    DISPLAY_INFORMATION = "displayInformation"


class Intent(Enum):
    REFRESH = "REFRESH"
    ON = "ON"
    OFF = "OFF"
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


class Percent(NamedTuple):
    value: float


class Decibel(NamedTuple):
    value: float


IntentValue = Union[Intent, Percent, Decibel, str]


def channel_id(channel: Channel, zone: int) -> str:
    if channel is Channel.DISPLAY_INFORMATION:
        return channel.value
    return ZONE_CHANNEL_ID_PATTERN % (zone, channel.value)


class Zone:
    """Last known state of one zone of the receiver."""

    def __init__(self, zone_id: int):
        self._id = zone_id
        self._state: Dict[Channel, Any] = {}

    @property
    def id(self) -> int:
        return self._id

    @property
    def power(self) -> Optional[bool]:
        return self._state.get(Channel.POWER)

    @property
    def volume_db(self):
        """Volume in dB, UNDEF while the zone is off."""
        return self._state.get(Channel.VOLUME_DB)

    @property
    def volume_percent(self):
        return self._state.get(Channel.VOLUME_DIMMER)

    @property
    def mute(self):
        return self._state.get(Channel.MUTE)

    @property
    def input_source(self):
        return self._state.get(Channel.SET_INPUT_SOURCE)

    def _update(self, channel: Channel, value: Any):
        self._state[channel] = value


class AvrReceiver(ConnectionListener):
    """High level control of one receiver.

    Args:
        connection: Line protocol connection, TCP or serial
        model: Properties of the receiver model, already merged with configuration
        listener: Optional listener for state updates
        check_interval: Seconds between two probes while offline
        check_initial_delay: Seconds before the first probe
        power_on_delay: Seconds between the two power-on commands
    """

    def __init__(
        self,
        connection: AvrProtocol,
        model: ModelProperties,
        listener: Optional[AvrListener] = None,
        check_interval=DEFAULT_CHECK_INTERVAL,
        check_initial_delay=DEFAULT_CHECK_INITIAL_DELAY,
        power_on_delay=DEFAULT_POWER_ON_DELAY,
    ):
        self._logger = logging.getLogger(__name__)
        self._connection = connection
        self._model = model
        self._check_interval = check_interval
        self._check_initial_delay = check_initial_delay
        self._power_on_delay = power_on_delay
        self._volume_converter = VolumeConverter(model)
        self._burst_sender = BurstCommandSender(
            connection, model.burst_mode_enabled, model.burst_message_delay
        )
        self._callback = MultiplexingListener()
        if listener is not None:
            self._callback.register_listener(listener)

        self._online = False
        self._closing = False
        self._checker_task: Optional[asyncio.Task] = None
        # Set while the checker is inside a probe; cancelling it then would abort a connect in progress
        self._checking_status = False
        self._background_tasks: Set[asyncio.Task] = set()

        self.zones_by_id: Dict[int, Zone] = {
            zone_id: Zone(zone_id) for zone_id in range(1, model.nb_zones + 1)
        }
        self.display_information: Optional[str] = None

        connection.register_listener(self)

    @classmethod
    def from_config(cls, config: AvrConfig, model: ModelProperties, listener: Optional[AvrListener] = None, **kwargs):
        """Build a receiver from a device configuration and a base model."""
        return cls(create_protocol(config), config.apply_to(model), listener, **kwargs)

    @property
    def model(self) -> ModelProperties:
        return self._model

    @property
    def volume_converter(self) -> VolumeConverter:
        return self._volume_converter

    @property
    def connection_name(self) -> str:
        return self._connection.connection_name

    @property
    def is_online(self) -> bool:
        return self._online

    def register_listener(self, listener: AvrListener):
        self._callback.register_listener(listener)

    def unregister_listener(self, listener: AvrListener):
        self._callback.unregister_listener(listener)

    async def async_connect(self):
        """Probe the receiver. If it is unreachable the health checker keeps trying."""
        self._closing = False
        self._logger.debug(f"Initializing AVR @{self.connection_name} ({self._model.model})")
        await self.check_status()

    def close(self):
        self._closing = True
        self._stop_connection_checker(force=True)
        for task in list(self._background_tasks):
            task.cancel()
        self._connection.close()

    def _create_task(self, coroutine):
        task = asyncio.get_running_loop().create_task(coroutine)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # Health checking

    def _start_connection_checker(self):
        if self._closing:
            return
        if self._checker_task is None or self._checker_task.done():
            self._logger.debug(f"Starting connection checker for AVR @{self.connection_name}")
            self._checker_task = asyncio.get_running_loop().create_task(self._connection_checker())

    def _stop_connection_checker(self, force=False):
        task = self._checker_task
        if task is None or task.done():
            return
        if self._checking_status and not force:
            # The running probe ends the loop itself once the receiver is online
            return
        task.cancel()
        self._checker_task = None

    async def _connection_checker(self):
        """Probe the receiver periodically until it is online again."""
        try:
            await asyncio.sleep(self._check_initial_delay)
            while not self._online and not self._closing:
                self._checking_status = True
                try:
                    await self.check_status()
                finally:
                    self._checking_status = False
                if self._online:
                    break
                await asyncio.sleep(self._check_interval)
        except asyncio.CancelledError:
            self._logger.debug("Connection checker cancelled")

    async def check_status(self):
        """Send a power query to zone 1 to find out whether the receiver is reachable.

        On success the connection reports itself as connected, which re-syncs
        the zones; nothing else happens here.
        """
        self._logger.debug(f"Checking status of AVR @{self.connection_name}")
        try:
            await self._connection.send_command(Command(POWER_QUERY, 1))
        except ConnectionFailure as e:
            self._logger.debug(f"AVR @{self.connection_name} unreachable: {e}")
            self._go_offline()
        except CommandTimeout as e:
            # The query went out so the link is up, only the answer is missing
            self._logger.debug(f"Timeout during check_status: {e}")

    def _go_offline(self):
        if self._online:
            self._online = False
            self._callback.disconnected()
        self._start_connection_checker()

    # Connection events

    def connected(self):
        self._logger.info(f"The AVR @{self.connection_name} is connected.")
        self._online = True
        self._stop_connection_checker()
        self._callback.connected()
        self._create_task(self._on_connection())

    def disconnected(self, cause: Optional[BaseException]):
        self._logger.warning(
            f"The AVR @{self.connection_name} is disconnected. Cause: {cause if cause else 'unknown'}"
        )
        self._go_offline()

    def notification_received(self, response: Response):
        self._create_task(self._handle_notification(response))

    async def _handle_notification(self, response: Response):
        try:
            await self._manage_response(response)
        except AvControlError as e:
            self._logger.debug(f"Notification {response} from AVR @{self.connection_name} not processed: {e}")

    async def _on_connection(self):
        try:
            await self.update_zones()
            try:
                self._manage_display_information_update(
                    await self._connection.send_command(Command(DISPLAY_QUERY, 1))
                )
            except CommandTimeout:
                # The display query is allowed to go unanswered
                self._logger.debug(
                    f"Failed to update the AVR @{self.connection_name} display after connection."
                )
                self._update_state(Channel.DISPLAY_INFORMATION, 1, "")
        except ConnectionFailure as e:
            self._logger.debug(f"Zone update of AVR @{self.connection_name} interrupted: {e}")

    async def update_zones(self):
        """Query the power state of every zone and refresh the zones that are on."""
        for zone in range(1, self._model.nb_zones + 1):
            try:
                await self._manage_response(await self.send_power_query(zone))
            except CommandTimeout as e:
                self._logger.error(f"Timeout when updating the zone {zone}. Cause: {e}")

    async def on_power_on(self, zone: int):
        # The receiver does not push these when a zone wakes up
        try:
            await self._manage_response(await self.send_volume_query(zone))
            await self._manage_response(await self.send_mute_query(zone))
            await self._manage_response(await self.send_input_source_query(zone))
        except CommandTimeout as e:
            self._logger.error(
                f"Timeout when updating state of zone {zone} of AVR @{self.connection_name} after power on. "
                f"Cause: {e}"
            )

    def on_power_off(self, zone: int):
        for channel in (Channel.MUTE, Channel.VOLUME_DB, Channel.VOLUME_DIMMER, Channel.SET_INPUT_SOURCE):
            self._update_state(channel, zone, UNDEF)

    # Intents

    async def handle_command(self, channel: Channel, zone: int, intent: IntentValue):
        """Apply an intent to a channel of a zone.

        Unsupported combinations and timeouts are logged, never raised.
        """
        try:
            if channel is Channel.DISPLAY_INFORMATION:
                if intent is not Intent.REFRESH:
                    raise CommandNotSupported("Command type not supported.")
                self._manage_display_information_update(await self._send(DISPLAY_QUERY, 1))
                return

            if not self._model.is_zone_supported(zone):
                self._logger.warning(
                    f"Command for zone {zone} not sent since zone {zone} is not supported by "
                    f"the AVR @{self.connection_name}."
                )
                return

            if channel is Channel.POWER:
                response = await self.send_power_command(intent, zone)
            elif channel in (Channel.VOLUME_DB, Channel.VOLUME_DIMMER):
                response = await self.send_volume_command(intent, zone)
            elif channel is Channel.SET_INPUT_SOURCE:
                response = await self.send_input_source_command(intent, zone)
            elif channel is Channel.MUTE:
                response = await self.send_mute_command(intent, zone)
            else:
                response = await self.send_listening_mode_command(intent, zone)
            await self._manage_response(response)
        except CommandNotSupported as e:
            self._logger.info(f"Unsupported command type {intent} received for channel {channel.value}: {e}")
        except CommandTimeout as e:
            self._logger.error(
                f"Timeout when processing command {intent} of channel {channel_id(channel, zone)} "
                f"of AVR @{self.connection_name}. Cause: {e}"
            )
        except ConnectionFailure as e:
            self._logger.warning(f"Command {intent} of channel {channel_id(channel, zone)} not sent: {e}")
            self._go_offline()

    async def _send(self, command_type: CommandType, zone: int, parameter: Optional[str] = None) -> Response:
        return await self._connection.send_command(Command(command_type, zone, parameter))

    async def send_power_query(self, zone: int) -> Response:
        return await self._send(POWER_QUERY, zone)

    async def send_volume_query(self, zone: int) -> Response:
        return await self._send(VOLUME_QUERY, zone)

    async def send_mute_query(self, zone: int) -> Response:
        return await self._send(MUTE_QUERY, zone)

    async def send_input_source_query(self, zone: int) -> Response:
        return await self._send(INPUT_QUERY, zone)

    async def send_power_command(self, intent: IntentValue, zone: int) -> Response:
        if intent is Intent.ON:
            # The first power-on only wakes the receiver CPU up
            await self._send(POWER_ON, zone)
            await asyncio.sleep(self._power_on_delay)
            return await self._send(POWER_ON, zone)
        if intent is Intent.OFF:
            return await self._send(POWER_OFF, zone)
        if intent is Intent.REFRESH:
            return await self.send_power_query(zone)
        raise CommandNotSupported("Command type not supported.")

    async def send_volume_command(self, intent: IntentValue, zone: int) -> Response:
        # On/off on a volume channel is the mute
        if intent in (Intent.ON, Intent.OFF):
            return await self.send_mute_command(intent, zone)
        if intent is Intent.INCREASE:
            return await self._send(VOLUME_UP, zone)
        if intent is Intent.DECREASE:
            return await self._send(VOLUME_DOWN, zone)
        if isinstance(intent, Percent):
            native = self._volume_converter.percent_to_native(intent.value, zone)
            self._logger.debug(f"Set volume to {intent.value} %")
            return await self.send_set_volume(native, zone)
        if isinstance(intent, Decibel):
            native = self._volume_converter.db_to_native(intent.value, zone)
            self._logger.debug(f"Set volume to {intent.value} dB")
            return await self.send_set_volume(native, zone)
        if intent is Intent.REFRESH:
            return await self.send_volume_query(zone)
        raise CommandNotSupported("Command type not supported.")

    async def send_set_volume(self, native_volume: str, zone: int) -> Response:
        if self._model.set_volume_enabled:
            return await self._send(VOLUME_SET, zone, native_volume)
        return await self._burst_sender.send_set_volume(native_volume, zone)

    async def send_input_source_command(self, intent: IntentValue, zone: int) -> Response:
        if intent is Intent.INCREASE:
            return await self._send(INPUT_CHANGE_CYCLIC, zone)
        if intent is Intent.DECREASE:
            return await self._send(INPUT_CHANGE_REVERSE, zone)
        if isinstance(intent, str):
            code = self._model.input_code(intent)
            if code is None:
                raise CommandNotSupported(f"Unknown input source {intent!r}")
            return await self._send(INPUT_CHANNEL_SET, zone, code)
        if intent is Intent.REFRESH:
            return await self.send_input_source_query(zone)
        raise CommandNotSupported("Command type not supported.")

    async def send_mute_command(self, intent: IntentValue, zone: int) -> Response:
        if intent is Intent.ON:
            return await self._send(MUTE_ON, zone)
        if intent is Intent.OFF:
            return await self._send(MUTE_OFF, zone)
        if intent is Intent.REFRESH:
            return await self.send_mute_query(zone)
        raise CommandNotSupported("Command type not supported.")

    async def send_listening_mode_command(self, intent: IntentValue, zone: int) -> Response:
        if intent is Intent.INCREASE:
            return await self._send(LISTENING_MODE_CHANGE_CYCLIC, zone)
        if intent is Intent.REFRESH:
            return await self._send(LISTENING_MODE_QUERY, zone)
        raise CommandNotSupported("Command type not supported.")

    async def power_on(self, zone: int = 1):
        await self.handle_command(Channel.POWER, zone, Intent.ON)

    async def power_off(self, zone: int = 1):
        await self.handle_command(Channel.POWER, zone, Intent.OFF)

    async def set_volume_percent(self, zone: int, percent: float):
        await self.handle_command(Channel.VOLUME_DIMMER, zone, Percent(percent))

    async def set_volume_db(self, zone: int, db: float):
        await self.handle_command(Channel.VOLUME_DB, zone, Decibel(db))

    async def volume_up(self, zone: int = 1):
        await self.handle_command(Channel.VOLUME_DIMMER, zone, Intent.INCREASE)

    async def volume_down(self, zone: int = 1):
        await self.handle_command(Channel.VOLUME_DIMMER, zone, Intent.DECREASE)

    async def set_mute(self, zone: int, mute: bool):
        await self.handle_command(Channel.MUTE, zone, Intent.ON if mute else Intent.OFF)

    async def select_input(self, zone: int, source: str):
        """Select an input by name ("HDMI 1") or by code ("19")."""
        await self.handle_command(Channel.SET_INPUT_SOURCE, zone, source)

    async def next_input(self, zone: int = 1):
        await self.handle_command(Channel.SET_INPUT_SOURCE, zone, Intent.INCREASE)

    async def previous_input(self, zone: int = 1):
        await self.handle_command(Channel.SET_INPUT_SOURCE, zone, Intent.DECREASE)

    async def next_listening_mode(self):
        await self.handle_command(Channel.LISTENING_MODE, 1, Intent.INCREASE)

    async def refresh(self, zone: int = 1):
        for channel in (Channel.POWER, Channel.VOLUME_DIMMER, Channel.MUTE, Channel.SET_INPUT_SOURCE):
            await self.handle_command(channel, zone, Intent.REFRESH)

    # State updates

    async def _manage_response(self, response: Optional[Response]):
        if response is None or response.response_type is NONE:
            return
        if response.response_type.is_error:
            message = f"AVR @{self.connection_name} answered {response.response_type.name}"
            self._logger.warning(message)
            self._callback.error(message)
            return
        if response.zone not in self.zones_by_id and response.response_type is not DISPLAY_INFORMATION:
            self._logger.debug(f"Discarding {response} for a zone the model does not have")
            return

        if response.response_type is POWER_STATE:
            await self._manage_power_state_update(response)
        elif response.response_type is VOLUME_LEVEL:
            self._manage_volume_level_update(response)
        elif response.response_type is MUTE_STATE:
            self._manage_mute_state_update(response)
        elif response.response_type is INPUT_SOURCE_CHANNEL:
            self._manage_input_source_update(response)
        elif response.response_type is DISPLAY_INFORMATION:
            self._manage_display_information_update(response)
        else:
            self._logger.debug(f"Unknown notification type from AVR @{self.connection_name}, discarded: {response}")

    async def _manage_power_state_update(self, response: Response):
        power = response.parameter == ON_VALUE
        if power:
            await self.on_power_on(response.zone)
        else:
            self.on_power_off(response.zone)
        self._update_state(Channel.POWER, response.zone, power)

    def _manage_volume_level_update(self, response: Response):
        zone = response.zone
        if self._model.db_channels_enabled:
            self._update_state(
                Channel.VOLUME_DB, zone, self._volume_converter.native_to_db(response.parameter, zone)
            )
        self._update_state(
            Channel.VOLUME_DIMMER, zone, int(self._volume_converter.native_to_percent(response.parameter, zone))
        )

    def _manage_mute_state_update(self, response: Response):
        self._update_state(Channel.MUTE, response.zone, response.parameter != OFF_VALUE)

    def _manage_input_source_update(self, response: Response):
        self._update_state(Channel.SET_INPUT_SOURCE, response.zone, response.parameter)

    def _manage_display_information_update(self, response: Optional[Response]):
        if response is None or response.response_type is not DISPLAY_INFORMATION:
            return
        self._update_state(Channel.DISPLAY_INFORMATION, 1, decode_display_information(response.parameter))

    def _update_state(self, channel: Channel, zone: int, value: Any):
        if channel is Channel.DISPLAY_INFORMATION:
            self.display_information = value
        elif zone in self.zones_by_id:
            self.zones_by_id[zone]._update(channel, value)
        self._callback.state_changed(channel_id(channel, zone), value)

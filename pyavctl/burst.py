import asyncio
import logging

from pyavctl.commands import VOLUME_DOWN, VOLUME_QUERY, VOLUME_UP, Command, CommandType, Response
from pyavctl.models import DEFAULT_BURST_MESSAGE_DELAY
from pyavctl.protocol import AvrProtocol


class BurstCommandSender:
    """Reaches a volume level with repeated up/down steps.

    In burst mode the steps are written without waiting for answers, paced by
    burst_message_delay. Whatever the receiver sends back meanwhile is handled
    as notifications. With burst mode off every step waits for its answer,
    which is slow but never loses a step.

    Args:
        connection: Connection used to send the steps
        burst_mode_enabled: Send steps without waiting for answers
        burst_message_delay: Pause between two steps, in milliseconds
    """

    def __init__(
        self,
        connection: AvrProtocol,
        burst_mode_enabled: bool = True,
        burst_message_delay: int = DEFAULT_BURST_MESSAGE_DELAY,
    ):
        self._logger = logging.getLogger(__name__)
        self._connection = connection
        self._burst_mode_enabled = burst_mode_enabled
        self._burst_message_delay = burst_message_delay
        # asyncio.Lock wakes waiters in FIFO order, so concurrent set-volume requests run in turn
        self._set_volume_lock = asyncio.Lock()

    @property
    def burst_mode_enabled(self) -> bool:
        return self._burst_mode_enabled

    async def send_burst_commands(self, command_type: CommandType, zone: int, count: int):
        """Send the same command count times."""
        wait_for_response = not self._burst_mode_enabled
        for index in range(count):
            if index > 0 and self._burst_mode_enabled:
                await asyncio.sleep(self._burst_message_delay / 1000)
            await self._connection.send_command(Command(command_type, zone), wait_for_response)

    async def send_set_volume(self, requested_volume: str, zone: int) -> Response:
        """Step the zone volume to requested_volume (native units).

        Returns:
            The volume query answer received before stepping
        """
        async with self._set_volume_lock:
            response = await self._connection.send_command(Command(VOLUME_QUERY, zone))
            if response.response_type is not VOLUME_QUERY.response_type:
                self._logger.warning(f"Unexpected answer to volume query of zone {zone}: {response}")
                return response
            current = int(response.parameter)
            delta = int(requested_volume) - current
            command_type = VOLUME_DOWN if delta < 0 else VOLUME_UP
            self._logger.debug(
                f"Current volume: {current}, requested volume: {requested_volume}, "
                f"sending {abs(delta)} x {command_type.name}"
            )
            await self.send_burst_commands(command_type, zone, abs(delta))
        return response

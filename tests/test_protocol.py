"""
Unit tests for the receiver connection: correlation, timeouts, notifications
and disconnection handling.
"""

import asyncio
import unittest
from unittest.mock import Mock

from pyavctl.commands import (
    MUTE_QUERY,
    MUTE_STATE,
    POWER_ON,
    POWER_STATE,
    UNKNOWN_COMMAND,
    VOLUME_LEVEL,
    VOLUME_QUERY,
    VOLUME_UP,
    Command,
    Response,
)
from pyavctl.config import AvrConfig
from pyavctl.exceptions import CommandTimeout, ConnectionFailure
from pyavctl.listener import ConnectionListener
from pyavctl.protocol import AvrProtocol, ConnectionState, IpAvrProtocol, SerialAvrProtocol, create_protocol
from tests.fakes import FakeAvrProtocol


class TestSendCommand(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.listener = Mock(spec=ConnectionListener)
        self.protocol = FakeAvrProtocol(replies={"?V\r": b"VOL093\r"})
        self.protocol.register_listener(self.listener)

    async def test_connects_on_first_command(self):
        self.assertEqual(self.protocol.state, ConnectionState.DISCONNECTED)
        await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(self.protocol.connect_calls, 1)
        self.assertTrue(self.protocol.is_connected)
        self.listener.connected.assert_called_once_with()

        await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(self.protocol.connect_calls, 1)

    async def test_returns_the_answer(self):
        response = await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(response, Response(VOLUME_LEVEL, 1, "093"))
        self.assertEqual(self.protocol.written, ["?V\r"])

    async def test_command_without_answer_returns_none_response(self):
        response = await self.protocol.send_command(Command(POWER_ON, 2))
        self.assertEqual(response, Response.none(2))
        self.assertEqual(self.protocol.written, ["APO\r"])

    async def test_fire_and_forget(self):
        response = await self.protocol.send_command(Command(VOLUME_UP, 1), wait_for_response=False)
        self.assertEqual(response, Response.none(1))
        self.assertEqual(self.protocol.written, ["VU\r"])

    async def test_interleaved_notifications_are_not_taken_as_answer(self):
        self.protocol.replies["?V\r"] = b"PWR0\rZV45\rMUT1\rVOL093\r"
        response = await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(response, Response(VOLUME_LEVEL, 1, "093"))

        await asyncio.sleep(0.05)
        received = [call.args[0] for call in self.listener.notification_received.call_args_list]
        self.assertCountEqual(received, [
            Response(POWER_STATE, 1, "0"),
            Response(VOLUME_LEVEL, 2, "45"),
            Response(MUTE_STATE, 1, "1"),
        ])

    async def test_error_answers_the_pending_command(self):
        self.protocol.replies["?V\r"] = b"E4\r"
        response = await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertIs(response.response_type, UNKNOWN_COMMAND)

    async def test_timeout(self):
        self.protocol.replies.clear()
        with self.assertRaises(CommandTimeout):
            await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertIsNone(self.protocol._pending)

        # A late answer is a plain notification
        self.protocol.data_received(b"VOL093\r")
        await asyncio.sleep(0.05)
        self.listener.notification_received.assert_called_once_with(Response(VOLUME_LEVEL, 1, "093"))

        # The connection stays usable
        self.protocol.replies["?V\r"] = b"VOL094\r"
        response = await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(response.parameter, "094")

    async def test_commands_are_sent_one_at_a_time(self):
        self.protocol.replies["?M\r"] = b"MUT0\r"
        volume, mute = await asyncio.gather(
            self.protocol.send_command(Command(VOLUME_QUERY, 1)),
            self.protocol.send_command(Command(MUTE_QUERY, 1)),
        )
        self.assertEqual(volume, Response(VOLUME_LEVEL, 1, "093"))
        self.assertEqual(mute, Response(MUTE_STATE, 1, "0"))
        self.assertEqual(self.protocol.written, ["?V\r", "?M\r"])


class TestNotifications(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.listener = Mock(spec=ConnectionListener)
        self.protocol = FakeAvrProtocol(notification_delay=0.05)
        self.protocol.register_listener(self.listener)
        await self.protocol.async_connect()

    async def test_only_latest_value_is_delivered(self):
        for level in (b"VOL090\r", b"VOL091\r", b"VOL092\r"):
            self.protocol.data_received(level)
        await asyncio.sleep(0.15)
        self.listener.notification_received.assert_called_once_with(Response(VOLUME_LEVEL, 1, "092"))

    async def test_types_are_debounced_separately(self):
        self.protocol.data_received(b"VOL090\rMUT0\r")
        await asyncio.sleep(0.15)
        self.assertEqual(self.listener.notification_received.call_count, 2)

    async def test_line_split_across_packets(self):
        self.protocol.data_received(b"VO")
        self.protocol.data_received(b"L09")
        self.protocol.data_received(b"3\r\n")
        await asyncio.sleep(0.15)
        self.listener.notification_received.assert_called_once_with(Response(VOLUME_LEVEL, 1, "093"))

    async def test_unknown_lines_are_dropped(self):
        self.protocol.data_received(b"GBH01\r\r\nSSJ1\r")
        await asyncio.sleep(0.15)
        self.listener.notification_received.assert_not_called()

    async def test_failing_listener_does_not_stop_others(self):
        self.listener.notification_received.side_effect = RuntimeError("boom")
        other = Mock(spec=ConnectionListener)
        self.protocol.register_listener(other)
        self.protocol.data_received(b"PWR1\r")
        await asyncio.sleep(0.15)
        other.notification_received.assert_called_once_with(Response(POWER_STATE, 1, "1"))

    async def test_unregistered_listener_is_not_called(self):
        self.protocol.unregister_listener(self.listener)
        self.protocol.data_received(b"PWR1\r")
        await asyncio.sleep(0.15)
        self.listener.notification_received.assert_not_called()


class TestConnectionLifecycle(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.listener = Mock(spec=ConnectionListener)
        self.protocol = FakeAvrProtocol(response_timeout=1.0)
        self.protocol.register_listener(self.listener)

    async def test_unreachable_device(self):
        self.protocol.reachable = False
        with self.assertRaises(ConnectionFailure):
            await self.protocol.send_command(Command(VOLUME_QUERY, 1))
        self.assertEqual(self.protocol.state, ConnectionState.DISCONNECTED)
        self.listener.connected.assert_not_called()

    async def test_connection_lost_releases_the_sender(self):
        await self.protocol.async_connect()
        task = asyncio.get_running_loop().create_task(self.protocol.send_command(Command(VOLUME_QUERY, 1)))
        await asyncio.sleep(0.01)

        cause = ConnectionResetError("reset by peer")
        self.protocol.connection_lost(cause)
        with self.assertRaises(ConnectionFailure):
            await task
        self.assertEqual(self.protocol.state, ConnectionState.DISCONNECTED)
        self.listener.disconnected.assert_called_once_with(cause)

    async def test_connection_lost_is_reported_once(self):
        await self.protocol.async_connect()
        self.protocol.connection_lost(None)
        self.protocol.connection_lost(None)
        self.listener.disconnected.assert_called_once_with(None)

    async def test_close_is_not_a_disconnection(self):
        await self.protocol.async_connect()
        transport = self.protocol._transport
        self.protocol.close()
        transport.close.assert_called_with()
        self.protocol.connection_lost(None)
        self.listener.disconnected.assert_not_called()

    async def test_pending_notifications_are_dropped_on_disconnection(self):
        await self.protocol.async_connect()
        self.protocol.data_received(b"PWR0\r")
        self.protocol.connection_lost(None)
        await asyncio.sleep(0.05)
        self.listener.notification_received.assert_not_called()


class TestCreateProtocol(unittest.TestCase):

    def test_tcp(self):
        protocol = create_protocol(AvrConfig("192.168.1.20", 8102))
        self.assertIsInstance(protocol, IpAvrProtocol)
        self.assertEqual(protocol.connection_name, "192.168.1.20:8102")

    def test_serial(self):
        protocol = create_protocol(AvrConfig(serial_port="/dev/ttyUSB0", use_serial=True))
        self.assertIsInstance(protocol, SerialAvrProtocol)
        self.assertEqual(protocol.connection_name, "/dev/ttyUSB0")

    def test_transport_is_chosen_by_subclasses(self):
        with self.assertRaises(TypeError):
            AvrProtocol()


if __name__ == '__main__':
    unittest.main()

"""
Unit tests for the PJLink client.
"""

import asyncio
import unittest
from unittest.mock import Mock

from pyavctl.config import PJLinkConfig
from pyavctl.exceptions import (
    AuthenticationFailure,
    CommandTimeout,
    ConnectionFailure,
    DeviceError,
    ParseError,
    ProtocolViolation,
)
from pyavctl.listener import AvrListener
from pyavctl.pjlink import (
    ErrorCode,
    IdentificationProperty,
    Input,
    InputType,
    MuteInstruction,
    PJLinkDevice,
    PowerState,
    authentication_digest,
    build_request,
    parse_mute_state,
    parse_response,
)
from tests.fakes import FakePJLinkProtocol

CHALLENGE = "498e4a67"
PASSWORD = "JBMIAProjectorLink"


class TestMessages(unittest.TestCase):

    def test_authentication_digest(self):
        self.assertEqual(authentication_digest(CHALLENGE, PASSWORD), "5d8409bc1c3fa39749434aa3a5c38682")

    def test_build_request(self):
        self.assertEqual(build_request("POWR", "1"), "%1POWR 1\r")
        self.assertEqual(build_request("INPT", "?"), "%1INPT ?\r")

    def test_parse_value(self):
        self.assertEqual(parse_response("POWR", "%1POWR=1"), "1")
        self.assertEqual(parse_response("NAME", "%1NAME=Living room"), "Living room")
        self.assertEqual(parse_response("POWR", "%1POWR=OK"), "OK")

    def test_parse_error_codes(self):
        with self.assertRaises(DeviceError) as context:
            parse_response("INPT", "%1INPT=ERR2")
        self.assertEqual(context.exception.code, "ERR2")
        self.assertIn("Out of parameter", str(context.exception))

        for code in ("ERR1", "ERR3", "ERR4"):
            with self.subTest(code=code):
                with self.assertRaises(DeviceError):
                    parse_response("POWR", f"%1POWR={code}")

    def test_parse_authentication_error(self):
        with self.assertRaises(AuthenticationFailure):
            parse_response("POWR", "PJLINK ERRA")

    def test_parse_response_to_other_command(self):
        with self.assertRaises(ParseError):
            parse_response("POWR", "%1INPT=31")

    def test_error_code_lookup(self):
        self.assertIs(ErrorCode.for_code("err3"), ErrorCode.UNAVAILABLE_TIME)
        self.assertIsNone(ErrorCode.for_code("OK"))


class TestInput(unittest.TestCase):

    def test_input(self):
        value = Input("31")
        self.assertIs(value.input_type, InputType.DIGITAL)
        self.assertEqual(value.input_number, 1)
        self.assertEqual(value, Input("31"))
        self.assertNotEqual(value, Input("32"))

    def test_invalid_input(self):
        for value in ("61", "3", "311", "3A", ""):
            with self.subTest(value=value):
                with self.assertRaises(ProtocolViolation):
                    Input(value)


class TestMuteState(unittest.TestCase):

    def test_mute_states(self):
        self.assertEqual(parse_mute_state("31"), (True, True))
        self.assertEqual(parse_mute_state("11"), (True, False))
        self.assertEqual(parse_mute_state("21"), (False, True))
        self.assertEqual(parse_mute_state("30"), (False, False))

    def test_unknown_mute_state(self):
        with self.assertRaises(ParseError):
            parse_mute_state("41")


class PJLinkTestCase(unittest.IsolatedAsyncioTestCase):

    def make_device(self, greeting=b"PJLINK 0\r", replies=None, password=None, **config):
        self.listener = Mock(spec=AvrListener)
        self.protocol = FakePJLinkProtocol(greeting=greeting, replies=replies, password=password)
        self.device = PJLinkDevice(PJLinkConfig("fake-projector", **config), self.listener, protocol=self.protocol)
        return self.device

    async def asyncTearDown(self):
        self.device.close()


class TestSession(PJLinkTestCase):

    async def test_without_authentication(self):
        device = self.make_device(replies={"%1POWR ?\r": b"%1POWR=1\r"})
        self.assertIs(await device.get_power_state(), PowerState.ON)
        self.assertFalse(self.protocol.authentication_required)
        self.assertEqual(self.protocol.written, ["%1POWR ?\r"])

    async def test_digest_prefixes_first_request_only(self):
        digest = authentication_digest(CHALLENGE, PASSWORD)
        device = self.make_device(
            greeting=f"PJLINK 1 {CHALLENGE}\r".encode(),
            password=PASSWORD,
            replies={digest + "%1POWR ?\r": b"%1POWR=3\r", "%1POWR 1\r": b"%1POWR=OK\r"},
        )
        self.assertIs(await device.get_power_state(), PowerState.WARM_UP)
        await device.power_on()
        self.assertTrue(self.protocol.authentication_required)
        self.assertEqual(self.protocol.written, [digest + "%1POWR ?\r", "%1POWR 1\r"])

    async def test_authentication_without_password(self):
        device = self.make_device(greeting=f"PJLINK 1 {CHALLENGE}\r".encode())
        with self.assertRaises(AuthenticationFailure):
            await device.get_power_state()
        self.assertEqual(self.protocol.written, [])

    async def test_wrong_password(self):
        digest = authentication_digest(CHALLENGE, "wrong")
        device = self.make_device(
            greeting=f"PJLINK 1 {CHALLENGE}\r".encode(),
            password="wrong",
            replies={digest + "%1POWR ?\r": b"PJLINK ERRA\r"},
        )
        with self.assertRaises(AuthenticationFailure):
            await device.get_power_state()

    async def test_greeting_with_authentication_error(self):
        device = self.make_device(greeting=b"PJLINK ERRA\r")
        with self.assertRaises(AuthenticationFailure):
            await device.get_power_state()

    async def test_missing_greeting(self):
        device = self.make_device(greeting=None)
        with self.assertRaises(ConnectionFailure):
            await device.get_power_state()

    async def test_device_error(self):
        device = self.make_device(replies={"%1INPT 61\r": b"%1INPT=ERR2\r", "%1INPT 31\r": b"%1INPT=OK\r"})
        await device.select_input(Input("31"))
        with self.assertRaises(DeviceError):
            await self.protocol.execute("INPT", "61")

    async def test_no_acknowledgement(self):
        device = self.make_device(replies={"%1AVMT 31\r": b"%1AVMT=31\r"})
        with self.assertRaises(ParseError):
            await device.set_mute(MuteInstruction.AUDIO_AND_VIDEO_ON)

    async def test_timeout(self):
        device = self.make_device()
        with self.assertRaises(CommandTimeout):
            await device.power_off()
        self.assertEqual(self.protocol.written, ["%1POWR 0\r"])

    async def test_identifications(self):
        replies = {f"%1{prop.value} ?\r": f"%1{prop.value}=ERR1\r".encode() for prop in IdentificationProperty}
        replies["%1NAME ?\r"] = b"%1NAME=Living room\r"
        replies["%1LAMP ?\r"] = b"%1LAMP=1200 1\r"
        device = self.make_device(replies=replies)
        self.assertEqual(await device.get_identifications(), {
            IdentificationProperty.NAME: "Living room",
            IdentificationProperty.LAMP_HOURS: "1200 1",
        })


class TestRefresh(PJLinkTestCase):

    REPLIES = {
        "%1POWR ?\r": b"%1POWR=1\r",
        "%1AVMT ?\r": b"%1AVMT=21\r",
        "%1INPT ?\r": b"%1INPT=31\r",
    }

    async def test_refresh_notifies_listener(self):
        device = self.make_device(replies=dict(self.REPLIES))
        values = await device.refresh()
        self.assertEqual(values, {
            "power": PowerState.ON,
            "videoMute": False,
            "audioMute": True,
            "input": Input("31"),
        })
        self.listener.state_changed.assert_any_call("power", "ON")
        self.listener.state_changed.assert_any_call("audioMute", True)
        self.listener.state_changed.assert_any_call("input", "31")

    async def test_refresh_follows_configuration(self):
        device = self.make_device(replies=dict(self.REPLIES), refresh_mute=False, refresh_input_channel=False)
        await device.refresh()
        self.assertEqual(self.protocol.written, ["%1POWR ?\r"])

    async def test_polling_stops_on_authentication_error(self):
        device = self.make_device(replies={"%1POWR ?\r": b"PJLINK ERRA\r"}, refresh=0)
        device.start_polling()
        await asyncio.sleep(0.05)
        self.listener.error.assert_called_once()
        self.assertTrue(device._refresh_task.done())

    async def test_polling_keeps_going_after_failures(self):
        device = self.make_device(replies={"%1POWR ?\r": [b"%1POWR=ERR3\r", b"%1POWR=0\r"]}, refresh=0,
                                  refresh_mute=False, refresh_input_channel=False)
        with self.assertLogs("pyavctl.pjlink", level="WARNING"):
            device.start_polling()
            await asyncio.sleep(0.05)
        self.listener.state_changed.assert_any_call("power", "OFF")


if __name__ == '__main__':
    unittest.main()

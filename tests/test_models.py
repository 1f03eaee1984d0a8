"""
Unit tests for model properties and device configuration records.
"""

import unittest

from pyavctl.config import AvrConfig, PJLinkConfig
from pyavctl.exceptions import ProtocolViolation
from pyavctl.models import CONFIGURABLE_MODEL, VSX1120, ModelProperties, as_bool, get_model


class TestModelProperties(unittest.TestCase):

    def test_built_in_vsx1120(self):
        self.assertEqual(VSX1120.nb_zones, 2)
        self.assertEqual(VSX1120.volume_min_db(1), -80)
        self.assertEqual(VSX1120.volume_max_db(1), 12)
        self.assertEqual(VSX1120.volume_step_db(1), 0.5)
        self.assertEqual(VSX1120.volume_max_db(2), 0)
        self.assertEqual(VSX1120.volume_step_db(2), 1)
        self.assertTrue(VSX1120.set_volume_enabled)
        self.assertTrue(VSX1120.db_channels_enabled)

    def test_built_in_configurable_model(self):
        model = get_model("ConfigurablePioneerAVR")
        self.assertIs(model, CONFIGURABLE_MODEL)
        self.assertEqual(model.nb_zones, 4)
        self.assertFalse(model.db_channels_enabled)

    def test_unknown_model(self):
        with self.assertRaises(KeyError):
            get_model("VSX-0000")

    def test_zone_support(self):
        self.assertTrue(VSX1120.is_zone_supported(2))
        self.assertFalse(VSX1120.is_zone_supported(3))
        self.assertFalse(VSX1120.is_zone_supported(0))
        with self.assertRaises(ProtocolViolation):
            VSX1120.volume_max_db(3)

    def test_needs_a_zone(self):
        with self.assertRaises(ProtocolViolation):
            ModelProperties("Empty", 0)

    def test_input_code(self):
        self.assertEqual(VSX1120.input_code("HDMI 1"), "19")
        self.assertEqual(VSX1120.input_code("BD"), "25")
        self.assertEqual(VSX1120.input_code("25"), "25")
        self.assertEqual(VSX1120.input_code("99"), "99")
        self.assertIsNone(VSX1120.input_code("FOO"))
        self.assertIsNone(VSX1120.input_code("123"))


class TestModelOverrides(unittest.TestCase):

    def test_overrides_return_a_new_model(self):
        merged = VSX1120.with_overrides({
            "nbZones": "3",
            "volumeMaxDbZone1": "10",
            "setVolumeCommandEnabled": "false",
            "burstMessageDelay": 20,
        })
        self.assertEqual(merged.nb_zones, 3)
        self.assertEqual(merged.volume_max_db(1), 10)
        self.assertFalse(merged.set_volume_enabled)
        self.assertEqual(merged.burst_message_delay, 20)
        self.assertEqual(merged.model, "VSX-1120")

        # The base model is untouched
        self.assertEqual(VSX1120.nb_zones, 2)
        self.assertEqual(VSX1120.volume_max_db(1), 12)
        self.assertTrue(VSX1120.set_volume_enabled)

    def test_added_zones_take_defaults(self):
        merged = VSX1120.with_overrides({"nbZones": 4})
        self.assertEqual(merged.volume_min_db(3), -80)
        self.assertEqual(merged.volume_max_db(4), 0)
        self.assertEqual(merged.volume_step_db(4), 1)

    def test_unknown_keys_are_ignored(self):
        merged = VSX1120.with_overrides({"ipAddress": "10.0.0.1", "whatever": 3})
        self.assertEqual(merged.nb_zones, 2)
        self.assertEqual(merged.volume_max_db(1), 12)

    def test_as_bool(self):
        self.assertTrue(as_bool("true"))
        self.assertTrue(as_bool("Yes"))
        self.assertFalse(as_bool("false"))
        self.assertFalse(as_bool(0))
        self.assertTrue(as_bool(True))


class TestAvrConfig(unittest.TestCase):

    def test_tcp_config(self):
        config = AvrConfig.from_dict({"ipAddress": "192.168.1.20", "tcpPort": "8102", "nbZones": 3})
        self.assertEqual(config.ip_address, "192.168.1.20")
        self.assertEqual(config.tcp_port, 8102)
        self.assertFalse(config.use_serial)
        self.assertEqual(config.model_overrides, {"nbZones": 3})
        self.assertEqual(config.connection_name, "192.168.1.20:8102")
        self.assertEqual(config.apply_to(VSX1120).nb_zones, 3)

    def test_default_port(self):
        self.assertEqual(AvrConfig.from_dict({"ipAddress": "avr"}).tcp_port, 23)

    def test_serial_config(self):
        config = AvrConfig.from_dict({"serialPort": "/dev/ttyUSB0", "useSerial": "true"})
        self.assertTrue(config.use_serial)
        self.assertEqual(config.connection_name, "/dev/ttyUSB0")


class TestPJLinkConfig(unittest.TestCase):

    def test_defaults(self):
        config = PJLinkConfig.from_dict({"ipAddress": "192.168.1.30"})
        self.assertEqual(config.tcp_port, 4352)
        self.assertIsNone(config.admin_password)
        self.assertEqual(config.refresh, 5)
        self.assertTrue(config.refresh_power)
        self.assertTrue(config.refresh_mute)
        self.assertTrue(config.refresh_input_channel)

    def test_values(self):
        config = PJLinkConfig.from_dict({
            "ipAddress": "192.168.1.30",
            "tcpPort": 4353,
            "adminPassword": "secret",
            "refresh": "30",
            "refreshMute": "false",
        })
        self.assertEqual(config.tcp_port, 4353)
        self.assertEqual(config.admin_password, "secret")
        self.assertEqual(config.refresh, 30)
        self.assertFalse(config.refresh_mute)

    def test_ip_address_is_required(self):
        with self.assertRaises(KeyError):
            PJLinkConfig.from_dict({})


if __name__ == '__main__':
    unittest.main()

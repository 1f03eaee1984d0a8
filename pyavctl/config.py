"""Device configuration records.

Configuration arrives as a plain mapping using the host's key names
(``ipAddress``, ``tcpPort``, ...). Model overrides in the same mapping are
kept aside and applied with ``ModelProperties.with_overrides``.
"""

from typing import Any, Dict, Mapping, Optional

from pyavctl.models import ModelProperties, as_bool

IP_ADDRESS = "ipAddress"
TCP_PORT = "tcpPort"
SERIAL_PORT = "serialPort"
USE_SERIAL = "useSerial"
ADMIN_PASSWORD = "adminPassword"
REFRESH = "refresh"
REFRESH_POWER = "refreshPower"
REFRESH_MUTE = "refreshMute"
REFRESH_INPUT_CHANNEL = "refreshInputChannel"

DEFAULT_AVR_PORT = 23
DEFAULT_PJLINK_PORT = 4352
DEFAULT_PJLINK_REFRESH = 5

# Channel id pattern, zone first: "zone1#power"
ZONE_CHANNEL_ID_PATTERN = "zone%s#%s"

_CONNECTION_KEYS = {IP_ADDRESS, TCP_PORT, SERIAL_PORT, USE_SERIAL}


class AvrConfig:
    """Connection settings for a receiver plus optional model overrides."""

    def __init__(
        self,
        ip_address: Optional[str] = None,
        tcp_port: int = DEFAULT_AVR_PORT,
        serial_port: Optional[str] = None,
        use_serial: bool = False,
        model_overrides: Optional[Mapping[str, Any]] = None,
    ):
        self.ip_address = ip_address
        self.tcp_port = tcp_port
        self.serial_port = serial_port
        self.use_serial = use_serial
        self.model_overrides: Dict[str, Any] = dict(model_overrides or {})

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "AvrConfig":
        tcp_port = config.get(TCP_PORT)
        return cls(
            ip_address=config.get(IP_ADDRESS),
            tcp_port=int(tcp_port) if tcp_port is not None else DEFAULT_AVR_PORT,
            serial_port=config.get(SERIAL_PORT),
            use_serial=as_bool(config.get(USE_SERIAL, False)),
            model_overrides={key: value for key, value in config.items() if key not in _CONNECTION_KEYS},
        )

    def apply_to(self, model: ModelProperties) -> ModelProperties:
        return model.with_overrides(self.model_overrides)

    @property
    def connection_name(self) -> str:
        if self.use_serial:
            return str(self.serial_port)
        return f"{self.ip_address}:{self.tcp_port}"


class PJLinkConfig:
    """Connection and polling settings for a PJLink projector."""

    def __init__(
        self,
        ip_address: str,
        tcp_port: int = DEFAULT_PJLINK_PORT,
        admin_password: Optional[str] = None,
        refresh: int = DEFAULT_PJLINK_REFRESH,
        refresh_power: bool = True,
        refresh_mute: bool = True,
        refresh_input_channel: bool = True,
    ):
        self.ip_address = ip_address
        self.tcp_port = tcp_port
        self.admin_password = admin_password
        self.refresh = refresh
        self.refresh_power = refresh_power
        self.refresh_mute = refresh_mute
        self.refresh_input_channel = refresh_input_channel

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "PJLinkConfig":
        tcp_port = config.get(TCP_PORT)
        refresh = config.get(REFRESH)
        return cls(
            ip_address=config[IP_ADDRESS],
            tcp_port=int(tcp_port) if tcp_port is not None else DEFAULT_PJLINK_PORT,
            admin_password=config.get(ADMIN_PASSWORD) or None,
            refresh=int(refresh) if refresh is not None else DEFAULT_PJLINK_REFRESH,
            refresh_power=as_bool(config.get(REFRESH_POWER, True)),
            refresh_mute=as_bool(config.get(REFRESH_MUTE, True)),
            refresh_input_channel=as_bool(config.get(REFRESH_INPUT_CHANNEL, True)),
        )

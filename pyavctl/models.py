"""Per-model receiver properties.

A model is built once at startup. User configuration never mutates it:
``with_overrides`` returns a new ``ModelProperties`` with the overridden
values and the rest copied from the base model.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from pyavctl.exceptions import ProtocolViolation

_LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_DB = (-80.0, -80.0, -80.0, -80.0)
DEFAULT_MAX_DB = (12.0, 0.0, 0.0, 0.0)
DEFAULT_STEP_DB = (0.5, 1.0, 1.0, 1.0)
DEFAULT_BURST_MESSAGE_DELAY = 10  # ms

# Source name -> two-digit input code
DEFAULT_INPUT_SOURCES: Dict[str, str] = {
    "PHONO": "00",
    "CD": "01",
    "TUNER": "02",
    "CD-R/TAPE": "03",
    "DVD": "04",
    "TV/SAT": "05",
    "VIDEO 1": "10",
    "MULTI CH IN": "12",
    "VIDEO 2": "14",
    "DVR/BDR": "15",
    "iPod/USB": "17",
    "XM RADIO": "18",
    "HDMI 1": "19",
    "HDMI 2": "20",
    "HDMI 3": "21",
    "HDMI 4": "22",
    "HDMI 5": "23",
    "BD": "25",
    "HOME MEDIA GALLERY": "26",
    "SIRIUS": "27",
    "ADAPTER PORT": "33",
}

# Codes outside the table are passed through, the receiver rejects unknown ones
INPUT_CODE = re.compile(r"[0-9]{2}")

# Configuration keys understood by with_overrides
NB_ZONES = "nbZones"
SET_VOLUME_COMMAND_ENABLED = "setVolumeCommandEnabled"
BURST_MESSAGE_DELAY = "burstMessageDelay"
BURST_MODE_ENABLED = "setBurstModeEnabled"
VOLUME_MIN_DB_ZONE = "volumeMinDbZone%d"
VOLUME_MAX_DB_ZONE = "volumeMaxDbZone%d"
VOLUME_STEP_DB_ZONE = "volumeStepDbZone%d"


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _zone_default(defaults: Tuple[float, ...], index: int) -> float:
    return defaults[min(index, len(defaults) - 1)]


class ModelProperties:
    """Read-only description of what a receiver model supports.

    Args:
        model: Model name as reported to users
        nb_zones: Number of controllable zones
        min_db/max_db/step_db: Per-zone volume range, first entry is zone 1.
            Missing zones take the built-in defaults.
        set_volume_enabled: Device accepts a direct "set volume" command
        burst_mode_enabled: Burst volume steps are sent without waiting for answers
        burst_message_delay: Pause between burst commands, in milliseconds
        db_channels_enabled: Whether dB volume channels are exposed
        input_sources: Source name -> input code
    """

    def __init__(
        self,
        model: str,
        nb_zones: int,
        min_db: Sequence[float] = DEFAULT_MIN_DB,
        max_db: Sequence[float] = DEFAULT_MAX_DB,
        step_db: Sequence[float] = DEFAULT_STEP_DB,
        set_volume_enabled: bool = True,
        burst_mode_enabled: bool = True,
        burst_message_delay: int = DEFAULT_BURST_MESSAGE_DELAY,
        db_channels_enabled: bool = True,
        input_sources: Optional[Mapping[str, str]] = None,
    ):
        if nb_zones < 1:
            raise ProtocolViolation(f"A model needs at least one zone, got {nb_zones}")
        self._model = model
        self._nb_zones = nb_zones
        self._min_db = self._per_zone(min_db, DEFAULT_MIN_DB)
        self._max_db = self._per_zone(max_db, DEFAULT_MAX_DB)
        self._step_db = self._per_zone(step_db, DEFAULT_STEP_DB)
        self._set_volume_enabled = set_volume_enabled
        self._burst_mode_enabled = burst_mode_enabled
        self._burst_message_delay = burst_message_delay
        self._db_channels_enabled = db_channels_enabled
        self._input_sources = dict(input_sources if input_sources is not None else DEFAULT_INPUT_SOURCES)

    def _per_zone(self, values: Sequence[float], defaults: Tuple[float, ...]) -> Tuple[float, ...]:
        return tuple(
            float(values[index]) if index < len(values) else _zone_default(defaults, index)
            for index in range(self._nb_zones)
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def nb_zones(self) -> int:
        return self._nb_zones

    @property
    def set_volume_enabled(self) -> bool:
        return self._set_volume_enabled

    @property
    def burst_mode_enabled(self) -> bool:
        return self._burst_mode_enabled

    @property
    def burst_message_delay(self) -> int:
        """Delay between two burst commands, in milliseconds."""
        return self._burst_message_delay

    @property
    def db_channels_enabled(self) -> bool:
        return self._db_channels_enabled

    @property
    def input_sources(self) -> Dict[str, str]:
        return dict(self._input_sources)

    def is_zone_supported(self, zone: int) -> bool:
        return 0 < zone <= self._nb_zones

    def _zone_index(self, zone: int) -> int:
        if not self.is_zone_supported(zone):
            raise ProtocolViolation(f"Zone {zone} is not supported by {self._model}")
        return zone - 1

    def volume_min_db(self, zone: int) -> float:
        return self._min_db[self._zone_index(zone)]

    def volume_max_db(self, zone: int) -> float:
        return self._max_db[self._zone_index(zone)]

    def volume_step_db(self, zone: int) -> float:
        return self._step_db[self._zone_index(zone)]

    def input_code(self, source: str) -> Optional[str]:
        """Resolve a source name or a raw two-digit code to an input code."""
        if source in self._input_sources:
            return self._input_sources[source]
        if INPUT_CODE.fullmatch(source):
            return source
        return None

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ModelProperties":
        """Return a copy of these properties with the configured values applied.

        Unknown keys are ignored so a whole device configuration can be passed in.
        """
        nb_zones = int(overrides.get(NB_ZONES, self._nb_zones))
        min_db, max_db, step_db = [], [], []
        for index in range(nb_zones):
            zone = index + 1
            if index < self._nb_zones:
                base = (self._min_db[index], self._max_db[index], self._step_db[index])
            else:
                base = (
                    _zone_default(DEFAULT_MIN_DB, index),
                    _zone_default(DEFAULT_MAX_DB, index),
                    _zone_default(DEFAULT_STEP_DB, index),
                )
            min_db.append(float(overrides.get(VOLUME_MIN_DB_ZONE % zone, base[0])))
            max_db.append(float(overrides.get(VOLUME_MAX_DB_ZONE % zone, base[1])))
            step_db.append(float(overrides.get(VOLUME_STEP_DB_ZONE % zone, base[2])))

        merged = ModelProperties(
            self._model,
            nb_zones,
            min_db=min_db,
            max_db=max_db,
            step_db=step_db,
            set_volume_enabled=as_bool(overrides.get(SET_VOLUME_COMMAND_ENABLED, self._set_volume_enabled)),
            burst_mode_enabled=as_bool(overrides.get(BURST_MODE_ENABLED, self._burst_mode_enabled)),
            burst_message_delay=int(overrides.get(BURST_MESSAGE_DELAY, self._burst_message_delay)),
            db_channels_enabled=self._db_channels_enabled,
            input_sources=self._input_sources,
        )
        _LOGGER.debug(f"Model {self._model} merged with configuration: {nb_zones} zones")
        return merged

    def __repr__(self):
        return f"ModelProperties({self._model!r}, nb_zones={self._nb_zones})"


VSX1120 = ModelProperties("VSX-1120", 2)

CONFIGURABLE_MODEL = ModelProperties(
    "ConfigurablePioneerAVR",
    4,
    db_channels_enabled=False,
    burst_message_delay=DEFAULT_BURST_MESSAGE_DELAY,
)

MODELS: Dict[str, ModelProperties] = {
    VSX1120.model: VSX1120,
    CONFIGURABLE_MODEL.model: CONFIGURABLE_MODEL,
}


def get_model(name: str) -> ModelProperties:
    """Look up a built-in model by name. Raises KeyError for unknown models."""
    return MODELS[name]

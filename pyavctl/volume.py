"""Conversions between percent, dB and the receiver's native volume units.

Zone 1 moves in 0.5 dB steps (2 native units per dB), the other zones in
1 dB steps. Native values are sent as fixed-width zero-padded decimals, e.g.
"093" for zone 1 or "45" for zone 2.
"""

import math
from typing import Union

from pyavctl.exceptions import ProtocolViolation
from pyavctl.models import ModelProperties


class VolumeConverter:

    def __init__(self, model: ModelProperties):
        self._model = model

    def _validate_zone(self, zone: int):
        if not (1 <= zone <= self._model.nb_zones):
            raise ProtocolViolation(
                f"Unexpected zone {zone}, the value should be in the range 1-{self._model.nb_zones}"
            )

    def units_per_db(self, zone: int) -> float:
        return 1 / self._model.volume_step_db(zone)

    def max_native_volume(self, zone: int) -> float:
        """Number of native steps covering the zone's dB range (both ends included)."""
        self._validate_zone(zone)
        db_range = self._model.volume_max_db(zone) - self._model.volume_min_db(zone)
        return db_range * self.units_per_db(zone) + 1

    def native_width(self, zone: int) -> int:
        self._validate_zone(zone)
        db_range = self._model.volume_max_db(zone) - self._model.volume_min_db(zone)
        return len(str(int(db_range / self._model.volume_step_db(zone))))

    def format_native(self, native: float, zone: int) -> str:
        # Half-up, so 92.5 becomes 93
        return str(int(math.floor(native + 0.5))).zfill(self.native_width(zone))

    def percent_to_native(self, percent: float, zone: int) -> str:
        self._validate_zone(zone)
        percent = min(max(percent, 0), 100)
        return self.format_native(percent * self.max_native_volume(zone) / 100, zone)

    def native_to_percent(self, native: Union[str, int], zone: int) -> float:
        self._validate_zone(zone)
        return float(native) * 100 / self.max_native_volume(zone)

    def db_to_percent(self, db: float, zone: int) -> float:
        self._validate_zone(zone)
        min_db = self._model.volume_min_db(zone)
        max_db = self._model.volume_max_db(zone)
        # Out of range values stick to the nearest end of the zone range
        db = min(max(db, min_db), max_db)
        return (db - min_db) * 100 / (max_db - min_db)

    def percent_to_db(self, percent: float, zone: int) -> float:
        self._validate_zone(zone)
        min_db = self._model.volume_min_db(zone)
        max_db = self._model.volume_max_db(zone)
        return min_db + (max_db - min_db) * percent / 100

    def db_to_native(self, db: float, zone: int) -> str:
        return self.percent_to_native(self.db_to_percent(db, zone), zone)

    def native_to_db(self, native: Union[str, int], zone: int) -> float:
        return self.percent_to_db(self.native_to_percent(native, zone), zone)

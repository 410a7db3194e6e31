# ousterlab/calibration.py
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np

_TRANSFORM_LEN = 16


class CalibrationError(ValueError):
    """Calibration metadata is unreadable or inconsistent."""


@dataclass(frozen=True)
class DataFormat:
    columns_per_frame: int
    columns_per_packet: int
    pixels_per_column: int

    @property
    def column_len(self) -> int:
        """Bytes in one measurement block: 16 header + 12 per channel + 4 status."""
        return 20 + self.pixels_per_column * 12

    @property
    def packet_len(self) -> int:
        return self.columns_per_packet * self.column_len

    @property
    def points_per_frame(self) -> int:
        return self.columns_per_frame * self.pixels_per_column


@dataclass(frozen=True, eq=False)
class CalibrationModel:
    """
    Sensor geometry from the lidar metadata JSON, with the per-channel
    trigonometry precomputed. Arrays are indexed by channel.
    """
    beam_altitude_angles: np.ndarray
    beam_azimuth_angles: np.ndarray
    beam_to_lidar_transform: np.ndarray
    data_format: DataFormat

    n: float
    azimuth_correction: np.ndarray
    cos_alt: np.ndarray
    sin_alt: np.ndarray

    @property
    def beam_offset_x(self) -> float:
        return float(self.beam_to_lidar_transform[3])

    @property
    def beam_offset_z(self) -> float:
        return float(self.beam_to_lidar_transform[11])

    @classmethod
    def from_dict(cls, meta: Dict[str, Any]) -> "CalibrationModel":
        if not isinstance(meta, dict):
            raise CalibrationError("Calibration document must be a JSON object")

        altitude = _float_array(meta, "beam_altitude_angles")
        azimuth = _float_array(meta, "beam_azimuth_angles")
        transform = _float_array(meta, "beam_to_lidar_transform")
        fmt = _data_format(meta)

        if len(altitude) != len(azimuth):
            raise CalibrationError(
                f"beam_altitude_angles has {len(altitude)} channels, "
                f"beam_azimuth_angles has {len(azimuth)}"
            )
        if len(altitude) < fmt.pixels_per_column:
            raise CalibrationError(
                f"{len(altitude)} beam angles for {fmt.pixels_per_column} pixels per column"
            )
        if len(transform) < _TRANSFORM_LEN:
            raise CalibrationError(f"beam_to_lidar_transform needs {_TRANSFORM_LEN} values, got {len(transform)}")

        n = math.sqrt(transform[3] ** 2 + transform[11] ** 2)
        alt_rad = 2.0 * np.pi * (altitude / 360.0)

        return cls(
            beam_altitude_angles=altitude,
            beam_azimuth_angles=azimuth,
            beam_to_lidar_transform=transform,
            data_format=fmt,
            n=n,
            azimuth_correction=-2.0 * np.pi * (azimuth / 360.0),
            cos_alt=np.cos(alt_rad),
            sin_alt=np.sin(alt_rad),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CalibrationModel":
        try:
            with open(path, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except OSError as e:
            raise CalibrationError(f"Cannot read calibration file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise CalibrationError(f"Calibration file {path} is not valid JSON: {e}") from e
        return cls.from_dict(meta)


def _float_array(meta: Dict[str, Any], name: str) -> np.ndarray:
    values = meta.get(name)
    if not isinstance(values, list) or not values:
        raise CalibrationError(f"'{name}' must be a non-empty array")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        raise CalibrationError(f"'{name}' must contain only numbers")
    return np.asarray(values, dtype=np.float64)


def _data_format(meta: Dict[str, Any]) -> DataFormat:
    block = meta.get("data_format")
    if not isinstance(block, dict):
        raise CalibrationError("'data_format' must be an object")
    values: List[int] = []
    for name in ("columns_per_frame", "columns_per_packet", "pixels_per_column"):
        v = block.get(name)
        if not isinstance(v, int) or isinstance(v, bool) or v <= 0:
            raise CalibrationError(f"'data_format.{name}' must be a positive integer, got {v!r}")
        values.append(v)
    return DataFormat(*values)

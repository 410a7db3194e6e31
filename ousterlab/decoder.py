# ousterlab/decoder.py
from __future__ import annotations

import struct
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

import numpy as np

from .calibration import CalibrationModel
from .pcd import build_request, frame_path
from .utils import log

# measurement block: timestamp u64, measurement id u16, frame id u16, 4 reserved bytes
_BLOCK_HEADER = struct.Struct("<QHH")
_BLOCK_HEADER_LEN = 16
_BLOCK_STATUS = struct.Struct("<I")
BLOCK_STATUS_VALID = 0xFFFFFFFF

# channel block: range (low 20 bits, mm) + flags, reflectivity, 7 bytes we do not use
CHANNEL_DTYPE = np.dtype([("range", "<u4"), ("reflectivity", "u1"), ("_unused", "V7")])
RANGE_MASK = 0x000FFFFF


@dataclass
class FrameAccumulator:
    frame_id: int = 0
    timestamp: int = 0
    chunks: List[np.ndarray] = field(default_factory=list)  # (N, 4) float32 x, y, z, intensity
    points_seen: int = 0
    broken: bool = False

    @property
    def points(self) -> int:
        return sum(len(c) for c in self.chunks)

    def clear(self) -> None:
        self.chunks = []
        self.points_seen = 0


def compute_points(cal: CalibrationModel, ranges: np.ndarray, reflectivity: np.ndarray,
                   measure_id: int, channels: np.ndarray) -> np.ndarray:
    """
    Convert ranges (mm) of the given channels in one column to an (N, 4)
    float32 array of x, y, z (meters) and intensity in [0, 1].
    """
    cols = cal.data_format.columns_per_frame
    offset_x = cal.beam_offset_x
    offset_z = cal.beam_offset_z

    encoder = 2.0 * np.pi * (1.0 - measure_id / cols)
    r = ranges.astype(np.float64) - cal.n
    azimuth = encoder + cal.azimuth_correction[channels]
    cos_alt = cal.cos_alt[channels]

    x = (r * np.cos(azimuth) * cos_alt + offset_x * np.cos(encoder)) / 1000.0
    y = (r * np.sin(azimuth) * cos_alt + offset_x * np.sin(encoder)) / 1000.0
    z = (r * cal.sin_alt[channels] + offset_z) / 1000.0
    intensity = reflectivity.astype(np.float64) / 255.0

    return np.column_stack((x, y, z, intensity)).astype(np.float32)


class LegacyDecoder:
    """
    Decoder for the legacy lidar UDP format.

    put() takes one UDP payload (columns_per_packet measurement blocks) and
    accumulates points for the current frame. When the frame id changes, the
    finished frame is handed to the sink as a FlushRequest if every reading
    of the frame was seen, and silently dropped otherwise. A short payload or
    a bad block status marks the stream broken; broken data is discarded
    until the next frame id shows up.
    """

    def __init__(self, calibration: CalibrationModel, sink, output_dir: Union[str, Path], digits: int = 4):
        self.cal = calibration
        self.sink = sink
        self.output_dir = Path(output_dir)
        self.digits = digits

        self.frame_index = 0
        self.acc = FrameAccumulator()
        self.stats: Counter = Counter()

    @property
    def pending_points(self) -> int:
        """Points accumulated for the in-flight frame (lost if the stream ends now)."""
        return self.acc.points

    def put(self, payload: bytes) -> None:
        fmt = self.cal.data_format
        column_len = fmt.column_len

        self.stats["payloads"] += 1
        if len(payload) < fmt.packet_len:
            self.stats["short_payloads"] += 1
            self._mark_broken(f"payload of {len(payload)} bytes, expected {fmt.packet_len}")
            return

        for offset in range(0, len(payload) - column_len + 1, column_len):
            self._parse_block(payload[offset:offset + column_len])

    def _mark_broken(self, reason: str) -> None:
        if not self.acc.broken:
            log.debug(f"Frame {self.acc.frame_id} broken: {reason}")
        self.acc.broken = True

    def _parse_block(self, block: bytes) -> None:
        (status,) = _BLOCK_STATUS.unpack_from(block, len(block) - 4)
        if status != BLOCK_STATUS_VALID:
            self.stats["bad_status_blocks"] += 1
            self._mark_broken(f"block status {status:#010x}")
            return

        timestamp, measure_id, frame_id = _BLOCK_HEADER.unpack_from(block, 0)
        if not self._enter_block(frame_id, timestamp):
            return

        pixels = self.cal.data_format.pixels_per_column
        channels = np.frombuffer(block, dtype=CHANNEL_DTYPE, count=pixels, offset=_BLOCK_HEADER_LEN)
        ranges = channels["range"] & RANGE_MASK
        reflectivity = channels["reflectivity"]

        valid = np.flatnonzero((ranges != 0) & (reflectivity != 0))
        if len(valid):
            self.acc.chunks.append(
                compute_points(self.cal, ranges[valid], reflectivity[valid], measure_id, valid)
            )
        # invalid readings still count toward a complete frame
        self.acc.points_seen += pixels

    def _enter_block(self, frame_id: int, timestamp: int) -> bool:
        """Update frame state for an incoming block; False means drop its channel data."""
        acc = self.acc
        if acc.broken:
            if frame_id == acc.frame_id:
                return False
            # a new frame id ends the broken region; re-check as a healthy stream
            acc.broken = False
            acc.clear()

        if frame_id != acc.frame_id:
            if acc.points_seen >= self.cal.data_format.points_per_frame:
                self._flush()
            elif acc.points_seen:
                self.stats["frames_incomplete"] += 1
                log.debug(
                    f"Drop frame {acc.frame_id}: {acc.points_seen} of "
                    f"{self.cal.data_format.points_per_frame} readings"
                )
            acc.clear()
            acc.frame_id = frame_id
            acc.timestamp = timestamp
        elif timestamp < acc.timestamp:
            acc.timestamp = timestamp
        return True

    def _flush(self) -> None:
        path = frame_path(self.output_dir, self.frame_index, self.digits)
        req = build_request(self.acc.chunks, self.acc.timestamp, path)
        self.sink.submit(req)

        self.frame_index += 1
        self.stats["frames_written"] += 1
        self.stats["points_written"] += req.points
        if self.frame_index % 100 == 0:
            log.info(f"{self.frame_index} frames written")

# ousterlab/pcd.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

import numpy as np

PCD_SUFFIX = ".pcd"
FIELDS = ("x", "y", "z", "intensity")

_HEADER_TEMPLATE = (
    "# .PCD v.7 - Point Cloud Data file format\n"
    "# timestamp: {timestamp}\n"
    "VERSION .7\n"
    "FIELDS x y z intensity\n"
    "SIZE 4 4 4 4\n"
    "TYPE F F F F\n"
    "COUNT 1 1 1 1\n"
    "WIDTH {points}\n"
    "HEIGHT 1\n"
    "VIEWPOINT 0 0 0 1 0 0 0\n"
    "POINTS {points}\n"
    "DATA binary\n"
)


@dataclass(frozen=True)
class FlushRequest:
    """One finished frame, ready for the sink: header text, float32 body, target path."""
    header: str
    body: bytes
    path: Path

    @property
    def points(self) -> int:
        return len(self.body) // (4 * len(FIELDS))


def pcd_header(timestamp: int, points: int) -> str:
    return _HEADER_TEMPLATE.format(timestamp=timestamp, points=points)


def encode_points(chunks: Sequence[np.ndarray]) -> bytes:
    """Concatenate (N, 4) point arrays into a little-endian float32 body."""
    if not chunks:
        return b""
    return np.concatenate(chunks, axis=0).astype("<f4", copy=False).tobytes()


def frame_path(output_dir: Union[str, Path], index: int, digits: int) -> Path:
    return Path(output_dir) / f"{index:0{digits}d}{PCD_SUFFIX}"


def build_request(chunks: Sequence[np.ndarray], timestamp: int, path: Path) -> FlushRequest:
    body = encode_points(chunks)
    points = len(body) // (4 * len(FIELDS))
    return FlushRequest(header=pcd_header(timestamp, points), body=body, path=path)

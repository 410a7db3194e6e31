# ousterlab/test/synth.py
"""Builders for synthetic sensor payloads and captures used by the tests."""
from __future__ import annotations

import json
import struct
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from ousterlab.decoder import BLOCK_STATUS_VALID

PIXELS = 2
COLUMNS_PER_PACKET = 2
COLUMNS_PER_FRAME = 4
LIDAR_PORT = 7502


def meta_dict(pixels: int = PIXELS, columns_per_packet: int = COLUMNS_PER_PACKET,
              columns_per_frame: int = COLUMNS_PER_FRAME,
              altitude: Sequence[float] = None, azimuth: Sequence[float] = None,
              offset_x: float = 0.0, offset_z: float = 0.0) -> dict:
    transform = [0.0] * 16
    transform[3] = offset_x
    transform[11] = offset_z
    return {
        "beam_altitude_angles": list(altitude) if altitude is not None else [0.0] * pixels,
        "beam_azimuth_angles": list(azimuth) if azimuth is not None else [0.0] * pixels,
        "beam_to_lidar_transform": transform,
        "data_format": {
            "columns_per_frame": columns_per_frame,
            "columns_per_packet": columns_per_packet,
            "pixels_per_column": pixels,
        },
    }


def write_meta(path: Path, **kwargs) -> Path:
    path.write_text(json.dumps(meta_dict(**kwargs)), encoding="utf-8")
    return path


def channel_block(range_mm: int, reflectivity: int, flags: int = 0) -> bytes:
    # 20-bit range with flags in the top 12 bits, reflectivity, then unused bytes
    word = (flags << 20) | (range_mm & 0xFFFFF)
    return struct.pack("<IB7x", word, reflectivity)


def measurement_block(timestamp: int, measure_id: int, frame_id: int,
                      channels: Iterable[Tuple[int, int]],
                      status: int = BLOCK_STATUS_VALID) -> bytes:
    head = struct.pack("<QHH4x", timestamp, measure_id, frame_id)
    body = b"".join(channel_block(r, v) for r, v in channels)
    return head + body + struct.pack("<I", status)


def frame_packets(frame_id: int, readings: Sequence[Sequence[Tuple[int, int]]],
                  timestamp: int = 1000, columns_per_packet: int = COLUMNS_PER_PACKET) -> List[bytes]:
    """
    One payload per columns_per_packet columns. readings[m] lists the
    (range, reflectivity) pairs of column m.
    """
    blocks = [measurement_block(timestamp + m, m, frame_id, col) for m, col in enumerate(readings)]
    return [b"".join(blocks[i:i + columns_per_packet]) for i in range(0, len(blocks), columns_per_packet)]


def full_readings(columns: int = COLUMNS_PER_FRAME, pixels: int = PIXELS,
                  range_mm: int = 1000, reflectivity: int = 255) -> List[List[Tuple[int, int]]]:
    return [[(range_mm + 10 * m + ch, reflectivity) for ch in range(pixels)] for m in range(columns)]


def udp_frames(payloads: Sequence[bytes], port: int = LIDAR_PORT, fragsize: int = 0,
               first_id: int = 100, reverse_every: int = 0) -> list:
    """
    Scapy Ether/IPv4/UDP frames for each payload, fragmented to `fragsize`
    bytes when non-zero. Every `reverse_every`-th datagram has its fragments
    written in reverse order.
    """
    from scapy.all import IP, UDP, Ether, Raw, fragment

    frames = []
    for i, payload in enumerate(payloads):
        pkt = (Ether(src="00:11:22:33:44:55", dst="66:77:88:99:aa:bb")
               / IP(src="10.5.5.87", dst="10.5.5.1", id=first_id + i)
               / UDP(sport=7502, dport=port)
               / Raw(load=payload))
        parts = fragment(pkt, fragsize=fragsize) if fragsize else [pkt]
        if reverse_every and i % reverse_every == 0:
            parts = list(reversed(parts))
        frames.extend(parts)
    return frames


def write_pcap(path: Path, frames: list) -> Path:
    from scapy.all import wrpcap

    wrpcap(str(path), frames)
    return path


def write_pcapng(path: Path, frames: list) -> Path:
    import dpkt

    with open(path, "wb") as f:
        writer = dpkt.pcapng.Writer(f, linktype=dpkt.pcap.DLT_EN10MB)
        for i, frame in enumerate(frames):
            writer.writepkt(bytes(frame), ts=1_700_000_000.0 + i * 0.001)
    return path

# ousterlab/stream.py
from __future__ import annotations
from typing import Iterator, Tuple

import dpkt

from .utils import log

_PCAP_MAGIC = {b"\xd4\xc3\xb2\xa1", b"\xa1\xb2\xc3\xd4", b"\x4d\x3c\xb2\xa1", b"\xa1\xb2\x3c\x4d"}
_PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"


class CaptureFormatError(ValueError):
    """Capture container is not a readable pcap/pcapng file."""


def _sniff_kind(path: str) -> str:
    with open(path, "rb") as f:
        head = f.read(4)
    if head in _PCAP_MAGIC:
        return "pcap"
    if head == _PCAPNG_MAGIC:
        return "pcapng"
    raise CaptureFormatError(f"Unknown capture format (not pcap/pcapng): {path}")


def _open_reader(f, kind: str):
    try:
        if kind == "pcap":
            return dpkt.pcap.Reader(f)
        return dpkt.pcapng.Reader(f)
    except (ValueError, dpkt.UnpackError) as e:
        raise CaptureFormatError(f"Invalid {kind} header: {e}") from e


def stream_capture_frames(capture_path: str) -> Iterator[Tuple[float, bytes]]:
    """Yield (ts, frame_bytes) for every packet record of a pcap or pcapng file."""
    kind = _sniff_kind(capture_path)
    with open(capture_path, "rb") as f:
        reader = _open_reader(f, kind)
        linktype = reader.datalink()
        if linktype != dpkt.pcap.DLT_EN10MB:
            log.warning(f"Linktype {linktype} in {capture_path} is not Ethernet; frames will not decode")
        log.info(f"Reading {kind} capture {capture_path}")
        for ts, frame in reader:
            yield ts, frame

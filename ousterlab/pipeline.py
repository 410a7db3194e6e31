# ousterlab/pipeline.py
from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List

from .calibration import CalibrationModel
from .config import RunConfig
from .core import Record, Stage
from .decoder import LegacyDecoder
from .io import PcdSink
from .stages import ReassembleStage, UdpPortStage
from .stream import _sniff_kind, stream_capture_frames
from .utils import ensure_dir, log

STAT_KEYS = (
    "frames_in", "not_ipv4", "fragments_dropped", "reassembly_resets", "datagrams",
    "not_udp", "other_port", "payloads", "short_payloads", "bad_status_blocks",
    "frames_written", "frames_incomplete", "points_written",
)


def push_downstream(stages: List[Stage], recs: Iterable[Record]) -> List[Record]:
    for st in stages:
        nxt: List[Record] = []
        for r in recs:
            nxt.extend(st.feed(r))
        recs = nxt
    return list(recs)


def decode_capture(in_capture: str, stages: List[Stage], decoder: LegacyDecoder) -> int:
    """Stream every frame of the capture through the stages into the decoder."""
    total_in = 0
    for idx, (ts, frame) in enumerate(stream_capture_frames(in_capture)):
        total_in += 1
        for r in push_downstream(stages, [Record(ts=ts, buf=frame, idx=idx)]):
            decoder.put(r.buf)
    return total_in


def collect_stats(reassemble: ReassembleStage, udp: UdpPortStage, decoder: LegacyDecoder) -> Dict[str, int]:
    rs = reassemble.reassembler.stats
    stats: Counter = Counter()
    stats.update(reassemble.stats)
    stats.update(udp.stats)
    stats.update(decoder.stats)
    stats["fragments_dropped"] = rs["dropped_bad_length"] + rs["dropped_overflow"]
    stats["reassembly_resets"] = rs["resets"]
    return {k: int(stats[k]) for k in STAT_KEYS}


def run(config: RunConfig) -> Dict[str, int]:
    """
    Convert one capture into PCD frames under config.output.

    Raises CalibrationError / CaptureFormatError before anything is written,
    and SinkError if a frame file could not be written.
    """
    calibration = CalibrationModel.load(config.meta)
    _sniff_kind(str(config.input))
    ensure_dir(config.output)

    fmt = calibration.data_format
    log.info(
        f"Calibration {config.meta}: {fmt.pixels_per_column} channels, "
        f"{fmt.columns_per_frame} columns/frame, {fmt.columns_per_packet} columns/packet"
    )

    reassemble = ReassembleStage()
    udp = UdpPortStage(port=config.port)
    with PcdSink() as sink:
        decoder = LegacyDecoder(calibration, sink, config.output, digits=config.digits)
        decode_capture(str(config.input), [reassemble, udp], decoder)

    if decoder.pending_points:
        log.info(f"Stream ended mid-frame; {decoder.pending_points} points of frame "
                 f"{decoder.acc.frame_id} were not written")
    if len(reassemble.reassembler):
        log.info(f"{len(reassemble.reassembler)} datagrams never completed reassembly")

    return collect_stats(reassemble, udp, decoder)

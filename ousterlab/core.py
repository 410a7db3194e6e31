# ousterlab/core.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class Record:
    ts: float
    buf: bytes
    idx: int  # capture order index of the frame that produced this record


class Stage:
    """
    Streaming stage. feed() yields 0..N output records per input record.
    Stages hold no records between calls.
    """
    def feed(self, rec: Record) -> Iterable[Record]:
        yield rec

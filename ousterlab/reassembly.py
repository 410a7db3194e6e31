# ousterlab/reassembly.py
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .utils import log

PACKET_MAX_SIZE = 0xFFFF


@dataclass(frozen=True)
class FlowKey:
    src: bytes
    dst: bytes
    proto: int
    ident: int


@dataclass(frozen=True)
class Fragment:
    """
    IPv4 fields needed for reassembly, already pulled out of the header.

    offset is the raw fragment-offset field (units of 8 bytes).
    """
    key: FlowKey
    offset: int
    mf: bool
    df: bool
    payload: bytes


@dataclass
class Hole:
    first: int
    last: int  # exclusive


@dataclass
class ReassemblyChunk:
    data: bytearray = field(default_factory=lambda: bytearray(PACKET_MAX_SIZE))
    holes: List[Hole] = field(default_factory=lambda: [Hole(0, PACKET_MAX_SIZE)])
    length: int = PACKET_MAX_SIZE

    @property
    def complete(self) -> bool:
        return not self.holes


class IPv4Reassembler:
    """
    Hole-tracking IPv4 datagram reassembly (RFC 815 style), one chunk per flow.

    submit() returns a complete IP payload when one is available. Notes:
      - an inconsistent fragment (straddling a hole edge) resets the whole
        table, not only its own flow;
      - completion is checked over the whole table, so the payload returned
        may belong to another flow than the fragment just submitted;
      - flows that never complete are kept forever (no timeout/eviction).
    """

    def __init__(self) -> None:
        self._flows: Dict[FlowKey, ReassemblyChunk] = {}
        self.stats: Counter = Counter()

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, key: FlowKey) -> bool:
        return key in self._flows

    def reset(self) -> None:
        self._flows.clear()

    def submit(self, frag: Fragment) -> Optional[bytes]:
        length = len(frag.payload)

        if frag.df:
            self.stats["unfragmented"] += 1
            return bytes(frag.payload)

        # only the final fragment may carry a length that is not a multiple of 8
        if frag.mf and length % 8 != 0:
            self.stats["dropped_bad_length"] += 1
            log.debug(f"Drop fragment id={frag.key.ident} len={length}: not a multiple of 8")
            return None

        first = frag.offset * 8
        last = first + length
        if last > PACKET_MAX_SIZE:
            self.stats["dropped_overflow"] += 1
            log.debug(f"Drop fragment id={frag.key.ident} [{first},{last}): beyond {PACKET_MAX_SIZE}")
            return None

        chunk = self._flows.get(frag.key)
        if chunk is None:
            chunk = self._flows[frag.key] = ReassemblyChunk()

        if not frag.mf:
            chunk.length = last

        if not self._fill_hole(chunk, first, last, frag.mf):
            self.stats["resets"] += 1
            log.warning(
                f"Fragment [{first},{last}) of id={frag.key.ident} overlaps received data; "
                f"dropping all {len(self._flows)} in-flight datagrams"
            )
            self.reset()
            return None

        chunk.data[first:last] = frag.payload
        self.stats["fragments"] += 1

        return self._pop_complete()

    @staticmethod
    def _fill_hole(chunk: ReassemblyChunk, first: int, last: int, mf: bool) -> bool:
        """Split the hole that [first, last) lands in. False if the range is inconsistent."""
        for index, hole in enumerate(chunk.holes):
            if not (first < hole.last and last > hole.first):
                continue
            if first < hole.first or last > hole.last:
                return False

            residual: List[Hole] = []
            if first > hole.first:
                residual.append(Hole(hole.first, first))
            if last < hole.last and mf:
                residual.append(Hole(last, hole.last))
            chunk.holes[index:index + 1] = residual
            break
        return True

    def _pop_complete(self) -> Optional[bytes]:
        for key, chunk in self._flows.items():
            if chunk.complete:
                del self._flows[key]
                self.stats["datagrams"] += 1
                return bytes(chunk.data[:chunk.length])
        return None

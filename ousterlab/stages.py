# ousterlab/stages.py
from __future__ import annotations

import dataclasses
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

import dpkt

from .core import Record, Stage
from .reassembly import FlowKey, Fragment, IPv4Reassembler


def parse_ipv4(buf: bytes) -> Optional[dpkt.ip.IP]:
    """
    Best-effort parse Ethernet(+VLAN) -> IPv4. None for anything else.
    """
    try:
        eth = dpkt.ethernet.Ethernet(buf)
    except dpkt.UnpackError:
        return None
    payload = eth.data
    if isinstance(payload, dpkt.ethernet.VLANtag8021Q):
        payload = payload.data
    if isinstance(payload, dpkt.ip.IP) and payload.v == 4:
        return payload
    return None


def ipv4_fragment(ip: dpkt.ip.IP) -> Fragment:
    # first fragments may already be unpacked by dpkt into a UDP/TCP object
    payload = ip.data if isinstance(ip.data, bytes) else bytes(ip.data)
    return Fragment(
        key=FlowKey(src=bytes(ip.src), dst=bytes(ip.dst), proto=ip.p, ident=ip.id),
        offset=ip.offset,
        mf=bool(ip.mf),
        df=bool(ip.df),
        payload=payload,
    )


@dataclass
class ReassembleStage(Stage):
    """Link-layer frames in, complete IPv4 payloads out."""
    reassembler: IPv4Reassembler = dataclasses.field(default_factory=IPv4Reassembler)
    stats: Counter = dataclasses.field(default_factory=Counter, init=False)

    def feed(self, rec: Record) -> Iterable[Record]:
        self.stats["frames_in"] += 1
        ip = parse_ipv4(rec.buf)
        if ip is None:
            self.stats["not_ipv4"] += 1
            return []

        datagram = self.reassembler.submit(ipv4_fragment(ip))
        if datagram is None:
            return []
        self.stats["datagrams"] += 1
        return [Record(ts=rec.ts, buf=datagram, idx=rec.idx)]


@dataclass
class UdpPortStage(Stage):
    """IP payloads in, UDP payloads addressed to `port` out."""
    port: int
    stats: Counter = dataclasses.field(default_factory=Counter, init=False)

    def feed(self, rec: Record) -> Iterable[Record]:
        try:
            udp = dpkt.udp.UDP(rec.buf)
        except dpkt.UnpackError:
            self.stats["not_udp"] += 1
            return []

        if udp.dport != self.port:
            self.stats["other_port"] += 1
            return []

        data = bytes(udp.data)
        if 8 <= udp.ulen <= len(rec.buf):
            data = data[:udp.ulen - 8]
        return [Record(ts=rec.ts, buf=data, idx=rec.idx)]

import itertools
import os

from ousterlab.reassembly import PACKET_MAX_SIZE, FlowKey, Fragment, Hole, IPv4Reassembler

KEY_A = FlowKey(src=b"\x0a\x05\x05\x57", dst=b"\x0a\x05\x05\x01", proto=17, ident=1)
KEY_B = FlowKey(src=b"\x0a\x05\x05\x57", dst=b"\x0a\x05\x05\x01", proto=17, ident=2)


def split(key, data, size, df=False):
    """Fragments of `data` carrying `size` bytes each (size multiple of 8)."""
    frags = []
    for start in range(0, len(data), size):
        piece = data[start:start + size]
        frags.append(Fragment(key=key, offset=start // 8, mf=start + size < len(data), df=df, payload=piece))
    return frags


def test_any_order_returns_original_once():
    data = os.urandom(4 * 24 + 5)  # odd tail on the final fragment
    frags = split(KEY_A, data, 24)
    assert len(frags) == 5

    for order in itertools.permutations(frags):
        r = IPv4Reassembler()
        results = [r.submit(f) for f in order]
        done = [x for x in results if x is not None]
        assert done == [data]
        assert results[-1] == data
        assert len(r) == 0


def test_unfragmented_datagram_completes_immediately():
    r = IPv4Reassembler()
    data = b"\x01" * 13
    assert r.submit(Fragment(key=KEY_A, offset=0, mf=False, df=False, payload=data)) == data
    assert len(r) == 0


def test_dont_fragment_bypasses_tracking():
    r = IPv4Reassembler()
    r.submit(Fragment(key=KEY_B, offset=0, mf=True, df=False, payload=b"\x00" * 8))
    data = b"abcdefghijk"
    out = r.submit(Fragment(key=KEY_A, offset=3, mf=True, df=True, payload=data))
    assert out == data
    assert KEY_A not in r
    assert len(r) == 1
    assert r.stats["unfragmented"] == 1


def test_non_final_fragment_with_odd_length_is_dropped():
    r = IPv4Reassembler()
    assert r.submit(Fragment(key=KEY_A, offset=0, mf=True, df=False, payload=b"\x00" * 12)) is None
    assert len(r) == 0
    assert r.stats["dropped_bad_length"] == 1


def test_final_fragment_with_odd_length_is_accepted():
    r = IPv4Reassembler()
    assert r.submit(Fragment(key=KEY_A, offset=0, mf=True, df=False, payload=b"a" * 16)) is None
    out = r.submit(Fragment(key=KEY_A, offset=2, mf=False, df=False, payload=b"b" * 5))
    assert out == b"a" * 16 + b"b" * 5


def test_offset_overflow_is_dropped():
    r = IPv4Reassembler()
    frag = Fragment(key=KEY_A, offset=0x1FFF, mf=True, df=False, payload=b"\x00" * 16)
    assert r.submit(frag) is None
    assert len(r) == 0
    assert r.stats["dropped_overflow"] == 1


def test_fragment_reaching_end_of_buffer_is_accepted():
    r = IPv4Reassembler()
    last = PACKET_MAX_SIZE - 0x1FFF * 8
    assert r.submit(Fragment(key=KEY_A, offset=0x1FFF, mf=False, df=False, payload=b"\x01" * last)) is None
    assert r.stats["dropped_overflow"] == 0
    assert len(r) == 1


def test_inconsistent_fragment_resets_every_flow():
    r = IPv4Reassembler()
    # unrelated flow, still incomplete
    r.submit(Fragment(key=KEY_B, offset=0, mf=True, df=False, payload=b"\x00" * 8))
    r.submit(Fragment(key=KEY_A, offset=0, mf=True, df=False, payload=b"\x00" * 16))
    assert len(r) == 2

    # [8, 24) straddles the received [0, 16) and the hole [16, ...)
    assert r.submit(Fragment(key=KEY_A, offset=1, mf=True, df=False, payload=b"\x00" * 16)) is None
    assert len(r) == 0
    assert KEY_B not in r
    assert r.stats["resets"] == 1


def test_duplicate_fragment_is_tolerated():
    r = IPv4Reassembler()
    head = Fragment(key=KEY_A, offset=0, mf=True, df=False, payload=b"h" * 8)
    assert r.submit(head) is None
    assert r.submit(head) is None
    assert len(r) == 1
    assert r.submit(Fragment(key=KEY_A, offset=1, mf=False, df=False, payload=b"t")) == b"h" * 8 + b"t"
    assert r.stats["resets"] == 0


def test_holes_split_around_middle_fragment():
    r = IPv4Reassembler()
    r.submit(Fragment(key=KEY_A, offset=2, mf=True, df=False, payload=b"m" * 8))
    chunk = r._flows[KEY_A]
    assert chunk.holes == [Hole(0, 16), Hole(24, PACKET_MAX_SIZE)]

    r.submit(Fragment(key=KEY_A, offset=4, mf=False, df=False, payload=b"e" * 3))
    assert chunk.holes == [Hole(0, 16), Hole(24, 32)]
    assert chunk.length == 35


def test_flows_are_kept_apart():
    r = IPv4Reassembler()
    a = split(KEY_A, b"A" * 40, 16)
    b = split(KEY_B, b"B" * 40, 16)
    outputs = [r.submit(f) for f in (a[0], b[0], a[1], b[1], b[2], a[2])]
    assert outputs == [None, None, None, None, b"B" * 40, b"A" * 40]
    assert len(r) == 0

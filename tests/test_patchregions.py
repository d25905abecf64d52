import hashlib

import pytest

from wimdisk import geometry as g
from wimdisk.patchregions import (
    DIR_ENTRY_SIZE,
    PatchRegion,
    injected_dir_entry_bytes,
    lookup_entry_bytes,
    should_inject,
    wim_align,
    wim_hash,
)
from wimdisk.vdisk import VirtualDisk
from wimdisk.wim import (
    ATTR_NORMAL,
    DIRENT_SIZE,
    LOOKUP_ENTRY_SIZE,
    MAGIC_TIME,
    NO_SECURITY,
    DirectoryEntry,
    LookupEntry,
)


def _file(name, data=b""):
    disk = VirtualDisk()
    return disk.add_file(name, len(data), lambda f, o, n: data[o:o + n])


@pytest.mark.parametrize("value", [0, 1, 7, 8, 9, 100, 4095])
def test_wim_align_invariants(value):
    aligned = wim_align(value)
    assert aligned % 8 == 0
    assert 0 <= aligned - value < 8


def test_wim_align_pinned():
    assert wim_align(9) == 16


@pytest.mark.parametrize(
    "name, expected",
    [
        ("BCD", False),
        ("bcd", False),
        ("boot.wim", False),
        ("BOOT.SDI", False),
        (".wim", True),
        ("winpeshl.ini", True),
        ("bootmgr", True),
    ],
)
def test_should_inject(name, expected):
    assert should_inject(_file(name)) is expected


def test_wim_hash_matches_sha1():
    data = bytes(range(256)) * 5 + b"tail"
    assert wim_hash(_file("x.bin", data)) == hashlib.sha1(data).digest()


def test_wim_hash_empty():
    assert wim_hash(_file("empty")).hex() == "da39a3ee5e6b4b0d3255bfef95601890afd80709"


def test_lookup_entry_round_trip():
    digest = bytes(range(20))
    raw = lookup_entry_bytes(0x1234, 77, digest)
    assert len(raw) == LOOKUP_ENTRY_SIZE
    entry = LookupEntry.from_bytes(raw)
    assert entry.resource.offset == 0x1234
    assert entry.resource.length == 77
    assert entry.resource.zlen_flags == 77
    assert entry.refcnt == 1
    assert entry.part == 0
    assert entry.hash == digest


def test_injected_dir_entry():
    digest = b"\xab" * 20
    raw = injected_dir_entry_bytes("winpeshl.ini", digest)
    assert len(raw) == DIR_ENTRY_SIZE == DIRENT_SIZE + 2 * (g.NAME_LEN + 1)
    entry = DirectoryEntry.from_bytes(raw)
    assert entry.length == wim_align(DIR_ENTRY_SIZE)
    assert entry.attributes == ATTR_NORMAL
    assert entry.security == NO_SECURITY
    assert entry.created == entry.accessed == entry.written == MAGIC_TIME
    assert entry.hash == digest
    assert entry.name_len == 2 * len("winpeshl.ini")
    name = raw[DIRENT_SIZE:DIRENT_SIZE + entry.name_len].decode("utf-16-le")
    assert name == "winpeshl.ini"
    assert raw[DIRENT_SIZE + entry.name_len:] == bytes(len(raw) - DIRENT_SIZE - entry.name_len)


def test_injected_dir_entry_name_too_long():
    with pytest.raises(ValueError):
        injected_dir_entry_bytes("x" * (g.NAME_LEN + 1), bytes(20))


def _region():
    payload = b"ABCDE"
    return PatchRegion("test", 10, 5, lambda o, n: payload[o:o + n])


def test_apply_full_overlap():
    data = bytearray(20)
    assert _region().apply(data, 0) == 5
    assert data == bytes(10) + b"ABCDE" + bytes(5)


def test_apply_inside_region():
    data = bytearray(2)
    assert _region().apply(data, 12) == 2
    assert data == b"CD"


def test_apply_overlapping_start():
    data = bytearray(4)
    assert _region().apply(data, 8) == 2
    assert data == b"\0\0AB"


def test_apply_before_and_after():
    before = bytearray(b"\x11" * 10)
    after = bytearray(b"\x22" * 4)
    region = _region()
    assert region.apply(before, 0) == 0
    assert region.apply(after, 15) == 0
    assert before == b"\x11" * 10
    assert after == b"\x22" * 4


def test_apply_to_memoryview():
    backing = bytearray(30)
    assert _region().apply(memoryview(backing)[5:20], 5) == 5
    assert backing[10:15] == b"ABCDE"
    assert backing[:10] == bytes(10)


def test_apply_rejects_wrong_length():
    region = PatchRegion("bad", 0, 4, lambda o, n: b"x")
    with pytest.raises(ValueError):
        region.apply(bytearray(4), 0)
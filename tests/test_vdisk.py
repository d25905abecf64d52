import struct

import pytest

from wimdisk import geometry as g
from wimdisk.records import fsinfo_sector, mbr_sector, vbr_sector
from wimdisk.vdisk import VirtualDisk, VirtualDiskError


def make_reader(content: bytes):
    def reader(file, offset, length):
        return content[offset:offset + length]

    return reader


def _entry(sector: bytes, index: int) -> bytes:
    return sector[index * 32:(index + 1) * 32]


def test_read_zero_sectors():
    assert VirtualDisk().read(0, 0) == b""


def test_negative_read_rejected():
    with pytest.raises(ValueError):
        VirtualDisk().read(-1, 1)


def test_fixed_records():
    disk = VirtualDisk()
    assert disk.read(g.MBR_LBA, 1) == mbr_sector()
    assert disk.read(g.VBR_LBA, 1) == vbr_sector()
    assert disk.read(g.FSINFO_LBA, 1) == fsinfo_sector()
    assert disk.read(g.BACKUP_VBR_LBA, 1) == vbr_sector()


def test_read_across_regions():
    disk = VirtualDisk()
    data = disk.read(g.VBR_LBA - 2, 4)
    assert len(data) == 4 * 512
    assert data[:1024] == bytes(1024)
    assert data[1024:1536] == vbr_sector()
    assert data[1536:] == fsinfo_sector()


def test_first_fat_sector():
    data = VirtualDisk().read(g.FAT_LBA, 1)
    entries = struct.unpack("<128I", data)
    assert entries[0] == (g.FAT_END_MARKER & ~0xFF) | g.VBR_MEDIA
    assert all(value == g.FAT_END_MARKER for value in entries[1:])


def test_later_fat_sector_chains():
    data = VirtualDisk().read(g.FAT_LBA + 1, 1)
    entries = struct.unpack("<128I", data)
    assert list(entries) == list(range(129, 257))


def test_fat_file_end_marker():
    disk = VirtualDisk()
    disk.add_file("data.bin", 100, make_reader(b"x" * 100))
    cluster = g.file_cluster(0)
    sector = disk.read(g.FAT_LBA + cluster // 128, 1)
    entries = struct.unpack("<128I", sector)
    assert entries[cluster % 128] == g.FAT_END_MARKER
    assert entries[cluster % 128 + 1] == cluster + 2


def test_root_directory_lists_subdirectories():
    sector = VirtualDisk().read(g.ROOT_LBA, 1)
    clusters = []
    for index in (15, 13, 11):
        entry = _entry(sector, index)
        assert entry[11] == g.Attribute.DIRECTORY
        clusters.append(struct.unpack_from("<H", entry, 26)[0])
    assert clusters == [g.BOOT_CLUSTER, g.SOURCES_CLUSTER, g.EFI_CLUSTER]


def test_empty_directory():
    sector = VirtualDisk().read(g.SOURCES_LBA, 1)
    assert all(_entry(sector, i)[0] == g.DIRENT_DELETED for i in range(16))


def test_directory_files_sector_describes_file():
    disk = VirtualDisk()
    disk.add_file("boot.sdi", 1000, make_reader(bytes(1000)))
    sector = disk.read(g.ROOT_LBA + 1, 1)
    dos = _entry(sector, 15)
    assert dos[11] == g.Attribute.READ_ONLY
    high = struct.unpack_from("<H", dos, 20)[0]
    low = struct.unpack_from("<H", dos, 26)[0]
    assert (high << 16) | low == g.file_cluster(0)
    assert struct.unpack_from("<I", dos, 28)[0] == 1000
    assert _entry(sector, 14)[0] == 1 | g.LFN_END


def test_directory_files_sector_without_file_is_empty():
    disk = VirtualDisk()
    sector = disk.read(g.BOOT_LBA + 5, 1)
    assert all(_entry(sector, i)[0] == g.DIRENT_DELETED for i in range(16))


def test_file_content_is_zero_padded():
    content = bytes(range(200))
    disk = VirtualDisk()
    disk.add_file("a", len(content), make_reader(content))
    data = disk.read(g.file_lba(0), 2)
    assert data[:200] == content
    assert data[200:] == bytes(1024 - 200)


def test_file_content_at_offset():
    content = bytes(range(256)) * 4
    disk = VirtualDisk()
    disk.add_file("a", len(content), make_reader(content))
    assert disk.read(g.file_lba(0) + 1, 1) == content[512:1024]


def test_read_past_last_file_is_zero():
    disk = VirtualDisk()
    disk.add_file("a", 10, make_reader(b"0123456789"))
    data = disk.read(g.file_lba(1) - 1, 2)
    assert data == bytes(1024)


def test_name_truncated():
    disk = VirtualDisk()
    file = disk.add_file("x" * 40, 0, make_reader(b""))
    assert file.name == "x" * g.NAME_LEN
    assert file.xlength == 0


def test_too_many_files():
    disk = VirtualDisk()
    for index in range(g.MAX_FILES):
        disk.add_file(f"f{index}", 0, make_reader(b""))
    with pytest.raises(VirtualDiskError):
        disk.add_file("extra", 0, make_reader(b""))


def test_short_reader_raises():
    disk = VirtualDisk()
    disk.add_file("a", 100, lambda file, offset, length: b"short")
    with pytest.raises(VirtualDiskError):
        disk.read(g.file_lba(0), 1)


def test_patch_file_extends_and_patches():
    content = b"c" * 100
    calls = []

    def patcher(file, data, offset, length):
        calls.append((bytes(data), offset, length))
        if not data:
            file.xlength = file.length + 512
            return
        for pos in range(length):
            if offset + pos >= file.length:
                data[pos] = 0xAB

    disk = VirtualDisk()
    file = disk.add_file("a", len(content), make_reader(content))
    disk.patch_file(file, patcher)
    assert calls == [(b"", 0, 0)]
    assert file.xlength == 612

    data = disk.read(g.file_lba(0), 2)
    assert data[:100] == content
    assert data[100:612] == b"\xab" * 512
    assert data[612:] == bytes(1024 - 612)
    assert calls[-1][1:] == (0, 612)

    sector = disk.read(g.ROOT_LBA + 1, 1)
    assert struct.unpack_from("<I", _entry(sector, 15), 28)[0] == 612
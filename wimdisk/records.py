"""Fixed on-disk records of the emulated FAT32 disk: MBR, VBR, FSInfo, directories."""

from __future__ import annotations

import struct

from . import geometry as g

_PARTITION = struct.Struct("<B3sB3sII")
_MBR = struct.Struct("<440sI2s64sH")
_VBR = struct.Struct("<3s8sHBHBHHBHHHIIIHHIHH12sBBBI11s8s420sH")
_FSINFO = struct.Struct("<I480sIII12sI")
_DOS = struct.Struct("<11sBBBHHHHHHHI")
_LFN = struct.Struct("<B5HBBB6HH2H")

_LFN_CHARS = 13
_UNUSED_CHAR = 0xFFFF


def mbr_sector() -> bytes:
    """Return the Master Boot Record with a single bootable FAT32 partition."""
    partition = _PARTITION.pack(
        g.MBR_BOOTABLE,
        bytes(3),
        g.MBR_TYPE_FAT32,
        bytes(3),
        g.PARTITION_LBA,
        g.PARTITION_COUNT & 0xFFFFFFFF,
    )
    partitions = partition + bytes(3 * _PARTITION.size)
    return _MBR.pack(bytes(440), g.MBR_SIGNATURE, bytes(2), partitions, g.MBR_MAGIC)


def vbr_sector() -> bytes:
    """Return the FAT32 Volume Boot Record (also used as its backup)."""
    return _VBR.pack(
        bytes([g.VBR_JUMP_WTF_MS, 0, 0]),
        g.VBR_OEMID,
        g.SECTOR_SIZE,
        g.CLUSTER_COUNT,
        g.RESERVED_COUNT,
        1,  # number of FATs
        0,  # root directory entries
        0,  # short sector count
        g.VBR_MEDIA,
        0,  # short sectors per FAT
        g.SECTORS_PER_TRACK,
        g.HEADS,
        g.VBR_LBA,
        g.PARTITION_COUNT & 0xFFFFFFFF,
        g.SECTORS_PER_FAT,
        0,  # flags
        0,  # version
        g.ROOT_CLUSTER,
        g.FSINFO_SECTOR,
        g.BACKUP_VBR_SECTOR,
        bytes(12),
        0,  # drive
        0,  # NT flags
        g.VBR_SIGNATURE,
        g.VBR_SERIAL,
        g.VBR_LABEL,
        g.VBR_SYSTEM,
        bytes(420),
        g.VBR_MAGIC,
    )


def fsinfo_sector() -> bytes:
    """Return the FSInfo sector, reporting no free clusters."""
    return _FSINFO.pack(
        g.FSINFO_MAGIC1,
        bytes(480),
        g.FSINFO_MAGIC2,
        0,
        g.FSINFO_NEXT_FREE,
        bytes(12),
        g.FSINFO_MAGIC3,
    )


def short_name_checksum(raw: bytes) -> int:
    """Return the long-file-name checksum of an 11-byte 8.3 name."""
    checksum = 0
    for byte in raw:
        checksum = ((((checksum & 1) << 7) | (checksum >> 1)) + byte) & 0xFF
    return checksum


class DirectorySector:
    """A single directory sector, filled from its last entry backwards.

    A fresh sector holds only deleted entries.  Each added name takes one
    8.3 entry (with a blank short name) preceded by its long-name records.
    """

    def __init__(self) -> None:
        self._data = bytearray(g.SECTOR_SIZE)
        for index in range(g.DIRENT_PER_SECTOR):
            self._data[index * g.DIRENT_SIZE] = g.DIRENT_DELETED
        self._cursor = g.DIRENT_PER_SECTOR - 1

    def add(self, name: str, size: int, attr: int, cluster: int) -> None:
        """Add a directory entry for a file or subdirectory."""
        encoded = name.encode("utf-16-le")
        units = list(struct.unpack(f"<{len(encoded) // 2}H", encoded)) + [0]
        records = -(-len(units) // _LFN_CHARS)
        dos_index = self._cursor
        if dos_index - records < 0:
            raise ValueError(f"no room in directory sector for {name!r}")

        raw = b" " * 11
        _DOS.pack_into(
            self._data,
            dos_index * g.DIRENT_SIZE,
            raw,
            int(attr),
            0,
            0,
            0,
            0,
            0,
            (cluster >> 16) & 0xFFFF,
            0,
            0,
            cluster & 0xFFFF,
            size & 0xFFFFFFFF,
        )
        checksum = short_name_checksum(raw)

        for number in range(records):
            chars = units[number * _LFN_CHARS:(number + 1) * _LFN_CHARS]
            chars += [_UNUSED_CHAR] * (_LFN_CHARS - len(chars))
            sequence = number + 1
            if number == records - 1:
                sequence |= g.LFN_END
            _LFN.pack_into(
                self._data,
                (dos_index - 1 - number) * g.DIRENT_SIZE,
                sequence,
                *chars[0:5],
                int(g.LFN_ATTR),
                0,
                checksum,
                *chars[5:11],
                0,
                *chars[11:13],
            )

        self._cursor = dos_index - records - 1

    def __bytes__(self) -> bytes:
        return bytes(self._data)
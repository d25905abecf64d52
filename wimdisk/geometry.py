"""Layout of the emulated FAT32 disk: geometry, well-known values and LBA maths."""

from __future__ import annotations

import enum

# Disk geometry
CYLINDERS = 1024
HEADS = 255
SECTORS_PER_TRACK = 63
SECTOR_SIZE = 512

PARTITION_LBA = 128

CLUSTER_COUNT = 64
"""Cluster size in sectors."""
CLUSTER_SIZE = CLUSTER_COUNT * SECTOR_SIZE
"""Cluster size in bytes."""
CLUSTERS = 0x03FFC000
"""Number of clusters (fills a 2TB disk)."""

MAX_FILES = CLUSTER_COUNT - 1
"""Maximum number of virtual files; strictly less than sectors per cluster."""

FILE_COUNT = 0x800000
"""Maximum file size in sectors (the limit of a 32-bit address space)."""
FILE_CLUSTERS = FILE_COUNT // CLUSTER_COUNT
"""Maximum file size in clusters."""

_FAT_ENTRY_SIZE = 4
SECTORS_PER_FAT = (
    (CLUSTERS * _FAT_ENTRY_SIZE + CLUSTER_SIZE - 1) // CLUSTER_SIZE
) * CLUSTER_COUNT
RESERVED_COUNT = CLUSTER_COUNT

PARTITION_COUNT = RESERVED_COUNT + SECTORS_PER_FAT + CLUSTERS * CLUSTER_COUNT
"""Total number of sectors within the partition."""
COUNT = PARTITION_LBA + PARTITION_COUNT
"""Total number of sectors on the disk."""

# Master Boot Record
MBR_LBA = 0
MBR_COUNT = 1
MBR_BOOTABLE = 0x80
MBR_TYPE_FAT32 = 0x0C
MBR_SIGNATURE = 0xC0FFEEEE
MBR_MAGIC = 0xAA55

# Volume Boot Record
VBR_LBA = PARTITION_LBA
VBR_COUNT = 1
VBR_JUMP_WTF_MS = 0xE9
VBR_OEMID = b"wimboot\0"
VBR_MEDIA = 0xF8
VBR_SIGNATURE = 0x29
VBR_SERIAL = 0xF00DF00D
VBR_LABEL = b"wimboot    "
VBR_SYSTEM = b"FAT32   "
VBR_MAGIC = 0xAA55

# FSInfo
FSINFO_SECTOR = 1
FSINFO_LBA = VBR_LBA + FSINFO_SECTOR
FSINFO_COUNT = 1
FSINFO_MAGIC1 = 0x41615252
FSINFO_MAGIC2 = 0x61417272
FSINFO_NEXT_FREE = 0xFFFFFFFF
FSINFO_MAGIC3 = 0xAA550000

# Backup Volume Boot Record
BACKUP_VBR_SECTOR = 6
BACKUP_VBR_LBA = VBR_LBA + BACKUP_VBR_SECTOR
BACKUP_VBR_COUNT = 1

# File Allocation Table
FAT_SECTOR = RESERVED_COUNT
FAT_LBA = VBR_LBA + FAT_SECTOR
FAT_COUNT = SECTORS_PER_FAT
FAT_END_MARKER = 0x0FFFFFF8

# Directory entries
DIRENT_SIZE = 32
DIRENT_PER_SECTOR = SECTOR_SIZE // DIRENT_SIZE
DIRENT_DELETED = 0xE5
LFN_END = 0x40
NAME_LEN = 31
"""Maximum virtual file name length, excluding the terminator."""


class Attribute(enum.IntFlag):
    """FAT directory entry attributes."""

    READ_ONLY = 0x01
    HIDDEN = 0x02
    SYSTEM = 0x04
    VOLUME_LABEL = 0x08
    DIRECTORY = 0x10


LFN_ATTR = (
    Attribute.READ_ONLY | Attribute.HIDDEN | Attribute.SYSTEM | Attribute.VOLUME_LABEL
)
"""Attribute combination that marks a long file name record."""


def _check_non_negative(name: str, value: int) -> None:
    if value < 0:
        raise ValueError(f"{name} must not be negative: {value}")


def file_lba(index: int) -> int:
    """Return the first LBA of the virtual file with the given index."""
    _check_non_negative("index", index)
    return (index + 1) * FILE_COUNT


def file_index(lba: int) -> int:
    """Return the virtual file index for an LBA, or -1 below the first file."""
    _check_non_negative("lba", lba)
    return lba // FILE_COUNT - 1


def file_offset(lba: int) -> int:
    """Return the byte offset within its virtual file of an LBA."""
    _check_non_negative("lba", lba)
    return (lba % FILE_COUNT) * SECTOR_SIZE


def file_dirent_index(lba: int) -> int:
    """Return the file index described by a directory-files sector at an LBA."""
    _check_non_negative("lba", lba)
    return (lba - 1) % CLUSTER_COUNT


def file_cluster(index: int) -> int:
    """Return the starting cluster of the virtual file with the given index."""
    _check_non_negative("index", index)
    base = (
        FILE_COUNT - PARTITION_LBA - RESERVED_COUNT - SECTORS_PER_FAT
    ) // CLUSTER_COUNT + 2
    return base + index * FILE_CLUSTERS


def cluster_sector(cluster: int) -> int:
    """Return the partition-relative sector at which a cluster starts."""
    if cluster < 2:
        raise ValueError(f"cluster numbers start at 2: {cluster}")
    return (cluster - 2) * CLUSTER_COUNT + RESERVED_COUNT + SECTORS_PER_FAT


ROOT_CLUSTER = 2
BOOT_CLUSTER = 3
SOURCES_CLUSTER = 4
FONTS_CLUSTER = 5
RESOURCES_CLUSTER = 6
EFI_CLUSTER = 7
MICROSOFT_CLUSTER = 8

ROOT_LBA = VBR_LBA + cluster_sector(ROOT_CLUSTER)
BOOT_LBA = VBR_LBA + cluster_sector(BOOT_CLUSTER)
SOURCES_LBA = VBR_LBA + cluster_sector(SOURCES_CLUSTER)
FONTS_LBA = VBR_LBA + cluster_sector(FONTS_CLUSTER)
RESOURCES_LBA = VBR_LBA + cluster_sector(RESOURCES_CLUSTER)
EFI_LBA = VBR_LBA + cluster_sector(EFI_CLUSTER)
MICROSOFT_LBA = VBR_LBA + cluster_sector(MICROSOFT_CLUSTER)
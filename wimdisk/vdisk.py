"""A read-only virtual FAT32 disk built on the fly from a set of virtual files."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Any, Callable, Optional

from . import geometry as g
from .records import DirectorySector, fsinfo_sector, mbr_sector, vbr_sector

log = logging.getLogger(__name__)

Reader = Callable[["VirtualFile", int, int], bytes]
Patcher = Callable[["VirtualFile", bytearray, int, int], None]

_FAT_PER_SECTOR = g.SECTOR_SIZE // 4


class VirtualDiskError(Exception):
    """Raised when the virtual disk cannot satisfy a request."""


@dataclass(eq=False)
class VirtualFile:
    """A file exposed on the virtual disk.

    ``length`` is the length of the real data; ``xlength`` includes any
    extra data that a patcher appends, and defaults to ``length``.
    """

    name: str
    length: int
    reader: Reader
    opaque: Any = None
    xlength: Optional[int] = None
    patcher: Optional[Patcher] = None

    def __post_init__(self) -> None:
        if self.xlength is None:
            self.xlength = self.length

    def read(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes of real data starting at ``offset``."""
        data = self.reader(self, offset, length)
        if len(data) != length:
            raise VirtualDiskError(
                f"read of {length} bytes from {self.name} returned {len(data)}"
            )
        return bytes(data)


@dataclass(frozen=True)
class _Region:
    name: str
    lba: int
    count: int
    build: Callable[[int, int], bytes]


def _single(record: Callable[[], bytes]) -> Callable[[int, int], bytes]:
    def build(lba: int, count: int) -> bytes:
        return record()

    return build


def _subdirs(*entries: tuple) -> Callable[[int, int], bytes]:
    def build(lba: int, count: int) -> bytes:
        directory = DirectorySector()
        for name, cluster in entries:
            directory.add(name, 0, g.Attribute.DIRECTORY, cluster)
        return bytes(directory)

    return build


def _fat(files: list) -> Callable[[int, int], bytes]:
    def build(lba: int, count: int) -> bytes:
        start = (lba - g.FAT_LBA) * _FAT_PER_SECTOR
        end = start + count * _FAT_PER_SECTOR
        entries = list(range(start + 1, end + 1))

        if start == 0:
            entries[0] = (g.FAT_END_MARKER & ~0xFF) | g.VBR_MEDIA
            for index in range(1, _FAT_PER_SECTOR):
                entries[index] = g.FAT_END_MARKER

        for index, file in enumerate(files):
            marker = g.file_cluster(index) + max(file.xlength - 1, 0) // g.CLUSTER_SIZE
            if start <= marker < end:
                entries[marker - start] = g.FAT_END_MARKER

        return struct.pack(f"<{len(entries)}I", *(e & 0xFFFFFFFF for e in entries))

    return build


class VirtualDisk:
    """The emulated disk: fixed FAT32 structures plus up to MAX_FILES files."""

    def __init__(self) -> None:
        self.files: list[VirtualFile] = []
        regions = [
            _Region("MBR", g.MBR_LBA, g.MBR_COUNT, _single(mbr_sector)),
            _Region("VBR", g.VBR_LBA, g.VBR_COUNT, _single(vbr_sector)),
            _Region("FSInfo", g.FSINFO_LBA, g.FSINFO_COUNT, _single(fsinfo_sector)),
            _Region(
                "VBR Backup", g.BACKUP_VBR_LBA, g.BACKUP_VBR_COUNT, _single(vbr_sector)
            ),
            _Region("FAT", g.FAT_LBA, g.FAT_COUNT, _fat(self.files)),
        ]
        directories = [
            (
                "Root",
                g.ROOT_LBA,
                _subdirs(
                    ("BOOT", g.BOOT_CLUSTER),
                    ("SOURCES", g.SOURCES_CLUSTER),
                    ("EFI", g.EFI_CLUSTER),
                ),
            ),
            (
                "Boot",
                g.BOOT_LBA,
                _subdirs(("FONTS", g.FONTS_CLUSTER), ("RESOURCES", g.RESOURCES_CLUSTER)),
            ),
            ("Sources", g.SOURCES_LBA, _subdirs()),
            ("Fonts", g.FONTS_LBA, _subdirs()),
            ("Resources", g.RESOURCES_LBA, _subdirs()),
            (
                "EFI",
                g.EFI_LBA,
                _subdirs(("BOOT", g.BOOT_CLUSTER), ("MICROSOFT", g.MICROSOFT_CLUSTER)),
            ),
            ("Microsoft", g.MICROSOFT_LBA, _subdirs(("BOOT", g.BOOT_CLUSTER))),
        ]
        for name, lba, build in directories:
            regions.append(_Region(f"{name} subdirs", lba, 1, build))
            regions.append(
                _Region(f"{name} files", lba + 1, g.CLUSTER_COUNT - 1, self._dir_files)
            )
        self._regions = tuple(regions)

    def add_file(
        self, name: str, length: int, reader: Reader, opaque: Any = None
    ) -> VirtualFile:
        """Add a file to the disk and return it."""
        if len(self.files) >= g.MAX_FILES:
            raise VirtualDiskError("Too many files")
        if length < 0:
            raise ValueError(f"file length must not be negative: {length}")
        file = VirtualFile(name[: g.NAME_LEN], length, reader, opaque)
        self.files.append(file)
        log.debug("Using %s len %#x", file.name, file.length)
        return file

    def patch_file(self, file: VirtualFile, patcher: Patcher) -> None:
        """Attach a patcher to a file and let it adjust the file's length."""
        file.patcher = patcher
        patcher(file, bytearray(), 0, 0)

    def read(self, lba: int, count: int) -> bytes:
        """Read ``count`` sectors starting at ``lba``."""
        if lba < 0 or count < 0:
            raise ValueError(f"invalid read of {count} sectors at {lba}")
        end = lba + count
        out = bytearray()
        start = lba
        fragments = []

        while start != end:
            frag_end = end
            name: Optional[str] = None
            build: Optional[Callable[[int, int], bytes]] = None

            index = g.file_index(start)
            if index >= 0:
                frag_end = min(frag_end, g.file_lba(index + 1))
                if index < len(self.files):
                    name = self.files[index].name
                    build = self._file
            else:
                for region in self._regions:
                    region_start = region.lba
                    region_end = region.lba + region.count
                    if start < region_start < frag_end:
                        frag_end = region_start
                    if start >= region_end or frag_end <= region_start:
                        continue
                    frag_end = min(frag_end, region_end)
                    name = region.name
                    build = region.build
                    break

            frag_count = frag_end - start
            fragments.append(f"{name or 'empty'} ({frag_count:#x})")
            if build is not None:
                out += build(start, frag_count)
            else:
                out += bytes(frag_count * g.SECTOR_SIZE)
            start = frag_end

        log.debug("Read from %#x+%#x: %s", lba, count, ", ".join(fragments))
        return bytes(out)

    def _dir_files(self, lba: int, count: int) -> bytes:
        out = bytearray()
        for sector_lba in range(lba, lba + count):
            directory = DirectorySector()
            index = g.file_dirent_index(sector_lba)
            if index >= g.MAX_FILES:
                raise VirtualDiskError(f"directory sector {sector_lba:#x} out of range")
            if index < len(self.files):
                file = self.files[index]
                directory.add(
                    file.name,
                    file.xlength,
                    g.Attribute.READ_ONLY,
                    g.file_cluster(index),
                )
            out += bytes(directory)
        return bytes(out)

    def _file(self, lba: int, count: int) -> bytes:
        file = self.files[g.file_index(lba)]
        offset = g.file_offset(lba)
        length = count * g.SECTOR_SIZE

        copy_len = min(max(file.length - offset, 0), length)
        data = bytearray(file.read(offset, copy_len) if copy_len else b"")
        data += bytes(length - copy_len)

        patch_len = min(max(file.xlength - offset, 0), length)
        if file.patcher is not None:
            file.patcher(file, data, offset, patch_len)
        if len(data) != length:
            raise VirtualDiskError(f"patch of {file.name} changed the data length")
        return bytes(data)
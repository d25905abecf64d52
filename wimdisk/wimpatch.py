"""Dynamic patching of WIM files: boot image selection and file injection."""

from __future__ import annotations

import logging
import struct
from dataclasses import replace
from functools import partial
from typing import Mapping, Optional, Union

from .patchregions import (
    DIR_ENTRY_SIZE,
    INJECT_DIR,
    PatchRegion,
    injected_dir_entry_bytes,
    lookup_entry_bytes,
    should_inject,
    wim_align,
    wim_hash,
)
from .vdisk import VirtualDisk, VirtualFile
from .wim import (
    DIRENT_SUBDIR_OFFSET,
    HEADER_SIZE,
    LOOKUP_ENTRY_SIZE,
    RESHDR_METADATA,
    Decompressor,
    LookupEntry,
    ResourceHeader,
    WimError,
    WimHeader,
    WimImage,
)

log = logging.getLogger(__name__)

_TERMINATOR_SIZE = 8
_SUBDIR = struct.Struct("<Q")

Buffer = Union[bytearray, memoryview]


def _slice(blob: bytes, offset: int, length: int) -> bytes:
    return blob[offset:offset + length]


def _read_file(file: VirtualFile, offset: int, length: int) -> bytes:
    return file.read(offset, length)


def _read_resource(
    image: WimImage, resource: ResourceHeader, base: int, offset: int, length: int
) -> bytes:
    return image.read(resource, base + offset, length)


def _lookup_file(file: VirtualFile, start: int, offset: int, length: int) -> bytes:
    entry = lookup_entry_bytes(start, file.length, wim_hash(file))
    log.debug("...patched WIM lookup.file %s", file.name)
    return entry[offset:offset + length]


def _dir_file(file: VirtualFile, offset: int, length: int) -> bytes:
    entry = injected_dir_entry_bytes(file.name, wim_hash(file))
    log.debug("...patched WIM dir.file %s", file.name)
    return entry[offset:offset + length]


def _lookup_boot(header: WimHeader, offset: int, length: int) -> bytes:
    entry = LookupEntry(resource=replace(header.boot))
    return bytes(entry)[offset:offset + length]


def _header_bytes(header: WimHeader, offset: int, length: int) -> bytes:
    return bytes(header)[offset:offset + length]


class WimPatcher:
    """A patcher for WIM virtual files.

    It can select a different boot image (``boot_index``) and inject every
    other suitable file of ``disk`` into ``\\Windows\\System32`` of the boot
    image, by appending a new lookup table and new boot metadata to the file.
    The layout is built on first use for a file and kept until another file
    is patched.
    """

    def __init__(
        self,
        disk: VirtualDisk,
        boot_index: int = 0,
        inject: bool = True,
        decompressors: Optional[Mapping[int, Decompressor]] = None,
    ) -> None:
        if boot_index < 0:
            raise ValueError(f"boot index must not be negative: {boot_index}")
        self.disk = disk
        self.boot_index = boot_index
        self.inject = inject
        self.decompressors = dict(decompressors or {})
        self._file: Optional[VirtualFile] = None
        self._regions: list[PatchRegion] = []

    @property
    def enabled(self) -> bool:
        """Whether this patcher changes anything at all."""
        return self.boot_index != 0 or self.inject

    def __call__(
        self, file: VirtualFile, data: Buffer, offset: int, length: int
    ) -> None:
        """Patch the first ``length`` bytes of ``data``, read from ``offset``."""
        if not self.enabled:
            return
        if length < 0 or length > len(data):
            raise ValueError(f"invalid patch length {length} for {len(data)} bytes")

        if file is not self._file:
            try:
                regions = self._construct(file)
            except WimError as exc:
                raise WimError(f"Could not patch WIM {file.name}: {exc}") from exc
            self._file = file
            self._regions = regions

        view = memoryview(data)[:length]
        try:
            for region in self._regions:
                try:
                    region.apply(view, offset)
                except WimError as exc:
                    raise WimError(
                        f"Could not patch WIM {file.name} {region.name} "
                        f"at [{offset:#x},{offset + length:#x}): {exc}"
                    ) from exc
        finally:
            view.release()

    def _construct(self, file: VirtualFile) -> list[PatchRegion]:
        log.debug("...patching WIM %s", file.name)
        file.xlength = file.length
        offset = file.length

        image = WimImage(file, self.decompressors)
        header = WimHeader.from_bytes(bytes(image.header))
        original_lookup = replace(header.lookup)
        boot = replace(image.metadata(self.boot_index))
        original_boot_index = header.boot_index

        regions = [
            PatchRegion("header", 0, HEADER_SIZE, partial(_header_bytes, header))
        ]

        if self.boot_index:
            header.boot_index = self.boot_index
            log.debug(
                "...patching WIM boot index %d->%d",
                original_boot_index,
                header.boot_index,
            )

        if not self.inject:
            return regions

        injected: list[tuple[VirtualFile, PatchRegion]] = []
        for vfile in self.disk.files:
            if not should_inject(vfile):
                continue
            region = PatchRegion(
                vfile.name, offset, vfile.length, partial(_read_file, vfile)
            )
            injected.append((vfile, region))
            offset = region.end

        if not injected:
            return regions

        header.images = image.count() + 1
        header.boot_index = header.images

        # Injected lookup table
        lookup_start = wim_align(offset)
        lookup_copy = PatchRegion(
            "lookup.copy",
            lookup_start,
            original_lookup.length,
            partial(_read_resource, image, original_lookup, 0),
        )
        lookup_boot = PatchRegion(
            "lookup.boot",
            lookup_copy.end,
            LOOKUP_ENTRY_SIZE,
            partial(_lookup_boot, header),
        )
        offset = lookup_boot.end
        lookup_files = []
        for vfile, rfile in injected:
            region = PatchRegion(
                "lookup.file",
                offset,
                LOOKUP_ENTRY_SIZE,
                partial(_lookup_file, vfile, rfile.offset),
            )
            lookup_files.append(region)
            offset = region.end
        lookup_len = offset - lookup_start
        header.lookup = ResourceHeader(
            zlen_flags=lookup_len, offset=lookup_start, length=lookup_len
        )
        log.debug(
            "...patching WIM lookup table %#x->%#x",
            original_lookup.offset,
            lookup_start,
        )

        # Directory receiving the injected files
        parent, direntry = image.path(boot, INJECT_DIR)
        dir_offset = direntry.subdir
        dir_len = image.dir_len(boot, dir_offset)

        # Injected boot image metadata
        boot_start = wim_align(offset)
        boot_copy = PatchRegion(
            "boot.copy", boot_start, boot.length, partial(_read_resource, image, boot, 0)
        )
        log.debug(
            "...patching WIM directory at %#x from [%#x,%#x)",
            boot_start + parent,
            boot_start + dir_offset,
            boot_start + dir_offset + dir_len,
        )
        offset = wim_align(boot_copy.end)
        subdir = offset - boot_start
        dir_files = []
        for vfile, _ in injected:
            region = PatchRegion(
                "dir.file", offset, DIR_ENTRY_SIZE, partial(_dir_file, vfile)
            )
            dir_files.append(region)
            offset = wim_align(region.end)
        dir_copy = PatchRegion(
            INJECT_DIR,
            offset,
            dir_len,
            partial(_read_resource, image, boot, dir_offset),
        )
        offset = dir_copy.end + _TERMINATOR_SIZE
        dir_subdir = PatchRegion(
            "dir.subdir",
            boot_start + parent + DIRENT_SUBDIR_OFFSET,
            _SUBDIR.size,
            partial(_slice, _SUBDIR.pack(subdir)),
        )

        boot_len = offset - boot_start
        header.boot = ResourceHeader(
            zlen_flags=boot_len | RESHDR_METADATA, offset=boot_start, length=boot_len
        )

        file.xlength = offset
        log.debug("...patching WIM length %#x->%#x", file.length, file.xlength)

        regions.extend(region for _, region in injected)
        regions.extend([lookup_copy, lookup_boot, *lookup_files])
        regions.extend([boot_copy, dir_subdir, dir_copy, *dir_files])
        return regions
"""Reading WIM images: headers, lookup tables, chunked resources and directories."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, Optional

from .vdisk import VirtualFile

log = logging.getLogger(__name__)

Decompressor = Callable[[bytes], bytes]

RESHDR_ZLEN_MASK = 0x00FFFFFFFFFFFFFF
"""Mask selecting the compressed length from a resource header."""
RESHDR_METADATA = 0x02 << 56
"""Resource contains image metadata."""
RESHDR_COMPRESSED = 0x04 << 56
"""Resource is compressed."""
RESHDR_PACKED_STREAMS = 0x10 << 56
"""Resource is compressed using packed streams."""

HDR_XPRESS = 0x00020000
"""WIM uses Xpress compression."""
HDR_LZX = 0x00040000
"""WIM uses LZX compression."""

CHUNK_LEN = 32768
"""Uncompressed length of each compressed resource chunk."""

ATTR_NORMAL = 0x00000080
"""Directory entry attribute of a normal file."""
NO_SECURITY = 0xFFFFFFFF
"""Security ID meaning that no security information exists."""
MAGIC_TIME = 0x1A7B83D2AD93000
"""Timestamp used where Windows objects to zero time fields."""

_RESOURCE = struct.Struct("<QQQ")
_HEADER = struct.Struct("<8sIIII16sHHI24s24s24sI24s60s")
_LOOKUP = struct.Struct("<24sHI20s")
_DIRENT = struct.Struct("<QIIQ16sQQQ20s12sHHH")
_SECURITY = struct.Struct("<II")
_LENGTH = struct.Struct("<Q")
_OFFSET_32 = struct.Struct("<I")
_OFFSET_64 = struct.Struct("<Q")

RESOURCE_HEADER_SIZE = _RESOURCE.size
HEADER_SIZE = _HEADER.size
LOOKUP_ENTRY_SIZE = _LOOKUP.size
DIRENT_SIZE = _DIRENT.size
DIRENT_SUBDIR_OFFSET = 16
"""Byte offset of the subdirectory field within a directory entry."""
HASH_SIZE = 20


class WimError(Exception):
    """Raised when a WIM image is malformed or lacks what was asked for."""


def _need(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise WimError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class ResourceHeader:
    """Location, compressed length, flags and uncompressed length of a resource."""

    zlen_flags: int = 0
    offset: int = 0
    length: int = 0

    @property
    def zlen(self) -> int:
        """Compressed (stored) length of the resource."""
        return self.zlen_flags & RESHDR_ZLEN_MASK

    @property
    def is_metadata(self) -> bool:
        return bool(self.zlen_flags & RESHDR_METADATA)

    @property
    def is_compressed(self) -> bool:
        return bool(self.zlen_flags & (RESHDR_COMPRESSED | RESHDR_PACKED_STREAMS))

    @classmethod
    def from_bytes(cls, data: bytes) -> "ResourceHeader":
        _need(data, _RESOURCE.size, "resource header")
        return cls(*_RESOURCE.unpack_from(data))

    def __bytes__(self) -> bytes:
        return _RESOURCE.pack(self.zlen_flags, self.offset, self.length)


@dataclass
class WimHeader:
    """The fixed header at the start of a WIM file."""

    signature: bytes = bytes(8)
    header_len: int = HEADER_SIZE
    version: int = 0
    flags: int = 0
    chunk_len: int = CHUNK_LEN
    guid: bytes = bytes(16)
    part: int = 1
    parts: int = 1
    images: int = 0
    lookup: ResourceHeader = field(default_factory=ResourceHeader)
    xml: ResourceHeader = field(default_factory=ResourceHeader)
    boot: ResourceHeader = field(default_factory=ResourceHeader)
    boot_index: int = 0
    integrity: ResourceHeader = field(default_factory=ResourceHeader)
    reserved: bytes = bytes(60)

    @classmethod
    def from_bytes(cls, data: bytes) -> "WimHeader":
        _need(data, _HEADER.size, "WIM header")
        (
            signature, header_len, version, flags, chunk_len, guid, part, parts,
            images, lookup, xml, boot, boot_index, integrity, reserved,
        ) = _HEADER.unpack_from(data)
        return cls(
            signature, header_len, version, flags, chunk_len, guid, part, parts,
            images,
            ResourceHeader.from_bytes(lookup),
            ResourceHeader.from_bytes(xml),
            ResourceHeader.from_bytes(boot),
            boot_index,
            ResourceHeader.from_bytes(integrity),
            reserved,
        )

    def __bytes__(self) -> bytes:
        return _HEADER.pack(
            self.signature, self.header_len, self.version, self.flags,
            self.chunk_len, self.guid, self.part, self.parts, self.images,
            bytes(self.lookup), bytes(self.xml), bytes(self.boot),
            self.boot_index, bytes(self.integrity), self.reserved,
        )


@dataclass
class LookupEntry:
    """An entry of the lookup table, mapping a content hash to a resource."""

    resource: ResourceHeader = field(default_factory=ResourceHeader)
    part: int = 0
    refcnt: int = 0
    hash: bytes = bytes(HASH_SIZE)

    @classmethod
    def from_bytes(cls, data: bytes) -> "LookupEntry":
        _need(data, _LOOKUP.size, "lookup entry")
        resource, part, refcnt, digest = _LOOKUP.unpack_from(data)
        return cls(ResourceHeader.from_bytes(resource), part, refcnt, digest)

    def __bytes__(self) -> bytes:
        return _LOOKUP.pack(bytes(self.resource), self.part, self.refcnt, self.hash)


@dataclass
class DirectoryEntry:
    """The fixed-length part of a directory entry within image metadata."""

    length: int = 0
    attributes: int = 0
    security: int = 0
    subdir: int = 0
    reserved1: bytes = bytes(16)
    created: int = 0
    accessed: int = 0
    written: int = 0
    hash: bytes = bytes(HASH_SIZE)
    reserved2: bytes = bytes(12)
    streams: int = 0
    short_name_len: int = 0
    name_len: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "DirectoryEntry":
        _need(data, _DIRENT.size, "directory entry")
        return cls(*_DIRENT.unpack_from(data))

    def __bytes__(self) -> bytes:
        return _DIRENT.pack(
            self.length, self.attributes, self.security, self.subdir,
            self.reserved1, self.created, self.accessed, self.written,
            self.hash, self.reserved2, self.streams, self.short_name_len,
            self.name_len,
        )


def _align8(value: int) -> int:
    return (value + 7) & ~7


class WimImage:
    """A WIM file held in a virtual file, with its header already read.

    ``decompressors`` maps WIM header compression flags (such as
    :data:`HDR_LZX`) to functions that turn one compressed chunk into
    its uncompressed bytes.
    """

    def __init__(
        self,
        file: VirtualFile,
        decompressors: Optional[Mapping[int, Decompressor]] = None,
    ) -> None:
        self.file = file
        self.decompressors = dict(decompressors or {})
        if HEADER_SIZE > file.length:
            raise WimError(f"WIM file too short ({file.length:#x} bytes)")
        self.header = WimHeader.from_bytes(file.read(0, HEADER_SIZE))
        self._cache: Optional[tuple[int, int, bytes]] = None

    def _chunk_offset(self, resource: ResourceHeader, chunk: int) -> int:
        if not resource.length:
            return 0
        zlen = resource.zlen
        chunks = -(-resource.length // CHUNK_LEN)
        entry = _OFFSET_64 if resource.length > 0xFFFFFFFF else _OFFSET_32
        chunks_len = (chunks - 1) * entry.size
        if chunks_len > zlen:
            raise WimError(f"Resource too short for {chunks} chunks")
        if chunk == 0:
            return chunks_len
        if chunk >= chunks:
            return zlen
        raw = self.file.read(
            resource.offset + (chunk - 1) * entry.size, entry.size
        )
        offset = chunks_len + entry.unpack(raw)[0]
        if offset > zlen:
            raise WimError(f"Chunk {chunk} offset lies outside resource")
        return offset

    def _decompressor(self) -> Decompressor:
        for flag, decompress in self.decompressors.items():
            if self.header.flags & flag:
                return decompress
        raise WimError(
            f"Can't handle unknown compression scheme {self.header.flags:#010x}"
        )

    def _chunk(self, resource: ResourceHeader, chunk: int) -> bytes:
        offset = self._chunk_offset(resource, chunk)
        next_offset = self._chunk_offset(resource, chunk + 1)
        length = next_offset - offset

        chunks = -(-resource.length // CHUNK_LEN)
        if chunk >= chunks - 1:
            expected = resource.length % CHUNK_LEN
        else:
            expected = CHUNK_LEN

        data = self.file.read(resource.offset + offset, length)
        if length == expected:
            return data

        out = self._decompressor()(data)
        if len(out) != expected:
            raise WimError(
                f"Unexpected output length {len(out):#x} (expected {expected:#x})"
            )
        return bytes(out)

    def read(self, resource: ResourceHeader, offset: int, length: int) -> bytes:
        """Read ``length`` uncompressed bytes at ``offset`` within a resource."""
        if offset + length > resource.length:
            raise WimError(f"Resource too short ({resource.length:#x} bytes)")
        if resource.offset + resource.zlen > self.file.length:
            raise WimError("Resource exceeds length of file")

        if not resource.is_compressed:
            return self.file.read(resource.offset + offset, length)

        out = bytearray()
        while length:
            chunk = offset // CHUNK_LEN
            if self._cache is None or self._cache[:2] != (resource.offset, chunk):
                self._cache = (resource.offset, chunk, self._chunk(resource, chunk))
            data = self._cache[2]
            skip = offset % CHUNK_LEN
            frag = min(CHUNK_LEN - skip, length)
            out += data[skip:skip + frag]
            offset += frag
            length -= frag
        return bytes(out)

    def _lookup_entries(self) -> Iterator[tuple[int, LookupEntry]]:
        lookup = self.header.lookup
        last = lookup.length - LOOKUP_ENTRY_SIZE
        for offset in range(0, last + 1, LOOKUP_ENTRY_SIZE):
            raw = self.read(lookup, offset, LOOKUP_ENTRY_SIZE)
            yield offset, LookupEntry.from_bytes(raw)

    def _metadata_entries(self) -> Iterator[LookupEntry]:
        for offset, entry in self._lookup_entries():
            if entry.resource.is_metadata:
                log.debug("...found image metadata at +%#x", offset)
                yield entry

    def count(self) -> int:
        """Return the number of images (metadata entries in the lookup table)."""
        return sum(1 for _ in self._metadata_entries())

    def metadata(self, index: int = 0) -> ResourceHeader:
        """Return the metadata resource of image ``index`` (1-based), or 0 for boot."""
        if index == 0:
            return ResourceHeader.from_bytes(bytes(self.header.boot))
        for found, entry in enumerate(self._metadata_entries(), start=1):
            if found == index:
                return entry.resource
        raise WimError(f"Cannot find WIM image index {index} in {self.file.name}")

    def _direntry(
        self, meta: ResourceHeader, name: str, offset: int
    ) -> tuple[int, DirectoryEntry]:
        buf_size = (len(name) + 1) * 2
        wanted = name.lower()
        while True:
            (entry_len,) = _LENGTH.unpack(self.read(meta, offset, _LENGTH.size))
            if not entry_len:
                raise WimError(f'Directory entry "{name}" not found')
            entry = DirectoryEntry.from_bytes(self.read(meta, offset, DIRENT_SIZE))
            if entry.name_len <= buf_size:
                raw = self.read(meta, offset + DIRENT_SIZE, buf_size)
                found = raw.decode("utf-16-le", errors="replace").split("\0", 1)[0]
                if found.lower() == wanted:
                    log.debug('...found entry "%s"', name)
                    return offset, entry
            offset += entry.length

    def path(self, meta: ResourceHeader, path: str) -> tuple[int, DirectoryEntry]:
        """Find a backslash-separated path; return its entry offset and entry."""
        security_len, _ = _SECURITY.unpack(self.read(meta, 0, _SECURITY.size))
        subdir = _align8(security_len)
        offset = subdir
        entry = DirectoryEntry(subdir=subdir)
        for name in path.split("\\"):
            offset, entry = self._direntry(meta, name, entry.subdir)
        return offset, entry

    def find_file(self, meta: ResourceHeader, path: str) -> ResourceHeader:
        """Return the resource holding the contents of the file at ``path``."""
        _, direntry = self.path(meta, path)
        for _, entry in self._lookup_entries():
            if entry.hash == direntry.hash:
                log.debug('...found file "%s"', path)
                return entry.resource
        raise WimError(f"Cannot find file {path}")

    def dir_len(self, meta: ResourceHeader, offset: int) -> int:
        """Return the length of a directory's entries, excluding its terminator."""
        length = 0
        while True:
            (entry_len,) = _LENGTH.unpack(
                self.read(meta, offset + length, _LENGTH.size)
            )
            if not entry_len:
                return length
            length += entry_len
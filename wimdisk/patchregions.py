"""Building blocks for patching WIM files: regions, hashes and injected records."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Union

from . import geometry as g
from .vdisk import VirtualFile
from .wim import (
    ATTR_NORMAL,
    DIRENT_SIZE,
    MAGIC_TIME,
    NO_SECURITY,
    DirectoryEntry,
    LookupEntry,
    ResourceHeader,
)

log = logging.getLogger(__name__)

INJECT_DIR = "\\Windows\\System32"
"""Directory into which files are injected."""

DIR_ENTRY_SIZE = DIRENT_SIZE + 2 * (g.NAME_LEN + 1)
"""Size of an injected directory entry, including its fixed-size name."""

_HASH_BLOCK = 512

Buffer = Union[bytearray, memoryview]


def wim_align(length: int) -> int:
    """Round a WIM offset up to the next multiple of eight."""
    return (length + 7) & ~7


def should_inject(file: VirtualFile) -> bool:
    """Tell whether a virtual file should be injected into a WIM image."""
    name = file.name
    if name.upper() == "BCD":
        return False
    ext = name[-4:].lower() if len(name) > 4 else ""
    return ext not in (".wim", ".sdi")


def wim_hash(file: VirtualFile) -> bytes:
    """Return the SHA-1 digest of a virtual file's contents."""
    digest = hashlib.sha1()
    for offset in range(0, file.length, _HASH_BLOCK):
        digest.update(file.read(offset, min(_HASH_BLOCK, file.length - offset)))
    return digest.digest()


def lookup_entry_bytes(offset: int, length: int, digest: bytes) -> bytes:
    """Return a lookup table entry for an uncompressed resource."""
    entry = LookupEntry(
        resource=ResourceHeader(zlen_flags=length, offset=offset, length=length),
        refcnt=1,
        hash=digest,
    )
    return bytes(entry)


def injected_dir_entry_bytes(name: str, digest: bytes) -> bytes:
    """Return the directory entry, with its name, for an injected file."""
    encoded = name.encode("utf-16-le")
    if len(encoded) > 2 * g.NAME_LEN:
        raise ValueError(f"file name too long to inject: {name!r}")
    entry = DirectoryEntry(
        length=wim_align(DIR_ENTRY_SIZE),
        attributes=ATTR_NORMAL,
        security=NO_SECURITY,
        created=MAGIC_TIME,
        accessed=MAGIC_TIME,
        written=MAGIC_TIME,
        hash=digest,
        name_len=len(encoded),
    )
    raw = bytes(entry) + encoded
    return raw + bytes(DIR_ENTRY_SIZE - len(raw))


@dataclass
class PatchRegion:
    """A byte range of a patched WIM file whose contents come from ``patch``.

    ``patch`` receives an offset relative to the region start and a length,
    and returns exactly that many bytes.
    """

    name: str
    offset: int
    length: int
    patch: Callable[[int, int], bytes]

    @property
    def end(self) -> int:
        return self.offset + self.length

    def apply(self, data: Buffer, offset: int) -> int:
        """Overwrite the part of ``data`` (file bytes at ``offset``) in this region.

        Returns the number of bytes patched.
        """
        available = len(data)
        skip = max(self.offset - offset, 0)
        if skip >= available:
            return 0
        relative = offset + skip - self.offset
        if relative >= self.length:
            return 0
        count = min(available - skip, self.length - relative)
        chunk = self.patch(relative, count)
        if len(chunk) != count:
            raise ValueError(
                f"patch {self.name} returned {len(chunk)} bytes, expected {count}"
            )
        data[skip:skip + count] = chunk
        log.debug(
            "...patched WIM %s at [%#x,%#x)",
            self.name,
            self.offset + relative,
            self.offset + relative + count,
        )
        return count
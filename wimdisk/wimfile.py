"""Virtual files whose contents are single files extracted from WIM images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .vdisk import VirtualDisk, VirtualDiskError, VirtualFile
from .wim import Decompressor, ResourceHeader, WimError, WimImage

log = logging.getLogger(__name__)

MAX_WIM_FILES = 4
"""Maximum number of files that may be extracted from WIM images."""


@dataclass(frozen=True)
class _WimSource:
    """Where the contents of an extracted file live."""

    image: WimImage
    resource: ResourceHeader

    def read(self, file: VirtualFile, offset: int, length: int) -> bytes:
        return self.image.read(self.resource, offset, length)


class WimFiles:
    """Adds files found inside WIM images to a virtual disk."""

    def __init__(
        self,
        disk: VirtualDisk,
        decompressors: Optional[Mapping[int, Decompressor]] = None,
    ) -> None:
        self.disk = disk
        self.decompressors = dict(decompressors or {})
        self._added = 0

    def add(
        self, file: VirtualFile, index: int, path: str, name: str
    ) -> Optional[VirtualFile]:
        """Expose ``path`` from image ``index`` (0 for boot) of ``file`` as ``name``.

        Returns the new virtual file, or None if the WIM image, the image
        index or the path cannot be found.
        """
        if self._added >= MAX_WIM_FILES:
            raise VirtualDiskError("Too many WIM files")
        try:
            image = WimImage(file, self.decompressors)
            meta = image.metadata(index)
            resource = image.find_file(meta, path)
        except WimError as exc:
            log.debug("Cannot extract %s from %s: %s", path, file.name, exc)
            return None

        self._added += 1
        source = _WimSource(image, resource)
        return self.disk.add_file(name, resource.length, source.read, source)
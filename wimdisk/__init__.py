"""Virtual FAT32 disk images built on demand, with WIM file extraction and patching."""

__version__ = "0.1.0"

__all__ = ["geometry", "records", "vdisk", "wim", "wimfile", "patchregions", "wimpatch"]
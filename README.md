# wimdisk

`wimdisk` builds a read-only FAT32 disk image on demand, one sector range at a
time, without ever holding the whole image in memory. Files placed on the disk
can be plain byte sources or files pulled out of a WIM (Windows Imaging)
archive, and WIM files on the disk can be patched as they are read: the boot
image index can be changed and the other files on the disk can be injected
into `\Windows\System32` of the boot image.

It has no dependencies beyond the standard library.

## Layout of the disk

The disk is about 2 TB with a single bootable FAT32 partition at LBA 128. Its
root directory holds `BOOT`, `SOURCES` and `EFI`; `BOOT` holds `FONTS` and
`RESOURCES`; `EFI` holds `BOOT` and `MICROSOFT`, and `MICROSOFT` holds `BOOT`
(both `BOOT` entries under `EFI` lead to the same directory as `\BOOT`).
Every added file appears, read-only, in each of these directories.

Each file gets its own fixed window of 4 GB on the disk, so up to 63 files can
be added. The helpers in `wimdisk.geometry` (`file_lba`, `file_index`,
`file_offset`, `file_dirent_index`, `file_cluster`, `cluster_sector`) and its
constants give the numbers behind this layout; `geometry.Attribute` holds the
FAT directory entry attributes.

The fixed records are available on their own from `wimdisk.records`:
`mbr_sector()`, `vbr_sector()` and `fsinfo_sector()` return 512-byte sectors,
and `DirectorySector` builds a directory sector with long-file-name entries
(`add(name, size, attr, cluster)`, then `bytes(sector)`).

## Adding files and reading sectors

```python
from wimdisk.vdisk import VirtualDisk

payload = b"hello, world\n"

def reader(file, offset, length):
    return payload[offset:offset + length]

disk = VirtualDisk()
hello = disk.add_file("hello.txt", len(payload), reader, None)

mbr = disk.read(0, 1)           # 512 bytes: the master boot record
first = disk.read(0x800000, 1)  # first sector of the first file
assert first.startswith(payload)
```

A reader is called as `reader(file, offset, length)` and must return exactly
`length` bytes. Names longer than 31 characters are cut short.

`VirtualDisk.read(lba, count)` returns `count * 512` bytes. File data past the
end of a file, and sectors that belong to no structure, read as zeros. Adding
more than 63 files raises `VirtualDiskError`.

`VirtualDisk.patch_file(file, patcher)` attaches a patcher, called as
`patcher(file, data, offset, length)` on every read of the file's sectors with
a `bytearray` it may overwrite in place. It is called once straight away with
empty data so that it can set `file.xlength`, the length the file shows on the
disk.

## Files from a WIM archive

`wimdisk.wim.WimImage(file, decompressors)` reads the header of a WIM stored in
a `VirtualFile` and gives access to its lookup table, resources and directory
tree. Compressed resources are decompressed chunk by chunk through
`decompressors`, a mapping from header compression flags (`wim.HDR_LZX`,
`wim.HDR_XPRESS`) to functions that take one compressed chunk and return its
uncompressed bytes.

- `read(resource, offset, length)` reads uncompressed bytes of a resource;
- `count()` returns the number of images;
- `metadata(index)` returns the metadata resource of image `index`, 0 meaning
  the boot image;
- `path(meta, path)` finds a backslash-separated path (names compared without
  regard to case) and returns its entry offset and `DirectoryEntry`;
- `find_file(meta, path)` returns the `ResourceHeader` of a file's contents;
- `dir_len(meta, offset)` returns the length of a directory's entries.

Failures raise `WimError`. The record classes `ResourceHeader`, `WimHeader`,
`LookupEntry` and `DirectoryEntry` each have `from_bytes` and `bytes()`.

`wimdisk.wimfile.WimFiles.add(file, index, path, name)` looks up a file inside a
WIM already on the disk and adds it to the disk under a new name:

```python
from wimdisk.wimfile import WimFiles

wims = WimFiles(disk, decompressors)
bootmgr = wims.add(boot_wim, 1, "\\Windows\\Boot\\PXE\\bootmgr.exe", "bootmgr.exe")
```

It returns `None` when the WIM, the image or the file cannot be found, and
raises `VirtualDiskError` after four files have been added this way.

## Patching a WIM while it is read

`wimdisk.wimpatch.WimPatcher(disk, boot_index, inject, decompressors)` is a
patcher for `VirtualDisk.patch_file`. Give it the boot index to select (0 keeps
the one in the header) and whether to inject the other files on the disk:

```python
from wimdisk.wimpatch import WimPatcher

disk.patch_file(boot_wim, WimPatcher(disk, 0, True, decompressors))
```

With a boot index of 0 and injection off it changes nothing. When injecting,
the patched WIM grows: the added files, a new lookup table and a new boot image
metadata resource are appended after the original data, the injected files are
listed in `\Windows\System32` of the selected image, and the header is
rewritten to point at the new data as an extra image that becomes the boot
image. Files named `BCD` and `.wim` / `.sdi` files are never injected. Errors
raise `WimError`.

The building blocks — `wim_align`, `should_inject`, `wim_hash`,
`lookup_entry_bytes`, `injected_dir_entry_bytes` and `PatchRegion` — live in
`wimdisk.patchregions`.

## What it does not do

- It contains no decompressors. Compressed WIM resources can only be read if
  the caller supplies a decompression function for the WIM's compression
  scheme; otherwise `WimError` is raised.
- It has no command-line program and does not boot anything: it produces the
  bytes of the disk for whatever code serves them, for instance as an emulated
  drive.
- The disk is read-only; there is no way to write sectors.
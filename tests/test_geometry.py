import pytest

from wimdisk import geometry
from wimdisk.geometry import (
    Attribute,
    cluster_sector,
    file_cluster,
    file_dirent_index,
    file_index,
    file_lba,
    file_offset,
)


@pytest.mark.parametrize("index", [0, 1, 5, geometry.MAX_FILES - 1])
def test_file_lba_index_round_trip(index):
    assert file_index(file_lba(index)) == index
    assert file_index(file_lba(index + 1) - 1) == index


def test_file_lba_starts_at_file_count():
    assert file_lba(0) == geometry.FILE_COUNT


def test_lba_below_first_file_has_no_index():
    assert file_index(geometry.ROOT_LBA) == -1
    assert file_index(geometry.FILE_COUNT - 1) == -1


@pytest.mark.parametrize("sectors", [0, 1, 7, 1000])
def test_file_offset_counts_bytes_from_file_start(sectors):
    lba = file_lba(2) + sectors
    assert file_offset(lba) == sectors * geometry.SECTOR_SIZE


def test_file_offset_wraps_at_next_file():
    assert file_offset(file_lba(3)) == file_offset(file_lba(4))


@pytest.mark.parametrize("index", [0, 1, 30, geometry.MAX_FILES - 1])
def test_dirent_index_follows_directory_subdirs_sector(index):
    # Directory files sectors start one sector after the subdirectory sector.
    lba = geometry.ROOT_LBA + 1 + index
    assert file_dirent_index(lba) == index
    assert file_dirent_index(geometry.EFI_LBA + 1 + index) == index


@pytest.mark.parametrize("index", [0, 1, 10, geometry.MAX_FILES - 1])
def test_file_cluster_maps_onto_file_lba(index):
    sector = cluster_sector(file_cluster(index))
    assert geometry.PARTITION_LBA + sector == file_lba(index)


def test_file_clusters_are_spaced_by_file_size():
    assert file_cluster(1) - file_cluster(0) == geometry.FILE_CLUSTERS
    assert file_cluster(7) - file_cluster(3) == 4 * geometry.FILE_CLUSTERS


def test_cluster_sector_of_root_follows_fat():
    assert cluster_sector(geometry.ROOT_CLUSTER) == (
        geometry.RESERVED_COUNT + geometry.SECTORS_PER_FAT
    )
    assert cluster_sector(geometry.BOOT_CLUSTER) - cluster_sector(
        geometry.ROOT_CLUSTER
    ) == geometry.CLUSTER_COUNT


def test_directory_lbas_lie_before_first_file():
    lbas = [
        geometry.ROOT_LBA,
        geometry.BOOT_LBA,
        geometry.SOURCES_LBA,
        geometry.FONTS_LBA,
        geometry.RESOURCES_LBA,
        geometry.EFI_LBA,
        geometry.MICROSOFT_LBA,
    ]
    assert lbas == sorted(lbas)
    assert all(file_index(lba + geometry.CLUSTER_COUNT - 1) == -1 for lba in lbas)


def test_partition_fits_fat_and_clusters():
    assert geometry.COUNT == geometry.PARTITION_LBA + geometry.PARTITION_COUNT
    fat_sectors = cluster_sector(geometry.ROOT_CLUSTER) - geometry.RESERVED_COUNT
    assert fat_sectors == geometry.SECTORS_PER_FAT
    assert fat_sectors * geometry.SECTOR_SIZE >= geometry.CLUSTERS * 4
    assert fat_sectors % geometry.CLUSTER_COUNT == 0
    last_cluster = geometry.CLUSTERS + 1
    assert (
        cluster_sector(last_cluster) + geometry.CLUSTER_COUNT
        == geometry.PARTITION_COUNT
    )


def test_lfn_attribute_combination():
    lfn = Attribute(int(geometry.LFN_ATTR))
    assert lfn == geometry.LFN_ATTR
    assert Attribute.READ_ONLY in lfn
    assert Attribute.VOLUME_LABEL in lfn
    assert Attribute.DIRECTORY not in lfn
    assert Attribute(0x10) == Attribute.DIRECTORY


@pytest.mark.parametrize(
    "func", [file_lba, file_index, file_offset, file_dirent_index, file_cluster]
)
def test_negative_values_rejected(func):
    with pytest.raises(ValueError):
        func(-1)


@pytest.mark.parametrize("cluster", [0, 1])
def test_reserved_clusters_have_no_sector(cluster):
    with pytest.raises(ValueError):
        cluster_sector(cluster)
import pytest

from pakindex.errors import FormatError
from pakindex.versions import (
    PAK_MAGIC,
    PROBE_ORDER,
    TOC_MAGIC,
    PakVersion,
    PakVersionMajor,
    TocVersion,
    check_pak_footer,
    check_toc_magic,
    pak_capabilities,
    toc_capabilities,
    toc_version,
)


@pytest.mark.parametrize("version,size", [
    (PakVersion.V1, 44),
    (PakVersion.V3, 44),
    (PakVersion.V4, 45),
    (PakVersion.V6, 45),
    (PakVersion.V7, 61),
    (PakVersion.V8A, 189),
    (PakVersion.V8B, 221),
    (PakVersion.V9, 222),
    (PakVersion.V10, 221),
    (PakVersion.V11, 221),
])
def test_footer_size(version: PakVersion, size: int) -> None:
    assert pak_capabilities(version).footer_size == size


def test_capabilities_follow_version_major() -> None:
    v1 = pak_capabilities(PakVersion.V1)
    assert v1.has_timestamp and not v1.has_compression_blocks
    assert not v1.has_encrypted_flag and not v1.has_encryption_guid
    assert v1.has_legacy_compression_defaults

    v2 = pak_capabilities(PakVersion.V2)
    assert not v2.has_timestamp

    v8a = pak_capabilities(PakVersion.V8A)
    assert v8a.compression_slot_count == 4
    assert v8a.compression_slot_width == 1
    assert v8a.major is PakVersionMajor.FNAME_BASED_COMPRESSION

    v8b = pak_capabilities(PakVersion.V8B)
    assert v8b.compression_slot_count == 5
    assert v8b.compression_slot_width == 4
    assert not v8b.has_legacy_compression_defaults

    assert pak_capabilities(PakVersion.V9).has_frozen_flag
    assert not pak_capabilities(PakVersion.V10).has_frozen_flag
    assert not pak_capabilities(PakVersion.V9).has_path_hash_index
    assert pak_capabilities(PakVersion.V10).has_path_hash_index
    assert pak_capabilities(PakVersion.V11).has_path_hash_index


def test_probe_order_is_newest_first_without_v0() -> None:
    assert PROBE_ORDER[0] is PakVersion.V11
    assert PROBE_ORDER[-1] is PakVersion.V1
    assert PakVersion.V0 not in PROBE_ORDER
    assert list(PROBE_ORDER) == sorted(PROBE_ORDER, reverse=True)


def test_check_pak_footer() -> None:
    caps = pak_capabilities(PakVersion.V7)
    check_pak_footer(caps, PAK_MAGIC, 7)
    with pytest.raises(FormatError, match="magic"):
        check_pak_footer(caps, PAK_MAGIC ^ 0xFF, 7)
    with pytest.raises(FormatError, match="mismatch"):
        check_pak_footer(caps, PAK_MAGIC, 8)


def test_toc_magic_and_version() -> None:
    check_toc_magic(TOC_MAGIC)
    with pytest.raises(FormatError):
        check_toc_magic(b"X" + TOC_MAGIC[1:])
    assert toc_version(8) is TocVersion.REPLACE_IO_CHUNK_HASH_WITH_IO_HASH
    with pytest.raises(FormatError):
        toc_version(0)
    with pytest.raises(FormatError):
        toc_version(42)


def test_toc_capabilities() -> None:
    v3 = toc_capabilities(TocVersion.PARTITION_SIZE)
    assert not v3.has_perfect_hash and v3.meta_record_size == 33

    v4 = toc_capabilities(TocVersion.PERFECT_HASH)
    assert v4.has_perfect_hash and not v4.has_unhashed_chunks

    v5 = toc_capabilities(TocVersion.PERFECT_HASH_WITH_OVERFLOW)
    assert v5.has_unhashed_chunks

    v8 = toc_capabilities(TocVersion.REPLACE_IO_CHUNK_HASH_WITH_IO_HASH)
    assert (v8.meta_hash_size, v8.meta_padding, v8.meta_record_size) == (20, 3, 24)

"""
versions.py
Format versions, capability sets and magic validation for PAK and UTOC.

PAK footers carry a *major* version on disk, but several on-disk layouts
share one major (V8A/V8B), so the reader probes a finer-grained PakVersion.
Each PakVersion maps to a PakCapabilities value computed once; the decoders
branch on those flags and never compare raw version numbers themselves.

PAK footer layout (fields gated by capability):
    16B  encryption key GUID         has_encryption_guid
     1B  index encrypted (bool)      has_encrypted_flag
     4B  magic                       0x5A6F12E1
     4B  version major
     8B  index offset
     8B  index size
    20B  index hash (SHA-1)
     1B  frozen index (bool)         has_frozen_flag
    32B  compression name  x N       compression_slot_count

UTOC header: 16-byte magic "-==--==--==--==-" followed by a one-byte
version, see utoc.py for the full layout.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import NamedTuple

from pakindex.errors import FormatError

PAK_MAGIC = 0x5A6F12E1

# magic + version major (u32 each), index offset + size (u64 each), SHA-1
_PAK_FOOTER_BASE_SIZE = 4 + 4 + 8 + 8 + 20
_COMPRESSION_NAME_SIZE = 32

TOC_MAGIC = b"-==--==--==--==-"


class PakVersion(IntEnum):
    """Distinct on-disk PAK layouts, oldest first."""
    V0 = 0
    V1 = 1
    V2 = 2
    V3 = 3
    V4 = 4
    V5 = 5
    V6 = 6
    V7 = 7
    V8A = 8
    V8B = 9
    V9 = 10
    V10 = 11
    V11 = 12


class PakVersionMajor(IntEnum):
    """Version number written into the PAK footer."""
    UNKNOWN = 0
    INITIAL = 1
    NO_TIMESTAMPS = 2
    COMPRESSION_ENCRYPTION = 3
    INDEX_ENCRYPTION = 4
    RELATIVE_CHUNK_OFFSETS = 5
    DELETE_RECORDS = 6
    ENCRYPTION_KEY_GUID = 7
    FNAME_BASED_COMPRESSION = 8
    FROZEN_INDEX = 9
    PATH_HASH_INDEX = 10
    FNV64_BUG_FIX = 11


_VERSION_MAJOR: dict[PakVersion, PakVersionMajor] = {
    PakVersion.V0:  PakVersionMajor.UNKNOWN,
    PakVersion.V1:  PakVersionMajor.INITIAL,
    PakVersion.V2:  PakVersionMajor.NO_TIMESTAMPS,
    PakVersion.V3:  PakVersionMajor.COMPRESSION_ENCRYPTION,
    PakVersion.V4:  PakVersionMajor.INDEX_ENCRYPTION,
    PakVersion.V5:  PakVersionMajor.RELATIVE_CHUNK_OFFSETS,
    PakVersion.V6:  PakVersionMajor.DELETE_RECORDS,
    PakVersion.V7:  PakVersionMajor.ENCRYPTION_KEY_GUID,
    PakVersion.V8A: PakVersionMajor.FNAME_BASED_COMPRESSION,
    PakVersion.V8B: PakVersionMajor.FNAME_BASED_COMPRESSION,
    PakVersion.V9:  PakVersionMajor.FROZEN_INDEX,
    PakVersion.V10: PakVersionMajor.PATH_HASH_INDEX,
    PakVersion.V11: PakVersionMajor.FNV64_BUG_FIX,
}

# Probing order: newest layout first. V0 has no defined layout and is never tried.
PROBE_ORDER: tuple[PakVersion, ...] = tuple(
    v for v in sorted(PakVersion, reverse=True) if v is not PakVersion.V0
)


def version_major(version: PakVersion) -> PakVersionMajor:
    return _VERSION_MAJOR[version]


class PakCapabilities(NamedTuple):
    """Which optional PAK fields a given version carries."""
    version: PakVersion
    major: PakVersionMajor
    has_encryption_guid: bool
    has_encrypted_flag: bool
    has_frozen_flag: bool
    compression_slot_count: int
    compression_slot_width: int          # bytes used by an entry's compression slot
    has_timestamp: bool                  # entries carry a u64 timestamp
    has_compression_blocks: bool         # entries carry block list, flags, block size
    has_path_hash_index: bool            # hashed index layout instead of flat list
    has_legacy_compression_defaults: bool

    @property
    def footer_size(self) -> int:
        size = _PAK_FOOTER_BASE_SIZE
        if self.has_encryption_guid:
            size += 16
        if self.has_encrypted_flag:
            size += 1
        if self.has_frozen_flag:
            size += 1
        return size + self.compression_slot_count * _COMPRESSION_NAME_SIZE


def pak_capabilities(version: PakVersion) -> PakCapabilities:
    """Derive the capability set for one PAK version."""
    major = version_major(version)
    if major < PakVersionMajor.FNAME_BASED_COMPRESSION:
        slots = 0
    elif version == PakVersion.V8A:
        slots = 4
    else:
        slots = 5
    return PakCapabilities(
        version=version,
        major=major,
        has_encryption_guid=major >= PakVersionMajor.ENCRYPTION_KEY_GUID,
        has_encrypted_flag=major >= PakVersionMajor.INDEX_ENCRYPTION,
        has_frozen_flag=major == PakVersionMajor.FROZEN_INDEX,
        compression_slot_count=slots,
        compression_slot_width=1 if version == PakVersion.V8A else 4,
        has_timestamp=major == PakVersionMajor.INITIAL,
        has_compression_blocks=major >= PakVersionMajor.COMPRESSION_ENCRYPTION,
        has_path_hash_index=major >= PakVersionMajor.PATH_HASH_INDEX,
        has_legacy_compression_defaults=major < PakVersionMajor.FNAME_BASED_COMPRESSION,
    )


def check_pak_footer(caps: PakCapabilities, magic: int, major: int) -> None:
    """Reject a footer whose magic or major does not match *caps*."""
    if magic != PAK_MAGIC:
        raise FormatError(f"Invalid PAK magic 0x{magic:08X}")
    if major != caps.major:
        raise FormatError(
            f"Version major mismatch: footer says {major}, "
            f"{caps.version.name} expects {int(caps.major)}"
        )


# ---------------------------------------------------------------------------
# UTOC
# ---------------------------------------------------------------------------

class TocVersion(IntEnum):
    INVALID = 0
    INITIAL = 1
    DIRECTORY_INDEX = 2
    PARTITION_SIZE = 3
    PERFECT_HASH = 4
    PERFECT_HASH_WITH_OVERFLOW = 5
    ON_DEMAND_META_DATA = 6
    REMOVED_ON_DEMAND_META_DATA = 7
    REPLACE_IO_CHUNK_HASH_WITH_IO_HASH = 8


class ContainerFlags(IntFlag):
    NONE = 0
    COMPRESSED = 1 << 0
    ENCRYPTED = 1 << 1
    SIGNED = 1 << 2
    INDEXED = 1 << 3


class TocCapabilities(NamedTuple):
    """Which optional UTOC sections and record shapes a version uses."""
    version: TocVersion
    has_perfect_hash: bool
    has_unhashed_chunks: bool
    meta_hash_size: int
    meta_padding: int

    @property
    def meta_record_size(self) -> int:
        return self.meta_hash_size + 1 + self.meta_padding


def toc_capabilities(version: TocVersion) -> TocCapabilities:
    io_hash = version >= TocVersion.REPLACE_IO_CHUNK_HASH_WITH_IO_HASH
    return TocCapabilities(
        version=version,
        has_perfect_hash=version >= TocVersion.PERFECT_HASH,
        has_unhashed_chunks=version >= TocVersion.PERFECT_HASH_WITH_OVERFLOW,
        meta_hash_size=20 if io_hash else 32,
        meta_padding=3 if io_hash else 0,
    )


def check_toc_magic(magic: bytes) -> None:
    if magic != TOC_MAGIC:
        raise FormatError(f"Invalid UTOC magic {magic!r}")


def toc_version(value: int) -> TocVersion:
    """Validate the UTOC version byte."""
    try:
        version = TocVersion(value)
    except ValueError:
        raise FormatError(f"Unknown UTOC version {value}") from None
    if version is TocVersion.INVALID:
        raise FormatError("UTOC version is marked invalid")
    return version

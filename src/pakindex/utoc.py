"""
utoc.py
Read the table of contents (.utoc) that describes a chunk container.

The whole file is loaded and decoded in one linear pass. Sections follow
the header back to back, and every section is bounds-checked against the
bytes that remain before it is copied.

Header layout (144 bytes, little-endian):
    16B  magic "-==--==--==--==-"
     1B  version            1B reserved       2B reserved
     4B  header size        4B entry count
     4B  compressed block entry count         4B compressed block entry size
     4B  compression method name count        4B compression method name length
     4B  compression block size               4B directory index size
     4B  partition count    8B container id
    16B  encryption key guid
     1B  container flags    1B reserved       2B reserved
     4B  perfect hash seed count              8B partition size
     4B  chunks without perfect hash count    4B reserved
    40B  reserved

Sections, in order:
    chunk ids                  entry count x 12B
    offsets and lengths        entry count x 10B  (two 40-bit values)
    perfect hash seeds         seed count x 4B         version >= PerfectHash
    unhashed chunk indices     count x 4B              version >= PerfectHashWithOverflow
    compressed blocks          block count x 12B  (40/24/24/8 bits)
    compression method names   name count x name length
    signatures                 signed containers only
    directory index            indexed containers, see dirindex.py
    chunk metas                entry count x 33B, or 24B from IoHash
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import NamedTuple

from pakindex.dirindex import DirectoryIndex, decode_directory_index, list_directories
from pakindex.errors import ArchiveIOError, FormatError, UnsupportedFeatureError
from pakindex.packed import (
    BinaryReader,
    pack_bits,
    pack_uint,
    unpack_bits,
    unpack_uint,
    unpack_uint24,
    unpack_uint40,
)
from pakindex.versions import (
    ContainerFlags,
    TocVersion,
    check_toc_magic,
    toc_capabilities,
    toc_version,
)

log = logging.getLogger(__name__)

_HEADER = struct.Struct("<16sBBHIIIIIIIIIQ16sBBHIQII40s")
_SHA1_SIZE = 20
_SEED_RECORD = struct.Struct("<i")


class ChunkType(IntEnum):
    INVALID = 0
    EXPORT_BUNDLE_DATA = 1
    BULK_DATA = 2
    OPTIONAL_BULK_DATA = 3
    MEMORY_MAPPED_BULK_DATA = 4
    SCRIPT_OBJECTS = 5
    CONTAINER_HEADER = 6
    EXTERNAL_FILE = 7
    SHADER_CODE_LIBRARY = 8
    SHADER_CODE = 9
    PACKAGE_STORE_ENTRY = 10
    DERIVED_DATA = 11
    EDITOR_DERIVED_DATA = 12
    PACKAGE_RESOURCE = 13


@dataclass
class TocHeader:
    magic: bytes
    version: TocVersion
    header_size: int
    entry_count: int
    compressed_block_entry_count: int
    compressed_block_entry_size: int
    compression_method_name_count: int
    compression_method_name_length: int
    compression_block_size: int
    directory_index_size: int
    partition_count: int
    container_id: int
    encryption_key_guid: bytes
    container_flags: ContainerFlags
    perfect_hash_seeds_count: int
    partition_size: int
    chunks_without_perfect_hash_count: int

    SIZE = _HEADER.size

    @classmethod
    def from_bytes(cls, data: bytes) -> "TocHeader":
        (magic, version, _r0, _r1, header_size, entry_count, block_count, block_size,
         name_count, name_length, compression_block_size, dir_index_size,
         partition_count, container_id, guid, flags, _r3, _r4, seeds_count,
         partition_size, unhashed_count, _r7, _r8) = _HEADER.unpack(data)
        check_toc_magic(magic)
        return cls(
            magic=magic,
            version=toc_version(version),
            header_size=header_size,
            entry_count=entry_count,
            compressed_block_entry_count=block_count,
            compressed_block_entry_size=block_size,
            compression_method_name_count=name_count,
            compression_method_name_length=name_length,
            compression_block_size=compression_block_size,
            directory_index_size=dir_index_size,
            partition_count=partition_count,
            container_id=container_id,
            encryption_key_guid=guid,
            container_flags=ContainerFlags(flags),
            perfect_hash_seeds_count=seeds_count,
            partition_size=partition_size,
            chunks_without_perfect_hash_count=unhashed_count,
        )

    @property
    def is_compressed(self) -> bool:
        return bool(self.container_flags & ContainerFlags.COMPRESSED)

    @property
    def is_encrypted(self) -> bool:
        return bool(self.container_flags & ContainerFlags.ENCRYPTED)

    @property
    def is_signed(self) -> bool:
        return bool(self.container_flags & ContainerFlags.SIGNED)

    @property
    def is_indexed(self) -> bool:
        return bool(self.container_flags & ContainerFlags.INDEXED)


class ChunkId(NamedTuple):
    """96-bit chunk id: 64-bit id, 16-bit index, 6-bit type, version-info bit."""
    id: int
    chunk_index: int
    type_tag: int
    has_version_info: bool = False

    SIZE = 12

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "ChunkId":
        return cls(
            id=unpack_uint(data, offset, 8),
            chunk_index=unpack_uint(data, offset + 8, 2),
            type_tag=unpack_bits(data[offset + 10], 0, 6),
            has_version_info=bool(unpack_bits(data[offset + 11], 6, 1)),
        )

    def to_bytes(self) -> bytes:
        return (
            pack_uint(self.id, 8)
            + pack_uint(self.chunk_index, 2)
            + bytes((
                pack_bits(self.type_tag, 0, 6),
                pack_bits(int(self.has_version_info), 6, 1),
            ))
        )

    @property
    def chunk_type(self) -> ChunkType | int:
        try:
            return ChunkType(self.type_tag)
        except ValueError:
            return self.type_tag


class OffsetAndLength(NamedTuple):
    offset: int
    length: int

    SIZE = 10

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "OffsetAndLength":
        return cls(unpack_uint40(data, offset), unpack_uint40(data, offset + 5))

    def to_bytes(self) -> bytes:
        return pack_uint(self.offset, 5) + pack_uint(self.length, 5)


class CompressedBlockEntry(NamedTuple):
    offset: int
    compressed_size: int
    uncompressed_size: int
    compression_method_index: int

    SIZE = 12

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "CompressedBlockEntry":
        return cls(
            offset=unpack_uint40(data, offset),
            compressed_size=unpack_uint24(data, offset + 5),
            uncompressed_size=unpack_uint24(data, offset + 8),
            compression_method_index=unpack_uint(data, offset + 11, 1),
        )

    def to_bytes(self) -> bytes:
        return (
            pack_uint(self.offset, 5)
            + pack_uint(self.compressed_size, 3)
            + pack_uint(self.uncompressed_size, 3)
            + pack_uint(self.compression_method_index, 1)
        )


class ChunkMeta(NamedTuple):
    hash: bytes
    flags: int

    @property
    def is_compressed(self) -> bool:
        return bool(self.flags & 1)

    @property
    def is_memory_mapped(self) -> bool:
        return bool(self.flags & 2)


@dataclass
class Toc:
    """Everything decoded from one .utoc file."""
    header: TocHeader
    chunk_ids: list[ChunkId] = field(default_factory=list)
    chunk_offsets: list[OffsetAndLength] = field(default_factory=list)
    perfect_hash_seeds: list[int] = field(default_factory=list)
    chunks_without_perfect_hash: list[int] = field(default_factory=list)
    compression_blocks: list[CompressedBlockEntry] = field(default_factory=list)
    compression_methods: list[str] = field(default_factory=list)
    directory_index: DirectoryIndex = field(default_factory=DirectoryIndex)
    chunk_metas: list[ChunkMeta] = field(default_factory=list)


def _records(raw: bytes, size: int, decode) -> list:
    return [decode(raw, i) for i in range(0, len(raw), size)]


def _int32_table(reader: BinaryReader, count: int, what: str) -> list[int]:
    raw = reader.read_array(count, _SEED_RECORD.size, what)
    return [value for (value,) in _SEED_RECORD.iter_unpack(raw)]


def decode_toc(data: bytes) -> Toc:
    """Decode a complete .utoc buffer. Any error aborts the whole decode."""
    r = BinaryReader.from_bytes(data)
    header = TocHeader.from_bytes(r.read(TocHeader.SIZE, "TOC header"))
    caps = toc_capabilities(header.version)
    toc = Toc(header)
    count = header.entry_count

    raw = r.read_array(count, ChunkId.SIZE, "chunk ids")
    toc.chunk_ids = _records(raw, ChunkId.SIZE, ChunkId.from_bytes)

    raw = r.read_array(count, OffsetAndLength.SIZE, "chunk offsets and lengths")
    toc.chunk_offsets = _records(raw, OffsetAndLength.SIZE, OffsetAndLength.from_bytes)

    if caps.has_perfect_hash:
        toc.perfect_hash_seeds = _int32_table(
            r, header.perfect_hash_seeds_count, "perfect hash seeds")
        if caps.has_unhashed_chunks:
            toc.chunks_without_perfect_hash = _int32_table(
                r, header.chunks_without_perfect_hash_count, "chunks without perfect hash")

    block_count = header.compressed_block_entry_count
    if block_count and header.compressed_block_entry_size != CompressedBlockEntry.SIZE:
        raise FormatError(
            f"Unexpected compressed block entry size {header.compressed_block_entry_size}"
        )
    raw = r.read_array(block_count, CompressedBlockEntry.SIZE, "compressed blocks")
    toc.compression_blocks = _records(raw, CompressedBlockEntry.SIZE, CompressedBlockEntry.from_bytes)

    name_count = header.compression_method_name_count
    name_length = header.compression_method_name_length
    raw = r.read_array(name_count, name_length, "compression method names")
    names = [raw[i * name_length:(i + 1) * name_length] for i in range(name_count)]
    toc.compression_methods = [
        name.split(b"\x00", 1)[0].decode("utf-8", errors="replace") for name in names
    ]

    if header.is_signed:
        hash_size = r.i32("signature size")
        if hash_size < 0:
            raise FormatError(f"Negative signature size {hash_size}")
        r.skip(hash_size, "TOC signature")
        r.skip(hash_size, "block signature")
        r.skip(block_count * _SHA1_SIZE, "chunk block signatures")

    if header.is_encrypted:
        raise UnsupportedFeatureError(
            "UTOC container is encrypted; decryption is not supported",
            feature="encrypted container",
        )

    if header.is_indexed and header.directory_index_size > 0:
        toc.directory_index = decode_directory_index(
            r.read(header.directory_index_size, "directory index")
        )

    record = caps.meta_record_size
    hash_size = caps.meta_hash_size
    raw = r.read_array(count, record, "chunk metas")
    toc.chunk_metas = [
        ChunkMeta(raw[i:i + hash_size], raw[i + hash_size])
        for i in range(0, len(raw), record)
    ]
    return toc


class UtocReader:
    """Read a .utoc table of contents: chunks, compression info and file paths."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._toc: Toc | None = None
        self._files: list[str] = []
        self._chunk_by_path: dict[str, int] = {}

    def open(self) -> None:
        """Load and decode the whole file. On failure the reader stays unopened."""
        self._toc = None
        self._files = []
        self._chunk_by_path = {}
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise ArchiveIOError(f"Failed to read {self.path}: {exc}") from exc

        toc = decode_toc(data)
        walked = list(toc.directory_index.walk())

        self._toc = toc
        self._files = [path for path, _ in walked]
        self._chunk_by_path = {path: node.payload for path, node in walked}
        log.info(
            "Opened %s: UTOC %s, %d chunk(s), %d file(s)",
            self.path.name, toc.header.version.name, len(toc.chunk_ids), len(self._files),
        )

    def _ensure_open(self) -> Toc:
        if self._toc is None:
            self.open()
        return self._toc

    def header(self) -> TocHeader:
        return self._ensure_open().header

    def version(self) -> TocVersion:
        return self._ensure_open().header.version

    def mount_point(self) -> str:
        return self._ensure_open().directory_index.mount_point

    def encrypted_index(self) -> bool:
        # encrypted containers never open successfully
        self._ensure_open()
        return False

    def encryption_guid(self) -> int | None:
        guid = self._ensure_open().header.encryption_key_guid
        return unpack_uint(guid, 0, 8) | (unpack_uint(guid, 8, 8) << 64)

    def chunk_ids(self) -> list[ChunkId]:
        return list(self._ensure_open().chunk_ids)

    def chunk_offsets(self) -> list[OffsetAndLength]:
        return list(self._ensure_open().chunk_offsets)

    def compression_blocks(self) -> list[CompressedBlockEntry]:
        return list(self._ensure_open().compression_blocks)

    def compression_methods(self) -> list[str]:
        return list(self._ensure_open().compression_methods)

    def chunk_metas(self) -> list[ChunkMeta]:
        return list(self._ensure_open().chunk_metas)

    def directory_index(self) -> DirectoryIndex:
        return self._ensure_open().directory_index

    def chunk_index(self, path: str) -> int:
        """Chunk index of the file at *path* (KeyError if not listed)."""
        self._ensure_open()
        return self._chunk_by_path[path]

    def files(self) -> list[str]:
        """All file paths in directory-index traversal order."""
        self._ensure_open()
        return list(self._files)

    def directories(self) -> list[str]:
        return list_directories(self.files())


def list_utoc(path: Path | str) -> list[str]:
    """List the file paths recorded in a .utoc directory index."""
    r = UtocReader(path)
    r.open()
    return r.files()

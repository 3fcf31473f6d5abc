"""
pak.py
Read the file index of footer-anchored .pak archives.

The footer sits at a version-dependent distance from the end of the file
and carries no length prefix, so the version is found by trial: every known
layout is tried from newest to oldest until one yields the right magic and
a matching version major (see FooterProbe).

Index layout, at footer.index_offset:
    string   mount point
    u32      entry count
  major < PathHashIndex:
    (string path, entry record) x entry count
  major >= PathHashIndex:
    u64      path hash seed
    u32      has path hash index      -> u64 offset, u64 size, 20B hash
    u32      has full directory index -> u64 offset, u64 size, 20B hash
    (remaining encoded entries are not needed for listing)

Entry record (fields gated by capability):
     8B  offset
     8B  compressed size
     8B  uncompressed size
  1/4B  compression slot (0 = none, N = slot N-1)
     8B  timestamp                     Initial major only
    20B  SHA-1
     4B  block count + 16B x count     compressed entries, major >= v3
     1B  flags (bit 0 encrypted, bit 1 deleted)          major >= v3
     4B  compression block size                          major >= v3

Only metadata is decoded; payloads are never read, decompressed or
decrypted.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import NamedTuple

from pakindex.dirindex import DirectoryIndex, DirectoryIndexBuilder, list_directories
from pakindex.errors import (
    ArchiveIOError,
    FormatError,
    TruncatedDataError,
    UnsupportedFeatureError,
)
from pakindex.packed import BinaryReader
from pakindex.versions import (
    PROBE_ORDER,
    PakCapabilities,
    PakVersion,
    PakVersionMajor,
    check_pak_footer,
    pak_capabilities,
)

log = logging.getLogger(__name__)

_HASH_SIZE = 20
_COMPRESSION_NAME_SIZE = 32
_BLOCK_RECORD = struct.Struct("<QQ")

# Encoded entry offset marking an unused slot in the full directory index.
INVALID_ENCODED_OFFSET = 0x80000000


class Compression(Enum):
    ZLIB = "Zlib"
    GZIP = "Gzip"
    OODLE = "Oodle"
    ZSTD = "Zstd"
    LZ4 = "LZ4"


_LEGACY_COMPRESSION = (Compression.ZLIB, Compression.GZIP, Compression.OODLE)


def _compression_from_name(raw: bytes) -> Compression | None:
    """Map a NUL-padded codec name to Compression. Empty or unknown -> None."""
    name = raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")
    try:
        return Compression(name)
    except ValueError:
        return None


class CompressionBlock(NamedTuple):
    """Byte range of one compressed block inside an entry's payload."""
    start: int
    end: int


@dataclass
class ArchiveEntry:
    offset: int = 0
    compressed_size: int = 0
    uncompressed_size: int = 0
    compression_slot: int | None = None
    timestamp: int | None = None
    hash: bytes = b""
    blocks: list[CompressionBlock] | None = None
    flags: int = 0
    compression_block_size: int = 0

    @property
    def is_encrypted(self) -> bool:
        return bool(self.flags & 1)

    @property
    def is_deleted(self) -> bool:
        return bool((self.flags >> 1) & 1)


@dataclass
class ArchiveFooter:
    magic: int
    version: PakVersion
    version_major: PakVersionMajor
    index_offset: int
    index_size: int
    hash: bytes
    encrypted: bool = False
    frozen: bool = False
    encryption_guid: int | None = None
    compression: list[Compression | None] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Footer
# ---------------------------------------------------------------------------

def decode_footer(data: bytes, caps: PakCapabilities) -> ArchiveFooter:
    """Decode footer bytes laid out for *caps*. Raises FormatError on mismatch."""
    r = BinaryReader.from_bytes(data)
    guid = r.u128("encryption key guid") if caps.has_encryption_guid else None
    encrypted = r.boolean("index encrypted flag") if caps.has_encrypted_flag else False

    magic = r.u32("magic")
    major = r.u32("version major")
    check_pak_footer(caps, magic, major)

    index_offset = r.u64("index offset")
    index_size = r.u64("index size")
    index_hash = r.read(_HASH_SIZE, "index hash")
    frozen = r.boolean("frozen index flag") if caps.has_frozen_flag else False

    compression = [
        _compression_from_name(r.read(_COMPRESSION_NAME_SIZE, "compression name"))
        for _ in range(caps.compression_slot_count)
    ]
    if caps.has_legacy_compression_defaults:
        compression.extend(_LEGACY_COMPRESSION)

    return ArchiveFooter(
        magic=magic,
        version=caps.version,
        version_major=caps.major,
        index_offset=index_offset,
        index_size=index_size,
        hash=index_hash,
        encrypted=encrypted,
        frozen=frozen,
        encryption_guid=guid,
        compression=compression,
    )


class ProbeState(Enum):
    TRYING = auto()
    SUCCEEDED = auto()
    EXHAUSTED = auto()


class FooterProbe:
    """Try each footer layout from newest to oldest until one decodes.

    TRYING(v) -> SUCCEEDED          footer decoded under v
    TRYING(v) -> TRYING(next older) decode failed, attempt discarded
    TRYING(v) -> EXHAUSTED          no older layout left
    """

    def __init__(self, reader: BinaryReader, versions: tuple[PakVersion, ...] = PROBE_ORDER):
        self._reader = reader
        self._pending = list(versions)
        self.attempts: list[tuple[str, str]] = []
        self.footer: ArchiveFooter | None = None
        self.state = ProbeState.TRYING if self._pending else ProbeState.EXHAUSTED

    @property
    def current(self) -> PakVersion | None:
        return self._pending[0] if self.state is ProbeState.TRYING else None

    def _attempt(self, caps: PakCapabilities) -> ArchiveFooter:
        size = caps.footer_size
        if size > self._reader.size:
            raise TruncatedDataError(
                f"file is {self._reader.size} bytes, footer needs {size}",
                needed=size,
                available=self._reader.size,
            )
        self._reader.seek(self._reader.size - size, "footer offset")
        return decode_footer(self._reader.read(size, "footer"), caps)

    def step(self) -> ProbeState:
        """Run one attempt and return the new state."""
        if self.state is not ProbeState.TRYING:
            return self.state
        version = self._pending.pop(0)
        try:
            self.footer = self._attempt(pak_capabilities(version))
        except (FormatError, TruncatedDataError) as exc:
            log.debug("PAK footer as %s rejected: %s", version.name, exc)
            self.attempts.append((version.name, str(exc)))
            if not self._pending:
                self.state = ProbeState.EXHAUSTED
            return self.state
        log.debug("PAK footer decoded as %s", version.name)
        self.state = ProbeState.SUCCEEDED
        return self.state

    def run(self) -> ArchiveFooter:
        while self.state is ProbeState.TRYING:
            self.step()
        if self.state is ProbeState.EXHAUSTED:
            tried = "; ".join(f"{name}: {reason}" for name, reason in self.attempts)
            raise FormatError(f"No known PAK version matches the footer ({tried})", self.attempts)
        return self.footer


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

def read_entry(reader: BinaryReader, caps: PakCapabilities) -> ArchiveEntry:
    """Decode one entry record at the reader's position."""
    offset = reader.u64("entry offset")
    compressed_size = reader.u64("compressed size")
    uncompressed_size = reader.u64("uncompressed size")

    if caps.compression_slot_width == 1:
        raw_slot = reader.u8("compression slot")
    else:
        raw_slot = reader.u32("compression slot")
    slot = None if raw_slot == 0 else raw_slot - 1

    timestamp = reader.u64("timestamp") if caps.has_timestamp else None
    entry_hash = reader.read(_HASH_SIZE, "entry hash")

    blocks = None
    flags = 0
    block_size = 0
    if caps.has_compression_blocks:
        if slot is not None:
            count = reader.u32("block count")
            raw = reader.read_array(count, _BLOCK_RECORD.size, "compression blocks")
            blocks = []
            for start, end in _BLOCK_RECORD.iter_unpack(raw):
                if end <= start:
                    raise FormatError(f"Compression block end {end} is not after start {start}")
                blocks.append(CompressionBlock(start, end))
        flags = reader.u8("entry flags")
        block_size = reader.u32("compression block size")

    return ArchiveEntry(
        offset=offset,
        compressed_size=compressed_size,
        uncompressed_size=uncompressed_size,
        compression_slot=slot,
        timestamp=timestamp,
        hash=entry_hash,
        blocks=blocks,
        flags=flags,
        compression_block_size=block_size,
    )


def decode_full_directory_index(data: bytes) -> DirectoryIndex:
    """Load the nested directory -> file map into a DirectoryIndex.

    Layout:
        u32 directory count
          string directory name
          u32 file count
            string file name
            u32    encoded entry offset  (0x80000000 = unused, skipped)
    """
    r = BinaryReader.from_bytes(data)
    builder = DirectoryIndexBuilder()
    for _ in range(r.u32("directory count")):
        directory = r.string("directory name")
        for _ in range(r.u32("file count")):
            name = r.string("file name")
            encoded_offset = r.u32("encoded entry offset")
            if encoded_offset == INVALID_ENCODED_OFFSET:
                continue
            builder.add_file(directory, name, encoded_offset)
    return builder.build()


def _read_legacy_index(
    reader: BinaryReader, caps: PakCapabilities, entry_count: int,
) -> dict[str, ArchiveEntry]:
    entries: dict[str, ArchiveEntry] = {}
    for _ in range(entry_count):
        path = reader.string("entry path")
        entries[path] = read_entry(reader, caps)
    return entries


def _read_hashed_index(reader: BinaryReader) -> dict[str, ArchiveEntry]:
    reader.u64("path hash seed")

    if reader.u32("path hash index flag"):
        # offset, size, hash: not needed for listing
        reader.skip(8 + 8 + _HASH_SIZE, "path hash index header")

    if not reader.u32("full directory index flag"):
        return {}
    fdi_offset = reader.u64("full directory index offset")
    fdi_size = reader.u64("full directory index size")
    reader.skip(_HASH_SIZE, "full directory index hash")

    reader.seek(fdi_offset, "full directory index offset")
    directory_index = decode_full_directory_index(
        reader.read(fdi_size, "full directory index")
    )
    # The directory index only maps paths to encoded entries; metadata
    # stays zeroed for these.
    return {path: ArchiveEntry() for path, _ in directory_index.walk()}


def read_index(
    reader: BinaryReader, footer: ArchiveFooter,
) -> tuple[str, dict[str, ArchiveEntry]]:
    """Decode the index described by *footer*. Returns (mount point, entries)."""
    if footer.encrypted:
        raise UnsupportedFeatureError(
            "PAK index is encrypted; decryption is not supported",
            feature="encrypted index",
        )
    caps = pak_capabilities(footer.version)
    reader.seek(footer.index_offset, "index offset")
    mount_point = reader.string("mount point")
    entry_count = reader.u32("entry count")

    if caps.has_path_hash_index:
        entries = _read_hashed_index(reader)
    else:
        entries = _read_legacy_index(reader, caps, entry_count)
    return mount_point, entries


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class PakReader:
    """Read a .pak archive index: version, mount point, files, directories."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._footer: ArchiveFooter | None = None
        self._mount_point = ""
        self._entries: dict[str, ArchiveEntry] = {}

    def open(self) -> None:
        """Probe the footer and parse the index. Call before querying (or let
        the query methods do it). On failure the reader stays unopened."""
        self._footer = None
        self._mount_point = ""
        self._entries = {}
        try:
            with self.path.open("rb") as f:
                reader = BinaryReader(f)
                footer = FooterProbe(reader).run()
                mount_point, entries = read_index(reader, footer)
        except OSError as exc:
            raise ArchiveIOError(f"Failed to read {self.path}: {exc}") from exc

        self._footer = footer
        self._mount_point = mount_point
        self._entries = entries
        log.info("Opened %s: PAK %s, %d file(s)", self.path.name, footer.version.name, len(entries))

    def _ensure_open(self) -> ArchiveFooter:
        if self._footer is None:
            self.open()
        return self._footer

    def footer(self) -> ArchiveFooter:
        return self._ensure_open()

    def version(self) -> PakVersion:
        return self._ensure_open().version

    def mount_point(self) -> str:
        self._ensure_open()
        return self._mount_point

    def encrypted_index(self) -> bool:
        return self._ensure_open().encrypted

    def encryption_guid(self) -> int | None:
        return self._ensure_open().encryption_guid

    def entries(self) -> dict[str, ArchiveEntry]:
        self._ensure_open()
        return dict(self._entries)

    def entry(self, path: str) -> ArchiveEntry:
        self._ensure_open()
        return self._entries[path]

    def files(self) -> list[str]:
        """All file paths, sorted."""
        self._ensure_open()
        return sorted(self._entries)

    def directories(self) -> list[str]:
        return list_directories(self.files())


def list_pak(path: Path | str) -> list[str]:
    """List the file paths of a .pak archive."""
    r = PakReader(path)
    r.open()
    return r.files()

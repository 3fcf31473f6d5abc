"""
pakindex — read the file indexes of .pak archives and .utoc chunk tables.

Metadata only: paths, entry offsets/sizes, chunk and compression-block
tables. Payloads are never extracted, decompressed or decrypted.
"""

from pakindex.dirindex import (
    DirectoryIndex,
    DirectoryIndexBuilder,
    DirectoryNode,
    FileNode,
    decode_directory_index,
    list_directories,
)
from pakindex.errors import (
    ArchiveError,
    ArchiveIOError,
    FormatError,
    TruncatedDataError,
    UnsupportedFeatureError,
)
from pakindex.pak import (
    ArchiveEntry,
    ArchiveFooter,
    Compression,
    CompressionBlock,
    FooterProbe,
    PakReader,
    ProbeState,
    list_pak,
)
from pakindex.utoc import (
    ChunkId,
    ChunkMeta,
    ChunkType,
    CompressedBlockEntry,
    OffsetAndLength,
    TocHeader,
    UtocReader,
    list_utoc,
)
from pakindex.versions import (
    ContainerFlags,
    PakCapabilities,
    PakVersion,
    PakVersionMajor,
    TocVersion,
    pak_capabilities,
)

__all__ = [
    "ArchiveEntry", "ArchiveError", "ArchiveFooter", "ArchiveIOError",
    "ChunkId", "ChunkMeta", "ChunkType", "CompressedBlockEntry", "Compression",
    "CompressionBlock", "ContainerFlags", "DirectoryIndex", "DirectoryIndexBuilder",
    "DirectoryNode", "FileNode", "FooterProbe", "FormatError", "OffsetAndLength",
    "PakCapabilities", "PakReader", "PakVersion", "PakVersionMajor", "ProbeState",
    "TocHeader", "TocVersion", "TruncatedDataError", "UnsupportedFeatureError",
    "UtocReader", "decode_directory_index", "list_directories", "list_pak",
    "list_utoc", "pak_capabilities",
]

"""
dirindex.py
Flat-array directory index shared by the UTOC directory index and the PAK
full directory index.

Serialized layout (UTOC, all integers uint32 LE):
    string     mount point
    u32        directory count
      16B      name, first child, next sibling, first file   (each optional)
    u32        file count
      12B      name, next file (optional), payload
    u32        string count
      string   x count

Optional fields use 0xFFFFFFFF for "absent". Nodes reference each other by
index into the arrays; directory 0 is the root. Paths are rebuilt by a
pre-order walk: a directory's own files first (in chain order), then its
children (in sibling order).

The PAK full directory index is stored as a nested directory -> file map
instead; DirectoryIndexBuilder loads it into the same arena so both formats
share one traversal.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterable, Iterator, NamedTuple

from pakindex.errors import FormatError, TruncatedDataError
from pakindex.packed import BinaryReader, optional_to_u32, optional_u32

_DIRECTORY_RECORD = struct.Struct("<IIII")
_FILE_RECORD = struct.Struct("<III")


class DirectoryNode(NamedTuple):
    name: int | None = None
    first_child: int | None = None
    next_sibling: int | None = None
    first_file: int | None = None

    def to_bytes(self) -> bytes:
        return _DIRECTORY_RECORD.pack(*(optional_to_u32(v) for v in self))

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "DirectoryNode":
        return cls(*(optional_u32(v) for v in _DIRECTORY_RECORD.unpack_from(data, offset)))


class FileNode(NamedTuple):
    name: int
    next_file: int | None
    payload: int         # chunk index (UTOC) or encoded entry offset (PAK)

    def to_bytes(self) -> bytes:
        return _FILE_RECORD.pack(self.name, optional_to_u32(self.next_file), self.payload)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "FileNode":
        name, next_file, payload = _FILE_RECORD.unpack_from(data, offset)
        return cls(name, optional_u32(next_file), payload)


def join_path(mount_point: str, segments: Iterable[str]) -> str:
    """Join path segments under *mount_point* with single '/' separators."""
    path = mount_point
    for segment in segments:
        if path and not path.endswith("/"):
            path += "/"
        path += segment
    return path


@dataclass
class DirectoryIndex:
    """Arena of directory and file nodes plus the string table they index."""
    mount_point: str = ""
    directories: list[DirectoryNode] = field(default_factory=list)
    files: list[FileNode] = field(default_factory=list)
    strings: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Check that every node reference points inside its array."""
        def check(value: int | None, limit: int, what: str, owner: str) -> None:
            if value is not None and not 0 <= value < limit:
                raise FormatError(f"{owner}: {what} index {value} out of range (0..{limit - 1})")

        n_dirs, n_files, n_strings = len(self.directories), len(self.files), len(self.strings)
        for i, node in enumerate(self.directories):
            owner = f"directory {i}"
            check(node.name, n_strings, "name", owner)
            check(node.first_child, n_dirs, "first child", owner)
            check(node.next_sibling, n_dirs, "next sibling", owner)
            check(node.first_file, n_files, "first file", owner)
        for i, node in enumerate(self.files):
            owner = f"file {i}"
            check(node.name, n_strings, "name", owner)
            check(node.next_file, n_files, "next file", owner)

    def walk(self) -> Iterator[tuple[str, FileNode]]:
        """Yield ``(path, file_node)`` for every file, in traversal order."""
        if not self.directories:
            return
        names: list[str] = []
        visited: set[int] = set()
        # (directory index, leaving); a directory is re-pushed as "leaving"
        # below its children so its name is popped after they are done
        pending: list[tuple[int, bool]] = [(0, False)]
        while pending:
            index, leaving = pending.pop()
            node = self.directories[index]
            if leaving:
                if node.name is not None:
                    names.pop()
                continue

            if index in visited:
                raise FormatError(f"Directory {index} is reachable twice (cycle in index)")
            visited.add(index)
            if node.name is not None:
                names.append(self.strings[node.name])

            for file_node in self._file_chain(index, node):
                names.append(self.strings[file_node.name])
                yield join_path(self.mount_point, names), file_node
                names.pop()

            pending.append((index, True))
            children = self._children(node)
            pending.extend((child, False) for child in reversed(children))

    def paths(self) -> list[str]:
        return [path for path, _ in self.walk()]

    def _file_chain(self, index: int, node: DirectoryNode) -> Iterator[FileNode]:
        file_index = node.first_file
        seen = 0
        while file_index is not None:
            seen += 1
            if seen > len(self.files):
                raise FormatError(f"File chain of directory {index} does not terminate")
            file_node = self.files[file_index]
            yield file_node
            file_index = file_node.next_file

    def _children(self, node: DirectoryNode) -> list[int]:
        children: list[int] = []
        seen: set[int] = set()
        child = node.first_child
        while child is not None:
            if child in seen:
                raise FormatError(f"Directory {child} is reachable twice (cycle in index)")
            seen.add(child)
            children.append(child)
            child = self.directories[child].next_sibling
        return children


def decode_directory_index(data: bytes) -> DirectoryIndex:
    """Decode a serialized UTOC directory index."""
    reader = BinaryReader.from_bytes(data)
    mount_point = reader.string("mount point")

    count = reader.u32("directory count")
    raw = reader.read_array(count, _DIRECTORY_RECORD.size, "directory entries")
    directories = [
        DirectoryNode.from_bytes(raw, i * _DIRECTORY_RECORD.size) for i in range(count)
    ]

    count = reader.u32("file count")
    raw = reader.read_array(count, _FILE_RECORD.size, "file entries")
    files = [FileNode.from_bytes(raw, i * _FILE_RECORD.size) for i in range(count)]

    count = reader.u32("string count")
    # every string carries at least its 4-byte length
    if count * 4 > reader.remaining():
        raise TruncatedDataError(
            f"string table: {count} strings cannot fit in {reader.remaining()} bytes",
            needed=count * 4,
            available=reader.remaining(),
        )
    strings = [reader.string(f"string {i}") for i in range(count)]

    index = DirectoryIndex(mount_point, directories, files, strings)
    index.validate()
    return index


class DirectoryIndexBuilder:
    """Build a DirectoryIndex from ``(directory path, file name, payload)`` triples."""

    def __init__(self, mount_point: str = "") -> None:
        self._index = DirectoryIndex(mount_point, [DirectoryNode()])
        self._string_ids: dict[str, int] = {}
        self._child_ids: dict[tuple[int, str], int] = {}
        self._last_child: dict[int, int] = {}
        self._last_file: dict[int, int] = {}

    def _string(self, text: str) -> int:
        sid = self._string_ids.get(text)
        if sid is None:
            sid = len(self._index.strings)
            self._index.strings.append(text)
            self._string_ids[text] = sid
        return sid

    def _child(self, parent: int, name: str) -> int:
        key = (parent, name)
        existing = self._child_ids.get(key)
        if existing is not None:
            return existing
        dirs = self._index.directories
        new = len(dirs)
        dirs.append(DirectoryNode(name=self._string(name)))
        previous = self._last_child.get(parent)
        if previous is None:
            dirs[parent] = dirs[parent]._replace(first_child=new)
        else:
            dirs[previous] = dirs[previous]._replace(next_sibling=new)
        self._last_child[parent] = new
        self._child_ids[key] = new
        return new

    def add_file(self, directory: str, name: str, payload: int) -> None:
        parent = 0
        for segment in directory.split("/"):
            if segment:
                parent = self._child(parent, segment)

        files = self._index.files
        new = len(files)
        files.append(FileNode(self._string(name), None, payload))
        previous = self._last_file.get(parent)
        if previous is None:
            dirs = self._index.directories
            dirs[parent] = dirs[parent]._replace(first_file=new)
        else:
            files[previous] = files[previous]._replace(next_file=new)
        self._last_file[parent] = new

    def build(self) -> DirectoryIndex:
        return self._index


def list_directories(paths: Iterable[str]) -> list[str]:
    """Every ancestor directory of *paths*, deduplicated and sorted.

    >>> list_directories(["a/b/c", "a/d", "e"])
    ['a', 'a/b']
    """
    found: set[str] = set()
    for path in paths:
        parent = path.rpartition("/")[0]
        while parent and parent not in found:
            found.add(parent)
            parent = parent.rpartition("/")[0]
    return sorted(found)

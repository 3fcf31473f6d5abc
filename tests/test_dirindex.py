import pytest

from builders import directory_index, sample_directory_index
from pakindex.dirindex import (
    DirectoryIndex,
    DirectoryIndexBuilder,
    DirectoryNode,
    FileNode,
    decode_directory_index,
    join_path,
    list_directories,
)
from pakindex.errors import FormatError, TruncatedDataError


def _three_node_tree(mount_point: str = "m") -> bytes:
    # root holds file "b" and child directory "a", which holds file "1"
    strings = ["b", "a", "1"]
    directories = [(None, 1, None, 0), (1, None, None, 1)]
    files = [(0, None, 10), (2, None, 20)]
    return directory_index(mount_point, directories, files, strings)


def test_three_node_tree_visits_own_files_before_children() -> None:
    index = decode_directory_index(_three_node_tree())
    assert index.paths() == ["m/b", "m/a/1"]
    assert sorted(index.paths()) == ["m/a/1", "m/b"]


def test_walk_yields_payloads() -> None:
    index = decode_directory_index(_three_node_tree())
    assert [(path, node.payload) for path, node in index.walk()] == [("m/b", 10), ("m/a/1", 20)]


def test_walk_is_restartable() -> None:
    index = decode_directory_index(sample_directory_index())
    assert index.paths() == index.paths()
    assert list(index.walk()) == list(index.walk())


def test_sample_tree() -> None:
    index = decode_directory_index(sample_directory_index())
    assert index.mount_point == "../../../"
    assert index.paths() == [
        "../../../Game/Content/a.uasset",
        "../../../Game/Content/b.uasset",
        "../../../Game/Config/c.ini",
    ]


def test_sentinels_decode_to_none() -> None:
    index = decode_directory_index(_three_node_tree())
    assert index.directories[0] == DirectoryNode(None, 1, None, 0)
    assert index.directories[1] == DirectoryNode(1, None, None, 1)
    assert index.files[0] == FileNode(0, None, 10)


def test_node_records_round_trip() -> None:
    node = DirectoryNode(3, None, 7, None)
    assert DirectoryNode.from_bytes(node.to_bytes()) == node
    assert node.to_bytes()[4:8] == b"\xff\xff\xff\xff"
    file_node = FileNode(1, None, 0x80000000)
    assert FileNode.from_bytes(file_node.to_bytes()) == file_node


def test_empty_index_has_no_paths() -> None:
    index = decode_directory_index(directory_index("m", [], [], []))
    assert index.paths() == []
    assert DirectoryIndex().paths() == []


@pytest.mark.parametrize("mount_point,expected", [
    ("m", "m/a/b"),
    ("m/", "m/a/b"),
    ("", "a/b"),
    ("../../../", "../../../a/b"),
])
def test_join_path(mount_point: str, expected: str) -> None:
    assert join_path(mount_point, ["a", "b"]) == expected


def test_out_of_range_reference_is_format_error() -> None:
    data = directory_index("m", [(None, None, None, 5)], [(0, None, 0)], ["x"])
    with pytest.raises(FormatError, match="first file"):
        decode_directory_index(data)

    data = directory_index("m", [(9, None, None, None)], [], ["x"])
    with pytest.raises(FormatError, match="name"):
        decode_directory_index(data)


def test_sibling_cycle_is_format_error() -> None:
    directories = [(None, 1, None, None), (0, None, 1, None)]
    index = decode_directory_index(directory_index("m", directories, [], ["d"]))
    with pytest.raises(FormatError, match="cycle"):
        index.paths()


def test_file_chain_cycle_is_format_error() -> None:
    files = [(0, 1, 0), (0, 0, 0)]
    index = decode_directory_index(directory_index("m", [(None, None, None, 0)], files, ["f"]))
    with pytest.raises(FormatError, match="terminate"):
        index.paths()


def test_truncated_node_array() -> None:
    data = _three_node_tree()
    # claim 1000 directories
    count_at = len(b"\x02\x00\x00\x00m\x00")
    corrupt = data[:count_at] + (1000).to_bytes(4, "little") + data[count_at + 4:]
    with pytest.raises(TruncatedDataError):
        decode_directory_index(corrupt)


def test_truncated_string_table() -> None:
    data = _three_node_tree()
    with pytest.raises(TruncatedDataError):
        decode_directory_index(data[:-3])


def test_builder_groups_paths_into_tree() -> None:
    builder = DirectoryIndexBuilder()
    builder.add_file("/Game/Maps/", "a.umap", 1)
    builder.add_file("/", "root.txt", 2)
    builder.add_file("/Game/Maps/", "b.umap", 3)
    builder.add_file("/Game/", "g.ini", 4)
    index = builder.build()
    index.validate()
    assert [(p, n.payload) for p, n in index.walk()] == [
        ("root.txt", 2),
        ("Game/g.ini", 4),
        ("Game/Maps/a.umap", 1),
        ("Game/Maps/b.umap", 3),
    ]
    # "Game" and "Maps" directories share one node each
    assert len(index.directories) == 3


def test_list_directories() -> None:
    assert list_directories(["a/b/c", "a/d", "e"]) == ["a", "a/b"]
    assert list_directories([]) == []
    assert list_directories(["x/y/z/w", "x/q"]) == ["x", "x/y", "x/y/z"]


_DEPTH = 5000


def test_deep_directory_chain_decodes_without_recursion() -> None:
    # root -> a -> a -> ... -> a, with one file in the innermost directory
    directories = [(None, 1, None, None)]
    for level in range(1, _DEPTH + 1):
        child = level + 1 if level < _DEPTH else None
        first_file = 0 if level == _DEPTH else None
        directories.append((0, child, None, first_file))
    data = directory_index("m", directories, [(1, None, 7)], ["a", "f"])

    index = decode_directory_index(data)
    assert [(p, n.payload) for p, n in index.walk()] == [("m/" + "a/" * _DEPTH + "f", 7)]


def test_deep_builder_chain_walks_without_recursion() -> None:
    builder = DirectoryIndexBuilder()
    builder.add_file("/".join(["a"] * _DEPTH), "f", 1)
    builder.add_file("/", "top", 2)
    assert builder.build().paths() == ["top", "a/" * _DEPTH + "f"]


def test_siblings_after_deep_subtree_keep_order() -> None:
    builder = DirectoryIndexBuilder()
    builder.add_file("x/" + "/".join(["d"] * 50), "deep", 1)
    builder.add_file("y", "after", 2)
    assert builder.build().paths() == ["x/" + "d/" * 50 + "deep", "y/after"]

# tests/test_tree.py
import logging

import pytest

from towerctx.core.tree import DIR_FILES_KEY, DIR_SIZE_KEY, MIB, build_tree, choose_depth, format_size, render_tree
from towerctx.models import TreeEntry, TreeStructureError


@pytest.fixture
def sized_files(tmp_path):
    """a/b.txt (10 bytes), a/c.txt (20 bytes) and d.txt (1 byte) on disk."""
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "b.txt").write_bytes(b"x" * 10)
    (tmp_path / "a" / "c.txt").write_bytes(b"x" * 20)
    (tmp_path / "d.txt").write_bytes(b"x")

    def entry(rel):
        return TreeEntry(str(tmp_path / rel), rel)
    return entry


# --- Test 1: Rendering ---

def test_files_nested_under_directory(sized_files):
    entries = [sized_files("a/b.txt"), sized_files("a/c.txt")]
    assert render_tree(entries, "proj").splitlines() == [
        "proj",
        "└─ a/",
        "   ├─ b.txt",
        "   └─ c.txt",
    ]


def test_files_listed_before_directories(sized_files):
    entries = [sized_files("a/c.txt"), sized_files("d.txt"), sized_files("a/b.txt")]
    assert render_tree(entries, "proj").splitlines() == [
        "proj",
        "├─ d.txt",
        "└─ a/",
        "   ├─ b.txt",
        "   └─ c.txt",
    ]


def test_sizes_shown_on_files_and_boundary_directories(sized_files):
    entries = [sized_files("a/b.txt"), sized_files("a/c.txt"), sized_files("d.txt")]
    assert render_tree(entries, "proj", line_budget=3, show_sizes=True).splitlines() == [
        "proj",
        "├─ d.txt [0 KB]",
        "└─ a/ (2 files) [0.03 KB]",
    ]


def test_vertical_connector_continues_past_open_siblings(tmp_path):
    entries = [TreeEntry(str(tmp_path / p), p) for p in ("a/x.txt", "b/y.txt")]
    assert render_tree(entries, "root").splitlines() == [
        "root",
        "├─ a/",
        "│  └─ x.txt",
        "└─ b/",
        "   └─ y.txt",
    ]


def test_directory_entries_render_without_counts(tmp_path):
    entries = [TreeEntry(str(tmp_path / "a"), "a/"), TreeEntry(str(tmp_path / "a" / "b"), "a/b/")]
    assert render_tree(entries, "root").splitlines() == ["root", "└─ a/", "   └─ b/"]


def test_empty_entries_render_only_root():
    assert render_tree([], "root") == "root"


# --- Test 2: Depth budget ---

def test_budget_collapses_whole_levels(sized_files):
    entries = [sized_files("a/b.txt"), sized_files("a/c.txt"), sized_files("d.txt")]
    assert render_tree(entries, "proj", line_budget=3).splitlines() == [
        "proj",
        "├─ d.txt",
        "└─ a/ (2 files)",
    ]
    # Five lines fit everything.
    assert len(render_tree(entries, "proj", line_budget=5).splitlines()) == 5


def test_singular_file_count(tmp_path):
    entries = [TreeEntry(str(tmp_path / "a" / "b.txt"), "a/b.txt"), TreeEntry(str(tmp_path / "a" / "b" / "c.txt"), "a/b/c.txt")]
    lines = render_tree(entries, "root", line_budget=2).splitlines()
    assert lines == ["root", "└─ a/ (2 files)"]
    lines = render_tree(entries, "root", line_budget=4).splitlines()
    assert lines[-1] == "   └─ b/ (1 file)"


@pytest.mark.parametrize("counts, budget, expected", [
    ([2, 2], None, 1),
    ([2, 2], 3, 0),
    ([2, 2], 5, 1),
    ([10, 1], 3, 0),
    ([1, 1, 1, 1], 3, 1),
    ([], 1, 0),
])
def test_choose_depth(counts, budget, expected):
    assert choose_depth(counts, budget) == expected


# --- Test 3: Aggregates and errors ---

def test_build_tree_aggregates(sized_files):
    tree, depth_counts = build_tree([sized_files("a/b.txt"), sized_files("a/c.txt"), sized_files("a/c.txt")])
    assert tree["a"][DIR_SIZE_KEY] == 30
    assert tree["a"][DIR_FILES_KEY] == 2
    assert tree["a"]["b.txt"] == 10
    assert depth_counts == [1, 2]


def test_file_and_directory_sharing_a_path_raises(tmp_path):
    entries = [TreeEntry(str(tmp_path / "a"), "a"), TreeEntry(str(tmp_path / "a" / "b"), "a/b")]
    with pytest.raises(TreeStructureError):
        build_tree(entries)


def test_unstattable_file_counts_as_zero(tmp_path, caplog):
    entries = [TreeEntry(str(tmp_path / "gone.txt"), "gone.txt")]
    with caplog.at_level(logging.WARNING, logger="towerctx.core.tree"):
        out = render_tree(entries, "root", show_sizes=True)
    assert out.splitlines()[-1] == "└─ gone.txt [0 KB]"
    assert "gone.txt" in caplog.text


@pytest.mark.parametrize("size, expected", [
    (0, "0 KB"),
    (1536, "1.5 KB"),
    (2048, "2 KB"),
    (MIB, "1 MB"),
    (MIB + MIB // 4, "1.25 MB"),
])
def test_format_size(size, expected):
    assert format_size(size) == expected

# tests/test_ignore.py
import logging
from pathlib import Path

import pytest

from towerctx.config import Settings
from towerctx.core.ignore import IgnoreResolver, load_ignore_file, pattern_to_globs


# --- Test 1: Layered precedence ---

def test_later_source_negation_wins(tmp_path, make_workspace):
    """.gitignore excludes *.log, .towerignore re-includes keep.log."""
    (tmp_path / ".gitignore").write_text("*.log\n", encoding="utf-8")
    (tmp_path / ".towerignore").write_text("!keep.log\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])

    assert resolver.is_ignored(str(tmp_path / "other.log"), ws, is_dir=False) is True
    assert resolver.is_ignored(str(tmp_path / "keep.log"), ws, is_dir=False) is False


def test_manual_patterns_override_ignore_files(tmp_path, make_workspace):
    (tmp_path / ".towerignore").write_text("docs/\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    settings = Settings(manual_ignore_patterns=("!docs/", "*.md"))
    resolver = IgnoreResolver(settings, builtin_patterns=[])

    assert resolver.is_ignored(str(tmp_path / "docs"), ws, is_dir=True) is False
    assert resolver.is_ignored(str(tmp_path / "README.md"), ws, is_dir=False) is True


def test_builtin_patterns_apply_first(tmp_path, make_workspace):
    (tmp_path / ".gitignore").write_text("!.env\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver()

    assert resolver.is_ignored(str(tmp_path / "node_modules"), ws, is_dir=True) is True
    assert resolver.is_ignored(str(tmp_path / "a" / "b.pyc"), ws, is_dir=False) is True
    assert resolver.is_ignored(str(tmp_path / ".env"), ws, is_dir=False) is False


def test_directory_pattern_only_matches_directories(tmp_path, make_workspace):
    (tmp_path / ".gitignore").write_text("out/\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])

    assert resolver.is_ignored(str(tmp_path / "out"), ws, is_dir=True) is True
    assert resolver.is_ignored(str(tmp_path / "out" / "x.txt"), ws, is_dir=False) is True
    assert resolver.is_ignored(str(tmp_path / "out"), ws, is_dir=False) is False


def test_root_is_never_ignored(tmp_path, make_workspace):
    (tmp_path / ".gitignore").write_text("*\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])
    assert resolver.is_ignored(str(tmp_path), ws, is_dir=True) is False


def test_use_ignore_file_off_skips_gitignore_only(tmp_path, make_workspace):
    (tmp_path / ".gitignore").write_text("a.txt\n", encoding="utf-8")
    (tmp_path / ".towerignore").write_text("b.txt\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(Settings(use_ignore_file=False), builtin_patterns=[])

    assert resolver.is_ignored(str(tmp_path / "a.txt"), ws, is_dir=False) is False
    assert resolver.is_ignored(str(tmp_path / "b.txt"), ws, is_dir=False) is True
    assert resolver.patterns(ws).gitignore == ()


def test_path_outside_workspace_raises(tmp_path, make_workspace):
    root = tmp_path / "proj"
    root.mkdir()
    resolver = IgnoreResolver(builtin_patterns=[])
    with pytest.raises(ValueError):
        resolver.is_ignored(str(tmp_path / "elsewhere.txt"), make_workspace(root), is_dir=False)


# --- Test 2: Malformed sources ---

def test_malformed_ignore_file_contributes_nothing(tmp_path, make_workspace, caplog):
    """A trailing escape cannot compile; the whole file is dropped with a warning."""
    (tmp_path / ".gitignore").write_text("secret.txt\nbad\\\n", encoding="utf-8")
    (tmp_path / ".towerignore").write_text("other.txt\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])

    with caplog.at_level(logging.WARNING, logger="towerctx.core.ignore"):
        assert resolver.is_ignored(str(tmp_path / "secret.txt"), ws, is_dir=False) is False
    assert resolver.is_ignored(str(tmp_path / "other.txt"), ws, is_dir=False) is True
    assert "malformed" in caplog.text


def test_malformed_manual_patterns_are_dropped(tmp_path, make_workspace, caplog):
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(Settings(manual_ignore_patterns=("x.txt", "oops\\")), builtin_patterns=[])
    with caplog.at_level(logging.WARNING, logger="towerctx.core.ignore"):
        assert resolver.patterns(ws).manual == ()
    assert resolver.is_ignored(str(tmp_path / "x.txt"), ws, is_dir=False) is False


def test_load_ignore_file_skips_comments_and_blanks(tmp_path):
    path = tmp_path / ".gitignore"
    path.write_text("# comment\n\n  *.tmp  \n!keep.tmp\n", encoding="utf-8")
    assert load_ignore_file(path) == ["*.tmp", "!keep.tmp"]
    assert load_ignore_file(tmp_path / "missing") == []


def test_undecodable_ignore_file_is_skipped(tmp_path):
    path = tmp_path / ".gitignore"
    path.write_bytes(b"\xff\xfe\xfa bad bytes")
    assert load_ignore_file(path) == []


# --- Test 3: Caching and invalidation ---

def test_cache_survives_until_invalidated(tmp_path, make_workspace):
    ignore_file = tmp_path / ".gitignore"
    ignore_file.write_text("a.txt\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])
    assert resolver.is_ignored(str(tmp_path / "a.txt"), ws, is_dir=False) is True

    ignore_file.write_text("b.txt\n", encoding="utf-8")
    # Still the compiled copy.
    assert resolver.is_ignored(str(tmp_path / "b.txt"), ws, is_dir=False) is False

    assert resolver.handle_file_event(str(ignore_file), [ws]) == ws
    assert resolver.is_ignored(str(tmp_path / "a.txt"), ws, is_dir=False) is False
    assert resolver.is_ignored(str(tmp_path / "b.txt"), ws, is_dir=False) is True


def test_file_event_for_ordinary_file_is_not_an_ignore_change(tmp_path, make_workspace):
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])
    assert resolver.handle_file_event(str(tmp_path / "main.py"), [ws]) is None
    assert resolver.handle_file_event(str(tmp_path / "sub" / ".gitignore"), [ws]) is None


def test_apply_settings_recompiles(tmp_path, make_workspace):
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])
    assert resolver.is_ignored(str(tmp_path / "a.txt"), ws, is_dir=False) is False

    resolver.apply_settings(Settings(manual_ignore_patterns=("a.txt",)))
    assert resolver.is_ignored(str(tmp_path / "a.txt"), ws, is_dir=False) is True


# --- Test 4: Coarse exclude globs ---

@pytest.mark.parametrize("pattern, expected", [
    ("node_modules/", ["**/node_modules/**"]),
    ("*.log", ["**/*.log"]),
    ("/dist", ["/dist", "/dist/**"]),
    ("/out/", ["/out/**"]),
    ("foo/*.py", ["/foo/*.py"]),
    ("docs/_build/", ["/docs/_build/**"]),
    ("**/cache/", ["**/cache/**"]),
    ("README", ["**/README", "**/README/**"]),
    ("!keep.log", []),
])
def test_pattern_to_globs(pattern, expected):
    assert pattern_to_globs(pattern) == expected


def test_coarse_globs_ignore_negations(tmp_path, make_workspace):
    """
    The coarse form has no negations, so it still excludes a re-included
    file while the fine matcher keeps it.
    """
    (tmp_path / ".gitignore").write_text("*.log\n!keep.log\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])

    assert resolver.is_excluded_coarse("keep.log", ws) is True
    assert resolver.is_ignored(str(tmp_path / "keep.log"), ws, is_dir=False) is False
    assert resolver.exclude_globs(ws) == {"**/*.log"}


def test_anchored_coarse_globs_stay_at_the_root(tmp_path, make_workspace):
    (tmp_path / ".gitignore").write_text("/lib\nsrc/*.gen\n", encoding="utf-8")
    ws = make_workspace(tmp_path)
    resolver = IgnoreResolver(builtin_patterns=[])

    assert resolver.is_excluded_coarse("lib/", ws) is True
    assert resolver.is_excluded_coarse("pkg/lib/", ws) is False
    assert resolver.is_excluded_coarse("src/a.gen", ws) is True
    assert resolver.is_excluded_coarse("pkg/src/a.gen", ws) is False

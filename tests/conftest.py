# tests/conftest.py
import pytest

from towerctx.core.ignore import IgnoreResolver
from towerctx.core.scanner import FileTreeBuilder
from towerctx.core.workspace import make_workspace_id
from towerctx.models import Workspace


def word_count(text: str) -> int:
    """Deterministic stand-in for the tiktoken encoder: one token per word."""
    return len(text.split())


@pytest.fixture
def project(tmp_path):
    """
    A small project with a bit of everything:
    1. plain source files, one of them nested two levels deep
    2. a .gitignore excluding logs and the build folder
    3. a node_modules folder excluded by the builtin patterns
    """
    root = tmp_path / "proj"
    (root / "src" / "nested").mkdir(parents=True)
    (root / "logs").mkdir()
    (root / "build").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)

    (root / ".gitignore").write_text("*.log\nbuild/\n", encoding="utf-8")
    (root / "README.md").write_text("# Project", encoding="utf-8")
    (root / "src" / "main.py").write_text("print('main')", encoding="utf-8")
    (root / "src" / "util.py").write_text("def util(): pass", encoding="utf-8")
    (root / "src" / "nested" / "deep.py").write_text("x = 1", encoding="utf-8")
    (root / "logs" / "app.log").write_text("error...", encoding="utf-8")
    (root / "build" / "out.txt").write_text("artifact", encoding="utf-8")
    (root / "node_modules" / "pkg" / "index.js").write_text("module.exports = 1", encoding="utf-8")
    return root


@pytest.fixture
def make_workspace():
    def _make(root, index=0):
        root = str(root)
        name = root.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1]
        return Workspace(id=make_workspace_id(name, root), name=name, root_path=root, index=index)
    return _make


@pytest.fixture
def build_forest(make_workspace):
    """Discovers one forest over the given roots; builtin patterns are on unless disabled."""
    def _build(*roots, builtin_patterns=None, preserve=None, settings=None):
        resolver = IgnoreResolver(settings, builtin_patterns=builtin_patterns)
        builder = FileTreeBuilder(resolver)
        workspaces = [make_workspace(root, i) for i, root in enumerate(roots)]
        return builder.discover_all(workspaces, preserve)
    return _build


@pytest.fixture
def tokenize():
    return word_count

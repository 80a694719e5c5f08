# tests/test_config.py
import pytest

from towerctx.config import ProjectTreeMode, Settings
from towerctx.core.workspace import WorkspaceRegistry, make_workspace_id
from towerctx.events import EventEmitter
from towerctx.utils.tokenizer import Tokenizer


# --- Test 1: Settings ---

def test_settings_from_camel_case_mapping():
    settings = Settings.from_mapping({
        "useIgnoreFile": False,
        "manualIgnorePatterns": ["*.md"],
        "maxFileSizeWarningKB": 100,
        "blockSeparator": "\n\n",
        "projectTree": {"enabled": True, "type": "selectedFilesOnly", "showFileSize": True, "lineBudget": 40},
        "somethingElse": 1,
    })
    assert settings.use_ignore_file is False
    assert settings.manual_ignore_patterns == ("*.md",)
    assert settings.max_file_size_warning_kb == 100.0
    assert settings.tree_type is ProjectTreeMode.SELECTED_ONLY
    assert settings.extra == {"somethingElse": 1}

    config = settings.context_config()
    assert config.block_separator == "\n\n"
    assert config.tree_show_sizes is True
    assert config.tree_line_budget == 40


def test_defaults_when_keys_are_missing():
    config = Settings.from_mapping({}).context_config()
    assert config.tree_mode is ProjectTreeMode.FILES_AND_DIRS
    assert config.wrapper_template is not None
    assert config.block_trim_lines is True


def test_sizes_are_dropped_for_directory_only_trees():
    settings = Settings.from_mapping({"projectTree": {"type": "dirs-only", "showFileSize": True}})
    assert settings.context_config().tree_show_sizes is False


@pytest.mark.parametrize("data", [
    {"projectTree": {"type": "sideways"}},
    {"projectTree": {"lineBudget": 0}},
    {"projectTree": "yes"},
    {"manualIgnorePatterns": "*.md"},
    {"maxFileSizeWarningKB": "big"},
])
def test_invalid_settings_raise(data):
    with pytest.raises(ValueError):
        Settings.from_mapping(data)


@pytest.mark.parametrize("name, mode", [
    ("fullFilesAndDirectories", ProjectTreeMode.FILES_AND_DIRS),
    ("fullDirectoriesOnly", ProjectTreeMode.DIRS_ONLY),
    ("none", ProjectTreeMode.OFF),
    ("selected-only", ProjectTreeMode.SELECTED_ONLY),
])
def test_tree_mode_names(name, mode):
    assert ProjectTreeMode.parse(name) is mode


# --- Test 2: Workspaces ---

def test_registry_adds_deduplicates_and_reindexes(tmp_path):
    for name in ("a", "b", "c"):
        (tmp_path / name).mkdir()
    events = []
    registry = WorkspaceRegistry()
    registry.changed.subscribe(events.append)

    a = registry.add(tmp_path / "a")
    registry.add(tmp_path / "b")
    c = registry.add(tmp_path / "c")
    assert registry.add(tmp_path / "a") is a
    assert len(registry) == 3

    registry.remove(registry.workspaces[1].id)
    assert [w.name for w in registry.workspaces] == ["a", "c"]
    assert [w.index for w in registry.workspaces] == [0, 1]
    assert registry.get(c.id).index == 1
    assert [action for action, _ in events] == ["added", "added", "added", "removed"]


def test_registry_rejects_missing_directories(tmp_path):
    with pytest.raises(ValueError):
        WorkspaceRegistry([tmp_path / "missing"])


def test_owner_of_prefers_deepest_root(tmp_path):
    (tmp_path / "outer" / "inner").mkdir(parents=True)
    registry = WorkspaceRegistry([tmp_path / "outer", tmp_path / "outer" / "inner"])
    owner = registry.owner_of(str(tmp_path / "outer" / "inner" / "x.txt"))
    assert owner.name == "inner"
    assert registry.owner_of(str(tmp_path / "outerwear.txt")) is None


def test_workspace_ids_differ_for_same_name():
    assert make_workspace_id("app", "/one/app") != make_workspace_id("app", "/two/app")
    assert make_workspace_id("my app!", "/x").startswith("myapp_")


# --- Test 3: Events ---

def test_failing_listener_does_not_stop_others():
    emitter = EventEmitter("test")
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    emitter.subscribe(broken)
    subscription = emitter.subscribe(received.append)
    emitter.emit(1)
    subscription.dispose()
    subscription.dispose()
    emitter.emit(2)

    assert received == [1]
    assert len(emitter) == 1


# --- Test 4: Tokenizer ---

def test_tokenizer_estimates_without_encoding(monkeypatch):
    monkeypatch.setattr(Tokenizer, "_encoding", None)
    monkeypatch.setattr(Tokenizer, "_unavailable", True)
    assert Tokenizer.count("x" * 40) == 10

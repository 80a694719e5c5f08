# src/towerctx/core/selection.py
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set

from towerctx.core.scanner import iter_nodes
from towerctx.events import EventEmitter
from towerctx.models import FileNode

logger = logging.getLogger(__name__)

# Asked before checking a file above the size threshold: (node, size_kb) -> proceed?
ConfirmLargeFile = Callable[[FileNode, float], bool]


@dataclass(frozen=True)
class SelectionChange:
    node: Optional[FileNode]
    checked: bool
    propagate_to_children: bool
    changed: int


def get_checked_files(forest: Iterable[FileNode]) -> List[FileNode]:
    return [node for node in iter_nodes(forest) if node.is_file and node.checked]


def get_checked_paths(forest: Iterable[FileNode]) -> Set[str]:
    """Every checked node, files and directories alike."""
    return {node.absolute_path for node in iter_nodes(forest) if node.checked}


def _set_subtree(node: FileNode, checked: bool) -> int:
    flipped = 0
    for current in iter_nodes([node]):
        if current.checked != checked:
            current.checked = checked
            flipped += 1
    return flipped


def _update_ancestors(node: FileNode) -> int:
    flipped = 0
    parent = node.parent
    while parent is not None:
        all_checked = all(child.checked for child in parent.children)
        if parent.checked != all_checked:
            parent.checked = all_checked
            flipped += 1
        parent = parent.parent
    return flipped


class SelectionModel:
    """
    Checked/unchecked state with downward propagation to every descendant
    and upward recomputation (a container is checked iff all children are).

    Observers are notified once per logical operation, and only when at
    least one flag actually flipped.
    """

    def __init__(self, max_file_size_warning_kb: float = 500,
                 on_change: Optional[Callable[[], None]] = None):
        self.max_file_size_warning_kb = max_file_size_warning_kb
        self.on_change = on_change
        self.tree_changed: EventEmitter[Optional[FileNode]] = EventEmitter("tree-changed")
        self.selection_changed: EventEmitter[SelectionChange] = EventEmitter("selection-changed")

    # --- Queries ---

    def get_checked_files(self, forest: Iterable[FileNode]) -> List[FileNode]:
        return get_checked_files(forest)

    def all_selected(self, forest: Sequence[FileNode]) -> bool:
        files = [node for node in iter_nodes(forest) if node.is_file]
        return bool(files) and all(node.checked for node in files)

    def file_size_kb(self, node: FileNode) -> Optional[float]:
        try:
            return os.stat(node.absolute_path).st_size / 1024
        except OSError:
            return None

    def would_exceed_threshold(self, node: FileNode) -> bool:
        if not node.is_file:
            return False
        size_kb = self.file_size_kb(node)
        return size_kb is not None and size_kb > self.max_file_size_warning_kb

    # --- Mutations ---

    def toggle(self, node: FileNode, checked: bool,
               confirm: Optional[ConfirmLargeFile] = None) -> bool:
        """
        Sets `node` and its whole subtree to `checked`, then fixes ancestors.
        Returns True when any flag flipped.
        """
        if checked and not node.checked and self.would_exceed_threshold(node):
            size_kb = self.file_size_kb(node) or 0.0
            proceed = confirm(node, size_kb) if confirm is not None else True
            if not proceed:
                logger.info("Selection of large file %s cancelled (%.0f KB)", node.label, size_kb)
                return False

        flipped = _set_subtree(node, checked)
        flipped += _update_ancestors(node)
        if not flipped:
            return False

        logger.debug("Toggled %s (%s) to %s, %d flag(s) changed", node.label, node.kind.value, checked, flipped)
        self._notify(SelectionChange(node, checked, node.is_container, flipped), node)
        return True

    def toggle_all(self, forest: Sequence[FileNode], checked: bool) -> bool:
        flipped = 0
        for root in forest:
            flipped += _set_subtree(root, checked)
        if not flipped:
            return False
        self._notify(SelectionChange(None, checked, True, flipped), None)
        return True

    def clear(self, forest: Sequence[FileNode]) -> bool:
        return self.toggle_all(forest, False)

    def invert_all(self, forest: Sequence[FileNode]) -> bool:
        """Selects everything, or clears when everything is already selected."""
        return self.toggle_all(forest, not self.all_selected(forest))

    def _notify(self, change: SelectionChange, node: Optional[FileNode]) -> None:
        self.tree_changed.emit(node)
        self.selection_changed.emit(change)
        if self.on_change is not None:
            self.on_change()


class SelectionStore:
    """
    Persists the selection as (path, checked) pairs in a JSON file. Loaded
    pairs become the preserve set for the next discovery.
    """

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Set[str]:
        if not self.path.is_file():
            return set()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = data.get("selection", [])
            return {str(e["path"]) for e in entries if e.get("checked")}
        except (OSError, ValueError, TypeError, AttributeError, KeyError) as e:
            logger.warning("Could not load selection from %s: %s", self.path, e)
            return set()

    def save(self, forest: Iterable[FileNode]) -> None:
        entries = [{"path": path, "checked": True} for path in sorted(get_checked_paths(forest))]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({"version": 1, "selection": entries}, f, indent=2)
        except OSError as e:
            logger.warning("Could not save selection to %s: %s", self.path, e)

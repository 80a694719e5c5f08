# src/towerctx/core/tree.py
import logging
import os
from typing import Dict, Iterable, List, Optional, Union

from towerctx.models import TreeEntry, TreeStructureError

logger = logging.getLogger(__name__)

# Reserved keys hold directory aggregates; '/' can never appear in a path segment.
DIR_SIZE_KEY = "/size/"
DIR_FILES_KEY = "/files/"
_RESERVED = (DIR_SIZE_KEY, DIR_FILES_KEY)

MIB = 1024 * 1024

Tree = Dict[str, Union[int, "Tree"]]


def format_size(size: int) -> str:
    """Human size: KB below 1 MiB, MB at or above, at most two decimals."""
    if size >= MIB:
        return f"{round(size / MIB, 2):g} MB"
    return f"{round(size / 1024, 2):g} KB"


def _new_dir() -> Tree:
    return {DIR_SIZE_KEY: 0, DIR_FILES_KEY: 0}


def _stat_size(origin_path: str) -> int:
    try:
        return os.stat(origin_path).st_size
    except OSError as e:
        logger.warning("Could not stat %s, counting it as 0 bytes: %s", origin_path, e)
        return 0


def build_tree(entries: Iterable[TreeEntry]) -> tuple:
    """
    Builds the nested dict and per-depth counts of newly created entries.
    Returns (tree, depth_counts).
    """
    tree: Tree = {}
    depth_counts: List[int] = []

    seen = set()
    for entry in entries:
        if entry.tree_path in seen:
            continue
        seen.add(entry.tree_path)
        is_dir_entry = entry.tree_path.endswith("/")
        parts = [p for p in entry.tree_path.replace("\\", "/").split("/") if p]
        if not parts:
            continue
        size = 0 if is_dir_entry else _stat_size(entry.origin_path)

        level = tree
        for depth, part in enumerate(parts):
            is_leaf = depth == len(parts) - 1 and not is_dir_entry
            existing = level.get(part)
            if existing is None:
                level[part] = 0 if is_leaf else _new_dir()
                if len(depth_counts) <= depth:
                    depth_counts.append(0)
                depth_counts[depth] += 1
            elif isinstance(existing, int) != is_leaf:
                raise TreeStructureError(
                    f"Structure mismatch at '{part}' in '{entry.tree_path}': file and directory share a path"
                )

            if is_leaf:
                level[part] = size
            else:
                level = level[part]
                if not is_dir_entry:
                    # Passing through: this directory gains a descendant file.
                    level[DIR_SIZE_KEY] += size
                    level[DIR_FILES_KEY] += 1

    return tree, depth_counts


def choose_depth(depth_counts: List[int], line_budget: Optional[int]) -> int:
    """
    Deepest fully expanded level. Level 0 is always shown; each further level
    is added whole while the running line count (root line included) fits.
    """
    if line_budget is None:
        return max(len(depth_counts) - 1, 0)
    max_depth = 0
    printed = (depth_counts[0] if depth_counts else 0) + 1
    for count in depth_counts[1:]:
        if printed + count > line_budget:
            break
        max_depth += 1
        printed += count
    return max_depth


def _file_line(prefix: str, name: str, size: int, show_sizes: bool) -> str:
    if show_sizes:
        return f"{prefix}{name} [{format_size(size)}]"
    return f"{prefix}{name}"


def _dir_line(prefix: str, name: str, subtree: Tree, depth: int, max_depth: int, show_sizes: bool) -> str:
    if depth < max_depth:
        return f"{prefix}{name}/"
    line = f"{prefix}{name}/"
    files = subtree[DIR_FILES_KEY]
    if files:
        line += f" ({files} {'file' if files == 1 else 'files'})"
    if show_sizes:
        line += f" [{format_size(subtree[DIR_SIZE_KEY])}]"
    return line


def _render_level(tree: Tree, depth: int, prefix: str, max_depth: int, show_sizes: bool) -> List[str]:
    file_keys = sorted(k for k, v in tree.items() if k not in _RESERVED and isinstance(v, int))
    dir_keys = sorted(k for k, v in tree.items() if k not in _RESERVED and not isinstance(v, int))
    keys = file_keys + dir_keys

    lines: List[str] = []
    for i, key in enumerate(keys):
        is_last = i == len(keys) - 1
        connector = prefix + ("└─ " if is_last else "├─ ")
        value = tree[key]
        if isinstance(value, int):
            lines.append(_file_line(connector, key, value, show_sizes))
            continue
        lines.append(_dir_line(connector, key, value, depth, max_depth, show_sizes))
        if depth < max_depth:
            child_prefix = prefix + ("   " if is_last else "│  ")
            lines.extend(_render_level(value, depth + 1, child_prefix, max_depth, show_sizes))
    return lines


def render_tree(entries: Iterable[TreeEntry], root_label: str,
                line_budget: Optional[int] = None, show_sizes: bool = False) -> str:
    """
    Renders a depth-budgeted ASCII tree. Directories at the deepest shown
    level collapse into a summary line with their file count (and size).
    """
    tree, depth_counts = build_tree(entries)
    max_depth = choose_depth(depth_counts, line_budget)
    lines = [root_label]
    lines.extend(_render_level(tree, 0, "", max_depth, show_sizes))
    return "\n".join(lines)

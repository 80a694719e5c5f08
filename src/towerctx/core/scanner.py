# src/towerctx/core/scanner.py
import logging
import os
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Set

from towerctx.core.ignore import IgnoreResolver
from towerctx.models import FileNode, NodeKind, TreeStructureError, Workspace
from towerctx.utils.files import normalize_path, to_posix

logger = logging.getLogger(__name__)


def iter_nodes(forest: Iterable[FileNode]) -> Iterator[FileNode]:
    """Pre-order walk in tree order. Uses an explicit stack, so depth is unbounded."""
    stack: List[FileNode] = list(reversed(list(forest)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def find_node(forest: Iterable[FileNode], absolute_path: str) -> Optional[FileNode]:
    target = normalize_path(absolute_path)
    for node in iter_nodes(forest):
        if normalize_path(node.absolute_path) == target:
            return node
    return None


def sort_key(node: FileNode):
    return (node.kind is not NodeKind.DIRECTORY, node.label.casefold(), node.label)


def reconcile_checked(root: FileNode) -> None:
    """
    Restores the container invariant on a freshly built tree: a checked
    container checks its whole subtree (new files in a selected directory
    join the selection), then every non-empty container becomes
    all(children checked).
    """
    for node in iter_nodes([root]):
        if node.checked and node.children:
            for child in node.children:
                child.checked = True
    for node in reversed(list(iter_nodes([root]))):
        if node.children:
            node.checked = all(child.checked for child in node.children)


class FileTreeBuilder:
    """
    Discovers files under workspace roots and builds the node forest.

    The walk prunes with the resolver's coarse exclude globs, then every
    surviving file is re-checked with the fine gitignore matcher.
    """

    def __init__(self, resolver: IgnoreResolver, use_coarse_globs: bool = True):
        self.resolver = resolver
        self.use_coarse_globs = use_coarse_globs

    def discover_all(self, workspaces: Iterable[Workspace],
                     preserve_checked_paths: Optional[Set[str]] = None) -> List[FileNode]:
        roots = []
        for workspace in workspaces:
            try:
                roots.append(self.discover(workspace, preserve_checked_paths))
            except OSError as e:
                logger.error("Error discovering files for workspace %s: %s", workspace.name, e)
        return roots

    def discover(self, workspace: Workspace,
                 preserve_checked_paths: Optional[Set[str]] = None) -> FileNode:
        """
        Builds a fresh tree for one workspace. A node starts checked iff its
        path is in `preserve_checked_paths`; vanished paths are simply absent.
        """
        logger.debug("Discovering files for workspace: %s", workspace.name)
        if not os.path.isdir(workspace.root_path):
            raise FileNotFoundError(f"Workspace root does not exist: {workspace.root_path}")

        preserved = {normalize_path(p) for p in (preserve_checked_paths or ())}
        root = FileNode.workspace_root(workspace)
        root.checked = normalize_path(root.absolute_path) in preserved

        nodes: Dict[str, FileNode] = {workspace.root_path: root}
        file_count = 0
        for file_path, size in self._walk(workspace):
            if self._add_file(file_path, size, workspace, nodes, preserved):
                file_count += 1

        self._attach(root, nodes)
        reconcile_checked(root)
        logger.debug(
            "Built file tree for workspace %s with %d files, %d nodes",
            workspace.name, file_count, len(nodes),
        )
        return root

    # --- Enumeration ---

    def _walk(self, workspace: Workspace) -> Iterator[tuple]:
        root_dir = workspace.root_path

        def on_error(error: OSError):
            logger.warning("Skipping unreadable path %s: %s", error.filename, error.strerror)

        for current, dirs, files in os.walk(root_dir, onerror=on_error):
            rel_dir = os.path.relpath(current, root_dir)
            rel_dir = "" if rel_dir == "." else to_posix(rel_dir) + "/"

            # Prune in place so os.walk never descends into excluded directories.
            if self.use_coarse_globs:
                dirs[:] = [
                    d for d in dirs
                    if not self.resolver.is_excluded_coarse(f"{rel_dir}{d}/", workspace)
                ]
            dirs.sort()

            for name in sorted(files):
                if self.use_coarse_globs and self.resolver.is_excluded_coarse(rel_dir + name, workspace):
                    continue
                path = os.path.join(current, name)
                try:
                    stats = os.stat(path)
                except OSError as e:
                    logger.warning("Error processing file %s: %s", path, e)
                    continue
                if not os.path.isfile(path):
                    continue
                yield path, stats.st_size

    # --- Tree assembly ---

    def _add_file(self, file_path: str, size: int, workspace: Workspace,
                  nodes: Dict[str, FileNode], preserved: Set[str]) -> bool:
        if file_path in nodes:
            raise TreeStructureError(f"File discovered twice: {file_path}")
        if self.resolver.is_ignored(file_path, workspace, is_dir=False):
            return False

        relative = os.path.relpath(file_path, workspace.root_path)
        node = FileNode.file(file_path, relative, workspace, size=size)
        node.checked = normalize_path(file_path) in preserved
        nodes[file_path] = node
        self._ensure_parents(file_path, workspace, nodes, preserved)
        return True

    def _ensure_parents(self, file_path: str, workspace: Workspace,
                        nodes: Dict[str, FileNode], preserved: Set[str]) -> None:
        missing = []
        current = os.path.dirname(file_path)
        while current not in nodes and current != os.path.dirname(current):
            missing.append(current)
            current = os.path.dirname(current)

        for dir_path in reversed(missing):
            if self.resolver.is_ignored(dir_path, workspace, is_dir=True):
                continue
            if not os.path.isdir(dir_path):
                continue
            relative = os.path.relpath(dir_path, workspace.root_path)
            node = FileNode.directory(dir_path, relative, workspace)
            node.checked = normalize_path(dir_path) in preserved
            nodes[dir_path] = node

    def _attach(self, root: FileNode, nodes: Dict[str, FileNode]) -> None:
        by_parent: Dict[str, List[FileNode]] = defaultdict(list)
        for path, node in nodes.items():
            if node is root:
                continue
            by_parent[os.path.dirname(path)].append(node)

        for parent_path, children in by_parent.items():
            parent = nodes.get(parent_path)
            if parent is None:
                # The parent was ignored or vanished mid-walk; drop the orphans.
                logger.debug("Dropping %d node(s) without parent %s", len(children), parent_path)
                continue
            if parent.is_file:
                raise TreeStructureError(f"{parent_path} is both a file and a directory")
            for child in sorted(children, key=sort_key):
                parent.add_child(child)

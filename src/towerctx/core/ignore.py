# src/towerctx/core/ignore.py
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import pathspec

from towerctx.config import (
    BUILTIN_IGNORE_PATTERNS,
    GITIGNORE_FILE,
    IGNORE_FILE_NAMES,
    TOWERIGNORE_FILE,
    Settings,
)
from towerctx.models import IgnorePatterns, Workspace
from towerctx.utils.files import to_posix

logger = logging.getLogger(__name__)


def clean_pattern_lines(lines: Iterable[str]) -> List[str]:
    """Strips lines and drops blanks and '#' comments."""
    cleaned = []
    for line in lines:
        line = line.strip()
        if line and not line.startswith("#"):
            cleaned.append(line)
    return cleaned


def compile_spec(lines: Iterable[str]) -> pathspec.GitIgnoreSpec:
    return pathspec.GitIgnoreSpec.from_lines(list(lines))


def load_ignore_file(path: Path) -> List[str]:
    """
    Loads the patterns of one ignore file.
    A missing file contributes nothing; an unreadable or malformed one
    contributes nothing either, with a logged warning.
    """
    if not path.is_file():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            patterns = clean_pattern_lines(f.read().splitlines())
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read ignore file %s: %s", path, e)
        return []

    try:
        compile_spec(patterns)
    except Exception as e:
        logger.warning("Ignoring malformed ignore file %s: %s", path, e)
        return []
    return patterns


def pattern_to_globs(pattern: str) -> List[str]:
    """
    Coarse exclude-glob form of one ignore pattern, for pruning walks.
    Negations have no exclude form and yield nothing.
    """
    if pattern.startswith("!"):
        return []
    if pattern.startswith("\\"):
        pattern = pattern[1:]

    is_dir = pattern.endswith("/")
    body = pattern.strip("/")
    if not body:
        return []

    # A leading or inner slash anchors the pattern to the root, as in gitignore.
    if pattern.startswith("/") or ("/" in body and not body.startswith("**/")):
        base = f"/{body}"
    else:
        base = body if body.startswith("**/") else f"**/{body}"

    if is_dir:
        return [f"{base}/**"]
    if "*" in body:
        return [base]
    return [base, f"{base}/**"]


@dataclass
class _CompiledIgnore:
    patterns: IgnorePatterns
    spec: pathspec.GitIgnoreSpec
    globs: Set[str]
    coarse: pathspec.GitIgnoreSpec


class IgnoreResolver:
    """
    Per-workspace compiled matcher over four layered pattern sources:
    builtin, .gitignore, .towerignore and manual patterns from settings.
    Later sources override earlier ones, including '!' negations.

    Entries are cached per workspace and only dropped through `invalidate`,
    `invalidate_all`, `handle_file_event` or `apply_settings`.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 builtin_patterns: Optional[Iterable[str]] = None):
        self.settings = settings or Settings()
        self.builtin_patterns = tuple(
            clean_pattern_lines(BUILTIN_IGNORE_PATTERNS if builtin_patterns is None else builtin_patterns)
        )
        self._cache: Dict[str, _CompiledIgnore] = {}
        self._lock = threading.Lock()

    # --- Pattern sources ---

    def load_patterns(self, workspace: Workspace) -> IgnorePatterns:
        root = Path(workspace.root_path)
        gitignore: List[str] = []
        if self.settings.use_ignore_file:
            gitignore = load_ignore_file(root / GITIGNORE_FILE)
        towerignore = load_ignore_file(root / TOWERIGNORE_FILE)

        manual = clean_pattern_lines(self.settings.manual_ignore_patterns)
        try:
            compile_spec(manual)
        except Exception as e:
            logger.warning("Ignoring malformed manual ignore patterns: %s", e)
            manual = []

        return IgnorePatterns(
            builtin=self.builtin_patterns,
            gitignore=tuple(gitignore),
            towerignore=tuple(towerignore),
            manual=tuple(manual),
        )

    def _compiled(self, workspace: Workspace) -> _CompiledIgnore:
        with self._lock:
            entry = self._cache.get(workspace.id)
            if entry is not None:
                return entry

            patterns = self.load_patterns(workspace)
            combined = patterns.combined()
            globs: Set[str] = set()
            for pattern in combined:
                globs.update(pattern_to_globs(pattern))

            entry = _CompiledIgnore(
                patterns=patterns,
                spec=compile_spec(combined),
                globs=globs,
                coarse=compile_spec(sorted(globs)),
            )
            self._cache[workspace.id] = entry
            logger.debug(
                "Compiled %d ignore patterns for workspace %s", len(combined), workspace.name
            )
            return entry

    def patterns(self, workspace: Workspace) -> IgnorePatterns:
        return self._compiled(workspace).patterns

    # --- Matching ---

    def relative_key(self, absolute_path: str, workspace: Workspace, is_dir: bool) -> str:
        rel = os.path.relpath(absolute_path, workspace.root_path)
        if rel == ".":
            return ""
        if rel == ".." or rel.startswith(".." + os.sep):
            raise ValueError(f"{absolute_path} is outside workspace {workspace.root_path}")
        rel = to_posix(rel)
        return rel + "/" if is_dir else rel

    def is_ignored(self, absolute_path: str, workspace: Workspace,
                   is_dir: Optional[bool] = None) -> bool:
        """
        Fine gitignore-style check. `is_dir` defaults to asking the filesystem;
        directories are matched with a trailing slash so 'build/' patterns apply.
        """
        if is_dir is None:
            is_dir = os.path.isdir(absolute_path)
        key = self.relative_key(absolute_path, workspace, is_dir)
        if not key:
            return False
        return self._compiled(workspace).spec.match_file(key)

    def exclude_globs(self, workspace: Workspace) -> Set[str]:
        return set(self._compiled(workspace).globs)

    def is_excluded_coarse(self, relative_posix: str, workspace: Workspace) -> bool:
        """Coarse glob check used to prune walks. May disagree with `is_ignored`."""
        if not relative_posix:
            return False
        return self._compiled(workspace).coarse.match_file(relative_posix)

    # --- Invalidation ---

    def invalidate(self, workspace: Workspace) -> None:
        with self._lock:
            self._cache.pop(workspace.id, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._cache.clear()

    def handle_file_event(self, path: str, workspaces: Iterable[Workspace]) -> Optional[Workspace]:
        """
        Called for file create/change/delete events. Invalidates the workspace
        whose ignore file changed and returns it.
        """
        parent, name = os.path.split(os.path.abspath(path))
        if name not in IGNORE_FILE_NAMES:
            return None
        for workspace in workspaces:
            if os.path.normcase(parent) == os.path.normcase(workspace.root_path):
                logger.info("Ignore file changed in workspace %s: %s", workspace.name, name)
                self.invalidate(workspace)
                return workspace
        return None

    def apply_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.invalidate_all()
        logger.info("Ignore pattern configuration changed, clearing cache")

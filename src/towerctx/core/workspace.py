# src/towerctx/core/workspace.py
import hashlib
import logging
import os
import re
from dataclasses import replace
from typing import List, Optional, Tuple

from towerctx.events import EventEmitter
from towerctx.models import Workspace

logger = logging.getLogger(__name__)


def make_workspace_id(name: str, root_path: str) -> str:
    """Sanitized folder name plus a short path hash, unique per root."""
    safe_name = re.sub(r"[^a-zA-Z0-9]", "", name) or "workspace"
    digest = hashlib.sha1(root_path.encode("utf-8")).hexdigest()[:8]
    return f"{safe_name}_{digest}"


class WorkspaceRegistry:
    """
    Enumerates the project roots. Emits ("added" | "removed", workspace)
    on `changed` after every mutation.
    """

    def __init__(self, roots=()):
        self._workspaces: List[Workspace] = []
        self.changed: EventEmitter[Tuple[str, Workspace]] = EventEmitter("workspaces")
        for root in roots:
            self.add(root)

    def add(self, root_path, name: Optional[str] = None) -> Workspace:
        resolved = os.path.abspath(os.path.expanduser(str(root_path)))
        if not os.path.isdir(resolved):
            raise ValueError(f"Invalid directory '{resolved}'")
        existing = self.find_by_path(resolved)
        if existing is not None:
            return existing

        display = name or os.path.basename(resolved.rstrip(os.sep)) or "project"
        workspace = Workspace(
            id=make_workspace_id(display, resolved),
            name=display,
            root_path=resolved,
            index=len(self._workspaces),
        )
        self._workspaces.append(workspace)
        logger.debug("Workspace added: %s (%s)", workspace.name, workspace.root_path)
        self.changed.emit(("added", workspace))
        return workspace

    def remove(self, workspace_id: str) -> Optional[Workspace]:
        target = self.get(workspace_id)
        if target is None:
            return None
        remaining = [w for w in self._workspaces if w.id != workspace_id]
        self._workspaces = [replace(w, index=i) for i, w in enumerate(remaining)]
        logger.debug("Workspace removed: %s", target.name)
        self.changed.emit(("removed", target))
        return target

    def get(self, workspace_id: str) -> Optional[Workspace]:
        for workspace in self._workspaces:
            if workspace.id == workspace_id:
                return workspace
        return None

    def find_by_path(self, root_path: str) -> Optional[Workspace]:
        for workspace in self._workspaces:
            if workspace.root_path == root_path:
                return workspace
        return None

    def owner_of(self, path: str) -> Optional[Workspace]:
        """The workspace whose root contains `path` (deepest root wins)."""
        candidates = [
            w for w in self._workspaces
            if path == w.root_path or path.startswith(w.root_path.rstrip(os.sep) + os.sep)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda w: len(w.root_path))

    @property
    def workspaces(self) -> List[Workspace]:
        return list(self._workspaces)

    def __len__(self) -> int:
        return len(self._workspaces)

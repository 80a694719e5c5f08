# src/towerctx/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class TreeStructureError(RuntimeError):
    """Raised when discovery or rendering produces an inconsistent tree."""


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    WORKSPACE_ROOT = "workspace-root"


@dataclass(frozen=True)
class Workspace:
    """One project root tracked as a unit of discovery."""
    id: str
    name: str
    root_path: str
    index: int = 0


@dataclass(eq=False)
class FileNode:
    """
    A file, directory or workspace root in the discovered forest.
    Children are owned by the node; `parent` is a back-reference only.
    """
    id: str
    label: str
    absolute_path: str
    relative_path: str
    kind: NodeKind
    workspace: Workspace
    checked: bool = False
    checkable: bool = True
    visible: bool = True
    size: Optional[int] = None
    extension: Optional[str] = None
    children: List["FileNode"] = field(default_factory=list, repr=False)
    parent: Optional["FileNode"] = field(default=None, repr=False)

    @property
    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE

    @property
    def is_container(self) -> bool:
        return self.kind is not NodeKind.FILE

    def add_child(self, child: "FileNode") -> None:
        if child.parent is not None:
            raise TreeStructureError(
                f"{child.absolute_path} already has parent {child.parent.absolute_path}"
            )
        if self.is_file:
            raise TreeStructureError(f"Cannot attach {child.absolute_path} under file {self.absolute_path}")
        child.parent = self
        self.children.append(child)

    @classmethod
    def workspace_root(cls, workspace: Workspace) -> "FileNode":
        return cls(
            id=f"workspace:{workspace.id}",
            label=workspace.name,
            absolute_path=workspace.root_path,
            relative_path="",
            kind=NodeKind.WORKSPACE_ROOT,
            workspace=workspace,
        )

    @classmethod
    def file(cls, absolute_path: str, relative_path: str, workspace: Workspace,
             size: Optional[int] = None) -> "FileNode":
        label = _label_for(absolute_path)
        extension = label.rsplit(".", 1)[1] if "." in label else None
        return cls(
            id=f"file:{workspace.id}:{relative_path}",
            label=label,
            absolute_path=absolute_path,
            relative_path=relative_path,
            kind=NodeKind.FILE,
            workspace=workspace,
            size=size,
            extension=extension,
        )

    @classmethod
    def directory(cls, absolute_path: str, relative_path: str, workspace: Workspace) -> "FileNode":
        return cls(
            id=f"dir:{workspace.id}:{relative_path}",
            label=_label_for(absolute_path),
            absolute_path=absolute_path,
            relative_path=relative_path,
            kind=NodeKind.DIRECTORY,
            workspace=workspace,
        )


def _label_for(path: str) -> str:
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1] or path


@dataclass(frozen=True)
class IgnorePatterns:
    """Pattern sources for one workspace, in precedence order."""
    builtin: Tuple[str, ...] = ()
    gitignore: Tuple[str, ...] = ()
    towerignore: Tuple[str, ...] = ()
    manual: Tuple[str, ...] = ()

    def combined(self) -> List[str]:
        return [*self.builtin, *self.gitignore, *self.towerignore, *self.manual]


@dataclass(frozen=True)
class TokenCountSnapshot:
    count: int = 0
    is_counting: bool = False
    file_tokens: int = 0
    issue_tokens: int = 0

    def as_payload(self) -> dict:
        return {
            "count": self.count,
            "isCounting": self.is_counting,
            "fileTokens": self.file_tokens,
            "issueTokens": self.issue_tokens,
        }


@dataclass(frozen=True)
class TreeEntry:
    """A path to draw in the project tree; a trailing '/' marks a directory entry."""
    origin_path: str
    tree_path: str


@dataclass(frozen=True)
class ContextResult:
    context: str
    file_count: int

# src/towerctx/core/context.py
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from towerctx.config import ContextConfig, ProjectTreeMode
from towerctx.core.scanner import iter_nodes
from towerctx.core.selection import get_checked_files
from towerctx.core.tree import render_tree
from towerctx.models import ContextResult, FileNode, NodeKind, TreeEntry
from towerctx.utils.files import BinaryFileError, read_text_file, to_posix

logger = logging.getLogger(__name__)

OUTPUT_FILE_NAME = "clipboard-content"


@dataclass(frozen=True)
class GenerateOptions:
    """Per-call inputs. `prefix`/`suffix` of None fall back to the config."""
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    external_blocks: Sequence[str] = field(default_factory=tuple)
    primary_root: Optional[str] = None
    output_file_name: str = OUTPUT_FILE_NAME


def trim_blank_lines(content: str) -> str:
    """Drops leading and trailing whitespace-only lines, keeping inner text intact."""
    lines = content.splitlines(keepends=True)
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    end = len(lines)
    while end > start and not lines[end - 1].strip():
        end -= 1
    trimmed = lines[start:end]
    if trimmed:
        trimmed[-1] = trimmed[-1].rstrip("\r\n")
    return "".join(trimmed)


def block_fields(node: FileNode) -> dict:
    base = os.path.basename(node.absolute_path)
    stem, ext = os.path.splitext(base)
    return {
        "{fileNameWithExtension}": base,
        "{rawFilePath}": "/" + to_posix(node.relative_path),
        "{fileName}": stem,
        "{fileExtension}": ext,
        "{fullPath}": node.absolute_path,
    }


def substitute(template: str, values: dict) -> str:
    for placeholder, value in values.items():
        template = template.replace(placeholder, value)
    return template


class ContextAssembler:
    """Turns the checked files, the project tree and external blocks into one string."""

    def __init__(self, config: Optional[ContextConfig] = None):
        self.config = config or ContextConfig()

    # --- File blocks ---

    def format_block(self, node: FileNode, content: str) -> str:
        if self.config.block_trim_lines:
            content = trim_blank_lines(content)
        block = substitute(self.config.block_template, block_fields(node))
        # Content goes in last so placeholder-like text inside it stays literal.
        return block.replace("{fileContent}", content)

    async def _read_block(self, node: FileNode) -> Optional[str]:
        try:
            content = await asyncio.to_thread(read_text_file, node.absolute_path)
        except BinaryFileError:
            logger.warning("Skipping binary file %s", node.relative_path)
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Error reading file %s: %s", node.relative_path, e)
            return None
        return self.format_block(node, content)

    # --- Project tree ---

    def tree_entries(self, forest: Sequence[FileNode]) -> List[TreeEntry]:
        """Entries for the configured mode. With several roots, paths start with the root name."""
        mode = self.config.tree_mode
        multi_root = sum(1 for node in forest if node.kind is NodeKind.WORKSPACE_ROOT) > 1

        def tree_path(node: FileNode) -> str:
            path = to_posix(node.relative_path)
            return f"{node.workspace.name}/{path}" if multi_root else path

        if mode is ProjectTreeMode.SELECTED_ONLY:
            return [TreeEntry(node.absolute_path, tree_path(node)) for node in get_checked_files(forest)]

        entries = []
        for node in iter_nodes(forest):
            if node.kind is NodeKind.FILE and mode is ProjectTreeMode.FILES_AND_DIRS:
                entries.append(TreeEntry(node.absolute_path, tree_path(node)))
            elif node.kind is NodeKind.DIRECTORY and mode is ProjectTreeMode.DIRS_ONLY:
                entries.append(TreeEntry(node.absolute_path, tree_path(node) + "/"))
        return entries

    def render_project_tree(self, forest: Sequence[FileNode], primary_root: Optional[str] = None) -> str:
        if self.config.tree_mode is ProjectTreeMode.OFF:
            return ""
        return self.render_entries(self.tree_entries(forest), primary_root or primary_workspace_root(forest))

    def render_entries(self, entries: Sequence[TreeEntry], root: str) -> str:
        """Renders entries already taken from the forest. Safe to run off the event loop."""
        if self.config.tree_mode is ProjectTreeMode.OFF:
            return ""
        label = os.path.basename(root.rstrip("/\\")) or root
        return render_tree(
            entries,
            label,
            line_budget=self.config.tree_line_budget,
            show_sizes=self.config.tree_show_sizes,
        )

    def tree_block(self, tree: str) -> str:
        if self.config.tree_mode is ProjectTreeMode.OFF:
            return ""
        return self.config.tree_template.replace("{projectTree}", tree)

    # --- Assembly ---

    def wrap(self, blocks: str, external: str, tree: str, file_count: int,
             workspace_root: str, output_file_name: str = OUTPUT_FILE_NAME) -> str:
        template = self.config.wrapper_template
        if template is None:
            if external and blocks:
                return external + self.config.block_separator + blocks
            return external or blocks

        external_section = f"{external}\n" if external else ""
        values = {
            "{timestamp}": datetime.now(timezone.utc).isoformat(),
            "{fileCount}": str(file_count),
            "{workspaceRoot}": workspace_root,
            "{outputFileName}": output_file_name,
            "{treeBlock}": self.tree_block(tree),
            "{githubIssues}": external_section,
            "{externalBlocks}": external_section,
        }
        wrapped = substitute(template, values)
        # File text goes in last, as in the per-file blocks.
        return wrapped.replace("{blocks}", blocks)

    async def generate(self, forest: Sequence[FileNode],
                       options: Optional[GenerateOptions] = None) -> ContextResult:
        options = options or GenerateOptions()
        prefix = self.config.prefix if options.prefix is None else options.prefix
        suffix = self.config.suffix if options.suffix is None else options.suffix
        external_blocks = [b for b in options.external_blocks if b]
        root = options.primary_root or primary_workspace_root(forest)

        checked = get_checked_files(forest)
        if not checked and not external_blocks:
            body = ""
            if forest and self.config.tree_mode in (ProjectTreeMode.FILES_AND_DIRS, ProjectTreeMode.DIRS_ONLY):
                body = self.tree_block(self.render_project_tree(forest, root))
            return ContextResult(apply_prefix_suffix(body, prefix, suffix), 0)

        # The tree must list the selection as it is now, before any read yields.
        entries = self.tree_entries(forest) if self.config.tree_mode is not ProjectTreeMode.OFF else []
        results = await asyncio.gather(*(self._read_block(node) for node in checked))
        blocks = [block for block in results if block is not None]
        tree = await asyncio.to_thread(self.render_entries, entries, root)

        separator = self.config.block_separator
        context = self.wrap(
            separator.join(blocks),
            separator.join(external_blocks),
            tree,
            len(blocks),
            root,
            options.output_file_name,
        )
        logger.debug("Generated context for %d of %d checked files", len(blocks), len(checked))
        return ContextResult(apply_prefix_suffix(context, prefix, suffix), len(blocks))


def apply_prefix_suffix(body: str, prefix: str, suffix: str) -> str:
    if not body:
        return "\n".join(part for part in (prefix, suffix) if part)
    if prefix:
        body = prefix + "\n" + body
    if suffix:
        if not body.endswith("\n"):
            body += "\n"
        body += suffix
    return body


def primary_workspace_root(forest: Sequence[FileNode]) -> str:
    for node in forest:
        if node.kind is NodeKind.WORKSPACE_ROOT:
            return node.workspace.root_path
    return os.getcwd()

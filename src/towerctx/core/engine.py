# src/towerctx/core/engine.py
import asyncio
import logging
import os
from typing import List, Optional, Sequence

import pyperclip

from towerctx.config import REFRESH_DEBOUNCE_SECONDS, DEFAULT_DEBOUNCE_SECONDS, Settings
from towerctx.core.context import ContextAssembler, GenerateOptions
from towerctx.core.ignore import IgnoreResolver
from towerctx.core.scanner import FileTreeBuilder, find_node
from towerctx.core.selection import (
    ConfirmLargeFile,
    SelectionModel,
    SelectionStore,
    get_checked_files,
    get_checked_paths,
)
from towerctx.core.tokens import TokenCounter
from towerctx.core.workspace import WorkspaceRegistry
from towerctx.models import ContextResult, FileNode, Workspace
from towerctx.utils.tokenizer import TokenizeFn

logger = logging.getLogger(__name__)


class ContextEngine:
    """
    Owns the workspaces, the discovered forest and every component working
    on it. The forest is only replaced whole, under `_lock`, on the event loop.

    Selection methods are synchronous; token recounts they trigger need a
    running loop and are skipped (with a debug log) without one.
    """

    def __init__(self, registry: Optional[WorkspaceRegistry] = None,
                 settings: Optional[Settings] = None,
                 tokenize: Optional[TokenizeFn] = None,
                 state_file: Optional[str] = None,
                 debounce: float = DEFAULT_DEBOUNCE_SECONDS):
        self.registry = registry or WorkspaceRegistry()
        self.settings = settings or Settings()
        self.forest: List[FileNode] = []

        self.resolver = IgnoreResolver(self.settings)
        self.builder = FileTreeBuilder(self.resolver)
        self.selection = SelectionModel(
            self.settings.max_file_size_warning_kb, on_change=self._on_selection_changed
        )
        self.counter = TokenCounter(self.checked_files, tokenize=tokenize, debounce=debounce)
        self.assembler = ContextAssembler(self.settings.context_config())
        self.store = SelectionStore(state_file) if state_file else None

        self.tree_changed = self.selection.tree_changed
        self.selection_changed = self.selection.selection_changed
        self.token_updates = self.counter.updates

        self._lock = asyncio.Lock()
        self._loaded_store = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._registry_subscription = self.registry.changed.subscribe(self._on_workspaces_changed)

    # --- Discovery ---

    async def refresh(self) -> List[FileNode]:
        """Rebuilds the whole forest, keeping the checked state of surviving paths."""
        async with self._lock:
            preserve = get_checked_paths(self.forest)
            if self._persisting and not self._loaded_store:
                preserve |= self.store.load()
                self._loaded_store = True

            workspaces = self.registry.workspaces
            forest = await asyncio.to_thread(self.builder.discover_all, workspaces, preserve)

            kept = get_checked_paths(forest)
            logger.info(
                "Selection preservation: %d of %d checked paths kept, %d lost, %d added",
                len(kept & preserve), len(preserve), len(preserve - kept), len(kept - preserve),
            )
            self.forest = forest

        self.tree_changed.emit(None)
        self.counter.schedule(REFRESH_DEBOUNCE_SECONDS)
        self._save_selection()
        return self.forest

    def _on_workspaces_changed(self, event) -> None:
        action, workspace = event
        if action == "removed":
            self.resolver.invalidate(workspace)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Workspace %s %s outside an event loop; refresh deferred", workspace.name, action)
            return
        self._refresh_task = loop.create_task(self.refresh())

    def add_workspace(self, root_path, name: Optional[str] = None) -> Workspace:
        return self.registry.add(root_path, name)

    def remove_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return self.registry.remove(workspace_id)

    # --- Selection ---

    def find_node(self, path: str) -> Optional[FileNode]:
        return find_node(self.forest, os.path.abspath(path))

    def checked_files(self) -> List[FileNode]:
        return get_checked_files(self.forest)

    def toggle(self, node: FileNode, checked: bool, confirm: Optional[ConfirmLargeFile] = None) -> bool:
        return self.selection.toggle(node, checked, confirm)

    def toggle_path(self, path: str, checked: bool, confirm: Optional[ConfirmLargeFile] = None) -> bool:
        node = self.find_node(path)
        if node is None:
            raise ValueError(f"Path is not in the file tree: {path}")
        return self.toggle(node, checked, confirm)

    def toggle_all(self, checked: bool) -> bool:
        return self.selection.toggle_all(self.forest, checked)

    def invert_all(self) -> bool:
        return self.selection.invert_all(self.forest)

    def clear(self) -> bool:
        return self.selection.clear(self.forest)

    def all_selected(self) -> bool:
        return self.selection.all_selected(self.forest)

    def _on_selection_changed(self) -> None:
        self._save_selection()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Selection changed outside an event loop; token recount skipped")
            return
        self.counter.schedule()

    @property
    def _persisting(self) -> bool:
        return self.store is not None and self.settings.persist_selection

    def _save_selection(self) -> None:
        if self._persisting:
            self.store.save(self.forest)

    # --- Tokens ---

    def set_external_tokens(self, count: int, is_counting: bool = False) -> None:
        self.counter.set_external_tokens(count, is_counting)

    async def wait_for_tokens(self):
        return await self.counter.wait_idle()

    # --- Output ---

    async def generate_context(self, prefix: Optional[str] = None, suffix: Optional[str] = None,
                               external_blocks: Sequence[str] = ()) -> ContextResult:
        async with self._lock:
            options = GenerateOptions(prefix=prefix, suffix=suffix, external_blocks=tuple(external_blocks))
            return await self.assembler.generate(self.forest, options)

    async def copy_to_clipboard(self, prefix: Optional[str] = None, suffix: Optional[str] = None,
                                external_blocks: Sequence[str] = (),
                                result: Optional[ContextResult] = None) -> ContextResult:
        """
        Places the context on the system clipboard. A `result` from an earlier
        `generate_context` call is copied as is; otherwise one is generated.
        """
        if result is None:
            result = await self.generate_context(prefix, suffix, external_blocks)
        if not result.context:
            logger.warning("Nothing to copy: no files selected")
            return result
        pyperclip.copy(result.context)
        logger.info("Copied context for %d file(s) to the clipboard", result.file_count)
        return result

    # --- Configuration and file events ---

    async def apply_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.resolver.apply_settings(settings)
        self.assembler.config = settings.context_config()
        self.selection.max_file_size_warning_kb = settings.max_file_size_warning_kb
        await self.refresh()

    async def handle_file_event(self, path: str) -> bool:
        """
        Refreshes when `path` belongs to a workspace. Ignore-file changes also
        drop that workspace's compiled patterns first. Returns True on refresh.
        """
        absolute = os.path.abspath(path)
        changed = self.resolver.handle_file_event(absolute, self.registry.workspaces)
        if changed is None and self.registry.owner_of(absolute) is None:
            return False
        await self.refresh()
        return True

    def close(self) -> None:
        self._save_selection()
        self._registry_subscription.dispose()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.counter.close()
        self.tree_changed.clear()
        self.selection_changed.clear()

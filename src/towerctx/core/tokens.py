# src/towerctx/core/tokens.py
import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from towerctx.config import DEFAULT_DEBOUNCE_SECONDS
from towerctx.events import EventEmitter
from towerctx.models import FileNode, TokenCountSnapshot
from towerctx.utils.files import BinaryFileError, FileTooLargeError, read_text_file
from towerctx.utils.tokenizer import TokenizeFn, Tokenizer

logger = logging.getLogger(__name__)

YIELD_EVERY = 50
DEFAULT_READ_TIMEOUT = 10.0
DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024


class CancellationToken:
    """Valid while the counter's live version equals the version captured at creation."""

    def __init__(self, counter: "TokenCounter", version: int):
        self._counter = counter
        self.version = version

    @property
    def cancelled(self) -> bool:
        return self._counter.version != self.version


class TokenCounter:
    """
    Debounced, cancellable token counting over the checked files.

    Every trigger bumps `version` and re-arms the debounce timer; only a timer
    that fires starts a job. A job publishes only if its token is still valid
    when it finishes, so a superseded job never overwrites a newer total.

    Must be driven from a running asyncio event loop.
    """

    def __init__(self, files_source: Callable[[], List[FileNode]],
                 tokenize: Optional[TokenizeFn] = None,
                 debounce: float = DEFAULT_DEBOUNCE_SECONDS,
                 read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT,
                 max_file_bytes: int = DEFAULT_MAX_FILE_BYTES):
        self.files_source = files_source
        self.tokenize = tokenize or Tokenizer.count
        self.debounce = debounce
        self.read_timeout = read_timeout
        self.max_file_bytes = max_file_bytes
        self.updates: EventEmitter[TokenCountSnapshot] = EventEmitter("token-update")

        self.version = 0
        self._file_tokens = 0
        self._issue_tokens = 0
        self._counting_files = False
        self._counting_issues = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._job: Optional[asyncio.Task] = None

    # --- Published state ---

    @property
    def snapshot(self) -> TokenCountSnapshot:
        return TokenCountSnapshot(
            count=self._file_tokens + self._issue_tokens,
            is_counting=self._counting_files or self._counting_issues,
            file_tokens=self._file_tokens,
            issue_tokens=self._issue_tokens,
        )

    def _publish(self) -> None:
        self.updates.emit(self.snapshot)

    # --- Triggers ---

    def schedule(self, delay: Optional[float] = None) -> int:
        """Invalidates any running job and (re)arms the debounce timer."""
        loop = asyncio.get_running_loop()
        self.version += 1
        if self._timer is not None:
            self._timer.cancel()
        version = self.version
        self._timer = loop.call_later(
            self.debounce if delay is None else delay, self._start_job, version
        )
        return version

    def _start_job(self, version: int) -> None:
        self._timer = None
        if version != self.version:
            return
        self._job = asyncio.get_running_loop().create_task(
            self._count(CancellationToken(self, version))
        )

    def reset(self) -> None:
        self.version += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._file_tokens = 0
        self._issue_tokens = 0
        self._counting_files = False
        self._counting_issues = False
        self._publish()
        logger.debug("Token count reset to 0")

    def set_external_tokens(self, count: int, is_counting: bool = False) -> None:
        """Sub-total for content that is not a local file (issues and the like)."""
        self._issue_tokens = count
        self._counting_issues = is_counting
        self._publish()

    # --- Counting job ---

    async def _count(self, token: CancellationToken) -> None:
        files = self.files_source()
        if not files:
            if token.cancelled:
                return
            self._file_tokens = 0
            self._counting_files = False
            self._publish()
            logger.debug("Token count reset to 0 (version %d, no files selected)", token.version)
            return

        logger.debug("Token counting started (version %d) for %d files", token.version, len(files))
        self._counting_files = True
        self._publish()

        total = 0
        for processed, node in enumerate(files, start=1):
            if token.cancelled:
                logger.debug("Token counting cancelled (version %d)", token.version)
                return
            tokens = await self._count_file(node.absolute_path)
            if tokens is not None:
                total += tokens
            if processed % YIELD_EVERY == 0:
                await asyncio.sleep(0)
                if token.cancelled:
                    logger.debug("Token counting cancelled during yield (version %d)", token.version)
                    return

        if token.cancelled:
            logger.debug("Token counting cancelled before publish (version %d)", token.version)
            return
        self._file_tokens = total
        self._counting_files = False
        self._publish()
        logger.debug("Token counting finished (version %d): %d tokens", token.version, total)

    async def _count_file(self, path: str) -> Optional[int]:
        try:
            read = asyncio.to_thread(read_text_file, path, self.max_file_bytes)
            text = await asyncio.wait_for(read, self.read_timeout)
        except FileNotFoundError:
            logger.warning("File not found during token count: %s", path)
            return None
        except FileTooLargeError:
            logger.warning("Skipping large file during token count: %s", path)
            return None
        except BinaryFileError:
            logger.debug("Skipping binary file during token count: %s", path)
            return None
        except asyncio.TimeoutError:
            logger.warning("Timed out reading %s for token count", path)
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Error reading %s for token count: %s", path, e)
            return None
        try:
            return self.tokenize(text)
        except Exception as e:
            logger.error("Error tokenizing %s: %s", path, e)
            return None

    # --- One-off counting ---

    def count_text(self, text: str) -> int:
        try:
            return self.tokenize(text)
        except Exception as e:
            logger.error("Error counting tokens for text: %s", e)
            return 0

    def count_files(self, paths: Iterable[str]) -> int:
        """Synchronous count for a small explicit list, outside the debounce machinery."""
        total = 0
        for path in paths:
            try:
                total += self.tokenize(read_text_file(path, self.max_file_bytes))
            except (OSError, ValueError) as e:
                logger.warning("Error counting tokens for file %s: %s", path, e)
        return total

    # --- Lifecycle ---

    @property
    def pending(self) -> bool:
        return self._timer is not None or (self._job is not None and not self._job.done())

    async def wait_idle(self, poll: float = 0.01) -> TokenCountSnapshot:
        """Waits until no timer is armed and no job is running."""
        while self.pending:
            if self._job is not None and not self._job.done():
                await asyncio.wait({self._job})
            else:
                await asyncio.sleep(poll)
        return self.snapshot

    def close(self) -> None:
        self.version += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._job is not None and not self._job.done():
            self._job.cancel()
        self.updates.clear()

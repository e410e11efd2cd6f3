"""Pipeline context: the resources every scan shares, with a lifecycle.

Replaces process-wide singletons. One context holds the storage handle, the
fetcher (and its browser session, if any source needs one), the per-key
write locks and the concurrency pool. Anything injected by the caller is
used as-is and not closed here.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime
from types import TracebackType

from crawler.core.config import FetchStrategy, Settings, Source
from crawler.core.db import JobStore, SQLiteJobStore
from crawler.core.errors import StorageError, UnknownSourceError
from crawler.extract.ai import AIFieldCompleter
from crawler.fetch.browser import BrowserSession
from crawler.fetch.fetcher import Fetcher, SourceFetcher
from crawler.pipeline.dedup import Deduplicator

logger = logging.getLogger(__name__)


class PipelineContext:
    """Async context manager owning store, fetcher, browser and pool.

    Usage::

        async with PipelineContext(settings) as ctx:
            report = await ScanOrchestrator(ctx).scan_all()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: JobStore | None = None,
        fetcher: Fetcher | None = None,
        completer: AIFieldCompleter | None = None,
    ) -> None:
        self.settings = settings
        self.semaphore = asyncio.Semaphore(settings.scan.max_concurrency)
        self._sources: dict[str, Source] = {source.id: source for source in settings.sources}
        self._store = store
        self._fetcher = fetcher
        self._completer = completer
        self._deduplicator: Deduplicator | None = None
        self._stack: AsyncExitStack | None = None

    # --- Lifecycle ---

    async def __aenter__(self) -> "PipelineContext":
        stack = AsyncExitStack()
        try:
            if self._store is None:
                store = SQLiteJobStore.open(self.settings.database)
                stack.push_async_callback(store.close)
                self._store = store

            if self._fetcher is None:
                browser = None
                if self._needs_browser():
                    browser = await stack.enter_async_context(
                        BrowserSession(self.settings.browser, user_agent=self.settings.fetch.user_agent),
                    )
                fetcher = SourceFetcher(self.settings.fetch, browser=browser)
                stack.push_async_callback(fetcher.aclose)
                self._fetcher = fetcher

            if self._completer is None and self.settings.ai.enabled:
                self._completer = AIFieldCompleter(self.settings.ai)
                logger.info("AI field completion enabled (%s)", self.settings.ai.provider)

            self._deduplicator = Deduplicator(self._store)
            await self._restore_scan_state()
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None

    # --- Resources ---

    @property
    def store(self) -> JobStore:
        if self._store is None:
            msg = "PipelineContext not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._store

    @property
    def fetcher(self) -> Fetcher:
        if self._fetcher is None:
            msg = "PipelineContext not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._fetcher

    @property
    def deduplicator(self) -> Deduplicator:
        if self._deduplicator is None:
            msg = "PipelineContext not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._deduplicator

    @property
    def completer(self) -> AIFieldCompleter | None:
        return self._completer

    # --- Sources ---

    def get_source(self, source_id: str) -> Source:
        try:
            return self._sources[source_id]
        except KeyError:
            raise UnknownSourceError(source_id) from None

    def enabled_sources(self) -> list[Source]:
        return [source for source in self._sources.values() if source.enabled]

    def all_sources(self) -> list[Source]:
        return list(self._sources.values())

    async def mark_scanned(self, source: Source, scanned_at: datetime) -> None:
        """Persist a completed visit and update the in-memory source."""
        await self.store.mark_source_scanned(source.id, scanned_at)
        source.last_scanned_at = scanned_at

    # --- Private helpers ---

    def _needs_browser(self) -> bool:
        return any(
            source.strategy is FetchStrategy.RENDERED_PAGE for source in self._sources.values()
        )

    async def _restore_scan_state(self) -> None:
        try:
            last_scanned = await self.store.get_last_scanned()
        except StorageError as e:
            logger.warning("Could not restore source scan state: %s", e)
            return
        for source_id, scanned_at in last_scanned.items():
            source = self._sources.get(source_id)
            if source is not None:
                source.last_scanned_at = scanned_at

"""Scan orchestrator: runs every source's pipeline under a shared pool.

Per source, strictly in order:
  1. Fetch (page by page for paginated listings, with a pause in between)
  2. Extract candidates from the fetched document
  3. Complete unknown fields with a model (optional)
  4. Reconcile + write through the deduplicator
  5. Mark the source scanned

Sources run concurrently, at most ``scan.max_concurrency`` at a time. When
the cycle deadline elapses, sources still waiting for a slot are recorded as
skipped and sources in flight are cancelled with their partial counts kept.
A failure never leaves its smallest scope: a candidate's storage error does
not fail its source, a source's fetch error does not fail the cycle.
"""

import asyncio
import json
import logging
from datetime import datetime

from crawler.core.config import Source
from crawler.core.errors import AIExtractionError, ScannedPdfError, StorageError
from crawler.core.schemas import (
    Decision,
    DecisionKind,
    FailureStage,
    FetchError,
    JobCandidate,
    RawDocument,
    ScanOutcome,
    ScanReport,
    SourceStatus,
)
from crawler.extract.extractor import extract
from crawler.extract.strategies import get_strategy
from crawler.fetch.pacing import random_sleep
from crawler.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

_DEADLINE_REASON = "cycle deadline exceeded"


class ScanOrchestrator:
    """Drives scan cycles over the sources of one pipeline context."""

    def __init__(self, ctx: PipelineContext) -> None:
        self._ctx = ctx

    @property
    def _deadline(self) -> float:
        return self._ctx.settings.scan.cycle_deadline_seconds

    async def scan_all(self) -> ScanReport:
        """Scan every enabled source. Always returns a report.

        No enabled sources is a valid state and yields an empty report.
        """
        started_at = datetime.now()
        sources = self._ctx.enabled_sources()
        outcomes = {source.id: ScanOutcome(source_id=source.id) for source in sources}

        if not sources:
            logger.info("No enabled sources configured - nothing to scan")
            return ScanReport(outcomes={}, started_at=started_at, finished_at=datetime.now())

        logger.info(
            "Starting scan of %d source(s), concurrency %d, deadline %.0fs",
            len(sources), self._ctx.settings.scan.max_concurrency, self._deadline,
        )
        tasks = {
            asyncio.create_task(self._run_source(source, outcomes[source.id])): source.id
            for source in sources
        }
        deadline_exceeded = await self._wait_with_deadline(tasks, outcomes)

        report = ScanReport(
            outcomes=outcomes,
            started_at=started_at,
            finished_at=datetime.now(),
            deadline_exceeded=deadline_exceeded,
        )
        totals = report.totals
        logger.info(
            "Scan finished in %.1fs: %d created, %d updated, %d duplicate, %d failed",
            report.duration_seconds, totals.created, totals.updated,
            totals.skipped_duplicate, totals.failed,
        )
        return report

    async def scan_one(self, source_id: str) -> ScanOutcome:
        """Scan a single source, enabled or not.

        Safe to call while ``scan_all`` runs: the outcome is its own object,
        the pool is shared and writes are serialized per identity key.

        Raises:
            UnknownSourceError: If no source has this id.
        """
        source = self._ctx.get_source(source_id)
        if not source.enabled:
            logger.info("Source '%s' is disabled - scanning on request", source.id)
        outcome = ScanOutcome(source_id=source.id)
        task = asyncio.create_task(self._run_source(source, outcome))
        await self._wait_with_deadline({task: source.id}, {source.id: outcome})
        return outcome

    # --- Cycle control ---

    async def _wait_with_deadline(
        self,
        tasks: dict[asyncio.Task[None], str],
        outcomes: dict[str, ScanOutcome],
    ) -> bool:
        """Wait for tasks until the deadline. Returns True if it elapsed."""
        try:
            _, pending = await asyncio.wait(tasks, timeout=self._deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        if not pending:
            return False

        logger.warning(
            "Cycle deadline of %.0fs exceeded - cancelling %d source(s)",
            self._deadline, len(pending),
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            _settle_after_deadline(outcomes[tasks[task]])
        return True

    async def _run_source(self, source: Source, outcome: ScanOutcome) -> None:
        async with self._ctx.semaphore:
            outcome.started_at = datetime.now()
            try:
                await self._scan_source(source, outcome)
            except Exception as e:
                logger.exception("Unexpected failure scanning '%s'", source.id)
                outcome.record_failure(FailureStage.INTERNAL, f"{type(e).__name__}: {e}")
                outcome.status = SourceStatus.FAILED
            outcome.finished_at = datetime.now()

    # --- Per-source pipeline ---

    async def _scan_source(self, source: Source, outcome: ScanOutcome) -> None:
        logger.info("Scanning '%s' (%s)", source.display_name, source.strategy.value)
        strategy = get_strategy(source.strategy)
        fetch_config = self._ctx.settings.fetch
        max_pages = source.max_pages if strategy.paginates else 1
        visited: set[str] = set()
        seen_keys: dict[str, str] = {}
        url: str | None = source.url

        while url and len(visited) < max_pages:
            if visited:
                await random_sleep(
                    fetch_config.page_delay_min_seconds, fetch_config.page_delay_max_seconds,
                )
            visited.add(url)

            result = await self._ctx.fetcher.fetch(source, url)
            if isinstance(result, FetchError):
                outcome.record_failure(FailureStage.FETCH, result.describe(), url=url)
                break
            outcome.fetched += 1

            try:
                candidates = list(extract(result, source))
                next_url = strategy.next_page_url(result, source) if strategy.paginates else None
            except ScannedPdfError as e:
                candidates = await self._read_scanned_pdf(result, e, outcome)
                next_url = None
            except Exception as e:
                logger.warning("Extraction failed for '%s' (%s): %s", source.id, url, e)
                outcome.record_failure(FailureStage.EXTRACT, str(e), url=url)
                break

            outcome.extracted += len(candidates)
            for candidate in candidates:
                key = candidate.identity_key
                if key in seen_keys:
                    outcome.record_decision(_repeated_in_visit(candidate, seen_keys[key]))
                    continue
                seen_keys[key] = candidate.title
                await self._store_candidate(candidate, outcome)

            url = next_url if next_url not in visited else None

        outcome.status = _final_status(outcome)
        if outcome.status in (SourceStatus.OK, SourceStatus.NO_POSTINGS):
            try:
                await self._ctx.mark_scanned(source, datetime.now())
            except StorageError as e:
                logger.warning("Could not record scan time for '%s': %s", source.id, e)
                outcome.warnings.append(f"scan time not recorded: {e}")

        logger.info(
            "Source '%s' %s: fetched=%d extracted=%d created=%d updated=%d "
            "duplicate=%d failed=%d",
            source.id, outcome.status.value, outcome.fetched, outcome.extracted,
            outcome.created, outcome.updated, outcome.skipped_duplicate, outcome.failed,
        )

    async def _read_scanned_pdf(
        self, doc: RawDocument, error: ScannedPdfError, outcome: ScanOutcome,
    ) -> list[JobCandidate]:
        warning = f"{error}: {doc.url}"
        completer = self._ctx.completer
        if completer is None:
            logger.warning("Source '%s': %s", doc.source_id, warning)
            outcome.warnings.append(warning)
            return []

        try:
            candidate = await completer.read_scanned_pdf(doc)
        except AIExtractionError as e:
            logger.warning("%s", e)
            outcome.warnings.extend([warning, str(e)])
            return []
        if candidate is None:
            outcome.warnings.append(f"{warning} (model found no notice)")
            return []
        return [candidate]

    async def _store_candidate(self, candidate: JobCandidate, outcome: ScanOutcome) -> None:
        completer = self._ctx.completer
        if completer is not None and candidate.unknown_fields:
            try:
                candidate = await completer.complete(candidate)
            except AIExtractionError as e:
                logger.warning("%s - keeping unknown fields", e)
                outcome.warnings.append(str(e))

        try:
            decision = await self._ctx.deduplicator.apply(candidate)
        except StorageError as e:
            logger.warning("Storage failed for '%s': %s", candidate.title, e)
            outcome.record_failure(
                FailureStage.STORE, str(e), identity_key=candidate.identity_key,
            )
            return
        outcome.record_decision(decision)


def _final_status(outcome: ScanOutcome) -> SourceStatus:
    if outcome.fetched == 0:
        return SourceStatus.FAILED
    if outcome.extracted == 0:
        return SourceStatus.FAILED if outcome.failed else SourceStatus.NO_POSTINGS
    if outcome.created + outcome.updated + outcome.skipped_duplicate == 0:
        return SourceStatus.FAILED
    return SourceStatus.OK


def _repeated_in_visit(candidate: JobCandidate, first_title: str) -> Decision:
    """Skip a candidate whose identity key an earlier block of this visit already used."""
    warning = (
        f"integrity: identity key {candidate.identity_key} repeats within one visit "
        f"('{candidate.title}' after '{first_title}'); keeping the first"
    )
    logger.warning("Source '%s': %s", candidate.source_id, warning)
    return Decision(
        kind=DecisionKind.SKIP_DUPLICATE,
        identity_key=candidate.identity_key,
        content_digest=candidate.content_digest,
        warnings=[warning],
    )


def _settle_after_deadline(outcome: ScanOutcome) -> None:
    if outcome.started_at is None:
        outcome.status = SourceStatus.SKIPPED
        outcome.warnings.append(f"skipped: {_DEADLINE_REASON}")
        return
    outcome.status = SourceStatus.CANCELLED
    outcome.record_failure(FailureStage.DEADLINE, f"cancelled: {_DEADLINE_REASON}")
    outcome.finished_at = datetime.now()


def export_report_json(report: ScanReport) -> str:
    """Export a scan report as a JSON string."""
    return json.dumps(report.model_dump(mode="json"), indent=2)

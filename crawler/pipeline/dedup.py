"""Deduplicator: decide create / update / skip for each candidate.

``reconcile`` is a read-only decision against the storage collaborator.
``apply`` makes the decision and performs the matching write while holding
a lock for the candidate's identity key, so two concurrent candidates with
the same key (from overlapping scans) cannot both decide "create".
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from crawler.core.db import JobStore
from crawler.core.schemas import Decision, DecisionKind, JobCandidate, StoredJob

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def _most_recent(records: list[StoredJob]) -> StoredJob:
    return max(records, key=lambda job: (job.created_at, job.id))


class Deduplicator:
    """Reconciles candidates against stored records by identity key."""

    def __init__(self, store: JobStore, locks: KeyedLocks | None = None) -> None:
        self._store = store
        self._locks = locks or KeyedLocks()

    async def reconcile(self, candidate: JobCandidate) -> Decision:
        """Decide what should happen to candidate. Does not write.

        No record -> create. One record with the same content digest ->
        skip-duplicate, a different digest -> update. Several records with the
        same key is an integrity problem: the most recent one is used and a
        warning is attached to the decision.
        """
        key = candidate.identity_key
        digest = candidate.content_digest
        existing = await self._store.find_by_identity_key(key)

        if not existing:
            return Decision(kind=DecisionKind.CREATE, identity_key=key, content_digest=digest)

        warnings: list[str] = []
        chosen = existing[0]
        if len(existing) > 1:
            chosen = _most_recent(existing)
            warning = (
                f"integrity: {len(existing)} records share identity key {key}; "
                f"using most recent record {chosen.id}"
            )
            logger.warning("%s (source '%s')", warning, candidate.source_id)
            warnings.append(warning)

        kind = (
            DecisionKind.SKIP_DUPLICATE
            if chosen.content_digest == digest
            else DecisionKind.UPDATE
        )
        return Decision(
            kind=kind,
            identity_key=key,
            content_digest=digest,
            existing_id=chosen.id,
            warnings=warnings,
        )

    async def apply(self, candidate: JobCandidate) -> Decision:
        """Reconcile and write under the identity-key lock."""
        async with self._locks.hold(candidate.identity_key):
            decision = await self.reconcile(candidate)
            if decision.kind is DecisionKind.CREATE:
                job_id = await self._store.create_record(candidate)
                logger.debug("Created job %d: %s", job_id, candidate.title)
            elif decision.kind is DecisionKind.UPDATE and decision.existing_id is not None:
                await self._store.update_record(decision.existing_id, candidate)
                logger.debug("Updated job %d: %s", decision.existing_id, candidate.title)
        return decision

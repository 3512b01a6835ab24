"""Response store: local write-ahead cache in front of the remote response API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from compliance_engine.config.settings import get_config
from compliance_engine.errors.exceptions import (
    RemotePersistenceError,
    RemoteTimeoutError,
    ValidationError,
)
from compliance_engine.schemas.common import utcnow
from compliance_engine.schemas.response import Response, ResponseDraft, SaveAck, SaveStatus
from compliance_engine.services.draft_cache import LocalDraftCache
from compliance_engine.services.remote import RemoteAuditClient

logger = logging.getLogger(__name__)


class ResponseStore:
    """
    One current answer per (audit, question), durable across remote failures.

    Every write lands in the local cache before it is sent. The cached draft
    is dropped only once the remote store acknowledges the same content, so a
    failed or timed out write can be retried after a restart.
    """

    def __init__(
        self,
        remote: RemoteAuditClient,
        cache: LocalDraftCache,
        write_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.remote = remote
        self.cache = cache
        self.write_timeout = write_timeout or get_config().remote_write_timeout
        self._clock = clock
        self._current: dict[int, dict[str, ResponseDraft]] = {}
        # Per-key locks live only while a put holds or waits for them
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[int, str], int] = {}
        # Count of local edits staged while a put holds or waits for the key
        self._revisions: dict[tuple[int, str], int] = {}

    @asynccontextmanager
    async def _key_lock(self, key: tuple[int, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]
                self._revisions.pop(key, None)

    async def load(self, audit_id: int) -> dict[str, ResponseDraft]:
        """
        Merge remote responses with cached drafts, cached drafts winning.

        A remote read failure is logged and the session continues from the
        local cache alone.
        """
        try:
            remote_responses = await self.remote.get_responses(audit_id)
        except RemotePersistenceError as e:
            logger.warning(f"Loading audit {audit_id} from local drafts only: {e}")
            remote_responses = []

        merged = {r.question_key: ResponseDraft.from_response(r) for r in remote_responses}
        pending = self.cache.load(audit_id)
        if pending:
            logger.info(f"Restored {len(pending)} unsaved draft(s) for audit {audit_id}")
        merged.update(pending)

        self._current[audit_id] = merged
        return dict(merged)

    def draft(self, audit_id: int, question_key: str) -> ResponseDraft | None:
        """Current draft of a question, with or without a value."""
        return self._current.get(audit_id, {}).get(question_key)

    def get(self, audit_id: int, question_key: str) -> Response | None:
        """Current answer of a question; None while it has no value."""
        draft = self.draft(audit_id, question_key)
        if draft is None or not draft.has_value:
            return None
        return draft.to_response(audit_id, draft.updated_at or self._clock())

    def stage(self, audit_id: int, draft: ResponseDraft) -> ResponseDraft:
        """Record a local edit without sending it."""
        stamped = draft.model_copy(update={"updated_at": self._clock()})
        self.cache.put(audit_id, stamped)
        self._current.setdefault(audit_id, {})[stamped.question_key] = stamped
        key = (audit_id, stamped.question_key)
        if key in self._locks:
            self._revisions[key] = self._revisions.get(key, 0) + 1
        return stamped

    async def put(self, audit_id: int, question_key: str, draft: ResponseDraft) -> SaveAck:
        """
        Save an answer: local cache first, then the remote store.

        Writes to the same key are serialized; a newer put waits for the one
        in flight. If the question is edited locally while this put waits,
        the newest draft is sent instead of the one passed in. The sent draft
        is stamped with the time of sending.

        Raises:
            ValidationError: If the draft has no value
            RemoteTimeoutError: If no acknowledgement arrives in time
            RemotePersistenceError: If the remote write fails
        """
        if not draft.has_value:
            raise ValidationError(f"Cannot save '{question_key}' without a compliance value")

        key = (audit_id, question_key)
        seen = self._revisions.get(key, 0)
        async with self._key_lock(key):
            if self._revisions.get(key, 0) != seen:
                latest = self.draft(audit_id, question_key)
                if latest is not None and latest.has_value:
                    draft = latest
            sent = draft.model_copy(
                update={"question_key": question_key, "updated_at": self._clock()}
            )
            self.cache.put(audit_id, sent)
            self._current.setdefault(audit_id, {})[question_key] = sent

            try:
                ack = await asyncio.wait_for(
                    self.remote.save_response(audit_id, question_key, sent),
                    timeout=self.write_timeout,
                )
            except TimeoutError as e:
                raise RemoteTimeoutError(
                    f"Save of {audit_id}/{question_key} not acknowledged within "
                    f"{self.write_timeout}s; kept locally"
                ) from e

            if ack.status == SaveStatus.SAVED:
                self.cache.reconcile(audit_id, ack.response)
            else:
                # A newer write holds the key remotely; adopt it unless edited since
                sent_response = sent.to_response(audit_id, sent.updated_at)
                if self.cache.reconcile(audit_id, sent_response):
                    self._current[audit_id][question_key] = ResponseDraft.from_response(
                        ack.response
                    )
                logger.info(f"Save of {audit_id}/{question_key} superseded by a newer write")
            return ack

    def pending(self, audit_id: int) -> dict[str, ResponseDraft]:
        """Drafts not yet acknowledged by the remote store."""
        return self.cache.load(audit_id)

    async def retry_pending(self, audit_id: int) -> list[SaveAck]:
        """
        Re-send every cached draft that has a value.

        Stops at the first remote failure, leaving the remaining drafts cached.
        """
        acks: list[SaveAck] = []
        for question_key, draft in self.pending(audit_id).items():
            if not draft.has_value:
                continue
            try:
                acks.append(await self.put(audit_id, question_key, draft))
            except RemotePersistenceError as e:
                logger.warning(f"Retry of pending drafts for audit {audit_id} stopped: {e}")
                break
        return acks

"""
Autosave controller for one audit session.

Each question moves through an explicit state machine:

    UNANSWERED --value chosen--> VALUED --save succeeded--> SAVED
    SAVED --value chosen / text edited--> VALUED

Choosing a compliance value saves at once. Comment and evidence edits are
cached locally and saved after an idle debounce. Navigating away from a
question saves it first. A failed save keeps the draft and is retried after
a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum

from compliance_engine.config.settings import get_config
from compliance_engine.errors.exceptions import AuditError, RemotePersistenceError
from compliance_engine.schemas.catalog import QuestionSet
from compliance_engine.schemas.common import ResponseValue
from compliance_engine.schemas.response import ResponseDraft, SaveAck, SaveStatus
from compliance_engine.services.response_store import ResponseStore

logger = logging.getLogger(__name__)


class QuestionState(str, Enum):
    UNANSWERED = "unanswered"
    VALUED = "valued"  # Has a value not yet acknowledged
    SAVED = "saved"


class AutosaveEvent(str, Enum):
    VALUE_CHOSEN = "value_chosen"
    TEXT_EDITED = "text_edited"
    DEBOUNCE_ELAPSED = "debounce_elapsed"
    NAVIGATION_REQUESTED = "navigation_requested"
    SAVE_SUCCEEDED = "save_succeeded"
    SAVE_FAILED = "save_failed"


def next_state(state: QuestionState, event: AutosaveEvent, has_value: bool) -> QuestionState:
    """Pure transition function of the per-question state machine."""
    if event == AutosaveEvent.VALUE_CHOSEN:
        return QuestionState.VALUED
    if event == AutosaveEvent.TEXT_EDITED:
        return QuestionState.VALUED if has_value else QuestionState.UNANSWERED
    if event == AutosaveEvent.SAVE_SUCCEEDED and state == QuestionState.VALUED:
        return QuestionState.SAVED
    # Debounce, navigation and failures trigger or follow a flush without changing state
    return state


class AutosaveController:
    """Drives saves for one audit from user events."""

    def __init__(
        self,
        store: ResponseStore,
        audit_id: int,
        question_set: QuestionSet,
        debounce_seconds: float | None = None,
        retry_interval: float | None = None,
    ):
        config = get_config()
        self.store = store
        self.audit_id = audit_id
        self.question_set = question_set
        self.debounce_seconds = (
            config.autosave_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.retry_interval = (
            config.retry_interval_seconds if retry_interval is None else retry_interval
        )
        self.current_index = 0
        self.last_saved_at: datetime | None = None
        self.last_error: str | None = None
        self._states: dict[str, QuestionState] = {
            key: QuestionState.UNANSWERED for key in question_set.keys
        }
        self._timers: dict[str, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()
        self._closed = False

    # === Session ===

    @property
    def is_empty(self) -> bool:
        return self.question_set.is_empty

    @property
    def current_key(self) -> str | None:
        if self.is_empty:
            return None
        return self.question_set.questions[self.current_index].key

    def state(self, question_key: str) -> QuestionState:
        return self._states.get(question_key, QuestionState.UNANSWERED)

    def draft(self, question_key: str) -> ResponseDraft | None:
        return self.store.draft(self.audit_id, question_key)

    async def start(self) -> dict[str, ResponseDraft]:
        """Load saved answers and recover drafts left unsaved by a previous session."""
        drafts = await self.store.load(self.audit_id)
        pending = self.store.pending(self.audit_id)
        for key in self._states:
            draft = drafts.get(key)
            if draft is None or not draft.has_value:
                self._states[key] = QuestionState.UNANSWERED
            elif key in pending:
                self._states[key] = QuestionState.VALUED
            else:
                self._states[key] = QuestionState.SAVED
        return drafts

    async def close(self) -> None:
        """
        Flush every dirty draft, cancel timers and wait for writes in flight.

        Writes already started are awaited, never cancelled.
        """
        self._closed = True
        for key in list(self._timers):
            self._cancel_timer(key)
        for key, state in list(self._states.items()):
            if state == QuestionState.VALUED:
                await self.flush(key)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # === Edits ===

    def _draft_for(self, question_key: str) -> ResponseDraft:
        if self.question_set.get(question_key) is None:
            raise KeyError(f"Question '{question_key}' is not part of audit {self.audit_id}")
        return self.draft(question_key) or ResponseDraft(question_key=question_key)

    def _apply(self, question_key: str, event: AutosaveEvent) -> QuestionState:
        draft = self.draft(question_key)
        has_value = draft is not None and draft.has_value
        state = next_state(self.state(question_key), event, has_value)
        self._states[question_key] = state
        return state

    async def set_value(self, question_key: str, value: ResponseValue) -> SaveAck | None:
        """Choose a compliance value; saved immediately."""
        draft = self._draft_for(question_key).model_copy(update={"response_value": value})
        self.store.stage(self.audit_id, draft)
        self._apply(question_key, AutosaveEvent.VALUE_CHOSEN)
        return await self.flush(question_key, force=True)

    def set_comment(self, question_key: str, comment: str) -> None:
        draft = self._draft_for(question_key).model_copy(update={"comment": comment})
        self._text_edited(draft)

    def set_evidence(self, question_key: str, evidence_files: list[str]) -> None:
        draft = self._draft_for(question_key).model_copy(
            update={"evidence_files": list(evidence_files)}
        )
        self._text_edited(draft)

    def _text_edited(self, draft: ResponseDraft) -> None:
        self.store.stage(self.audit_id, draft)
        self._apply(draft.question_key, AutosaveEvent.TEXT_EDITED)
        self._start_timer(draft.question_key, self.debounce_seconds)

    # === Timers ===

    def _start_timer(self, question_key: str, delay: float, force: bool = False) -> None:
        if self._closed:
            return
        self._cancel_timer(question_key)
        self._timers[question_key] = asyncio.get_running_loop().create_task(
            self._fire_after(question_key, delay, force)
        )

    def _cancel_timer(self, question_key: str) -> None:
        timer = self._timers.pop(question_key, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire_after(self, question_key: str, delay: float, force: bool) -> None:
        await asyncio.sleep(delay)
        # From here on the save must not be cancelled by a timer reset
        task = asyncio.current_task()
        if self._timers.get(question_key) is task:
            del self._timers[question_key]
        if task is not None:
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        self._apply(question_key, AutosaveEvent.DEBOUNCE_ELAPSED)
        try:
            await self.flush(question_key, force=force)
        except AuditError as e:
            logger.error(f"Autosave of {self.audit_id}/{question_key} rejected: {e}")

    # === Saving ===

    async def flush(self, question_key: str, force: bool = False) -> SaveAck | None:
        """
        Save a question's draft if it has a value.

        Without force, a question already in SAVED state is skipped. Remote
        failures are recorded in last_error and retried later; they are not
        raised.
        """
        self._cancel_timer(question_key)
        draft = self.draft(question_key)
        if draft is None or not draft.has_value:
            return None
        if not force and self.state(question_key) == QuestionState.SAVED:
            return None

        try:
            ack = await self.store.put(self.audit_id, question_key, draft)
        except RemotePersistenceError as e:
            self.last_error = str(e)
            self._apply(question_key, AutosaveEvent.SAVE_FAILED)
            logger.warning(f"Autosave of {self.audit_id}/{question_key} failed, will retry: {e}")
            self._start_timer(question_key, self.retry_interval, force=True)
            return None
        except AuditError as e:
            self.last_error = str(e)
            self._apply(question_key, AutosaveEvent.SAVE_FAILED)
            raise

        self.last_error = None
        self.last_saved_at = ack.updated_at
        current = self.draft(question_key)
        if ack.status == SaveStatus.SUPERSEDED or (
            current is not None and current.same_content(ack.response)
        ):
            self._apply(question_key, AutosaveEvent.SAVE_SUCCEEDED)
        return ack

    async def retry_pending(self) -> list[SaveAck]:
        """Re-send drafts recovered from the local cache."""
        acks: list[SaveAck] = []
        for key, state in list(self._states.items()):
            if state == QuestionState.VALUED:
                ack = await self.flush(key, force=True)
                if ack is not None:
                    acks.append(ack)
        return acks

    # === Navigation ===

    async def go_to(self, index: int) -> str | None:
        """Save the current question, then move to another one."""
        if self.is_empty:
            return None
        current = self.current_key
        if current is not None:
            self._apply(current, AutosaveEvent.NAVIGATION_REQUESTED)
            await self.flush(current, force=True)
        self.current_index = max(0, min(index, len(self.question_set) - 1))
        return self.current_key

    async def next(self) -> str | None:
        return await self.go_to(self.current_index + 1)

    async def previous(self) -> str | None:
        return await self.go_to(self.current_index - 1)

"""Sequential availability prompts for one member's device session.

A check cycle is an explicit state machine:

    IDLE --request_check--> CHECKING --(pending found)--> PRESENTING(0)
    PRESENTING(i) --record_decision ok / defer--> PRESENTING(i+1) | IDLE
    PRESENTING(i) --record_decision failed--> PRESENTING(i)
    CHECKING | PRESENTING --active group changed--> IDLE

The pending list is consumed through an iterator, one element per step, and
the active group is re-read before every element is presented. IDLE is the
only rest state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator

from availability.domain.bus import EventBus
from availability.domain.events import (
    ActiveGroupChanged,
    CycleAborted,
    CycleCompleted,
    DecisionRecorded,
    PromptDeferred,
    PromptPresented,
)
from availability.domain.models import (
    Decision,
    DecisionOutcome,
    PendingPrompt,
    PromptPhase,
    PromptState,
)
from availability.errors import PromptStateError, ResponseWriteError
from availability.repos.memory import ActiveGroupRepository
from availability.services.pending import PendingPromptFinder
from availability.services.retry import RetryingWriter

logger = logging.getLogger(__name__)

DEFAULT_PACING = 0.3  # seconds between consecutive prompts


class PromptCoordinator:
    def __init__(
        self,
        member_id: str,
        finder: PendingPromptFinder,
        writer: RetryingWriter,
        active_groups: ActiveGroupRepository,
        bus: EventBus,
        pacing: float = DEFAULT_PACING,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.member_id = member_id
        self._finder = finder
        self._writer = writer
        self._active_groups = active_groups
        self._bus = bus
        self._pacing = pacing
        self._sleep = sleep

        self._lock = threading.RLock()
        self._phase = PromptPhase.IDLE
        self._cycle = 0
        self._group_id: str | None = None
        self._pending: list[PendingPrompt] = []
        self._queue: Iterator[tuple[int, PendingPrompt]] | None = None
        self._current: tuple[int, PendingPrompt] | None = None
        self._answered = 0
        self._deferred = 0
        self._last_error: str | None = None

    @property
    def phase(self) -> PromptPhase:
        return self._phase

    @property
    def current_prompt(self) -> PendingPrompt | None:
        return self._current[1] if self._current else None

    @property
    def state(self) -> PromptState:
        with self._lock:
            return PromptState(
                member_id=self.member_id,
                phase=self._phase,
                group_id=self._group_id,
                current=self.current_prompt,
                position=self._current[0] if self._current else None,
                pending_count=len(self._pending),
                answered=self._answered,
                deferred=self._deferred,
                last_error=self._last_error,
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def request_check(self) -> bool:
        """Start a check cycle if the coordinator is idle.

        Returns False when the trigger was a no-op: a cycle is already
        running, or the member has no active group. The pending query runs
        outside the lock, in the CHECKING phase, so overlapping triggers see
        that phase and back off.
        """
        with self._lock:
            if self._phase is not PromptPhase.IDLE:
                logger.debug("Check for %s skipped, already %s", self.member_id, self._phase)
                return False

            group_id = self._active_groups.get(self.member_id)
            if not group_id:
                logger.debug("Check for %s skipped, no active group", self.member_id)
                return False

            self._cycle += 1
            cycle = self._cycle
            self._phase = PromptPhase.CHECKING
            self._group_id = group_id
            self._answered = 0
            self._deferred = 0

        try:
            pending = self._finder.find(group_id, self.member_id)
        except Exception:
            # no prompts this cycle; the next trigger will try again
            logger.warning(
                "Pending check failed for %s in %s", self.member_id, group_id, exc_info=True
            )
            with self._lock:
                if self._cycle == cycle and self._phase is PromptPhase.CHECKING:
                    self._reset()
            return True

        with self._lock:
            if self._cycle != cycle or self._phase is not PromptPhase.CHECKING:
                logger.debug("Check for %s was aborted while querying", self.member_id)
                return True

            if not pending:
                self._finish()
                return True

            self._pending = pending
            self._queue = iter(enumerate(pending))
            self._advance()
            return True

    def record_decision(self, decision: Decision) -> DecisionOutcome:
        """Write the member's answer for the prompt on screen.

        On failure the same prompt stays up with the error attached, so the
        member can pick the same answer again.
        """
        decision = Decision(decision)
        with self._lock:
            position, prompt = self._require_prompt("record a decision")
            try:
                self._writer.write(self._group_id, prompt.event_id, None, self.member_id, decision)
            except ResponseWriteError as exc:
                self._last_error = exc.user_message
                logger.warning(
                    "Keeping prompt for %s open after failed write: %s", prompt.event_id, exc
                )
                return DecisionOutcome(
                    success=False,
                    event_id=prompt.event_id,
                    decision=decision,
                    error_kind=str(exc.kind),
                    user_message=exc.user_message,
                    retryable=exc.kind.retryable,
                    state=self.state,
                )

            self._answered += 1
            self._bus.publish(
                DecisionRecorded(
                    member_id=self.member_id,
                    group_id=self._group_id,
                    event_id=prompt.event_id,
                    decision=decision,
                )
            )
            self._pace(position)
            self._advance()
            return DecisionOutcome(
                success=True,
                event_id=prompt.event_id,
                decision=decision,
                state=self.state,
            )

    def defer(self) -> PromptState:
        """Close the prompt on screen without answering ("decide later")."""
        with self._lock:
            position, prompt = self._require_prompt("defer")
            self._deferred += 1
            self._bus.publish(
                PromptDeferred(
                    member_id=self.member_id,
                    group_id=self._group_id,
                    event_id=prompt.event_id,
                )
            )
            self._pace(position)
            self._advance()
            return self.state

    def on_active_group_changed(self, message: ActiveGroupChanged) -> None:
        if message.member_id != self.member_id:
            return
        with self._lock:
            if self._phase is PromptPhase.IDLE:
                return
            if message.group_id != self._group_id:
                self._abort("active group changed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_prompt(self, action: str) -> tuple[int, PendingPrompt]:
        if self._phase is not PromptPhase.PRESENTING or self._current is None:
            raise PromptStateError(f"cannot {action} while {self._phase}")
        return self._current

    def _pace(self, position: int) -> None:
        if position < len(self._pending) - 1 and self._pacing > 0:
            self._sleep(self._pacing)

    def _advance(self) -> None:
        item = next(self._queue, None)
        if item is None:
            self._finish()
            return

        if self._active_groups.get(self.member_id) != self._group_id:
            # prompts queued for the old group must never show under the new one
            self._abort("active group changed", unshown=len(self._pending) - item[0])
            return

        position, prompt = item
        self._current = item
        self._phase = PromptPhase.PRESENTING
        self._last_error = None
        logger.info(
            "Presenting prompt %d/%d for %s: %s on %s",
            position + 1, len(self._pending), self.member_id, prompt.name, prompt.date,
        )
        self._bus.publish(
            PromptPresented(
                member_id=self.member_id,
                group_id=self._group_id,
                event_id=prompt.event_id,
                position=position,
                pending_count=len(self._pending),
            )
        )

    def _finish(self) -> None:
        message = CycleCompleted(
            member_id=self.member_id,
            group_id=self._group_id,
            answered=self._answered,
            deferred=self._deferred,
        )
        self._reset()
        self._bus.publish(message)

    def _abort(self, reason: str, unshown: int | None = None) -> None:
        if unshown is None:
            shown = self._current[0] + 1 if self._current else 0
            unshown = len(self._pending) - shown
        logger.info("Aborting prompt cycle for %s: %s", self.member_id, reason)
        message = CycleAborted(
            member_id=self.member_id,
            group_id=self._group_id,
            reason=reason,
            unshown=unshown,
        )
        self._reset()
        self._bus.publish(message)

    def _reset(self) -> None:
        self._phase = PromptPhase.IDLE
        self._group_id = None
        self._pending = []
        self._queue = None
        self._current = None
        self._last_error = None

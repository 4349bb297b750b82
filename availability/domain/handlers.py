"""Message handlers, wired up at application startup."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from availability.domain.bus import EventBus
from availability.domain.events import (
    ActiveGroupChanged,
    CheckRequested,
    CycleAborted,
    CycleCompleted,
    DecisionRecorded,
)
from availability.repos.memory import ActiveGroupRepository
from availability.services.coordinator import DEFAULT_PACING, PromptCoordinator
from availability.services.pending import PendingPromptFinder
from availability.services.retry import RetryingWriter

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Routes bus messages to one prompt coordinator per member session."""

    def __init__(
        self,
        bus: EventBus,
        finder: PendingPromptFinder,
        writer: RetryingWriter,
        active_groups: ActiveGroupRepository,
        pacing: float = DEFAULT_PACING,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bus = bus
        self.finder = finder
        self.writer = writer
        self.active_groups = active_groups
        self.pacing = pacing
        self.sleep = sleep
        self._sessions: dict[str, PromptCoordinator] = {}
        self._sessions_lock = threading.Lock()
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(CheckRequested, self.on_check_requested)
        self.bus.subscribe(ActiveGroupChanged, self.on_active_group_changed)
        self.bus.subscribe(DecisionRecorded, self.on_decision_recorded)
        self.bus.subscribe(CycleCompleted, self.on_cycle_completed)
        self.bus.subscribe(CycleAborted, self.on_cycle_aborted)

    def session(self, member_id: str) -> PromptCoordinator:
        """Return the member's coordinator, creating it on first use."""
        with self._sessions_lock:
            coordinator = self._sessions.get(member_id)
            if coordinator is None:
                coordinator = PromptCoordinator(
                    member_id=member_id,
                    finder=self.finder,
                    writer=self.writer,
                    active_groups=self.active_groups,
                    bus=self.bus,
                    pacing=self.pacing,
                    sleep=self.sleep,
                )
                self._sessions[member_id] = coordinator
            return coordinator

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_check_requested(self, message: CheckRequested) -> None:
        self.session(message.member_id).request_check()

    def on_active_group_changed(self, message: ActiveGroupChanged) -> None:
        coordinator = self._sessions.get(message.member_id)
        if coordinator is None:
            return
        coordinator.on_active_group_changed(message)

    def on_decision_recorded(self, message: DecisionRecorded) -> None:
        logger.info(
            "Member %s answered %s for event %s (group %s)",
            message.member_id, message.decision, message.event_id, message.group_id,
        )

    def on_cycle_completed(self, message: CycleCompleted) -> None:
        logger.info(
            "Prompt cycle for %s in %s finished: %d answered, %d deferred",
            message.member_id, message.group_id, message.answered, message.deferred,
        )

    def on_cycle_aborted(self, message: CycleAborted) -> None:
        logger.info(
            "Prompt cycle for %s in %s aborted (%s), %d prompt(s) not shown",
            message.member_id, message.group_id, message.reason, message.unshown,
        )

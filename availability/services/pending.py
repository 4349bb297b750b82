"""Finds the potential events a member still has to answer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, time

from availability.domain.models import Event, PendingPrompt
from availability.errors import MissingGroupScopeError
from availability.repos.memory import EventRepository
from availability.repos.sql import ResponseStore

logger = logging.getLogger(__name__)


def _prompt_order(event: Event) -> tuple:
    """Oldest first: date, then start time (untimed first), then creation."""
    return (event.date, event.start_time or time.min, event.created_at)


class PendingPromptFinder:
    def __init__(
        self,
        events: EventRepository,
        store: ResponseStore,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._events = events
        self._store = store
        self._today = today

    def find(
        self, group_id: str, member_id: str, today: date | None = None
    ) -> list[PendingPrompt]:
        """Potential events dated today or later without a yes/no from the member.

        A yes or no on any of the event's dates counts as answered. Query
        errors propagate; callers decide how to degrade.
        """
        if not group_id:
            raise MissingGroupScopeError("find_pending")
        today = today or self._today()

        events = self._events.list_tentative(group_id, on_or_after=today)
        if not events:
            logger.debug("No potential events for group %s from %s", group_id, today)
            return []

        responded = self._store.responded_event_ids(group_id, member_id, [e.id for e in events])
        pending = sorted((e for e in events if e.id not in responded), key=_prompt_order)

        logger.info(
            "Member %s has %d of %d potential events pending in group %s",
            member_id, len(pending), len(events), group_id,
        )
        return [PendingPrompt.from_event(e) for e in pending]

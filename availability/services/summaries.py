"""Attendance summaries for dashboards and event detail views.

Summaries are recomputed on every call against the roster as it is right
now. Query failures degrade to empty results; a missing group scope is a
caller bug and is still raised.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from availability.domain.models import Decision, ResponseSummary
from availability.repos.memory import EventRepository, RosterRepository
from availability.repos.sql import ResponseStore

logger = logging.getLogger(__name__)

PRIMARY_DATE = "primary"


class SummaryAggregator:
    def __init__(
        self,
        store: ResponseStore,
        roster: RosterRepository,
        events: EventRepository,
    ) -> None:
        self._store = store
        self._roster = roster
        self._events = events

    def summary(
        self, group_id: str, event_id: str, date_id: str | None = None
    ) -> ResponseSummary:
        """Counts for one event, on its primary date or on ``date_id``."""
        roster = self._roster.active_member_ids(group_id)
        try:
            return self._store.summarize(group_id, event_id, date_id, roster)
        except SQLAlchemyError:
            logger.warning("Summary query failed for event %s", event_id, exc_info=True)
            return ResponseSummary.empty()

    def summaries(self, group_id: str, event_ids: list[str]) -> dict[str, ResponseSummary]:
        """Primary-date counts for many events, fetched in one pass."""
        if not event_ids:
            return {}
        roster = self._roster.active_member_ids(group_id)
        try:
            return self._store.bulk_summarize(group_id, event_ids, roster)
        except SQLAlchemyError:
            logger.warning(
                "Bulk summary query failed for %d events", len(event_ids), exc_info=True
            )
            return {event_id: ResponseSummary.empty() for event_id in event_ids}

    def date_responses(
        self, group_id: str, event_id: str
    ) -> dict[str, dict[str, Decision | None]]:
        """Per-date member decisions for a multi-date event.

        Keys are ``"primary"`` plus every candidate date id. Each inner map
        lists every active roster member, with ``None`` for no answer.
        """
        member_ids = self._roster.active_member_ids(group_id)
        date_keys = [PRIMARY_DATE] + [d.id for d in self._events.list_candidate_dates(event_id)]
        result: dict[str, dict[str, Decision | None]] = {
            key: {member_id: None for member_id in member_ids} for key in date_keys
        }

        try:
            responses = self._store.responses_for_event(group_id, event_id)
        except SQLAlchemyError:
            logger.warning("Date responses query failed for event %s", event_id, exc_info=True)
            return {}

        for response in responses:
            key = response.date_id or PRIMARY_DATE
            members = result.get(key)
            if members is not None and response.member_id in members:
                members[response.member_id] = response.decision

        logger.debug("Loaded responses for %d dates of event %s", len(result), event_id)
        return result

    def has_responded(self, group_id: str, event_id: str, member_id: str) -> bool:
        try:
            return event_id in self._store.responded_event_ids(group_id, member_id, [event_id])
        except SQLAlchemyError:
            logger.warning("Response lookup failed for event %s", event_id, exc_info=True)
            return False

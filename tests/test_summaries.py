"""Tests for attendance summaries."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from availability.domain.models import Decision, Event, ResponseSummary
from availability.errors import MissingGroupScopeError
from availability.repos.memory import EventRepository
from availability.services.summaries import PRIMARY_DATE, SummaryAggregator
from conftest import GROUP, MEMBERS, TODAY


class BrokenStore:
    """Every query fails the way a dropped database connection would."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    summarize = bulk_summarize = responses_for_event = responded_event_ids = _fail


@pytest.fixture()
def events() -> EventRepository:
    return EventRepository()


@pytest.fixture()
def gig(events) -> Event:
    event = Event(group_id=GROUP, name="Brewery patio set", date=TODAY + timedelta(days=7))
    events.add(event)
    return event


@pytest.fixture()
def aggregator(store, roster, events) -> SummaryAggregator:
    return SummaryAggregator(store, roster, events)


def _counts(summary: ResponseSummary) -> tuple[int, int, int, int]:
    return (
        summary.yes_count,
        summary.no_count,
        summary.not_responded_count,
        summary.total_members,
    )


def test_two_candidate_dates_are_counted_separately(aggregator, store, events, gig):
    d1 = events.add_candidate_date(gig.id, TODAY + timedelta(days=8))
    d2 = events.add_candidate_date(gig.id, TODAY + timedelta(days=9))

    assert _counts(aggregator.summary(GROUP, gig.id, d1.id)) == (0, 0, 4, 4)

    store.upsert(GROUP, gig.id, d1.id, "alex", Decision.YES)

    assert _counts(aggregator.summary(GROUP, gig.id, d1.id)) == (1, 0, 3, 4)
    assert _counts(aggregator.summary(GROUP, gig.id, d2.id)) == (0, 0, 4, 4)


def test_not_responded_is_clamped_when_members_leave(aggregator, store, roster, gig):
    for member_id in MEMBERS:
        store.upsert(GROUP, gig.id, None, member_id, Decision.YES)
    roster.deactivate(GROUP, "casey")
    roster.deactivate(GROUP, "devon")

    summary = aggregator.summary(GROUP, gig.id)

    assert summary.yes_count == 4
    assert summary.total_members == 2
    assert summary.not_responded_count == 0


def test_empty_roster_gives_empty_summary(aggregator, gig):
    assert aggregator.summary("band-without-members", gig.id) == ResponseSummary.empty()


def test_summaries_batch(aggregator, store, events, gig):
    other = Event(group_id=GROUP, name="Street fair", date=TODAY + timedelta(days=2))
    events.add(other)
    store.upsert(GROUP, gig.id, None, "alex", Decision.YES)
    store.upsert(GROUP, other.id, None, "alex", Decision.NO)
    store.upsert(GROUP, other.id, None, "blair", Decision.NO)

    summaries = aggregator.summaries(GROUP, [gig.id, other.id])

    assert _counts(summaries[gig.id]) == (1, 0, 3, 4)
    assert _counts(summaries[other.id]) == (0, 2, 2, 4)
    assert aggregator.summaries(GROUP, []) == {}


def test_date_responses_lists_every_member(aggregator, store, roster, events, gig):
    d1 = events.add_candidate_date(gig.id, TODAY + timedelta(days=8))
    store.upsert(GROUP, gig.id, None, "alex", Decision.YES)
    store.upsert(GROUP, gig.id, d1.id, "blair", Decision.NO)
    # former member's answer is not shown
    store.upsert(GROUP, gig.id, d1.id, "devon", Decision.YES)
    roster.deactivate(GROUP, "devon")

    result = aggregator.date_responses(GROUP, gig.id)

    assert set(result) == {PRIMARY_DATE, d1.id}
    assert result[PRIMARY_DATE] == {
        "alex": Decision.YES,
        "blair": None,
        "casey": None,
    }
    assert result[d1.id] == {"alex": None, "blair": Decision.NO, "casey": None}


def test_has_responded(aggregator, store, gig):
    assert aggregator.has_responded(GROUP, gig.id, "alex") is False
    store.upsert(GROUP, gig.id, None, "alex", Decision.NO)
    assert aggregator.has_responded(GROUP, gig.id, "alex") is True


def test_query_failures_degrade_to_empty_results(roster, events, gig):
    aggregator = SummaryAggregator(BrokenStore(), roster, events)

    assert aggregator.summary(GROUP, gig.id) == ResponseSummary.empty()
    assert aggregator.summaries(GROUP, [gig.id]) == {gig.id: ResponseSummary.empty()}
    assert aggregator.date_responses(GROUP, gig.id) == {}
    assert aggregator.has_responded(GROUP, gig.id, "alex") is False


def test_missing_group_still_fails_closed(aggregator, gig):
    with pytest.raises(MissingGroupScopeError):
        aggregator.summary("", gig.id)

"""In-memory repositories for events, rosters and active-group selection."""

from __future__ import annotations

from datetime import date, time, timedelta

from availability.domain.models import CandidateDate, Event


class EventRepository:
    """Dict-backed store for Event instances and their candidate dates."""

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}
        self._dates: dict[str, list[CandidateDate]] = {}

    def add(self, event: Event) -> None:
        self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def list_for_group(self, group_id: str) -> list[Event]:
        return [e for e in self._store.values() if e.group_id == group_id]

    def list_tentative(self, group_id: str, on_or_after: date) -> list[Event]:
        """Potential events for the group whose primary date is not in the past."""
        return [
            e
            for e in self._store.values()
            if e.group_id == group_id and e.is_potential and e.date >= on_or_after
        ]

    def delete(self, event_id: str) -> None:
        """Delete an event and its candidate dates (cascade)."""
        self._store.pop(event_id, None)
        self._dates.pop(event_id, None)

    def add_candidate_date(self, event_id: str, on: date) -> CandidateDate:
        if event_id not in self._store:
            raise KeyError(event_id)
        dates = self._dates.setdefault(event_id, [])
        if any(d.date == on for d in dates):
            raise ValueError(f"{on.isoformat()} is already a candidate date for {event_id}")
        candidate = CandidateDate(event_id=event_id, date=on)
        dates.append(candidate)
        return candidate

    def list_candidate_dates(self, event_id: str) -> list[CandidateDate]:
        return sorted(self._dates.get(event_id, []), key=lambda d: d.date)


class RosterRepository:
    """Group membership, keyed by group id then member id."""

    def __init__(self) -> None:
        self._members: dict[str, dict[str, bool]] = {}

    def add_member(self, group_id: str, member_id: str, active: bool = True) -> None:
        self._members.setdefault(group_id, {})[member_id] = active

    def deactivate(self, group_id: str, member_id: str) -> None:
        members = self._members.get(group_id)
        if members is not None and member_id in members:
            members[member_id] = False

    def active_member_ids(self, group_id: str) -> list[str]:
        return [m for m, active in self._members.get(group_id, {}).items() if active]

    def is_active_member(self, group_id: str, member_id: str) -> bool:
        return self._members.get(group_id, {}).get(member_id, False)


class ActiveGroupRepository:
    """Which group each member currently has selected."""

    def __init__(self) -> None:
        self._active: dict[str, str] = {}

    def get(self, member_id: str) -> str | None:
        return self._active.get(member_id)

    def set(self, member_id: str, group_id: str | None) -> None:
        if group_id is None:
            self._active.pop(member_id, None)
        else:
            self._active[member_id] = group_id


# ---------------------------------------------------------------------------
# Seed data – one band with a few upcoming potential gigs
# ---------------------------------------------------------------------------


def seed_demo_data(
    events: EventRepository,
    roster: RosterRepository,
    active_groups: ActiveGroupRepository,
    today: date | None = None,
) -> None:
    today = today or date.today()
    group_id = "demo-band"

    for member_id in ("alex", "blair", "casey", "devon"):
        roster.add_member(group_id, member_id)
        active_groups.set(member_id, group_id)

    brewery = Event(
        group_id=group_id,
        name="Brewery patio set",
        date=today + timedelta(days=10),
        start_time=time(19, 0),
        end_time=time(22, 0),
        location="Old Town Brewing",
    )
    events.add(brewery)
    events.add_candidate_date(brewery.id, today + timedelta(days=17))

    events.add(
        Event(
            group_id=group_id,
            name="Street fair",
            date=today + timedelta(days=3),
            start_time=time(13, 0),
            end_time=time(15, 0),
            location="Main St",
        )
    )
    events.add(
        Event(
            group_id=group_id,
            name="Wedding reception",
            date=today + timedelta(days=30),
            start_time=time(18, 0),
            end_time=time(23, 0),
            location="Lakeside Hall",
            is_potential=False,
        )
    )

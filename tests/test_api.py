"""API tests for responses, summaries and the prompt flow."""

from __future__ import annotations

from datetime import date, time, timedelta

import pytest
from fastapi.testclient import TestClient

from availability.db import Base
from availability.domain.models import Event
from availability.main import (
    active_group_repo,
    app,
    engine,
    event_repo,
    handler_registry,
    roster_repo,
)

GROUP = "band-1"
OTHER_GROUP = "band-2"


def _reset() -> None:
    event_repo._store.clear()
    event_repo._dates.clear()
    roster_repo._members.clear()
    active_group_repo._active.clear()
    handler_registry._sessions.clear()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


@pytest.fixture(autouse=True)
def _clear_repos():
    _reset()
    for member_id in ("alex", "blair", "casey", "devon"):
        roster_repo.add_member(GROUP, member_id)
    roster_repo.add_member(OTHER_GROUP, "alex")
    yield
    _reset()


@pytest.fixture()
def client():
    return TestClient(app)


def _gig(name: str, days: int, group_id: str = GROUP, **overrides) -> Event:
    event = Event(
        group_id=group_id,
        name=name,
        date=date.today() + timedelta(days=days),
        **overrides,
    )
    event_repo.add(event)
    return event


def _put(client: TestClient, event: Event, member_id: str, decision: str, date_id=None):
    return client.put(
        f"/groups/{event.group_id}/events/{event.id}/responses/{member_id}",
        json={"decision": decision, "date_id": date_id},
    )


# ---------------------------------------------------------------------------
# Responses and summaries
# ---------------------------------------------------------------------------


def test_candidate_dates_are_summarized_separately(client: TestClient):
    gig = _gig("Brewery patio set", 7)
    d1 = event_repo.add_candidate_date(gig.id, gig.date + timedelta(days=1))
    d2 = event_repo.add_candidate_date(gig.id, gig.date + timedelta(days=2))
    url = f"/groups/{GROUP}/events/{gig.id}/summary"

    before = client.get(url, params={"date_id": d1.id}).json()
    assert before == {
        "yes_count": 0,
        "no_count": 0,
        "not_responded_count": 4,
        "total_members": 4,
    }

    resp = _put(client, gig, "alex", "yes", date_id=d1.id)
    assert resp.status_code == 200
    assert resp.json()["has_responded"] is True

    after_d1 = client.get(url, params={"date_id": d1.id}).json()
    assert (after_d1["yes_count"], after_d1["not_responded_count"]) == (1, 3)
    after_d2 = client.get(url, params={"date_id": d2.id}).json()
    assert (after_d2["yes_count"], after_d2["not_responded_count"]) == (0, 4)


def test_changing_an_answer_keeps_one_response(client: TestClient):
    gig = _gig("Street fair", 3)

    _put(client, gig, "alex", "yes")
    _put(client, gig, "alex", "yes")
    _put(client, gig, "alex", "no")

    summary = client.get(f"/groups/{GROUP}/events/{gig.id}/summary").json()
    assert (summary["yes_count"], summary["no_count"]) == (0, 1)

    view = client.get(f"/groups/{GROUP}/events/{gig.id}/responses/alex").json()
    assert view["decision"] == "no"
    assert view["has_responded"] is True


def test_unanswered_member_view(client: TestClient):
    gig = _gig("Street fair", 3)

    view = client.get(f"/groups/{GROUP}/events/{gig.id}/responses/blair").json()

    assert view["decision"] is None
    assert view["has_responded"] is False


def test_batch_summaries(client: TestClient):
    first = _gig("First", 1)
    second = _gig("Second", 2)
    _put(client, first, "alex", "yes")
    _put(client, second, "blair", "no")

    resp = client.get(
        f"/groups/{GROUP}/summaries", params={"event_ids": [first.id, second.id]}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body[first.id]["yes_count"] == 1
    assert body[second.id]["no_count"] == 1


def test_date_responses_grid(client: TestClient):
    gig = _gig("Brewery patio set", 7)
    d1 = event_repo.add_candidate_date(gig.id, gig.date + timedelta(days=1))
    _put(client, gig, "alex", "yes")
    _put(client, gig, "blair", "no", date_id=d1.id)

    body = client.get(f"/groups/{GROUP}/events/{gig.id}/date-responses").json()

    assert body["primary"]["alex"] == "yes"
    assert body["primary"]["blair"] is None
    assert body[d1.id]["blair"] == "no"
    assert set(body[d1.id]) == {"alex", "blair", "casey", "devon"}


def test_other_groups_events_are_not_found(client: TestClient):
    gig = _gig("Elsewhere", 3, group_id=OTHER_GROUP)

    resp = client.get(f"/groups/{GROUP}/events/{gig.id}/summary")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Event not found"

    resp = client.put(
        f"/groups/{GROUP}/events/{gig.id}/responses/alex", json={"decision": "yes"}
    )
    assert resp.status_code == 404


def test_unknown_candidate_date_is_not_found(client: TestClient):
    gig = _gig("Street fair", 3)

    resp = _put(client, gig, "alex", "yes", date_id="no-such-date")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Candidate date not found"


def test_summary_for_unknown_candidate_date_is_not_found(client: TestClient):
    gig = _gig("Street fair", 3)

    resp = client.get(
        f"/groups/{GROUP}/events/{gig.id}/summary", params={"date_id": "no-such-date"}
    )

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Candidate date not found"


def test_non_member_write_is_forbidden(client: TestClient):
    gig = _gig("Street fair", 3)

    resp = _put(client, gig, "stranger", "yes")

    assert resp.status_code == 403
    body = resp.json()
    assert body["error"] == "permission"
    assert body["error_code"] == "aborted"
    assert body["context"] == {"attempts": 1}
    assert "permission" in body["detail"]


def test_invalid_decision_is_rejected(client: TestClient):
    gig = _gig("Street fair", 3)

    resp = _put(client, gig, "alex", "maybe")

    assert resp.status_code == 422


def test_pending_list(client: TestClient):
    later = _gig("Later", 9)
    sooner = _gig("Sooner", 2, start_time=time(20, 0))
    _gig("Booked", 1, is_potential=False)
    answered = _gig("Answered", 4)
    _put(client, answered, "alex", "no")

    body = client.get(f"/groups/{GROUP}/members/alex/pending").json()

    assert [p["event_id"] for p in body] == [sooner.id, later.id]
    assert body[0]["start_time"] == "20:00:00"


# ---------------------------------------------------------------------------
# Prompt flow
# ---------------------------------------------------------------------------


def test_prompt_flow(client: TestClient):
    first = _gig("First", 1)
    second = _gig("Second", 2)
    client.put("/members/alex/active-group", json={"group_id": GROUP})

    state = client.post("/members/alex/prompt/check").json()
    assert state["phase"] == "presenting"
    assert state["current"]["event_id"] == first.id
    assert state["pending_count"] == 2

    outcome = client.post("/members/alex/prompt/decision", json={"decision": "yes"}).json()
    assert outcome["success"] is True
    assert outcome["state"]["current"]["event_id"] == second.id

    state = client.post("/members/alex/prompt/defer").json()
    assert state["phase"] == "idle"

    view = client.get(f"/groups/{GROUP}/events/{first.id}/responses/alex").json()
    assert view["decision"] == "yes"
    pending = client.get(f"/groups/{GROUP}/members/alex/pending").json()
    assert [p["event_id"] for p in pending] == [second.id]


def test_check_while_presenting_is_a_no_op(client: TestClient):
    first = _gig("First", 1)
    _gig("Second", 2)
    client.put("/members/alex/active-group", json={"group_id": GROUP})

    client.post("/members/alex/prompt/check")
    state = client.post("/members/alex/prompt/check").json()

    assert state["current"]["event_id"] == first.id
    assert state["position"] == 0


def test_switching_group_aborts_cycle(client: TestClient):
    _gig("First", 1)
    _gig("Second", 2)
    client.put("/members/alex/active-group", json={"group_id": GROUP})
    client.post("/members/alex/prompt/check")

    state = client.put("/members/alex/active-group", json={"group_id": OTHER_GROUP}).json()

    assert state["phase"] == "idle"
    assert state["current"] is None


def test_check_without_active_group_stays_idle(client: TestClient):
    _gig("First", 1)

    state = client.post("/members/alex/prompt/check").json()

    assert state["phase"] == "idle"


def test_decision_without_open_prompt_conflicts(client: TestClient):
    resp = client.post("/members/alex/prompt/decision", json={"decision": "yes"})

    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"

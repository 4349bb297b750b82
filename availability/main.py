"""FastAPI application for the band availability service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from availability.config import get_settings
from availability.db import create_db_engine, create_session_factory, init_db
from availability.domain.bus import EventBus
from availability.domain.events import ActiveGroupChanged, CheckRequested
from availability.domain.handlers import HandlerRegistry
from availability.domain.models import (
    ActiveGroupRequest,
    Decision,
    DecisionOutcome,
    DecisionRequest,
    Event,
    MemberResponseView,
    PendingPrompt,
    PromptState,
    ResponseSummary,
    ResponseWriteRequest,
)
from availability.errors import register_exception_handlers
from availability.repos.memory import (
    ActiveGroupRepository,
    EventRepository,
    RosterRepository,
    seed_demo_data,
)
from availability.repos.sql import ResponseStore
from availability.services.pending import PendingPromptFinder
from availability.services.retry import RetryingWriter
from availability.services.summaries import SummaryAggregator

settings = get_settings()

logging.basicConfig(
    level=settings.log.level,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger("availability.api")

app = FastAPI(title="Band Availability Service")
register_exception_handlers(app)

# ── Singletons ────────────────────────────────────────────────────────
engine = create_db_engine(settings.database.url, echo=settings.database.echo)
session_factory = create_session_factory(engine)
init_db(engine)

event_bus = EventBus()
event_repo = EventRepository()
roster_repo = RosterRepository()
active_group_repo = ActiveGroupRepository()

response_store = ResponseStore(session_factory, write_policy=roster_repo.is_active_member)
retrying_writer = RetryingWriter(
    response_store,
    max_attempts=settings.retry.max_attempts,
    base_delay=settings.retry.base_delay,
)
summary_aggregator = SummaryAggregator(response_store, roster_repo, event_repo)
pending_finder = PendingPromptFinder(event_repo, response_store)

handler_registry = HandlerRegistry(
    bus=event_bus,
    finder=pending_finder,
    writer=retrying_writer,
    active_groups=active_group_repo,
    pacing=settings.prompt.pacing,
)

if settings.app.seed_demo_data:
    seed_demo_data(event_repo, roster_repo, active_group_repo)
    logger.info("Seeded demo band data")


def _group_event(group_id: str, event_id: str) -> Event:
    """Look up an event, hiding events that belong to other groups."""
    event = event_repo.get(event_id)
    if event is None or event.group_id != group_id:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _require_candidate_date(event_id: str, date_id: str | None) -> None:
    if date_id is not None and date_id not in {
        d.id for d in event_repo.list_candidate_dates(event_id)
    }:
        raise HTTPException(status_code=404, detail="Candidate date not found")


# ── Summaries ─────────────────────────────────────────────────────────


@app.get(
    "/groups/{group_id}/events/{event_id}/summary", response_model=ResponseSummary
)
def get_event_summary(
    group_id: str, event_id: str, date_id: str | None = None
) -> ResponseSummary:
    """Yes/no/not-responded counts for the primary date or one candidate date."""
    _group_event(group_id, event_id)
    _require_candidate_date(event_id, date_id)
    return summary_aggregator.summary(group_id, event_id, date_id)


@app.get("/groups/{group_id}/summaries", response_model=dict[str, ResponseSummary])
def get_summaries(
    group_id: str, event_ids: list[str] = Query(default=[])
) -> dict[str, ResponseSummary]:
    """Primary-date summaries for several events (dashboard cards)."""
    return summary_aggregator.summaries(group_id, event_ids)


@app.get(
    "/groups/{group_id}/events/{event_id}/date-responses",
    response_model=dict[str, dict[str, Decision | None]],
)
def get_date_responses(group_id: str, event_id: str) -> dict[str, dict[str, Decision | None]]:
    """Every roster member's decision on every date of the event."""
    _group_event(group_id, event_id)
    return summary_aggregator.date_responses(group_id, event_id)


# ── Responses ─────────────────────────────────────────────────────────


@app.get(
    "/groups/{group_id}/events/{event_id}/responses/{member_id}",
    response_model=MemberResponseView,
)
def get_member_response(
    group_id: str, event_id: str, member_id: str, date_id: str | None = None
) -> MemberResponseView:
    _group_event(group_id, event_id)
    try:
        decision = response_store.read(group_id, event_id, date_id, member_id)
    except SQLAlchemyError:
        logger.warning("Response read failed for event %s", event_id, exc_info=True)
        decision = None
    return MemberResponseView(
        event_id=event_id,
        member_id=member_id,
        date_id=date_id,
        decision=decision,
        has_responded=summary_aggregator.has_responded(group_id, event_id, member_id),
    )


@app.put(
    "/groups/{group_id}/events/{event_id}/responses/{member_id}",
    response_model=MemberResponseView,
)
def put_member_response(
    group_id: str, event_id: str, member_id: str, body: ResponseWriteRequest
) -> MemberResponseView:
    """Record a decision outside the prompt flow (event detail / editor view)."""
    _group_event(group_id, event_id)
    _require_candidate_date(event_id, body.date_id)

    response = retrying_writer.write(group_id, event_id, body.date_id, member_id, body.decision)
    return MemberResponseView(
        event_id=event_id,
        member_id=member_id,
        date_id=response.date_id,
        decision=response.decision,
        has_responded=True,
    )


@app.get(
    "/groups/{group_id}/members/{member_id}/pending",
    response_model=list[PendingPrompt],
)
def list_pending(group_id: str, member_id: str) -> list[PendingPrompt]:
    """Potential events the member still has to answer, oldest first."""
    try:
        return pending_finder.find(group_id, member_id)
    except SQLAlchemyError:
        logger.warning("Pending query failed for %s in %s", member_id, group_id, exc_info=True)
        return []


# ── Prompt sessions ───────────────────────────────────────────────────


@app.put("/members/{member_id}/active-group", response_model=PromptState)
def set_active_group(member_id: str, body: ActiveGroupRequest) -> PromptState:
    """Switch the member's band; aborts any prompt cycle for the old one."""
    active_group_repo.set(member_id, body.group_id)
    event_bus.publish(ActiveGroupChanged(member_id=member_id, group_id=body.group_id))
    return handler_registry.session(member_id).state


@app.get("/members/{member_id}/prompt", response_model=PromptState)
def get_prompt(member_id: str) -> PromptState:
    return handler_registry.session(member_id).state


@app.post("/members/{member_id}/prompt/check", response_model=PromptState)
def check_prompts(member_id: str) -> PromptState:
    """Trigger a check cycle (app start/resume). A no-op while one is running."""
    event_bus.publish(CheckRequested(member_id=member_id))
    return handler_registry.session(member_id).state


@app.post("/members/{member_id}/prompt/decision", response_model=DecisionOutcome)
def answer_prompt(member_id: str, body: DecisionRequest) -> DecisionOutcome:
    return handler_registry.session(member_id).record_decision(body.decision)


@app.post("/members/{member_id}/prompt/defer", response_model=PromptState)
def defer_prompt(member_id: str) -> PromptState:
    return handler_registry.session(member_id).defer()

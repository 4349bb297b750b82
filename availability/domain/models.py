"""Domain models for band availability coordination."""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Iterable
from datetime import datetime, time, timezone
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class Decision(StrEnum):
    YES = "yes"
    NO = "no"


class PromptPhase(StrEnum):
    IDLE = "idle"
    CHECKING = "checking"
    PRESENTING = "presenting"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """A gig, either tentative ("potential") or confirmed."""

    id: str = Field(default_factory=_new_id)
    group_id: str
    name: str
    date: dt.date
    start_time: time | None = None
    end_time: time | None = None
    location: str = ""
    is_potential: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CandidateDate(BaseModel):
    """An additional date under consideration for a potential event."""

    id: str = Field(default_factory=_new_id)
    event_id: str
    date: dt.date
    created_at: datetime = Field(default_factory=_utcnow)


class Response(BaseModel):
    """One member's decision for an event, optionally for a candidate date.

    ``date_id`` of ``None`` refers to the event's primary date.
    """

    event_id: str
    date_id: str | None = None
    member_id: str
    group_id: str
    decision: Decision
    created_at: datetime
    updated_at: datetime


class ResponseSummary(BaseModel):
    yes_count: int = 0
    no_count: int = 0
    not_responded_count: int = 0
    total_members: int = 0

    @classmethod
    def empty(cls) -> ResponseSummary:
        return cls()

    @classmethod
    def from_decisions(
        cls, decisions: Iterable[Decision | None], total_members: int
    ) -> ResponseSummary:
        """Tally decisions against a roster of ``total_members``.

        Responses left behind by members who have since left the roster can
        push yes + no above the roster size, so the remainder is clamped at 0.
        """
        if total_members <= 0:
            return cls.empty()
        yes_count = 0
        no_count = 0
        for decision in decisions:
            if decision == Decision.YES:
                yes_count += 1
            elif decision == Decision.NO:
                no_count += 1
        return cls(
            yes_count=yes_count,
            no_count=no_count,
            not_responded_count=max(0, total_members - yes_count - no_count),
            total_members=total_members,
        )


class PendingPrompt(BaseModel):
    """A potential event still waiting on the current member's answer."""

    event_id: str
    group_id: str
    name: str
    date: dt.date
    start_time: time | None = None
    end_time: time | None = None
    location: str = ""

    @classmethod
    def from_event(cls, event: Event) -> PendingPrompt:
        return cls(
            event_id=event.id,
            group_id=event.group_id,
            name=event.name,
            date=event.date,
            start_time=event.start_time,
            end_time=event.end_time,
            location=event.location,
        )


class PromptState(BaseModel):
    """Snapshot of a member's prompt coordinator."""

    member_id: str
    phase: PromptPhase = PromptPhase.IDLE
    group_id: str | None = None
    current: PendingPrompt | None = None
    position: int | None = None
    pending_count: int = 0
    answered: int = 0
    deferred: int = 0
    last_error: str | None = None


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class DecisionRequest(BaseModel):
    decision: Decision


class ResponseWriteRequest(BaseModel):
    decision: Decision
    date_id: str | None = None


class ActiveGroupRequest(BaseModel):
    group_id: str | None = None


class DecisionOutcome(BaseModel):
    """Result of recording a decision for the prompt on screen."""

    success: bool
    event_id: str
    decision: Decision
    error_kind: str | None = None
    user_message: str | None = None
    retryable: bool = False
    state: PromptState


class MemberResponseView(BaseModel):
    event_id: str
    member_id: str
    date_id: str | None = None
    decision: Decision | None = None
    has_responded: bool

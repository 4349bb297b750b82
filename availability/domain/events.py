"""Messages exchanged over the bus during a prompt check cycle."""

from __future__ import annotations

from pydantic import BaseModel

from availability.domain.models import Decision


class CheckRequested(BaseModel):
    """App came to the foreground (or a re-check was asked for)."""

    member_id: str


class ActiveGroupChanged(BaseModel):
    """The member switched bands; ``group_id`` is None when none is selected."""

    member_id: str
    group_id: str | None = None


class PromptPresented(BaseModel):
    member_id: str
    group_id: str
    event_id: str
    position: int
    pending_count: int


class DecisionRecorded(BaseModel):
    member_id: str
    group_id: str
    event_id: str
    date_id: str | None = None
    decision: Decision


class PromptDeferred(BaseModel):
    """The member chose "decide later"; nothing was written."""

    member_id: str
    group_id: str
    event_id: str


class CycleCompleted(BaseModel):
    member_id: str
    group_id: str
    answered: int
    deferred: int


class CycleAborted(BaseModel):
    member_id: str
    group_id: str
    reason: str
    unshown: int

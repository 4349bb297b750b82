"""SQLAlchemy-backed response store.

Every query is scoped by an explicit group id. One row per
(event, date, member) is guaranteed by a unique constraint and writes go
through ``INSERT ... ON CONFLICT DO UPDATE``, never a read-then-write.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from availability.db import Base
from availability.domain.models import Decision, Response, ResponseSummary
from availability.errors import (
    MissingGroupScopeError,
    PermissionDeniedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

# date_key value standing in for "the event's primary date"
PRIMARY_DATE_KEY = ""

WritePolicy = Callable[[str, str], bool]


class ResponseRow(Base):
    __tablename__ = "responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String, nullable=False, index=True)
    event_id = Column(String, nullable=False, index=True)

    # date_id is NULL for the primary date. NULLs never collide in a unique
    # index, so uniqueness is enforced on date_key instead.
    date_id = Column(String, nullable=True)
    date_key = Column(String, nullable=False, default=PRIMARY_DATE_KEY)

    member_id = Column(String, nullable=False, index=True)
    decision = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "event_id", "date_key", "member_id",
            name="uq_response_event_date_member",
        ),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _date_key(date_id: str | None) -> str:
    return PRIMARY_DATE_KEY if date_id is None else date_id


def _decision_or_none(value: str | None) -> Decision | None:
    """Stored values other than yes/no (legacy "maybe" rows) read as no decision."""
    try:
        return Decision(value)
    except ValueError:
        return None


def _require_group(group_id: str | None, operation: str) -> None:
    if not group_id:
        raise MissingGroupScopeError(operation)


def _require_id(name: str, value: str | None) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailedError(f"invalid input: {name} must be a non-empty string")


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    raise NotImplementedError(f"upsert is not supported on {dialect}")


class ResponseStore:
    """Durable store of member responses.

    ``write_policy`` plays the part of a row-level security policy: when set,
    it is asked whether ``member_id`` may still write in ``group_id``.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        write_policy: WritePolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._write_policy = write_policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        group_id: str,
        event_id: str,
        date_id: str | None,
        member_id: str,
        decision: Decision | str,
    ) -> Response:
        """Insert or update the member's decision for (event, date)."""
        _require_group(group_id, "upsert")
        _require_id("event_id", event_id)
        _require_id("member_id", member_id)
        if date_id is not None:
            _require_id("date_id", date_id)
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationFailedError(f"invalid input: decision {decision!r}") from None

        if self._write_policy is not None and not self._write_policy(group_id, member_id):
            raise PermissionDeniedError(
                f"permission denied: {member_id} is not an active member of {group_id}"
            )

        now = self._clock()
        date_key = _date_key(date_id)
        with self._session_factory() as session:
            insert = _insert_for(session)
            stmt = insert(ResponseRow).values(
                group_id=group_id,
                event_id=event_id,
                date_id=date_id,
                date_key=date_key,
                member_id=member_id,
                decision=decision.value,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["event_id", "date_key", "member_id"],
                set_={
                    "decision": stmt.excluded.decision,
                    "updated_at": stmt.excluded.updated_at,
                },
                # a row owned by another group is left untouched
                where=ResponseRow.group_id == stmt.excluded.group_id,
            )
            session.execute(stmt)
            session.commit()

            row = session.execute(
                select(ResponseRow).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.event_id == event_id,
                    ResponseRow.date_key == date_key,
                    ResponseRow.member_id == member_id,
                )
            ).scalar_one_or_none()

        if row is None:
            raise PermissionDeniedError(
                f"permission denied: event {event_id} is not in group {group_id}"
            )

        logger.debug(
            "Upserted %s for member=%s event=%s date=%s",
            decision.value, member_id, event_id, date_id or "primary",
        )
        return Response(
            event_id=row.event_id,
            date_id=row.date_id,
            member_id=row.member_id,
            group_id=row.group_id,
            decision=decision,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(
        self, group_id: str, event_id: str, date_id: str | None, member_id: str
    ) -> Decision | None:
        _require_group(group_id, "read")
        with self._session_factory() as session:
            value = session.execute(
                select(ResponseRow.decision).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.event_id == event_id,
                    ResponseRow.date_key == _date_key(date_id),
                    ResponseRow.member_id == member_id,
                )
            ).scalar_one_or_none()
        return _decision_or_none(value)

    def summarize(
        self,
        group_id: str,
        event_id: str,
        date_id: str | None,
        roster_member_ids: Iterable[str],
    ) -> ResponseSummary:
        _require_group(group_id, "summarize")
        with self._session_factory() as session:
            values = session.execute(
                select(ResponseRow.decision).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.event_id == event_id,
                    ResponseRow.date_key == _date_key(date_id),
                )
            ).scalars().all()
        return ResponseSummary.from_decisions(
            (_decision_or_none(v) for v in values), len(set(roster_member_ids))
        )

    def bulk_summarize(
        self,
        group_id: str,
        event_ids: Iterable[str],
        roster_member_ids: Iterable[str],
    ) -> dict[str, ResponseSummary]:
        """Primary-date summaries for many events in a single query."""
        _require_group(group_id, "bulk_summarize")
        event_ids = list(dict.fromkeys(event_ids))
        if not event_ids:
            return {}
        total_members = len(set(roster_member_ids))

        with self._session_factory() as session:
            rows = session.execute(
                select(ResponseRow.event_id, ResponseRow.decision).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.event_id.in_(event_ids),
                    ResponseRow.date_key == PRIMARY_DATE_KEY,
                )
            ).all()

        by_event: dict[str, list[Decision | None]] = defaultdict(list)
        for event_id, value in rows:
            by_event[event_id].append(_decision_or_none(value))

        return {
            event_id: ResponseSummary.from_decisions(by_event.get(event_id, []), total_members)
            for event_id in event_ids
        }

    def responses_for_event(self, group_id: str, event_id: str) -> list[Response]:
        """All yes/no responses for an event, across every date."""
        _require_group(group_id, "responses_for_event")
        with self._session_factory() as session:
            rows = session.execute(
                select(ResponseRow).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.event_id == event_id,
                )
            ).scalars().all()

        responses = []
        for row in rows:
            decision = _decision_or_none(row.decision)
            if decision is None:
                continue
            responses.append(
                Response(
                    event_id=row.event_id,
                    date_id=row.date_id,
                    member_id=row.member_id,
                    group_id=row.group_id,
                    decision=decision,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                )
            )
        return responses

    def responded_event_ids(
        self, group_id: str, member_id: str, event_ids: Iterable[str]
    ) -> set[str]:
        """Events, among ``event_ids``, the member has answered yes or no on any date."""
        _require_group(group_id, "responded_event_ids")
        event_ids = list(event_ids)
        if not event_ids:
            return set()
        with self._session_factory() as session:
            rows = session.execute(
                select(ResponseRow.event_id).where(
                    ResponseRow.group_id == group_id,
                    ResponseRow.member_id == member_id,
                    ResponseRow.event_id.in_(event_ids),
                    ResponseRow.decision.in_([d.value for d in Decision]),
                )
            ).scalars().all()
        return set(rows)

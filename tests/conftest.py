"""Shared fixtures: a fresh in-memory response store per test."""

import os

# must be set before availability.main is imported by any test module
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PROMPT_PACING_MS", "0")

from datetime import date

import pytest

from availability.db import create_db_engine, create_session_factory, init_db
from availability.repos.memory import RosterRepository
from availability.repos.sql import ResponseStore

GROUP = "band-1"
OTHER_GROUP = "band-2"
MEMBERS = ["alex", "blair", "casey", "devon"]
TODAY = date(2026, 6, 1)


@pytest.fixture()
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture()
def roster() -> RosterRepository:
    repo = RosterRepository()
    for member_id in MEMBERS:
        repo.add_member(GROUP, member_id)
    repo.add_member(OTHER_GROUP, "alex")
    return repo


@pytest.fixture()
def store(session_factory, roster) -> ResponseStore:
    return ResponseStore(session_factory, write_policy=roster.is_active_member)


class FlakyStore:
    """Wraps a ResponseStore and raises the queued errors before delegating."""

    def __init__(self, inner: ResponseStore, failures: list[Exception]) -> None:
        self.inner = inner
        self.failures = list(failures)
        self.upsert_calls = 0

    def upsert(self, *args, **kwargs):
        self.upsert_calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.inner.upsert(*args, **kwargs)

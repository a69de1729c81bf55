"""
Pytest configuration and fixtures

Every test gets a fresh in-memory SQLite database; tables are created before
and dropped after each test, so nothing leaks between tests.
"""
import pytest
import sys
import os
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

# Point the app at SQLite before core.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.database import Base
import models  # noqa: F401  (registers chat tables)
from services.chat_modules import DEFAULT_LEXICONS, Role
from services.chat_modules.prompts import system_prompt_for
from services.chat_orchestrator import ChatOrchestrator, ThreadTurnLocks
from services.chat_store import ChatStore
from services.completion_client import CompletionClient


class FakeCompletionClient(CompletionClient):
    """
    Records every call and answers "Ответ <role>".

    The answering role is recovered from the system prompt, so failures can
    be injected per specialist.
    """

    model = "fake-model"

    def __init__(self, failures: Optional[Dict[Role, Exception]] = None):
        self.failures = dict(failures or {})
        self.calls: List[Tuple[Role, str]] = []
        self._roles_by_prompt = {system_prompt_for(role): role for role in Role}

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        role = self._roles_by_prompt[system_prompt]
        self.calls.append((role, user_prompt))
        if role in self.failures:
            raise self.failures[role]
        return f"Ответ {role.value}"

    @property
    def roles_called(self) -> List[Role]:
        return [role for role, _ in self.calls]


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Session on a fresh database; commits are real but the database is throwaway."""
    session = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return ChatStore(db_session)


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def turn_locks():
    return ThreadTurnLocks()


@pytest.fixture
def orchestrator(store, completion_client, turn_locks):
    return ChatOrchestrator(
        store,
        completion_client,
        lexicons=DEFAULT_LEXICONS,
        locks=turn_locks,
        history_limit=15,
        lock_timeout_s=0.05,
    )


@pytest.fixture
def user_id():
    return uuid4()

"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database, so nothing leaks between
tests. Providers are replaced by FakeProvider instances; no network calls.
"""
import os
import sys
from datetime import datetime, timedelta
from typing import List, Optional

# Must be set before db.py creates its engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["GROQ_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""

# Add the backend directory to the path so modules import the way the app does
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from db import Base, User, Project, Task, TaskStatus, TaskPriority
from llm import LLMProvider, ProviderChain

NOW = datetime(2026, 3, 10, 12, 0, 0)


class FakeProvider(LLMProvider):
    """Provider double that replays canned responses and records prompts."""

    def __init__(self, responses: Optional[List] = None, name: str = "fake",
                 supports_json_mode: bool = True, supports_files: bool = False):
        self.responses = list(responses or [])
        self.name = name
        self.supports_json_mode = supports_json_mode
        self.supports_files = supports_files
        self.calls = []

    def _next(self):
        if not self.responses:
            raise RuntimeError(f"{self.name} has no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def complete(self, prompt, *, temperature, max_tokens, json_mode):
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "json_mode": json_mode})
        return self._next()

    async def complete_with_file(self, prompt, data, mime_type, *, temperature, max_tokens):
        self.calls.append({"prompt": prompt, "data": data, "mime_type": mime_type})
        return self._next()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def user(session):
    u = User(id="user-1", name="Ada Student", email="ada@example.edu")
    session.add(u)
    await session.commit()
    return u


async def add_project(session, owner_id: str, name: str = "Thesis", due_in_days: Optional[float] = 14,
                      **kwargs) -> Project:
    project = Project(
        name=name,
        owner_id=owner_id,
        due_date=NOW + timedelta(days=due_in_days) if due_in_days is not None else None,
        **kwargs,
    )
    session.add(project)
    await session.commit()
    return project


async def add_task(session, project_id: str, title: str = "Task", status: TaskStatus = TaskStatus.todo,
                   due_in_days: Optional[float] = None, updated_days_ago: float = 30,
                   priority: TaskPriority = TaskPriority.medium) -> Task:
    task = Task(
        project_id=project_id,
        title=title,
        status=status,
        priority=priority,
        due_date=NOW + timedelta(days=due_in_days) if due_in_days is not None else None,
        created_at=NOW - timedelta(days=60),
        updated_at=NOW - timedelta(days=updated_days_ago),
    )
    session.add(task)
    await session.commit()
    return task


def make_chain(*providers) -> ProviderChain:
    return ProviderChain(list(providers))

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from surveykit.crud import crud_user
from surveykit.database import (
    create_db_and_tables,
    create_engine,
    create_session_factory,
    transaction,
)
from surveykit.identity import Identity
from surveykit.services import ResponseCollectionService, SurveyAuthoringService


class StepClock:
    """Deterministic clock that moves one second forward on every call."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest_asyncio.fixture
async def engine():
    engine = create_engine("sqlite+aiosqlite://")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def authoring(session_factory, clock):
    return SurveyAuthoringService(session_factory, clock=clock)


@pytest.fixture
def collection(session_factory, clock):
    return ResponseCollectionService(session_factory, clock=clock)


@pytest_asyncio.fixture
async def users(session_factory):
    async with transaction(session_factory) as db:
        alice = await crud_user.create_user(
            db, email="alice@example.com", name="Alice", hashed_password="hash-a"
        )
        bob = await crud_user.create_user(
            db, email="bob@example.com", name="Bob", hashed_password="hash-b"
        )
    return Identity(id=alice.id), Identity(id=bob.id)


@pytest.fixture
def alice(users):
    return users[0]


@pytest.fixture
def bob(users):
    return users[1]


def survey_payload(**overrides):
    payload = {
        "title": "Customer satisfaction",
        "description": "Quarterly check-in",
        "questions": [
            {"text": "How would you rate us?", "type": "rating", "required": True},
            {
                "text": "Which channel did you use?",
                "type": "radio",
                "options": ["web", "phone", "store"],
            },
            {"text": "Anything else?", "type": "textarea"},
        ],
        "settings": {"allowAnonymous": True},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_published_survey(authoring, alice):
    async def _make(**overrides):
        survey = await authoring.create(alice, survey_payload(**overrides))
        return await authoring.set_published(alice, survey.id, True)

    return _make

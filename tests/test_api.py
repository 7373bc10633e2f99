from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from surveykit.config import Settings
from surveykit.database import Base
from surveykit.main import create_app
from surveykit.models import User

ALICE_TOKEN = "token-alice"
BOB_TOKEN = "token-bob"


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(tmp_path) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "api.db"

    # seed users through a plain synchronous engine, the app only reads them
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=sync_engine)
    with Session(sync_engine) as db:
        alice = User(email="alice@example.com", name="Alice", hashed_password="x")
        bob = User(email="bob@example.com", name="Bob", hashed_password="y")
        db.add_all([alice, bob])
        db.commit()
        tokens = {ALICE_TOKEN: alice.id, BOB_TOKEN: bob.id}
    sync_engine.dispose()

    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        api_tokens=tokens,
    )
    with TestClient(create_app(settings)) as c:
        yield c


SURVEY_BODY = {
    "title": "Satisfaction",
    "description": "",
    "questions": [
        {"text": "Rate us", "type": "rating", "required": True},
        {"text": "Favourite feature", "type": "select", "options": ["speed", "price"]},
    ],
    "settings": {"allowAnonymous": True},
}


def create_survey(client, body=SURVEY_BODY, token=ALICE_TOKEN):
    res = client.post("/api/surveys", json=body, headers=auth(token))
    assert res.status_code == 201, res.text
    return res.json()


def test_root(client):
    res = client.get("/")
    assert res.status_code == 200


def test_list_requires_token(client):
    res = client.get("/api/surveys")
    assert res.status_code == 401
    assert res.headers["www-authenticate"] == "Bearer"
    assert res.json()["error"] == "unauthenticated"


@pytest.mark.parametrize("header", ["Token abc", "Bearer", "Bearer wrong-token"])
def test_bad_tokens_rejected(client, header):
    res = client.get("/api/surveys", headers={"Authorization": header})
    assert res.status_code == 401


def test_create_returns_ordered_questions(client):
    survey = create_survey(client)

    assert [q["order"] for q in survey["questions"]] == [0, 1]
    assert survey["is_published"] is False
    assert survey["settings"] == {
        "allowAnonymous": True,
        "requireLogin": False,
        "multipleResponses": False,
        "showResults": False,
    }


def test_create_rejects_bad_question_type(client):
    body = dict(SURVEY_BODY, questions=[{"text": "Q", "type": "slider"}])
    res = client.post("/api/surveys", json=body, headers=auth(ALICE_TOKEN))
    assert res.status_code == 400
    assert res.json()["error"] == "invalid_input"
    assert "questions.0.type" in res.json()["detail"]


def test_unpublished_survey_hidden_from_others(client):
    survey = create_survey(client)

    assert client.get(f"/api/surveys/{survey['id']}").status_code == 403
    assert (
        client.get(f"/api/surveys/{survey['id']}", headers=auth(BOB_TOKEN)).status_code
        == 403
    )
    own = client.get(f"/api/surveys/{survey['id']}", headers=auth(ALICE_TOKEN))
    assert own.status_code == 200
    assert own.json()["creator_name"] == "Alice"


def test_unknown_survey_is_404(client):
    assert client.get("/api/surveys/does-not-exist").status_code == 404


def test_bad_token_on_public_route_is_anonymous(client):
    survey = create_survey(client)
    client.patch(
        f"/api/surveys/{survey['id']}/publish",
        json={"isPublished": True},
        headers=auth(ALICE_TOKEN),
    )
    res = client.get(f"/api/surveys/{survey['id']}", headers=auth("garbage"))
    assert res.status_code == 200


def test_update_by_non_owner_forbidden(client):
    survey = create_survey(client)
    res = client.put(
        f"/api/surveys/{survey['id']}", json=SURVEY_BODY, headers=auth(BOB_TOKEN)
    )
    assert res.status_code == 403
    assert res.json()["error"] == "forbidden"


def test_update_replaces_questions(client):
    survey = create_survey(client)
    body = dict(SURVEY_BODY, questions=[{"text": "Just one", "type": "text"}])

    res = client.put(f"/api/surveys/{survey['id']}", json=body, headers=auth(ALICE_TOKEN))

    assert res.status_code == 200
    questions = res.json()["questions"]
    assert [(q["text"], q["order"]) for q in questions] == [("Just one", 0)]


def test_full_flow(client):
    survey = create_survey(client)
    survey_id = survey["id"]
    rating_id = survey["questions"][0]["id"]

    res = client.patch(
        f"/api/surveys/{survey_id}/publish",
        json={"isPublished": True},
        headers=auth(ALICE_TOKEN),
    )
    assert res.status_code == 200
    assert res.json()["is_published"] is True
    assert res.json()["published_at"] is not None

    res = client.post(
        f"/api/surveys/{survey_id}/responses",
        json={"answers": {rating_id: 5}},
        headers={"User-Agent": "survey-test-agent"},
    )
    assert res.status_code == 201, res.text
    response = res.json()
    assert response["is_complete"] is True
    assert response["submitted_at"] is not None
    assert response["user_agent"] == "survey-test-agent"

    listed = client.get("/api/surveys", headers=auth(ALICE_TOKEN)).json()
    assert len(listed) == 1
    assert listed[0]["total_responses"] == 1
    assert listed[0]["response_count"] == 1

    res = client.delete(f"/api/surveys/{survey_id}", headers=auth(ALICE_TOKEN))
    assert res.status_code == 200
    assert res.json()["survey_id"] == survey_id
    assert client.get(f"/api/surveys/{survey_id}", headers=auth(ALICE_TOKEN)).status_code == 404


def test_submit_missing_required_is_400(client):
    survey = create_survey(client)
    client.patch(
        f"/api/surveys/{survey['id']}/publish",
        json={"isPublished": True},
        headers=auth(ALICE_TOKEN),
    )
    res = client.post(f"/api/surveys/{survey['id']}/responses", json={"answers": {}})
    assert res.status_code == 400
    assert "Rate us" in res.json()["detail"]


def test_second_submission_by_same_user_forbidden(client):
    survey = create_survey(client)
    client.patch(
        f"/api/surveys/{survey['id']}/publish",
        json={"isPublished": True},
        headers=auth(ALICE_TOKEN),
    )
    body = {"answers": {survey["questions"][0]["id"]: 4}}
    url = f"/api/surveys/{survey['id']}/responses"

    assert client.post(url, json=body, headers=auth(BOB_TOKEN)).status_code == 201
    assert client.post(url, json=body, headers=auth(BOB_TOKEN)).status_code == 403

import pytest
from fastapi.testclient import TestClient

from course_bot.api import create_app

from conftest import AUDIO_STEP, CURATOR, LEARNER, MODULE, NEXT_MODULE, NEXT_STEP, TEXT_STEP
from fakes import ScriptedScorer

AS_LEARNER = {"X-User-Id": LEARNER}
AS_CURATOR = {"X-User-Id": CURATOR}


@pytest.fixture
def client(make_container, settings):
    container = make_container(scorer=ScriptedScorer((6, "ok"), (6, "ok")), settings=settings)
    with TestClient(create_app(container)) as test_client:
        yield test_client


def submit(client, **overrides):
    body = {"step_id": TEXT_STEP, "module_id": MODULE, "answer_type": "TEXT", "answer_text": "My answer"}
    body.update(overrides)
    return client.post("/submissions", json=body, headers=AS_LEARNER)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_and_fetch_submission(client):
    response = submit(client)
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "SENT"
    assert created["answer_type"] == "TEXT"

    fetched = client.get(f"/submissions/{created['id']}", headers=AS_LEARNER)
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]

    listed = client.get("/submissions", headers=AS_CURATOR, params={"module_id": MODULE})
    assert [s["id"] for s in listed.json()] == [created["id"]]


@pytest.mark.parametrize("overrides, status", [
    ({"step_id": "missing"}, 404),
    ({"step_id": NEXT_STEP, "module_id": NEXT_MODULE}, 403),
    ({"answer_type": "AUDIO"}, 400),
    ({"answer_text": ""}, 400),
])
def test_domain_errors_map_to_status_codes(client, overrides, status):
    response = submit(client, **overrides)
    assert response.status_code == status
    assert response.json()["detail"]


def test_duplicate_submission_conflicts(client):
    assert submit(client).status_code == 201
    response = submit(client)
    assert response.status_code == 409
    assert "already submitted" in response.json()["detail"]


def test_missing_caller_is_forbidden(client):
    response = client.post("/submissions", json={"step_id": TEXT_STEP, "module_id": MODULE, "answer_type": "TEXT"})
    assert response.status_code == 403


def test_learner_cannot_approve(client):
    created = submit(client).json()
    response = client.post(f"/submissions/{created['id']}/approve", json={}, headers=AS_LEARNER)
    assert response.status_code == 403


def test_curator_approves_then_second_decision_conflicts(client):
    created = submit(client).json()
    approved = client.post(f"/submissions/{created['id']}/approve", json={"score": 7, "feedback": "Nice"},
                           headers=AS_CURATOR)
    assert approved.status_code == 200
    assert approved.json()["status"] == "CURATOR_APPROVED"
    assert approved.json()["curator_score"] == 7

    again = client.post(f"/submissions/{created['id']}/return", json={"feedback": "late"}, headers=AS_CURATOR)
    assert again.status_code == 409


def test_score_out_of_range_is_bad_request(client):
    created = submit(client).json()
    response = client.post(f"/submissions/{created['id']}/approve", json={"score": 42}, headers=AS_CURATOR)
    assert response.status_code == 400


def test_start_audio_endpoint(client):
    response = client.post("/submissions/audio/start", json={"step_id": AUDIO_STEP, "module_id": MODULE},
                           headers=AS_LEARNER)
    assert response.status_code == 201
    assert response.json()["prompt_message_id"]


def test_module_unlock_endpoint(client):
    response = client.post(f"/modules/{NEXT_MODULE}/unlock", json={"user_ids": [LEARNER]}, headers=AS_CURATOR)
    assert response.status_code == 200
    assert response.json()["unlocked"] == 1
    assert client.post("/modules/nope/lock", json={}, headers=AS_CURATOR).status_code == 404


def test_webhook_rejects_bad_secret(client):
    response = client.post("/telegram/webhook", json={"update_id": 1},
                           headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"})
    assert response.status_code == 403


def test_webhook_without_application_is_unavailable(client):
    response = client.post("/telegram/webhook", json={"update_id": 1},
                           headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"})
    assert response.status_code == 503

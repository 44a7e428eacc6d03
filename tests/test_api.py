import pytest
from fastapi.testclient import TestClient

import errand_backend.api.chat as chat_api
import errand_backend.api.state as state_api
import errand_backend.api.voice as voice_api
import errand_backend.main as main
from errand_backend.errors import ClassifierUnavailable
from errand_backend.llm.gemini_client import FunctionCall, ModelTurn

HERE = {"lat": 37.7749, "lng": -122.4194}


@pytest.fixture
def client(monkeypatch, make_orchestrator):
    orch = make_orchestrator()
    for module in (chat_api, voice_api, state_api, main):
        monkeypatch.setattr(module, "orchestrator", orch)
    with TestClient(main.app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["sessions"]["active_sessions"] == 0
    assert body["sessions"]["sweeper_running"] is True


def test_chat_plans_route(client, scripted_model, nlu):
    scripted_model.queue_text(nlu("navigate_direct", 0.95, destination="home"))
    scripted_model.queue_turn(
        ModelTurn(function_calls=[FunctionCall(name="calculate_route", args={"destination": "home"})]),
        ModelTurn(text="Heading home. Ready to go?"),
    )
    r = client.post("/chat", json={"session_id": "s1", "user_message": "take me home", "location": HERE, "user_id": "u1"})

    assert r.status_code == 200
    body = r.json()
    assert body["completed"] is True
    assert body["response"] == "Heading home. Ready to go?"
    assert body["route"]["destination"]["name"] == "home"

    state = client.get("/state/s1").json()
    assert state["current_route"]["status"] == "planning"
    assert state["turn_count"] == 2
    assert state["escalation_phase"] == "normal"


def test_chat_returns_503_when_classifier_unavailable(client, scripted_model):
    scripted_model.queue_text(ClassifierUnavailable.missing_api_key())
    r = client.post("/chat", json={"session_id": "s1", "user_message": "take me home"})

    assert r.status_code == 503
    error = r.json()["detail"]["error"]
    assert error["code"] == "MISSING_API_KEY"
    assert error["suggestions"]


def test_chat_rejects_bad_payload(client):
    assert client.post("/chat", json={"session_id": "s1"}).status_code == 422


def test_voice_turn_keeps_microphone_open_on_questions(client, scripted_model, nlu):
    scripted_model.queue_text(nlu("navigate_direct", 0.7, destination="home"))
    r = client.post("/voice/turn", json={"session_id": "v1", "transcript": "home maybe", "location": HERE})

    body = r.json()
    assert body["expect_reply"] is True
    assert body["options"] == ["Yes", "No"]
    assert body["speak"] == "Just to confirm, you want to go straight to home?"


def test_voice_interrupt_without_turn_in_flight(client):
    r = client.post("/voice/interrupt", json={"session_id": "v1"})
    assert r.json() == {"session_id": "v1", "interrupted": False}


def test_unknown_session_state(client):
    assert client.get("/state/nope").status_code == 404

from __future__ import annotations

import json
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nextstep.db.deps import get_db
from nextstep.db.models.agent_action_log import AgentActionLog
from nextstep.db.models.plan import PlanRecord
from nextstep.db.models.user import User
from nextstep.main import app
from nextstep.services.llm_client import get_text_generator
from plan_factories import three_week_plan


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    PlanRecord.__table__.create(bind=engine)
    AgentActionLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_text_generator] = lambda: None
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


class _ScriptedGenerator:
    def __init__(self, payload):
        self.payload = payload
        self.prompts: list[str] = []

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        return self.payload if isinstance(self.payload, str) else json.dumps(self.payload)


def _save_plan(client: TestClient, user_id: UUID) -> UUID:
    response = client.post(
        "/plans",
        json={"user_id": str(user_id), "goal_text": "Become a backend engineer", "plan": three_week_plan()},
    )
    assert response.status_code == 201
    return UUID(response.json()["plan_id"])


def test_micro_help_with_generator(client):
    test_client, _ = client
    user_id = uuid4()
    plan_id = _save_plan(test_client, user_id)
    generator = _ScriptedGenerator({"smallerStep": "Open the editor", "threeMinuteVersion": "Write one line"})
    app.dependency_overrides[get_text_generator] = lambda: generator

    response = test_client.post(f"/plans/{plan_id}/tasks/b1/micro-help", json={"user_id": str(user_id)})

    assert response.status_code == 200
    body = response.json()
    assert body["task_id"] == "b1"
    assert body["smaller_step"] == "Open the editor"
    assert body["three_minute_version"] == "Write one line"
    assert "Become a backend engineer" in generator.prompts[0]


def test_micro_help_fallback_and_errors(client):
    test_client, _ = client
    user_id = uuid4()
    plan_id = _save_plan(test_client, user_id)

    ok = test_client.post(f"/plans/{plan_id}/tasks/a1/micro-help", json={"user_id": str(user_id)})
    assert ok.status_code == 200
    assert ok.json()["smaller_step"]

    assert test_client.post(f"/plans/{plan_id}/tasks/zz/micro-help", json={"user_id": str(user_id)}).status_code == 404
    assert test_client.post(f"/plans/{plan_id}/tasks/a1/micro-help", json={"user_id": str(uuid4())}).status_code == 403

    app.dependency_overrides[get_text_generator] = lambda: _ScriptedGenerator("not json at all")
    assert test_client.post(f"/plans/{plan_id}/tasks/a1/micro-help", json={"user_id": str(user_id)}).status_code == 502


def test_explain_plan_week_and_task(client):
    test_client, _ = client
    user_id = uuid4()
    plan_id = _save_plan(test_client, user_id)
    generator = _ScriptedGenerator({"explanation": "Keep going."})
    app.dependency_overrides[get_text_generator] = lambda: generator
    body = {"user_id": str(user_id)}

    plan_resp = test_client.post(f"/plans/{plan_id}/explain", json=body).json()
    week_resp = test_client.post(f"/plans/{plan_id}/weeks/2/explain", json=body).json()
    task_resp = test_client.post(f"/plans/{plan_id}/tasks/c1/explain", json=body).json()

    assert (plan_resp["scope"], plan_resp["explanation"]) == ("plan", "Keep going.")
    assert (week_resp["scope"], week_resp["week"]) == ("week", 2)
    assert (task_resp["scope"], task_resp["task_id"]) == ("task", "c1")
    assert "Total tasks: 6 waypoints" in generator.prompts[0]
    assert "Theme: Week 2" in generator.prompts[1]
    assert "Category: apply" in generator.prompts[2]


def test_explain_missing_targets_and_fallback(client):
    test_client, _ = client
    user_id = uuid4()
    plan_id = _save_plan(test_client, user_id)
    body = {"user_id": str(user_id)}

    assert test_client.post(f"/plans/{plan_id}/weeks/9/explain", json=body).status_code == 404
    assert test_client.post(f"/plans/{plan_id}/tasks/zz/explain", json=body).status_code == 404
    fallback = test_client.post(f"/plans/{plan_id}/weeks/1/explain", json=body)
    assert fallback.status_code == 200
    assert fallback.json()["explanation"].startswith("Week 1 is about Week 1.")

    app.dependency_overrides[get_text_generator] = lambda: _ScriptedGenerator({"explanation": None})
    assert test_client.post(f"/plans/{plan_id}/explain", json=body).status_code == 502

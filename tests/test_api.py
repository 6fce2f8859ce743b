from typing import Any

import pytest
from fastapi.testclient import TestClient

from elicit.agents import (
    ClarificationConfig,
    ClarificationEngine,
    KeywordCompletenessAnalyzer,
    KeywordConfirmationDetector,
)
from elicit.core.api import create_app
from elicit.core.session_store import SessionStore


class DummyGenerator:
    """
    Document generator returning a fixed document.
    """

    async def generate_document(self, full_text: str) -> dict[str, Any]:
        """
        Return a minimal document.

        Args:
            full_text (str): The requirements text.

        Returns:
            dict[str, Any]: The document.
        """
        return {"title": "权限系统", "length": len(full_text)}


@pytest.fixture
def engine() -> ClarificationEngine:
    return ClarificationEngine(
        SessionStore(idle_ttl=3600, sweep_interval=3600),
        analyzer=KeywordCompletenessAnalyzer(),
        detector=KeywordConfirmationDetector(),
        generator=DummyGenerator(),
        config=ClarificationConfig(collaborator_timeout=5.0),
    )


@pytest.fixture
def client(engine: ClarificationEngine) -> TestClient:
    """
    Fixture for a test client without the background sweeper.

    Args:
        engine (ClarificationEngine): The engine fixture.

    Returns:
        TestClient: The client.
    """
    return TestClient(create_app(engine, start_sweeper=False))


def test_clarify_starts_session(client: TestClient) -> None:
    resp = client.post("/clarify", json={"message": "我想做一个权限系统"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["status"] == "clarifying"
    assert data["session_id"]
    assert len(data["clarification_questions"]) >= 1
    assert data["confidence"] < 0.5


def test_clarify_continues_session(client: TestClient) -> None:
    first = client.post("/clarify", json={"message": "我想做一个权限系统"}).json()

    resp = client.post(
        "/clarify",
        json={"message": "密码连续失败5次锁定30分钟", "session_id": first["session_id"]},
    )

    assert resp.status_code == 200
    assert resp.json()["session_id"] == first["session_id"]
    export = client.get(f"/sessions/{first['session_id']}/export").json()
    assert len(export["turns"]) == 4
    assert export["confirmed_details"]["锁定时长"] == "30分钟"


def test_clarify_accepts_client_history(client: TestClient) -> None:
    resp = client.post(
        "/clarify",
        json={
            "message": "没有了",
            "messages": [
                {"role": "user", "content": "我想做一个权限系统"},
                {"role": "assistant", "content": "失败多少次会锁定？", "type": "clarification"},
            ],
        },
    )

    assert resp.status_code == 200
    export = client.get(f"/sessions/{resp.json()['session_id']}/export").json()
    assert [t["content"] for t in export["turns"][:3]] == [
        "我想做一个权限系统",
        "失败多少次会锁定？",
        "没有了",
    ]


@pytest.mark.parametrize(
    "payload",
    [{"message": "   "}, {"message": "hello", "session_id": ""}],
)
def test_clarify_rejects_invalid_input(client: TestClient, payload: dict) -> None:
    resp = client.post("/clarify", json=payload)

    assert resp.status_code == 400


def test_clarify_rejects_unknown_role(client: TestClient) -> None:
    resp = client.post(
        "/clarify",
        json={"message": "hi", "messages": [{"role": "robot", "content": "x"}]},
    )

    assert resp.status_code == 422


def test_sessions_list_reset_delete(client: TestClient) -> None:
    sid = client.post("/clarify", json={"message": "我想做一个权限系统"}).json()[
        "session_id"
    ]

    sessions = client.get("/sessions").json()["sessions"]
    assert [s["conversation_id"] for s in sessions] == [sid]

    reset = client.post(f"/sessions/{sid}/reset").json()
    assert reset["ok"] is True
    assert reset["previous_session_id"] == sid
    assert reset["session_id"] != sid
    assert client.get(f"/sessions/{sid}/export").status_code == 404

    new_id = reset["session_id"]
    assert client.delete(f"/sessions/{new_id}").json() == {"ok": True, "session_id": new_id}
    assert client.delete(f"/sessions/{new_id}").status_code == 404
    assert client.get("/sessions").json()["sessions"] == []


def test_export_unknown_session(client: TestClient) -> None:
    assert client.get("/sessions/missing/export").status_code == 404


def test_lifespan_runs_sweeper(engine: ClarificationEngine) -> None:
    app = create_app(engine, start_sweeper=True)

    with TestClient(app) as client:
        assert engine.store._thread is not None
        assert client.get("/sessions").status_code == 200

    assert engine.store._thread is None

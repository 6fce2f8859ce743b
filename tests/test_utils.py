import logging
from pathlib import Path
from types import SimpleNamespace

import pytest
from loguru import logger

from elicit.utils.env_cfg import (
    load_clarification_env,
    load_host_env,
    load_matching_env,
    load_openai_env,
    load_path_env,
    load_session_env,
)
from elicit.utils.logging_cfg import setup_logging
from elicit.utils.openai_cfg import OpenAIPipeline


def test_setup_logging_respects_env_path(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """
    setup_logging should honor LOG_PATH and route stdlib records into the file.

    Args:
        tmp_path (Path): Temporary directory.
        monkeypatch (pytest.MonkeyPatch): Fixture to override environment.
    """
    log_file = tmp_path / "logs" / "elicit.log"
    monkeypatch.setenv("LOG_PATH", str(log_file))

    resolved = setup_logging()
    try:
        logger.debug("create log entry for file")
        logging.getLogger("uvicorn.error").warning("bridged from stdlib")
        logger.complete()

        assert resolved == log_file
        content = log_file.read_text(encoding="utf-8")
        assert "create log entry for file" in content
        assert "bridged from stdlib" in content
    finally:
        logger.remove()
        logging.getLogger().handlers.clear()


def test_session_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SESSION_IDLE_TTL", "60")
    monkeypatch.setenv("SESSION_SWEEP_INTERVAL", "5")
    monkeypatch.setenv("SESSION_SWEEPER", "false")

    cfg = load_session_env()

    assert cfg.idle_ttl == 60.0
    assert cfg.sweep_interval == 5.0
    assert cfg.autostart_sweeper is False


def test_session_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("SESSION_IDLE_TTL", "SESSION_SWEEP_INTERVAL", "SESSION_SWEEPER"):
        monkeypatch.delenv(var, raising=False)

    cfg = load_session_env()

    assert cfg.idle_ttl == 24 * 60 * 60
    assert cfg.sweep_interval == 60 * 60
    assert cfg.autostart_sweeper is True


def test_clarification_and_matching_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLARIFY_FATIGUE_ROUNDS", "4")
    monkeypatch.setenv("CLARIFY_COLLABORATOR_TIMEOUT", "2.5")
    monkeypatch.setenv("MATCH_BASE_THRESHOLD", "0.65")
    monkeypatch.setenv("MATCH_FACT_MIN_OVERLAP", "")

    clarify = load_clarification_env()
    matching = load_matching_env()

    assert clarify.fatigue_rounds == 4
    assert isinstance(clarify.fatigue_rounds, int)
    assert clarify.collaborator_timeout == 2.5
    assert clarify.fatigue_questions == 5
    assert matching.base_threshold == 0.65
    assert matching.fact_min_overlap == 2


def test_openai_host_and_path_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("OPENAI_MODEL", "local-model")
    monkeypatch.setenv("OPENAI_API_BASE", "http://localhost:8000/v1")
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "http://a,http://b")
    monkeypatch.setenv("RESULTS_PATH", str(tmp_path / "out"))

    assert load_openai_env().model == "local-model"
    assert load_openai_env().api_base == "http://localhost:8000/v1"
    assert load_host_env().cors_allowed_origins.split(",") == ["http://a", "http://b"]
    assert load_path_env().results == tmp_path / "out"


def test_pipeline_load_prompt() -> None:
    pipeline = OpenAIPipeline()

    assert "{history}" in pipeline.load_prompt("analysis")
    with pytest.raises(FileNotFoundError):
        pipeline.load_prompt("missing")


@pytest.mark.anyio
async def test_pipeline_call_chat(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    call_chat sends system and user messages and returns the reply text.

    Args:
        monkeypatch (pytest.MonkeyPatch): Fixture to replace the client.
    """
    sent: dict = {}

    async def create(**kwargs):  # type: ignore[no-untyped-def]
        sent.update(kwargs)
        message = SimpleNamespace(content="true")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    pipeline = OpenAIPipeline()
    fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    monkeypatch.setattr(pipeline, "client", fake)

    reply = await pipeline.call_chat("prompt", system_prompt="system", temperature=0.1)

    assert reply == "true"
    assert sent["temperature"] == 0.1
    assert [m["role"] for m in sent["messages"]] == ["system", "user"]


@pytest.mark.anyio
async def test_pipeline_call_chat_wraps_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def create(**kwargs):  # type: ignore[no-untyped-def]
        raise ConnectionError("offline")

    pipeline = OpenAIPipeline()
    fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    monkeypatch.setattr(pipeline, "client", fake)

    with pytest.raises(RuntimeError, match="Chat inference failed"):
        await pipeline.call_chat("prompt")

import json
from pathlib import Path
from typing import Any

import pytest

from elicit.agents import (
    ClarificationConfig,
    ClarificationEngine,
    EngineResult,
    KeywordCompletenessAnalyzer,
    KeywordConfirmationDetector,
)
from elicit.cli import chat as chat_module
from elicit.core.session_store import SessionStore


class _Generator:
    async def generate_document(self, full_text: str) -> dict[str, Any]:
        _ = full_text
        return {"title": "doc"}


def _reader(lines: list[str]):
    """
    Build an input() replacement that replays ``lines`` then signals EOF.

    Args:
        lines (list[str]): The lines to return.
    """
    pending = list(lines)

    def read(prompt: str) -> str:
        _ = prompt
        if not pending:
            raise EOFError
        return pending.pop(0)

    return read


@pytest.fixture
def engine() -> ClarificationEngine:
    return ClarificationEngine(
        SessionStore(idle_ttl=3600, sweep_interval=3600),
        analyzer=KeywordCompletenessAnalyzer(),
        detector=KeywordConfirmationDetector(),
        generator=_Generator(),
        config=ClarificationConfig(collaborator_timeout=5.0),
    )


@pytest.mark.anyio
async def test_chat_loop_exports_and_quits(
    engine: ClarificationEngine, tmp_path: Path
) -> None:
    """
    Messages are processed, /export writes JSON and /quit ends the loop.

    Args:
        engine (ClarificationEngine): The engine fixture.
        tmp_path (Path): Pytest temporary directory.
    """
    out: list[str] = []

    sid = await chat_module.chat(
        engine,
        output_path=tmp_path / "results",
        read=_reader(["我想做一个权限系统", "", "/export", "/quit", "never read"]),
        write=out.append,
    )

    assert sid is not None
    files = list((tmp_path / "results").glob("*.json"))
    assert len(files) == 1
    snapshot = json.loads(files[0].read_text(encoding="utf-8"))
    assert snapshot["conversation_id"] == sid
    assert snapshot["turns"][0]["content"] == "我想做一个权限系统"
    assert any("[clarifying | collecting" in line for line in out)


@pytest.mark.anyio
async def test_chat_loop_reset_and_eof(
    engine: ClarificationEngine, tmp_path: Path
) -> None:
    out: list[str] = []

    sid = await chat_module.chat(
        engine,
        output_path=tmp_path,
        read=_reader(["/export", "我想做一个权限系统", "/reset"]),
        write=out.append,
    )

    assert out[1] == "Nothing to export yet."
    assert "Session reset." in out
    assert engine.get_session(sid).turns == []


def test_render_includes_document() -> None:
    result = EngineResult(
        success=True,
        conversation_id="s1",
        response="done",
        status="completed",
        phase="completed",
        confidence=0.9,
        requirement_document={"title": "权限系统"},
    )

    text = chat_module.render(result)

    assert text.startswith("done")
    assert '"title": "权限系统"' in text
    assert text.endswith("[completed | completed | confidence 0.90]")


def test_store_output(tmp_path: Path) -> None:
    target = chat_module._store_output("export", {"a": "中文"}, tmp_path / "nested" / "dir")

    assert target.read_text(encoding="utf-8") == '{\n  "a": "中文"\n}'

import pytest

from elicit.agents import (
    AnalysisResult,
    ClarificationConfig,
    ClarificationPolicy,
    PhaseStateMachine,
    status_for,
)


@pytest.mark.parametrize(
    ("phase", "score", "expected"),
    [
        ("collecting", 0.2, "collecting"),
        ("collecting", 0.5, "clarifying"),
        ("collecting", 0.75, "finalizing"),
        ("clarifying", 0.69, "clarifying"),
        ("clarifying", 0.7, "finalizing"),
        ("finalizing", 0.79, "clarifying"),
        ("finalizing", 0.8, "completed"),
        ("completed", 0.0, "completed"),
    ],
)
def test_next_phase(phase: str, score: float, expected: str) -> None:
    assert PhaseStateMachine().next_phase(phase, score) == expected  # type: ignore[arg-type]


def test_increasing_confidence_never_returns_to_collecting() -> None:
    machine = PhaseStateMachine()
    phase = "collecting"
    seen = []
    for score in (0.1, 0.35, 0.5, 0.72, 0.9, 0.95):
        phase = machine.next_phase(phase, score)  # type: ignore[arg-type]
        seen.append(phase)

    first_exit = seen.index("clarifying")
    assert "collecting" not in seen[first_exit:]
    assert seen[-1] == "completed"


def test_status_mapping() -> None:
    assert status_for("collecting") == "clarifying"
    assert status_for("clarifying") == "clarifying"
    assert status_for("finalizing") == "confirmed"
    assert status_for("completed") == "completed"


def _analysis(confidence: float, needs: bool = True) -> AnalysisResult:
    return AnalysisResult(needs_clarification=needs, confidence=confidence)


def test_no_remaining_questions_forces_progress() -> None:
    """
    With nothing left to ask, confidence is raised so the dialogue moves on.
    """
    decision = ClarificationPolicy().decide("collecting", _analysis(0.1), remaining=[])

    assert decision.confidence >= 0.8
    assert decision.phase == "finalizing"
    assert decision.needs_clarification is False
    assert decision.questions == []
    assert decision.reason == "no new questions"


def test_analysis_without_clarification_drops_questions() -> None:
    decision = ClarificationPolicy().decide(
        "clarifying", _analysis(0.4, needs=False), remaining=["需要哪些报表？"]
    )

    assert decision.needs_clarification is False
    assert decision.phase == "finalizing"


def test_fatigue_override() -> None:
    decision = ClarificationPolicy().decide(
        "clarifying",
        _analysis(0.5),
        remaining=["需要哪些报表？"],
        rounds=3,
        asked_count=5,
    )

    assert decision.confidence == pytest.approx(0.85)
    assert decision.phase == "finalizing"
    assert decision.questions == []
    assert decision.reason == "clarification fatigue"


@pytest.mark.parametrize(("rounds", "asked"), [(2, 10), (5, 4)])
def test_fatigue_needs_both_limits(rounds: int, asked: int) -> None:
    decision = ClarificationPolicy().decide(
        "clarifying",
        _analysis(0.5),
        remaining=["需要哪些报表？"],
        rounds=rounds,
        asked_count=asked,
    )

    assert decision.phase == "clarifying"
    assert decision.questions == ["需要哪些报表？"]
    assert decision.needs_clarification is True


def test_questions_capped_per_round() -> None:
    config = ClarificationConfig(max_questions_per_round=2)
    decision = ClarificationPolicy(config).decide(
        "collecting", _analysis(0.1), remaining=["a？", "b？", "c？"]
    )

    assert decision.questions == ["a？", "b？"]


def test_finalizing_falls_back_to_clarifying() -> None:
    decision = ClarificationPolicy().decide(
        "finalizing", _analysis(0.5), remaining=["需要哪些报表？"]
    )

    assert decision.phase == "clarifying"
    assert decision.needs_clarification is True


def test_confidence_is_clamped() -> None:
    decision = ClarificationPolicy().decide(
        "collecting", _analysis(1.7), remaining=["需要哪些报表？"]
    )

    assert decision.confidence == 1.0
    assert decision.phase == "finalizing"

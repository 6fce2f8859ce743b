"""Phase transitions and clarification policies."""

from dataclasses import dataclass

from loguru import logger

from elicit.agents.types import AnalysisResult, Phase, SessionStatus


@dataclass(frozen=True)
class ClarificationConfig:
    """
    Configuration for phase transitions and clarification overrides.
    """

    collecting_threshold: float = 0.3
    finalizing_threshold: float = 0.7
    completion_threshold: float = 0.8
    exhausted_confidence_floor: float = 0.8
    fatigue_rounds: int = 3
    fatigue_questions: int = 5
    fatigue_confidence_floor: float = 0.85
    reanalysis_min_turns: int = 2
    max_questions_per_round: int = 5
    collaborator_timeout: float = 60.0


@dataclass
class PhaseDecision:
    """
    Outcome of the policy for one turn.
    """

    phase: Phase
    needs_clarification: bool
    confidence: float
    questions: list[str]
    reason: str | None = None


class PhaseStateMachine:
    """
    collecting -> clarifying -> finalizing -> completed.

    finalizing may fall back to clarifying; completed is terminal.
    """

    def __init__(self, config: ClarificationConfig | None = None) -> None:
        self.config = config or ClarificationConfig()

    def next_phase(self, phase: Phase, score: float) -> Phase:
        """
        Return the phase that follows ``phase`` at completeness ``score``.

        Args:
            phase (Phase): The current phase.
            score (float): Overall completeness in [0, 1].

        Returns:
            Phase: The next phase.
        """
        cfg = self.config
        if phase == "collecting":
            if score < cfg.collecting_threshold:
                return "collecting"
            if score < cfg.finalizing_threshold:
                return "clarifying"
            return "finalizing"
        if phase == "clarifying":
            return "clarifying" if score < cfg.finalizing_threshold else "finalizing"
        if phase == "finalizing":
            return "completed" if score >= cfg.completion_threshold else "clarifying"
        if phase == "completed":
            return "completed"
        logger.warning("Unknown phase '{}'; restarting at collecting", phase)
        return "collecting"


def status_for(phase: Phase) -> SessionStatus:
    """
    Session status shown to callers for a machine phase.

    Args:
        phase (Phase): The machine phase.

    Returns:
        SessionStatus: ``clarifying``, ``confirmed`` or ``completed``.
    """
    if phase == "finalizing":
        return "confirmed"
    if phase == "completed":
        return "completed"
    return "clarifying"


class ClarificationPolicy:
    """
    Applies the loop and fatigue overrides, then advances the phase.
    """

    def __init__(
        self,
        config: ClarificationConfig | None = None,
        machine: PhaseStateMachine | None = None,
    ) -> None:
        """
        Initialize the ClarificationPolicy.

        Args:
            config (ClarificationConfig | None, optional): Thresholds for the overrides. Defaults to None.
            machine (PhaseStateMachine | None, optional): Transition function. Defaults to one built from ``config``.
        """
        self.config = config or ClarificationConfig()
        self.machine = machine or PhaseStateMachine(self.config)

    def decide(
        self,
        phase: Phase,
        analysis: AnalysisResult,
        remaining: list[str],
        rounds: int = 0,
        asked_count: int = 0,
    ) -> PhaseDecision:
        """
        Decide the next phase for a turn.

        Args:
            phase (Phase): The current phase.
            analysis (AnalysisResult): Fresh analysis for the turn.
            remaining (list[str]): Candidate questions left after dedup filtering.
            rounds (int, optional): Clarification rounds so far. Defaults to 0.
            asked_count (int, optional): Questions asked so far. Defaults to 0.

        Returns:
            PhaseDecision: Next phase, adjusted confidence and questions to ask.
        """
        cfg = self.config
        confidence = min(1.0, max(0.0, float(analysis.confidence)))
        if not analysis.needs_clarification:
            remaining = []
        questions = remaining[: cfg.max_questions_per_round]
        reason = None

        if not remaining:
            confidence = max(confidence, cfg.exhausted_confidence_floor)
            reason = "no new questions"
        elif rounds >= cfg.fatigue_rounds and asked_count >= cfg.fatigue_questions:
            confidence = max(confidence, cfg.fatigue_confidence_floor)
            questions = []
            reason = "clarification fatigue"

        next_phase = self.machine.next_phase(phase, confidence)
        if next_phase not in ("collecting", "clarifying"):
            questions = []
        if reason:
            logger.info(
                "Override '{}': confidence {:.2f}, phase {} -> {}",
                reason,
                confidence,
                phase,
                next_phase,
            )
        asking = next_phase in ("collecting", "clarifying") and bool(questions)
        return PhaseDecision(
            phase=next_phase,
            needs_clarification=asking,
            confidence=confidence,
            questions=questions,
            reason=reason,
        )

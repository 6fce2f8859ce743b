"""Shared types for the clarification engine."""

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Protocol, Sequence

from elicit.agents.concepts import normalize

Role = Literal["user", "assistant"]
TurnType = Literal["clarification", "confirmation", "parsing", "document"]
QuestionCategory = Literal[
    "functional", "technical", "business", "ui", "performance", "security"
]
Priority = Literal["high", "medium", "low"]
QuestionStatus = Literal["pending", "answered", "skipped"]
SessionStatus = Literal["new", "clarifying", "confirmed", "parsing", "completed"]
Phase = Literal["collecting", "clarifying", "finalizing", "completed"]

SNAPSHOT_VERSION = 1


class InvalidRequestError(ValueError):
    """Raised when a caller passes input the engine refuses to process."""


class SessionNotFoundError(KeyError):
    """Raised when a session id is not present in the store."""


class DocumentGenerationError(RuntimeError):
    """Raised by document generators when no valid document could be produced."""


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ConversationTurn:
    """A single message in a conversation. Never mutated once created."""

    id: str
    role: Role
    content: str
    timestamp: float
    type: TurnType | None = None

    @classmethod
    def create(
        cls,
        role: Role,
        content: str,
        type: TurnType | None = None,
        timestamp: float | None = None,
    ) -> "ConversationTurn":
        return cls(
            id=new_id(),
            role=role,
            content=content,
            timestamp=time.time() if timestamp is None else timestamp,
            type=type,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        role = data["role"]
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown turn role: {role!r}")
        return cls(
            id=str(data.get("id") or new_id()),
            role=role,
            content=str(data["content"]),
            timestamp=float(data.get("timestamp") or time.time()),
            type=data.get("type"),
        )


@dataclass
class ClarificationQuestion:
    """A clarification question that survived dedup filtering."""

    id: str
    question: str
    asked_at: float
    category: QuestionCategory = "functional"
    priority: Priority = "medium"
    answered_at: float | None = None
    answer: str | None = None
    status: QuestionStatus = "pending"

    def mark_answered(self, answer: str, at: float | None = None) -> None:
        """
        Transition pending -> answered. Answered questions keep their first answer.

        Args:
            answer (str): The user text that addressed the question.
            at (float | None, optional): When it was answered. Defaults to now.
        """
        if self.status == "answered":
            return
        self.status = "answered"
        self.answer = answer
        self.answered_at = time.time() if at is None else at

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClarificationQuestion":
        return cls(
            id=str(data["id"]),
            question=str(data["question"]),
            asked_at=float(data["asked_at"]),
            category=data.get("category", "functional"),
            priority=data.get("priority", "medium"),
            answered_at=data.get("answered_at"),
            answer=data.get("answer"),
            status=data.get("status", "pending"),
        )


@dataclass
class RequirementTopic:
    """A coherent area of the requirement, aggregated across turns."""

    id: str
    name: str
    description: str
    completeness: float
    last_updated: float
    questions: list[ClarificationQuestion] = field(default_factory=list)
    type_tag: str = "general"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RequirementTopic":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            completeness=float(data.get("completeness") or 0.0),
            last_updated=float(data["last_updated"]),
            questions=[
                ClarificationQuestion.from_dict(q) for q in data.get("questions") or []
            ],
            type_tag=str(data.get("type_tag") or "general"),
        )


@dataclass
class AnalysisResult:
    """Draft completeness assessment returned by an analyzer."""

    needs_clarification: bool
    confidence: float
    questions: list[str] = field(default_factory=list)
    gaps: list[str] = field(default_factory=list)
    current_understanding: str | None = None


@dataclass
class HistoryAnalysis:
    """Everything bulk re-analysis derives from a fixed list of turns."""

    topics: list[RequirementTopic] = field(default_factory=list)
    asked_questions: list[ClarificationQuestion] = field(default_factory=list)
    confirmed_facts: list[str] = field(default_factory=list)
    confirmed_details: dict[str, str] = field(default_factory=dict)
    context_summary: str | None = None


def _merge_question(
    existing: list[ClarificationQuestion], incoming: ClarificationQuestion
) -> None:
    key = normalize(incoming.question)
    for q in existing:
        if normalize(q.question) == key:
            if incoming.status == "answered" and q.status != "answered":
                q.mark_answered(incoming.answer or "", incoming.answered_at)
            return
    existing.append(incoming)


@dataclass
class ConversationContext:
    """
    Full state of one clarification dialogue.

    Owned by the SessionStore. Engine code mutates a staged copy and commits it
    back in one step.
    """

    conversation_id: str
    turns: list[ConversationTurn] = field(default_factory=list)
    status: SessionStatus = "new"
    phase: Phase = "collecting"
    confidence: float = 0.0
    topics: list[RequirementTopic] = field(default_factory=list)
    asked_questions: list[ClarificationQuestion] = field(default_factory=list)
    confirmed_facts: list[str] = field(default_factory=list)
    confirmed_details: dict[str, str] = field(default_factory=dict)
    context_summary: str | None = None
    current_understanding: str | None = None
    requirement_document: dict[str, Any] | None = None
    clarification_rounds: int = 0
    created_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)
    last_analysis_at: float | None = None
    version: int = SNAPSHOT_VERSION

    def append_turn(
        self, role: Role, content: str, type: TurnType | None = None
    ) -> ConversationTurn:
        turn = ConversationTurn.create(role, content, type=type)
        self.turns.append(turn)
        return turn

    def replace_turns(self, turns: Sequence[ConversationTurn]) -> None:
        self.turns = list(turns)

    def history_text(self) -> str:
        """
        Render the turn list as ``ROLE: content`` blocks.

        Returns:
            str: The conversation transcript.
        """
        return "\n\n".join(f"{t.role.upper()}: {t.content}" for t in self.turns)

    def merge_history(self, analysis: HistoryAnalysis) -> None:
        """
        Fold a re-analysis result into the context without shrinking it.

        Questions only move pending -> answered, topics keep their best
        completeness, facts are appended once and details are updated in place.

        Args:
            analysis (HistoryAnalysis): Output of bulk re-analysis.
        """
        for q in analysis.asked_questions:
            _merge_question(self.asked_questions, q)

        by_name = {t.name: t for t in self.topics}
        for topic in analysis.topics:
            current = by_name.get(topic.name)
            if current is None:
                self.topics.append(topic)
                by_name[topic.name] = topic
                continue
            current.description = topic.description or current.description
            current.completeness = max(current.completeness, topic.completeness)
            current.last_updated = topic.last_updated
            for q in topic.questions:
                _merge_question(current.questions, q)

        for fact in analysis.confirmed_facts:
            if fact not in self.confirmed_facts:
                self.confirmed_facts.append(fact)
        self.confirmed_details.update(analysis.confirmed_details)
        if analysis.context_summary:
            self.context_summary = analysis.context_summary
        self.last_analysis_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationContext":
        """
        Rebuild a context from a snapshot produced by ``to_dict``.

        Args:
            data (dict[str, Any]): The snapshot.

        Returns:
            ConversationContext: The restored context.

        Raises:
            ValueError: If the snapshot is malformed or has an unknown version.
        """
        try:
            version = int(data.get("version", SNAPSHOT_VERSION))
            if version != SNAPSHOT_VERSION:
                raise ValueError(f"Unsupported snapshot version: {version}")
            return cls(
                conversation_id=str(data["conversation_id"]),
                turns=[ConversationTurn.from_dict(t) for t in data.get("turns") or []],
                status=data.get("status", "new"),
                phase=data.get("phase", "collecting"),
                confidence=float(data.get("confidence") or 0.0),
                topics=[RequirementTopic.from_dict(t) for t in data.get("topics") or []],
                asked_questions=[
                    ClarificationQuestion.from_dict(q)
                    for q in data.get("asked_questions") or []
                ],
                confirmed_facts=[str(f) for f in data.get("confirmed_facts") or []],
                confirmed_details={
                    str(k): str(v)
                    for k, v in (data.get("confirmed_details") or {}).items()
                },
                context_summary=data.get("context_summary"),
                current_understanding=data.get("current_understanding"),
                requirement_document=data.get("requirement_document"),
                clarification_rounds=int(data.get("clarification_rounds") or 0),
                created_at=float(data.get("created_at") or time.time()),
                last_updated=float(data.get("last_updated") or time.time()),
                last_analysis_at=data.get("last_analysis_at"),
                version=version,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed conversation snapshot: {e}") from e


@dataclass
class EngineResult:
    """Response payload for a single processed message."""

    success: bool
    conversation_id: str
    response: str
    status: SessionStatus
    phase: Phase
    confidence: float
    clarification_questions: list[str] | None = None
    requirement_document: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Analyzer(Protocol):
    """Interface for turn-level completeness analysis."""

    async def analyze(
        self, history: str, context: ConversationContext
    ) -> AnalysisResult:  # pragma: no cover - interface
        """Return needs-clarification, confidence, candidate questions and gaps."""
        ...


class ConfirmationDetector(Protocol):
    """Interface for detecting that the user confirmed the summarized requirements."""

    async def is_confirmed(
        self, message: str, context: ConversationContext
    ) -> bool:  # pragma: no cover - interface
        """Return True when the message confirms the requirements."""
        ...


class DocumentGenerator(Protocol):
    """Interface for structured requirement document generation."""

    async def generate_document(
        self, full_text: str
    ) -> dict[str, Any]:  # pragma: no cover - interface
        """Return the document; raise DocumentGenerationError on failure."""
        ...


class HistoryAnalyzer(Protocol):
    """Interface for bulk re-analysis of a full turn list."""

    def reanalyze(
        self, turns: Sequence[ConversationTurn]
    ) -> HistoryAnalysis:  # pragma: no cover - interface
        """Derive topics, questions, facts and details from the turns."""
        ...

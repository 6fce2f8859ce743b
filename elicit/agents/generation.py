"""LLM-backed and rule-based collaborators: analysis, confirmation, documents."""

import re
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from elicit.agents.types import (
    AnalysisResult,
    Analyzer,
    ConfirmationDetector,
    ConversationContext,
    DocumentGenerationError,
    DocumentGenerator,
)
from elicit.utils.openai_cfg import OpenAIPipeline

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", flags=re.IGNORECASE)

DEFAULT_QUESTION = "请提供更多关于您需求的具体细节。"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AnalysisPayload(_CamelModel):
    """Schema of the analyzer's JSON reply."""

    needs_clarification: bool = Field(default=False, alias="needsClarification")
    current_understanding: str | None = Field(default=None, alias="currentUnderstanding")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    questions: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)


class RequirementDocument(_CamelModel):
    """Structured requirement document produced at the end of a session."""

    title: str = Field(min_length=1)
    description: str = ""
    functional_requirements: list[str] = Field(
        default_factory=list, alias="functionalRequirements"
    )
    non_functional_requirements: list[str] = Field(
        default_factory=list, alias="nonFunctionalRequirements"
    )
    business_rules: list[str] = Field(default_factory=list, alias="businessRules")
    constraints: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(
        default_factory=list, alias="acceptanceCriteria"
    )
    entities: list[dict[str, Any]] = Field(default_factory=list)
    relationships: list[dict[str, Any]] = Field(default_factory=list)
    priority: Literal["high", "medium", "low"] = "medium"
    estimated_complexity: (
        Literal["simple", "medium", "complex", "highly_complex"] | None
    ) = Field(default=None, alias="estimatedComplexity")
    understanding: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: Literal["generated", "fallback"] = "generated"


def extract_json_object(text: str) -> str | None:
    """
    Return the outermost ``{...}`` span of a model reply, ignoring think blocks.

    Args:
        text (str): The raw model reply.

    Returns:
        str | None: The JSON candidate, or None when the reply has no object.
    """
    match = _JSON_OBJECT_RE.search(_THINK_RE.sub("", text or ""))
    return match.group(0) if match else None


def build_requirements_text(context: ConversationContext) -> str:
    """
    Build the full requirements text handed to the document generator.

    Args:
        context (ConversationContext): The session to summarize.

    Returns:
        str: User statements, confirmed summaries, details and understanding.
    """
    discussion = "\n\n".join(
        t.content for t in context.turns if t.role == "user" or t.type == "confirmation"
    )
    parts = [
        "Based on the following requirements discussion, extract and structure "
        "the complete business requirements:",
        discussion,
    ]
    if context.confirmed_details:
        details = "\n".join(f"- {k}: {v}" for k, v in context.confirmed_details.items())
        parts.append(f"Confirmed details:\n{details}")
    if context.current_understanding:
        parts.append(f"Current Understanding: {context.current_understanding}")
    parts.append(
        "Extract all business entities, their relationships, and business rules "
        "based on this comprehensive requirements discussion."
    )
    return "\n\n".join(parts)


def fallback_document(context: ConversationContext) -> dict[str, Any]:
    """
    Best-effort document built from what the session already knows.

    Args:
        context (ConversationContext): The session.

    Returns:
        dict[str, Any]: A serialized ``RequirementDocument`` marked as fallback.
    """
    understanding = context.current_understanding or context.context_summary or ""
    doc = RequirementDocument(
        title="需求摘要",
        description=understanding,
        functional_requirements=list(context.confirmed_facts),
        business_rules=[f"{k}: {v}" for k, v in context.confirmed_details.items()],
        understanding=understanding or None,
        confidence=min(1.0, max(0.0, context.confidence)),
        source="fallback",
    )
    return doc.model_dump()


class OpenAIClarificationBackend(Analyzer, ConfirmationDetector, DocumentGenerator):
    """
    Analyzer, confirmation detector and document generator over one chat model.
    """

    def __init__(self, pipeline: OpenAIPipeline | None = None) -> None:
        """
        Initialize the OpenAIClarificationBackend.

        Args:
            pipeline (OpenAIPipeline | None, optional): Chat client wrapper. Defaults to one configured from the environment.
        """
        self.pipeline = pipeline or OpenAIPipeline()

    async def analyze(
        self, history: str, context: ConversationContext
    ) -> AnalysisResult:
        """
        Ask the model for a completeness assessment of the conversation.

        Malformed replies degrade to a conservative default instead of raising.

        Args:
            history (str): The conversation transcript.
            context (ConversationContext): The session state.

        Returns:
            AnalysisResult: The parsed or default analysis.

        Raises:
            RuntimeError: If the model call itself fails.
        """
        confirmed = [*context.confirmed_facts]
        confirmed += [f"{k}: {v}" for k, v in context.confirmed_details.items()]
        prompt = self.pipeline.load_prompt("analysis").format(
            history=history,
            status=context.status,
            confirmed="\n".join(f"- {c}" for c in confirmed) or "(none)",
            asked="\n".join(f"- {q.question}" for q in context.asked_questions)
            or "(none)",
        )
        text = await self.pipeline.call_chat(
            prompt,
            system_prompt=self.pipeline.load_prompt("analysis_system"),
            temperature=0.3,
        )
        payload_text = extract_json_object(text)
        if payload_text is None:
            logger.warning("Analyzer reply contained no JSON object; using default")
            return AnalysisResult(
                needs_clarification=True, confidence=0.3, questions=[DEFAULT_QUESTION]
            )
        try:
            payload = AnalysisPayload.model_validate_json(payload_text)
        except ValidationError as e:
            logger.warning("Analyzer reply failed validation: {}", e)
            return AnalysisResult(
                needs_clarification=True, confidence=0.3, questions=[DEFAULT_QUESTION]
            )
        return AnalysisResult(
            needs_clarification=payload.needs_clarification,
            confidence=payload.confidence,
            questions=[q.strip() for q in payload.questions if q and q.strip()],
            gaps=payload.gaps,
            current_understanding=payload.current_understanding,
        )

    async def is_confirmed(self, message: str, context: ConversationContext) -> bool:
        """
        Ask the model whether the message confirms the requirements.

        Args:
            message (str): The user message.
            context (ConversationContext): The session state.

        Returns:
            bool: True only for an explicit "true" reply; False on any error.
        """
        prompt = self.pipeline.load_prompt("confirmation").format(
            message=message,
            understanding=context.current_understanding or "(none)",
        )
        try:
            text = await self.pipeline.call_chat(
                prompt,
                system_prompt=self.pipeline.load_prompt("confirmation_system"),
                temperature=0.1,
            )
        except RuntimeError as e:
            logger.error("Error checking confirmation: {}", e)
            return False
        return _THINK_RE.sub("", text).strip().lower().strip('."') == "true"

    async def generate_document(self, full_text: str) -> dict[str, Any]:
        """
        Generate and validate the structured requirement document.

        Args:
            full_text (str): Output of ``build_requirements_text``.

        Returns:
            dict[str, Any]: The serialized ``RequirementDocument``.

        Raises:
            DocumentGenerationError: If the call fails or the reply is not a valid document.
        """
        prompt = self.pipeline.load_prompt("document").format(requirements=full_text)
        try:
            text = await self.pipeline.call_chat(
                prompt,
                system_prompt=self.pipeline.load_prompt("document_system"),
                temperature=0.3,
            )
        except RuntimeError as e:
            raise DocumentGenerationError(str(e)) from e
        payload_text = extract_json_object(text)
        if payload_text is None:
            raise DocumentGenerationError("Model reply contained no JSON document")
        try:
            return RequirementDocument.model_validate_json(payload_text).model_dump()
        except ValidationError as e:
            raise DocumentGenerationError(f"Invalid requirement document: {e}") from e


class KeywordCompletenessAnalyzer(Analyzer):
    """
    Rule-based completeness assessment used when the model is unavailable.

    Scores four keyword families over the user's messages and asks one
    question per weak area.
    """

    def __init__(
        self,
        families: dict[str, list[str]] | None = None,
        questions: dict[str, str] | None = None,
        clarify_below: float = 0.7,
    ) -> None:
        """
        Initialize the KeywordCompletenessAnalyzer.

        Args:
            families (dict[str, list[str]] | None, optional): Keywords per area. Defaults to None.
            questions (dict[str, str] | None, optional): Question asked when an area is weak. Defaults to None.
            clarify_below (float, optional): Overall score below which clarification is needed. Defaults to 0.7.
        """
        self.families = families or {
            "functional": ["功能", "特性", "操作", "界面", "流程", "feature", "function"],
            "non_functional": ["性能", "安全", "可用", "响应", "并发", "performance", "security"],
            "constraints": ["限制", "约束", "规则", "政策", "合规", "锁定", "rule", "policy"],
            "scenarios": ["用户", "场景", "流程", "步骤", "操作", "user", "scenario"],
        }
        self.questions = questions or {
            "functional": "请描述用户在使用系统时的典型操作流程？",
            "non_functional": "系统需要处理多少用户同时使用？是否有特殊的安全或合规要求？",
            "constraints": "有哪些必须遵守的业务规则或限制？",
            "scenarios": "主要有哪些用户角色？他们分别在什么场景下使用系统？",
        }
        self.clarify_below = clarify_below

    @staticmethod
    def _score(text: str, keywords: list[str]) -> float:
        matches = sum(1 for kw in keywords if kw in text)
        return min(matches / len(keywords) * 2, 1.0) if keywords else 0.0

    async def analyze(
        self, history: str, context: ConversationContext
    ) -> AnalysisResult:
        """
        Score the user's messages by keyword coverage.

        Args:
            history (str): The conversation transcript (unused; user turns are read from the context).
            context (ConversationContext): The session state.

        Returns:
            AnalysisResult: Keyword-based analysis.
        """
        _ = history
        text = "\n".join(t.content for t in context.turns if t.role == "user").lower()
        scores = {area: self._score(text, kws) for area, kws in self.families.items()}
        overall = sum(scores.values()) / len(scores) if scores else 0.0
        weak = [area for area, score in scores.items() if score < 0.5]
        questions = [self.questions[a] for a in weak if a in self.questions]
        if overall < self.clarify_below and not questions:
            questions = [DEFAULT_QUESTION]
        return AnalysisResult(
            needs_clarification=overall < self.clarify_below,
            confidence=round(overall, 3),
            questions=questions,
            gaps=weak,
            current_understanding=context.context_summary,
        )


class KeywordConfirmationDetector(ConfirmationDetector):
    """
    Phrase-based confirmation detection; negated or amending replies never confirm.
    """

    _AFFIRM_RE = re.compile(
        r"确认|确定|没问题|没错|对的|正确|可以了|就这样|就这些|同意|开始生成|生成文档|是的|好的"
        r"|\bconfirm(ed)?\b|\bapproved?\b|looks good|that'?s (right|correct|all)"
        r"|let'?s (proceed|go)|go ahead|no more questions|\bready\b|^\s*yes\b",
        flags=re.IGNORECASE,
    )
    _NEGATE_RE = re.compile(
        r"不确认|不对|不是|不正确|不行|还没|还有|等等|修改|调整|补充"
        r"|\bnot\b|n't\b|\bwait\b|\bchange\b|^\s*no\b",
        flags=re.IGNORECASE,
    )

    async def is_confirmed(self, message: str, context: ConversationContext) -> bool:
        _ = context
        if self._NEGATE_RE.search(message):
            return False
        return bool(self._AFFIRM_RE.search(message))

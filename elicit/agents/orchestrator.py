"""Clarification engine: one conversational turn from user message to committed state."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Sequence

import anyio
from loguru import logger

from elicit.agents.concepts import normalize
from elicit.agents.generation import (
    KeywordCompletenessAnalyzer,
    OpenAIClarificationBackend,
    build_requirements_text,
    fallback_document,
)
from elicit.agents.policies import ClarificationConfig, ClarificationPolicy, status_for
from elicit.agents.similarity import SimilarityJudge
from elicit.agents.types import (
    AnalysisResult,
    Analyzer,
    ConfirmationDetector,
    ConversationContext,
    ConversationTurn,
    DocumentGenerator,
    EngineResult,
    HistoryAnalyzer,
    InvalidRequestError,
    SessionNotFoundError,
    new_id,
)
from elicit.agents.understanding import RuleBasedHistoryAnalyzer, make_question
from elicit.utils.env_cfg import load_clarification_env, load_matching_env

if TYPE_CHECKING:
    from elicit.core.session_store import SessionStore

APOLOGY = "抱歉，处理您的请求时出现了问题，请稍后重试。"
DOCUMENT_READY = "需求已确认，结构化需求文档已生成。"
DOCUMENT_FALLBACK = "需求已确认，但文档生成失败；以下是根据当前理解整理的需求摘要。"
ALREADY_COMPLETED = "需求文档已生成。如需开始新的需求，请重置会话。"


class ClarificationEngine:
    """
    Drive a clarification dialogue for many concurrent sessions.

    Each call works on a staged copy of the session and commits it to the
    store only once the whole turn has been processed, so a failed or
    cancelled call leaves the stored session untouched.
    """

    def __init__(
        self,
        store: SessionStore,
        analyzer: Analyzer | None = None,
        detector: ConfirmationDetector | None = None,
        generator: DocumentGenerator | None = None,
        history_analyzer: HistoryAnalyzer | None = None,
        judge: SimilarityJudge | None = None,
        policy: ClarificationPolicy | None = None,
        config: ClarificationConfig | None = None,
        fallback_analyzer: Analyzer | None = None,
    ) -> None:
        """
        Initialize the ClarificationEngine.

        Args:
            store (SessionStore): Owner of all session state.
            analyzer (Analyzer | None, optional): Turn-level completeness analysis. Defaults to the OpenAI backend.
            detector (ConfirmationDetector | None, optional): Confirmation detection. Defaults to the OpenAI backend.
            generator (DocumentGenerator | None, optional): Document generation. Defaults to the OpenAI backend.
            history_analyzer (HistoryAnalyzer | None, optional): Bulk re-analysis of turns. Defaults to the rule-based analyzer.
            judge (SimilarityJudge | None, optional): Already-answered detection. Defaults to one configured from the environment.
            policy (ClarificationPolicy | None, optional): Phase transitions and overrides. Defaults to None.
            config (ClarificationConfig | None, optional): Thresholds and timeouts. Defaults to the environment.
            fallback_analyzer (Analyzer | None, optional): Used when ``analyzer`` fails or times out. Defaults to keyword scoring.
        """
        self.store = store
        self.config = config or (policy.config if policy else load_clarification_env())
        self.policy = policy or ClarificationPolicy(self.config)
        self.judge = judge or SimilarityJudge(load_matching_env())
        self.history_analyzer = history_analyzer or RuleBasedHistoryAnalyzer(self.judge)
        self.fallback_analyzer = fallback_analyzer or KeywordCompletenessAnalyzer()
        backend = None
        if analyzer is None or detector is None or generator is None:
            backend = OpenAIClarificationBackend()
        self.analyzer = analyzer or backend
        self.detector = detector or backend
        self.generator = generator or backend

    async def process_message(
        self,
        text: str,
        prior_messages: Sequence[ConversationTurn | dict[str, Any]] | None = None,
        session_id: str | None = None,
    ) -> EngineResult:
        """
        Process one user message.

        Args:
            text (str): The user message.
            prior_messages (Sequence[ConversationTurn | dict[str, Any]] | None, optional): Client-held history. When its length differs from the stored turn count it replaces the stored turns. Defaults to None.
            session_id (str | None, optional): Session to continue. Defaults to a new session.

        Returns:
            EngineResult: The reply. Collaborator and internal failures yield ``success=False``.

        Raises:
            InvalidRequestError: If the message or an explicit session id is empty, or prior messages are malformed.
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidRequestError("Message must not be empty.")
        if session_id is not None and not session_id.strip():
            raise InvalidRequestError("Session id must not be empty.")
        prior = self._coerce_turns(prior_messages)
        session_id = session_id or new_id()

        try:
            async with self.store.lease(session_id):
                try:
                    staged = self.store.get(session_id)
                except SessionNotFoundError:
                    staged = ConversationContext(conversation_id=session_id)
                result = await self._run_turn(staged, text.strip(), prior)
                self.store.put(staged)
                logger.info(
                    "Session {} -> phase={} status={} confidence={:.2f}",
                    session_id,
                    result.phase,
                    result.status,
                    result.confidence,
                )
                return result
        except Exception as e:
            logger.exception("Error processing message for session {}: {}", session_id, e)
            return EngineResult(
                success=False,
                conversation_id=session_id,
                response=APOLOGY,
                status="clarifying",
                phase="clarifying",
                confidence=0.0,
                error=str(e),
            )

    async def reset_conversation(self, session_id: str) -> str:
        """
        Discard a session and start a fresh one.

        Args:
            session_id (str): The session to discard. Unknown ids are accepted.

        Returns:
            str: The id of the new, empty session.
        """
        async with self.store.lease(session_id):
            self.store.delete(session_id)
        fresh = self.store.create()
        logger.info("Reset session {} -> {}", session_id, fresh.conversation_id)
        return fresh.conversation_id

    def export_conversation(self, session_id: str) -> dict[str, Any]:
        """
        Read-only snapshot of a session.

        Args:
            session_id (str): The session id.

        Returns:
            dict[str, Any]: The versioned snapshot plus ``exported_at``.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        snapshot = self.store.get(session_id).to_dict()
        snapshot["exported_at"] = time.time()
        return snapshot

    def get_session(self, session_id: str) -> ConversationContext:
        return self.store.get(session_id)

    @staticmethod
    def _coerce_turns(
        prior: Sequence[ConversationTurn | dict[str, Any]] | None,
    ) -> list[ConversationTurn] | None:
        if prior is None:
            return None
        turns: list[ConversationTurn] = []
        for item in prior:
            if isinstance(item, ConversationTurn):
                turns.append(item)
                continue
            try:
                turns.append(ConversationTurn.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise InvalidRequestError(f"Malformed prior message: {e}") from e
        return turns

    def _reanalyze(self, ctx: ConversationContext) -> None:
        ctx.merge_history(self.history_analyzer.reanalyze(ctx.turns))

    async def _run_turn(
        self,
        ctx: ConversationContext,
        text: str,
        prior: list[ConversationTurn] | None,
    ) -> EngineResult:
        if prior is not None and len(prior) != len(ctx.turns):
            logger.debug(
                "Replacing {} stored turns with {} client turns", len(ctx.turns), len(prior)
            )
            ctx.replace_turns(prior)
            self._reanalyze(ctx)

        ctx.append_turn("user", text)
        if len(ctx.turns) > self.config.reanalysis_min_turns:
            self._reanalyze(ctx)

        if ctx.status == "completed":
            ctx.append_turn("assistant", ALREADY_COMPLETED, type="document")
            return self._result(ctx, ALREADY_COMPLETED)

        if ctx.status == "confirmed" and await self._is_confirmed(text, ctx):
            return await self._complete(ctx)
        return await self._clarify(ctx)

    async def _is_confirmed(self, text: str, ctx: ConversationContext) -> bool:
        try:
            with anyio.fail_after(self.config.collaborator_timeout):
                return bool(await self.detector.is_confirmed(text, ctx))
        except Exception as e:
            logger.warning("Confirmation check failed, treating as not confirmed: {}", e)
            return False

    async def _analyze(self, ctx: ConversationContext) -> AnalysisResult:
        history = ctx.history_text()
        try:
            with anyio.fail_after(self.config.collaborator_timeout):
                return await self.analyzer.analyze(history, ctx)
        except Exception as e:
            logger.warning("Analyzer failed, using keyword fallback: {}", e)
        return await self.fallback_analyzer.analyze(history, ctx)

    def filter_questions(
        self, candidates: Sequence[str], ctx: ConversationContext
    ) -> list[str]:
        """
        Drop candidates that repeat each other or are already answered.

        Args:
            candidates (Sequence[str]): Proposed questions, in order.
            ctx (ConversationContext): The session state used for matching.

        Returns:
            list[str]: Surviving questions, order preserved.
        """
        kept: list[str] = []
        for raw in candidates:
            question = (raw or "").strip()
            if not question:
                continue
            if any(self.judge.questions_similar(question, k) for k in kept):
                logger.debug("Dropping in-batch duplicate: {}", question)
                continue
            if self.judge.is_answered(question, ctx):
                logger.debug("Dropping already answered question: {}", question)
                continue
            kept.append(question)
        return kept

    def _record_questions(self, ctx: ConversationContext, questions: list[str]) -> None:
        known = {normalize(q.question) for q in ctx.asked_questions}
        now = time.time()
        for text in questions:
            key = normalize(text)
            if key in known:
                continue
            known.add(key)
            ctx.asked_questions.append(
                make_question(text, now, self.judge.classifier)
            )

    def _understanding(self, ctx: ConversationContext) -> str:
        if ctx.current_understanding:
            return ctx.current_understanding
        if ctx.context_summary:
            return ctx.context_summary
        return "\n".join(t.content for t in ctx.turns if t.role == "user")

    async def _clarify(self, ctx: ConversationContext) -> EngineResult:
        analysis = await self._analyze(ctx)
        if analysis.current_understanding:
            ctx.current_understanding = analysis.current_understanding

        remaining = self.filter_questions(analysis.questions, ctx)
        decision = self.policy.decide(
            ctx.phase,
            analysis,
            remaining,
            rounds=ctx.clarification_rounds,
            asked_count=len(ctx.asked_questions),
        )
        ctx.phase = decision.phase
        ctx.status = status_for(decision.phase)
        ctx.confidence = decision.confidence

        if decision.phase == "completed":
            return await self._complete(ctx)

        if decision.needs_clarification:
            self._record_questions(ctx, decision.questions)
            ctx.clarification_rounds += 1
            response = "\n\n".join(decision.questions)
            ctx.append_turn("assistant", response, type="clarification")
            return self._result(ctx, response, questions=decision.questions)

        response = (
            f"我理解的需求如下：\n\n{self._understanding(ctx)}\n\n"
            "请确认以上理解是否正确，或者告诉我需要补充或修改的内容。"
        )
        ctx.append_turn("assistant", response, type="confirmation")
        return self._result(ctx, response)

    async def _complete(self, ctx: ConversationContext) -> EngineResult:
        ctx.status = "parsing"
        full_text = build_requirements_text(ctx)
        error = None
        try:
            with anyio.fail_after(self.config.collaborator_timeout):
                document = await self.generator.generate_document(full_text)
        except Exception as e:
            logger.error("Document generation failed for {}: {}", ctx.conversation_id, e)
            document = fallback_document(ctx)
            error = str(e)

        ctx.requirement_document = document
        ctx.status = "completed"
        ctx.phase = "completed"
        response = DOCUMENT_READY if error is None else DOCUMENT_FALLBACK
        ctx.append_turn("assistant", response, type="document")
        return self._result(ctx, response, success=error is None, error=error)

    @staticmethod
    def _result(
        ctx: ConversationContext,
        response: str,
        questions: list[str] | None = None,
        success: bool = True,
        error: str | None = None,
    ) -> EngineResult:
        return EngineResult(
            success=success,
            conversation_id=ctx.conversation_id,
            response=response,
            status=ctx.status,
            phase=ctx.phase,
            confidence=ctx.confidence,
            clarification_questions=questions,
            requirement_document=ctx.requirement_document,
            error=error,
        )

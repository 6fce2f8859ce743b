"""History re-analysis: derive questions, facts, details and topics from turns."""

import re
import uuid
from typing import Sequence

from loguru import logger

from elicit.agents.classify import TypeClassifier
from elicit.agents.concepts import normalize
from elicit.agents.similarity import SimilarityJudge
from elicit.agents.types import (
    ClarificationQuestion,
    ConversationTurn,
    HistoryAnalysis,
    HistoryAnalyzer,
    RequirementTopic,
)

_NAMESPACE = uuid.UUID("6f1c2a52-8d0e-4c55-9a34-3f7c1d2b9e10")

_CLAUSE_SPLIT_RE = re.compile(r"(?<=[。！？!?；;\n])|[，,]")
_QUESTION_RE = re.compile(r"[？?]\s*$|[吗呢么]\s*[？?]?\s*$")
_LIST_PREFIX_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)、]|[（(]\d+[)）])\s*")
_DIGIT_RE = re.compile(r"\d")

_UNIT_WORDS = r"秒钟?|分钟|小时|天|周|个月|minutes?|mins?|hours?|hrs?|seconds?|secs?|days?"
_UNIT = rf"(?:{_UNIT_WORDS})"

# (detail key, pattern); group 1 holds the value.
_DETAIL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("失败次数", re.compile(r"(?:失败|错误|输错|输入错误)\s*(\d+\s*次)")),
    ("锁定时长", re.compile(rf"(?:锁定|冻结|禁用|封禁)\s*(\d+\s*{_UNIT})")),
    ("锁定时长", re.compile(rf"(\d+\s*{_UNIT})\s*(?:内|后)?\s*(?:自动)?解锁")),
    ("密码长度", re.compile(r"密码[^，,。]*?(?:长度|至少|不少于|最少|不低于)\s*(\d+\s*位?)")),
    ("会话超时", re.compile(rf"(?:会话|登录|session)[^，,。]*?(?:超时|过期|有效期)\s*(?:为|是)?\s*(\d+\s*{_UNIT})", re.I)),
    ("验证码有效期", re.compile(rf"验证码[^，,。]*?(?:有效期|过期)\s*(?:为|是)?\s*(\d+\s*{_UNIT})")),
    ("failed attempts", re.compile(r"(\d+)\s+(?:failed|wrong|incorrect|invalid)\s+(?:attempts?|tries|logins?)", re.I)),
    ("lock duration", re.compile(rf"lock(?:ed)?(?:\s+out)?\s+for\s+(\d+\s*{_UNIT})", re.I)),
)
_QUANTITY_RE = re.compile(rf"(\d+\s*(?:{_UNIT_WORDS}|次|个|位|条|人|项|页|mb|gb|%))", re.I)


def _stable_id(*parts: str) -> str:
    return str(uuid.uuid5(_NAMESPACE, "|".join(parts)))


def make_question(
    text: str, asked_at: float, classifier: TypeClassifier
) -> ClarificationQuestion:
    """
    Build the question record for ``text`` with a content-derived id.

    Args:
        text (str): The question text.
        asked_at (float): When it was asked.
        classifier (TypeClassifier): Classifier used for category and priority.

    Returns:
        ClarificationQuestion: A pending question.
    """
    tag = classifier.classify(text)
    return ClarificationQuestion(
        id=_stable_id("question", normalize(text)),
        question=text,
        asked_at=asked_at,
        category=classifier.category_for(tag),  # type: ignore[arg-type]
        priority="high" if tag in ("lock", "credential") else "medium",
    )


def split_clauses(text: str) -> list[str]:
    """
    Split a message into clauses on sentence punctuation and commas.

    Args:
        text (str): The message text.

    Returns:
        list[str]: Non-empty, stripped clauses.
    """
    return [c.strip() for c in _CLAUSE_SPLIT_RE.split(text or "") if c and c.strip()]


def is_question(text: str) -> bool:
    return bool(_QUESTION_RE.search(text.strip()))


def extract_questions(content: str) -> list[str]:
    """
    Pull individual questions out of an assistant clarification message.

    Args:
        content (str): The assistant message.

    Returns:
        list[str]: One entry per non-empty line, list markers removed.
    """
    out: list[str] = []
    for line in (content or "").splitlines():
        line = _LIST_PREFIX_RE.sub("", line).strip()
        if len(normalize(line)) >= 2:
            out.append(line)
    return out


def extract_details(
    text: str, classifier: TypeClassifier | None = None
) -> dict[str, str]:
    """
    Extract ``key -> value`` details from a user message.

    Named patterns run first; remaining quantities are keyed by the words
    that precede them in their clause, but only when those words carry a
    recognizable type. "系统需要支持100个用户" yields no detail, since a key
    like "系统需要支持" would match unrelated questions.

    Args:
        text (str): The user message.
        classifier (TypeClassifier | None, optional): Classifier gating generic keys. Defaults to the built-in one.

    Returns:
        dict[str, str]: Extracted details, values with whitespace removed.
    """
    classifier = classifier or TypeClassifier()
    details: dict[str, str] = {}
    consumed: list[tuple[int, int]] = []
    for key, pattern in _DETAIL_PATTERNS:
        for match in pattern.finditer(text):
            details.setdefault(key, re.sub(r"\s+", "", match.group(1)))
            consumed.append(match.span(1))

    for clause in split_clauses(text):
        if is_question(clause):
            continue
        offset = text.find(clause)
        for match in _QUANTITY_RE.finditer(clause):
            start, end = match.span(1)
            if any(s < offset + end and offset + start < e for s, e in consumed):
                continue
            prefix = re.sub(r"[\W_]+$", "", clause[:start]).strip()
            if not 2 <= len(prefix) <= 20:
                continue
            if classifier.classify(prefix) == "general":
                logger.debug("Skipping untyped quantity key: {}", prefix)
                continue
            details.setdefault(prefix, re.sub(r"\s+", "", match.group(1)))
    return details


class RuleBasedHistoryAnalyzer(HistoryAnalyzer):
    """
    Deterministic re-analysis of a full turn list.

    The same turns always produce the same questions, facts, details and
    topics (ids are derived from content). A question is marked answered when
    a later user turn addresses it; the binding is inferred from the whole
    history on every pass rather than recorded when the reply arrives.
    """

    def __init__(self, judge: SimilarityJudge | None = None, summary_chars: int = 500):
        """
        Initialize the RuleBasedHistoryAnalyzer.

        Args:
            judge (SimilarityJudge | None, optional): Judge used to match replies to questions. Defaults to None.
            summary_chars (int, optional): Maximum length of the context summary. Defaults to 500.
        """
        self.judge = judge or SimilarityJudge()
        self.classifier: TypeClassifier = self.judge.classifier
        self.summary_chars = summary_chars

    def _is_fact(self, clause: str) -> bool:
        if is_question(clause) or len(normalize(clause)) < 4:
            return False
        return bool(_DIGIT_RE.search(clause)) or self.classifier.classify(clause) != "general"

    def _answers(self, question: str, turn: ConversationTurn) -> bool:
        if any(
            self.judge.detail_matches(question, key)
            for key in extract_details(turn.content, self.classifier)
        ):
            return True
        return any(
            self.judge.fact_answers(question, clause)
            for clause in split_clauses(turn.content)
            if not is_question(clause)
        )

    def _collect_questions(
        self, turns: Sequence[ConversationTurn]
    ) -> list[ClarificationQuestion]:
        questions: list[ClarificationQuestion] = []
        seen: set[str] = set()
        for idx, turn in enumerate(turns):
            if turn.role != "assistant":
                continue
            if turn.type not in (None, "clarification"):
                continue
            asked = extract_questions(turn.content)
            if turn.type is None:
                asked = [q for q in asked if is_question(q)]
            later_users = [t for t in turns[idx + 1 :] if t.role == "user"]
            for text in asked:
                key = normalize(text)
                if key in seen:
                    continue
                seen.add(key)
                q = make_question(text, turn.timestamp, self.classifier)
                for reply in later_users:
                    if self._answers(text, reply):
                        q.mark_answered(reply.content, reply.timestamp)
                        break
                else:
                    # A lone question followed directly by a statement is taken as answered.
                    nxt = turns[idx + 1] if idx + 1 < len(turns) else None
                    if (
                        len(asked) == 1
                        and nxt is not None
                        and nxt.role == "user"
                        and not is_question(nxt.content)
                    ):
                        q.mark_answered(nxt.content, nxt.timestamp)
                questions.append(q)
        return questions

    def _collect_facts(
        self, turns: Sequence[ConversationTurn]
    ) -> tuple[list[str], dict[str, str]]:
        facts: list[str] = []
        details: dict[str, str] = {}
        for turn in turns:
            if turn.role != "user":
                continue
            for clause in split_clauses(turn.content):
                clause = clause.rstrip("。！!；;")
                if self._is_fact(clause) and clause not in facts:
                    facts.append(clause)
            # Later statements override earlier values for the same detail.
            details.update(extract_details(turn.content, self.classifier))
        return facts, details

    def _build_topics(
        self,
        facts: list[str],
        questions: list[ClarificationQuestion],
        stamp: float,
    ) -> list[RequirementTopic]:
        grouped: dict[str, tuple[list[str], list[ClarificationQuestion]]] = {}
        for fact in facts:
            grouped.setdefault(self.classifier.classify(fact), ([], []))[0].append(fact)
        for q in questions:
            grouped.setdefault(self.classifier.classify(q.question), ([], []))[1].append(q)

        topics: list[RequirementTopic] = []
        names = self.classifier.lexicon.topic_names
        for tag, (tag_facts, tag_questions) in grouped.items():
            answered = sum(1 for q in tag_questions if q.status == "answered")
            pending = len(tag_questions) - answered
            completeness = 0.35 * len(tag_facts) + 0.25 * answered - 0.15 * pending
            topics.append(
                RequirementTopic(
                    id=_stable_id("topic", tag),
                    name=names.get(tag, tag),  # type: ignore[call-overload]
                    description="；".join(tag_facts),
                    completeness=round(min(1.0, max(0.0, completeness)), 2),
                    last_updated=stamp,
                    questions=list(tag_questions),
                    type_tag=tag,
                )
            )
        return topics

    def reanalyze(self, turns: Sequence[ConversationTurn]) -> HistoryAnalysis:
        """
        Derive the session's understanding from its full turn list.

        Args:
            turns (Sequence[ConversationTurn]): All turns, in order.

        Returns:
            HistoryAnalysis: Questions, facts, details, topics and a summary.
        """
        if not turns:
            return HistoryAnalysis()
        questions = self._collect_questions(turns)
        facts, details = self._collect_facts(turns)
        topics = self._build_topics(facts, questions, stamp=turns[-1].timestamp)
        summary = "；".join(facts)[: self.summary_chars] or None
        logger.debug(
            "Re-analyzed {} turns: {} questions, {} facts, {} details, {} topics",
            len(turns),
            len(questions),
            len(facts),
            len(details),
            len(topics),
        )
        return HistoryAnalysis(
            topics=topics,
            asked_questions=questions,
            confirmed_facts=facts,
            confirmed_details=details,
            context_summary=summary,
        )

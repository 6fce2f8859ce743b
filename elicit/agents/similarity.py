"""Rule-based judgement of whether a clarification question was already answered."""

from dataclasses import dataclass
from typing import Iterable

from loguru import logger

from elicit.agents.classify import TypeClassifier
from elicit.agents.concepts import ConceptExtractor, normalize
from elicit.agents.lexicon import Lexicon, default_lexicon
from elicit.agents.types import ConversationContext, RequirementTopic


@dataclass(frozen=True)
class MatchingConfig:
    """
    Thresholds for duplicate and already-answered detection.
    """

    detail_overlap: float = 0.6
    fact_min_overlap: int = 2
    topic_completeness: float = 0.8
    topic_overlap: float = 0.5
    concept_weight: float = 0.8
    length_weight: float = 0.2
    base_threshold: float = 0.6
    threshold_per_concept: float = 0.05
    max_threshold: float = 0.8


class SimilarityJudge:
    """
    Decides whether a candidate question duplicates something already known.

    Errs towards "not answered": re-asking an answered question is cheaper
    than silently dropping a new one.
    """

    def __init__(
        self,
        config: MatchingConfig | None = None,
        lexicon: Lexicon | None = None,
    ) -> None:
        """
        Initialize the SimilarityJudge.

        Args:
            config (MatchingConfig | None, optional): Matching thresholds. Defaults to None.
            lexicon (Lexicon | None, optional): Keyword tables shared by the extractor and classifier. Defaults to None.
        """
        self.config = config or MatchingConfig()
        self.lexicon = lexicon or default_lexicon()
        self.extractor = ConceptExtractor(self.lexicon)
        self.classifier = TypeClassifier(self.lexicon)

    def concepts_related(self, c1: str, c2: str) -> bool:
        """
        Whether two concepts refer to the same thing.

        Args:
            c1 (str): First concept.
            c2 (str): Second concept.

        Returns:
            bool: True on equality, substring containment, or a shared synonym group.
        """
        if c1 == c2:
            return True
        if c1 in c2 or c2 in c1:
            return True
        group = self.lexicon.synonym_group(c1)
        return group is not None and c2 in group

    def overlap(self, c1s: Iterable[str], c2s: Iterable[str]) -> int:
        """
        Count concepts of ``c1s`` that have a related concept in ``c2s``.

        Args:
            c1s (Iterable[str]): Concepts being matched.
            c2s (Iterable[str]): Concepts matched against.

        Returns:
            int: Number of matched concepts from ``c1s``.
        """
        pool = list(c2s)
        return sum(1 for c in c1s if any(self.concepts_related(c, o) for o in pool))

    def fact_answers(self, candidate: str, fact: str) -> bool:
        """
        Whether a confirmed fact answers the candidate question.

        Args:
            candidate (str): The proposed question.
            fact (str): A statement the user already made.

        Returns:
            bool: True when types are compatible and enough concepts overlap.
        """
        if not self.classifier.compatible(
            self.classifier.classify(candidate), self.classifier.classify(fact)
        ):
            return False
        cand = self.extractor.extract(candidate)
        if not cand:
            return False
        needed = min(len(cand), self.config.fact_min_overlap)
        return self.overlap(cand, self.extractor.extract(fact)) >= needed

    def detail_matches(self, candidate: str, detail_key: str) -> bool:
        """
        Whether a confirmed detail key describes the detail the candidate asks about.

        Args:
            candidate (str): The proposed question.
            detail_key (str): A key of ``confirmed_details``.

        Returns:
            bool: True when at least ``detail_overlap`` of the candidate's concepts match.
        """
        cand = self.extractor.extract(candidate)
        key = self.extractor.extract(detail_key)
        if not cand or not key:
            return False
        return self.overlap(cand, key) / len(cand) >= self.config.detail_overlap

    def similarity(self, q1: str, q2: str) -> tuple[float, float]:
        """
        Weighted similarity and the dynamic threshold it must reach.

        Args:
            q1 (str): First question.
            q2 (str): Second question.

        Returns:
            tuple[float, float]: ``(score, threshold)``.
        """
        cfg = self.config
        c1 = self.extractor.extract(q1)
        c2 = self.extractor.extract(q2)
        largest = max(len(c1), len(c2))
        if largest == 0:
            return 0.0, cfg.base_threshold
        concept_sim = len(c1 & c2) / largest
        length_sim = 1 - abs(len(c1) - len(c2)) / largest
        score = cfg.concept_weight * concept_sim + cfg.length_weight * length_sim
        threshold = min(
            cfg.max_threshold, cfg.base_threshold + cfg.threshold_per_concept * largest
        )
        return score, threshold

    def questions_similar(self, q1: str, q2: str) -> bool:
        """
        Whether two questions ask the same thing.

        Richer questions need a higher score, so specific questions stay
        distinct while generic ones collapse more easily.

        Args:
            q1 (str): First question.
            q2 (str): Second question.

        Returns:
            bool: True when the questions are duplicates.
        """
        n1, n2 = normalize(q1), normalize(q2)
        if n1 and n1 == n2:
            return True
        if not self.classifier.compatible(
            self.classifier.classify(q1), self.classifier.classify(q2)
        ):
            return False
        score, threshold = self.similarity(q1, q2)
        return score >= threshold

    def topic_concepts(self, topic: RequirementTopic) -> frozenset[str]:
        parts = [topic.name, topic.description]
        for q in topic.questions:
            if q.status == "answered":
                parts.append(q.question)
                parts.append(q.answer or "")
        return self.extractor.extract(" ".join(parts))

    def topic_covers(self, candidate: str, topic: RequirementTopic) -> bool:
        """
        Whether a well-understood topic already covers the candidate.

        Args:
            candidate (str): The proposed question.
            topic (RequirementTopic): The topic to check.

        Returns:
            bool: True for a complete, compatible, sufficiently overlapping topic.
        """
        if topic.completeness <= self.config.topic_completeness:
            return False
        cand_type = self.classifier.classify(candidate)
        topic_type = (
            topic.type_tag
            if topic.type_tag != "general"
            else self.classifier.classify(f"{topic.name} {topic.description}")
        )
        if not self.classifier.compatible(cand_type, topic_type):
            return False
        cand = self.extractor.extract(candidate)
        if not cand:
            return False
        ratio = self.overlap(cand, self.topic_concepts(topic)) / len(cand)
        return ratio >= self.config.topic_overlap

    def is_answered(self, candidate: str, context: ConversationContext) -> bool:
        """
        Whether the candidate question is already answered in the session.

        Args:
            candidate (str): The proposed question.
            context (ConversationContext): The session state to check against.

        Returns:
            bool: True if a detail, fact, answered question or complete topic covers it.
        """
        for key in context.confirmed_details:
            if self.detail_matches(candidate, key):
                logger.debug("Question '{}' covered by detail '{}'", candidate, key)
                return True

        for fact in context.confirmed_facts:
            if self.fact_answers(candidate, fact):
                logger.debug("Question '{}' answered by fact '{}'", candidate, fact)
                return True

        for asked in context.asked_questions:
            if asked.status == "answered" and self.questions_similar(
                candidate, asked.question
            ):
                logger.debug(
                    "Question '{}' duplicates answered '{}'", candidate, asked.question
                )
                return True

        for topic in context.topics:
            if self.topic_covers(candidate, topic):
                logger.debug("Question '{}' covered by topic '{}'", candidate, topic.name)
                return True

        return False

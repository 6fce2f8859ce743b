"""Clarification engine package.

Provides the conversation model, rule-based concept matching, the phase state
machine, LLM-backed and keyword collaborators, and the engine that ties them
together for one turn at a time.
"""

from elicit.agents.types import (
    AnalysisResult,
    Analyzer,
    ClarificationQuestion,
    ConfirmationDetector,
    ConversationContext,
    ConversationTurn,
    DocumentGenerationError,
    DocumentGenerator,
    EngineResult,
    HistoryAnalysis,
    HistoryAnalyzer,
    InvalidRequestError,
    RequirementTopic,
    SessionNotFoundError,
)
from elicit.agents.lexicon import Lexicon, default_lexicon
from elicit.agents.concepts import ConceptExtractor, extract_concepts
from elicit.agents.classify import TypeClassifier
from elicit.agents.similarity import MatchingConfig, SimilarityJudge
from elicit.agents.understanding import RuleBasedHistoryAnalyzer
from elicit.agents.policies import (
    ClarificationConfig,
    ClarificationPolicy,
    PhaseStateMachine,
    status_for,
)
from elicit.agents.generation import (
    KeywordCompletenessAnalyzer,
    KeywordConfirmationDetector,
    OpenAIClarificationBackend,
    RequirementDocument,
)
from elicit.agents.orchestrator import ClarificationEngine

__all__ = [
    "AnalysisResult",
    "Analyzer",
    "ClarificationConfig",
    "ClarificationEngine",
    "ClarificationPolicy",
    "ClarificationQuestion",
    "ConceptExtractor",
    "ConfirmationDetector",
    "ConversationContext",
    "ConversationTurn",
    "DocumentGenerationError",
    "DocumentGenerator",
    "EngineResult",
    "HistoryAnalysis",
    "HistoryAnalyzer",
    "InvalidRequestError",
    "KeywordCompletenessAnalyzer",
    "KeywordConfirmationDetector",
    "Lexicon",
    "MatchingConfig",
    "OpenAIClarificationBackend",
    "PhaseStateMachine",
    "RequirementDocument",
    "RequirementTopic",
    "RuleBasedHistoryAnalyzer",
    "SessionNotFoundError",
    "SimilarityJudge",
    "TypeClassifier",
    "default_lexicon",
    "extract_concepts",
    "status_for",
]

"""Concept extraction: normalized tokens plus adjacent bigrams and trigrams."""

import re

from elicit.agents.lexicon import Lexicon, default_lexicon

_CJK = "\u3400-\u4dbf\u4e00-\u9fff"
_CHUNK_RE = re.compile(rf"[a-z0-9]+(?:['\-][a-z0-9]+)*|[{_CJK}]+")
_CJK_RE = re.compile(rf"[{_CJK}]")
_NORMALIZE_RE = re.compile(r"[\W_]+")


def normalize(text: str) -> str:
    """
    Normalize text for exact comparison: lower-case, no whitespace or punctuation.

    Args:
        text (str): The input text.

    Returns:
        str: The normalized string.
    """
    return _NORMALIZE_RE.sub("", (text or "").lower())


class ConceptExtractor:
    """
    Tokenizes text into a deduplicated set of concepts.

    CJK runs have no word boundaries, so they are segmented by greedy
    longest-match against the lexicon vocabulary (stopwords included, so they
    act as boundaries). Unknown stretches fall back to two-character chunks.
    """

    def __init__(self, lexicon: Lexicon | None = None) -> None:
        """
        Initialize the ConceptExtractor.

        Args:
            lexicon (Lexicon | None, optional): Keyword tables. Defaults to the built-in lexicon.
        """
        self.lexicon = lexicon or default_lexicon()
        self._dictionary = self.lexicon.vocabulary | {
            w for w in self.lexicon.stopwords if _CJK_RE.search(w)
        }
        self._max_len = max((len(w) for w in self._dictionary), default=1)

    def _segment_cjk(self, run: str) -> list[str]:
        pieces: list[str] = []
        unknown: list[str] = []

        def flush() -> None:
            buf = "".join(unknown)
            pieces.extend(buf[i : i + 2] for i in range(0, len(buf), 2))
            unknown.clear()

        i = 0
        while i < len(run):
            for size in range(min(self._max_len, len(run) - i), 0, -1):
                word = run[i : i + size]
                if word in self._dictionary:
                    flush()
                    pieces.append(word)
                    i += size
                    break
            else:
                unknown.append(run[i])
                i += 1
        flush()
        return pieces

    def tokens(self, text: str) -> list[str]:
        """
        Split text into ordered tokens with stopwords and single characters removed.

        Args:
            text (str): The input text.

        Returns:
            list[str]: The remaining tokens in reading order.
        """
        out: list[str] = []
        for match in _CHUNK_RE.finditer((text or "").lower()):
            chunk = match.group(0)
            pieces = self._segment_cjk(chunk) if _CJK_RE.match(chunk) else [chunk]
            out.extend(
                p for p in pieces if len(p) > 1 and p not in self.lexicon.stopwords
            )
        return out

    def extract(self, text: str) -> frozenset[str]:
        """
        Return unigrams, adjacent bigrams and adjacent trigrams of ``text``.

        Args:
            text (str): The input text.

        Returns:
            frozenset[str]: The concept set; empty for empty input.
        """
        toks = self.tokens(text)
        concepts: set[str] = set(toks)
        for i in range(len(toks) - 1):
            concepts.add(toks[i] + toks[i + 1])
            if i + 2 < len(toks):
                concepts.add(toks[i] + toks[i + 1] + toks[i + 2])
        return frozenset(concepts)


_DEFAULT_EXTRACTOR: ConceptExtractor | None = None


def extract_concepts(text: str, lexicon: Lexicon | None = None) -> frozenset[str]:
    """
    Module-level convenience wrapper around ``ConceptExtractor.extract``.

    Args:
        text (str): The input text.
        lexicon (Lexicon | None, optional): Keyword tables. Defaults to the built-in lexicon.

    Returns:
        frozenset[str]: The concept set.
    """
    global _DEFAULT_EXTRACTOR
    if lexicon is not None:
        return ConceptExtractor(lexicon).extract(text)
    if _DEFAULT_EXTRACTOR is None:
        _DEFAULT_EXTRACTOR = ConceptExtractor()
    return _DEFAULT_EXTRACTOR.extract(text)

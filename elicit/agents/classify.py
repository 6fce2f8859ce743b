"""Coarse semantic type classification for question and fact fragments."""

from elicit.agents.lexicon import Lexicon, TypeTag, default_lexicon


class TypeClassifier:
    """
    Maps text to a coarse type tag with ordered keyword rules.
    """

    def __init__(self, lexicon: Lexicon | None = None) -> None:
        self.lexicon = lexicon or default_lexicon()
        pairs: set[tuple[str, str]] = set()
        for a, b in self.lexicon.compatible_pairs:
            pairs.add((a, b))
            pairs.add((b, a))
        self._pairs = frozenset(pairs)

    def classify(self, text: str) -> TypeTag:
        """
        Return the tag of the first rule matching ``text``, else ``general``.

        Args:
            text (str): The text fragment to classify.

        Returns:
            TypeTag: The detected type tag.
        """
        if not text:
            return "general"
        for tag, pattern in self.lexicon.compiled_rules:
            if pattern.search(text):
                return tag
        return "general"

    def compatible(self, a: TypeTag, b: TypeTag) -> bool:
        """
        Whether two type tags may describe the same detail. Symmetric.

        Args:
            a (TypeTag): The first tag.
            b (TypeTag): The second tag.

        Returns:
            bool: True when matching between the two types is allowed.
        """
        if a == b or a == "general" or b == "general":
            return True
        return (a, b) in self._pairs

    def category_for(self, tag: TypeTag) -> str:
        """
        Question category used when recording a question of this type.

        Args:
            tag (TypeTag): The type tag.

        Returns:
            str: One of the question categories.
        """
        return self.lexicon.categories.get(tag, "functional")

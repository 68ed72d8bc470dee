"""Name and description match strategies"""

import re
from difflib import SequenceMatcher
from typing import Dict, Iterable, Optional, TypeVar
from bouwdepot_validator.utils.errors import ConfigurationError

T = TypeVar("T")


class MatchStrategy:
    """Decides whether two (already normalized) strings refer to the same thing"""

    name = "base"

    def matches(self, candidate: str, reference: str) -> bool:
        raise NotImplementedError

    def find(self, term: str, keys: Iterable[str]) -> Optional[str]:
        """First key the term matches, or None"""
        for key in keys:
            if self.matches(term, key):
                return key
        return None


class SubstringMatchStrategy(MatchStrategy):
    """Case-insensitive containment in either direction"""

    name = "substring"

    def matches(self, candidate: str, reference: str) -> bool:
        if not candidate or not reference:
            return False
        a = candidate.lower()
        b = reference.lower()
        return a in b or b in a


class TokenSetMatchStrategy(MatchStrategy):
    """
    Token-set similarity scored with SequenceMatcher.

    Tokens are sorted and deduplicated before comparing, so word order and
    repeated words do not lower the score. A full token subset always matches.
    """

    name = "token_set"

    def __init__(self, threshold: float = 0.85):
        self.threshold = threshold

    @staticmethod
    def _tokens(value: str) -> set:
        return set(re.findall(r"\w+", value.lower()))

    def similarity(self, candidate: str, reference: str) -> float:
        a = self._tokens(candidate)
        b = self._tokens(reference)
        if not a or not b:
            return 0.0
        if a <= b or b <= a:
            return 1.0
        return SequenceMatcher(None, " ".join(sorted(a)), " ".join(sorted(b))).ratio()

    def matches(self, candidate: str, reference: str) -> bool:
        return self.similarity(candidate, reference) >= self.threshold


_STRATEGIES = {
    SubstringMatchStrategy.name: SubstringMatchStrategy,
    TokenSetMatchStrategy.name: TokenSetMatchStrategy,
}


def get_match_strategy(name: str = "substring", threshold: float = 0.85) -> MatchStrategy:
    """Build a match strategy by its configured name"""
    if name == TokenSetMatchStrategy.name:
        return TokenSetMatchStrategy(threshold)
    if name not in _STRATEGIES:
        raise ConfigurationError(f"Unknown match strategy: {name}")
    return _STRATEGIES[name]()


def lookup(mapping: Dict[str, T], term: str, strategy: MatchStrategy) -> Optional[T]:
    """Exact key first, then the first key the strategy matches"""
    if not term:
        return None
    if term in mapping:
        return mapping[term]
    key = strategy.find(term, mapping.keys())
    return mapping[key] if key is not None else None

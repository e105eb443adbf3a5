"""Fuzzy identity resolution between free-text names and known persons."""

from dataclasses import dataclass
from enum import Enum

from ..models import Person


class MatchType(Enum):
    """How a name matched a person."""

    EXACT_FULL_NAME = "exact_full_name"
    EXACT_FIRST_NAME = "exact_first_name"
    FUZZY_FIRST_NAME = "fuzzy_first_name"
    FUZZY_FULL_NAME = "fuzzy_full_name"
    PARTIAL_LAST_NAME = "partial_last_name"


@dataclass(frozen=True)
class FuzzyMatch:
    """A scored candidate binding of a name to a person."""

    person: Person
    score: float
    match_type: MatchType


def levenshtein_distance(s1: str, s2: str) -> int:
    """Case-insensitive edit distance between two strings."""
    a = s1.lower()
    b = s2.lower()
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two rows are enough
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            curr[j] = min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost)
        prev = curr
    return prev[-1]


def similarity(s1: str, s2: str) -> float:
    """Normalized similarity from 0.0 (unrelated) to 1.0 (identical).

    Both strings are lowercased and trimmed before comparison.
    """
    a = s1.strip().lower()
    b = s2.strip().lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def split_name(name: str) -> tuple[str, str]:
    """Split a name into its first token and the remainder."""
    parts = name.strip().split(None, 1)
    if not parts:
        return "", ""
    first = parts[0]
    rest = parts[1].strip() if len(parts) > 1 else ""
    return first, rest


class NameMatcher:
    """Ranks known persons against a free-text name."""

    def __init__(
        self, threshold: float = 0.5, minimum_confidence: float = 0.7
    ) -> None:
        """Initialize the matcher.

        Args:
            threshold: Default cutoff for find_matches.
            minimum_confidence: Default cutoff for best_match.
        """
        self.threshold = threshold
        self.minimum_confidence = minimum_confidence

    def find_matches(
        self,
        name: str,
        people: list[Person],
        threshold: float | None = None,
    ) -> list[FuzzyMatch]:
        """Find all persons matching the name at or above threshold.

        Args:
            name: Free-text name, e.g. "Sara Kim" or "Sara".
            people: The registry to search.
            threshold: Minimum score, defaults to the matcher's threshold.

        Returns:
            Matches sorted by score, highest first.
        """
        cutoff = self.threshold if threshold is None else threshold
        query_first, query_last = split_name(name)
        if not query_first:
            return []

        matches = []
        for person in people:
            score, match_type = self._score(query_first, query_last, person)
            if score >= cutoff:
                matches.append(FuzzyMatch(person=person, score=score, match_type=match_type))

        return sorted(matches, key=lambda m: m.score, reverse=True)

    def best_match(
        self,
        name: str,
        people: list[Person],
        minimum_confidence: float | None = None,
    ) -> FuzzyMatch | None:
        """Return the single best match if it meets the minimum confidence."""
        cutoff = (
            self.minimum_confidence if minimum_confidence is None else minimum_confidence
        )
        matches = self.find_matches(name, people, threshold=cutoff)
        return matches[0] if matches else None

    def _score(
        self, query_first: str, query_last: str, person: Person
    ) -> tuple[float, MatchType]:
        first_exact = query_first.lower() == person.first_name.lower()

        if first_exact:
            if not query_last:
                return 0.9, MatchType.EXACT_FIRST_NAME
            if query_last.lower() == person.last_name.lower():
                return 1.0, MatchType.EXACT_FULL_NAME
            last_sim = similarity(query_last, person.last_name)
            match_type = (
                MatchType.EXACT_FULL_NAME if last_sim >= 0.8 else MatchType.PARTIAL_LAST_NAME
            )
            return 0.7 + 0.3 * last_sim, match_type

        first_sim = similarity(query_first, person.first_name)
        if not query_last:
            return first_sim * 0.9, MatchType.FUZZY_FIRST_NAME

        last_sim = similarity(query_last, person.last_name)
        score = 0.7 * first_sim + 0.3 * last_sim
        if first_sim >= 0.8 and last_sim < 0.8:
            return score, MatchType.FUZZY_FIRST_NAME
        return score, MatchType.FUZZY_FULL_NAME

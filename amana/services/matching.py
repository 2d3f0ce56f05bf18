"""Text normalization and ordered pattern tables shared by the resolvers."""

import re
from dataclasses import dataclass
from typing import Generic, Iterable, Optional, TypeVar

A = TypeVar("A")


def normalize_for_matching(text: str) -> str:
    """Casefold, collapse whitespace and trim surrounding punctuation ("Send it!" -> "send it")."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def compile_patterns(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


@dataclass(frozen=True)
class PatternRule(Generic[A]):
    """One (predicate, action) row; the predicate is "any pattern matches"."""

    action: A
    patterns: tuple[re.Pattern, ...]

    def matches(self, normalized: str) -> bool:
        return any(pattern.search(normalized) for pattern in self.patterns)


def first_match(rules: Iterable[PatternRule[A]], normalized: str) -> Optional[A]:
    """Evaluate rules top to bottom and return the first matching action."""
    if not normalized:
        return None
    for rule in rules:
        if rule.matches(normalized):
            return rule.action
    return None

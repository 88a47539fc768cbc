"""
Test pattern identifiers.

The reverse index stores patterns with ``-`` between their fields
(``pkg.ClsTest-testM``); consumers get them with ``,`` (``pkg.ClsTest,testM``).
Position identifiers supplied by a consumer use ``,`` too and are looked up
in the index with ``.`` (``pkg.Cls,m`` -> ``pkg.Cls.m``).

Each substitution belongs to one direction only. Separators embedded in class
or method names are not escaped, existing indexes rely on that.
"""
from typing import Iterable, Iterator, List

from ezdiscovery.common import TestPattern

INDEX_SEPARATOR = "-"
CONSUMER_SEPARATOR = ","
QUALIFIER = "."


def decode(raw: str) -> TestPattern:
    return raw.replace(INDEX_SEPARATOR, CONSUMER_SEPARATOR)


def normalize_position(raw: str) -> str:
    return raw.replace(CONSUMER_SEPARATOR, QUALIFIER)


def qualify(class_name: str, method_name: str) -> str:
    if not class_name:
        return method_name
    return f"{class_name}{QUALIFIER}{method_name}"


def encode(class_name: str, method_name: str) -> str:
    """Index side form of the test ``method_name`` declared in ``class_name``."""
    return f"{class_name}{INDEX_SEPARATOR}{method_name}"


class PatternSet:
    """Insertion ordered set of test patterns."""

    def __init__(self, patterns: Iterable[TestPattern] = ()):
        self._patterns = dict.fromkeys(patterns)

    def add(self, pattern: TestPattern) -> None:
        self._patterns[pattern] = None

    def update(self, patterns: Iterable[TestPattern]) -> None:
        for pattern in patterns:
            self._patterns[pattern] = None

    def as_list(self) -> List[TestPattern]:
        return list(self._patterns)

    def __contains__(self, pattern) -> bool:
        return pattern in self._patterns

    def __iter__(self) -> Iterator[TestPattern]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PatternSet):
            return NotImplemented
        return self.as_list() == other.as_list()

    def __repr__(self) -> str:
        return f"PatternSet({self.as_list()!r})"

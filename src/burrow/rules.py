"""
Remote URL pattern matching for configuration rules.

A rule pattern is tried first as a shell glob against the whole remote URL,
then as a regular expression searched anywhere in it. An empty pattern
matches every remote. Patterns that use glob wildcards but don't compile as
regular expressions (`*gitlab*`) are glob-only; anything else that doesn't
compile is rejected.
"""

import fnmatch
import re
from typing import Iterable, List, Optional, Pattern, TypeVar

from burrow.errors import InvalidInputError

R = TypeVar('R')

_GLOB_CHARS = set('*?[')


def compile_pattern(pattern: str) -> Optional[Pattern[str]]:
    """
    The regex half of a rule pattern, or None for a glob-only pattern.

    Raises:
        InvalidInputError: if pattern is neither a glob nor a valid regex
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        if _GLOB_CHARS & set(pattern):
            return None
        raise InvalidInputError(f"invalid rule pattern {pattern!r}: {e}")


def matches_pattern(pattern: str, remote: str) -> bool:
    """
    Glob-then-regex match.

    Raises:
        InvalidInputError: if pattern is neither a glob nor a valid regex
    """
    if not pattern:
        return True
    if fnmatch.fnmatchcase(remote, pattern):
        return True
    regex = compile_pattern(pattern)
    return regex is not None and regex.search(remote) is not None


def matching_rules(rules: Iterable[R], remote: str) -> List[R]:
    """All rules whose pattern matches remote, in configuration order."""
    return [rule for rule in rules if matches_pattern(getattr(rule, 'pattern', ''), remote)]

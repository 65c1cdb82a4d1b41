"""Dockerignore-style pattern compilation and matching.

Globs are translated with docker-py's dockerignore translator
(``docker.utils.fnmatch.translate``): ``*`` and ``?`` stay within one path
segment, ``**`` crosses directories and ``[...]`` / ``[!...]`` are character
classes. On top of that this module adds ``\\`` escapes, validation with line
numbers and the evaluation order of the Docker CLI: patterns are evaluated in
file order with the last matching pattern winning. A ``!`` prefix re-includes
a path. A trailing ``/`` limits a pattern to directories.

Paths excluded through an ancestor directory stay excluded: the archiver
prunes excluded directories without descending, so a later negation cannot
reach their children.
"""

import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from docker.utils.build import normalize_slashes
from docker.utils.fnmatch import translate
from loguru import logger

from .exceptions import InvalidPatternError

logger = logger.bind(name=__name__)

# private-use code points standing in for escaped characters during translation
_PLACEHOLDER_BASE = 0xE000


@dataclass(frozen=True)
class IgnorePattern:
    """A single compiled ignore rule."""

    pattern: str
    negated: bool = False
    directory_only: bool = False
    regex: Pattern[str] = field(default=None, compare=False, repr=False)

    def matches(self, path: str, is_directory: bool = False) -> bool:
        """Check whether this rule applies to a normalized relative path."""
        if self.directory_only and not is_directory:
            return False
        return self.regex.match(path) is not None


def _hide_escapes(pattern: str, line_number: Optional[int]) -> Tuple[str, Dict[str, str]]:
    """Replace ``\\c`` escapes with placeholders the glob translator leaves alone."""
    literals: Dict[str, str] = {}
    out: List[str] = []
    code = _PLACEHOLDER_BASE
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c != '\\':
            out.append(c)
            i += 1
            continue
        if i + 1 >= n:
            raise InvalidPatternError(pattern, "trailing escape", line_number)
        while chr(code) in pattern:
            code += 1
        placeholder = chr(code)
        code += 1
        literals[placeholder] = pattern[i + 1]
        out.append(placeholder)
        i += 2
    return ''.join(out), literals


def _check_classes(text: str, pattern: str, line_number: Optional[int]) -> None:
    """Reject character classes the glob translator would silently treat as literals."""
    i, n = 0, len(text)
    while i < n:
        if text[i] == '[':
            # same scan as the translator: "[!" negates, a leading "]" is a member
            j = i + 1
            if j < n and text[j] == '!':
                j += 1
            if j < n and text[j] == ']':
                j += 1
            while j < n and text[j] != ']':
                j += 1
            if j >= n:
                raise InvalidPatternError(pattern, "unmatched '['", line_number)
            i = j
        i += 1


def _compile_glob(text: str, line_number: Optional[int]) -> Pattern[str]:
    hidden, literals = _hide_escapes(text, line_number)
    _check_classes(hidden, text, line_number)
    expression = translate(hidden)
    for placeholder, char in literals.items():
        expression = expression.replace(placeholder, re.escape(char))
    try:
        return re.compile(expression, re.DOTALL)
    except re.error as e:
        raise InvalidPatternError(text, str(e), line_number)


def compile_pattern(line: str, line_number: Optional[int] = None) -> IgnorePattern:
    """Compile one ignore file line into an IgnorePattern.

    Args:
        line: Raw pattern line (not blank, not a comment)
        line_number: 1-based position in the ignore file, used in errors

    Returns:
        The compiled pattern

    Raises:
        InvalidPatternError: If the line is malformed
    """
    text = line.strip()
    negated = False
    if text.startswith('!'):
        negated = True
        text = text[1:].strip()
    if not text:
        raise InvalidPatternError(line, "empty pattern", line_number)

    text = normalize_slashes(text)
    directory_only = text.endswith('/') and text.rstrip('/') != ''
    # Patterns are always relative to the context root
    text = text.lstrip('/')
    if not text:
        raise InvalidPatternError(line, "pattern matches the context root", line_number)

    cleaned = posixpath.normpath(text)
    if cleaned in ('.', '..'):
        raise InvalidPatternError(line, f"'{cleaned}' is not a valid pattern", line_number)
    if cleaned.startswith('../'):
        raise InvalidPatternError(line, "pattern escapes the context root", line_number)

    regex = _compile_glob(cleaned, line_number)
    return IgnorePattern(pattern=cleaned, negated=negated, directory_only=directory_only, regex=regex)


def normalize_path(path: Union[str, Path]) -> str:
    """Normalize a relative path to forward-slash form without a leading './'.

    Backslashes are separators only on platforms that use them as such.
    """
    text = posixpath.normpath(normalize_slashes(str(path)))
    return '' if text == '.' else text.lstrip('/')


class IgnoreMatcher:
    """Ordered set of ignore rules evaluated with last-match-wins semantics."""

    def __init__(self, patterns: Sequence[IgnorePattern] = ()) -> None:
        self.patterns = tuple(patterns)

    def __len__(self) -> int:
        return len(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def _evaluate(self, path: str, is_directory: bool) -> bool:
        excluded = False
        for pattern in self.patterns:
            if pattern.matches(path, is_directory):
                excluded = not pattern.negated
        return excluded

    def matches(self, path: Union[str, Path], is_directory: bool = False) -> bool:
        """Check whether a path is excluded from the build context.

        Args:
            path: Path relative to the context root
            is_directory: Whether the path names a directory

        Returns:
            True if the path is excluded, False if it is included
        """
        normalized = normalize_path(path)
        if not normalized:
            return False
        parts = normalized.split('/')
        for depth in range(1, len(parts)):
            if self._evaluate('/'.join(parts[:depth]), True):
                return True
        return self._evaluate(normalized, is_directory)


def compile_patterns(lines: Iterable[str]) -> IgnoreMatcher:
    """Compile ignore file lines into a matcher.

    Blank lines and lines starting with ``#`` are skipped. Compilation fails
    on the first malformed line so that an invalid ignore file never leads to
    a partial upload.

    Args:
        lines: Ignore file lines in file order

    Returns:
        IgnoreMatcher holding one pattern per rule line

    Raises:
        InvalidPatternError: If any line is malformed
    """
    patterns = []
    for number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        patterns.append(compile_pattern(stripped, number))
    logger.debug(f"Compiled {len(patterns)} ignore patterns")
    return IgnoreMatcher(patterns)


def read_ignore_file(path: Union[str, Path]) -> IgnoreMatcher:
    """Compile the ignore file at ``path``; a missing file yields an empty matcher."""
    path = Path(path)
    if not path.is_file():
        return IgnoreMatcher()
    with open(path, encoding='utf-8') as f:
        return compile_patterns(f.read().splitlines())

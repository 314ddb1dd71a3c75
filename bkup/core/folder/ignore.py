"""
Cascading ignore-file support for directory walks.

An ignore file (``.bkignore`` by default) may appear in any directory of a
scanned tree. Its rules apply to that directory and everything below it;
rule sets found deeper override shallower ones, and within one file later
lines override earlier ones.

Supported syntax (gitignore-style):
- blank lines and ``#`` comments are skipped
- ``!`` prefix re-includes a previously excluded path
- ``/`` suffix restricts a rule to directories
- a ``/`` anywhere else anchors the rule to the ignore file's directory
- ``*``, ``?``, ``[abc]``, ``[!abc]``, ``**/``, ``/**`` and ``/**/``
- ``\\`` escapes the next character (``\\#``, ``\\!``)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import chardet

from bkup.core.models import (
    ErrorKind,
    PathError,
    RelativePath,
    format_relative_path,
)


DEFAULT_IGNORE_FILE_NAME = '.bkignore'
DEFAULT_ENCODING = 'utf-8'


class IgnorePatternError(ValueError):
    """Raised when an ignore pattern cannot be compiled."""


@dataclass(frozen=True)
class IgnoreRule:
    """One compiled line of an ignore file."""
    pattern: str
    regex: re.Pattern
    negated: bool = False
    dir_only: bool = False
    anchored: bool = False

    @classmethod
    def compile(cls, line: str) -> 'IgnoreRule':
        """
        Compile a single ignore line.

        Raises:
            IgnorePatternError: if the pattern is malformed
        """
        pattern = line

        negated = pattern.startswith('!')
        if negated:
            pattern = pattern[1:]
        elif pattern.startswith('\\!') or pattern.startswith('\\#'):
            pattern = pattern[1:]

        dir_only = pattern.endswith('/') and not pattern.endswith('\\/')
        if dir_only:
            pattern = pattern.rstrip('/')

        if pattern.startswith('/'):
            pattern = pattern[1:]
            anchored = True
        else:
            anchored = '/' in pattern

        if not pattern:
            raise IgnorePatternError(f"Empty pattern in line {line!r}")

        regex = _pattern_to_regex(pattern, anchored)
        return cls(
            pattern=line,
            regex=re.compile(regex),
            negated=negated,
            dir_only=dir_only,
            anchored=anchored,
        )

    def matches(self, path: str, is_dir: bool) -> bool:
        """Check a slash-separated path, relative to the rule's directory."""
        if self.dir_only and not is_dir:
            return False
        return self.regex.match(path) is not None


def _pattern_to_regex(pattern: str, anchored: bool) -> str:
    """Convert an ignore pattern to an anchored regular expression."""
    result = []
    i = 0
    length = len(pattern)

    while i < length:
        c = pattern[i]
        at_segment_start = i == 0 or pattern[i - 1] == '/'

        if c == '*':
            if i + 1 < length and pattern[i + 1] == '*' and at_segment_start:
                if i + 2 == length:
                    # Trailing ** matches everything inside
                    result.append('.*')
                    i += 2
                    continue
                if pattern[i + 2] == '/':
                    # **/ matches zero or more directories
                    result.append('(?:.*/)?')
                    i += 3
                    continue
            # Collapse runs of * that are not a ** segment
            while i + 1 < length and pattern[i + 1] == '*':
                i += 1
            result.append('[^/]*')
        elif c == '?':
            result.append('[^/]')
        elif c == '[':
            j = i + 1
            negate = j < length and pattern[j] in '!^'
            if negate:
                j += 1
            # A ] right after the opening bracket is literal
            if j < length and pattern[j] == ']':
                j += 1
            while j < length and pattern[j] != ']':
                j += 1
            if j >= length:
                raise IgnorePatternError(f"Unterminated character class in pattern {pattern!r}")
            body = pattern[i + 1 + (1 if negate else 0):j]
            body = body.replace('\\', '\\\\')
            if negate:
                result.append('[^' + body + '/]')
            else:
                result.append('[' + body + ']')
            i = j
        elif c == '\\':
            if i + 1 < length:
                i += 1
                result.append(re.escape(pattern[i]))
            else:
                result.append(re.escape(c))
        else:
            result.append(re.escape(c))

        i += 1

    regex = ''.join(result)
    if anchored:
        return '^' + regex + '$'
    return '^(?:.*/)?' + regex + '$'


@dataclass(frozen=True)
class IgnoreRuleSet:
    """
    The rules of one ignore file, scoped to the directory holding it.

    ``base`` is the directory's path relative to the scan root.
    """
    base: RelativePath = ()
    rules: tuple[IgnoreRule, ...] = field(default_factory=tuple)
    source: Optional[Path] = None

    def __bool__(self) -> bool:
        return bool(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @classmethod
    def parse(
        cls,
        lines: Iterable[str],
        base: RelativePath = (),
        source_name: str = '<patterns>',
        source: Optional[Path] = None,
    ) -> tuple['IgnoreRuleSet', list[PathError]]:
        """
        Parse ignore lines into a rule set.

        Malformed patterns are skipped and reported as warnings.

        Returns:
            (rule set, list of parse warnings)
        """
        rules: list[IgnoreRule] = []
        warnings: list[PathError] = []

        for line_number, raw_line in enumerate(lines, start=1):
            line = raw_line.rstrip('\r\n')
            # Trailing spaces are dropped unless escaped
            if not line.endswith('\\ '):
                line = line.rstrip()
            if not line or line.startswith('#'):
                continue

            try:
                rules.append(IgnoreRule.compile(line))
            except (IgnorePatternError, re.error) as e:
                logging.warning(f"IgnoreRuleSet - Skipping {source_name}:{line_number}: {e}")
                warnings.append(PathError(
                    path=f"{source_name}:{line_number}",
                    kind=ErrorKind.IGNORE_FILE_PARSE_ERROR,
                    message=str(e),
                ))

        return cls(base=base, rules=tuple(rules), source=source), warnings

    @classmethod
    def load(
        cls,
        directory: Path,
        base: RelativePath = (),
        file_name: str = DEFAULT_IGNORE_FILE_NAME,
    ) -> tuple['IgnoreRuleSet', list[PathError]]:
        """
        Load the ignore file of a directory.

        A missing or unreadable file yields an empty rule set; this never raises.
        """
        ignore_path = directory / file_name
        display_name = format_relative_path(base + (file_name,))

        try:
            if not ignore_path.is_file():
                return cls(base=base), []
            with open(ignore_path, 'rb') as f:
                content = f.read()
        except (PermissionError, OSError) as e:
            logging.warning(f"IgnoreRuleSet - Could not read ignore file {ignore_path}: {e}")
            return cls(base=base), []

        encoding = _detect_encoding(content)
        try:
            lines = content.decode(encoding, errors='replace').splitlines()
        except LookupError:
            lines = content.decode(DEFAULT_ENCODING, errors='replace').splitlines()

        logging.debug(f"IgnoreRuleSet - Loaded {ignore_path}")
        return cls.parse(lines, base=base, source_name=display_name, source=ignore_path)

    def match(self, relative_path: RelativePath, is_dir: bool) -> Optional[bool]:
        """
        Evaluate this rule set against a path relative to the scan root.

        Returns:
            True (excluded), False (re-included) or None when no rule matched
            or the path is outside this rule set's directory.
        """
        depth = len(self.base)
        if len(relative_path) <= depth or relative_path[:depth] != self.base:
            return None

        path = '/'.join(relative_path[depth:])
        verdict: Optional[bool] = None
        for rule in self.rules:
            if rule.matches(path, is_dir):
                verdict = not rule.negated
        return verdict


class IgnoreMatcher:
    """
    Cascade of rule sets, shallowest scope first.

    A matcher is never modified: ``extend`` returns a new matcher, so each
    directory visit can hand its own cascade down to its children.
    """

    def __init__(self, rule_sets: Iterable[IgnoreRuleSet] = ()):
        self._rule_sets: tuple[IgnoreRuleSet, ...] = tuple(rule_sets)

    @property
    def rule_sets(self) -> tuple[IgnoreRuleSet, ...]:
        return self._rule_sets

    def __bool__(self) -> bool:
        return any(self._rule_sets)

    def extend(self, rule_set: IgnoreRuleSet) -> 'IgnoreMatcher':
        """Return a matcher with ``rule_set`` as its deepest scope."""
        if not rule_set:
            return self
        return IgnoreMatcher(self._rule_sets + (rule_set,))

    def is_excluded(self, relative_path: RelativePath, is_directory: bool) -> bool:
        """
        Check whether a path relative to the scan root is excluded.

        A path inside an excluded directory is excluded whatever the
        deeper rules say.
        """
        if not self._rule_sets or not relative_path:
            return False

        for depth in range(1, len(relative_path)):
            if self._evaluate(relative_path[:depth], True):
                return True

        return self._evaluate(relative_path, is_directory)

    def _evaluate(self, relative_path: RelativePath, is_directory: bool) -> bool:
        excluded = False
        for rule_set in self._rule_sets:
            verdict = rule_set.match(relative_path, is_directory)
            if verdict is not None:
                excluded = verdict
        return excluded


def _detect_encoding(content: bytes) -> str:
    """Detect the encoding of an ignore file, falling back to UTF-8."""
    if not content:
        return DEFAULT_ENCODING

    result = chardet.detect(content)

    if result['confidence'] > 0.7 and result['encoding']:
        encoding = result['encoding'].lower()
        if encoding == 'ascii':
            return DEFAULT_ENCODING
        return encoding

    return DEFAULT_ENCODING

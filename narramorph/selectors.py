"""Selector matchers: literal text or bounded regular expressions."""

from __future__ import annotations

from dataclasses import dataclass
import re

from .cache import FingerprintCache, fingerprint


MAX_PATTERN_LENGTH = 200

_QUANTIFIER_START = re.compile(r"[+*?]|\{\d")


class UnsafePatternError(ValueError):
    """Selector cannot be compiled into a bounded matcher."""

    def __init__(self, selector: str, reason: str):
        self.selector = selector
        self.reason = reason
        super().__init__(f"Unsafe selector {selector[:40]!r}: {reason}")


def _repetition_hazard(pattern: str) -> str | None:
    """Name the first quantified group that can backtrack exponentially.

    A group followed by a quantifier is unsafe when anything inside it is
    itself quantified, e.g. (a+)+ or (\\w+\\s?)+, or when it holds an
    alternation, e.g. (a|aa)+. Unbalanced parentheses are left for
    ``re.compile`` to report.
    """
    # one [has_quantifier, has_alternation] pair per open group
    stack: list[list[bool]] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\":
            i += 2
            continue
        if char == "[":
            # skip the class; a leading ] or ^] is literal
            j = i + 1
            if j < len(pattern) and pattern[j] == "^":
                j += 1
            if j < len(pattern) and pattern[j] == "]":
                j += 1
            while j < len(pattern) and pattern[j] != "]":
                j += 2 if pattern[j] == "\\" else 1
            i = j + 1
            continue
        if char == "(":
            stack.append([False, False])
            # (?:, (?=, (?P<name> etc. start with a ? that is not a quantifier
            i += 2 if pattern.startswith("(?", i) else 1
            continue
        if char == "|" and stack:
            stack[-1][1] = True
        elif char == ")" and stack:
            inner_quantified, alternation = stack.pop()
            if _QUANTIFIER_START.match(pattern, i + 1):
                if inner_quantified:
                    return "nested quantifiers"
                if alternation:
                    return "quantified alternation"
            if stack and (inner_quantified or _QUANTIFIER_START.match(pattern, i + 1)):
                stack[-1][0] = True
        elif _QUANTIFIER_START.match(pattern, i) and stack:
            stack[-1][0] = True
        i += 1
    return None


@dataclass(frozen=True)
class Matcher:
    selector: str
    mode: str
    regex: re.Pattern

    def matches(self, text: str) -> list[tuple[int, int]]:
        """Non-empty, non-overlapping match ranges in ``text``."""
        return [m.span() for m in self.regex.finditer(text) if m.end() > m.start()]


def compile_matcher(selector: str, mode: str = "literal") -> Matcher:
    if not selector:
        raise UnsafePatternError(selector, "empty selector")

    if mode == "pattern":
        if len(selector) > MAX_PATTERN_LENGTH:
            raise UnsafePatternError(selector, f"longer than {MAX_PATTERN_LENGTH} characters")
        hazard = _repetition_hazard(selector)
        if hazard:
            raise UnsafePatternError(selector, hazard)
        try:
            regex = re.compile(selector)
        except re.error as exc:
            raise UnsafePatternError(selector, str(exc)) from exc
    elif mode == "literal":
        escaped = re.escape(selector)
        if re.fullmatch(r"\w+", selector):
            escaped = rf"\b{escaped}\b"
        regex = re.compile(escaped)
    else:
        raise UnsafePatternError(selector, f"unknown selector mode {mode!r}")

    return Matcher(selector=selector, mode=mode, regex=regex)


class MatcherRegistry:
    """Compiled matchers plus a cache of match ranges per text.

    Both are bounded LRU caches; generated sentence selectors come and go
    with the content being rendered.
    """

    def __init__(self, cache: FingerprintCache | None = None):
        self._cache = cache if cache is not None else FingerprintCache("selectors", 256)
        self._matchers = FingerprintCache("matchers", self._cache.capacity)

    def matcher(self, selector: str, mode: str = "literal") -> Matcher:
        return self._matchers.get_or_compute(
            (mode, selector), lambda: compile_matcher(selector, mode)
        )

    def matches(self, selector: str, mode: str, text: str) -> tuple[tuple[int, int], ...]:
        matcher = self.matcher(selector, mode)
        key = (mode, selector, fingerprint(text))
        return self._cache.get_or_compute(key, lambda: tuple(matcher.matches(text)))

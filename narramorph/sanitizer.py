"""Heuristics for spotting corrupted transformed content."""

from __future__ import annotations

import logging
import re
from typing import Iterable


logger = logging.getLogger(__name__)

_SPAN_TAG = re.compile(r"<(/?)span\b([^>]*)>", re.IGNORECASE)
_MARKUP = re.compile(r"<[^>]+>")

# Tokens that only appear when an internal value leaks into the text
_DEBUG_TOKENS = (
    "[object Object]",
    "undefined",
    "NaN",
    "PATTERN_DETECTED",
    "TEMPORAL_MARKER",
    "<function ",
    "Traceback (most recent call last)",
)

MAX_GROWTH = 8

_TOKEN_PATTERNS = tuple(
    (token, re.compile(rf"\b{token}\b" if re.fullmatch(r"\w+", token) else re.escape(token)))
    for token in _DEBUG_TOKENS
)


def marker_depth(content: str) -> int:
    """Deepest nesting of transformation marker spans."""
    stack: list[bool] = []
    depth = deepest = 0
    for tag in _SPAN_TAG.finditer(content):
        if tag.group(1):
            if stack and stack.pop():
                depth -= 1
            continue
        is_marker = "data-transform-id" in tag.group(2)
        stack.append(is_marker)
        if is_marker:
            depth += 1
            deepest = max(deepest, depth)
    return deepest


def _balanced(content: str) -> bool:
    depth = 0
    for tag in _SPAN_TAG.finditer(content):
        depth += -1 if tag.group(1) else 1
        if depth < 0:
            return False
    return depth == 0


def strip_markup(content: str) -> str:
    return _MARKUP.sub("", content)


def detect_corruption(
    content: str | None,
    original: str | None = None,
    authored: Iterable[str] = (),
) -> list[str]:
    """Return the reasons ``content`` looks corrupted; empty when it looks fine.

    ``authored`` holds text the transformations themselves insert, such as
    replacements and comments. Tokens that appear in it or in ``original``
    are not treated as leaks.
    """
    if not content or not content.strip():
        return ["empty content"]

    problems = []
    if marker_depth(content) > 1:
        problems.append("nested transformation markup")
    if not _balanced(content):
        problems.append("unbalanced markup")

    baseline = "\n".join([original or "", *authored])
    for token, pattern in _TOKEN_PATTERNS:
        if pattern.search(content) and not pattern.search(baseline):
            problems.append(f"leaked token {token!r}")

    if original and len(strip_markup(content)) > MAX_GROWTH * max(len(strip_markup(original)), 40):
        problems.append("degenerate length")

    if problems:
        logger.warning("Content corruption detected: %s", "; ".join(problems))
    return problems

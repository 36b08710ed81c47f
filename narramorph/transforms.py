"""Applying transformations to text.

Wrapping transformations (replace, fragment, emphasize) enclose each match
in a marker span. Annotating transformations (expand, metaComment) insert a
marker span right after their first match. Text that already sits inside a
marker span is never touched again, so markup depth never exceeds one, and
a transformation whose id is already present in the input is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import html
import logging
import random
import re
import zlib

from corpus.models import TextTransformation

from .selectors import MatcherRegistry, UnsafePatternError


logger = logging.getLogger(__name__)

MARKER_CLASS = "narramorph"

_TAG = re.compile(r"<(/?)([A-Za-z][\w-]*)([^>]*)>")
_TRANSFORM_ID = re.compile(r'data-transform-id="([^"]*)"')
_FORMAT_MARKERS = re.compile(r"(\*\*|\*|__|_|`{3}|`)")

WRAPPING_TYPES = ("replace", "fragment", "emphasize")


@dataclass
class _Segment:
    plain: str
    rendered: str
    marked: bool


@dataclass
class ApplicationReport:
    content: str
    applied_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


def _split_marked(content: str) -> tuple[list[_Segment], set[str]]:
    """Split ``content`` into plain text and protected markup segments."""
    segments: list[_Segment] = []
    ids: set[str] = set()
    pos = 0
    open_at: int | None = None
    depth = 0

    for tag in _TAG.finditer(content):
        closing = tag.group(1) == "/"
        name = tag.group(2).lower()
        if open_at is None:
            if tag.start() > pos:
                text = content[pos : tag.start()]
                segments.append(_Segment(text, text, False))
            found = _TRANSFORM_ID.search(tag.group(3))
            if not closing and name == "span" and found:
                ids.add(html.unescape(found.group(1)))
                open_at, depth = tag.start(), 1
            else:
                segments.append(_Segment("", tag.group(0), True))
            pos = tag.end()
        elif name == "span":
            depth += -1 if closing else 1
            if depth == 0:
                raw = content[open_at : tag.end()]
                segments.append(_Segment(html.unescape(_TAG.sub("", raw)), raw, True))
                open_at = None
                pos = tag.end()

    if open_at is not None:
        raw = content[open_at:]
        segments.append(_Segment(html.unescape(_TAG.sub("", raw)), raw, True))
    elif pos < len(content):
        segments.append(_Segment(content[pos:], content[pos:], False))
    return segments, ids


def _attrs(t: TextTransformation, **extra: str) -> str:
    values = {
        "class": f"{MARKER_CLASS}-{t.type}",
        "data-transform-type": t.type,
        "data-transform-id": t.id,
        "data-priority": t.priority,
    }
    if t.intensity is not None:
        values["data-intensity"] = str(t.intensity)
    values.update(extra)
    return " ".join(f'{key}="{html.escape(value, quote=True)}"' for key, value in values.items())


def _fragment(text: str, t: TextTransformation) -> str:
    pattern = t.fragment_pattern
    if t.fragment_style == "word":
        return f" {pattern} ".join(text.split(" "))
    if t.fragment_style == "progressive":
        step = max(len(text) / 5, 1)
        return "".join(ch + pattern * (int(i / step) + 1) for i, ch in enumerate(text))
    if t.fragment_style == "random":
        rng = random.Random(zlib.crc32(f"{t.id}:{text}".encode("utf-8")))
        return "".join(ch + (pattern if rng.random() < 0.5 else "") for ch in text)
    return pattern.join(text)


def _replacement(text: str, t: TextTransformation) -> str:
    replacement = html.escape(t.replacement, quote=False)
    if t.preserve_formatting:
        for marker in _FORMAT_MARKERS.findall(text):
            if marker not in replacement:
                replacement = f"{marker}{replacement}{marker}"
    return replacement


def _wrap(text: str, t: TextTransformation) -> str:
    if t.type == "replace":
        body = _replacement(text, t)
        return f"<span {_attrs(t, **{'data-original': text})}>{body}</span>"
    if t.type == "fragment":
        extra = {"data-fragment-style": t.fragment_style}
        return f"<span {_attrs(t, **extra)}>{_fragment(text, t)}</span>"
    extra = {"data-emphasis": t.emphasis}
    if t.emphasis == "glitch":
        extra["data-text"] = text
    return f"<span {_attrs(t, **extra)}>{text}</span>"


def _annotation(t: TextTransformation) -> str:
    text = html.escape(t.replacement, quote=False)
    if t.type == "expand":
        style = t.expand_style
        body = {
            "inline": f" [{text}]",
            "paragraph": f"\n\n{text}",
        }.get(style, f" {text}")
        return f"<span {_attrs(t, **{'data-expand-style': style})}>{body}</span>"

    style = t.comment_style
    if style == "footnote":
        extra = {"data-comment-style": style, "data-comment": t.replacement}
        return f"<span {_attrs(t, **extra)}>†</span>"
    body = f" [{text}]" if style == "inline" else text
    return f"<span {_attrs(t, **{'data-comment-style': style})}>{body}</span>"


def _apply_wrapping(
    segments: list[_Segment], t: TextTransformation, registry: MatcherRegistry
) -> tuple[list[_Segment], int]:
    result: list[_Segment] = []
    wrapped = 0
    for segment in segments:
        if segment.marked or not segment.plain:
            result.append(segment)
            continue
        pos = 0
        for start, end in registry.matches(t.selector, t.selector_mode, segment.plain):
            if start > pos:
                text = segment.plain[pos:start]
                result.append(_Segment(text, text, False))
            matched = segment.plain[start:end]
            result.append(_Segment(matched, _wrap(matched, t), True))
            wrapped += 1
            pos = end
        if pos == 0:
            result.append(segment)
        elif pos < len(segment.plain):
            text = segment.plain[pos:]
            result.append(_Segment(text, text, False))
    return result, wrapped


def _apply_annotation(
    segments: list[_Segment], t: TextTransformation, registry: MatcherRegistry
) -> tuple[list[_Segment], int]:
    plain = "".join(segment.plain for segment in segments)
    for _, end in registry.matches(t.selector, t.selector_mode, plain):
        offset = 0
        for i, segment in enumerate(segments):
            seg_end = offset + len(segment.plain)
            if segment.plain and end == seg_end:
                note = _Segment("", _annotation(t), True)
                return segments[: i + 1] + [note] + segments[i + 1 :], 1
            if offset < end < seg_end:
                if segment.marked:
                    break
                cut = end - offset
                before = _Segment(segment.plain[:cut], segment.plain[:cut], False)
                after = _Segment(segment.plain[cut:], segment.plain[cut:], False)
                note = _Segment("", _annotation(t), True)
                return segments[:i] + [before, note, after] + segments[i + 1 :], 1
            offset = seg_end
    return segments, 0


def apply_with_report(
    content: str,
    transformations: list[TextTransformation],
    registry: MatcherRegistry | None = None,
) -> ApplicationReport:
    """Apply ``transformations`` in order, reporting which ones took effect."""
    if not transformations:
        return ApplicationReport(content=content)

    registry = registry if registry is not None else MatcherRegistry()
    segments, present = _split_marked(content)
    report = ApplicationReport(content=content)

    for t in transformations:
        if t.id in present:
            logger.debug("Skipping %s: already applied", t.id)
            report.skipped_ids.append(t.id)
            continue
        if t.type == "fragment" and not t.fragment_pattern:
            logger.warning("Skipping %s: no fragment pattern", t.id)
            report.skipped_ids.append(t.id)
            continue
        try:
            if t.type in WRAPPING_TYPES:
                segments, count = _apply_wrapping(segments, t, registry)
            else:
                segments, count = _apply_annotation(segments, t, registry)
        except UnsafePatternError as exc:
            logger.warning("Skipping %s: %s", t.id, exc)
            report.skipped_ids.append(t.id)
            continue

        if count == 0:
            logger.warning("Skipping %s: selector %r not found", t.id, t.selector[:40])
            report.skipped_ids.append(t.id)
            continue
        present.add(t.id)
        report.applied_ids.append(t.id)

    report.content = "".join(segment.rendered for segment in segments)
    return report


def apply(
    content: str,
    transformations: list[TextTransformation],
    registry: MatcherRegistry | None = None,
) -> str:
    return apply_with_report(content, transformations, registry).content

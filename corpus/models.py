"""Data models for authored narrative content."""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import json
from typing import Any


CHARACTERS = ("Archaeologist", "Algorithm", "LastHuman")
TEMPORAL_LAYERS = ("past", "present", "future")
ENDPOINT_ORIENTATIONS = ("past", "present", "future")

TRANSFORMATION_TYPES = ("replace", "fragment", "expand", "emphasize", "metaComment")
PRIORITIES = ("high", "medium", "low")
PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

FRAGMENT_STYLES = ("character", "word", "progressive", "random")
EMPHASIS_STYLES = ("italic", "bold", "color", "spacing", "highlight", "glitch", "fade")
EXPAND_STYLES = ("append", "inline", "paragraph", "reveal")
COMMENT_STYLES = ("inline", "footnote", "marginalia", "interlinear")
SELECTOR_MODES = ("literal", "pattern")

COMPOSITE_CONDITIONS = ("allOf", "anyOf", "not")


def temporal_layer(value: int) -> str:
    """Map a 1-9 temporal value onto its layer label."""
    if value <= 3:
        return "past"
    if value <= 6:
        return "present"
    return "future"


def _choice(value: Any, allowed: tuple[str, ...], what: str) -> str:
    if value not in allowed:
        raise ValueError(f"Unknown {what}: {value!r} (expected one of {', '.join(allowed)})")
    return value


def _optional_intensity(value: Any) -> int | None:
    if value is None:
        return None
    return max(1, min(5, int(value)))


@dataclass(frozen=True)
class TextTransformation:
    type: str
    selector: str
    priority: str = "medium"
    intensity: int | None = None
    selector_mode: str = "literal"
    replacement: str = ""
    fragment_pattern: str = ""
    fragment_style: str = "character"
    emphasis: str = "italic"
    expand_style: str = "append"
    comment_style: str = "inline"
    preserve_formatting: bool = False

    @property
    def id(self) -> str:
        if len(self.selector) <= 20:
            return f"{self.type}-{self.selector}-{self.priority}"
        # long selectors may share a prefix, so the full text is digested
        digest = hashlib.sha1(self.selector.encode("utf-8")).hexdigest()[:8]
        return f"{self.type}-{self.selector[:20]}~{digest}-{self.priority}"

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.type, self.selector)

    @classmethod
    def from_dict(cls, data: dict, default_priority: str = "medium") -> TextTransformation:
        return cls(
            type=_choice(data.get("type"), TRANSFORMATION_TYPES, "transformation type"),
            selector=str(data.get("selector", "")),
            priority=_choice(data.get("priority", default_priority), PRIORITIES, "priority"),
            intensity=_optional_intensity(data.get("intensity")),
            selector_mode=_choice(data.get("selectorMode", "literal"), SELECTOR_MODES, "selector mode"),
            replacement=str(data.get("replacement", "")),
            fragment_pattern=str(data.get("fragmentPattern", "")),
            fragment_style=_choice(
                data.get("fragmentStyle", "character"), FRAGMENT_STYLES, "fragment style"
            ),
            emphasis=_choice(data.get("emphasis", "italic"), EMPHASIS_STYLES, "emphasis"),
            expand_style=_choice(data.get("expandStyle", "append"), EXPAND_STYLES, "expand style"),
            comment_style=_choice(
                data.get("commentStyle", "inline"), COMMENT_STYLES, "comment style"
            ),
            preserve_formatting=bool(data.get("preserveFormatting", False)),
        )


@dataclass(frozen=True)
class Condition:
    """Boolean expression tree over the reader's journey.

    ``kind`` is ``allOf``, ``anyOf``, ``not``, ``always`` or the name of a
    leaf predicate, in which case ``params`` holds its authored arguments.
    """

    kind: str
    params: Any = None
    children: tuple[Condition, ...] = ()

    @classmethod
    def always(cls) -> Condition:
        return cls("always")

    @classmethod
    def from_dict(cls, data: dict | None) -> Condition:
        if not data:
            return cls.always()
        if not isinstance(data, dict):
            raise ValueError(f"Condition must be a mapping, got {type(data).__name__}")

        parts: list[Condition] = []
        for key, value in data.items():
            if key in ("allOf", "anyOf"):
                if not isinstance(value, list):
                    raise ValueError(f"{key} expects a list of conditions")
                parts.append(cls(key, children=tuple(cls.from_dict(item) for item in value)))
            elif key == "not":
                parts.append(cls("not", children=(cls.from_dict(value),)))
            else:
                parts.append(cls(key, params=value))

        if len(parts) == 1:
            return parts[0]
        return cls("allOf", children=tuple(parts))

    def to_dict(self) -> dict:
        if self.kind == "always":
            return {}
        if self.kind in ("allOf", "anyOf"):
            return {self.kind: [child.to_dict() for child in self.children]}
        if self.kind == "not":
            return {"not": self.children[0].to_dict()}
        return {self.kind: self.params}

    def key(self) -> str:
        """Canonical text form, stable across equal trees."""
        return json.dumps(self.to_dict(), sort_keys=True, default=str)


@dataclass(frozen=True)
class TransformationRule:
    condition: Condition
    transformations: tuple[TextTransformation, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> TransformationRule:
        return cls(
            condition=Condition.from_dict(data.get("condition")),
            transformations=tuple(
                TextTransformation.from_dict(item) for item in data.get("transformations", [])
            ),
        )


@dataclass(frozen=True)
class NodeDefinition:
    id: str
    character: str
    temporal_value: int
    title: str = ""
    strange_attractors: tuple[str, ...] = ()
    rules: tuple[TransformationRule, ...] = ()
    content_source: str = ""
    connections: tuple[str, ...] = ()
    is_endpoint: bool = False
    endpoint_orientation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def temporal_layer(self) -> str:
        return temporal_layer(self.temporal_value)

    @classmethod
    def from_dict(cls, data: dict) -> NodeDefinition:
        orientation = data.get("endpointOrientation")
        if orientation is not None:
            _choice(orientation, ENDPOINT_ORIENTATIONS, "endpoint orientation")
        return cls(
            id=str(data["id"]),
            character=_choice(data.get("character"), CHARACTERS, "character"),
            temporal_value=int(data.get("temporalValue", 1)),
            title=data.get("title", ""),
            strange_attractors=tuple(data.get("strangeAttractors", [])),
            rules=tuple(TransformationRule.from_dict(item) for item in data.get("rules", [])),
            content_source=data.get("contentSource", ""),
            connections=tuple(data.get("connections", [])),
            is_endpoint=bool(data.get("isEndpoint", False)),
            endpoint_orientation=orientation,
            metadata=data.get("metadata", {}),
        )

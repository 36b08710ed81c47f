"""Reader journey state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import hashlib
import json


@dataclass
class NodeVisit:
    node_id: str
    character: str
    temporal_layer: str
    engaged_attractors: list[str] = field(default_factory=list)
    index: int = 0
    revisit_count: int = 0


@dataclass
class ReaderState:
    """Everything recorded about one reader's path through the nodes.

    Appended to on every navigation event, never rewritten.
    """

    sequence: list[str] = field(default_factory=list)
    detailed_visits: list[NodeVisit] = field(default_factory=list)
    visit_counts: dict[str, int] = field(default_factory=dict)
    attractor_engagements: dict[str, int] = field(default_factory=dict)
    character_focus: dict[str, int] = field(default_factory=dict)
    temporal_layer_focus: dict[str, int] = field(default_factory=dict)
    endpoint_progress: dict[str, float] = field(default_factory=dict)
    current_node_id: str | None = None
    previous_node_id: str | None = None

    def visit_count(self, node_id: str) -> int:
        return self.visit_counts.get(node_id, 0)

    def recent_path(self, size: int = 5) -> list[str]:
        return self.sequence[-size:]

    def fingerprint(self) -> str:
        """Digest of every recorded field; changes on any new event."""
        payload = json.dumps(asdict(self), sort_keys=True, ensure_ascii=False)
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

"""Node table loading and raw content fetch."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import yaml

from .models import NodeDefinition


logger = logging.getLogger(__name__)


class ContentLoadError(Exception):
    """Raw source for a node could not be loaded."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"[{node_id}] {message}")


def load_node_table(path: str | Path) -> dict[str, NodeDefinition]:
    """Read a YAML list of node definitions, keyed by node id."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Node table not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []

    if isinstance(raw, dict):
        raw = raw.get("nodes", [])

    nodes: dict[str, NodeDefinition] = {}
    for entry in raw:
        node = NodeDefinition.from_dict(entry)
        if node.id in nodes:
            logger.warning("Duplicate node id %s in %s, keeping the later one", node.id, path)
        nodes[node.id] = node

    logger.info("Loaded %d nodes from %s", len(nodes), path)
    return nodes


class ContentFetcher:
    """Reads node sources from a content directory."""

    def __init__(self, content_dir: str | Path):
        self.content_dir = Path(content_dir)

    def _read(self, node: NodeDefinition) -> str:
        if not node.content_source:
            raise ContentLoadError(node.id, "no content source configured")
        path = self.content_dir / node.content_source
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ContentLoadError(node.id, f"cannot read {path}: {exc}") from exc
        if not text.strip():
            raise ContentLoadError(node.id, f"empty source {path}")
        return text

    async def fetch(self, node: NodeDefinition) -> str:
        text = await asyncio.to_thread(self._read, node)
        logger.debug("Fetched %s (%d chars)", node.id, len(text))
        return text

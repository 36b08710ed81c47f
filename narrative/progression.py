"""Journey progression helpers: visits, attractor engagement, endpoints."""

from __future__ import annotations

import logging

from corpus.models import NodeDefinition, temporal_layer

from .state import NodeVisit, ReaderState


logger = logging.getLogger(__name__)


def _bump(counts: dict[str, int], key: str) -> None:
    counts[key] = counts.get(key, 0) + 1


def temporal_label(value: int) -> str:
    """Return the temporal layer label for a node's temporal value."""
    return temporal_layer(value)


def record_visit(state: ReaderState, node: NodeDefinition) -> NodeVisit:
    """Append a visit to ``node`` and update every aggregate."""
    prior = state.visit_count(node.id)
    visit = NodeVisit(
        node_id=node.id,
        character=node.character,
        temporal_layer=node.temporal_layer,
        index=len(state.sequence),
        revisit_count=prior,
    )

    state.sequence.append(node.id)
    state.detailed_visits.append(visit)
    _bump(state.visit_counts, node.id)
    _bump(state.character_focus, node.character)
    _bump(state.temporal_layer_focus, node.temporal_layer)

    if state.current_node_id is not None:
        state.previous_node_id = state.current_node_id
    state.current_node_id = node.id

    logger.debug(
        "Visit %d: %s (%s, %s), revisit %d",
        visit.index,
        node.id,
        node.character,
        node.temporal_layer,
        prior,
    )
    return visit


def engage_attractor(state: ReaderState, attractor: str) -> None:
    """Count an engagement and attach it to the current visit."""
    _bump(state.attractor_engagements, attractor)
    if state.detailed_visits:
        state.detailed_visits[-1].engaged_attractors.append(attractor)
    logger.debug("Engaged %s (total %d)", attractor, state.attractor_engagements[attractor])


def update_endpoint_progress(state: ReaderState, orientation: str, value: float) -> float:
    """Set progress toward an endpoint, clamped to 0-100."""
    clamped = max(0.0, min(100.0, float(value)))
    state.endpoint_progress[orientation] = clamped
    return clamped

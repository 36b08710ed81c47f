"""Per-node view lifecycle for one reader.

Rendering is split in two phases. ``compute_view`` is pure: from the
current journey it selects a variant, computes transformations and applies
them to the selected text. ``commit`` writes that result onto the NodeState,
and only when the view fingerprint changed. The displayed content is always
derived from the freshly selected original text, never from a previous
rendering.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging

from corpus.loader import ContentFetcher, ContentLoadError
from corpus.models import NodeDefinition, TextTransformation
from corpus.variants import (
    EnhancedContent,
    VariantContext,
    build_context,
    parse,
    select_key,
)
from narrative.progression import engage_attractor, record_visit, update_endpoint_progress
from narrative.state import ReaderState

from .cache import fingerprint
from .core import TransformationEngine
from .sanitizer import detect_corruption


logger = logging.getLogger(__name__)

LOADED = "loaded"
VARIANT_SELECTED = "variant_selected"
TRANSFORMATIONS_COMPUTED = "transformations_computed"
APPLIED = "applied"
LOAD_FAILED = "load_failed"

_TRANSITIONS = {
    LOADED: {VARIANT_SELECTED, LOAD_FAILED, LOADED},
    VARIANT_SELECTED: {TRANSFORMATIONS_COMPUTED},
    TRANSFORMATIONS_COMPUTED: {APPLIED},
    APPLIED: {LOADED},
    LOAD_FAILED: {LOADED},
}

FALLBACK_MESSAGE = "This fragment could not be retrieved. Try again."
RECOVERY_NOTICE = "Some transformations were withheld to keep this fragment readable."


@dataclass
class JourneyContext:
    last_visited_character: str | None = None
    recent_path: tuple[str, ...] = ()
    recursive_awareness: float = 0.0
    temporal_displacement: bool = False


@dataclass
class NodeState:
    definition: NodeDefinition
    visit_count: int = 0
    original_content: str | None = None
    current_content: str | None = None
    variant_key: str | None = None
    transformations: tuple[TextTransformation, ...] = ()
    applied_transformation_ids: list[str] = field(default_factory=list)
    journey_context: JourneyContext = field(default_factory=JourneyContext)
    phase: str = LOADED
    notice: str | None = None
    error: str | None = None
    view_fingerprint: str | None = None

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def character(self) -> str:
        return self.definition.character


@dataclass(frozen=True)
class NodeView:
    """Result of the compute phase, ready to be committed."""

    fingerprint: str
    variant_key: str
    original: str
    transformations: tuple[TextTransformation, ...]
    content: str
    applied_ids: tuple[str, ...]
    journey_context: JourneyContext
    notice: str | None = None


def _advance(state: NodeState, phase: str) -> None:
    if phase not in _TRANSITIONS[state.phase]:
        raise RuntimeError(f"{state.id}: illegal transition {state.phase} -> {phase}")
    state.phase = phase


def _inserted_text(view: NodeView) -> list[str]:
    return [t.replacement or t.fragment_pattern for t in view.transformations]


class ReadingSession:
    """One reader moving through the node table."""

    def __init__(
        self,
        nodes: dict[str, NodeDefinition],
        engine: TransformationEngine,
        fetcher: ContentFetcher,
        reader: ReaderState | None = None,
    ):
        self.nodes = nodes
        self.engine = engine
        self.fetcher = fetcher
        self.reader = reader if reader is not None else ReaderState()
        self.states: dict[str, NodeState] = {}
        self._sources: dict[str, EnhancedContent] = {}

    def state(self, node_id: str) -> NodeState:
        if node_id not in self.states:
            self.states[node_id] = NodeState(definition=self.nodes[node_id])
        return self.states[node_id]

    # -- navigation ----------------------------------------------------------

    async def visit(self, node_id: str) -> NodeState:
        """Record a visit, load the node's source once, then render it."""
        if node_id not in self.nodes:
            raise KeyError(f"Unknown node: {node_id}")
        record_visit(self.reader, self.nodes[node_id])
        state = self.state(node_id)
        state.visit_count = self.reader.visit_count(node_id)
        _advance(state, LOADED)

        if node_id not in self._sources:
            await self._load(state)
        if node_id in self._sources:
            self.render(node_id)
        return state

    async def retry(self, node_id: str) -> NodeState:
        """Re-attempt a failed load without recording another visit."""
        state = self.state(node_id)
        if state.phase != LOAD_FAILED:
            return state
        _advance(state, LOADED)
        await self._load(state)
        if node_id in self._sources:
            self.render(node_id)
        return state

    async def _load(self, state: NodeState) -> None:
        node_id = state.id
        try:
            raw = await self.fetcher.fetch(state.definition)
        except ContentLoadError as exc:
            if self.reader.current_node_id != node_id:
                logger.info("Dropping load failure for %s: reader moved on", node_id)
                return
            logger.warning("Content load failed: %s", exc)
            state.original_content = None
            state.current_content = FALLBACK_MESSAGE
            state.transformations = ()
            state.applied_transformation_ids = []
            state.error = str(exc)
            state.view_fingerprint = None
            _advance(state, LOAD_FAILED)
            return

        if self.reader.current_node_id != node_id:
            logger.info("Discarding stale content for %s", node_id)
            return
        self._sources[node_id] = parse(raw)
        state.error = None

    def engage_attractor(self, attractor: str) -> NodeState | None:
        engage_attractor(self.reader, attractor)
        return self._rerender_current()

    def update_endpoint_progress(self, orientation: str, value: float) -> NodeState | None:
        update_endpoint_progress(self.reader, orientation, value)
        return self._rerender_current()

    def _rerender_current(self) -> NodeState | None:
        node_id = self.reader.current_node_id
        if node_id is None or node_id not in self._sources:
            return None
        return self.render(node_id)

    # -- compute / commit --------------------------------------------------------

    def _journey_context(self, context: VariantContext, node: NodeDefinition) -> JourneyContext:
        visits = self.reader.detailed_visits
        displaced = len(visits) >= 2 and visits[-2].temporal_layer != node.temporal_layer
        return JourneyContext(
            last_visited_character=context.last_visited_character,
            recent_path=context.recent_path,
            recursive_awareness=context.recursive_awareness,
            temporal_displacement=displaced,
        )

    def view_fingerprint(self, node_id: str) -> str:
        return fingerprint(node_id, self.state(node_id).visit_count, self.reader.fingerprint())

    def compute_view(self, node_id: str) -> NodeView:
        """Pure compute phase: no NodeState field is written here."""
        state = self.state(node_id)
        node = state.definition
        enhanced = self._sources[node_id]
        policy = self.engine.policy

        context = build_context(state, self.reader, self.nodes)
        key = select_key(
            enhanced,
            context,
            policy.recursive_awareness_threshold,
            policy.attractor_section_threshold,
        )
        original = enhanced.text(key)
        journey = self._journey_context(context, node)
        view = NodeView(
            fingerprint=self.view_fingerprint(node_id),
            variant_key=key,
            original=original,
            transformations=(),
            content=original,
            applied_ids=(),
            journey_context=journey,
        )

        try:
            transformations = self.engine.calculate_all_transformations(
                original, state, self.reader, self.nodes
            )
            report = self.engine.apply_with_report(original, transformations)
        except Exception as exc:
            logger.warning("Transformation failed on %s, showing original: %s", node_id, exc)
            return replace(view, notice=RECOVERY_NOTICE)

        return replace(
            view,
            transformations=tuple(transformations),
            content=report.content,
            applied_ids=tuple(report.applied_ids),
        )

    def _recovered(self, node_id: str, view: NodeView) -> NodeView:
        if not detect_corruption(view.content, view.original, _inserted_text(view)):
            return view

        logger.warning("Recomputing %s from its original content", node_id)
        self.engine.reset()
        retried = self.compute_view(node_id)
        if not detect_corruption(retried.content, retried.original, _inserted_text(retried)):
            return retried

        logger.warning("Recovery failed for %s, showing original content", node_id)
        return replace(
            retried,
            transformations=(),
            content=retried.original,
            applied_ids=(),
            notice=RECOVERY_NOTICE,
        )

    def commit(self, node_id: str, view: NodeView) -> bool:
        """Write ``view`` onto the NodeState once per fingerprint change."""
        state = self.state(node_id)
        if state.view_fingerprint == view.fingerprint and state.phase == APPLIED:
            return False
        if state.phase == APPLIED:
            _advance(state, LOADED)

        _advance(state, VARIANT_SELECTED)
        state.variant_key = view.variant_key
        state.original_content = view.original
        state.journey_context = view.journey_context
        state.applied_transformation_ids = []

        _advance(state, TRANSFORMATIONS_COMPUTED)
        state.transformations = view.transformations

        _advance(state, APPLIED)
        state.current_content = view.content
        state.applied_transformation_ids = list(view.applied_ids)
        state.notice = view.notice
        state.view_fingerprint = view.fingerprint
        return True

    def render(self, node_id: str) -> NodeState:
        state = self.state(node_id)
        if node_id not in self._sources:
            return state
        if state.phase == APPLIED and state.view_fingerprint == self.view_fingerprint(node_id):
            return state

        view = self._recovered(node_id, self.compute_view(node_id))
        if self.commit(node_id, view):
            logger.info(
                "Rendered %s (visit %d, variant %s, %d applied)",
                node_id,
                state.visit_count,
                view.variant_key,
                len(view.applied_ids),
            )
        return state

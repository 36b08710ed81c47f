"""Reader journey: visit recording, path analysis, character bleed."""

from .bleed import CharacterBleedEffect, calculate_bleed_effects
from .path_analyzer import (
    ATTRACTOR_THEME_GROUPS,
    PathAnalyzer,
    ReadingPattern,
    analyze_path_patterns,
    attractor_engagement,
    character_focus_intensity,
    dominant_theme,
    journey_fingerprint,
    recursive_patterns,
    temporal_jumping,
    theme_group_engagement,
)
from .progression import (
    engage_attractor,
    record_visit,
    temporal_label,
    update_endpoint_progress,
)
from .state import NodeVisit, ReaderState

__all__ = [
    "ATTRACTOR_THEME_GROUPS",
    "CharacterBleedEffect",
    "NodeVisit",
    "PathAnalyzer",
    "ReaderState",
    "ReadingPattern",
    "analyze_path_patterns",
    "attractor_engagement",
    "calculate_bleed_effects",
    "character_focus_intensity",
    "dominant_theme",
    "engage_attractor",
    "journey_fingerprint",
    "record_visit",
    "recursive_patterns",
    "temporal_jumping",
    "temporal_label",
    "theme_group_engagement",
    "update_endpoint_progress",
]

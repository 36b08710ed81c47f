"""Configuration loading from settings.yaml and .env."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv


ROOT = Path(__file__).resolve().parent.parent


def load_config(
    config_dir: str | Path | None = None,
) -> dict:
    """Load settings.yaml and .env, return merged config dict."""
    if config_dir is None:
        config_dir = ROOT / "config"
    config_dir = Path(config_dir)

    # Load .env (silently skip if missing)
    load_dotenv(config_dir / ".env")

    settings_path = config_dir / "settings.yaml"
    if not settings_path.exists():
        raise FileNotFoundError(f"Config not found: {settings_path}")

    with open(settings_path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    content = cfg.setdefault("content", {})
    content["node_table"] = os.getenv("NARRAMORPH_NODE_TABLE", content.get("node_table", ""))
    content["content_dir"] = os.getenv("NARRAMORPH_CONTENT_DIR", content.get("content_dir", ""))
    logging_cfg = cfg.setdefault("logging", {})
    logging_cfg["file"] = os.getenv("NARRAMORPH_LOG_FILE", logging_cfg.get("file") or "")

    # Relative content paths resolve against the project root
    for key in ("node_table", "content_dir"):
        if content[key] and not Path(content[key]).is_absolute():
            content[key] = str(ROOT / content[key])

    return cfg


@dataclass(frozen=True)
class EnginePolicy:
    """Tunable thresholds and limits for selection, coordination and caching."""

    recursive_awareness_threshold: float = 0.5
    attractor_section_threshold: int = 3
    max_bleed: int = 3
    max_journey: int = 4
    max_rule: int = 3
    max_transformations: int = 10
    condition_cache_size: int = 500
    rule_cache_size: int = 200
    master_cache_size: int = 100
    analysis_cache_size: int = 300
    selector_cache_size: int = 256
    analysis: dict = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: dict | None) -> EnginePolicy:
        cfg = config or {}
        variants = cfg.get("variants", {})
        limits = cfg.get("transformations", {})
        cache = cfg.get("cache", {})
        return cls(
            recursive_awareness_threshold=float(
                variants.get("recursive_awareness_threshold", 0.5)
            ),
            attractor_section_threshold=int(variants.get("attractor_section_threshold", 3)),
            max_bleed=int(limits.get("max_bleed", 3)),
            max_journey=int(limits.get("max_journey", 4)),
            max_rule=int(limits.get("max_rule", 3)),
            max_transformations=int(limits.get("max_total", 10)),
            condition_cache_size=int(cache.get("conditions", 500)),
            rule_cache_size=int(cache.get("rules", 200)),
            master_cache_size=int(cache.get("master", 100)),
            analysis_cache_size=int(cache.get("analysis", 300)),
            selector_cache_size=int(cache.get("selectors", 256)),
            analysis=dict(cfg.get("analysis", {})),
        )

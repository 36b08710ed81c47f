"""Tests for config loading and the engine policy."""

import pytest

from narramorph.config import ROOT, EnginePolicy, load_config


_SETTINGS = """
content:
  node_table: content/nodes.yaml
  content_dir: /srv/stories
variants:
  recursive_awareness_threshold: 0.6
transformations:
  max_total: 5
cache:
  master: 12
analysis:
  focus_window: 6
"""


def _isolate_env(monkeypatch):
    # setenv registers the prior absence so teardown removes values .env adds
    for name in ("NARRAMORPH_NODE_TABLE", "NARRAMORPH_CONTENT_DIR", "NARRAMORPH_LOG_FILE"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_load_config_resolves_relative_paths(tmp_path, monkeypatch):
    _isolate_env(monkeypatch)
    (tmp_path / "settings.yaml").write_text(_SETTINGS, encoding="utf-8")
    cfg = load_config(tmp_path)
    assert cfg["content"]["node_table"] == str(ROOT / "content/nodes.yaml")
    assert cfg["content"]["content_dir"] == "/srv/stories"
    assert cfg["logging"]["file"] == ""


def test_environment_overrides_settings(tmp_path, monkeypatch):
    _isolate_env(monkeypatch)
    (tmp_path / "settings.yaml").write_text(_SETTINGS, encoding="utf-8")
    (tmp_path / ".env").write_text("NARRAMORPH_LOG_FILE=/tmp/narramorph.log\n", encoding="utf-8")
    monkeypatch.setenv("NARRAMORPH_CONTENT_DIR", "/opt/other")
    cfg = load_config(tmp_path)
    assert cfg["content"]["content_dir"] == "/opt/other"
    assert cfg["logging"]["file"] == "/tmp/narramorph.log"


def test_missing_settings_raise(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path)


def test_policy_from_config(tmp_path, monkeypatch):
    _isolate_env(monkeypatch)
    (tmp_path / "settings.yaml").write_text(_SETTINGS, encoding="utf-8")
    policy = EnginePolicy.from_config(load_config(tmp_path))
    assert policy.recursive_awareness_threshold == 0.6
    assert policy.max_transformations == 5
    assert policy.master_cache_size == 12
    assert policy.analysis == {"focus_window": 6}
    assert policy.attractor_section_threshold == 3


def test_policy_defaults_without_config():
    policy = EnginePolicy.from_config(None)
    assert policy == EnginePolicy()
    assert (policy.max_bleed, policy.max_journey, policy.max_rule) == (3, 4, 3)


def test_shipped_settings_load():
    cfg = load_config()
    assert cfg["content"]["node_table"].endswith("nodes.yaml")
    assert EnginePolicy.from_config(cfg).max_transformations == 10

"""Tests for the journey replay CLI."""

from click.testing import CliRunner

from main import cli


def test_replay_renders_last_node_with_bleed_variant():
    result = CliRunner().invoke(
        cli, ["--journey", "algo-awakening,arch-discovery", "--show-transformations"]
    )
    assert result.exit_code == 0, result.output
    assert "The Discovery  [after-algorithm, visit 1]" in result.output
    assert "Transformations:" in result.output
    assert "+ high" in result.output


def test_engaged_attractors_change_the_variant():
    args = ["--journey", "arch-discovery"]
    for _ in range(4):
        args += ["--engage", "memory-fragment"]
    result = CliRunner().invoke(cli, args)
    assert result.exit_code == 0, result.output
    assert "[memory-fragment-engaged, visit 1]" in result.output


def test_unknown_node_exits_with_error():
    result = CliRunner().invoke(cli, ["--journey", "arch-discovery,nowhere"])
    assert result.exit_code == 1
    assert "Unknown node(s): nowhere" in result.output


def test_load_failure_exits_with_fallback(tmp_path):
    (tmp_path / "nodes.yaml").write_text(
        "- {id: lost, character: Archaeologist, contentSource: missing.md}\n", encoding="utf-8"
    )
    (tmp_path / "settings.yaml").write_text(
        f"content:\n  node_table: {tmp_path / 'nodes.yaml'}\n  content_dir: {tmp_path}\n",
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["--journey", "lost", "--config-dir", str(tmp_path)])
    assert result.exit_code == 2
    assert "could not be retrieved" in result.output

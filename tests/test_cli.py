"""Tests for the memlink command line"""

import json
import logging

import pytest
import yaml

from memlink.core.cli import build_parser, main, parse_tags


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {"storage": {"db_path": str(tmp_path / "cli.db")}, "logging": {"level": "WARNING"}}
        )
    )
    yield str(path)
    # main() installs a stderr handler bound to the captured stream
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)


def run(capsys, config_path, *argv):
    """Run the CLI, returning (exit code, parsed stdout JSON)."""
    code = 0
    try:
        main(["--config", config_path, *argv])
    except SystemExit as e:
        code = e.code
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


def test_parse_tags():
    assert parse_tags(None) is None
    assert parse_tags("") is None
    assert parse_tags("bug, auth,,fix ") == ["bug", "auth", "fix"]


def test_save_recall_delete(capsys, config_path):
    code, out = run(capsys, config_path, "memory", "save", "k", "hello", "--tags", "a,b")
    assert code == 0
    assert out["data"]["created"] is True

    code, out = run(capsys, config_path, "memory", "recall", "k")
    assert code == 0
    assert out["data"]["memory"]["tags"] == ["a", "b"]

    code, out = run(capsys, config_path, "memory", "delete", "k")
    assert code == 0

    code, out = run(capsys, config_path, "memory", "recall", "k")
    assert code == 0
    assert out["status"] == "NOT_FOUND"


def test_link_and_related(capsys, config_path):
    run(capsys, config_path, "memory", "save", "a", "alpha")
    run(capsys, config_path, "memory", "save", "b", "beta")

    code, out = run(capsys, config_path, "memory", "link", "a", "b", "depends_on", "--strength", "0.7")
    assert code == 0
    assert out["data"]["relationship"]["strength"] == 0.7

    code, out = run(capsys, config_path, "memory", "related", "b", "--type", "depends_on")
    assert out["data"]["count"] == 1
    assert out["data"]["related_memories"][0]["key"] == "a"

    code, out = run(capsys, config_path, "memory", "stats")
    assert out["data"]["relationship_count"] == 1


def test_search_and_list(capsys, config_path):
    run(capsys, config_path, "memory", "save", "a", "alpha notes", "--tags", "x")
    run(capsys, config_path, "memory", "save", "b", "beta notes", "--tags", "y")

    code, out = run(capsys, config_path, "memory", "search", "notes", "--tags", "y")
    assert [memory["key"] for memory in out["data"]["memories"]] == ["b"]

    code, out = run(capsys, config_path, "memory", "list", "--limit", "1")
    assert out["data"]["count"] == 1
    assert out["data"]["memories"][0]["key"] == "b"


def test_save_with_metadata(capsys, config_path):
    code, out = run(capsys, config_path, "memory", "save", "k", "v", "--metadata", '{"n": 1}')
    assert out["data"]["memory"]["metadata"] == {"n": 1}

    code, out = run(capsys, config_path, "memory", "save", "k", "v", "--metadata", "{broken")
    assert code == 1
    assert out is None


def test_error_outcome_exits_nonzero(capsys, config_path):
    code, out = run(capsys, config_path, "memory", "related", "a", "--max-depth", "0")
    assert code == 1
    assert out["error_type"] == "validation_error"


def test_missing_config(capsys, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(tmp_path / "absent.yaml"), "memory", "stats"])
    assert excinfo.value.code == 1
    assert "Config file not found" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1


def test_parser_has_transport_commands():
    parser = build_parser()
    args = parser.parse_args(["serve", "--port", "9000"])
    assert args.port == 9000
    assert args.func.__name__ == "cmd_serve"
    assert parser.parse_args(["mcp"]).func.__name__ == "cmd_mcp"

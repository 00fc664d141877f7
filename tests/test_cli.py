"""Tests for the command line entry point."""

import argparse
from datetime import datetime

import pytest

from rfpmart_analyzer import config as config_module
from rfpmart_analyzer.cli import build_parser, main, parse_since


@pytest.fixture(autouse=True)
def fresh_global_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"database:\n  url: \"sqlite:///{tmp_path / 'cli.sqlite'}\"\n"
        f"retention:\n  data_dir: \"{tmp_path / 'rfps'}\"\n"
        "logging:\n  level: WARNING\n  format: text\n  file: null\n"
    )
    return path


# --- Arguments ---


def test_parse_since():
    assert parse_since("2024-10-01") == datetime(2024, 10, 1)
    with pytest.raises(argparse.ArgumentTypeError):
        parse_since("10/01/2024")


def test_run_arguments():
    args = build_parser().parse_args(["run", "--since", "2024-10-01", "--mode", "disk", "--discovery", "rss"])

    assert args.command == "run"
    assert args.since == datetime(2024, 10, 1)
    assert args.mode == "disk"
    assert args.discovery == "rss"


def test_cleanup_arguments():
    args = build_parser().parse_args(["--config", "custom.yaml", "cleanup", "--dry-run"])

    assert args.config == "custom.yaml"
    assert args.dry_run


def test_command_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_unknown_mode_is_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["scrape", "--mode", "cloud"])


# --- main ---


def test_missing_config_exits_with_error(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "absent.yaml"), "rescore"]) == 1
    assert "Configuration error" in capsys.readouterr().err


def test_cleanup_dry_run(config_file, tmp_path, capsys):
    stale = tmp_path / "rfps" / "RFP-OLD"
    stale.mkdir(parents=True)
    (stale / "bundle.zip").write_bytes(b"zip")

    assert main(["--config", str(config_file), "cleanup", "--dry-run"]) == 0

    output = capsys.readouterr().out
    assert "age: examined 1, would remove 0, kept 1" in output
    assert "fit: examined 1, would remove 0, kept 1" in output
    assert (stale / "bundle.zip").exists()


def test_rescore_with_empty_database(config_file, capsys):
    assert main(["--config", str(config_file), "rescore"]) == 0
    assert ": completed" in capsys.readouterr().out

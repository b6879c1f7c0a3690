"""Tests for the context-session CLI."""

from __future__ import annotations

import subprocess
import sys

import pytest
import yaml

from conftest import FakeBackend, FakeSampler, FakeTokenizer
from context_session.config import load_config
from context_session.session import SessionController
from context_session.storage.filesystem import SnapshotDirectory


@pytest.fixture()
def tmp_cwd(tmp_path, monkeypatch):
    """Run test in a clean temporary directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _run_cli(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "context_session.cli.main", *args],
        capture_output=True,
        text=True,
    )


def test_config_validate_defaults(tmp_cwd):
    result = _run_cli("config", "validate")
    assert result.returncode == 0
    assert "Config is valid." in result.stdout


def test_config_validate_reports_errors(tmp_cwd):
    (tmp_cwd / "context-session.yaml").write_text(
        yaml.dump({"window": {"capacity": 64, "reserve_margin": 128}})
    )
    result = _run_cli("config", "validate")
    assert result.returncode != 0
    assert "reserve_margin" in result.stderr


def test_templates_list_and_show(tmp_cwd):
    listed = _run_cli("templates", "list")
    assert listed.returncode == 0
    assert "chatml" in listed.stdout
    assert "zephyr" in listed.stdout

    shown = _run_cli("templates", "show", "zephyr")
    assert shown.returncode == 0
    assert yaml.safe_load(shown.stdout)["stop_strings"] == ["<|user|>"]

    missing = _run_cli("templates", "show", "nope")
    assert missing.returncode != 0


def test_snapshots_list_and_delete(tmp_cwd):
    root = tmp_cwd / "snaps"
    (tmp_cwd / "context-session.yaml").write_text(yaml.dump({"snapshots": {"root": str(root)}}))

    assert "No snapshots yet." in _run_cli("snapshots", "list").stdout

    session = SessionController(config=load_config(config_dict={"window": {"capacity": 256, "reserve_margin": 32}}))
    session.provision(FakeBackend(capacity=256), FakeTokenizer(), FakeSampler())
    session.prime("sys")
    SnapshotDirectory(root).save(session, "conv-42", "tiny.gguf")

    listed = _run_cli("snapshots", "list")
    assert listed.returncode == 0
    assert "conv-42" in listed.stdout
    assert "tiny.gguf" in listed.stdout

    deleted = _run_cli("snapshots", "delete", "conv-42")
    assert deleted.returncode == 0
    assert "Deleted 1 snapshot(s)." in deleted.stdout
    assert _run_cli("snapshots", "delete", "conv-42").returncode != 0

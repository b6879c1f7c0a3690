"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .presets import get_template
from .types import (
    SamplerConfig,
    SessionConfig,
    SnapshotConfig,
    WindowConfig,
)

CONFIG_FILENAMES = [
    "context-session.yaml",
    "context-session.yml",
    "context-session.json",
]


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> SessionConfig:
    """Build a SessionConfig from a raw dict."""
    defaults = WindowConfig()
    window_raw = raw.get("window", {})
    window = WindowConfig(
        capacity=window_raw.get("capacity", defaults.capacity),
        reserve_margin=window_raw.get("reserve_margin", defaults.reserve_margin),
        small_margin=window_raw.get("small_margin", defaults.small_margin),
        prune_divisor=window_raw.get("prune_divisor", defaults.prune_divisor),
        sequence_id=window_raw.get("sequence_id", defaults.sequence_id),
    )

    sampler_defaults = SamplerConfig()
    sampler_raw = raw.get("sampler", {})
    sampler = SamplerConfig(
        temperature=sampler_raw.get("temperature", sampler_defaults.temperature),
        top_k=sampler_raw.get("top_k", sampler_defaults.top_k),
        top_p=sampler_raw.get("top_p", sampler_defaults.top_p),
        repeat_penalty=sampler_raw.get("repeat_penalty", sampler_defaults.repeat_penalty),
        seed=sampler_raw.get("seed"),
    )

    snapshots_raw = raw.get("snapshots", {})
    snapshots = SnapshotConfig(
        root=snapshots_raw.get("root", SnapshotConfig().root),
    )

    return SessionConfig(
        version=str(raw.get("version", "0.1")),
        window=window,
        sampler=sampler,
        snapshots=snapshots,
        template=raw.get("template", "chatml"),
        system_prompt=raw.get("system_prompt", ""),
        stop_strings=list(raw.get("stop_strings", [])),
        log_batch_text=bool(raw.get("log_batch_text", False)),
    )


def validate_config(config: SessionConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []
    w = config.window

    if w.capacity <= 0:
        errors.append(f"window.capacity must be > 0 (got {w.capacity})")

    if w.reserve_margin < 0 or w.small_margin < 0:
        errors.append("window margins must be >= 0")

    if w.reserve_margin >= w.capacity:
        errors.append(
            f"window.reserve_margin ({w.reserve_margin}) must be < "
            f"window.capacity ({w.capacity})"
        )

    if w.small_margin > w.reserve_margin:
        errors.append(
            f"window.small_margin ({w.small_margin}) must be <= "
            f"window.reserve_margin ({w.reserve_margin})"
        )

    if w.prune_divisor < 1:
        errors.append("window.prune_divisor must be >= 1")

    s = config.sampler
    if s.temperature < 0:
        errors.append("sampler.temperature must be >= 0")
    if not 0.0 < s.top_p <= 1.0:
        errors.append(f"sampler.top_p must be in (0, 1] (got {s.top_p})")
    if s.top_k < 0:
        errors.append("sampler.top_k must be >= 0")

    if get_template(config.template) is None:
        errors.append(f"Unknown template '{config.template}'")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> SessionConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)

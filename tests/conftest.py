"""Shared fixtures and in-memory fakes for context-session tests."""

from __future__ import annotations

import json

import pytest

from context_session.config import load_config
from context_session.session import SessionController
from context_session.types import SessionConfig, TokenBatch

EOS = 256


class FakeMemory:
    """Position-indexed KV store: sequence id -> {position: token}."""

    def __init__(self) -> None:
        self.cells: dict[int, dict[int, int]] = {}
        self.calls: list[tuple] = []

    def remove_range(self, sequence_id: int, start: int, end: int | None) -> None:
        self.calls.append(("remove_range", sequence_id, start, end))
        seq = self.cells.get(sequence_id, {})
        for pos in [p for p in seq if p >= start and (end is None or p < end)]:
            del seq[pos]

    def shift_positions(self, sequence_id: int, start: int, end: int | None, delta: int) -> None:
        self.calls.append(("shift_positions", sequence_id, start, end, delta))
        seq = self.cells.get(sequence_id, {})
        moved = {}
        for pos in sorted(seq):
            if pos >= start and (end is None or pos < end):
                moved[pos + delta] = seq[pos]
            else:
                moved[pos] = seq[pos]
        self.cells[sequence_id] = moved

    def max_position(self, sequence_id: int) -> int | None:
        seq = self.cells.get(sequence_id)
        return max(seq) if seq else None


class FakeBackend:
    """Deterministic backend: "predicts" a letter from the window contents."""

    def __init__(self, capacity: int = 2048) -> None:
        self.capacity = capacity
        self.memory = FakeMemory()
        self.batches: list[list[tuple[int, int, bool]]] = []
        self.fail_decode = False
        self.consume_short = 0
        self.close_count = 0

    def decode(self, batch: TokenBatch) -> bool:
        if self.fail_decode:
            return False
        rows = batch.rows()
        if any(pos >= self.capacity for _, pos, _ in rows):
            return False
        self.batches.append(rows)
        seq = self.memory.cells.setdefault(batch.sequence_id, {})
        for token, pos, _ in rows:
            seq[pos] = token
        return True

    def get_memory_handle(self) -> FakeMemory:
        return self.memory

    def get_state_bytes(self) -> bytes:
        cells = {
            str(seq): {str(pos): tok for pos, tok in sorted(positions.items())}
            for seq, positions in self.memory.cells.items()
        }
        return json.dumps({"cells": cells}).encode()

    def get_state_size(self) -> int:
        return len(self.get_state_bytes())

    def set_state_bytes(self, blob: bytes) -> int:
        data = json.loads(blob)
        self.memory.cells = {
            int(seq): {int(pos): tok for pos, tok in positions.items()}
            for seq, positions in data["cells"].items()
        }
        return len(blob) - self.consume_short

    def tokens(self, sequence_id: int = 0) -> list[int]:
        seq = self.memory.cells.get(sequence_id, {})
        return [seq[p] for p in sorted(seq)]

    def predict(self, sequence_id: int = 0) -> int:
        h = sum((i + 1) * t for i, t in enumerate(self.tokens(sequence_id)))
        return ord("a") + h % 26

    def close(self) -> None:
        self.close_count += 1


class FakeTokenizer:
    """Byte-level vocabulary (token == byte value) plus EOS and a few multi-byte pieces."""

    def __init__(self, extra: dict[int, bytes] | None = None) -> None:
        self.extra = extra or {}

    def tokenize(self, text: str) -> list[int]:
        return list(text.encode("utf-8"))

    def token_to_text_fragment(self, token: int) -> bytes:
        if token < 256:
            return bytes([token])
        return self.extra.get(token, b"")

    def is_end_of_generation(self, token: int) -> bool:
        return token == EOS

    def end_of_generation_token(self) -> int:
        return EOS


class FakeSampler:
    """Plays back a script, then falls back to the backend's prediction.

    With ``max_tokens`` set, predicted replies end with EOS after that many
    tokens.
    """

    def __init__(self, script: list[int] | None = None, max_tokens: int | None = None) -> None:
        self.script = list(script or [])
        self.max_tokens = max_tokens
        self.accepted: list[int] = []
        self.reset_count = 0
        self._predicted = 0

    def sample(self, backend: FakeBackend) -> int:
        if self.script:
            return self.script.pop(0)
        if self.max_tokens is not None and self._predicted >= self.max_tokens:
            self._predicted = 0
            return EOS
        self._predicted += 1
        return backend.predict()

    def accept(self, token: int) -> None:
        self.accepted.append(token)

    def reset(self) -> None:
        self.accepted.clear()
        self._predicted = 0
        self.reset_count += 1


def script(text: str, end: bool = True) -> list[int]:
    """Byte tokens spelling ``text``, optionally followed by EOS."""
    tokens = list(text.encode("utf-8"))
    return tokens + [EOS] if end else tokens


@pytest.fixture
def small_config() -> SessionConfig:
    return load_config(config_dict={
        "window": {"capacity": 256, "reserve_margin": 32, "small_margin": 4},
        "template": "chatml",
    })


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(capacity=256)


@pytest.fixture
def tokenizer() -> FakeTokenizer:
    return FakeTokenizer()


@pytest.fixture
def sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def session(small_config, backend, tokenizer, sampler) -> SessionController:
    s = SessionController(config=small_config)
    s.provision(backend, tokenizer, sampler)
    yield s
    s.unload()

"""All dataclasses, Protocols, errors, and type aliases for context-session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class SessionState(str, Enum):
    """Where the controller sits in the submit -> generate -> finalize cycle."""
    UNLOADED = "unloaded"       # no backend; initial and terminal
    READY = "ready"             # between turns
    GENERATING = "generating"   # prompt decoded, sampling tokens
    FAULTED = "faulted"         # backend memory untrusted after a failed load


class StopReason(str, Enum):
    END_OF_GENERATION = "end_of_generation"
    WINDOW_FULL = "window_full"
    STOP_STRING = "stop_string"


@dataclass
class TurnResult:
    """Outcome of one complete submit -> generate -> finalize cycle."""
    text: str
    prompt_tokens: int
    generated_tokens: int
    stop_reason: StopReason | None = None


@dataclass
class SessionStatus:
    state: SessionState
    capacity: int
    occupied: int
    anchor_length: int
    turn_count: int

    @property
    def remaining(self) -> int:
        return self.capacity - self.occupied


# ---------------------------------------------------------------------------
# Insertion batch
# ---------------------------------------------------------------------------

class TokenBatch:
    """Pre-sized insertion buffer: one row per token.

    Each row carries the token id, its window position, and whether the
    backend should produce logits for it (i.e. whether it may be sampled
    from). The buffer is reused across calls; ``clear()`` only resets the
    row count.
    """

    def __init__(self, size: int, sequence_id: int = 0) -> None:
        if size <= 0:
            raise ValueError(f"batch size must be positive, got {size}")
        self.size = size
        self.sequence_id = sequence_id
        self.tokens: list[int] = [0] * size
        self.positions: list[int] = [0] * size
        self.logits: list[bool] = [False] * size
        self.n_tokens = 0

    def clear(self) -> None:
        self.n_tokens = 0

    def add(self, token: int, position: int, logits: bool = False) -> None:
        if self.n_tokens >= self.size:
            raise ValueError(f"batch is full ({self.size} rows)")
        i = self.n_tokens
        self.tokens[i] = token
        self.positions[i] = position
        self.logits[i] = logits
        self.n_tokens += 1

    def mark_last_for_sampling(self) -> None:
        if self.n_tokens:
            self.logits[self.n_tokens - 1] = True

    def rows(self) -> list[tuple[int, int, bool]]:
        """(token, position, logits) for the filled rows."""
        n = self.n_tokens
        return list(zip(self.tokens[:n], self.positions[:n], self.logits[:n]))

    def __len__(self) -> int:
        return self.n_tokens


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------

@runtime_checkable
class KVMemory(Protocol):
    """Backend key/value memory, addressed by sequence id and position.

    ``end=None`` means "through the end of the sequence".
    """

    def remove_range(self, sequence_id: int, start: int, end: int | None) -> None: ...

    def shift_positions(
        self, sequence_id: int, start: int, end: int | None, delta: int,
    ) -> None: ...

    def max_position(self, sequence_id: int) -> int | None: ...


@runtime_checkable
class ModelBackend(Protocol):
    """Forward pass plus memory/state access. Blocking from the caller's view."""

    def decode(self, batch: TokenBatch) -> bool: ...

    def get_memory_handle(self) -> KVMemory | None: ...

    def get_state_size(self) -> int: ...

    def get_state_bytes(self) -> bytes: ...

    def set_state_bytes(self, blob: bytes) -> int: ...


@runtime_checkable
class Tokenizer(Protocol):
    def tokenize(self, text: str) -> list[int]: ...

    def token_to_text_fragment(self, token: int) -> bytes: ...

    def is_end_of_generation(self, token: int) -> bool: ...

    def end_of_generation_token(self) -> int: ...


@runtime_checkable
class Sampler(Protocol):
    def sample(self, backend: ModelBackend) -> int: ...

    def accept(self, token: int) -> None: ...

    def reset(self) -> None: ...


SamplerFactory = Callable[["SamplerConfig"], Sampler]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SessionError(Exception):
    """Base class for every failure the session layer raises."""


class InvariantViolation(SessionError):
    """Window bookkeeping defect. Not user-correctable."""


class WindowOverflow(InvariantViolation):
    def __init__(self, occupied: int, requested: int, capacity: int):
        super().__init__(
            f"inserting {requested} tokens at {occupied} exceeds capacity {capacity}"
        )
        self.occupied = occupied
        self.requested = requested
        self.capacity = capacity


class InvalidEviction(InvariantViolation):
    def __init__(self, count: int, evictable: int):
        super().__init__(f"cannot evict {count} tokens; only {evictable} evictable")
        self.count = count
        self.evictable = evictable


class PromptTooLarge(SessionError):
    """The prompt does not fit even after pruning. Caller must shorten it."""

    def __init__(self, needed: int, available: int):
        super().__init__(
            f"prompt needs {needed} tokens but only {available} fit after pruning"
        )
        self.needed = needed
        self.available = available


class EmptyPrompt(SessionError, ValueError):
    pass


class DecodeFailed(SessionError):
    def __init__(self, stage: str, message: str = ""):
        super().__init__(message or f"backend decode failed during {stage}")
        self.stage = stage  # "prompt", "token", "finalize"


class NoActiveSession(SessionError):
    pass


class InvalidSessionState(SessionError):
    def __init__(self, operation: str, state: SessionState):
        super().__init__(f"{operation} is not valid in state '{state.value}'")
        self.operation = operation
        self.state = state


class StateMismatch(SessionError):
    def __init__(self, supplied: int, consumed: int):
        super().__init__(
            f"backend consumed {consumed} of {supplied} snapshot bytes"
        )
        self.supplied = supplied
        self.consumed = consumed


class SnapshotIOError(SessionError, OSError):
    pass


# ---------------------------------------------------------------------------
# Snapshot index
# ---------------------------------------------------------------------------

@dataclass
class SnapshotEntry:
    """One recorded snapshot file for a (conversation, model) pair."""
    conversation_id: str
    model_name: str
    path: str
    size: int = 0
    occupied: int = 0
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class WindowConfig:
    capacity: int = 2048
    reserve_margin: int = 128   # prune once an insertion would cross capacity - this
    small_margin: int = 4       # hard limit for an insertion after pruning
    prune_divisor: int = 4      # evict 1/N of the non-anchored span per pruning
    sequence_id: int = 0


@dataclass
class SamplerConfig:
    temperature: float = 0.8
    top_k: int = 40
    top_p: float = 0.95
    repeat_penalty: float = 1.1
    seed: int | None = None

    @property
    def greedy(self) -> bool:
        return self.temperature <= 0.0


@dataclass
class SnapshotConfig:
    root: str = ".context_session/snapshots"


@dataclass
class SessionConfig:
    version: str = "0.1"
    window: WindowConfig = field(default_factory=WindowConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
    template: str = "chatml"
    system_prompt: str = ""
    stop_strings: list[str] = field(default_factory=list)
    log_batch_text: bool = False

"""context-session: sliding-window session manager over a local LLM backend."""

from .config import load_config
from .session import SessionController
from .storage import SnapshotDirectory
from .types import (
    DecodeFailed,
    InvalidEviction,
    NoActiveSession,
    PromptTooLarge,
    SessionConfig,
    SessionError,
    SessionState,
    SnapshotIOError,
    StateMismatch,
    TurnResult,
    WindowOverflow,
)

__version__ = "0.1.0"

__all__ = [
    "SessionController",
    "SnapshotDirectory",
    "load_config",
    "DecodeFailed",
    "InvalidEviction",
    "NoActiveSession",
    "PromptTooLarge",
    "SessionConfig",
    "SessionError",
    "SessionState",
    "SnapshotIOError",
    "StateMismatch",
    "TurnResult",
    "WindowOverflow",
]

"""SessionController: owns one conversation against a fixed-size context window.

Usage:
    session = SessionController(config_path="./context-session.yaml")
    session.provision(backend, tokenizer, sampler)

    session.submit_prompt(text)
    while (chunk := session.generate_next()) is not None:
        print(chunk, end="")
    session.finalize_turn()

One controller is one single-threaded session: callers serialize access.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator

from .config import load_config
from .core.pruning import PruningPolicy
from .core.snapshot import SnapshotStore, SnapshotTarget
from .core.utf8 import StreamingTextDecoder
from .core.window import TokenWindowTracker
from .presets import ChatTemplate, get_template
from .types import (
    DecodeFailed,
    EmptyPrompt,
    InvalidSessionState,
    InvariantViolation,
    ModelBackend,
    NoActiveSession,
    Sampler,
    SamplerFactory,
    SessionConfig,
    SessionState,
    SessionStatus,
    StateMismatch,
    StopReason,
    TokenBatch,
    Tokenizer,
    TurnResult,
)

logger = logging.getLogger(__name__)


class _Turn:
    """Bookkeeping for the turn in flight. Never persisted."""

    def __init__(self, prompt_tokens: int) -> None:
        self.prompt_tokens = prompt_tokens
        self.generated = 0
        self.stop_reason: StopReason | None = None


class SessionController:
    def __init__(
        self,
        config: SessionConfig | None = None,
        config_path: str | Path | None = None,
    ) -> None:
        self.config = config or load_config(config_path)

        self._tracker = TokenWindowTracker(sequence_id=self.config.window.sequence_id)
        self._decoder = StreamingTextDecoder()
        self._pruning = PruningPolicy.from_config(self._tracker, self.config.window)
        self._snapshots = SnapshotStore(self._tracker)
        self._template = get_template(self.config.template)
        if self._template is None:
            raise ValueError(f"Unknown template '{self.config.template}'")

        self._backend: ModelBackend | None = None
        self._tokenizer: Tokenizer | None = None
        self._sampler: Sampler | None = None
        self._batch: TokenBatch | None = None
        self._turn: _Turn | None = None
        self._turn_count = 0
        self.state = SessionState.UNLOADED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def provision(
        self,
        backend: ModelBackend,
        tokenizer: Tokenizer,
        sampler: Sampler | None = None,
        *,
        sampler_factory: SamplerFactory | None = None,
    ) -> None:
        """Attach a backend and start a fresh, empty window.

        Any previously attached backend is released first. Pass either a
        ready ``sampler`` or a ``sampler_factory`` that builds one from
        ``config.sampler``.
        """
        if sampler is None:
            if sampler_factory is None:
                raise ValueError("provision needs a sampler or a sampler_factory")
            sampler = sampler_factory(self.config.sampler)

        self.unload()

        capacity = self.config.window.capacity
        self._backend = backend
        self._tokenizer = tokenizer
        self._sampler = sampler
        self._tracker.begin_session(capacity)
        self._batch = TokenBatch(capacity, sequence_id=self._tracker.sequence_id)
        self._decoder.clear()
        self._turn = None
        self._turn_count = 0
        self.state = SessionState.READY
        logger.info(
            "Session provisioned (capacity=%d, reserve=%d, template=%s)",
            capacity, self._pruning.reserve_margin, self._template.name,
        )

    def unload(self) -> None:
        """Release the backend and return to UNLOADED. Safe to call repeatedly."""
        backend = self._backend
        self._backend = None
        self._tokenizer = None
        self._sampler = None
        self._batch = None
        self._turn = None
        self._decoder.clear()
        self._tracker.clear()
        self.state = SessionState.UNLOADED
        if backend is not None:
            logger.info("Releasing session backend.")
            close = getattr(backend, "close", None)
            if callable(close):
                close()

    def __enter__(self) -> SessionController:
        return self

    def __exit__(self, *exc) -> None:
        self.unload()

    # ------------------------------------------------------------------
    # Turn-taking
    # ------------------------------------------------------------------

    def submit_prompt(self, text: str) -> int:
        """Insert ``text`` into the window and open a turn.

        Returns the number of prompt tokens inserted. On DecodeFailed no
        counter moves and the session stays READY.
        """
        backend = self._require_backend()
        self._require_state("submit_prompt", SessionState.READY)

        tokens = self._tokenizer.tokenize(text)
        if not tokens:
            raise EmptyPrompt("prompt produced no tokens")
        n = len(tokens)

        self._pruning.make_room(backend.get_memory_handle(), n)

        start = self._tracker.next_position
        batch = self._batch
        batch.clear()
        for i, token in enumerate(tokens):
            batch.add(token, start + i, logits=False)
        batch.mark_last_for_sampling()
        self._log_batch("submit_prompt")

        if not backend.decode(batch):
            logger.error("Backend decode failed on prompt (%d tokens at %d)", len(batch), start)
            raise DecodeFailed("prompt")

        if self._tracker.set_anchor_if_unset(n):
            logger.info("Anchored first %d tokens as the system prompt.", n)
        self._tracker.record_insertion(n)
        self._decoder.clear()
        self._turn = _Turn(prompt_tokens=n)
        self.state = SessionState.GENERATING
        return n

    def generate_next(self) -> str | None:
        """Sample, insert, and detokenize one token.

        Returns the newly completed text (possibly ``""`` while a multi-byte
        character is still partial) or None once the turn has nothing more
        to produce: end-of-generation was sampled or the window is full.
        """
        backend = self._require_backend()
        self._require_state("generate_next", SessionState.GENERATING)
        turn = self._turn

        if turn.stop_reason is not None:
            return None
        if self._tracker.is_full:
            turn.stop_reason = StopReason.WINDOW_FULL
            logger.info("Window full at %d tokens; ending turn.", self._tracker.occupied)
            return None

        token = self._sampler.sample(backend)
        self._sampler.accept(token)
        if self._tokenizer.is_end_of_generation(token):
            turn.stop_reason = StopReason.END_OF_GENERATION
            return None

        batch = self._batch
        batch.clear()
        batch.add(token, self._tracker.next_position, logits=True)
        self._log_batch("generate_next")
        if not backend.decode(batch):
            logger.error("Backend decode failed during generation")
            raise DecodeFailed("token")
        self._tracker.record_insertion(1)
        turn.generated += 1

        return self._decoder.feed(self._tokenizer.token_to_text_fragment(token))

    def finalize_turn(self) -> None:
        """Close the turn with an end-of-generation marker and return to READY."""
        backend = self._require_backend()
        self._require_state("finalize_turn", SessionState.GENERATING, SessionState.READY)

        was_generating = self.state is SessionState.GENERATING
        self.state = SessionState.READY
        self._turn = None
        if was_generating:
            self._turn_count += 1

        if self._tracker.is_full:
            logger.warning("Window full; turn closed without an end marker.")
            return

        batch = self._batch
        batch.clear()
        batch.add(self._tokenizer.end_of_generation_token(), self._tracker.next_position)
        self._log_batch("finalize_turn")
        if not backend.decode(batch):
            logger.error("Backend decode failed in finalize_turn")
            raise DecodeFailed("finalize")
        self._tracker.record_insertion(1)

    def soft_reset(self) -> None:
        """Drop everything after the anchor and reset sampler history."""
        backend = self._require_backend()
        self._require_state("soft_reset", SessionState.READY)

        anchor = self._tracker.anchor_length
        if anchor == 0:
            logger.info("No anchor recorded; nothing to reset beyond the system prompt.")
            return

        memory = backend.get_memory_handle()
        if memory is None:
            raise NoActiveSession("backend exposes no memory handle")
        removed = self._pruning.truncate_to_anchor(memory)
        self._sampler.reset()
        self._decoder.clear()
        logger.info(
            "Soft reset: removed %d tokens, kept %d anchored tokens.", removed, anchor
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def save_state(self, target: SnapshotTarget) -> int:
        """Write raw backend memory to a path or binary stream. Returns bytes written."""
        backend = self._require_backend()
        if self.state is SessionState.FAULTED:
            raise InvalidSessionState("save_state", self.state)
        return self._snapshots.save(backend, target)

    def load_state(self, source: SnapshotTarget) -> int:
        """Restore backend memory from a path or binary stream.

        On success the whole restored window becomes the anchor and the
        session is READY. A read failure leaves the session untouched; a
        failure after the backend accepted bytes leaves it FAULTED until
        the next successful load or provision.
        """
        backend = self._require_backend()
        try:
            occupied = self._snapshots.load(backend, source)
        except (StateMismatch, InvariantViolation):
            self.state = SessionState.FAULTED
            self._turn = None
            raise
        self._decoder.clear()
        self._turn = None
        self.state = SessionState.READY
        return occupied

    # ------------------------------------------------------------------
    # Turn helpers
    # ------------------------------------------------------------------

    def stream(self, text: str) -> Iterator[str]:
        """Submit ``text`` and yield non-empty chunks until the turn stops.

        Stops early when a configured stop string shows up in the response
        (runaway generation); the turn is left open for ``finalize_turn``.
        """
        self.submit_prompt(text)
        stop_strings = self.stop_strings
        response = ""
        while True:
            chunk = self.generate_next()
            if chunk is None:
                return
            if not chunk:
                continue
            response += chunk
            yield chunk
            if stop_strings and any(s in response for s in stop_strings):
                logger.warning("Stop string detected; ending runaway generation.")
                self._turn.stop_reason = StopReason.STOP_STRING
                return

    def run_turn(self, text: str) -> TurnResult:
        """Full cycle: submit, generate until stop, finalize."""
        response = "".join(self.stream(text))
        turn = self._turn
        result = TurnResult(
            text=_cut_at_stop(response, self.stop_strings),
            prompt_tokens=turn.prompt_tokens,
            generated_tokens=turn.generated,
            stop_reason=turn.stop_reason,
        )
        self.finalize_turn()
        return result

    def chat(self, user_message: str) -> TurnResult:
        """``run_turn`` with the user message framed by the chat template."""
        return self.run_turn(self._template.format_prompt(user_message))

    def prime(self, system_prompt: str | None = None) -> int:
        """Insert the system prompt into an empty window so it becomes the anchor.

        Returns the anchor length.
        """
        self._require_backend()
        if self._tracker.occupied:
            raise InvalidSessionState("prime (window not empty)", self.state)
        system_prompt = system_prompt if system_prompt is not None else self.config.system_prompt
        if not system_prompt:
            raise EmptyPrompt("no system prompt to prime with")
        self.submit_prompt(self._template.format_system(system_prompt))
        self.finalize_turn()
        self._turn_count = 0
        return self._tracker.anchor_length

    def replay(self, turns: Iterable[tuple[str, str]]) -> int:
        """Rebuild the window from stored (user, assistant) pairs.

        The slow path for a conversation that has no usable snapshot.
        Returns the number of pairs replayed.
        """
        self.soft_reset()
        count = 0
        for user, assistant in turns:
            self.submit_prompt(self._template.format_exchange(user, assistant))
            self.finalize_turn()
            count += 1
        logger.info("Replayed %d turns; window holds %d tokens.", count, self._tracker.occupied)
        return count

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def template(self) -> ChatTemplate:
        return self._template

    @property
    def stop_strings(self) -> list[str]:
        return list(self.config.stop_strings or self._template.stop_strings)

    @property
    def tracker(self) -> TokenWindowTracker:
        return self._tracker

    @property
    def backend(self) -> ModelBackend | None:
        return self._backend

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self.state,
            capacity=self._tracker.capacity,
            occupied=self._tracker.occupied,
            anchor_length=self._tracker.anchor_length,
            turn_count=self._turn_count,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_backend(self) -> ModelBackend:
        if self._backend is None:
            raise NoActiveSession("no backend loaded")
        return self._backend

    def _require_state(self, operation: str, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise InvalidSessionState(operation, self.state)

    def _log_batch(self, prefix: str) -> None:
        if not self.config.log_batch_text or not logger.isEnabledFor(logging.DEBUG):
            return
        pieces = b"".join(
            self._tokenizer.token_to_text_fragment(token)
            for token, _, _ in self._batch.rows()
        )
        logger.debug(
            "CONTEXT ADD (%s):\n---\n%s\n---", prefix, pieces.decode("utf-8", errors="replace")
        )


def _cut_at_stop(text: str, stop_strings: list[str]) -> str:
    cut = len(text)
    for s in stop_strings:
        idx = text.find(s)
        if idx != -1:
            cut = min(cut, idx)
    return text[:cut]

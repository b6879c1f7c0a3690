"""PruningPolicy: sliding-window eviction that never touches the anchor."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..types import KVMemory, NoActiveSession, PromptTooLarge, WindowConfig
from .window import TokenWindowTracker

logger = logging.getLogger(__name__)


@dataclass
class PruneReport:
    removed: int
    occupied_before: int
    occupied_after: int
    anchor_length: int


class PruningPolicy:
    """Decide when and how much of the window to evict before an insertion.

    - Trigger: ``occupied + n > capacity - reserve_margin``
    - Amount: ``(occupied - anchor_length) // prune_divisor``, oldest first,
      taken from directly after the anchor; later positions slide down.
    - Post-check: the insertion must fit in ``capacity - small_margin``.
    """

    def __init__(
        self,
        tracker: TokenWindowTracker,
        *,
        reserve_margin: int = 128,
        small_margin: int = 4,
        prune_divisor: int = 4,
    ) -> None:
        if prune_divisor < 1:
            raise ValueError(f"prune_divisor must be >= 1, got {prune_divisor}")
        self._tracker = tracker
        self.reserve_margin = reserve_margin
        self.small_margin = small_margin
        self.prune_divisor = prune_divisor

    @classmethod
    def from_config(cls, tracker: TokenWindowTracker, config: WindowConfig) -> PruningPolicy:
        return cls(
            tracker,
            reserve_margin=config.reserve_margin,
            small_margin=config.small_margin,
            prune_divisor=config.prune_divisor,
        )

    def needs_pruning(self, n: int) -> bool:
        t = self._tracker
        return t.occupied + n > t.capacity - self.reserve_margin

    def planned_removal(self) -> int:
        return len(self._tracker.evictable_span()) // self.prune_divisor

    def make_room(self, memory: KVMemory | None, n: int) -> PruneReport | None:
        """Prune if inserting ``n`` tokens crosses the reserve, then verify fit.

        Raises PromptTooLarge when the insertion still does not fit.
        """
        report = None
        if self.needs_pruning(n):
            report = self.prune(memory)

        t = self._tracker
        available = max(0, t.remaining - self.small_margin)
        if n > available:
            logger.error(
                "Prompt of %d tokens overflows the window even after pruning "
                "(occupied=%d, available=%d)", n, t.occupied, available,
            )
            raise PromptTooLarge(needed=n, available=available)
        return report

    def prune(self, memory: KVMemory | None) -> PruneReport:
        """Evict the oldest quarter (by default) of the non-anchored span."""
        t = self._tracker
        before = t.occupied
        to_remove = self.planned_removal()
        logger.info("Context is getting full (%d tokens). Pruning %d tokens.", before, to_remove)
        if to_remove > 0:
            if memory is None:
                raise NoActiveSession("backend exposes no memory handle to prune")
            start = t.anchor_length
            memory.remove_range(t.sequence_id, start, start + to_remove)
            memory.shift_positions(t.sequence_id, start + to_remove, None, -to_remove)
            t.apply_eviction(to_remove)
        logger.info("Pruning complete. New context size: %d tokens.", t.occupied)
        return PruneReport(
            removed=to_remove,
            occupied_before=before,
            occupied_after=t.occupied,
            anchor_length=t.anchor_length,
        )

    def truncate_to_anchor(self, memory: KVMemory) -> int:
        """Drop everything after the anchor. Returns the number of tokens removed."""
        t = self._tracker
        removed = len(t.evictable_span())
        memory.remove_range(t.sequence_id, t.anchor_length, None)
        t.apply_eviction(removed)
        return removed

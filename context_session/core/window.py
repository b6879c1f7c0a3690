"""TokenWindowTracker: occupancy, anchor, and position bookkeeping."""

from __future__ import annotations

from ..types import InvalidEviction, WindowOverflow


class TokenWindowTracker:
    """Counters mirroring what the backend holds for one sequence.

    Keeps ``0 <= anchor_length <= occupied <= capacity`` after every
    mutation. The anchor (the system prompt) is fixed by the first insertion
    of a session and only an explicit ``begin_session``/``clear`` or a
    snapshot ``restore`` changes it.
    """

    def __init__(self, sequence_id: int = 0) -> None:
        self.sequence_id = sequence_id
        self.capacity = 0
        self.occupied = 0
        self.anchor_length = 0

    def begin_session(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self.occupied = 0
        self.anchor_length = 0

    def clear(self) -> None:
        """Full reset, including capacity."""
        self.begin_session(0)

    @property
    def next_position(self) -> int:
        return self.occupied

    @property
    def remaining(self) -> int:
        return self.capacity - self.occupied

    @property
    def is_full(self) -> bool:
        return self.occupied >= self.capacity

    def record_insertion(self, n: int) -> None:
        if n < 0 or self.occupied + n > self.capacity:
            raise WindowOverflow(self.occupied, n, self.capacity)
        self.occupied += n

    def set_anchor_if_unset(self, n: int) -> bool:
        """Anchor the first ``n`` tokens if nothing has been inserted yet.

        Must be called before the matching ``record_insertion``. Returns True
        when the anchor was set.
        """
        if self.occupied != 0:
            return False
        if n < 0 or n > self.capacity:
            raise WindowOverflow(0, n, self.capacity)
        self.anchor_length = n
        return True

    def evictable_span(self) -> range:
        """Positions that pruning may remove: ``[anchor_length, occupied)``."""
        return range(self.anchor_length, max(self.anchor_length, self.occupied))

    def apply_eviction(self, count: int) -> None:
        evictable = len(self.evictable_span())
        if count < 0 or count > evictable:
            raise InvalidEviction(count, evictable)
        self.occupied -= count

    def restore(self, occupied: int, anchor_length: int) -> None:
        """Adopt counters recovered from a snapshot."""
        if occupied < 0 or occupied > self.capacity:
            raise WindowOverflow(0, occupied, self.capacity)
        if anchor_length < 0 or anchor_length > occupied:
            raise WindowOverflow(0, anchor_length, occupied)
        self.occupied = occupied
        self.anchor_length = anchor_length

    def __repr__(self) -> str:
        return (
            f"TokenWindowTracker(seq={self.sequence_id}, "
            f"occupied={self.occupied}/{self.capacity}, anchor={self.anchor_length})"
        )

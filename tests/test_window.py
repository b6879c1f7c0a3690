"""Tests for TokenWindowTracker."""

import random

import pytest

from context_session.core.window import TokenWindowTracker
from context_session.types import InvalidEviction, WindowOverflow


def _check(t: TokenWindowTracker) -> None:
    assert 0 <= t.anchor_length <= t.occupied <= t.capacity


def test_begin_session_resets_counters():
    t = TokenWindowTracker()
    t.begin_session(16)
    t.set_anchor_if_unset(4)
    t.record_insertion(4)
    t.begin_session(32)
    assert (t.capacity, t.occupied, t.anchor_length) == (32, 0, 0)


def test_record_insertion_overflow():
    t = TokenWindowTracker()
    t.begin_session(8)
    t.record_insertion(6)
    assert t.remaining == 2
    with pytest.raises(WindowOverflow):
        t.record_insertion(3)
    assert t.occupied == 6


def test_anchor_only_set_on_first_insertion():
    t = TokenWindowTracker()
    t.begin_session(8)
    assert t.set_anchor_if_unset(3) is True
    t.record_insertion(3)
    assert t.set_anchor_if_unset(2) is False
    t.record_insertion(2)
    assert t.anchor_length == 3
    assert t.occupied == 5


def test_evictable_span():
    t = TokenWindowTracker()
    t.begin_session(100)
    t.set_anchor_if_unset(10)
    t.record_insertion(10)
    assert len(t.evictable_span()) == 0
    t.record_insertion(15)
    span = t.evictable_span()
    assert (span.start, span.stop) == (10, 25)


def test_eviction_cannot_touch_anchor():
    t = TokenWindowTracker()
    t.begin_session(100)
    t.set_anchor_if_unset(10)
    t.record_insertion(10)
    t.record_insertion(5)
    with pytest.raises(InvalidEviction):
        t.apply_eviction(6)
    t.apply_eviction(5)
    assert t.occupied == t.anchor_length == 10


def test_restore_sets_both_counters():
    t = TokenWindowTracker()
    t.begin_session(64)
    t.restore(40, anchor_length=12)
    assert t.occupied == 40
    assert t.anchor_length == 12
    assert t.remaining == 24
    with pytest.raises(WindowOverflow):
        t.restore(65, anchor_length=0)


def test_restore_rejects_anchor_past_occupied():
    t = TokenWindowTracker()
    t.begin_session(64)
    t.record_insertion(5)
    with pytest.raises(WindowOverflow):
        t.restore(10, anchor_length=11)
    assert (t.occupied, t.anchor_length) == (5, 0)


def test_invariant_holds_under_random_operations():
    rng = random.Random(1234)
    t = TokenWindowTracker()
    t.begin_session(512)
    for _ in range(2000):
        op = rng.random()
        if op < 0.6:
            n = rng.randint(0, 40)
            try:
                t.set_anchor_if_unset(n)
                t.record_insertion(n)
            except WindowOverflow:
                pass
        elif op < 0.95:
            count = rng.randint(0, 60)
            try:
                t.apply_eviction(count)
            except InvalidEviction:
                pass
        else:
            t.begin_session(512)
        _check(t)

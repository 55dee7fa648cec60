"""
Unit tests for queue operations.
"""

import random
from collections import Counter

import pytest

from venuesync import queue as queue_ops
from venuesync.errors import OutOfRange


def ids(tracks):
    return [t.video_id for t in tracks]


def test_pop_next_prefers_priority(make_track):
    """Priority queue drains before the active queue."""
    priority = [make_track(1)]
    active = [make_track(2), make_track(3)]

    track, pq, aq = queue_ops.pop_next(priority, active)

    assert track.video_id == "vid1"
    assert pq == []
    assert ids(aq) == ["vid2", "vid3"]


def test_pop_next_from_active(make_track):
    track, pq, aq = queue_ops.pop_next([], [make_track(2), make_track(3)])

    assert track.video_id == "vid2"
    assert pq == []
    assert ids(aq) == ["vid3"]


def test_pop_next_empty():
    track, pq, aq = queue_ops.pop_next([], [])
    assert track is None
    assert pq == [] and aq == []


def test_pop_next_does_not_mutate_inputs(make_track):
    priority = [make_track(1)]
    active = [make_track(2)]

    queue_ops.pop_next(priority, active)

    assert ids(priority) == ["vid1"]
    assert ids(active) == ["vid2"]


def test_insert_appends_by_default(make_track):
    result = queue_ops.insert([make_track(1)], make_track(2))
    assert ids(result) == ["vid1", "vid2"]


def test_insert_at_position(make_track):
    q = [make_track(1), make_track(2)]

    assert ids(queue_ops.insert(q, make_track(9), 0)) == ["vid9", "vid1", "vid2"]
    assert ids(queue_ops.insert(q, make_track(9), 1)) == ["vid1", "vid9", "vid2"]
    # Position equal to the length appends
    assert ids(queue_ops.insert(q, make_track(9), 2)) == ["vid1", "vid2", "vid9"]
    assert ids(q) == ["vid1", "vid2"]


@pytest.mark.parametrize("position", [-1, 3, 100])
def test_insert_out_of_range(make_track, position):
    with pytest.raises(OutOfRange):
        queue_ops.insert([make_track(1), make_track(2)], make_track(9), position)


def test_insert_keeps_duplicates(make_track):
    """The same track may appear more than once."""
    result = queue_ops.insert([make_track(1)], make_track(1))
    assert ids(result) == ["vid1", "vid1"]


def test_remove(make_track):
    q = [make_track(1), make_track(2), make_track(3)]

    assert ids(queue_ops.remove(q, 1)) == ["vid1", "vid3"]
    assert ids(queue_ops.remove(q, 0)) == ["vid2", "vid3"]
    assert len(q) == 3


@pytest.mark.parametrize("index", [-1, 2, 5])
def test_remove_out_of_range(make_track, index):
    with pytest.raises(OutOfRange):
        queue_ops.remove([make_track(1), make_track(2)], index)


def test_remove_from_empty_queue():
    with pytest.raises(OutOfRange):
        queue_ops.remove([], 0)


def test_shuffle_is_permutation(make_track):
    q = [make_track(n) for n in range(20)]

    result = queue_ops.shuffle(q, random.Random(7))

    assert Counter(ids(result)) == Counter(ids(q))
    assert ids(q) == [f"vid{n}" for n in range(20)]


def test_shuffle_deterministic_for_seed(make_track):
    q = [make_track(n) for n in range(10)]

    first = queue_ops.shuffle(q, random.Random(42))
    second = queue_ops.shuffle(q, random.Random(42))

    assert ids(first) == ids(second)


def test_shuffle_small_queues(make_track):
    rng = random.Random(1)
    assert queue_ops.shuffle([], rng) == []
    assert ids(queue_ops.shuffle([make_track(1)], rng)) == ["vid1"]


def test_push_history_bounded(make_track):
    history = []
    for n in range(5):
        history = queue_ops.push_history(history, make_track(n), limit=3)

    assert ids(history) == ["vid2", "vid3", "vid4"]


def test_push_history_ignores_none(make_track):
    history = [make_track(1)]
    assert ids(queue_ops.push_history(history, None, limit=3)) == ["vid1"]


def test_pop_history(make_track):
    track, rest = queue_ops.pop_history([make_track(1), make_track(2)])
    assert track.video_id == "vid2"
    assert ids(rest) == ["vid1"]

    track, rest = queue_ops.pop_history([])
    assert track is None
    assert rest == []

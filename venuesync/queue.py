"""
Queue operations for venuesync.

Pure functions over the priority queue, the active queue and the bounded
play history. Inputs are never mutated; every function returns new lists.
"""

import random
from typing import List, Optional, Sequence, Tuple

from .errors import OutOfRange
from .models import Track


def pop_next(
    priority_queue: Sequence[Track], active_queue: Sequence[Track]
) -> Tuple[Optional[Track], List[Track], List[Track]]:
    """
    Take the next track to play.

    The priority queue is always drained before the active queue.

    Returns:
        (track or None, remaining priority queue, remaining active queue)
    """
    if priority_queue:
        return priority_queue[0], list(priority_queue[1:]), list(active_queue)
    if active_queue:
        return active_queue[0], list(priority_queue), list(active_queue[1:])
    return None, list(priority_queue), list(active_queue)


def insert(queue: Sequence[Track], track: Track, position: Optional[int] = None) -> List[Track]:
    """
    Insert a track, appending by default.

    Raises:
        OutOfRange: position is outside [0, len(queue)]
    """
    result = list(queue)
    if position is None:
        result.append(track)
        return result
    if not 0 <= position <= len(result):
        raise OutOfRange(
            f"Position {position} outside queue of length {len(result)}",
            position=position,
            length=len(result),
        )
    result.insert(position, track)
    return result


def remove(queue: Sequence[Track], index: int) -> List[Track]:
    """
    Remove the track at index.

    Raises:
        OutOfRange: index is outside [0, len(queue))
    """
    if not 0 <= index < len(queue):
        raise OutOfRange(
            f"Index {index} outside queue of length {len(queue)}",
            index=index,
            length=len(queue),
        )
    result = list(queue)
    del result[index]
    return result


def shuffle(queue: Sequence[Track], rng: random.Random) -> List[Track]:
    """
    Fisher-Yates shuffle driven by the given generator.

    The same seed always yields the same ordering, and the multiset of
    tracks is preserved.
    """
    result = list(queue)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def push_history(history: Sequence[Track], track: Optional[Track], limit: int) -> List[Track]:
    """Append a finished track, keeping only the most recent `limit` entries."""
    result = list(history)
    if track is None or limit <= 0:
        return result[-limit:] if limit > 0 else []
    result.append(track)
    return result[-limit:]


def pop_history(history: Sequence[Track]) -> Tuple[Optional[Track], List[Track]]:
    """Take the most recently played track."""
    if not history:
        return None, list(history)
    return history[-1], list(history[:-1])

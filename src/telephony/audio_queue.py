"""Bounded FIFO for inbound audio waiting on an upstream connection."""

from __future__ import annotations

from collections import deque

DEFAULT_CAPACITY = 400  # ~8s of 20ms Twilio frames


class AudioFrameQueue:
    """Ring buffer of audio frames with a drop-oldest overflow policy.

    Not thread-safe: a queue belongs to exactly one call session and is only
    touched from that session's handlers.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Initialize the queue.

        Args:
            capacity: Maximum number of frames held at once

        Raises:
            ValueError: If capacity is <= 0
        """
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._frames: deque[bytes] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._frames)

    def enqueue(self, frame: bytes) -> bytes | None:
        """Append a frame to the tail.

        Returns:
            The evicted head frame if the queue was full, otherwise None
        """
        evicted = None
        if len(self._frames) >= self._capacity:
            evicted = self._frames.popleft()
        self._frames.append(frame)
        return evicted

    def drain_in_order(self) -> list[bytes]:
        """Return every buffered frame in arrival order and empty the queue."""
        frames = list(self._frames)
        self._frames.clear()
        return frames

    def clear(self) -> int:
        """Discard all frames.

        Returns:
            Number of frames discarded
        """
        count = len(self._frames)
        self._frames.clear()
        return count

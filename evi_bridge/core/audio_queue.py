"""Pending audio queue for frames received before the upstream is ready."""

from collections import deque
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class AudioFrame:
    """PCM16 mono audio tagged with the rate it was produced at."""

    pcm: bytes
    sample_rate: int

    def __len__(self) -> int:
        return len(self.pcm)

    @property
    def duration_ms(self) -> float:
        """Frame duration in milliseconds."""
        return len(self.pcm) * 1000 / (2 * self.sample_rate)


class PendingAudioQueue:
    """FIFO of audio frames awaiting the upstream link.

    Owned by a single session worker, so push and drain never interleave.
    Delivery order is insertion order. Frames are only dropped by an explicit
    trim_to(), oldest first.
    """

    def __init__(self) -> None:
        self._frames: deque[AudioFrame] = deque()
        self._total_bytes = 0
        self._duration_ms = 0.0

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def total_bytes(self) -> int:
        """Bytes currently buffered."""
        return self._total_bytes

    @property
    def duration_ms(self) -> float:
        """Audio duration currently buffered."""
        return self._duration_ms

    def is_empty(self) -> bool:
        """Check if queue is empty."""
        return not self._frames

    def push(self, frame: AudioFrame) -> None:
        """Append a frame at the tail.

        Args:
            frame: Audio frame to queue
        """
        self._frames.append(frame)
        self._total_bytes += len(frame)
        self._duration_ms += frame.duration_ms

    def drain(self) -> List[AudioFrame]:
        """Remove and return every queued frame in arrival order.

        Returns:
            Frames oldest first
        """
        frames = list(self._frames)
        self._frames.clear()
        self._total_bytes = 0
        self._duration_ms = 0.0
        return frames

    def clear(self) -> int:
        """Clear all frames from queue.

        Returns:
            Number of frames cleared
        """
        count = len(self._frames)
        self._frames.clear()
        self._total_bytes = 0
        self._duration_ms = 0.0
        return count

    def trim_to(self, max_ms: float) -> int:
        """Drop the oldest frames until at most max_ms of audio remains.

        The newest frame is always kept.

        Returns:
            Number of frames dropped
        """
        dropped = 0
        while len(self._frames) > 1 and self._duration_ms > max_ms:
            frame = self._frames.popleft()
            self._total_bytes -= len(frame)
            self._duration_ms -= frame.duration_ms
            dropped += 1
        return dropped

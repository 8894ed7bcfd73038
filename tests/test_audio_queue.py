"""Tests for the pending audio queue."""

from evi_bridge.core.audio_queue import AudioFrame, PendingAudioQueue


class TestAudioFrame:
    """Test audio frame helpers."""

    def test_length_and_duration(self) -> None:
        """Test 320 bytes at 8kHz is 20ms."""
        frame = AudioFrame(pcm=b"\x00" * 320, sample_rate=8000)
        assert len(frame) == 320
        assert frame.duration_ms == 20.0


class TestPendingAudioQueue:
    """Test pending queue functionality."""

    def test_basic_operations(self) -> None:
        """Test push and drain."""
        queue = PendingAudioQueue()
        assert queue.is_empty()
        assert len(queue) == 0

        queue.push(AudioFrame(b"\x01" * 10, 8000))
        assert not queue.is_empty()
        assert len(queue) == 1
        assert queue.total_bytes == 10

    def test_drain_preserves_order(self) -> None:
        """Test frames come out in arrival order."""
        queue = PendingAudioQueue()
        frames = [AudioFrame(bytes([i]) * 4, 8000) for i in range(5)]
        for frame in frames:
            queue.push(frame)

        assert queue.drain() == frames
        assert queue.is_empty()
        assert queue.total_bytes == 0

    def test_push_does_not_drop(self) -> None:
        """Test push alone keeps large backlogs in full."""
        queue = PendingAudioQueue()
        for i in range(1000):
            queue.push(AudioFrame(b"\x00\x00", 8000))
        assert len(queue) == 1000
        assert queue.total_bytes == 2000

    def test_clear(self) -> None:
        """Test clear reports the number of frames dropped."""
        queue = PendingAudioQueue()
        queue.push(AudioFrame(b"\x00", 8000))
        queue.push(AudioFrame(b"\x00", 8000))

        assert queue.clear() == 2
        assert queue.is_empty()
        assert queue.drain() == []

    def test_trim_to_drops_oldest(self) -> None:
        """Test trimming keeps the newest frames in order."""
        queue = PendingAudioQueue()
        frames = [AudioFrame(bytes([i, 0]) * 160, 8000) for i in range(10)]  # 20ms each
        for frame in frames:
            queue.push(frame)
        assert queue.duration_ms == 200.0

        assert queue.trim_to(100) == 5
        assert queue.duration_ms == 100.0
        assert queue.total_bytes == 5 * 320
        assert queue.drain() == frames[5:]
        assert queue.duration_ms == 0.0

    def test_trim_to_keeps_newest_frame(self) -> None:
        """Test a single frame longer than the limit is kept."""
        queue = PendingAudioQueue()
        queue.push(AudioFrame(b"\x00" * 3200, 8000))

        assert queue.trim_to(20) == 0
        assert len(queue) == 1

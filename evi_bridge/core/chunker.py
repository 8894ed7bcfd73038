"""Fixed-duration PCM framing for outbound audio."""

from typing import Iterator

from evi_bridge.core.constants import AudioConstants


def frame_size_bytes(
    sample_rate: int,
    channels: int = AudioConstants.CHANNELS,
    sample_width: int = AudioConstants.SAMPLE_WIDTH,
    duration_ms: int = AudioConstants.CHUNK_MS
) -> int:
    """Calculate the byte size of one frame.

    sample_rate * channels * bytes_per_sample * seconds, aligned down to a
    whole number of sample blocks (never below one block).

    Args:
        sample_rate: Sample rate in Hz
        channels: Number of channels
        sample_width: Bytes per sample
        duration_ms: Frame duration in milliseconds

    Returns:
        Frame size in bytes

    Raises:
        ValueError: If any parameter is not positive
    """
    if sample_rate <= 0 or channels <= 0 or sample_width <= 0 or duration_ms <= 0:
        raise ValueError(
            f"Invalid frame parameters: rate={sample_rate}, channels={channels}, "
            f"width={sample_width}, duration_ms={duration_ms}"
        )

    block = channels * sample_width
    size = (sample_rate * block * duration_ms) // 1000
    return max(block, size - size % block)


def chunk_pcm(data: bytes, frame_size: int) -> Iterator[memoryview]:
    """Split a PCM buffer into frames of at most frame_size bytes.

    Frames are views over the input (no copies), emitted in offset order.
    The final frame may be shorter than frame_size. Empty input yields nothing.

    Args:
        data: PCM buffer
        frame_size: Nominal frame size in bytes

    Yields:
        Consecutive frames covering the whole buffer

    Raises:
        ValueError: If frame_size is not positive
    """
    if frame_size <= 0:
        raise ValueError(f"Frame size must be positive, got {frame_size}")

    view = memoryview(data)
    for offset in range(0, len(view), frame_size):
        yield view[offset:offset + frame_size]

"""Audio resampler for sample rate conversion."""

from typing import Optional

import numpy as np
import soxr
import structlog


logger = structlog.get_logger(__name__)


class Resampler:
    """Streaming PCM16 resampler using soxr.

    Keeps filter history between calls so consecutive chunks of one stream are
    converted without boundary artifacts. Not safe to share between streams or
    tasks: each Provider Bridge owns its own instances.
    """

    def __init__(
        self,
        source_rate: int,
        target_rate: int,
        channels: int = 1,
        quality: str = "HQ"
    ) -> None:
        """Initialize resampler.

        Args:
            source_rate: Source sample rate in Hz
            target_rate: Target sample rate in Hz
            channels: Number of audio channels (default: 1 for mono)
            quality: Resampling quality ("QQ", "LQ", "MQ", "HQ", "VHQ")

        Raises:
            ValueError: If rates or channels are invalid
        """
        if source_rate <= 0:
            raise ValueError(f"Source rate must be positive, got {source_rate}")
        if target_rate <= 0:
            raise ValueError(f"Target rate must be positive, got {target_rate}")
        if channels <= 0:
            raise ValueError(f"Channels must be positive, got {channels}")

        self._source_rate = source_rate
        self._target_rate = target_rate
        self._channels = channels
        self._ratio = target_rate / source_rate
        self._block_size = 2 * channels

        # Configure soxr resampler
        quality_map = {
            "QQ": soxr.QQ,
            "LQ": soxr.LQ,
            "MQ": soxr.MQ,
            "HQ": soxr.HQ,
            "VHQ": soxr.VHQ,
        }
        self._quality = quality_map.get(quality, soxr.HQ)

        self._stream: Optional[soxr.ResampleStream] = None
        if source_rate != target_rate:
            self._stream = soxr.ResampleStream(
                source_rate,
                target_rate,
                channels,
                dtype="int16",
                quality=self._quality
            )

    @property
    def source_rate(self) -> int:
        """Source sample rate."""
        return self._source_rate

    @property
    def target_rate(self) -> int:
        """Target sample rate."""
        return self._target_rate

    @property
    def ratio(self) -> float:
        """Resampling ratio (target/source)."""
        return self._ratio

    @property
    def is_passthrough(self) -> bool:
        """True when source and target rates match."""
        return self._stream is None

    def resample(self, audio_data: bytes) -> bytes:
        """Resample the next chunk of the stream.

        A trailing partial sample is dropped.

        Args:
            audio_data: PCM16 audio data at source rate

        Returns:
            Resampled PCM16 audio data at target rate (may be empty while the
            filter is priming)
        """
        usable = len(audio_data) - len(audio_data) % self._block_size
        if usable != len(audio_data):
            logger.debug(
                "Dropping partial sample",
                size=len(audio_data),
                usable=usable
            )
        if usable == 0:
            return b""

        if self._stream is None:
            return bytes(audio_data[:usable])

        # Convert bytes to numpy array
        samples = np.frombuffer(audio_data, dtype=np.int16, count=usable // 2)

        # Reshape for channels if needed
        if self._channels > 1:
            samples = samples.reshape(-1, self._channels)

        resampled = self._stream.resample_chunk(samples)
        return np.asarray(resampled, dtype=np.int16).tobytes()

    def flush(self) -> bytes:
        """Drain samples still held in the filter at end of stream.

        Returns:
            Remaining PCM16 audio data at target rate
        """
        if self._stream is None:
            return b""

        empty = np.zeros((0, self._channels) if self._channels > 1 else 0, dtype=np.int16)
        tail = self._stream.resample_chunk(empty, last=True)
        return np.asarray(tail, dtype=np.int16).tobytes()


def create_resampler(
    source_rate: int,
    target_rate: int,
    quality: str = "HQ"
) -> Resampler:
    """Factory function to create a resampler for one rate pair.

    Args:
        source_rate: Source sample rate
        target_rate: Target sample rate
        quality: Resampling quality

    Returns:
        Resampler instance
    """
    return Resampler(source_rate, target_rate, quality=quality)

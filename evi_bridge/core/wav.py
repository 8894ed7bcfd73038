"""RIFF/WAVE container parsing.

Hume returns `audio_output` payloads as small WAV files. The parser recovers
the format fields and a zero-copy view over the PCM payload, and falls back to
treating the buffer as raw PCM whenever it does not look like a container.
"""

import struct
from dataclasses import dataclass
from typing import Optional

import structlog


logger = structlog.get_logger(__name__)

RIFF_MAGIC = b"RIFF"
WAVE_MAGIC = b"WAVE"
FMT_CHUNK_ID = b"fmt "
DATA_CHUNK_ID = b"data"

# RIFF header: "RIFF" + u32 size + "WAVE"
RIFF_HEADER_SIZE = 12
# Sub-chunk header: 4-byte id + u32 size
CHUNK_HEADER_SIZE = 8
# fmt payload up to and including bits-per-sample
FMT_MIN_SIZE = 16


@dataclass(frozen=True)
class WavInfo:
    """Result of parsing a (possibly) WAV-wrapped buffer.

    Fields:
        sample_rate: Sample rate from the fmt chunk, None for raw PCM
        channels: Channel count from the fmt chunk, None for raw PCM
        bits_per_sample: Bit depth from the fmt chunk, None for raw PCM
        pcm_data: View over the PCM payload (the whole buffer for raw PCM)
        is_container: True when a data chunk was located inside a container
    """

    sample_rate: Optional[int]
    channels: Optional[int]
    bits_per_sample: Optional[int]
    pcm_data: memoryview
    is_container: bool = False


def is_wav(buffer: bytes) -> bool:
    """Check the RIFF and WAVE magic numbers."""
    return (
        len(buffer) >= RIFF_HEADER_SIZE
        and buffer[0:4] == RIFF_MAGIC
        and buffer[8:12] == WAVE_MAGIC
    )


def parse_wav(buffer: bytes) -> WavInfo:
    """Parse a WAV container and return its format and PCM payload.

    Walks the sub-chunks after the RIFF header. Chunk sizes that run past the
    end of the buffer are clamped, so truncated or streaming WAVs still yield
    their payload. Parsing never fails: a buffer without the magic numbers, or
    without a data chunk, is returned unchanged as raw PCM.

    Args:
        buffer: Audio bytes, WAV-wrapped or raw PCM

    Returns:
        Parsed WAV information
    """
    view = memoryview(buffer)

    if not is_wav(buffer):
        return WavInfo(None, None, None, view)

    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    bits_per_sample: Optional[int] = None
    pcm_data: Optional[memoryview] = None

    total = len(buffer)
    offset = RIFF_HEADER_SIZE

    while offset + CHUNK_HEADER_SIZE <= total:
        chunk_id = bytes(view[offset:offset + 4])
        (chunk_size,) = struct.unpack_from("<I", buffer, offset + 4)
        body_start = offset + CHUNK_HEADER_SIZE
        body_end = min(body_start + chunk_size, total)

        if chunk_id == FMT_CHUNK_ID and body_end - body_start >= FMT_MIN_SIZE:
            channels, sample_rate = struct.unpack_from("<HI", buffer, body_start + 2)
            (bits_per_sample,) = struct.unpack_from("<H", buffer, body_start + 14)
        elif chunk_id == DATA_CHUNK_ID:
            pcm_data = view[body_start:body_end]

        if pcm_data is not None and sample_rate is not None:
            break

        # Chunks are padded to an even length
        offset = body_start + chunk_size + (chunk_size & 1)

    if pcm_data is None:
        logger.warning(
            "No data chunk in WAV container, passing buffer through",
            size=total
        )
        return WavInfo(sample_rate, channels, bits_per_sample, view)

    return WavInfo(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
        pcm_data=pcm_data,
        is_container=True
    )

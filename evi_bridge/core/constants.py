"""Audio processing constants."""


class AudioConstants:
    """Audio format constants for the client and Hume EVI legs."""

    # Sample rates
    CLIENT_SAMPLE_RATE = 8000     # Telephony side PCM16 @ 8kHz
    UPSTREAM_SAMPLE_RATE = 48000  # Hume EVI input PCM16 @ 48kHz

    # PCM16 mono
    CHANNELS = 1
    SAMPLE_WIDTH = 2  # bytes per sample

    # Outbound chunk timing
    CHUNK_MS = 100  # Hume recommends 100ms chunks

    # Audio kept for a client that has not sent init yet (oldest dropped past this)
    PRE_INIT_BUFFER_MS = 2000

    # Logging intervals
    LOG_INTERVAL_CHUNKS = 50   # Log every 50 chunks (5 seconds @ 100ms)
    LOG_INTERVAL_OUTPUT = 10   # Log every 10 audio_output messages

"""Application configuration loaded from environment variables.

A `.env` file in the working directory is read first (python-dotenv);
variables already set in the environment win.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from evi_bridge.core.constants import AudioConstants


load_dotenv()


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class UpstreamConfig:
    """Hume EVI connection settings."""

    api_key: Optional[str] = None
    endpoint: str = "wss://api.hume.ai/v0/evi/chat"
    config_id: Optional[str] = None
    voice_id: Optional[str] = None
    system_prompt: Optional[str] = None
    greeting: Optional[str] = None
    agent_prompt_file: Optional[str] = None
    connect_timeout: float = 10.0


@dataclass(frozen=True)
class AudioConfig:
    """Sample rates and chunking."""

    client_sr: int = AudioConstants.CLIENT_SAMPLE_RATE
    upstream_sr: int = AudioConstants.UPSTREAM_SAMPLE_RATE
    chunk_ms: int = AudioConstants.CHUNK_MS


@dataclass(frozen=True)
class ServerConfig:
    """Client-facing listener."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 6035


@dataclass(frozen=True)
class ToolsConfig:
    """Built-in tool settings."""

    message_store_path: str = "data/messages.jsonl"


@dataclass(frozen=True)
class SystemConfig:
    """Logging."""

    log_level: str = "INFO"
    log_format: str = "console"
    log_dir: str = "logs"


@dataclass(frozen=True)
class Config:
    """Top-level configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Build configuration from environment variables.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        return cls(
            upstream=UpstreamConfig(
                api_key=_env_str("HUME_API_KEY"),
                endpoint=_env_str("HUME_ENDPOINT", UpstreamConfig.endpoint),
                config_id=_env_str("HUME_CONFIG_ID"),
                voice_id=_env_str("HUME_VOICE_ID"),
                system_prompt=_env_str("HUME_SYSTEM_PROMPT"),
                greeting=_env_str("HUME_GREETING"),
                agent_prompt_file=_env_str("AGENT_PROMPT_FILE"),
            ),
            audio=AudioConfig(
                client_sr=_env_int("CLIENT_SAMPLE_RATE", AudioConstants.CLIENT_SAMPLE_RATE),
                upstream_sr=_env_int("HUME_SAMPLE_RATE", AudioConstants.UPSTREAM_SAMPLE_RATE),
                chunk_ms=_env_int("AUDIO_CHUNK_MS", AudioConstants.CHUNK_MS),
            ),
            server=ServerConfig(
                host=_env_str("HOST", ServerConfig.host),
                port=_env_int("PORT", ServerConfig.port),
            ),
            tools=ToolsConfig(
                message_store_path=_env_str("MESSAGE_STORE_PATH", ToolsConfig.message_store_path),
            ),
            system=SystemConfig(
                log_level=_env_str("LOG_LEVEL", SystemConfig.log_level),
                log_format=_env_str("LOG_FORMAT", SystemConfig.log_format).lower(),
                log_dir=_env_str("LOG_DIR", SystemConfig.log_dir),
            ),
        )

    def missing_required(self) -> List[str]:
        """Names of required variables that are not set."""
        missing = []
        if not self.upstream.api_key:
            missing.append("HUME_API_KEY")
        return missing


config = Config.from_env()

"""Tests for configuration and agent prompt loading."""

from pathlib import Path

import pytest

from evi_bridge.config import Config
from evi_bridge.core.agent_config import AgentConfig


ENV_VARS = [
    "HUME_API_KEY", "HUME_ENDPOINT", "HUME_CONFIG_ID", "HUME_VOICE_ID",
    "HUME_SYSTEM_PROMPT", "HUME_GREETING", "AGENT_PROMPT_FILE",
    "CLIENT_SAMPLE_RATE", "HUME_SAMPLE_RATE", "AUDIO_CHUNK_MS",
    "HOST", "PORT", "MESSAGE_STORE_PATH", "LOG_LEVEL", "LOG_FORMAT", "LOG_DIR",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Environment with every bridge variable unset."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfig:
    """Test environment configuration."""

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test defaults when nothing is set."""
        config = Config.from_env()

        assert config.upstream.endpoint == "wss://api.hume.ai/v0/evi/chat"
        assert config.audio.client_sr == 8000
        assert config.audio.upstream_sr == 48000
        assert config.audio.chunk_ms == 100
        assert config.server.port == 6035
        assert config.tools.message_store_path == "data/messages.jsonl"
        assert config.system.log_level == "INFO"
        assert config.missing_required() == ["HUME_API_KEY"]

    def test_overrides(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test variables override defaults."""
        clean_env.setenv("HUME_API_KEY", "key")
        clean_env.setenv("HUME_CONFIG_ID", "cfg")
        clean_env.setenv("PORT", "7000")
        clean_env.setenv("HUME_SAMPLE_RATE", "24000")
        clean_env.setenv("LOG_FORMAT", "JSON")

        config = Config.from_env()

        assert config.upstream.api_key == "key"
        assert config.upstream.config_id == "cfg"
        assert config.server.port == 7000
        assert config.audio.upstream_sr == 24000
        assert config.system.log_format == "json"
        assert config.missing_required() == []

    def test_blank_treated_as_unset(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test whitespace-only values fall back to defaults."""
        clean_env.setenv("HUME_API_KEY", "   ")
        clean_env.setenv("HOST", "")

        config = Config.from_env()

        assert config.upstream.api_key is None
        assert config.server.host == "0.0.0.0"

    def test_invalid_integer(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test non-numeric ports are rejected."""
        clean_env.setenv("PORT", "http")
        with pytest.raises(ValueError, match="PORT"):
            Config.from_env()


class TestAgentConfig:
    """Test agent prompt files."""

    def test_from_yaml(self, tmp_path: Path) -> None:
        """Test prompts are loaded and trimmed."""
        path = tmp_path / "agent.yaml"
        path.write_text(
            "instructions: |\n  You answer the phone.\n"
            "greeting: '  Hello!  '\n"
            "voice_id: 1234\n"
            "metadata:\n  owner: front-desk\n",
            encoding="utf-8"
        )

        agent = AgentConfig.from_yaml(path)

        assert agent.instructions == "You answer the phone."
        assert agent.greeting == "Hello!"
        assert agent.voice_id == "1234"
        assert agent.metadata == {"owner": "front-desk"}

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file fails fast."""
        with pytest.raises(FileNotFoundError):
            AgentConfig.from_yaml(tmp_path / "absent.yaml")

    @pytest.mark.parametrize("content", [
        "- a list\n",
        "greeting: hi\n",
        "instructions: [1, 2]\n",
        "instructions: ok\ngreeting: [1]\n",
        "instructions: 'unterminated\n",
    ])
    def test_invalid_yaml(self, tmp_path: Path, content: str) -> None:
        """Test invalid files raise ValueError."""
        path = tmp_path / "agent.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError):
            AgentConfig.from_yaml(path)

    def test_resolve_without_file(self) -> None:
        """Test plain values are used when no file is configured."""
        agent = AgentConfig.resolve(None, instructions="Be kind", greeting="Hi", voice_id="v")
        assert agent == AgentConfig(instructions="Be kind", greeting="Hi", voice_id="v")

    def test_resolve_file_wins(self, tmp_path: Path) -> None:
        """Test the file overrides prompts but keeps the env voice when it sets none."""
        path = tmp_path / "agent.yaml"
        path.write_text("instructions: From file\n", encoding="utf-8")

        agent = AgentConfig.resolve(path, instructions="From env", greeting="Env hi", voice_id="v")

        assert agent.instructions == "From file"
        assert agent.greeting is None
        assert agent.voice_id == "v"

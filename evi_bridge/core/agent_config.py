"""Agent prompt configuration loaded from YAML files.

Supports system prompts and greetings too long for environment variables.

Example:
    instructions: |
      You are the receptionist for Acme Dental...
    greeting: Hello, thanks for calling Acme Dental.
    voice_id: 5bb7de05-c8fe-426a-8fcc-ba4fc4ce9f9c
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AgentConfig:
    """Agent prompts sent to the upstream when a session dials.

    Fields:
        instructions: System prompt (required in YAML files)
        greeting: Optional priming text spoken when the session opens
        voice_id: Optional voice override
        metadata: Optional metadata for documentation purposes
    """

    instructions: Optional[str] = None
    greeting: Optional[str] = None
    voice_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "AgentConfig":
        """Load agent configuration from YAML file.

        Args:
            file_path: Path to YAML configuration file

        Returns:
            AgentConfig instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If YAML file is invalid
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Agent config file not found: {file_path}")

        logger.info("Loading agent config from YAML", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML file: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("YAML file must contain a dictionary")

        instructions = data.get("instructions")
        if not instructions:
            raise ValueError("'instructions' field is required in YAML config")
        if not isinstance(instructions, str):
            raise ValueError("'instructions' field must be a string")

        greeting = data.get("greeting")
        if greeting is not None and not isinstance(greeting, str):
            raise ValueError("'greeting' field must be a string")

        voice_id = data.get("voice_id")
        if voice_id is not None:
            voice_id = str(voice_id)

        config = cls(
            instructions=instructions.strip(),
            greeting=greeting.strip() if greeting else None,
            voice_id=voice_id,
            metadata=data.get("metadata")
        )

        logger.info("Agent config loaded successfully", **config.to_dict())
        return config

    @classmethod
    def resolve(
        cls,
        file_path: Optional[str | Path],
        instructions: Optional[str] = None,
        greeting: Optional[str] = None,
        voice_id: Optional[str] = None
    ) -> "AgentConfig":
        """Pick the prompt source: the YAML file when given, else the plain values.

        FAIL-FAST STRATEGY: If file_path is specified but loading fails, raises exception.
        No fallback to the plain values when a file is specified.

        Args:
            file_path: Optional path to YAML configuration file
            instructions: System prompt from the environment
            greeting: Greeting from the environment
            voice_id: Voice id from the environment (used when the file sets none)

        Returns:
            AgentConfig instance

        Raises:
            FileNotFoundError: If specified file doesn't exist
            ValueError: If YAML file is invalid
        """
        if not file_path:
            return cls(instructions=instructions, greeting=greeting, voice_id=voice_id)

        loaded = cls.from_yaml(file_path)
        if loaded.voice_id is None and voice_id:
            return cls(
                instructions=loaded.instructions,
                greeting=loaded.greeting,
                voice_id=voice_id,
                metadata=loaded.metadata
            )
        return loaded

    def to_dict(self) -> Dict[str, Any]:
        """Summarize for logging (prompts are truncated).

        Returns:
            Dictionary representation
        """
        instructions = self.instructions or ""
        return {
            "instructions": instructions[:100] + "..." if len(instructions) > 100 else instructions,
            "greeting": self.greeting[:100] + "..." if self.greeting and len(self.greeting) > 100 else self.greeting,
            "voice_id": self.voice_id,
            "metadata": self.metadata,
            "instructions_length": len(instructions),
            "greeting_length": len(self.greeting) if self.greeting else 0
        }

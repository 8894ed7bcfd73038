"""Persistence for messages recorded by the take_message tool."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

import structlog


logger = structlog.get_logger(__name__)


@runtime_checkable
class MessageStore(Protocol):
    """Storage backend for recorded messages."""

    async def save(self, record: Dict[str, Any]) -> None:
        """Persist one message record.

        Raises:
            OSError: If the record cannot be written
        """
        ...


class JsonlMessageStore:
    """Append-only JSON-lines file store.

    Writes run in a worker thread so the event loop never blocks on disk.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize store.

        Args:
            path: Target file; parent directories are created on first write
        """
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Backing file path."""
        return self._path

    async def save(self, record: Dict[str, Any]) -> None:
        """Append a record as one JSON line."""
        line = json.dumps(record, ensure_ascii=False, default=str)
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.debug("Message stored", path=str(self._path), message_id=record.get("id"))

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


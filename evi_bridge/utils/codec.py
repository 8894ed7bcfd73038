"""JSON envelope codec for the client-facing protocol.

Client → server:
- {"type": "init", "uuid": "<session id>"}
- {"type": "audio", "audio": "<base64 PCM16 mono>"}

Server → client:
- {"type": "audio", "audio": "<base64 PCM16 mono>"}
- {"type": "transcript", "role": "user" | "agent", "text": "<string>"}
- {"type": "interruption"}
- {"type": "error", "message": "<string>"}
"""

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union


class MessageDecodeError(ValueError):
    """Raised when an inbound message cannot be decoded."""


class ClientMessageType(str, Enum):
    """Message types sent by the client."""

    INIT = "init"
    AUDIO = "audio"


@dataclass
class ClientMessage:
    """Decoded client message.

    Fields:
        type: Message type
        uuid: Session id (init only)
        audio: Decoded PCM16 payload (audio only, None when absent or empty)
    """

    type: ClientMessageType
    uuid: Optional[str] = None
    audio: Optional[bytes] = None


def b64encode_audio(pcm: Union[bytes, memoryview]) -> str:
    """Base64-encode PCM bytes to an ASCII string."""
    return base64.b64encode(pcm).decode("ascii")


def b64decode_audio(data: str) -> bytes:
    """Decode a base64 audio payload.

    Raises:
        MessageDecodeError: If the payload is not valid base64
    """
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MessageDecodeError(f"Invalid base64 audio payload: {e}") from e


def parse_json_object(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse a JSON text frame that must hold an object with a string type.

    Args:
        raw: Raw frame payload

    Returns:
        Parsed message

    Raises:
        MessageDecodeError: If the frame is not a typed JSON object
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError(f"Malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageDecodeError(f"Expected JSON object, got {type(data).__name__}")

    if not isinstance(data.get("type"), str):
        raise MessageDecodeError("Message has no type")

    return data


def decode_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """Decode a client frame.

    Args:
        raw: Raw frame payload

    Returns:
        Decoded client message

    Raises:
        MessageDecodeError: If the frame is malformed or of unknown type
    """
    data = parse_json_object(raw)

    try:
        msg_type = ClientMessageType(data["type"])
    except ValueError:
        raise MessageDecodeError(f"Unknown message type: {data['type']}")

    if msg_type is ClientMessageType.INIT:
        uuid = data.get("uuid")
        if not isinstance(uuid, str) or not uuid:
            raise MessageDecodeError("init message requires a uuid")
        return ClientMessage(type=msg_type, uuid=uuid)

    payload = data.get("audio")
    if payload is None or payload == "":
        return ClientMessage(type=msg_type)
    if not isinstance(payload, str):
        raise MessageDecodeError("audio payload must be a base64 string")

    audio = b64decode_audio(payload)
    return ClientMessage(type=msg_type, audio=audio or None)


def encode_audio(pcm: Union[bytes, memoryview]) -> str:
    """Encode an audio message for the client."""
    return json.dumps({"type": "audio", "audio": b64encode_audio(pcm)})


def encode_transcript(role: Literal["user", "agent"], text: str) -> str:
    """Encode a transcript message for the client."""
    return json.dumps({"type": "transcript", "role": role, "text": text})


def encode_interruption() -> str:
    """Encode an interruption message for the client."""
    return json.dumps({"type": "interruption"})


def encode_error(message: str) -> str:
    """Encode an error message for the client."""
    return json.dumps({"type": "error", "message": message})

"""
take_message tool - records a message, voicemail or note for the user.

Detects callback requests, derives a subject and summary when the caller
does not provide them, and persists the record through a MessageStore.
"""

import re
import time
import uuid
from typing import Any, Dict, Optional

import structlog

from evi_bridge.tools.message_store import MessageStore
from evi_bridge.tools.registry import ToolDefinition


logger = structlog.get_logger(__name__)

TOOL_NAME = "take_message"

DESCRIPTION = (
    "Records a message, voicemail, or note for the user. Use this when someone "
    "wants to leave a message, when the user wants to save a note for themselves, "
    "or when recording important information from a conversation. Automatically "
    "detects if callback is needed and extracts contact information."
)

CATEGORIES = ["voicemail", "note", "reminder", "todo", "important", "callback", "inquiry"]
PRIORITIES = ["low", "medium", "high", "urgent"]

CATEGORY_LABELS = {
    "callback": "Callback Request",
    "todo": "Action Item",
    "important": "Important Message",
    "reminder": "Reminder",
    "note": "Note",
    "inquiry": "Inquiry",
}


def _optional_string(description: str) -> Dict[str, Any]:
    return {"type": ["string", "null"], "description": description}


INPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "profile_id": {
            "type": "string",
            "description": "Unique identifier for the profile receiving the message",
        },
        "organization_id": _optional_string(
            "Organization ID if this is an organizational message (optional)"
        ),
        "chat_id": _optional_string("Chat ID if this message originated from a chat (optional)"),
        "content": {
            "type": "string",
            "description": "The full message content or note text",
        },
        "subject": _optional_string(
            "Brief subject line or title for the message (optional, auto-generated if not provided)"
        ),
        "from_name": _optional_string("Name of the person leaving the message (if applicable)"),
        "from_phone": _optional_string("Phone number of the person leaving the message (if provided)"),
        "from_email": _optional_string("Email of the person leaving the message (if provided)"),
        "category": {
            "type": "string",
            "enum": CATEGORIES,
            "description": "Type of message",
        },
        "priority": {
            "type": "string",
            "enum": PRIORITIES,
            "description": "Priority level",
        },
        "requires_callback": {
            "type": "boolean",
            "description": "Whether the caller/sender is requesting a callback or response",
        },
        "callback_number": _optional_string(
            "Phone number to call back if different from from_phone (optional)"
        ),
        "due_date": _optional_string(
            "Due date for action items in ISO format YYYY-MM-DD (optional)"
        ),
        "tags": _optional_string("Comma-separated tags for categorization (optional)"),
        "sentiment": {
            "type": ["string", "null"],
            "enum": ["positive", "neutral", "negative", "urgent", None],
            "description": "Detected emotional tone of the message (optional)",
        },
    },
    "required": ["profile_id", "content", "category", "priority", "requires_callback"],
}

_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]")


def generate_summary(content: str, max_length: int = 100) -> Optional[str]:
    """Summarize long content: first sentence if short enough, else a truncation.

    Returns:
        Summary, or None when content already fits in max_length
    """
    if len(content) <= max_length:
        return None

    match = _FIRST_SENTENCE.match(content)
    if match and len(match.group(0)) <= max_length:
        return match.group(0)

    return content[:max_length].strip() + "..."


def generate_subject(content: str, category: str, from_name: Optional[str]) -> str:
    """Derive a subject line from the category, sender or content."""
    if category == "voicemail" and from_name:
        return f"Voicemail from {from_name}"
    return CATEGORY_LABELS.get(category) or content[:50].strip()


def build_take_message_tool(store: MessageStore) -> ToolDefinition:
    """Create the take_message tool bound to a message store.

    Args:
        store: Where recorded messages are persisted

    Returns:
        Tool definition
    """

    async def take_message(session_id: str, args: Dict[str, Any]) -> Dict[str, Any]:
        content = args["content"]
        category = args["category"]
        priority = args["priority"]
        requires_callback = args["requires_callback"]
        from_name = args.get("from_name")
        from_phone = args.get("from_phone")
        tags = args.get("tags")

        message_id = str(uuid.uuid4())
        subject = args.get("subject") or generate_subject(content, category, from_name)

        record = {
            "id": message_id,
            "session_id": session_id,
            "profile_id": args["profile_id"],
            "organization_id": args.get("organization_id"),
            "chat_id": args.get("chat_id"),
            "content": content,
            "subject": subject,
            "from_name": from_name,
            "from_phone": from_phone,
            "from_email": args.get("from_email"),
            "category": category,
            "priority": priority,
            "status": "unread",
            "requires_callback": requires_callback,
            "callback_number": args.get("callback_number") or from_phone,
            "due_date": args.get("due_date"),
            "sentiment": args.get("sentiment"),
            "tags": [t.strip() for t in tags.split(",") if t.strip()] if tags else [],
            "ai_summary": generate_summary(content),
            "created_at": int(time.time() * 1000),
        }

        await store.save(record)

        logger.info(
            "Message recorded",
            session_id=session_id,
            message_id=message_id,
            category=category,
            priority=priority,
            requires_callback=requires_callback
        )

        message = "Message saved successfully"
        if from_name:
            message += f" from {from_name}"
        if requires_callback:
            message += " - Callback requested"

        return {
            "success": True,
            "message_id": message_id,
            "message": message,
            "details": {
                "subject": subject,
                "category": category,
                "priority": priority,
                "requires_callback": requires_callback,
            },
        }

    return ToolDefinition(
        name=TOOL_NAME,
        description=DESCRIPTION,
        input_schema=INPUT_SCHEMA,
        handler=take_message,
    )

# memu_chat/storage/models.py

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Optional

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
MESSAGE_ROLES = {ROLE_USER, ROLE_ASSISTANT}

DEFAULT_TEMPERATURE = "0.7"
DEFAULT_MAX_TOKENS = "1024"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_USER_IDENTIFIER = "user001"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Unset:
    """Marker for a field left out of a partial update."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class User:
    id: str
    username: str
    password: str


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    last_message: Optional[str] = None
    last_activity: Optional[datetime] = None
    message_count: Optional[str] = None   # decimal string, e.g. "4"


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str            # 'user' or 'assistant'
    content: str
    memory_context: Any = None
    timestamp: Optional[datetime] = None


@dataclass
class UserSettings:
    id: str
    user_id: str
    memu_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    temperature: Optional[str] = DEFAULT_TEMPERATURE
    max_tokens: Optional[str] = DEFAULT_MAX_TOKENS
    model: Optional[str] = DEFAULT_MODEL
    auto_memory_storage: Optional[str] = "true"
    context_aware_responses: Optional[str] = "true"
    user_identifier: Optional[str] = DEFAULT_USER_IDENTIFIER


# ---------------------------------------------------------------------------
# Partial updates: UNSET leaves a field alone, None clears it.
# ---------------------------------------------------------------------------

@dataclass
class ConversationUpdate:
    title: Any = UNSET
    last_message: Any = UNSET
    message_count: Any = UNSET


@dataclass
class SettingsUpdate:
    memu_api_key: Any = UNSET
    openai_api_key: Any = UNSET
    temperature: Any = UNSET
    max_tokens: Any = UNSET
    model: Any = UNSET
    auto_memory_storage: Any = UNSET
    context_aware_responses: Any = UNSET
    user_identifier: Any = UNSET


def apply_update(record: Any, update: Any) -> None:
    """
    Copy every field of `update` that is not UNSET onto `record`.
    """
    for f in fields(update):
        value = getattr(update, f.name)
        if value is UNSET:
            continue
        setattr(record, f.name, value)

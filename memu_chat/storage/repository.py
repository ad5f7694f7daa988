# memu_chat/storage/repository.py

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from memu_chat.storage.models import (
    MESSAGE_ROLES,
    Conversation,
    ConversationUpdate,
    Message,
    SettingsUpdate,
    User,
    UserSettings,
    apply_update,
    utcnow,
)
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)

# Records without a timestamp sort before everything else
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RepositoryError(ValueError):
    """Base class for write conflicts in the repository."""


class DuplicateUsernameError(RepositoryError):
    pass


class DuplicateSettingsError(RepositoryError):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryRepository:
    """
    Process-lifetime store for users, conversations, messages and settings.

    Every collection is keyed by primary id. Lookups by foreign key
    (user_id, conversation_id) are full scans. Each public method holds the
    lock for its whole body, so single operations are atomic; sequences of
    operations are not.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, Message] = {}
        self._settings: Dict[str, UserSettings] = {}

    # ---------- USERS ----------

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user
            return None

    def create_user(self, username: str, password: str) -> User:
        with self._lock:
            if self.get_user_by_username(username) is not None:
                raise DuplicateUsernameError(f"username already exists: {username!r}")
            user = User(id=_new_id(), username=username, password=password)
            self._users[user.id] = user
            return user

    # ---------- CONVERSATIONS ----------

    def get_conversations(self, user_id: str) -> List[Conversation]:
        """
        All conversations of a user, most recently active first.
        """
        with self._lock:
            convs = [c for c in self._conversations.values() if c.user_id == user_id]
        return sorted(convs, key=lambda c: c.last_activity or _EPOCH, reverse=True)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            return self._conversations.get(conversation_id)

    def create_conversation(
        self,
        user_id: str,
        title: str,
        last_message: Optional[str] = None,
        message_count: Optional[str] = None,
    ) -> Conversation:
        conv = Conversation(
            id=_new_id(),
            user_id=user_id,
            title=title,
            last_message=last_message or None,
            last_activity=utcnow(),
            message_count=message_count or None,
        )
        with self._lock:
            self._conversations[conv.id] = conv
        logger.info("Created conversation id=%s user_id=%s", conv.id, user_id)
        return conv

    def update_conversation(
        self, conversation_id: str, update: ConversationUpdate
    ) -> Optional[Conversation]:
        """
        Merge `update` into the conversation and refresh last_activity.
        Returns None if the id is unknown.
        """
        with self._lock:
            existing = self._conversations.get(conversation_id)
            if existing is None:
                return None
            updated = replace(existing)
            apply_update(updated, update)
            updated.last_activity = utcnow()
            self._conversations[conversation_id] = updated
            return updated

    def delete_conversation(self, conversation_id: str) -> bool:
        """
        Remove a conversation together with all of its messages.
        Returns whether the conversation existed.
        """
        with self._lock:
            existed = self._conversations.pop(conversation_id, None) is not None
            orphan_ids = [
                mid for mid, m in self._messages.items() if m.conversation_id == conversation_id
            ]
            for mid in orphan_ids:
                del self._messages[mid]
        logger.info(
            "Deleted conversation id=%s existed=%s messages_removed=%d",
            conversation_id,
            existed,
            len(orphan_ids),
        )
        return existed

    # ---------- MESSAGES ----------

    def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """
        Messages of a conversation, oldest first. With `limit`, only the
        most recent `limit` messages are returned (still oldest first).
        """
        with self._lock:
            msgs = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        msgs.sort(key=lambda m: m.timestamp or _EPOCH)
        if limit is not None:
            msgs = msgs[-limit:] if limit > 0 else []
        return msgs

    def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        memory_context: Any = None,
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"role must be one of {sorted(MESSAGE_ROLES)}, got {role!r}")
        msg = Message(
            id=_new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            memory_context=memory_context,
            timestamp=utcnow(),
        )
        with self._lock:
            self._messages[msg.id] = msg
        return msg

    # ---------- SETTINGS ----------

    def get_settings(self, user_id: str) -> Optional[UserSettings]:
        with self._lock:
            for s in self._settings.values():
                if s.user_id == user_id:
                    return s
            return None

    def create_settings(
        self, user_id: str, initial: Optional[SettingsUpdate] = None
    ) -> UserSettings:
        """
        Create the settings row of a user. Omitted tunables get their
        documented defaults, omitted API keys stay None.
        Raises DuplicateSettingsError if the user already has a row.
        """
        with self._lock:
            if self.get_settings(user_id) is not None:
                raise DuplicateSettingsError(f"settings already exist for user {user_id!r}")
            settings = UserSettings(id=_new_id(), user_id=user_id)
            if initial is not None:
                apply_update(settings, initial)
            self._settings[settings.id] = settings
        logger.info("Created settings id=%s user_id=%s", settings.id, user_id)
        return settings

    def get_or_create_settings(self, user_id: str) -> UserSettings:
        with self._lock:
            existing = self.get_settings(user_id)
            if existing is not None:
                return existing
            return self.create_settings(user_id)

    def update_settings(self, user_id: str, update: SettingsUpdate) -> Optional[UserSettings]:
        with self._lock:
            existing = self.get_settings(user_id)
            if existing is None:
                return None
            updated = replace(existing)
            apply_update(updated, update)
            self._settings[existing.id] = updated
            return updated

    def upsert_settings(self, user_id: str, update: SettingsUpdate) -> UserSettings:
        """
        Merge `update` into the user's row, creating the row first if needed.
        Lookup and write happen under one lock hold.
        """
        with self._lock:
            existing = self.get_settings(user_id)
            if existing is None:
                return self.create_settings(user_id, update)
            updated = replace(existing)
            apply_update(updated, update)
            self._settings[existing.id] = updated
            return updated

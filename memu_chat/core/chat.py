# memu_chat/core/chat.py

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from memu_chat.clients.memu_client import MemuClient
from memu_chat.clients.openai_client import OpenAIChatClient
from memu_chat.config.settings import SYSTEM_PROMPT_PATH, Settings, load_settings
from memu_chat.storage.models import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationUpdate,
    Message,
    UserSettings,
)
from memu_chat.storage.repository import InMemoryRepository
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)

MEMORY_BLOCK_PLACEHOLDER = "{memory_block}"

# Called as schedule(fn, *args); FastAPI's BackgroundTasks.add_task fits.
Scheduler = Callable[..., Any]


class ChatError(Exception):
    """Base class for exchange failures the caller can act on."""


class InvalidMessageError(ChatError):
    pass


class MissingApiKeyError(ChatError):
    pass


class ConversationNotFoundError(ChatError):
    pass


@dataclass
class ExchangeResult:
    user_message: Message
    ai_message: Message


def load_system_prompt_template() -> str:
    """
    Load the persona prompt from the configured path.
    Executed once per orchestrator and cached on the instance.
    """
    try:
        with open(SYSTEM_PROMPT_PATH, "r", encoding="utf-8") as f:
            prompt = f.read().strip()
    except Exception as e:
        logger.error(f"Failed to load system prompt from {SYSTEM_PROMPT_PATH}: {e}")
        raise

    if not prompt:
        logger.error("System prompt is empty after loading.")
        raise RuntimeError("System prompt is empty.")

    return prompt


def _flag_enabled(value: Optional[str]) -> bool:
    return value == "true"


def _parse_float(raw: Optional[str], default: str) -> float:
    try:
        value = float(raw or default)
    except ValueError:
        value = None
    # nan/inf parse fine but cannot be sent as JSON
    if value is None or not math.isfinite(value):
        logger.warning("Unparseable temperature %r; using %s.", raw, default)
        return float(default)
    return value


def _parse_int(raw: Optional[str], default: str) -> int:
    try:
        value = int(raw or default)
    except ValueError:
        value = None
    if value is None or value <= 0:
        logger.warning("Unusable max_tokens %r; using %s.", raw, default)
        return int(default)
    return value


def _next_message_count(previous: Optional[str]) -> str:
    try:
        count = int(previous or "0")
    except ValueError:
        logger.warning("Unparseable message_count %r; counting from 0.", previous)
        count = 0
    return str(count + 2)


class ChatOrchestrator:
    """
    Turns one inbound user message into a persisted assistant reply.

    Collaborators are injected so the same pipeline runs against the real
    services in the app and against fakes in tests.
    """

    def __init__(
        self,
        repository: InMemoryRepository,
        memu_client: MemuClient,
        completion_client: OpenAIChatClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.memu_client = memu_client
        self.completion_client = completion_client
        self.settings = settings or load_settings()
        self._prompt_template = load_system_prompt_template()

    # ---------- PROMPT ----------

    def build_system_prompt(self, memory_context: Any) -> str:
        """
        Persona prompt, with the memory context embedded as JSON when present.
        """
        if memory_context is not None:
            block = f"Memory Context: {json.dumps(memory_context, ensure_ascii=False)}"
        else:
            block = ""
        return self._prompt_template.replace(MEMORY_BLOCK_PLACEHOLDER, block)

    # ---------- MEMORY ----------

    def _retrieve_memory_context(
        self, user_settings: UserSettings, content: str, user_id: str
    ) -> Any:
        if not (user_settings.memu_api_key and _flag_enabled(user_settings.context_aware_responses)):
            return None

        memu_user = user_settings.user_identifier or user_id
        result = self.memu_client.retrieve_memory(user_settings.memu_api_key, content, memu_user)
        if not result.success:
            logger.warning("Memory retrieval failed for memu_user=%s: %s; continuing without context.",
                           memu_user, result.error)
            return None
        return result.data

    def _memorize(self, api_key: str, conversation_text: str, memu_user: str) -> None:
        result = self.memu_client.memorize_conversation(
            api_key,
            conversation_text,
            memu_user,
            self.settings.memu_user_name,
            self.settings.memu_agent_id,
            self.settings.memu_agent_name,
        )
        if result.success:
            logger.info("Stored exchange in MemU for memu_user=%s.", memu_user)
        else:
            logger.warning("Failed to store exchange in MemU for memu_user=%s: %s",
                           memu_user, result.error)

    def _store_exchange(
        self,
        user_settings: UserSettings,
        user_id: str,
        content: str,
        reply: str,
        schedule: Optional[Scheduler],
    ) -> None:
        if not (user_settings.memu_api_key and _flag_enabled(user_settings.auto_memory_storage)):
            return

        conversation_text = f"User: {content}\nAssistant: {reply}"
        memu_user = user_settings.user_identifier or user_id
        if schedule is not None:
            schedule(self._memorize, user_settings.memu_api_key, conversation_text, memu_user)
            return

        try:
            self._memorize(user_settings.memu_api_key, conversation_text, memu_user)
        except Exception as e:
            logger.error("Unexpected error while storing exchange in MemU: %s", e)

    # ---------- MAIN ENTRY POINT ----------

    def send_message(
        self,
        conversation_id: str,
        content: Optional[str],
        user_id: Optional[str],
        schedule: Optional[Scheduler] = None,
    ) -> ExchangeResult:
        """
        Run one exchange: persist the user message, fetch optional memory
        context, ask the model, persist its reply, optionally hand the
        exchange to MemU, and bump the conversation metadata.

        Parameters
        ----------
        conversation_id : str
            Target conversation; must exist.
        content : str
            The user's message text.
        user_id : str
            Owner of the settings used for this exchange.
        schedule : callable, optional
            Runs the MemU storage call detached (e.g. BackgroundTasks.add_task).
            Without it the call runs inline and its failure is only logged.

        Raises InvalidMessageError, MissingApiKeyError or
        ConversationNotFoundError before anything is persisted.
        CompletionError from the model call propagates; the user message
        stays persisted in that case.
        """
        if not content or not user_id:
            raise InvalidMessageError("Content and userId are required")

        user_settings = self.repository.get_settings(user_id)
        if user_settings is None or not user_settings.openai_api_key:
            raise MissingApiKeyError("OpenAI API key not configured")

        if self.repository.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

        user_message = self.repository.create_message(
            conversation_id, role=ROLE_USER, content=content, memory_context=None
        )

        memory_context = self._retrieve_memory_context(user_settings, content, user_id)

        history: List[Dict[str, str]] = [
            {"role": m.role, "content": m.content}
            for m in self.repository.get_messages(conversation_id, limit=self.settings.history_limit)
        ]

        reply = self.completion_client.generate_reply(
            api_key=user_settings.openai_api_key,
            model=user_settings.model or DEFAULT_MODEL,
            system_prompt=self.build_system_prompt(memory_context),
            history=history,
            temperature=_parse_float(user_settings.temperature, DEFAULT_TEMPERATURE),
            max_tokens=_parse_int(user_settings.max_tokens, DEFAULT_MAX_TOKENS),
        )

        ai_message = self.repository.create_message(
            conversation_id, role=ROLE_ASSISTANT, content=reply, memory_context=memory_context
        )

        self._store_exchange(user_settings, user_id, content, reply, schedule)

        # Best-effort counter: read and update are separate operations
        conversation = self.repository.get_conversation(conversation_id)
        previous_count = conversation.message_count if conversation is not None else None
        self.repository.update_conversation(
            conversation_id,
            ConversationUpdate(
                last_message=content,
                message_count=_next_message_count(previous_count),
            ),
        )

        logger.info(
            "Exchange complete conversation_id=%s history=%d memory_context=%s reply_len=%d",
            conversation_id,
            len(history),
            memory_context is not None,
            len(reply),
        )
        return ExchangeResult(user_message=user_message, ai_message=ai_message)

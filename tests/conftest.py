"""
Shared pytest fixtures for memu_chat tests.

Provides:
- A fresh InMemoryRepository per test
- Fake MemU and completion clients that record their calls
- An orchestrator and a FastAPI TestClient wired to those fakes
"""

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest

# Keep test logs out of the source tree; must run before memu_chat is imported
os.environ.setdefault("MEMU_CHAT_LOG_DIR", tempfile.mkdtemp(prefix="memu_chat_logs_"))

from fastapi.testclient import TestClient  # noqa: E402

from memu_chat.api.server import create_app  # noqa: E402
from memu_chat.clients.memu_client import MemuResult  # noqa: E402
from memu_chat.clients.openai_client import CompletionError  # noqa: E402
from memu_chat.config.settings import Settings  # noqa: E402
from memu_chat.core.chat import ChatOrchestrator  # noqa: E402
from memu_chat.storage.models import SettingsUpdate  # noqa: E402
from memu_chat.storage.repository import InMemoryRepository  # noqa: E402


class FakeMemuClient:
    def __init__(self) -> None:
        self.retrieve_result = MemuResult(success=True, data={"memories": ["likes tea"]})
        self.memorize_result = MemuResult(success=True, data={"ok": True})
        self.retrieve_calls: List[Dict[str, Any]] = []
        self.memorize_calls: List[Dict[str, Any]] = []

    def retrieve_memory(self, api_key: str, query: str, user_id: str) -> MemuResult:
        self.retrieve_calls.append({"api_key": api_key, "query": query, "user_id": user_id})
        return self.retrieve_result

    def memorize_conversation(self, api_key, conversation_text, user_id, user_name, agent_id, agent_name):
        self.memorize_calls.append(
            {
                "api_key": api_key,
                "conversation_text": conversation_text,
                "user_id": user_id,
                "user_name": user_name,
                "agent_id": agent_id,
                "agent_name": agent_name,
            }
        )
        return self.memorize_result


class FakeCompletionClient:
    def __init__(self, reply: str = "Hi there! How can I help?") -> None:
        self.reply = reply
        self.error: Optional[Exception] = None
        self.connection_ok = True
        self.calls: List[Dict[str, Any]] = []
        self.tested_keys: List[str] = []

    def generate_reply(self, api_key, model, system_prompt, history, temperature, max_tokens) -> str:
        self.calls.append(
            {
                "api_key": api_key,
                "model": model,
                "system_prompt": system_prompt,
                "history": list(history),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply

    def test_connection(self, api_key: str) -> bool:
        self.tested_keys.append(api_key)
        return self.connection_ok


@pytest.fixture
def settings() -> Settings:
    return Settings(memu_api_base="https://memu.test", history_limit=10)


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def memu() -> FakeMemuClient:
    return FakeMemuClient()


@pytest.fixture
def completion() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def orchestrator(repo, memu, completion, settings) -> ChatOrchestrator:
    return ChatOrchestrator(
        repository=repo,
        memu_client=memu,
        completion_client=completion,
        settings=settings,
    )


@pytest.fixture
def client(repo, memu, completion, settings) -> TestClient:
    app = create_app(
        repository=repo,
        memu_client=memu,
        completion_client=completion,
        settings=settings,
    )
    return TestClient(app)


@pytest.fixture
def configured_user(repo) -> str:
    """User u1 with an OpenAI key and no MemU key."""
    repo.create_settings("u1", SettingsUpdate(openai_api_key="sk-test"))
    return "u1"


@pytest.fixture
def memu_user(repo) -> str:
    """User u2 with both keys and both memory toggles on."""
    repo.create_settings(
        "u2",
        SettingsUpdate(openai_api_key="sk-test", memu_api_key="mu-test", user_identifier="alice"),
    )
    return "u2"


@pytest.fixture
def completion_failure() -> CompletionError:
    return CompletionError("Completion request failed (openai_network).")

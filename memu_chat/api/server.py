# memu_chat/api/server.py
"""
FastAPI server for the MemU chat relay:

- /api/conversations/*          : conversation listing, creation, deletion
- /api/conversations/{id}/messages : history and the message exchange
- /api/settings/{user_id}       : per-user settings (lazily created)
- /api/test-connections         : key checks for OpenAI and MemU
- /health                       : basic health check

Routes are thin: the exchange itself lives in ChatOrchestrator, state lives
in the InMemoryRepository owned by the app (app.state).
"""

import time
import uuid
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from memu_chat.clients.memu_client import MemuClient
from memu_chat.clients.openai_client import CompletionError, OpenAIChatClient
from memu_chat.config.settings import Settings, load_settings
from memu_chat.core.chat import (
    ChatOrchestrator,
    ConversationNotFoundError,
    InvalidMessageError,
    MissingApiKeyError,
)
from memu_chat.storage.models import Conversation, Message, SettingsUpdate, UserSettings
from memu_chat.storage.repository import InMemoryRepository
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Models (Conversations & Messages)
# ---------------------------------------------------------------------------

class ConversationCreateRequest(BaseModel):
    userId: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    lastMessage: Optional[str] = None
    messageCount: Optional[str] = None


class ConversationResponse(BaseModel):
    id: str
    userId: str
    title: str
    lastMessage: Optional[str]
    lastActivity: Optional[datetime]
    messageCount: Optional[str]


class MessageCreateRequest(BaseModel):
    # Presence is checked by the orchestrator so a missing field is a 400
    content: Optional[str] = None
    userId: Optional[str] = None


class MessageResponse(BaseModel):
    id: str
    conversationId: str
    role: str
    content: str
    memoryContext: Optional[Any] = None
    timestamp: Optional[datetime]


class ExchangeResponse(BaseModel):
    userMessage: MessageResponse
    aiMessage: MessageResponse


# ---------------------------------------------------------------------------
# Models (Settings & connection tests)
# ---------------------------------------------------------------------------

class SettingsUpdateRequest(BaseModel):
    memuApiKey: Optional[str] = None
    openaiApiKey: Optional[str] = None
    temperature: Optional[str] = None
    maxTokens: Optional[str] = None
    model: Optional[str] = None
    autoMemoryStorage: Optional[str] = None
    contextAwareResponses: Optional[str] = None
    userIdentifier: Optional[str] = None

    @field_validator("temperature", "maxTokens", "autoMemoryStorage", "contextAwareResponses", mode="before")
    @classmethod
    def _stringify_scalars(cls, v: Any) -> Any:
        # Stored as strings; clients may send 0.5, 512 or true
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        return v


class SettingsResponse(BaseModel):
    id: str
    userId: str
    memuApiKey: Optional[str]
    openaiApiKey: Optional[str]
    temperature: Optional[str]
    maxTokens: Optional[str]
    model: Optional[str]
    autoMemoryStorage: Optional[str]
    contextAwareResponses: Optional[str]
    userIdentifier: Optional[str]


class ConnectionTestRequest(BaseModel):
    openaiApiKey: Optional[str] = None
    memuApiKey: Optional[str] = None
    userId: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    openai: bool
    memu: bool


# camelCase request field -> snake_case SettingsUpdate field
_SETTINGS_FIELDS = {
    "memuApiKey": "memu_api_key",
    "openaiApiKey": "openai_api_key",
    "temperature": "temperature",
    "maxTokens": "max_tokens",
    "model": "model",
    "autoMemoryStorage": "auto_memory_storage",
    "contextAwareResponses": "context_aware_responses",
    "userIdentifier": "user_identifier",
}


# ---------------------------------------------------------------------------
# Helpers: entity -> response
# ---------------------------------------------------------------------------

def _conversation_response(conv: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conv.id,
        userId=conv.user_id,
        title=conv.title,
        lastMessage=conv.last_message,
        lastActivity=conv.last_activity,
        messageCount=conv.message_count,
    )


def _message_response(msg: Message) -> MessageResponse:
    return MessageResponse(
        id=msg.id,
        conversationId=msg.conversation_id,
        role=msg.role,
        content=msg.content,
        memoryContext=msg.memory_context,
        timestamp=msg.timestamp,
    )


def _settings_response(s: UserSettings) -> SettingsResponse:
    return SettingsResponse(
        id=s.id,
        userId=s.user_id,
        memuApiKey=s.memu_api_key,
        openaiApiKey=s.openai_api_key,
        temperature=s.temperature,
        maxTokens=s.max_tokens,
        model=s.model,
        autoMemoryStorage=s.auto_memory_storage,
        contextAwareResponses=s.context_aware_responses,
        userIdentifier=s.user_identifier,
    )


def _settings_update(req: SettingsUpdateRequest) -> SettingsUpdate:
    """
    Only fields the client actually sent end up in the update; an explicit
    null clears the stored value.
    """
    sent = req.model_dump(exclude_unset=True)
    return SettingsUpdate(**{_SETTINGS_FIELDS[k]: v for k, v in sent.items()})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_repository(request: Request) -> InMemoryRepository:
    return request.app.state.repository


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Conversation endpoints
# ---------------------------------------------------------------------------

@router.get("/conversations/{user_id}", response_model=List[ConversationResponse])
def list_conversations(
    user_id: str,
    repo: InMemoryRepository = Depends(get_repository),
) -> List[ConversationResponse]:
    """
    All conversations of a user, most recently active first.
    """
    return [_conversation_response(c) for c in repo.get_conversations(user_id)]


@router.post("/conversations", response_model=ConversationResponse)
def create_conversation(
    req: ConversationCreateRequest,
    repo: InMemoryRepository = Depends(get_repository),
) -> ConversationResponse:
    conv = repo.create_conversation(
        user_id=req.userId,
        title=req.title,
        last_message=req.lastMessage,
        message_count=req.messageCount,
    )
    return _conversation_response(conv)


@router.delete("/conversations/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    repo: InMemoryRepository = Depends(get_repository),
) -> dict:
    """
    Delete a conversation and all of its messages.
    """
    if not repo.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Message endpoints
# ---------------------------------------------------------------------------

@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
def list_messages(
    conversation_id: str,
    repo: InMemoryRepository = Depends(get_repository),
) -> List[MessageResponse]:
    return [_message_response(m) for m in repo.get_messages(conversation_id)]


@router.post("/conversations/{conversation_id}/messages", response_model=ExchangeResponse)
def send_message(
    conversation_id: str,
    req: MessageCreateRequest,
    background_tasks: BackgroundTasks,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ExchangeResponse:
    """
    Send a user message and get the assistant reply.
    MemU storage of the exchange (when enabled) runs after the response is sent.
    """
    request_id = str(uuid.uuid4())
    start_time = time.monotonic()
    logger.info("[send_message] request_id=%s conversation_id=%s content_len=%d",
                request_id, conversation_id, len(req.content or ""))

    try:
        result = orchestrator.send_message(
            conversation_id,
            content=req.content,
            user_id=req.userId,
            schedule=background_tasks.add_task,
        )
    except (InvalidMessageError, MissingApiKeyError) as e:
        logger.warning("[send_message] request_id=%s rejected: %s", request_id, e)
        raise HTTPException(status_code=400, detail=str(e))
    except ConversationNotFoundError as e:
        logger.warning("[send_message] request_id=%s rejected: %s", request_id, e)
        raise HTTPException(status_code=404, detail=str(e))
    except CompletionError as e:
        logger.error("[send_message] request_id=%s completion failed: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Failed to process message")
    except Exception as e:
        logger.error("[send_message] request_id=%s unexpected error: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Failed to process message")

    latency_ms = int((time.monotonic() - start_time) * 1000)
    logger.info("[send_message] request_id=%s OK latency_ms=%d", request_id, latency_ms)
    return ExchangeResponse(
        userMessage=_message_response(result.user_message),
        aiMessage=_message_response(result.ai_message),
    )


# ---------------------------------------------------------------------------
# Settings endpoints
# ---------------------------------------------------------------------------

@router.get("/settings/{user_id}", response_model=SettingsResponse)
def get_settings(
    user_id: str,
    repo: InMemoryRepository = Depends(get_repository),
) -> SettingsResponse:
    """
    Settings of a user; a default row is created on first read.
    """
    return _settings_response(repo.get_or_create_settings(user_id))


@router.put("/settings/{user_id}", response_model=SettingsResponse)
def update_settings(
    user_id: str,
    req: SettingsUpdateRequest,
    repo: InMemoryRepository = Depends(get_repository),
) -> SettingsResponse:
    """
    Apply the sent fields, creating the settings row if the user has none.
    """
    return _settings_response(repo.upsert_settings(user_id, _settings_update(req)))


# ---------------------------------------------------------------------------
# Connection tests
# ---------------------------------------------------------------------------

@router.post("/test-connections", response_model=ConnectionTestResponse)
def test_connections(req: ConnectionTestRequest, request: Request) -> ConnectionTestResponse:
    """
    Check each provided key independently. A missing key reports False.
    """
    results = ConnectionTestResponse(openai=False, memu=False)

    if req.openaiApiKey:
        results.openai = request.app.state.completion_client.test_connection(req.openaiApiKey)

    if req.memuApiKey and req.userId:
        probe = request.app.state.memu_client.retrieve_memory(req.memuApiKey, "test query", req.userId)
        results.memu = probe.success

    logger.info("[test_connections] openai=%s memu=%s", results.openai, results.memu)
    return results


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    repository: Optional[InMemoryRepository] = None,
    memu_client: Optional[MemuClient] = None,
    completion_client: Optional[OpenAIChatClient] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the app with its own repository and clients. Anything not passed
    in is constructed from configuration.
    """
    settings = settings or load_settings()
    repository = repository or InMemoryRepository()
    memu_client = memu_client or MemuClient(settings)
    completion_client = completion_client or OpenAIChatClient(settings)

    app = FastAPI(
        title="MemU Chat API",
        description="Chat relay between users, OpenAI completions and MemU long-term memory.",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.repository = repository
    app.state.memu_client = memu_client
    app.state.completion_client = completion_client
    app.state.orchestrator = ChatOrchestrator(
        repository=repository,
        memu_client=memu_client,
        completion_client=completion_client,
        settings=settings,
    )

    app.include_router(router)

    @app.get("/health")
    def health_check() -> dict:
        """
        Very simple health check endpoint.
        """
        return {"status": "ok", "memu_api_base": settings.memu_api_base}

    logger.info("MemU chat app ready. memu_api_base=%s history_limit=%d",
                settings.memu_api_base, settings.history_limit)
    return app


app = create_app()

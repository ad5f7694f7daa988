# memu_chat/clients/memu_client.py
#
# Single integration layer for the MemU long-term memory API.
# Every call returns a MemuResult; nothing in here raises to the caller.

import time
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from memu_chat.config.settings import Settings, load_settings
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MemuResult:
    success: bool
    data: Any = None
    error: Optional[str] = None


def _mk_req_id(prefix: str = "memu") -> str:
    return f"{prefix}_{int(time.time()*1000)}_{random.randint(1000, 9999)}"


class MemuClient:
    """
    Thin client for the two MemU endpoints used by the chat pipeline:

      POST /retrieve_memory        {query, user_id}
      POST /memorize_conversation  {conversation, user_id, user_name, agent_id, agent_name}

    The caller supplies the API key on every call (keys are per-user settings).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._base_url = self._settings.memu_api_base.rstrip("/")
        self._timeout = self._settings.memu_timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "memu-chat/backend (requests)"})

    def _post(self, path: str, api_key: str, payload: Dict[str, Any]) -> MemuResult:
        req_id = _mk_req_id()
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        t0 = time.monotonic()
        try:
            resp = self._session.post(url, headers=headers, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            logger.warning("[memu] req_id=%s path=%s HTTP exception latency_ms=%d err=%s",
                           req_id, path, dt_ms, e)
            return MemuResult(success=False, error=str(e) or e.__class__.__name__)

        dt_ms = int((time.monotonic() - t0) * 1000)

        if not resp.ok:
            body_preview = (resp.text or "")[:400]
            logger.warning("[memu] req_id=%s path=%s non-2xx status=%d latency_ms=%d body=%r",
                           req_id, path, resp.status_code, dt_ms, body_preview)
            return MemuResult(
                success=False,
                error=f"MemU API error: {resp.status_code} {resp.reason or ''}".strip(),
            )

        try:
            data = resp.json()
        except ValueError as e:
            logger.warning("[memu] req_id=%s path=%s invalid JSON body latency_ms=%d err=%s",
                           req_id, path, dt_ms, e)
            return MemuResult(success=False, error=f"MemU API returned invalid JSON: {e}")

        logger.info("[memu] req_id=%s path=%s OK status=%d latency_ms=%d",
                    req_id, path, resp.status_code, dt_ms)
        return MemuResult(success=True, data=data)

    def retrieve_memory(self, api_key: str, query: str, user_id: str) -> MemuResult:
        """
        Ask MemU for context relevant to `query` for `user_id`.
        """
        return self._post(
            "retrieve_memory",
            api_key,
            {"query": query, "user_id": user_id},
        )

    def memorize_conversation(
        self,
        api_key: str,
        conversation_text: str,
        user_id: str,
        user_name: str,
        agent_id: str,
        agent_name: str,
    ) -> MemuResult:
        """
        Ask MemU to index a conversation transcript under the given user/agent.
        """
        return self._post(
            "memorize_conversation",
            api_key,
            {
                "conversation": conversation_text,
                "user_id": user_id,
                "user_name": user_name,
                "agent_id": agent_id,
                "agent_name": agent_name,
            },
        )

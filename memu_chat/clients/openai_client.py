# memu_chat/clients/openai_client.py
#
# Single integration layer for the OpenAI chat-completion API.
# Keys are per-user, so a client is built for each call.

import time
import random
from typing import Dict, List, Optional

from openai import OpenAI

from memu_chat.config.settings import Settings, load_settings
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_REPLY_FALLBACK = "I couldn't generate a response."


class CompletionError(RuntimeError):
    """The completion service could not produce a reply."""


def _mk_req_id(prefix: str = "chat") -> str:
    return f"{prefix}_{int(time.time()*1000)}_{random.randint(1000, 9999)}"


def _classify_openai_error(e: Exception) -> str:
    name = e.__class__.__name__
    msg = (str(e) or "").lower()

    if "notfound" in name.lower() or "404" in msg:
        return "openai_404_not_found"

    if "authentication" in name.lower() or "401" in msg or "incorrect api key" in msg:
        return "openai_auth"

    if "ratelimit" in name.lower() or "429" in msg or "rate limit" in msg:
        return "openai_rate_limit"

    if "timeout" in name.lower() or "timeout" in msg or "timed out" in msg:
        return "openai_timeout"

    if "connection" in name.lower() or "connection" in msg or "dns" in msg:
        return "openai_network"

    return "openai_unknown"


class OpenAIChatClient:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or load_settings()

    def _make_client(self, api_key: str) -> OpenAI:
        # max_retries=0: a failed call surfaces immediately
        return OpenAI(
            api_key=api_key,
            base_url=self._settings.openai_base_url,
            max_retries=0,
        )

    def generate_reply(
        self,
        api_key: str,
        model: str,
        system_prompt: str,
        history: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        """
        Run one chat completion with `system_prompt` prepended to `history`
        and return the first choice's text.

        Raises CompletionError (chained to the SDK exception) on any failure.
        """
        req_id = _mk_req_id()
        messages = [{"role": "system", "content": system_prompt}] + list(history)

        logger.info("[chat] req_id=%s start model=%s msg_count=%d temperature=%s max_tokens=%d",
                    req_id, model, len(messages), temperature, max_tokens)

        t0 = time.monotonic()
        try:
            client = self._make_client(api_key)
            resp = client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            code = _classify_openai_error(e)
            logger.error("[chat] req_id=%s FAIL latency_ms=%d model=%s code=%s err=%s",
                         req_id, dt_ms, model, code, e)
            raise CompletionError(f"Completion request failed ({code}).") from e

        dt_ms = int((time.monotonic() - t0) * 1000)
        content = ""
        if resp.choices:
            content = resp.choices[0].message.content or ""
        content = content.strip()
        if not content:
            logger.warning("[chat] req_id=%s empty completion; using fallback reply.", req_id)
            return EMPTY_REPLY_FALLBACK

        snippet = content[:240] + ("..." if len(content) > 240 else "")
        logger.info("[chat] req_id=%s OK latency_ms=%d model=%s reply=%r",
                    req_id, dt_ms, model, snippet)
        return content

    def test_connection(self, api_key: str) -> bool:
        """
        True when the key can list models, i.e. it is valid and the API is reachable.
        """
        req_id = _mk_req_id("models")
        try:
            self._make_client(api_key).models.list()
        except Exception as e:
            logger.warning("[models] req_id=%s connection test failed code=%s err=%s",
                           req_id, _classify_openai_error(e), e)
            return False
        logger.info("[models] req_id=%s connection test OK", req_id)
        return True

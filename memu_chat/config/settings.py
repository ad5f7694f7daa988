# memu_chat/config/settings.py

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Expose BASE_DIR for other modules
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

SYSTEM_PROMPT_PATH = Path(__file__).resolve().parent / "system_prompt.txt"

DEFAULT_MEMU_API_BASE = "https://api-preview.memu.so"


@dataclass
class Settings:
    # MemU (long-term memory) service
    memu_api_base: str = DEFAULT_MEMU_API_BASE
    memu_timeout_seconds: float = 30.0
    memu_agent_id: str = "memu_assistant"
    memu_agent_name: str = "MemU Assistant"
    memu_user_name: str = "User"

    # Completion service; None keeps the SDK default endpoint
    openai_base_url: Optional[str] = None

    # How many stored messages are replayed to the model
    history_limit: int = 10

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8000

    log_dir: str = str(BASE_DIR / "memu_chat" / "logs")


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
        # safeguard: enforce positive
        return value if value > 0 else default
    except ValueError:
        return default


def _parse_int_env(name: str, default: int, min_val: int = 0, max_val: int = 10) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
        # safeguard: clamp into sane range
        return max(min_val, min(max_val, value))
    except ValueError:
        return default


def _strip_outer_quotes(s: str) -> str:
    """
    Users sometimes write MEMU_API_BASE="https://..." including quotes.
    This removes a single pair of matching outer quotes.
    """
    s2 = (s or "").strip()
    if len(s2) >= 2 and ((s2[0] == s2[-1]) and s2[0] in ("'", '"')):
        return s2[1:-1].strip()
    return s2


def get_log_dir() -> Path:
    """
    Log directory from MEMU_CHAT_LOG_DIR. Read on its own so that logging
    keeps working when the rest of the configuration is invalid.
    """
    raw = os.getenv("MEMU_CHAT_LOG_DIR", "").strip()
    return Path(raw) if raw else BASE_DIR / "memu_chat" / "logs"


def load_settings() -> Settings:
    """
    Load configuration from environment variables (and defaults).
    Nothing is required here: API keys are stored per user, not per process.
    Raises a RuntimeError if a configured base URL has no scheme.
    """
    # --- MemU endpoint ---
    memu_api_base = _strip_outer_quotes(os.getenv("MEMU_API_BASE", "")) or DEFAULT_MEMU_API_BASE
    if not (memu_api_base.startswith("http://") or memu_api_base.startswith("https://")):
        raise RuntimeError(f"MEMU_API_BASE is invalid (missing scheme): {memu_api_base!r}")
    memu_api_base = memu_api_base.rstrip("/")

    memu_timeout = _parse_float_env("MEMU_TIMEOUT_SECONDS", 30.0)

    memu_agent_id = os.getenv("MEMU_AGENT_ID", "").strip() or "memu_assistant"
    memu_agent_name = os.getenv("MEMU_AGENT_NAME", "").strip() or "MemU Assistant"
    memu_user_name = os.getenv("MEMU_USER_NAME", "").strip() or "User"

    # --- OpenAI endpoint (optional override) ---
    openai_base_url = _strip_outer_quotes(os.getenv("OPENAI_BASE_URL", "")) or None
    if openai_base_url and not (
        openai_base_url.startswith("http://") or openai_base_url.startswith("https://")
    ):
        raise RuntimeError(f"OPENAI_BASE_URL is invalid (missing scheme): {openai_base_url!r}")

    history_limit = _parse_int_env("HISTORY_LIMIT", 10, min_val=1, max_val=100)

    host = os.getenv("MEMU_CHAT_HOST", "").strip() or "0.0.0.0"
    port = _parse_int_env("MEMU_CHAT_PORT", 8000, min_val=1, max_val=65535)

    log_dir = str(get_log_dir())

    return Settings(
        memu_api_base=memu_api_base,
        memu_timeout_seconds=memu_timeout,
        memu_agent_id=memu_agent_id,
        memu_agent_name=memu_agent_name,
        memu_user_name=memu_user_name,
        openai_base_url=openai_base_url,
        history_limit=history_limit,
        host=host,
        port=port,
        log_dir=log_dir,
    )

# memu_chat/main.py
"""
MemU chat CLI entrypoint.

Runs the FastAPI app with uvicorn:
    python -m memu_chat.main
    python -m memu_chat.main --port 5000 --reload

Host and port default to MEMU_CHAT_HOST / MEMU_CHAT_PORT (see config/settings.py).
"""

from __future__ import annotations

import argparse
from typing import List, Optional

import uvicorn

from memu_chat.config.settings import load_settings
from memu_chat.utils.logging import get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="MemU chat relay server")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev only)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logger.info("Starting MemU chat server on %s:%d (reload=%s)", args.host, args.port, args.reload)
    uvicorn.run("memu_chat.api.server:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

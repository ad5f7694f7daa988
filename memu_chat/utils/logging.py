# memu_chat/utils/logging.py

import logging

from memu_chat.config.settings import get_log_dir

LOG_FILENAME = "memu_chat.log"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


def _file_handler() -> logging.FileHandler:
    # Directory is resolved per logger so MEMU_CHAT_LOG_DIR set after import still applies
    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")


def get_logger(name: str = "memu_chat") -> logging.Logger:
    """
    Logger writing to memu_chat.log and the console.
    Handlers are attached once per name.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    for handler in (_file_handler(), logging.StreamHandler()):
        handler.setLevel(logging.INFO)
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger

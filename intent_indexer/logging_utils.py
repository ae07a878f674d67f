import logging
import os
import sys
import uuid
from logging.handlers import TimedRotatingFileHandler

LOG_FILE_NAME = "intent-indexer.log"
LOG_BACKUP_DAYS = 14

# Chain clients log every request and frame at DEBUG
THIRD_PARTY_LOGGERS = ("web3", "websockets", "aiohttp", "urllib3")


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _level_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    parsed = logging.getLevelName(raw.strip().upper())
    return parsed if isinstance(parsed, int) else default


class RuntimeLogContextFilter(logging.Filter):
    def __init__(self, run_id: str, mode: str):
        super().__init__()
        self.run_id = run_id
        self.mode = mode

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        record.mode = self.mode
        return True


class WebSocketKeepaliveFilter(logging.Filter):
    """Drop routine keepalive chatter from the websockets client at DEBUG."""

    _KEEPALIVE_PREFIXES = ("> PING", "< PONG", "% sending keepalive ping", "% received keepalive pong")

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("websockets"):
            return True
        if record.levelno > logging.DEBUG:
            return True
        return not record.getMessage().startswith(self._KEEPALIVE_PREFIXES)


def configure_logging(mode: str = "live") -> str:
    """
    Console plus a daily-rotated file under INTENTS_LOG_DIR, every record
    stamped with the run id and subscription mode. Returns the run id.
    """
    run_id = os.getenv("INTENTS_RUN_ID") or uuid.uuid4().hex[:12]
    level = _level_from_env("INTENTS_LOG_LEVEL", logging.INFO)

    log_dir = os.getenv("INTENTS_LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [run_id=%(run_id)s mode=%(mode)s] %(message)s"
    )
    filters = [RuntimeLogContextFilter(run_id, mode), WebSocketKeepaliveFilter()]
    handlers = [
        logging.StreamHandler(sys.stdout),
        TimedRotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            when="midnight",
            backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8",
        ),
    ]

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        for log_filter in filters:
            handler.addFilter(log_filter)
        root_logger.addHandler(handler)

    third_party_level = _level_from_env(
        "INTENTS_THIRD_PARTY_LOG_LEVEL", max(level, logging.INFO)
    )
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    return run_id

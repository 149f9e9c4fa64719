from __future__ import annotations

import json
import logging
import queue
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

import httpx

from imap_to_filesystem.config.loader import LoggerConfig

LOGGER_NAME = "imap_to_filesystem"
CONSOLE_FORMAT = "%(name)s %(asctime)s %(levelname)s %(message)s"

_SEQ_LEVELS = {
    logging.DEBUG: "Debug",
    logging.INFO: "Information",
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Fatal",
}

_listener: Optional[QueueListener] = None


class SeqHandler(logging.Handler):
    """Ships records to a Seq server as CLEF (one JSON object per event)."""

    def __init__(self, server_url: str, api_key: str = "", *, timeout: float = 5.0, client: Optional[httpx.Client] = None) -> None:
        super().__init__()
        self.url = server_url.rstrip("/") + "/api/events/raw?clef"
        headers = {"Content-Type": "application/vnd.serilog.clef"}
        if api_key:
            headers["X-Seq-ApiKey"] = api_key
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = headers

    def to_clef(self, record: logging.LogRecord) -> dict:
        event = {
            "@t": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "@l": _SEQ_LEVELS.get(record.levelno, record.levelname),
            "@m": record.getMessage(),
            "Logger": record.name,
            "Thread": record.threadName,
        }
        if record.exc_info:
            event["@x"] = logging.Formatter().formatException(record.exc_info)
        return event

    def emit(self, record: logging.LogRecord) -> None:
        try:
            body = json.dumps(self.to_clef(record), default=str)
            response = self._client.post(self.url, content=body, headers=self._headers)
            response.raise_for_status()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._client.close()
        finally:
            super().close()


def configure_logging(cfg: LoggerConfig, *, seq_handler: Optional[logging.Handler] = None) -> logging.Logger:
    """
    Configure the application logger once at startup and return it.
    Components receive this logger (or a child) instead of building their own.
    """
    global _listener
    shutdown_logging()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if cfg.debug else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if cfg.use_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console)

    if cfg.use_seq:
        records: "queue.Queue[logging.LogRecord]" = queue.Queue()
        # Sessions must never wait on the log server.
        logger.addHandler(QueueHandler(records))
        _listener = QueueListener(records, seq_handler or SeqHandler(cfg.server_url, cfg.api_key))
        _listener.start()

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def shutdown_logging() -> None:
    global _listener
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None

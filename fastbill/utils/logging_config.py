import os
import sys
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler

# Set per HTTP request (middleware) and per routed utterance (voice session)
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="SYSTEM")
session_id_ctx: ContextVar[str] = ContextVar("session_id", default="-")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] [Req: %(request_id)s] [Session: %(session_id)s] - %(message)s"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


class ContextFilter(logging.Filter):
    """
    Copies the current request and voice session ids onto every record.
    """
    def filter(self, record):
        record.request_id = request_id_ctx.get()
        record.session_id = session_id_ctx.get()
        return True


@contextmanager
def session_context(session_id: str):
    """Tags log lines emitted inside the block with a voice session id."""
    token = session_id_ctx.set(session_id)
    try:
        yield
    finally:
        session_id_ctx.reset(token)


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(log_dir: str = "logs", log_file: str = "fastbill.log", level="INFO"):
    """
    Root logger with a rotating file (10MB x 5) and stdout, both using LOG_FORMAT.
    Safe to call again on reload: existing root handlers are replaced.
    """
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)
    context = ContextFilter()

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
    )
    console_handler = logging.StreamHandler(sys.stdout)

    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(level))
    root_logger.handlers = []
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        handler.addFilter(context)
        root_logger.addHandler(handler)

    # Access logs and the HTTP client are chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

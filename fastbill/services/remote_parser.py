import re
import time
from typing import Any, Dict, List, Optional

import requests

from fastbill.core.config import (
    DEFAULT_LOCALE,
    PARSER_COOLDOWN_SECONDS,
    PARSER_FAILURE_THRESHOLD,
    PARSER_NOTICE_INTERVAL_SECONDS,
    REMOTE_PARSER_TIMEOUT,
    REMOTE_PARSER_URL,
)
from fastbill.domain.errors import RemoteParserError
from fastbill.domain.schemas import ParsedIntent
from fastbill.utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_TEXT_LENGTH = 200


def camel_to_snake(name: str) -> str:
    """includeGST -> include_gst, gstRate -> gst_rate, product-name -> product_name"""
    s = re.sub(r'[\s\-]+', '_', str(name).strip())
    s = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', s)
    s = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', s)
    return s.lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {camel_to_snake(k): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def normalize_remote_response(data: Any) -> Optional[ParsedIntent]:
    """
    Accepts {intent, entities} or {action, slots} (optionally wrapped in
    "result") and returns a ParsedIntent with a snake_case intent and
    snake_case entity keys. None when no intent can be read.
    """
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("result"), dict):
        data = data["result"]
    intent = data.get("intent") or data.get("action")
    if not intent or not isinstance(intent, str):
        return None
    entities = data.get("entities")
    if not isinstance(entities, dict):
        entities = data.get("slots") if isinstance(data.get("slots"), dict) else {}
    return ParsedIntent(intent=camel_to_snake(intent), entities=_snake_keys(entities))


class RemoteIntentParser:
    """
    Client for the optional hosted intent parser.
    Raises RemoteParserError on non-2xx responses, network errors and
    unreadable bodies so the caller can count the failure.
    """

    def __init__(self, url: str = REMOTE_PARSER_URL, timeout: float = REMOTE_PARSER_TIMEOUT,
                 locale: str = DEFAULT_LOCALE, user_id: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.locale = locale
        self.user_id = user_id
        self.headers = {"Content-Type": "application/json"}

    def parse(self, text: str, intent_hints: Optional[List[str]] = None) -> Optional[ParsedIntent]:
        body = {
            "text": str(text or "")[:MAX_TEXT_LENGTH],
            "userId": self.user_id,
            "locale": self.locale,
            "intentHints": intent_hints or [],
        }
        try:
            response = requests.post(self.url, json=body, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteParserError(f"Remote parser returned HTTP {status}", status_code=status) from e
        except requests.RequestException as e:
            raise RemoteParserError(f"Remote parser unreachable: {e}") from e
        except ValueError as e:
            raise RemoteParserError(f"Remote parser returned invalid JSON: {e}") from e

        return normalize_remote_response(data)


class CircuitBreaker:
    """
    Opens after `threshold` consecutive failures and stays open for
    `cooldown` seconds. While open, should_notify() is True at most once
    per `notice_interval`.
    """

    def __init__(self, threshold: int = PARSER_FAILURE_THRESHOLD,
                 cooldown: float = PARSER_COOLDOWN_SECONDS,
                 notice_interval: float = PARSER_NOTICE_INTERVAL_SECONDS,
                 clock=time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self.notice_interval = notice_interval
        self.clock = clock
        self.failures = 0
        self.open_until: Optional[float] = None
        self.last_notice: Optional[float] = None

    @property
    def is_open(self) -> bool:
        if self.open_until is None:
            return False
        if self.clock() >= self.open_until:
            # Cooldown over, start counting again
            self.open_until = None
            self.failures = 0
            self.last_notice = None
            return False
        return True

    def allow_request(self) -> bool:
        return not self.is_open

    def record_success(self) -> None:
        self.failures = 0

    def record_failure(self) -> bool:
        """Returns True when this failure trips the breaker."""
        self.failures += 1
        if self.failures >= self.threshold and self.open_until is None:
            self.open_until = self.clock() + self.cooldown
            logger.warning(f"Remote parser disabled for {self.cooldown:.0f}s after {self.failures} failures")
            return True
        return False

    def should_notify(self) -> bool:
        if not self.is_open:
            return False
        now = self.clock()
        if self.last_notice is None or now - self.last_notice >= self.notice_interval:
            self.last_notice = now
            return True
        return False

    def status(self) -> Dict[str, Any]:
        return {"open": self.is_open, "failures": self.failures}

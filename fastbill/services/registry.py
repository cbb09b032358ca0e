import time
from threading import Lock
from typing import Dict, List, Optional

from fastbill.core.config import LEARNING_STORE_PATH, SESSION_IDLE_SECONDS
from fastbill.domain.errors import SessionNotFound
from fastbill.services.learning_store import JsonFileLearningStore, LearningStore
from fastbill.services.session import VoiceBillingSession
from fastbill.services.stores import InMemoryCustomerStore, InMemoryInventory, InMemoryInvoiceStore
from fastbill.utils.logging_config import get_logger

logger = get_logger("registry")

# Process-wide collaborators for the HTTP API
inventory = InMemoryInventory()
customers = InMemoryCustomerStore()
invoices = InMemoryInvoiceStore()
learning_store: Optional[LearningStore] = None

SESSIONS: Dict[str, VoiceBillingSession] = {}
LAST_SEEN: Dict[str, float] = {}
_sessions_lock = Lock()
_clock = time.monotonic


def get_learning_store() -> LearningStore:
    """
    Returns the shared learning store, opening the JSON log on first use.
    """
    global learning_store
    if learning_store is None:
        learning_store = JsonFileLearningStore(LEARNING_STORE_PATH)
        logger.info(f"Learning log opened: {LEARNING_STORE_PATH}")
    return learning_store


def _prune_idle(now: float) -> None:
    # Caller holds _sessions_lock
    expired = [sid for sid, seen in LAST_SEEN.items() if now - seen > SESSION_IDLE_SECONDS]
    for sid in expired:
        SESSIONS.pop(sid, None)
        LAST_SEEN.pop(sid, None)
    if expired:
        logger.info(f"Dropped {len(expired)} idle voice session(s)")


def create_session(business_id: Optional[str] = None, products: Optional[List[dict]] = None,
                   customer_list: Optional[List[dict]] = None) -> VoiceBillingSession:
    """
    Starts a voice session. Products/customers sent with the request
    replace the shared snapshot for this session only.
    """
    source = InMemoryInventory(products) if products is not None else inventory
    store = InMemoryCustomerStore(customer_list) if customer_list is not None else customers
    session = VoiceBillingSession(
        inventory=source,
        customers=store,
        invoices=invoices,
        learning_store=get_learning_store(),
        business_id=business_id,
    )
    with _sessions_lock:
        now = _clock()
        _prune_idle(now)
        SESSIONS[session.session_id] = session
        LAST_SEEN[session.session_id] = now
    logger.info(f"Voice session {session.session_id} started")
    return session


def get_session(session_id: str) -> VoiceBillingSession:
    """Looks up a live session and marks it as used."""
    with _sessions_lock:
        now = _clock()
        _prune_idle(now)
        session = SESSIONS.get(session_id)
        if session is not None:
            LAST_SEEN[session_id] = now
    if session is None:
        raise SessionNotFound(session_id)
    return session


def close_session(session_id: str) -> None:
    with _sessions_lock:
        SESSIONS.pop(session_id, None)
        LAST_SEEN.pop(session_id, None)

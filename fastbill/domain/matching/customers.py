"""
Customer lookup for spoken "customer ..." commands.

Precedence: phone (last 10 digits) -> email -> unique exact name ->
fuzzy match over a search needle -> staged draft -> "Walk-in" draft.
"""
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from fastbill.domain.schemas import Customer
from fastbill.domain.matching.text import similarity
from fastbill.utils.config_loader import load_speech_vocabulary

FUZZY_CANDIDATE_THRESHOLD = 0.48
FUZZY_AUTO_ACCEPT = 0.92
MAX_CUSTOMER_CANDIDATES = 5
WALK_IN_NAME = "Walk-in"

_EMAIL_RE = re.compile(r'[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}')
_NAME_RE = re.compile(r'(?:name|named|call(?:ed)?|customer|client|buyer)\s*[:\-\s]*([a-zA-Z ]{2,})')
_NAME_STOPWORDS_RE = re.compile(r'(?:^|\s+)\b(?:phone|mobile|number|email|mail|address|details?|is|with)\b.*$')
_NAME_LEAD_RE = re.compile(r'^(?:name|named)\s+(?:is\s+)?')
_PHONE_GROUP_RE = re.compile(r'(\+?\d[\d\s\-]{6,18}\d)')


def normalize_phone(phone) -> str:
    return re.sub(r'[^\d]+', '', str(phone or ''))


def same_phone(a, b) -> bool:
    """Equal digits, or equal last 10 digits when both have at least 10."""
    pa, pb = normalize_phone(a), normalize_phone(b)
    if not pa or not pb:
        return False
    return pa == pb or (len(pa) >= 10 and len(pb) >= 10 and pa[-10:] == pb[-10:])


def extract_phone_from_utterance(raw) -> str:
    """Longest 7-13 digit group in the text, else all digits if they fit."""
    text = str(raw or '')
    digits = [re.sub(r'[^\d]', '', g) for g in _PHONE_GROUP_RE.findall(text)]
    digits = sorted((d for d in digits if 7 <= len(d) <= 13), key=len, reverse=True)
    if digits:
        return digits[0]
    all_digits = re.sub(r'[^\d]', '', text)
    if 7 <= len(all_digits) <= 13:
        return all_digits
    return ''


def mentions_customer(text) -> bool:
    words = load_speech_vocabulary()["customer_words"]
    lowered = str(text or '').lower()
    return any(re.search(rf'\b{re.escape(w)}\b', lowered) for w in words)


def extract_customer_entities(text) -> Dict[str, str]:
    """Phone, email and name spoken in a customer command (only those found)."""
    lowered = str(text or '').lower()
    entities = {}
    phone = extract_phone_from_utterance(text)
    if phone:
        entities["phone"] = phone
    email = _EMAIL_RE.search(lowered)
    if email:
        entities["email"] = email.group(0)
    name = _NAME_RE.search(lowered)
    if name:
        value = _NAME_LEAD_RE.sub('', name.group(1).strip())
        value = _NAME_STOPWORDS_RE.sub('', value).strip()
        if value and value not in load_speech_vocabulary()["customer_words"]:
            entities["name"] = value
    return entities


def customer_needle(customer: Customer) -> str:
    return f"{customer.name or ''} {customer.phone or ''} {customer.email or ''} {customer.address or ''}".lower()


def new_customer_id() -> str:
    return f"CUST-{uuid.uuid4().hex[:8].upper()}"


@dataclass
class CustomerResolution:
    """
    outcome is one of: "selected", "prompt", "draft".
    """
    outcome: str
    customer: Optional[Customer] = None
    candidates: List[Customer] = field(default_factory=list)
    message: str = ""


def selected_customer(customer: Customer) -> CustomerResolution:
    label = customer.name or customer.phone or ""
    if customer.address:
        label = f"{label} • {customer.address}"
    return CustomerResolution(outcome="selected", customer=customer, message=f"Customer: {label}")


def resolve_customer(entities: Dict[str, Any], raw_text: str,
                     customers: Sequence[Customer]) -> CustomerResolution:
    e = entities or {}
    q_phone = normalize_phone(e.get("phone") or extract_phone_from_utterance(raw_text))
    q_email = str(e.get("email") or "").lower().strip()
    q_name = str(e.get("name") or "").strip()
    if q_name.lower() in load_speech_vocabulary()["customer_words"]:
        q_name = ""
    q_needle = (q_phone or q_email or q_name).lower()

    if q_phone:
        hit = next((c for c in customers if same_phone(c.phone, q_phone)), None)
        if hit is not None:
            return selected_customer(hit)

    if q_email:
        hit = next((c for c in customers if (c.email or "").lower() == q_email), None)
        if hit is not None:
            return selected_customer(hit)

    if q_name:
        same_name = [c for c in customers if (c.name or "").lower() == q_name.lower()]
        if len(same_name) == 1:
            return selected_customer(same_name[0])

    if q_needle:
        scored = [(similarity(q_needle, customer_needle(c)), c) for c in customers]
        scored = [(s, c) for s, c in scored if s > FUZZY_CANDIDATE_THRESHOLD]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        scored = scored[:MAX_CUSTOMER_CANDIDATES]
        if len(scored) >= 2:
            return CustomerResolution(outcome="prompt", candidates=[c for _, c in scored],
                                      message="Which customer did you mean?")
        if len(scored) == 1 and scored[0][0] >= FUZZY_AUTO_ACCEPT:
            return selected_customer(scored[0][1])

    address = str(e.get("address") or "").strip()
    if q_name or q_phone or q_email or address:
        draft = Customer(id=new_customer_id(), name=q_name, phone=q_phone or None,
                         email=q_email or None, address=address or None, is_draft=True)
        return CustomerResolution(outcome="draft", customer=draft,
                                  message="New customer will be created on Save")

    walk_in = Customer(id=new_customer_id(), name=WALK_IN_NAME, is_draft=True)
    return CustomerResolution(outcome="draft", customer=walk_in,
                              message="Walk-in customer selected (will be created on Save)")

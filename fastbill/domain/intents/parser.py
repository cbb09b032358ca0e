"""
Deterministic intent parser for cashier utterances.

parse_local_intent runs a fixed cascade of keyword/regex rules and returns
the first hit as a ParsedIntent, or None when nothing matched (the caller
then treats the utterance as an implicit add-item query).
"""
import math
import re
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from fastbill.domain.matching.customers import extract_customer_entities, mentions_customer
from fastbill.domain.money import to_decimal
from fastbill.domain.pricing.tax import split_gst_rate
from fastbill.domain.schemas import ParsedIntent
from fastbill.utils.config_loader import load_speech_vocabulary

_PAYMENT_WORD = re.compile(r'\b(payment|pay|mode|paise)\b')
_SPLIT_WORD = re.compile(r'\bsplit\b')
_CREDIT_WORD = re.compile(r'\bcredit\b(?!\s+card)')
_ADVANCE_WORD = re.compile(r'\badvance\b')

_UPI_RE = re.compile(r'\b(upi|gpay|phonepe|google pay|yupi)\b')
_CASH_RE = re.compile(r'\b(cash|nagad)\b')
_CARD_RE = re.compile(r'\b(card|debit|credit\s+card|debit\s+card)\b')
_SHORT_PAYMENT_RE = re.compile(r'^(?:payment|pay|mode|paise)\s+(upi|cash|card|yupi|nagad)$')
_MODE_ALIASES = {"yupi": "upi", "nagad": "cash"}

_SPLIT_PAIR_RE = re.compile(r'\b(\d+(?:\.\d+)?)\s*(cash|upi|card)\b')
_DAYS_RE = re.compile(r'\b(\d{1,3})\s*days?\b')
_DATE = r'([0-9]{1,2}[/\-\s][0-9]{1,2}(?:[/\-\s][0-9]{2,4})?|\d{1,2}\s+[a-z]{3,9}(?:\s+\d{2,4})?)'
_ON_DATE_RE = re.compile(r'\bon\s+' + _DATE + r'\b')
_DUE_ON_DATE_RE = re.compile(r'\bdue\s+on\s+' + _DATE + r'\b')
_ADVANCE_AMOUNT_RE = re.compile(r'\badvance\s+(\d+(?:\.\d+)?)\b')

_INVOICE_WORD = re.compile(r'\b(invoice|bill)\s*(type)?\b')
_INVOICE_TYPES = (("retail", "Retail"), ("tax", "Tax"), ("proforma", "Proforma"),
                  ("estimate", "Estimate"), ("quote", "Quote"))

_GST_WORD = re.compile(r'\b(gst|cgst|sgst|igst)\b')
_GST_ON = re.compile(r'\b(enable|include|apply|add|on)\b')
_GST_OFF = re.compile(r'\b(disable|remove|exclude|off)\b')
_NO_GST = re.compile(r'\b(no|without)\s+gst\b')

_CHARGE_RE = re.compile(
    r'\b(delivery|packing|packaging|insurance|other)\b(?:\s+(?:charges?|fees?|cost))?'
    r'\s*(?:of|is|to|=)?\s*(?:rs\.?|₹)?\s*(\d+(?:\.\d+)?)\s*(%|percent)?'
)
_CHARGE_KEYS = {"packing": "packaging"}

_DISCOUNT_RE = re.compile(
    r'\bdiscount\s*(?:of)?\s*(?:rs\.?|₹)?\s*(\d+(?:\.\d+)?)\s*(%|percent|rupees|rs\.?)?(?:\s+(?:on|for)\s+(.+))?$'
)

_FINALIZE_RE = re.compile(
    r'^(?:save|finali[sz]e|publish|complete|done)(?:\s+(?:the\s+)?(?:bill|invoice))?$'
    r'|\b(?:save|finali[sz]e|publish|complete)\s+(?:the\s+)?(?:bill|invoice)\b'
)

_REMOVE_RE = re.compile(r'^(?:remove|delete|hatao)\s+(.+)$|^(.+?)\s+hatao$')
_SET_QTY_RE = re.compile(
    r'^(?:change|set|update|make)\s+(?:the\s+)?(?:(?:qty|quantity)\s+(?:of\s+)?)?(.+?)'
    r'\s+(?:(?:qty|quantity)\s+)?to\s+(\d+(?:\.\d+)?)$'
)
_ITEM_QTY_RE = re.compile(r'^(.+?)\s+(?:qty|quantity)\s+(\d+(?:\.\d+)?)$')
_ADD_RE = re.compile(r'\b(add|put|insert|daalo|daal|dal)\b')

_NUMBER_RE = re.compile(r'\b(\d+(?:\.\d+)?)\b')


def _words_re(words: List[str]) -> re.Pattern:
    return re.compile(r'\b(?:' + '|'.join(re.escape(w) for w in words) + r')\b')


def clean_product_query(text: str) -> str:
    """Drops filler words, bare numbers and unit words from a product query."""
    vocab = load_speech_vocabulary()
    query = str(text or '').lower()
    if vocab["filler_words"]:
        query = _words_re(vocab["filler_words"]).sub(' ', query)
    query = _NUMBER_RE.sub(' ', query)
    if vocab["unit_words"]:
        query = _words_re(vocab["unit_words"]).sub(' ', query)
    return re.sub(r'\s+', ' ', query).strip()


def parse_quantity_and_query(text: str) -> Tuple[Decimal, str]:
    """
    "add 2 colgate 100g" -> (Decimal("2"), "colgate 100g").
    The first bare number is the quantity (1 when there is none).
    """
    lowered = str(text or '').lower()
    qty_match = _NUMBER_RE.search(lowered)
    qty = to_decimal(qty_match.group(1)) if qty_match else Decimal(1)
    return qty, clean_product_query(lowered)


# --- Cascade steps ---

def _payment_mode(t: str) -> Optional[ParsedIntent]:
    if _SPLIT_WORD.search(t) or _CREDIT_WORD.search(t) or _ADVANCE_WORD.search(t):
        return None
    short = _SHORT_PAYMENT_RE.match(t)
    if short:
        mode = _MODE_ALIASES.get(short.group(1), short.group(1))
        return ParsedIntent(intent="set_payment", entities={"mode": mode})
    if not _PAYMENT_WORD.search(t):
        return None
    if _UPI_RE.search(t):
        return ParsedIntent(intent="set_payment", entities={"mode": "upi"})
    if _CASH_RE.search(t):
        return ParsedIntent(intent="set_payment", entities={"mode": "cash"})
    if _CARD_RE.search(t):
        return ParsedIntent(intent="set_payment", entities={"mode": "card"})
    return None


def _split_payment(t: str) -> Optional[ParsedIntent]:
    if not (_PAYMENT_WORD.search(t) and _SPLIT_WORD.search(t)):
        return None
    split = {"cash": Decimal(0), "upi": Decimal(0), "card": Decimal(0)}
    for amount, kind in _SPLIT_PAIR_RE.findall(t):
        split[kind] += to_decimal(amount)
    return ParsedIntent(intent="set_payment", entities={"mode": "split", "split_payment": split})


def _credit_payment(t: str) -> Optional[ParsedIntent]:
    if not (_PAYMENT_WORD.search(t) and _CREDIT_WORD.search(t)):
        return None
    entities = {"mode": "credit"}
    days = _DAYS_RE.search(t)
    if days:
        entities["credit_due_days"] = max(0, int(days.group(1)))
    due = _ON_DATE_RE.search(t)
    if due:
        entities["credit_due_date"] = due.group(1)
    return ParsedIntent(intent="set_payment", entities=entities)


def _advance_payment(t: str) -> Optional[ParsedIntent]:
    if not (_PAYMENT_WORD.search(t) and _ADVANCE_WORD.search(t)):
        return None
    entities = {"mode": "advance"}
    amount = _ADVANCE_AMOUNT_RE.search(t)
    if amount:
        entities["advance_paid"] = to_decimal(amount.group(1))
    due = _DUE_ON_DATE_RE.search(t)
    if due:
        entities["advance_due_date"] = due.group(1)
    return ParsedIntent(intent="set_payment", entities=entities)


def _invoice_type(t: str) -> Optional[ParsedIntent]:
    if _INVOICE_WORD.search(t) or t.startswith("type "):
        for word, label in _INVOICE_TYPES:
            if re.search(rf'\b{word}\b', t):
                return ParsedIntent(intent="set_invoice_type", entities={"type": label})
    # Bare "retail ..." / "tax ..." / "proforma ..."
    for word, label in _INVOICE_TYPES[:3]:
        if re.match(rf'^{word}\b', t):
            return ParsedIntent(intent="set_invoice_type", entities={"type": label})
    return None


def _rate_after(label: str, t: str) -> Optional[int]:
    m = re.search(rf'\b{label}\b\s*(\d{{1,3}})(?:\s*%|\s*percent)?', t)
    return max(0, min(100, int(m.group(1)))) if m else None


def _gst(t: str) -> Optional[ParsedIntent]:
    if not _GST_WORD.search(t):
        return None

    # "on" words win over "off" words; neither means on
    include = bool(_GST_ON.search(t)) or not _GST_OFF.search(t)

    has_igst = bool(re.search(r'\bigst\b', t))
    has_cgst = bool(re.search(r'\bcgst\b', t))
    has_sgst = bool(re.search(r'\bsgst\b', t))
    has_gst = bool(re.search(r'\bgst\b', t))

    gst_rate = _rate_after("gst", t)
    cgst_rate = _rate_after("cgst", t)
    sgst_rate = _rate_after("sgst", t)
    igst_rate = _rate_after("igst", t)

    entities = {}

    # 1. IGST excludes the other three
    if has_igst:
        entities["include_igst"] = include
        if igst_rate is not None:
            entities["igst_rate"] = igst_rate
        entities.update(include_gst=False, include_cgst=False, include_sgst=False)

    # 2. CGST/SGST excludes GST and IGST
    if has_cgst or has_sgst:
        if has_cgst:
            entities["include_cgst"] = include
        if has_sgst:
            entities["include_sgst"] = include
        if cgst_rate is not None:
            entities["cgst_rate"] = cgst_rate
        if sgst_rate is not None:
            entities["sgst_rate"] = sgst_rate
        # "cgst sgst gst 18" -> 9 + 9
        if cgst_rate is None and sgst_rate is None and gst_rate is not None:
            first, second = split_gst_rate(gst_rate)
            if has_cgst:
                entities["cgst_rate"] = first
            if has_sgst:
                entities["sgst_rate"] = second
        entities.update(include_gst=False, include_igst=False)

    # 3. Plain GST
    if has_gst and not (has_igst or has_cgst or has_sgst):
        entities["include_gst"] = include
        if gst_rate is not None:
            entities["gst_rate"] = gst_rate
        if include:
            entities.update(include_igst=False, include_cgst=False, include_sgst=False)

    if _NO_GST.search(t):
        entities.update(include_gst=False, include_igst=False, include_cgst=False, include_sgst=False)

    return ParsedIntent(intent="set_gst", entities=entities)


def _customer(t: str, raw: str) -> Optional[ParsedIntent]:
    if not mentions_customer(t):
        return None
    return ParsedIntent(intent="set_customer", entities=extract_customer_entities(raw))


def _charge(t: str) -> Optional[ParsedIntent]:
    m = _CHARGE_RE.search(t)
    if not m:
        return None
    key = _CHARGE_KEYS.get(m.group(1), m.group(1))
    return ParsedIntent(intent="set_charge", entities={
        "key": key,
        "amount": to_decimal(m.group(2)),
        "percent": bool(m.group(3)) and key == "insurance",
    })


def _discount(t: str) -> Optional[ParsedIntent]:
    m = _DISCOUNT_RE.search(t)
    if not m:
        return None
    entities = {"discount": to_decimal(m.group(1))}
    unit = m.group(2)
    if unit in ("%", "percent"):
        entities["discount_type"] = "percent"
    elif unit:
        entities["discount_type"] = "amount"
    if m.group(3):
        name = clean_product_query(m.group(3))
        if name:
            entities["name"] = name
    return ParsedIntent(intent="set_discount", entities=entities)


def _finalize(t: str) -> Optional[ParsedIntent]:
    if _FINALIZE_RE.search(t):
        return ParsedIntent(intent="finalize", entities={})
    return None


def _remove(t: str) -> Optional[ParsedIntent]:
    m = _REMOVE_RE.match(t)
    if not m:
        return None
    name = clean_product_query(m.group(1) or m.group(2))
    if not name:
        return None
    return ParsedIntent(intent="remove_item", entities={"name": name})


def _set_qty(t: str) -> Optional[ParsedIntent]:
    m = _SET_QTY_RE.match(t) or _ITEM_QTY_RE.match(t)
    if not m:
        return None
    name = clean_product_query(m.group(1))
    if not name:
        return None
    return ParsedIntent(intent="set_qty", entities={"name": name, "qty": to_decimal(m.group(2))})


def _explicit_add(t: str) -> Optional[ParsedIntent]:
    if not _ADD_RE.search(t):
        return None
    qty, name = parse_quantity_and_query(t)
    if len(name) <= 1:
        return None
    return ParsedIntent(intent="add_item", entities={"name": name, "qty": qty})


def parse_local_intent(text: str) -> Optional[ParsedIntent]:
    """
    First matching rule wins:
    payment mode, split, credit, advance, invoice type, GST, customer,
    extra charge, discount, finalize, remove, quantity change, explicit add.
    """
    raw = str(text or '')
    t = raw.lower().strip()
    if not t:
        return None

    for step in (_payment_mode, _split_payment, _credit_payment, _advance_payment,
                 _invoice_type, _gst):
        parsed = step(t)
        if parsed is not None:
            return parsed

    parsed = _customer(t, raw)
    if parsed is not None:
        return parsed

    for step in (_charge, _discount, _finalize, _remove, _set_qty, _explicit_add):
        parsed = step(t)
        if parsed is not None:
            return parsed
    return None


# --- Payload hygiene ---

def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and not math.isfinite(value):
        return True
    if isinstance(value, Decimal) and not value.is_finite():
        return True
    return False


def strip_absent(value: Any) -> Any:
    """Recursively drops None and non-finite numbers from dicts and lists."""
    if isinstance(value, dict):
        return {k: strip_absent(v) for k, v in value.items() if not _is_absent(v)}
    if isinstance(value, (list, tuple)):
        return [strip_absent(v) for v in value if not _is_absent(v)]
    return value


def find_absent_paths(value: Any, base: str = "") -> List[str]:
    """Dotted paths ("cart_lines[0].price") of every absent value."""
    paths = []

    def walk(val, path):
        if _is_absent(val):
            paths.append(path or "<root>")
        elif isinstance(val, dict):
            for k, v in val.items():
                walk(v, f"{path}.{k}" if path else str(k))
        elif isinstance(val, (list, tuple)):
            for i, v in enumerate(val):
                walk(v, f"{path}[{i}]")

    walk(value, base)
    return paths

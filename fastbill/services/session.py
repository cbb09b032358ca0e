"""
Voice billing session.

Turns finalized utterances into cart, settings and customer changes.
Every utterance is parsed (remote parser when configured and healthy,
local cascade otherwise) and routed to exactly one handler. Handlers
either apply the change or leave a bounded list of suggestions for the
cashier to pick from. All user-facing feedback goes to the chip log.
"""
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from threading import RLock
from typing import Any, Dict, List, Optional

from fuzzywuzzy import fuzz, process

from fastbill.core.config import is_remote_parser_enabled
from fastbill.domain.errors import FinalizeBlocked, InvalidPick, RemoteParserError
from fastbill.domain.intents.parser import (
    find_absent_paths,
    parse_local_intent,
    parse_quantity_and_query,
    clean_product_query,
    strip_absent,
)
from fastbill.domain.matching.customers import (
    extract_customer_entities,
    extract_phone_from_utterance,
    mentions_customer,
    resolve_customer,
    selected_customer,
)
from fastbill.domain.matching.product_matcher import (
    enhanced_product_matcher,
    find_tied_variants,
    learn_from_correction,
    should_show_brand_selection,
)
from fastbill.domain.money import ZERO, coerce_quantity, format_rate, format_rupees, round2, to_decimal
from fastbill.domain.pricing.line import build_cart_line, enrich_cart_line, infer_discount
from fastbill.domain.pricing.order import compute_totals, resolve_credit_due_date, validate_split_payment
from fastbill.domain.pricing.tax import GST_RATE_CHOICES, normalize_gst_entities, scheme_for_choice
from fastbill.domain.schemas import (
    CHARGE_KEYS,
    CartLine,
    CgstSgstScheme,
    Chip,
    Customer,
    GstScheme,
    IgstScheme,
    InventoryProduct,
    OrderSettings,
    OrderTotals,
    ParsedIntent,
    Suggestion,
)
from fastbill.services.remote_parser import CircuitBreaker, RemoteIntentParser
from fastbill.utils.logging_config import get_logger, session_context

logger = get_logger(__name__)

# Intent aliases accepted from either parser
ADD_INTENTS = {"add_item", "add_to_cart", "addproduct", "add_product", "add", "additem",
               "insert_item", "insert_to_cart"}
QTY_INTENTS = {"change_qty", "update_qty", "set_qty"}
REMOVE_INTENTS = {"remove_item", "delete_item"}
INTENT_HINTS = sorted(ADD_INTENTS | QTY_INTENTS | REMOVE_INTENTS | {
    "set_customer", "set_charge", "set_invoice_type", "set_gst", "set_payment",
    "set_discount", "finalize",
})

STRONG_CONFIDENCE = 0.96
AUTO_ADD_CONFIDENCE = 80.0
MAX_SUGGESTIONS = 5
MAX_PICK = 9
VISIBLE_CHIPS = 10
RETAINED_CHIPS = 30
LINE_MATCH_CUTOFF = 70
PAYMENT_MODES = ("cash", "upi", "card", "split", "credit", "advance")
REQUIRED_PAYLOAD_FIELDS = ("mode", "cart_lines", "settings", "totals", "payment_flags",
                           "payment_summary", "payment_mode", "is_paid")

OFFLINE_NOTICE = "Voice assistant is offline, using local commands for now"
NOT_UNDERSTOOD = "Sorry, I could not understand that"


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING_TRANSCRIPT = "finalizing_transcript"
    DISAMBIGUATING = "disambiguating"


@dataclass
class RouteResult:
    """
    status is one of: "applied", "prompt", "not_found", "blocked", "ignored".
    """
    intent: str
    status: str
    message: str = ""
    invoice_id: Optional[str] = None


def _fmt_qty(qty: Decimal) -> str:
    return str(int(qty)) if qty == qty.to_integral() else str(qty.normalize())


def _scheme_label(scheme) -> str:
    if isinstance(scheme, IgstScheme):
        return f"IGST {format_rate(scheme.rate)}"
    if isinstance(scheme, CgstSgstScheme):
        return f"CGST {format_rate(scheme.cgst_rate)} + SGST {format_rate(scheme.sgst_rate)}"
    if isinstance(scheme, GstScheme):
        return f"GST {format_rate(scheme.rate)}"
    return "No GST"


class VoiceBillingSession:
    def __init__(self, inventory, customers, invoices, learning_store=None,
                 remote_parser: Optional[RemoteIntentParser] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 business_id: Optional[str] = None, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.business_id = business_id
        self.inventory_source = inventory
        self.customer_store = customers
        self.invoice_store = invoices
        self.learning_store = learning_store
        if remote_parser is None and is_remote_parser_enabled():
            remote_parser = RemoteIntentParser(user_id=business_id)
        self.remote_parser = remote_parser
        self.breaker = breaker or CircuitBreaker()

        self.lock = RLock()
        self.state = SessionState.IDLE
        self.cart: List[CartLine] = []
        self.settings = OrderSettings()
        self.customer: Optional[Customer] = None
        self.suggestions: List[Suggestion] = []
        self.pending_gst_mode: Optional[str] = None
        self.chips = deque(maxlen=RETAINED_CHIPS)
        self.last_intent: Optional[str] = None

        self.inventory: List[InventoryProduct] = []
        self.refresh_inventory()

    # --- Collaborators ---

    def refresh_inventory(self) -> None:
        self.inventory = list(self.inventory_source.list_products(self.business_id))
        logger.info(f"Session {self.session_id}: {len(self.inventory)} products loaded")

    # --- Chips ---

    def add_chip(self, text: str, chip_type: str = "info", invoice_id: Optional[str] = None) -> Chip:
        chip = Chip(text=text, type=chip_type, invoice_id=invoice_id)
        self.chips.append(chip)
        return chip

    @property
    def visible_chips(self) -> List[Chip]:
        """Newest first."""
        return list(reversed(self.chips))[:VISIBLE_CHIPS]

    # --- Listening ---

    def start_listening(self) -> SessionState:
        with self.lock:
            if self.state in (SessionState.IDLE, SessionState.DISAMBIGUATING):
                self.state = SessionState.LISTENING
            return self.state

    def stop_listening(self) -> SessionState:
        """Safe to call any number of times. Never interrupts routing."""
        with self.lock:
            if self.state == SessionState.LISTENING:
                self.state = SessionState.DISAMBIGUATING if self.suggestions else SessionState.IDLE
            return self.state

    def submit_transcript(self, text: str) -> RouteResult:
        """Parses and routes one finalized utterance."""
        raw = str(text or "").strip()
        if not raw:
            self.stop_listening()
            return RouteResult(intent="none", status="ignored")

        with session_context(self.session_id):
            with self.lock:
                self.state = SessionState.FINALIZING_TRANSCRIPT
            # Parsing may hit the network, so it runs outside the cart lock
            parsed = self.parse_utterance(raw)
            return self.route_intent(parsed, raw)

    # --- Parsing ---

    def parse_utterance(self, text: str) -> Optional[ParsedIntent]:
        """
        Customer wording always becomes set_customer. Otherwise the remote
        parser is tried while the breaker is closed, with the local cascade
        as fallback.
        """
        if mentions_customer(text):
            return ParsedIntent(intent="set_customer", entities=extract_customer_entities(text))

        if self.remote_parser is not None:
            if self.breaker.allow_request():
                try:
                    parsed = self.remote_parser.parse(text, intent_hints=INTENT_HINTS)
                    self.breaker.record_success()
                    if parsed is not None:
                        return parsed
                except RemoteParserError as e:
                    logger.warning(f"Remote parser failed: {e}")
                    self.breaker.record_failure()
                    if self.breaker.should_notify():
                        self.add_chip(OFFLINE_NOTICE, "warning")
            elif self.breaker.should_notify():
                self.add_chip(OFFLINE_NOTICE, "warning")

        return parse_local_intent(text)

    # --- Routing ---

    def route_intent(self, parsed: Optional[ParsedIntent], raw_text: str = "") -> RouteResult:
        """Applies one intent. Runs to completion under the session lock."""
        with self.lock:
            # A new utterance supersedes whatever was still waiting for a pick
            self.suggestions = []
            self.pending_gst_mode = None
            try:
                result = self._dispatch(parsed, raw_text)
            finally:
                self.state = SessionState.DISAMBIGUATING if self.suggestions else SessionState.IDLE
            self.last_intent = result.intent
            logger.info(f"Routed '{raw_text}' -> {result.intent} ({result.status})")
            return result

    def _dispatch(self, parsed: Optional[ParsedIntent], raw_text: str) -> RouteResult:
        if parsed is None:
            return self._add_item({}, raw_text)

        intent = parsed.intent.strip().lower()
        entities = parsed.entities or {}
        if intent in ADD_INTENTS:
            return self._add_item(entities, raw_text)
        if intent in QTY_INTENTS:
            return self._update_qty(entities)
        if intent in REMOVE_INTENTS:
            return self._remove_item(entities)
        if intent == "set_customer":
            return self._set_customer(entities, raw_text)
        if intent == "set_gst":
            return self._set_gst(entities)
        if intent == "set_payment":
            return self._set_payment(entities)
        if intent == "set_invoice_type":
            return self._set_invoice_type(entities)
        if intent == "set_charge":
            return self._set_charge(entities)
        if intent == "set_discount":
            return self._set_discount(entities)
        if intent == "finalize":
            return self._finalize_from_voice()

        # Unknown remote intent: try the local rules, then treat it as a product
        local = parse_local_intent(raw_text)
        if local is not None and local.intent != intent:
            return self._dispatch(local, raw_text)
        return self._add_item({}, raw_text)

    # --- Products ---

    def _find_product(self, entities: Dict[str, Any]) -> Optional[InventoryProduct]:
        wanted_id = entities.get("product_id") or entities.get("id")
        wanted_sku = entities.get("sku")
        wanted_name = str(entities.get("name") or entities.get("product_name") or "").strip().lower()
        for product in self.inventory:
            if wanted_id and product.id == str(wanted_id):
                return product
            if wanted_sku and product.sku == str(wanted_sku):
                return product
        if wanted_name:
            return next((p for p in self.inventory if p.display_name.lower() == wanted_name), None)
        return None

    def _is_strong_identifier(self, entities: Dict[str, Any]) -> bool:
        if entities.get("sku") or entities.get("product_id") or entities.get("exact") is True:
            return True
        confidence = to_decimal(entities.get("confidence"))
        return confidence >= Decimal(str(STRONG_CONFIDENCE))

    def _add_item(self, entities: Dict[str, Any], raw_text: str) -> RouteResult:
        name = str(entities.get("name") or entities.get("product_name") or entities.get("query") or "").strip()
        qty_value = entities.get("qty", entities.get("quantity"))
        if name:
            query = clean_product_query(name) or name.lower()
            qty = coerce_quantity(qty_value, voice=True) if qty_value is not None else Decimal(1)
        else:
            qty, query = parse_quantity_and_query(raw_text)
            if qty_value is not None:
                qty = coerce_quantity(qty_value, voice=True)

        if self._is_strong_identifier(entities):
            product = self._find_product(entities)
            if product is not None:
                return self._apply_product(product, qty, query=None)

        if len(query) < 2:
            self.add_chip(NOT_UNDERSTOOD, "warning")
            return RouteResult(intent="add_item", status="not_found", message=NOT_UNDERSTOOD)

        brand = should_show_brand_selection(query, self.inventory)
        if brand.should_show:
            self._offer_products([(p, 0.0) for p in brand.products[:MAX_PICK]], qty, query)
            self.add_chip(brand.message)
            return RouteResult(intent="add_item", status="prompt", message=brand.message)

        matches = enhanced_product_matcher(query, self.inventory, store=self.learning_store)
        if not matches:
            message = f'No products found for "{query}"'
            self.add_chip(message, "warning")
            return RouteResult(intent="add_item", status="not_found", message=message)

        tied = find_tied_variants(matches)
        if tied:
            self._offer_products([(m.product, m.confidence) for m in tied], qty, query)
            message = f'Which "{query}"? Pick a variant'
            self.add_chip(message)
            return RouteResult(intent="add_item", status="prompt", message=message)

        strong = [m for m in matches if m.confidence >= AUTO_ADD_CONFIDENCE]
        if len(strong) == 1:
            return self._apply_product(strong[0].product, qty, query=query)

        self._offer_products([(m.product, m.confidence) for m in matches[:MAX_SUGGESTIONS]], qty, query)
        message = f'Did you mean one of these for "{query}"?'
        self.add_chip(message)
        return RouteResult(intent="add_item", status="prompt", message=message)

    def _offer_products(self, products, qty: Decimal, query: str) -> None:
        self.suggestions = [
            Suggestion(
                kind="product",
                key=p.key,
                label=p.display_name,
                sublabel=" • ".join(x for x in (p.brand, p.unit, p.sku) if x),
                confidence=confidence,
                quantity=qty,
                query=query,
                product=p,
            )
            for p, confidence in products
        ]

    def _apply_product(self, product: InventoryProduct, qty: Decimal, query: Optional[str]) -> RouteResult:
        line = self.add_product(product, qty)
        if query and self.learning_store is not None:
            learn_from_correction(self.learning_store, query, product)
        message = f"Added {_fmt_qty(qty)} × {line.name}"
        self.add_chip(message, "success")
        return RouteResult(intent="add_item", status="applied", message=message)

    def add_product(self, product: InventoryProduct, qty: Any = 1) -> CartLine:
        """Adds to the cart, merging into an existing row for the same product."""
        with self.lock:
            quantity = coerce_quantity(qty, voice=True)
            if product.id:
                for line in self.cart:
                    if line.id == product.id:
                        line.quantity = line.quantity + quantity
                        return line
            line = build_cart_line(product, self.settings, quantity, source="voice")
            self.cart.append(line)
            return line

    def add_manual_line(self, name: str, price: Any, quantity: Any = 1) -> CartLine:
        """Manual row: `price` is the gross unit price, no tax snapshot."""
        with self.lock:
            line = CartLine(source="manual", name=name, price=price, quantity=quantity)
            self.cart.append(line)
            return line

    def _find_line(self, name: Optional[str]) -> Optional[CartLine]:
        if not self.cart:
            return None
        if not name:
            return self.cart[-1]
        choices = {line.cart_line_id: line.name for line in self.cart}
        best = process.extractOne(str(name), choices, scorer=fuzz.token_set_ratio, score_cutoff=LINE_MATCH_CUTOFF)
        if best is None:
            return None
        line_id = best[2]
        return next(line for line in self.cart if line.cart_line_id == line_id)

    def _update_qty(self, entities: Dict[str, Any]) -> RouteResult:
        name = entities.get("name") or entities.get("product_name")
        line = self._find_line(name)
        if line is None:
            message = f'"{name}" is not in the cart' if name else "Cart is empty"
            self.add_chip(message, "warning")
            return RouteResult(intent="set_qty", status="not_found", message=message)

        qty = coerce_quantity(entities.get("qty", entities.get("quantity")), voice=True)
        if qty == 0:
            self.cart.remove(line)
            message = f"Removed {line.name}"
        else:
            line.quantity = qty
            message = f"{line.name} quantity set to {_fmt_qty(qty)}"
        self.add_chip(message, "success")
        return RouteResult(intent="set_qty", status="applied", message=message)

    def _remove_item(self, entities: Dict[str, Any]) -> RouteResult:
        name = entities.get("name") or entities.get("product_name")
        line = self._find_line(name) if name else None
        if line is None:
            message = f'"{name}" is not in the cart' if name else "Which item should I remove?"
            self.add_chip(message, "warning")
            return RouteResult(intent="remove_item", status="not_found", message=message)
        self.cart.remove(line)
        message = f"Removed {line.name}"
        self.add_chip(message, "success")
        return RouteResult(intent="remove_item", status="applied", message=message)

    def _set_discount(self, entities: Dict[str, Any]) -> RouteResult:
        name = entities.get("name") or entities.get("product_name")
        line = self._find_line(name)
        if line is None:
            message = f'"{name}" is not in the cart' if name else "Add an item before giving a discount"
            self.add_chip(message, "warning")
            return RouteResult(intent="set_discount", status="not_found", message=message)

        discount = infer_discount(
            entities.get("discount", entities.get("value")),
            entities.get("discount_type") or entities.get("type"),
            entities.get("discount_percent"),
            entities.get("discount_amount"),
        )
        line.discount_percent = discount["discount_percent"]
        line.discount_amount = discount["discount_amount"]
        if discount["discount_amount"] > 0:
            message = f"Discount {format_rupees(discount['discount_amount'])} on {line.name}"
        else:
            message = f"Discount {format_rate(discount['discount_percent'])} on {line.name}"
        self.add_chip(message, "success")
        return RouteResult(intent="set_discount", status="applied", message=message)

    # --- Customer ---

    def _known_customer(self, entities: Dict[str, Any], raw_text: str) -> Optional[Customer]:
        """Exact phone, then exact email, straight from the store."""
        phone = entities.get("phone") or extract_phone_from_utterance(raw_text)
        hit = self.customer_store.find_by_phone(phone) if phone else None
        if hit is None and entities.get("email"):
            hit = self.customer_store.find_by_email(entities["email"])
        return hit

    def _set_customer(self, entities: Dict[str, Any], raw_text: str) -> RouteResult:
        known = self._known_customer(entities, raw_text)
        if known is not None:
            resolution = selected_customer(known)
        else:
            resolution = resolve_customer(entities, raw_text, self.customer_store.list())
        if resolution.outcome == "prompt":
            self.suggestions = [
                Suggestion(
                    kind="customer",
                    key=c.id or c.name,
                    label=c.name or c.phone or "",
                    sublabel=" • ".join(x for x in (c.phone, c.email, c.address) if x),
                    customer=c,
                )
                for c in resolution.candidates
            ]
            self.add_chip(resolution.message)
            return RouteResult(intent="set_customer", status="prompt", message=resolution.message)

        self.customer = resolution.customer
        chip_type = "success" if resolution.outcome == "selected" else "info"
        self.add_chip(resolution.message, chip_type)
        return RouteResult(intent="set_customer", status="applied", message=resolution.message)

    # --- Settings ---

    def _set_gst(self, entities: Dict[str, Any]) -> RouteResult:
        decision = normalize_gst_entities(entities, self.settings)
        if decision.needs_rate:
            self.pending_gst_mode = decision.mode
            self.suggestions = [
                Suggestion(kind="gst_rate", key=str(rate), label=f"{rate}%", rate=Decimal(rate))
                for rate in GST_RATE_CHOICES
            ]
            message = "Which GST rate? 0%, 5%, 12% or 18%"
            self.add_chip(message)
            return RouteResult(intent="set_gst", status="prompt", message=message)

        self.settings.set_tax_scheme(decision.scheme)
        message = "GST disabled" if decision.disabled else f"{_scheme_label(decision.scheme)} applied"
        self.add_chip(message, "success")
        return RouteResult(intent="set_gst", status="applied", message=message)

    def _set_payment(self, entities: Dict[str, Any]) -> RouteResult:
        mode = str(entities.get("mode") or entities.get("payment_mode") or "").strip().lower()
        if mode not in PAYMENT_MODES:
            message = f"Unknown payment mode: {mode or '?'}"
            self.add_chip(message, "warning")
            return RouteResult(intent="set_payment", status="not_found", message=message)

        split = entities.get("split_payment") or entities.get("split")
        if mode == "split" and isinstance(split, dict):
            split = {k: split.get(k, 0) for k in ("cash", "upi", "card")}
        else:
            split = None

        self.settings.set_payment(
            mode,
            split=split,
            credit_due_days=entities.get("credit_due_days"),
            credit_due_date=entities.get("credit_due_date"),
            advance_paid=entities.get("advance_paid"),
            advance_due_date=entities.get("advance_due_date"),
        )
        message = f"Payment: {mode.upper() if mode == 'upi' else mode.title()}"
        self.add_chip(message, "success")

        if mode == "split" and self.settings.split_payment.total == 0:
            self.add_chip("Tell the split amounts, e.g. 'payment split 500 cash 300 upi'")
        if mode == "credit" and not (entities.get("credit_due_days") or entities.get("credit_due_date")):
            self.add_chip("Credit terms? Say 'credit 15 days' or 'credit on 25/12'")
        return RouteResult(intent="set_payment", status="applied", message=message)

    def _set_invoice_type(self, entities: Dict[str, Any]) -> RouteResult:
        wanted = entities.get("type") or entities.get("invoice_type")
        if not wanted:
            message = "Which invoice type? Retail, Tax, Proforma, Estimate or Quote"
            self.add_chip(message, "warning")
            return RouteResult(intent="set_invoice_type", status="not_found", message=message)
        label = self.settings.set_invoice_type(wanted)
        message = f"Invoice type: {label}"
        self.add_chip(message, "success")
        return RouteResult(intent="set_invoice_type", status="applied", message=message)

    def _set_charge(self, entities: Dict[str, Any]) -> RouteResult:
        key = str(entities.get("key") or entities.get("charge") or "").strip().lower()
        if key == "packing":
            key = "packaging"
        if key not in CHARGE_KEYS:
            message = f"Unknown charge: {key or '?'}"
            self.add_chip(message, "warning")
            return RouteResult(intent="set_charge", status="not_found", message=message)

        percent = bool(entities.get("percent"))
        amount = entities.get("amount", entities.get("value"))
        self.settings.set_charge(key, amount, percent=percent)
        shown = format_rate(amount) if percent and key == "insurance" else format_rupees(amount)
        message = f"{key.title()} charge: {shown}"
        self.add_chip(message, "success")
        return RouteResult(intent="set_charge", status="applied", message=message)

    # --- Suggestions ---

    def pick(self, index: int) -> RouteResult:
        """1-based pick from the pending suggestions."""
        with self.lock:
            if not self.suggestions or not (1 <= index <= min(MAX_PICK, len(self.suggestions))):
                raise InvalidPick(index, len(self.suggestions))
            chosen = self.suggestions[index - 1]
            self.suggestions = []
            try:
                return self._apply_suggestion(chosen)
            finally:
                self.state = SessionState.IDLE

    def pick_first(self) -> Optional[RouteResult]:
        with self.lock:
            if not self.suggestions:
                return None
            return self.pick(1)

    def dismiss(self) -> None:
        with self.lock:
            self.suggestions = []
            self.pending_gst_mode = None
            if self.state == SessionState.DISAMBIGUATING:
                self.state = SessionState.IDLE

    def _apply_suggestion(self, chosen: Suggestion) -> RouteResult:
        if chosen.kind == "product":
            return self._apply_product(chosen.product, chosen.quantity, query=chosen.query or None)

        if chosen.kind == "customer":
            self.customer = chosen.customer
            message = f"Customer: {chosen.label}"
            self.add_chip(message, "success")
            return RouteResult(intent="set_customer", status="applied", message=message)

        scheme = scheme_for_choice(self.pending_gst_mode or "gst", chosen.rate)
        self.pending_gst_mode = None
        self.settings.set_tax_scheme(scheme)
        message = f"{_scheme_label(scheme)} applied"
        self.add_chip(message, "success")
        return RouteResult(intent="set_gst", status="applied", message=message)

    # --- Totals & finalize ---

    def totals(self) -> OrderTotals:
        with self.lock:
            return compute_totals(self.cart, self.settings)

    def _payment_block(self, totals: OrderTotals) -> Dict[str, Any]:
        s = self.settings
        mode = s.payment_mode
        grand = totals.grand_total
        advance = round2(s.advance_paid or ZERO) if mode == "advance" else ZERO
        summary = {
            "mode": mode,
            "grand_total": str(grand),
            "amount_paid": str(ZERO if mode == "credit" else (advance if mode == "advance" else grand)),
            "balance_due": str(grand if mode == "credit" else (round2(grand - advance) if mode == "advance" else ZERO)),
        }
        if mode == "split":
            summary["split"] = s.split_payment.model_dump(mode="json")
        if mode == "advance":
            summary["advance_paid"] = str(advance)
            summary["advance_due_date"] = s.advance_due_date
        if mode == "credit":
            summary["credit_due_date"] = resolve_credit_due_date(s)
        flags = {
            "is_paid": mode in ("cash", "upi", "card", "split"),
            "is_credit": mode == "credit",
            "is_advance": mode == "advance",
            "is_split": mode == "split",
        }
        return {"payment_flags": flags, "payment_summary": summary}

    def build_invoice_payload(self, totals: Optional[OrderTotals] = None) -> Dict[str, Any]:
        with self.lock:
            totals = totals or self.totals()
            settings = self.settings.model_dump(mode="json")
            settings.update(
                include_gst=self.settings.include_gst,
                include_cgst=self.settings.include_cgst,
                include_sgst=self.settings.include_sgst,
                include_igst=self.settings.include_igst,
            )
            payment = self._payment_block(totals)
            return {
                "mode": "voice",
                "cart_lines": [enrich_cart_line(line) for line in self.cart],
                "settings": settings,
                "customer": self.customer.model_dump(mode="json") if self.customer else None,
                "totals": totals.model_dump(mode="json"),
                "payment_flags": payment["payment_flags"],
                "payment_summary": payment["payment_summary"],
                "payment_mode": self.settings.payment_mode,
                "credit_due_date": resolve_credit_due_date(self.settings),
                "is_paid": payment["payment_flags"]["is_paid"],
                "meta": {
                    "session_id": self.session_id,
                    "business_id": self.business_id,
                    "invoice_type": self.settings.invoice_type,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            }

    def validate_for_finalize(self, totals: OrderTotals) -> None:
        """Raises FinalizeBlocked. Nothing is written when this fails."""
        if not self.cart:
            raise FinalizeBlocked(FinalizeBlocked.EMPTY_CART, "Cart is empty")
        if totals.grand_total <= 0:
            raise FinalizeBlocked(FinalizeBlocked.NON_POSITIVE_TOTAL,
                                  f"Total must be positive, got {format_rupees(totals.grand_total)}")
        if not validate_split_payment(self.settings, totals.grand_total):
            raise FinalizeBlocked(
                FinalizeBlocked.SPLIT_MISMATCH,
                f"Split {format_rupees(self.settings.split_payment.total)} does not match "
                f"total {format_rupees(totals.grand_total)}",
            )

    def finalize(self) -> Dict[str, Any]:
        """
        Validates, then persists the staged customer and the invoice and
        resets the cart. Optional values that are absent are left out of
        the payload and reported in `stripped_paths`.
        """
        with self.lock:
            totals = self.totals()
            try:
                self.validate_for_finalize(totals)
                payload = self.build_invoice_payload(totals)
                missing = [k for k in REQUIRED_PAYLOAD_FIELDS if payload.get(k) is None]
                if missing:
                    raise FinalizeBlocked(FinalizeBlocked.UNDEFINED_FIELDS,
                                          "Invoice payload is incomplete", paths=missing)
            except FinalizeBlocked as e:
                logger.warning(f"Finalize blocked: {e}")
                raise

            stripped = find_absent_paths(payload)
            if stripped:
                logger.warning(f"Absent values left out of invoice payload: {', '.join(stripped)}")
            payload = strip_absent(payload)

            if self.customer is not None and self.customer.is_draft:
                self.customer = self.customer_store.upsert(self.customer)
                payload["customer"] = strip_absent(self.customer.model_dump(mode="json"))

            invoice_id = self.invoice_store.save_invoice(payload)
            logger.info(f"Invoice {invoice_id} saved: {len(self.cart)} lines, total {totals.grand_total}")
            self.add_chip(f"Invoice saved: {invoice_id}", "success", invoice_id=invoice_id)
            self.reset_cart()
            return {"invoice_id": invoice_id, "totals": totals, "stripped_paths": stripped}

    def _finalize_from_voice(self) -> RouteResult:
        try:
            result = self.finalize()
        except FinalizeBlocked as e:
            self.add_chip(f"Cannot save: {e.detail}", "error")
            return RouteResult(intent="finalize", status="blocked", message=e.reason)
        return RouteResult(intent="finalize", status="applied",
                           message=f"Invoice saved: {result['invoice_id']}", invoice_id=result["invoice_id"])

    def reset_cart(self) -> None:
        """Clears the bill. Tax scheme, rates and invoice type carry over."""
        with self.lock:
            self.cart = []
            self.customer = None
            self.suggestions = []
            self.pending_gst_mode = None
            self.settings = OrderSettings(
                invoice_type=self.settings.invoice_type,
                tax_scheme=self.settings.tax_scheme,
                gst_rate=self.settings.gst_rate,
                cgst_rate=self.settings.cgst_rate,
                sgst_rate=self.settings.sgst_rate,
                igst_rate=self.settings.igst_rate,
            )

    # --- View ---

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "session_id": self.session_id,
                "state": self.state.value,
                "last_intent": self.last_intent,
                "cart": [enrich_cart_line(line) for line in self.cart],
                "settings": self.settings.model_dump(mode="json"),
                "customer": self.customer.model_dump(mode="json") if self.customer else None,
                "totals": self.totals().model_dump(mode="json"),
                "suggestions": [s.model_dump(mode="json") for s in self.suggestions],
                "pending_gst_mode": self.pending_gst_mode,
                "chips": [c.model_dump(mode="json") for c in self.visible_chips],
                "remote_parser": self.breaker.status() if self.remote_parser is not None else None,
            }

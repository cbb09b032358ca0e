"""
Collaborators the voice session talks to: inventory, customers, invoices.
Only in-memory implementations ship here; a deployment plugs in its own.
"""
import uuid
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Sequence

from fastbill.domain.matching.customers import new_customer_id, normalize_phone, same_phone
from fastbill.domain.schemas import Customer, InventoryProduct
from fastbill.utils.logging_config import get_logger

logger = get_logger(__name__)


class InventorySource(Protocol):
    def list_products(self, business_id: Optional[str] = None) -> List[InventoryProduct]:
        ...


class CustomerStore(Protocol):
    def find_by_phone(self, phone: str) -> Optional[Customer]:
        ...

    def find_by_email(self, email: str) -> Optional[Customer]:
        ...

    def list(self) -> List[Customer]:
        ...

    def upsert(self, customer: Customer) -> Customer:
        ...


class InvoiceStore(Protocol):
    def save_invoice(self, payload: Dict[str, Any]) -> str:
        ...


class InMemoryInventory:
    def __init__(self, products: Sequence[Any] = ()):
        self.products = [p if isinstance(p, InventoryProduct) else InventoryProduct(**p) for p in products]

    def list_products(self, business_id: Optional[str] = None) -> List[InventoryProduct]:
        return list(self.products)


class InMemoryCustomerStore:
    def __init__(self, customers: Sequence[Any] = ()):
        self.lock = Lock()
        self.customers: List[Customer] = [c if isinstance(c, Customer) else Customer(**c) for c in customers]

    def find_by_phone(self, phone: str) -> Optional[Customer]:
        if not normalize_phone(phone):
            return None
        return next((c for c in self.list() if same_phone(c.phone, phone)), None)

    def find_by_email(self, email: str) -> Optional[Customer]:
        wanted = str(email or "").strip().lower()
        if not wanted:
            return None
        return next((c for c in self.list() if (c.email or "").lower() == wanted), None)

    def list(self) -> List[Customer]:
        with self.lock:
            return list(self.customers)

    def upsert(self, customer: Customer) -> Customer:
        saved = customer.model_copy(update={"is_draft": False, "id": customer.id or new_customer_id()})
        with self.lock:
            for i, existing in enumerate(self.customers):
                if existing.id == saved.id:
                    self.customers[i] = saved
                    break
            else:
                self.customers.append(saved)
        logger.info(f"Customer saved: {saved.id} ({saved.name})")
        return saved


class InMemoryInvoiceStore:
    def __init__(self):
        self.lock = Lock()
        self.invoices: Dict[str, Dict[str, Any]] = {}

    def save_invoice(self, payload: Dict[str, Any]) -> str:
        invoice_id = f"INV-{uuid.uuid4().hex[:8].upper()}"
        with self.lock:
            self.invoices[invoice_id] = payload
        return invoice_id

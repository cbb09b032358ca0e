import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fastbill.domain.money import ZERO, clamp, coerce_quantity, to_decimal, to_optional_decimal


def _new_line_id() -> str:
    return f"line-{uuid.uuid4().hex[:12]}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PricingMode(str, Enum):
    """
    Which raw price field is authoritative and whether GST is already inside it.
    """
    MRP_INCLUSIVE = "MRP_INCLUSIVE"
    BASE_PLUS_GST = "BASE_PLUS_GST"
    SELLING_SIMPLE = "SELLING_SIMPLE"
    LEGACY = "LEGACY"


# Older catalog documents spell base-plus-tax differently
PRICING_MODE_ALIASES = {
    "BASE_PLUS_TAX": PricingMode.BASE_PLUS_GST,
    "SELLING": PricingMode.SELLING_SIMPLE,
}


def coerce_pricing_mode(value: Any) -> Optional[PricingMode]:
    """Returns the PricingMode for a raw value, or None when unrecognised."""
    if value is None:
        return None
    if isinstance(value, PricingMode):
        return value
    key = str(value).strip().upper()
    if key in PRICING_MODE_ALIASES:
        return PRICING_MODE_ALIASES[key]
    try:
        return PricingMode(key)
    except ValueError:
        return None


# --- Catalog ---

class InventoryProduct(BaseModel):
    """
    A product as the inventory collaborator returns it. Read-only to the core.
    Numeric fields tolerate strings like "Rs. 120" and garbage (coerced to 0).
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(None, description="Catalog document id.")
    sku: Optional[str] = Field(None, description="Stock keeping unit / barcode.")
    name: Optional[str] = Field(None, description="Display name.")
    product_name: Optional[str] = Field(None, description="Preferred name field on newer documents.")
    title: Optional[str] = Field(None, description="Name field used by imported catalogs.")
    label: Optional[str] = Field(None)
    brand: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    unit: Optional[str] = Field(None, description="Pack size or unit label (e.g. '100g').")
    hsn_code: Optional[str] = Field(None)

    pricing_mode: Optional[str] = Field(None, description="Raw pricing mode; see PricingMode.")
    gst_rate: Optional[Decimal] = Field(None, description="GST percentage (0, 5, 12, 18, 28).")
    tax_rate: Optional[Decimal] = Field(None, description="Legacy name for gst_rate.")
    mrp: Optional[Decimal] = Field(None, description="Tax-inclusive maximum retail price.")
    base_price: Optional[Decimal] = Field(None, description="Pre-tax price.")
    selling_price: Optional[Decimal] = Field(None)
    price: Optional[Decimal] = Field(None, description="Legacy price field.")
    selling_includes_gst: Optional[bool] = Field(None)

    @field_validator("id", "sku", mode="before")
    @classmethod
    def _stringify_ids(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("gst_rate", "tax_rate", "mrp", "base_price", "selling_price", "price", mode="before")
    @classmethod
    def _coerce_amounts(cls, v):
        return to_optional_decimal(v)

    @property
    def display_name(self) -> str:
        # product_name > name > title > label
        for candidate in (self.product_name, self.name, self.title, self.label):
            if candidate and str(candidate).strip():
                return str(candidate).strip()
        return ""

    @property
    def key(self) -> str:
        return self.id or self.sku or self.display_name


# --- Pricing ---

class UnitPriceSnapshot(BaseModel):
    """
    Canonical per-unit price. Immutable once computed.
    unit_price_gross = unit_price_net + tax_per_unit (to 2dp).
    """
    model_config = ConfigDict(frozen=True)

    unit_price_net: Decimal = Field(ZERO, description="Pre-tax price per unit.")
    unit_price_gross: Decimal = Field(ZERO, description="Tax-inclusive price per unit.")
    tax_per_unit: Decimal = Field(ZERO, description="unit_price_gross - unit_price_net, never negative.")
    tax_included_at_source: bool = Field(False, description="True when the source price already embedded tax.")
    pricing_explainer: str = Field("", description="Human readable breakdown of how the unit price was derived.")

    @property
    def effective_rate(self) -> Decimal:
        if self.unit_price_net == 0:
            return ZERO
        return self.tax_per_unit / self.unit_price_net


class CartLine(BaseModel):
    """
    One row of the cart. Owned by the cart; mutated in place by edits.
    `normalized` is absent for manual rows, which treat `price` as gross.
    """
    model_config = ConfigDict(validate_assignment=True)

    # source is declared first so the quantity validator can see it
    source: Literal["manual", "catalog", "voice"] = Field("manual")
    cart_line_id: str = Field(default_factory=_new_line_id)
    id: Optional[str] = Field(None, description="Catalog product id.")
    sku: Optional[str] = Field(None)

    name: str = Field("")
    brand: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    unit: Optional[str] = Field(None)
    hsn_code: Optional[str] = Field(None)

    quantity: Decimal = Field(Decimal(1))
    price: Decimal = Field(ZERO, description="Net for SELLING_SIMPLE/LEGACY rows, gross for manual rows.")
    discount_percent: Decimal = Field(ZERO)
    discount_amount: Decimal = Field(ZERO)
    pricing_mode: Optional[PricingMode] = Field(None)
    gst_rate: Decimal = Field(ZERO)
    inline_gst_rate: Optional[Decimal] = Field(None, description="Per-line GST override (selling modes only).")
    normalized: Optional[UnitPriceSnapshot] = Field(None)

    @field_validator("id", "sku", mode="before")
    @classmethod
    def _stringify_ids(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, v, info):
        voice = (info.data or {}).get("source") == "voice"
        return coerce_quantity(v, voice=voice)

    @field_validator("price", "discount_amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v):
        return clamp(to_decimal(v), ZERO)

    @field_validator("discount_percent", "gst_rate", mode="before")
    @classmethod
    def _coerce_percent(cls, v):
        return clamp(to_decimal(v), ZERO, Decimal(100))

    @field_validator("inline_gst_rate", mode="before")
    @classmethod
    def _coerce_inline_rate(cls, v):
        rate = to_optional_decimal(v)
        return None if rate is None else clamp(rate, ZERO, Decimal(100))

    @field_validator("pricing_mode", mode="before")
    @classmethod
    def _coerce_mode(cls, v):
        return coerce_pricing_mode(v)


class LineBreakdown(BaseModel):
    """Computed per read, never stored."""
    unit_net: Decimal
    unit_tax: Decimal
    unit_gross: Decimal
    unit_net_after_disc: Decimal
    unit_tax_after_disc: Decimal
    unit_gross_after_disc: Decimal
    line_net_after_disc: Decimal
    line_tax_after_disc: Decimal
    line_gross_after_disc: Decimal


class LineTotals(BaseModel):
    """Gross-side line totals used by the invoice preview."""
    line_gross: Decimal
    discount: Decimal
    line_gross_after_disc: Decimal
    line_net_after_disc: Decimal
    line_tax: Decimal


# --- Tax scheme (tagged union) ---

class NoTax(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["none"] = "none"


class GstScheme(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["gst"] = "gst"
    rate: Decimal = Decimal(18)


class CgstSgstScheme(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["cgst_sgst"] = "cgst_sgst"
    cgst_rate: Decimal = Decimal(9)
    sgst_rate: Decimal = Decimal(9)


class IgstScheme(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["igst"] = "igst"
    rate: Decimal = Decimal(18)


TaxScheme = Annotated[Union[NoTax, GstScheme, CgstSgstScheme, IgstScheme], Field(discriminator="kind")]


# --- Settings ---

class ExtraCharges(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    delivery_fee: Decimal = Field(ZERO)
    packaging_fee: Decimal = Field(ZERO)
    insurance_type: Literal["none", "flat", "percent"] = Field("none")
    insurance_value: Decimal = Field(ZERO)
    # Legacy fields, added on top of the new ones
    delivery_charge: Decimal = Field(ZERO)
    packing_charge: Decimal = Field(ZERO)
    other_charge: Decimal = Field(ZERO)

    @field_validator("delivery_fee", "packaging_fee", "insurance_value",
                     "delivery_charge", "packing_charge", "other_charge", mode="before")
    @classmethod
    def _coerce(cls, v):
        return to_decimal(v)


class SplitPayment(BaseModel):
    cash: Decimal = Field(ZERO)
    upi: Decimal = Field(ZERO)
    card: Decimal = Field(ZERO)

    @field_validator("cash", "upi", "card", mode="before")
    @classmethod
    def _coerce(cls, v):
        return clamp(to_decimal(v), ZERO)

    @property
    def total(self) -> Decimal:
        return self.cash + self.upi + self.card


PaymentMode = Literal["cash", "upi", "card", "split", "credit", "advance"]
INVOICE_TYPES = ("Retail", "Tax", "Proforma", "Estimate", "Quote")
CHARGE_KEYS = ("delivery", "packaging", "insurance", "other")


class OrderSettings(BaseModel):
    """
    Order-level configuration. Mutated through the named setters below.
    The include_* flags are read from the tax scheme, so at most one
    scheme is ever active. Rates of inactive schemes are remembered so
    toggling back restores them.
    """
    model_config = ConfigDict(validate_assignment=True)

    invoice_type: str = Field("Retail")
    tax_scheme: TaxScheme = Field(default_factory=NoTax)
    gst_rate: Decimal = Field(Decimal(18))
    cgst_rate: Decimal = Field(Decimal(9))
    sgst_rate: Decimal = Field(Decimal(9))
    igst_rate: Decimal = Field(Decimal(18))
    extras: ExtraCharges = Field(default_factory=ExtraCharges)

    payment_mode: PaymentMode = Field("cash")
    split_payment: SplitPayment = Field(default_factory=SplitPayment)
    credit_due_date: Optional[str] = Field(None)
    credit_due_days: Optional[int] = Field(None)
    advance_paid: Optional[Decimal] = Field(None)
    advance_due_date: Optional[str] = Field(None)

    @model_validator(mode="before")
    @classmethod
    def _scheme_from_flags(cls, data):
        # Accept the flag style (include_igst=True, igst_rate=18) used by older clients
        if not isinstance(data, dict) or "tax_scheme" in data:
            return data
        flags = {k: data.get(k) for k in ("include_gst", "include_cgst", "include_sgst", "include_igst")}
        if not any(v is not None for v in flags.values()):
            return data
        from fastbill.domain.pricing.tax import scheme_from_flags
        data = dict(data)
        data["tax_scheme"] = scheme_from_flags(
            include_gst=bool(flags["include_gst"]),
            include_cgst=bool(flags["include_cgst"]),
            include_sgst=bool(flags["include_sgst"]),
            include_igst=bool(flags["include_igst"]),
            gst_rate=data.get("gst_rate", 18),
            cgst_rate=data.get("cgst_rate", 9),
            sgst_rate=data.get("sgst_rate", 9),
            igst_rate=data.get("igst_rate", 18),
        )
        for k in flags:
            data.pop(k, None)
        return data

    @field_validator("gst_rate", "cgst_rate", "sgst_rate", "igst_rate", mode="before")
    @classmethod
    def _coerce_rate(cls, v):
        return clamp(to_decimal(v), ZERO, Decimal(100))

    @field_validator("advance_paid", mode="before")
    @classmethod
    def _coerce_advance(cls, v):
        return to_optional_decimal(v)

    @property
    def include_gst(self) -> bool:
        return self.tax_scheme.kind == "gst"

    @property
    def include_cgst(self) -> bool:
        return self.tax_scheme.kind == "cgst_sgst"

    @property
    def include_sgst(self) -> bool:
        return self.tax_scheme.kind == "cgst_sgst"

    @property
    def include_igst(self) -> bool:
        return self.tax_scheme.kind == "igst"

    def set_tax_scheme(self, scheme) -> None:
        self.tax_scheme = scheme
        if isinstance(scheme, GstScheme):
            self.gst_rate = scheme.rate
        elif isinstance(scheme, CgstSgstScheme):
            self.cgst_rate = scheme.cgst_rate
            self.sgst_rate = scheme.sgst_rate
        elif isinstance(scheme, IgstScheme):
            self.igst_rate = scheme.rate

    def set_invoice_type(self, invoice_type: str) -> str:
        wanted = str(invoice_type or "").strip().lower()
        for known in INVOICE_TYPES:
            if known.lower() == wanted:
                self.invoice_type = known
                return known
        self.invoice_type = str(invoice_type).strip().title() or "Retail"
        return self.invoice_type

    def set_charge(self, key: str, amount: Any, percent: bool = False) -> None:
        """
        Sets one extra charge. delivery/packaging/other replace the new-style
        fee; insurance switches between flat and percent.
        """
        value = clamp(to_decimal(amount), ZERO)
        if key == "delivery":
            self.extras.delivery_fee = value
        elif key == "packaging":
            self.extras.packaging_fee = value
        elif key == "insurance":
            self.extras.insurance_type = "percent" if percent else "flat"
            self.extras.insurance_value = value
        elif key == "other":
            self.extras.other_charge = value
        else:
            raise ValueError(f"Unknown charge: {key}")

    def set_payment(self, mode: str, split: Optional[Dict[str, Any]] = None,
                    credit_due_days: Optional[int] = None, credit_due_date: Optional[str] = None,
                    advance_paid: Any = None, advance_due_date: Optional[str] = None) -> None:
        self.payment_mode = mode
        if split is not None:
            self.split_payment = SplitPayment(**split)
        if credit_due_days is not None:
            self.credit_due_days = max(0, int(credit_due_days))
        if credit_due_date is not None:
            self.credit_due_date = credit_due_date
        if advance_paid is not None:
            self.advance_paid = advance_paid
        if advance_due_date is not None:
            self.advance_due_date = advance_due_date


# --- Totals ---

class TaxBreakdown(BaseModel):
    gst: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.gst + self.cgst + self.sgst + self.igst


class ExtrasTotals(BaseModel):
    delivery: Decimal = ZERO
    packaging: Decimal = ZERO
    insurance: Decimal = ZERO
    other: Decimal = ZERO
    total: Decimal = ZERO


class OrderTotals(BaseModel):
    """
    grand_total = subtotal + row_tax + tax_breakdown.total + extras.total.
    Rows that carry their own tax zero out the order-level breakdown.
    """
    subtotal: Decimal = ZERO
    row_tax: Decimal = ZERO
    tax_breakdown: TaxBreakdown = Field(default_factory=TaxBreakdown)
    extras: ExtrasTotals = Field(default_factory=ExtrasTotals)
    grand_total: Decimal = ZERO


class PreviewTaxRow(BaseModel):
    cart_line_id: str
    taxable_value: Decimal
    rate: Decimal
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO
    total: Decimal = ZERO


# --- Customers ---

class Customer(BaseModel):
    id: Optional[str] = Field(None)
    name: str = Field("")
    phone: Optional[str] = Field(None)
    email: Optional[str] = Field(None)
    address: Optional[str] = Field(None)
    is_draft: bool = Field(False, description="Staged during a session; persisted on finalize.")

    @field_validator("id", "phone", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None or v == "":
            return None
        return str(v)


# --- Intents ---

class ParsedIntent(BaseModel):
    intent: str
    entities: Dict[str, Any] = Field(default_factory=dict)


# --- Matching ---

class ProductMatch(BaseModel):
    product: InventoryProduct
    score: float
    confidence: float
    match_details: Dict[str, float] = Field(default_factory=dict)
    matched_fields: List[str] = Field(default_factory=list)
    is_brand_match: bool = False
    brand: Optional[str] = None
    is_learned: bool = False
    learned_from: Optional[str] = None


class BrandSelection(BaseModel):
    should_show: bool = False
    brand: Optional[str] = None
    products: List[InventoryProduct] = Field(default_factory=list)
    message: str = ""


class ProductSuggestion(BaseModel):
    key: str
    label: str
    sublabel: str = ""
    price: Optional[Decimal] = None
    unit: Optional[str] = None
    confidence: float = 0.0
    matched_fields: List[str] = Field(default_factory=list)
    is_learned: bool = False
    product: InventoryProduct


class LearnedCorrection(BaseModel):
    original_input: str
    selected_product: Dict[str, Optional[str]]
    timestamp: str = Field(default_factory=_utc_now)


# --- Session ---

class Suggestion(BaseModel):
    """One pickable option while the session is disambiguating."""
    kind: Literal["product", "customer", "gst_rate"]
    key: str
    label: str
    sublabel: str = ""
    confidence: float = 0.0
    quantity: Decimal = Decimal(1)
    query: str = ""
    product: Optional[InventoryProduct] = None
    customer: Optional[Customer] = None
    rate: Optional[Decimal] = None


class Chip(BaseModel):
    """Activity log entry."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    text: str
    type: Literal["info", "success", "warning", "error"] = "info"
    timestamp: str = Field(default_factory=_utc_now)
    invoice_id: Optional[str] = None

from decimal import Decimal
from typing import Any, Dict, Optional

from fastbill.domain.money import HUNDRED, ZERO, clamp, coerce_quantity, round2, to_decimal, to_optional_decimal
from fastbill.domain.schemas import (
    CartLine,
    InventoryProduct,
    LineBreakdown,
    LineTotals,
    OrderSettings,
    PricingMode,
    UnitPriceSnapshot,
)
from fastbill.domain.pricing.unit import (
    normalize_unit,
    resolve_gst_rate,
    resolve_pricing_mode,
    resolve_selling_includes_gst,
    resolve_selling_price,
)

ONE = Decimal(1)
NET_FIRST_MODES = (PricingMode.MRP_INCLUSIVE, PricingMode.BASE_PLUS_GST)
SELLING_MODES = (PricingMode.SELLING_SIMPLE, PricingMode.LEGACY)


def resolve_discount_percent(discount_percent: Any, discount_amount: Any,
                             unit_gross: Decimal, qty: Decimal) -> Decimal:
    """
    A positive discount amount wins over the percent. The amount is clamped
    to [0, unit_gross * qty] and turned into the equivalent percent.
    """
    amount = to_decimal(discount_amount)
    if amount > 0:
        base = unit_gross * qty
        if base <= 0:
            return ZERO
        return clamp(amount, ZERO, base) / base * HUNDRED
    return clamp(to_decimal(discount_percent), ZERO, HUNDRED)


def compute_line_breakdown(line: CartLine) -> LineBreakdown:
    """
    Per-unit and per-line net/tax/gross after discount.

    Catalog rows (MRP_INCLUSIVE / BASE_PLUS_GST with a snapshot) discount the
    net price and reapply the snapshot's effective rate. SELLING_SIMPLE and
    LEGACY rows treat `price` as net and take the rate from inline_gst_rate,
    then gst_rate. Anything else is a manual row: `price` is gross, no tax.

    Line values are the unrounded unit values times qty; every field is
    rounded to 2dp on its own at the end.
    """
    qty = coerce_quantity(line.quantity)
    mode = line.pricing_mode

    if line.normalized is not None and mode in NET_FIRST_MODES:
        unit_net = clamp(to_decimal(line.normalized.unit_price_net), ZERO)
        unit_tax = clamp(to_decimal(line.normalized.tax_per_unit), ZERO)
        r = unit_tax / unit_net if unit_net > 0 else ZERO
        unit_gross = unit_net * (ONE + r)
    elif mode in SELLING_MODES:
        unit_net = clamp(to_decimal(line.price), ZERO)
        rate = line.inline_gst_rate if line.inline_gst_rate is not None else line.gst_rate
        r = clamp(to_decimal(rate), ZERO) / HUNDRED
        unit_tax = unit_net * r
        unit_gross = unit_net * (ONE + r)
    else:
        unit_gross = clamp(to_decimal(line.price), ZERO)
        pct = resolve_discount_percent(line.discount_percent, line.discount_amount, unit_gross, qty)
        after = unit_gross * (ONE - pct / HUNDRED)
        return LineBreakdown(
            unit_net=round2(after),
            unit_tax=round2(ZERO),
            unit_gross=round2(unit_gross),
            unit_net_after_disc=round2(after),
            unit_tax_after_disc=round2(ZERO),
            unit_gross_after_disc=round2(after),
            line_net_after_disc=round2(after * qty),
            line_tax_after_disc=round2(ZERO),
            line_gross_after_disc=round2(after * qty),
        )

    pct = resolve_discount_percent(line.discount_percent, line.discount_amount, unit_gross, qty)
    net_after = unit_net * (ONE - pct / HUNDRED)
    gross_after = net_after * (ONE + r)
    tax_after = gross_after - net_after

    return LineBreakdown(
        unit_net=round2(unit_net),
        unit_tax=round2(unit_tax),
        unit_gross=round2(unit_gross),
        unit_net_after_disc=round2(net_after),
        unit_tax_after_disc=round2(tax_after),
        unit_gross_after_disc=round2(gross_after),
        line_net_after_disc=round2(net_after * qty),
        line_tax_after_disc=round2(tax_after * qty),
        line_gross_after_disc=round2(gross_after * qty),
    )


def compute_line_totals(unit: Optional[UnitPriceSnapshot], qty: Any = None,
                        discount_pct: Any = None, discount_amt: Any = None) -> LineTotals:
    """
    Preview path: discount comes off the gross (amount wins if > 0) and
    net/tax are backed out with the unit's effective rate.
    Quantity defaults to 1 here.
    """
    q = ONE if qty is None else coerce_quantity(qty)
    unit_gross = unit.unit_price_gross if unit is not None else ZERO
    gross = unit_gross * q

    amt = to_decimal(discount_amt)
    pct = to_decimal(discount_pct)
    if amt > 0:
        discount = amt
    elif pct > 0:
        discount = gross * pct / HUNDRED
    else:
        discount = ZERO

    gross_after = max(ZERO, gross - discount)
    r = unit.effective_rate if unit is not None else ZERO
    net_after = gross_after / (ONE + r) if r > 0 else gross_after

    return LineTotals(
        line_gross=round2(gross),
        discount=round2(discount),
        line_gross_after_disc=round2(gross_after),
        line_net_after_disc=round2(net_after),
        line_tax=round2(gross_after - net_after),
    )


def infer_discount(discount: Any, discount_type: Optional[str] = None,
                   discount_percent: Any = None, discount_amount: Any = None) -> Dict[str, Decimal]:
    """
    Single-field discount entry point used by cart rows that store one
    `discount` value. Explicit percent/amount fields are kept as given;
    otherwise discount_type decides, and without a type a value in
    [0, 100] is a percent and anything else an amount.
    """
    pct = to_optional_decimal(discount_percent)
    amt = to_optional_decimal(discount_amount)
    if pct is not None or amt is not None:
        return {"discount_percent": pct or ZERO, "discount_amount": amt or ZERO}

    value = to_decimal(discount)
    kind = (discount_type or "").strip().lower()
    if kind in ("percent", "pct", "%"):
        return {"discount_percent": clamp(value, ZERO, HUNDRED), "discount_amount": ZERO}
    if kind in ("amount", "amt", "flat"):
        return {"discount_percent": ZERO, "discount_amount": clamp(value, ZERO)}
    if ZERO <= value <= HUNDRED:
        return {"discount_percent": value, "discount_amount": ZERO}
    return {"discount_percent": ZERO, "discount_amount": clamp(value, ZERO)}


def build_cart_line(product: InventoryProduct, settings: Optional[OrderSettings] = None,
                    quantity: Any = 1, source: str = "catalog") -> CartLine:
    """
    Creates a cart row for a catalog product with a fresh unit snapshot.
    `price` holds the snapshot's net price.
    """
    default_rate = settings.gst_rate if settings is not None else ZERO
    mode = resolve_pricing_mode(product)
    rate = resolve_gst_rate(product, default_rate)
    snapshot = normalize_unit(
        pricing_mode=mode,
        gst_rate=rate,
        mrp=product.mrp,
        base_price=product.base_price,
        selling_price=resolve_selling_price(product),
        selling_includes_gst=resolve_selling_includes_gst(product, mode),
    )
    return CartLine(
        source=source,
        id=product.id,
        sku=product.sku,
        name=product.display_name,
        brand=product.brand,
        category=product.category,
        unit=product.unit,
        hsn_code=product.hsn_code,
        quantity=quantity,
        price=snapshot.unit_price_net,
        pricing_mode=mode,
        gst_rate=rate,
        inline_gst_rate=rate,
        normalized=snapshot,
    )


def enrich_cart_line(line: CartLine) -> Dict[str, Any]:
    """Cart row plus its computed breakdown, as stored on the invoice."""
    breakdown = compute_line_breakdown(line)
    data = line.model_dump(mode="json")
    data.update({
        "unit_price_net": str(breakdown.unit_net),
        "unit_price_gross": str(breakdown.unit_gross),
        "unit_price_net_after_discount": str(breakdown.unit_net_after_disc),
        "unit_tax_after_discount": str(breakdown.unit_tax_after_disc),
        "unit_price_gross_after_discount": str(breakdown.unit_gross_after_disc),
        "line_net_after_discount": str(breakdown.line_net_after_disc),
        "line_tax_after_discount": str(breakdown.line_tax_after_disc),
        "line_gross_after_discount": str(breakdown.line_gross_after_disc),
    })
    return data

from decimal import Decimal
from typing import Any, Optional

from fastbill.domain.money import HUNDRED, ZERO, clamp, format_rate, format_rupees, round2, to_decimal
from fastbill.domain.schemas import InventoryProduct, PricingMode, UnitPriceSnapshot, coerce_pricing_mode

ONE = Decimal(1)


def _snapshot(net: Decimal, gross: Decimal, included: bool, explainer: str) -> UnitPriceSnapshot:
    net2 = round2(net)
    gross2 = round2(gross)
    return UnitPriceSnapshot(
        unit_price_net=net2,
        unit_price_gross=gross2,
        tax_per_unit=clamp(round2(gross2 - net2), ZERO),
        tax_included_at_source=included,
        pricing_explainer=explainer,
    )


def normalize_unit(pricing_mode: Any = None, gst_rate: Any = None, mrp: Any = None,
                   base_price: Any = None, selling_price: Any = None,
                   selling_includes_gst: Optional[bool] = None) -> UnitPriceSnapshot:
    """
    Converts raw pricing fields into a canonical per-unit snapshot.

    MRP_INCLUSIVE: gross = mrp, net backed out of it.
    BASE_PLUS_GST: net = base_price, gross = net * (1 + r).
    SELLING_SIMPLE / LEGACY / anything else: selling_price is gross when
    selling_includes_gst (default True), otherwise net.

    Net and gross are rounded independently; tax is gross - net after rounding.
    Never raises: missing or malformed numbers count as 0.
    """
    rate = clamp(to_decimal(gst_rate), ZERO)
    r = rate / HUNDRED
    pct = format_rate(rate)
    mode = coerce_pricing_mode(pricing_mode)

    if mode == PricingMode.MRP_INCLUSIVE:
        gross = clamp(to_decimal(mrp), ZERO)
        net = gross / (ONE + r) if r > 0 else gross
        tax = round2(gross) - round2(net)
        return _snapshot(net, gross, True,
                         f"MRP {format_rupees(gross)} incl {pct} → base {format_rupees(net)} + GST {format_rupees(tax)}")

    if mode == PricingMode.BASE_PLUS_GST:
        net = clamp(to_decimal(base_price), ZERO)
        gross = net * (ONE + r)
        return _snapshot(net, gross, False,
                         f"Base {format_rupees(net)} + {pct} GST = {format_rupees(gross)}")

    includes = True if selling_includes_gst is None else bool(selling_includes_gst)
    price = clamp(to_decimal(selling_price), ZERO)
    if includes:
        gross = price
        net = gross / (ONE + r) if r > 0 else gross
        tax = round2(gross) - round2(net)
        return _snapshot(net, gross, True,
                         f"Selling {format_rupees(gross)} incl {pct} → base {format_rupees(net)} + GST {format_rupees(tax)}")

    net = price
    gross = net * (ONE + r)
    return _snapshot(net, gross, False,
                     f"Selling {format_rupees(net)} + {pct} GST = {format_rupees(gross)}")


# --- Field resolvers for catalog products ---

def resolve_pricing_mode(product: InventoryProduct) -> PricingMode:
    """
    Explicit pricing_mode, else MRP_INCLUSIVE when an MRP exists,
    else BASE_PLUS_GST when a base price exists, else SELLING_SIMPLE.
    """
    mode = coerce_pricing_mode(product.pricing_mode)
    if mode is not None:
        return mode
    if product.mrp:
        return PricingMode.MRP_INCLUSIVE
    if product.base_price:
        return PricingMode.BASE_PLUS_GST
    return PricingMode.SELLING_SIMPLE


def resolve_gst_rate(product: InventoryProduct, default: Any = 0) -> Decimal:
    """product.gst_rate > product.tax_rate > default"""
    for candidate in (product.gst_rate, product.tax_rate):
        if candidate is not None:
            return clamp(candidate, ZERO, HUNDRED)
    return clamp(to_decimal(default), ZERO, HUNDRED)


def resolve_selling_price(product: InventoryProduct) -> Decimal:
    """product.selling_price > product.price"""
    for candidate in (product.selling_price, product.price):
        if candidate is not None:
            return candidate
    return ZERO


def resolve_selling_includes_gst(product: InventoryProduct, mode: PricingMode) -> bool:
    # Distributor catalogs quote SELLING_SIMPLE and BASE_PLUS_GST prices before tax
    if product.selling_includes_gst is not None:
        return product.selling_includes_gst
    return mode not in (PricingMode.SELLING_SIMPLE, PricingMode.BASE_PLUS_GST)


def normalize_product(product: InventoryProduct, default_gst_rate: Any = 0) -> UnitPriceSnapshot:
    mode = resolve_pricing_mode(product)
    return normalize_unit(
        pricing_mode=mode,
        gst_rate=resolve_gst_rate(product, default_gst_rate),
        mrp=product.mrp,
        base_price=product.base_price,
        selling_price=resolve_selling_price(product),
        selling_includes_gst=resolve_selling_includes_gst(product, mode),
    )

"""
Pricing helpers used when products are created or imported.

These keep selling_price as the final amount on the product document and
add mrp/base_price/tax_rate alongside it, so legacy items keep working.
"""
from typing import Any, Dict

from fastbill.domain.money import HUNDRED, ZERO, round2, to_decimal
from fastbill.domain.schemas import InventoryProduct, PricingMode, coerce_pricing_mode


def split_from_mrp(mrp: Any, tax_rate: Any) -> Dict[str, Any]:
    """Splits an inclusive MRP into base + tax."""
    m = to_decimal(mrp)
    r = to_decimal(tax_rate)
    if m <= 0 or r <= 0:
        return {"base": round2(m), "tax": ZERO}
    base = m / (1 + r / HUNDRED)
    return {"base": round2(base), "tax": round2(m - base)}


def calc_base_plus_tax(base_price: Any, tax_rate: Any) -> Dict[str, Any]:
    b = to_decimal(base_price)
    r = to_decimal(tax_rate)
    tax = b * r / HUNDRED if r > 0 else ZERO
    return {"base": round2(b), "tax": round2(tax), "final": round2(b + tax)}


def build_pricing_save(mode: Any, mrp: Any = None, base_price: Any = None,
                       tax_rate: Any = None, legacy_selling_price: Any = None) -> Dict[str, Any]:
    """
    Pricing fields to store on a product document.
    Always returns selling_price; adds the mode-specific fields.
    """
    selected = coerce_pricing_mode(mode) or PricingMode.LEGACY
    r = to_decimal(tax_rate)

    if selected == PricingMode.MRP_INCLUSIVE:
        final = round2(mrp)
        return {
            "pricing_mode": PricingMode.MRP_INCLUSIVE.value,
            "mrp": final,
            "tax_rate": r,
            # derived base is stored so reports can read it directly
            "base_price": split_from_mrp(final, r)["base"],
            "selling_price": final,
        }

    if selected == PricingMode.BASE_PLUS_GST:
        base = round2(base_price)
        return {
            "pricing_mode": PricingMode.BASE_PLUS_GST.value,
            "base_price": base,
            "tax_rate": r,
            "selling_price": calc_base_plus_tax(base, r)["final"],
        }

    return {
        "pricing_mode": PricingMode.LEGACY.value,
        "selling_price": round2(legacy_selling_price),
    }


def calc_line_from_product(product: InventoryProduct, qty: Any = 1) -> Dict[str, Any]:
    """
    Base, tax and final amounts for `qty` units of a catalog product.
    LEGACY products treat selling_price as final with no explicit tax.
    """
    q = to_decimal(qty) or to_decimal(1)
    mode = coerce_pricing_mode(product.pricing_mode) or PricingMode.LEGACY
    r = product.tax_rate if product.tax_rate is not None else (product.gst_rate or ZERO)
    zero = {"base": ZERO, "tax": ZERO, "final": ZERO}

    if mode == PricingMode.MRP_INCLUSIVE:
        unit_final = product.mrp if product.mrp is not None else (product.selling_price or ZERO)
        if unit_final <= 0:
            return zero
        parts = split_from_mrp(unit_final, r)
        return {"base": round2(parts["base"] * q), "tax": round2(parts["tax"] * q), "final": round2(unit_final * q)}

    if mode == PricingMode.BASE_PLUS_GST:
        unit_base = product.base_price if product.base_price is not None else (product.selling_price or ZERO)
        if unit_base <= 0:
            return zero
        parts = calc_base_plus_tax(unit_base, r)
        return {"base": round2(parts["base"] * q), "tax": round2(parts["tax"] * q), "final": round2(parts["final"] * q)}

    unit_final = product.selling_price or ZERO
    return {"base": round2(unit_final * q), "tax": ZERO, "final": round2(unit_final * q)}

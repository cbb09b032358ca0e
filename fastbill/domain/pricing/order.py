from datetime import date, timedelta
from typing import Any, Iterable, List, Optional

from fastbill.core.config import DEFAULT_CREDIT_DAYS
from fastbill.domain.money import HUNDRED, ZERO, clamp, round2, to_decimal
from fastbill.domain.schemas import (
    CartLine,
    ExtrasTotals,
    IgstScheme,
    OrderSettings,
    OrderTotals,
    PreviewTaxRow,
    TaxBreakdown,
)
from fastbill.domain.pricing.line import compute_line_breakdown
from fastbill.domain.pricing.tax import compute_order_level_tax


def compute_extras(settings: OrderSettings, subtotal: Any) -> ExtrasTotals:
    """
    Extra charges. Legacy delivery/packing/other charges add to the new fees.
    Insurance is flat or a percent of the subtotal, never negative.
    """
    ex = settings.extras
    delivery = ex.delivery_charge + ex.delivery_fee
    packaging = ex.packing_charge + ex.packaging_fee

    insurance = ZERO
    if ex.insurance_type == "flat":
        insurance = ex.insurance_value
    elif ex.insurance_type == "percent":
        insurance = to_decimal(subtotal) * ex.insurance_value / HUNDRED
    insurance = clamp(insurance, ZERO)
    other = ex.other_charge

    return ExtrasTotals(
        delivery=round2(delivery),
        packaging=round2(packaging),
        insurance=round2(insurance),
        other=round2(other),
        total=round2(delivery + packaging + insurance + other),
    )


def compute_totals(lines: Iterable[CartLine], settings: Optional[OrderSettings] = None) -> OrderTotals:
    """
    Order totals from the cart rows.

    When the rows carry tax (row_tax > 0) the order-level breakdown is
    zero so tax is never counted twice. Otherwise the settings' tax
    scheme is applied to the subtotal. An empty cart gives all zeros.
    """
    settings = settings or OrderSettings()
    breakdowns = [compute_line_breakdown(line) for line in lines]

    subtotal = sum((b.line_net_after_disc for b in breakdowns), ZERO)
    row_tax = sum((b.line_tax_after_disc for b in breakdowns), ZERO)

    if row_tax > 0:
        tax_breakdown = TaxBreakdown()
    else:
        tax_breakdown = compute_order_level_tax(subtotal, settings.tax_scheme)

    extras = compute_extras(settings, subtotal)
    grand_total = round2(subtotal + row_tax + tax_breakdown.total + extras.total)

    return OrderTotals(
        subtotal=round2(subtotal),
        row_tax=round2(row_tax),
        tax_breakdown=tax_breakdown,
        extras=extras,
        grand_total=grand_total,
    )


def compute_preview_taxes(lines: Iterable[CartLine], settings: OrderSettings) -> List[PreviewTaxRow]:
    """
    Per-row tax for the invoice preview / PDF. Recomputed from the raw rows
    at each row's GST rate (not read back from row_tax). IGST under an IGST
    scheme, otherwise an even CGST/SGST split.
    """
    rows = []
    use_igst = isinstance(settings.tax_scheme, IgstScheme)
    for line in lines:
        b = compute_line_breakdown(line)
        rate = line.inline_gst_rate if line.inline_gst_rate is not None else line.gst_rate
        taxable = b.line_net_after_disc
        tax = round2(taxable * rate / HUNDRED)
        if use_igst:
            row = PreviewTaxRow(cart_line_id=line.cart_line_id, taxable_value=taxable, rate=rate,
                                igst=tax, total=tax)
        else:
            half = round2(tax / 2)
            row = PreviewTaxRow(cart_line_id=line.cart_line_id, taxable_value=taxable, rate=rate,
                                cgst=half, sgst=tax - half, total=tax)
        rows.append(row)
    return rows


def validate_split_payment(settings: OrderSettings, grand_total: Any) -> bool:
    """Split amounts must add up to the total, compared at 2 decimals."""
    if settings.payment_mode != "split":
        return True
    return round2(settings.split_payment.total) == round2(grand_total)


def resolve_credit_due_date(settings: OrderSettings, today: Optional[date] = None) -> Optional[str]:
    """
    Due date for credit invoices: the stated date, else today + stated days,
    else today + DEFAULT_CREDIT_DAYS. None for other payment modes.
    """
    if settings.payment_mode != "credit":
        return None
    if settings.credit_due_date:
        return settings.credit_due_date
    today = today or date.today()
    days = settings.credit_due_days if settings.credit_due_days is not None else DEFAULT_CREDIT_DAYS
    return (today + timedelta(days=days)).isoformat()

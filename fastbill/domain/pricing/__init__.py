from .unit import normalize_unit, normalize_product, resolve_pricing_mode, resolve_gst_rate
from .line import (
    build_cart_line,
    compute_line_breakdown,
    compute_line_totals,
    enrich_cart_line,
    infer_discount,
    resolve_discount_percent,
)
from .order import (
    compute_extras,
    compute_preview_taxes,
    compute_totals,
    resolve_credit_due_date,
    validate_split_payment,
)
from .tax import compute_order_level_tax, normalize_gst_entities, scheme_from_flags

__all__ = [
    'normalize_unit', 'normalize_product', 'resolve_pricing_mode', 'resolve_gst_rate',
    'build_cart_line', 'compute_line_breakdown', 'compute_line_totals', 'enrich_cart_line',
    'infer_discount', 'resolve_discount_percent',
    'compute_extras', 'compute_preview_taxes', 'compute_totals',
    'resolve_credit_due_date', 'validate_split_payment',
    'compute_order_level_tax', 'normalize_gst_entities', 'scheme_from_flags',
]

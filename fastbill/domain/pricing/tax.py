"""
Order-level tax scheme helpers.

The scheme is a tagged union (NoTax | GstScheme | CgstSgstScheme | IgstScheme)
so only one of IGST, CGST+SGST and plain GST can be active at a time.
"""
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from fastbill.domain.money import HUNDRED, ZERO, clamp, round2, to_decimal, to_optional_decimal
from fastbill.domain.schemas import (
    CgstSgstScheme,
    GstScheme,
    IgstScheme,
    NoTax,
    OrderSettings,
    TaxBreakdown,
)

GST_RATE_CHOICES = (0, 5, 12, 18)
DEFAULT_RATES = {"igst": Decimal(18), "cgst_sgst": Decimal(9), "gst": Decimal(18)}


def _rate(value: Any) -> Decimal:
    return clamp(to_decimal(value), ZERO, HUNDRED)


def scheme_from_flags(include_gst: bool = False, include_cgst: bool = False,
                      include_sgst: bool = False, include_igst: bool = False,
                      gst_rate: Any = 18, cgst_rate: Any = 9, sgst_rate: Any = 9, igst_rate: Any = 18):
    """
    Builds a scheme from the flag representation.
    Precedence: IGST > CGST/SGST > GST. First truthy flag wins.
    """
    if include_igst:
        return IgstScheme(rate=_rate(igst_rate))
    if include_cgst or include_sgst:
        return CgstSgstScheme(
            cgst_rate=_rate(cgst_rate) if include_cgst else ZERO,
            sgst_rate=_rate(sgst_rate) if include_sgst else ZERO,
        )
    if include_gst:
        return GstScheme(rate=_rate(gst_rate))
    return NoTax()


def compute_order_level_tax(subtotal: Any, scheme) -> TaxBreakdown:
    """
    Cart-level tax on the subtotal. Each field is rounded on its own.
    """
    base = to_decimal(subtotal)
    if isinstance(scheme, IgstScheme):
        return TaxBreakdown(igst=round2(base * scheme.rate / HUNDRED))
    if isinstance(scheme, CgstSgstScheme):
        return TaxBreakdown(
            cgst=round2(base * scheme.cgst_rate / HUNDRED),
            sgst=round2(base * scheme.sgst_rate / HUNDRED),
        )
    if isinstance(scheme, GstScheme):
        return TaxBreakdown(gst=round2(base * scheme.rate / HUNDRED))
    return TaxBreakdown()


def split_gst_rate(gst_rate: int):
    """18 -> (9, 9), 5 -> (3, 2). The first half rounds half-up."""
    half = int(math.floor(gst_rate / 2 + 0.5))
    return half, gst_rate - half


@dataclass
class GstDecision:
    """
    Outcome of interpreting set_gst entities against the current settings.
    `scheme` is None when a rate still has to be chosen.
    """
    mode: str
    scheme: Any = None
    rate: Optional[Decimal] = None
    disabled: bool = False

    @property
    def needs_rate(self) -> bool:
        return not self.disabled and self.scheme is None


def _flag(entities: Dict[str, Any], *keys) -> Optional[bool]:
    for k in keys:
        if isinstance(entities.get(k), bool):
            return entities[k]
    return None


def normalize_gst_entities(entities: Dict[str, Any], current: OrderSettings) -> GstDecision:
    """
    Interprets loose GST entity shapes ({type: "igst", rate: 18},
    {include_igst: True, igst_rate: 18}, {rate: 18}, ...) into a decision.

    Mode comes from an explicit type, then from the include flags, then
    from the scheme that is currently active. The rate is only taken from
    what was spoken; without one the caller offers GST_RATE_CHOICES.
    """
    e = entities or {}
    flags = {
        "igst": _flag(e, "include_igst", "igst"),
        "cgst": _flag(e, "include_cgst", "cgst"),
        "sgst": _flag(e, "include_sgst", "sgst"),
        "gst": _flag(e, "include_gst", "gst"),
    }

    spoken = [v for v in flags.values() if v is not None]
    if spoken and not any(spoken):
        # "no gst", "disable igst", ...
        return GstDecision(mode=current.tax_scheme.kind, scheme=NoTax(), disabled=True)

    mode = str(e.get("type") or e.get("mode") or "").lower()
    if mode not in DEFAULT_RATES:
        if flags["igst"]:
            mode = "igst"
        elif flags["cgst"] or flags["sgst"]:
            mode = "cgst_sgst"
        elif flags["gst"]:
            mode = "gst"
        elif current.tax_scheme.kind != "none":
            mode = current.tax_scheme.kind
        else:
            mode = "gst"

    rate = to_optional_decimal(e.get("rate"))
    if mode == "igst" and rate is None:
        rate = to_optional_decimal(e.get("igst_rate"))
    elif mode == "gst" and rate is None:
        rate = to_optional_decimal(e.get("gst_rate"))

    if mode == "cgst_sgst":
        cgst = to_optional_decimal(e.get("cgst_rate"))
        sgst = to_optional_decimal(e.get("sgst_rate"))
        if rate is not None and cgst is None and sgst is None:
            cgst = sgst = rate
        if cgst is None and sgst is None:
            return GstDecision(mode=mode)
        cgst = _rate(cgst if cgst is not None else current.cgst_rate)
        sgst = _rate(sgst if sgst is not None else current.sgst_rate)
        return GstDecision(mode=mode, scheme=CgstSgstScheme(cgst_rate=cgst, sgst_rate=sgst), rate=cgst + sgst)

    if rate is None or not (ZERO <= rate <= HUNDRED):
        return GstDecision(mode=mode)
    if mode == "igst":
        return GstDecision(mode=mode, scheme=IgstScheme(rate=rate), rate=rate)
    return GstDecision(mode=mode, scheme=GstScheme(rate=rate), rate=rate)


def scheme_for_choice(mode: str, rate: Any):
    """Scheme for a rate picked from the GST_RATE_CHOICES prompt."""
    value = _rate(rate)
    if mode == "igst":
        return IgstScheme(rate=value)
    if mode == "cgst_sgst":
        # total rate split between the two, 5 -> 3 + 2
        first, second = split_gst_rate(int(value))
        return CgstSgstScheme(cgst_rate=Decimal(first), sgst_rate=Decimal(second))
    return GstScheme(rate=value)

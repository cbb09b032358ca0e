from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from fastbill.domain.pricing import (
    compute_line_breakdown,
    compute_line_totals,
    compute_preview_taxes,
    compute_totals,
    normalize_unit,
)
from fastbill.domain.schemas import CartLine, OrderSettings

router = APIRouter(prefix="/pricing", tags=["pricing"])


class NormalizeRequest(BaseModel):
    pricing_mode: Optional[str] = Field(None, description="MRP_INCLUSIVE, BASE_PLUS_GST, SELLING_SIMPLE or LEGACY.")
    gst_rate: Optional[Any] = None
    mrp: Optional[Any] = None
    base_price: Optional[Any] = None
    selling_price: Optional[Any] = None
    selling_includes_gst: Optional[bool] = None


class TotalsRequest(BaseModel):
    lines: List[CartLine] = Field(default_factory=list)
    settings: OrderSettings = Field(default_factory=OrderSettings)


@router.post("/normalize", response_model=Dict[str, Any])
async def normalize(request: NormalizeRequest):
    """
    Canonical unit price (net, gross, tax per unit) for one set of raw price fields.
    """
    snapshot = normalize_unit(**request.model_dump())
    data = snapshot.model_dump(mode="json")
    data["effective_rate"] = str(snapshot.effective_rate)
    return data


@router.post("/line", response_model=Dict[str, Any])
async def line_breakdown(line: CartLine):
    """
    Per-unit and per-line values after discount, plus the gross-side preview totals.
    """
    breakdown = compute_line_breakdown(line)
    preview = compute_line_totals(line.normalized, line.quantity, line.discount_percent, line.discount_amount)
    return {
        "cart_line_id": line.cart_line_id,
        "breakdown": breakdown.model_dump(mode="json"),
        "preview": preview.model_dump(mode="json") if line.normalized is not None else None,
    }


@router.post("/totals", response_model=Dict[str, Any])
async def order_totals(request: TotalsRequest):
    totals = compute_totals(request.lines, request.settings)
    return {
        "totals": totals.model_dump(mode="json"),
        "tax_total": str(totals.row_tax + totals.tax_breakdown.total),
        "preview_taxes": [row.model_dump(mode="json") for row in compute_preview_taxes(request.lines, request.settings)],
    }

from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from fastbill.domain.matching import enhanced_product_matcher, should_show_brand_selection
from fastbill.domain.schemas import InventoryProduct
from fastbill.services import registry

router = APIRouter(prefix="/products", tags=["products"])


class MatchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    products: Optional[List[InventoryProduct]] = Field(None, description="Inventory snapshot; the shared inventory when omitted.")
    max_results: int = Field(7, ge=1, le=50)
    min_score: float = Field(0.3, ge=0, le=1)
    include_learning: bool = True


@router.post("/match", response_model=Dict[str, Any])
async def match_products(request: MatchRequest):
    """
    Brand prompt when the query names a brand with several products,
    otherwise ranked matches (learned corrections merged in).
    """
    inventory = request.products if request.products is not None else registry.inventory.list_products()

    brand = should_show_brand_selection(request.query, inventory)
    if brand.should_show:
        return {"brand_selection": brand.model_dump(mode="json"), "matches": []}

    store = registry.get_learning_store() if request.include_learning else None
    matches = enhanced_product_matcher(
        request.query,
        inventory,
        store=store,
        max_results=request.max_results,
        min_score=request.min_score,
        include_learning=request.include_learning,
    )
    return {"brand_selection": None, "matches": [m.model_dump(mode="json") for m in matches]}

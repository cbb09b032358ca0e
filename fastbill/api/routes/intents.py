from typing import Any, Dict

from fastapi import APIRouter
from pydantic import BaseModel, Field

from fastbill.domain.intents import parse_local_intent, parse_quantity_and_query

router = APIRouter(prefix="/intents", tags=["intents"])


class ParseRequest(BaseModel):
    text: str = Field(..., description="One finalized utterance.")


@router.post("/parse", response_model=Dict[str, Any])
async def parse_intent(request: ParseRequest):
    """
    Runs the local rule cascade. When no rule matches, `fallback` carries the
    quantity and product query the session would try to add.
    """
    parsed = parse_local_intent(request.text)
    if parsed is not None:
        return {"intent": parsed.intent, "entities": parsed.model_dump(mode="json")["entities"], "fallback": None}
    qty, query = parse_quantity_and_query(request.text)
    return {"intent": None, "entities": {}, "fallback": {"qty": str(qty), "query": query}}

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from fastbill.domain.errors import FinalizeBlocked, InvalidPick, SessionNotFound
from fastbill.services import registry
from fastbill.utils.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/voice", tags=["voice"])

# Handlers are sync: FastAPI runs them in its threadpool, so a slow remote
# parser call in one session leaves the event loop free for the others.


class CreateSessionRequest(BaseModel):
    business_id: Optional[str] = None
    products: Optional[List[Dict[str, Any]]] = Field(None, description="Inventory snapshot for this session.")
    customers: Optional[List[Dict[str, Any]]] = Field(None, description="Customer list for this session.")


class UtteranceRequest(BaseModel):
    text: str = Field(..., description="Finalized transcript.")


class PickRequest(BaseModel):
    index: Optional[int] = Field(None, description="1-9; omitted picks the first suggestion.")


def _session_or_404(session_id: str):
    try:
        return registry.get_session(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/sessions", response_model=Dict[str, Any])
def create_session(request: CreateSessionRequest):
    session = registry.create_session(request.business_id, request.products, request.customers)
    return session.snapshot()


@router.get("/sessions/{session_id}", response_model=Dict[str, Any])
def get_session(session_id: str):
    return _session_or_404(session_id).snapshot()


@router.post("/sessions/{session_id}/utterances", response_model=Dict[str, Any])
def submit_utterance(session_id: str, request: UtteranceRequest):
    """
    Routes one utterance and returns the result with the updated session.
    """
    session = _session_or_404(session_id)
    session.start_listening()
    result = session.submit_transcript(request.text)
    return {"result": asdict(result), "session": session.snapshot()}


@router.post("/sessions/{session_id}/pick", response_model=Dict[str, Any])
def pick_suggestion(session_id: str, request: PickRequest):
    session = _session_or_404(session_id)
    try:
        if request.index is None:
            result = session.pick_first()
        else:
            result = session.pick(request.index)
    except InvalidPick as e:
        raise HTTPException(status_code=400, detail=str(e))
    if result is None:
        raise HTTPException(status_code=400, detail="Nothing to pick")
    return {"result": asdict(result), "session": session.snapshot()}


@router.post("/sessions/{session_id}/dismiss", response_model=Dict[str, Any])
def dismiss_suggestions(session_id: str):
    session = _session_or_404(session_id)
    session.dismiss()
    return session.snapshot()


@router.post("/sessions/{session_id}/finalize", response_model=Dict[str, Any])
def finalize_session(session_id: str):
    """
    Saves the invoice. 409 with the block reason when validation fails.
    """
    session = _session_or_404(session_id)
    try:
        result = session.finalize()
    except FinalizeBlocked as e:
        raise HTTPException(
            status_code=409,
            detail={"reason": e.reason, "message": e.detail, "paths": e.paths},
        )
    return {
        "status": "success",
        "invoice_id": result["invoice_id"],
        "totals": result["totals"].model_dump(mode="json"),
        "stripped_paths": result["stripped_paths"],
        "session": session.snapshot(),
    }


@router.delete("/sessions/{session_id}", response_model=Dict[str, Any])
def close_session(session_id: str):
    _session_or_404(session_id)
    registry.close_session(session_id)
    return {"status": "success", "session_id": session_id}

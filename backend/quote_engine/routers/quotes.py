"""
MFS Quote Engine - Quotes API Router

CRUD for BTL and Bridging quotes plus UW checklist state.
All endpoints require authentication; the owner of a new quote is always the
authenticated user.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import QUOTE_LIST_DEFAULT_LIMIT
from ..database import get_db
from ..errors import ValidationError
from ..models.db_models import UserDB
from ..services.quote_store import QuoteStore
from ..services.uw_checklist import UWChecklistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotes", tags=["quotes"])

VALID_CALCULATOR_TYPES = ("btl", "bridging", "bridge")


def get_quote_store(db: Session = Depends(get_db)) -> QuoteStore:
    """Request-scoped QuoteStore; overridable in tests."""
    return QuoteStore(db)


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class QuoteCreateRequest(BaseModel):
    """New quote. Scenario fields beyond the declared ones are accepted as-is."""
    model_config = ConfigDict(extra="allow")

    calculator_type: str
    name: Optional[str] = None
    borrower_name: Optional[str] = None
    loan_amount: Optional[float] = None
    property_value: Optional[float] = None
    results: Optional[List[Dict[str, Any]]] = None


class QuoteUpdateRequest(BaseModel):
    """Partial update; only the fields sent are written."""
    model_config = ConfigDict(extra="allow")

    calculator_type: Optional[str] = None
    quote_status: Optional[str] = None
    dip_status: Optional[str] = None
    quote_issued_at: Optional[str] = None
    dip_issued_at: Optional[str] = None
    results: Optional[List[Dict[str, Any]]] = None


class ChecklistSaveRequest(BaseModel):
    """UW checklist state for one stage."""
    checked_items: Union[Dict[str, bool], List[str], None] = None
    stage: Optional[str] = "Both"
    custom_requirements: Optional[str] = None


# =============================================================================
# QUOTE ENDPOINTS
# =============================================================================

@router.post("", status_code=201)
async def create_quote(
    request: QuoteCreateRequest,
    current_user: UserDB = Depends(get_current_user),
    store: QuoteStore = Depends(get_quote_store),
):
    """Create a quote in the table pair selected by calculator_type."""
    if request.calculator_type.strip().lower() not in VALID_CALCULATOR_TYPES:
        raise ValidationError(
            "Validation failed",
            details={"calculator_type": 'Calculator type must be either "btl" or "bridging"'},
        )

    logger.info(f"POST /quotes - creating {request.calculator_type} quote")
    fields = request.model_dump(exclude={"calculator_type", "results"}, exclude_none=True)
    quote = store.create(
        request.calculator_type,
        fields,
        user_id=current_user.id,
        results=request.results,
    )
    return {"quote": quote}


@router.get("")
async def list_quotes(
    calculator_type: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(QUOTE_LIST_DEFAULT_LIMIT, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: UserDB = Depends(get_current_user),
    store: QuoteStore = Depends(get_quote_store),
):
    """
    List quotes newest first.

    Without calculator_type both tables are queried and merged by created_at.
    """
    quotes = store.list(
        calculator_type=calculator_type,
        user_id=user_id,
        limit=limit,
        offset=offset,
    )
    logger.info(f"Returning {len(quotes)} quotes")
    return {"quotes": quotes}


@router.get("/{quote_id}")
async def get_quote(
    quote_id: str,
    include_results: bool = False,
    current_user: UserDB = Depends(get_current_user),
    store: QuoteStore = Depends(get_quote_store),
):
    """Get a quote from either table, optionally with its result rows."""
    return {"quote": store.get(quote_id, include_results=include_results)}


@router.put("/{quote_id}")
async def update_quote(
    quote_id: str,
    request: QuoteUpdateRequest,
    current_user: UserDB = Depends(get_current_user),
    store: QuoteStore = Depends(get_quote_store),
):
    """
    Update a quote.

    calculator_type is only a hint for which table to try first. A supplied
    results list replaces the quote's result rows; issuing the DIP rebuilds the
    DIP-stage result row.
    """
    fields = request.model_dump(exclude={"calculator_type", "results"}, exclude_unset=True)
    quote = store.update(
        quote_id,
        fields,
        calculator_type=request.calculator_type,
        results=request.results,
    )
    return {"quote": quote}


@router.delete("/{quote_id}")
async def delete_quote(
    quote_id: str,
    current_user: UserDB = Depends(get_current_user),
    store: QuoteStore = Depends(get_quote_store),
):
    """Delete a quote from whichever table holds it."""
    return {"deleted": store.delete(quote_id)}


# =============================================================================
# UW CHECKLIST ENDPOINTS
# =============================================================================

@router.get("/{quote_id}/uw-checklist")
async def get_uw_checklist(
    quote_id: str,
    stage: Optional[str] = None,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """UW checklist state for a quote; empty state when none was saved yet."""
    return UWChecklistService(db).get_checklist(quote_id, stage=stage)


@router.put("/{quote_id}/uw-checklist")
async def save_uw_checklist(
    quote_id: str,
    request: ChecklistSaveRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Save UW checklist state and mirror progress onto the quote."""
    return UWChecklistService(db).save_checklist(
        quote_id,
        request.checked_items,
        stage=request.stage,
        custom_requirements=request.custom_requirements,
        updated_by=current_user.email,
    )

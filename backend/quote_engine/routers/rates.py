"""
MFS Quote Engine - Rates API Router

Rate listing for BTL (rates_flat) and Bridging/Fusion
(bridge_fusion_rates_full), the admin-only audited rate patch, and the rate
change history.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..config import AUDIT_LOG_DEFAULT_LIMIT, RATE_LIST_DEFAULT_LIMIT
from ..database import get_db
from ..models.db_models import UserDB
from ..services.rate_service import RateActor, RateService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rates", tags=["rates"])


class RatePatchRequest(BaseModel):
    """Single-field rate edit."""
    field: str
    value: Any
    table_name: str
    context: Optional[Dict[str, Any]] = None


@router.get("")
async def list_rates(
    set_key: Optional[str] = None,
    property: Optional[str] = None,
    rate_type: Optional[str] = None,
    tier: Optional[str] = None,
    product: Optional[str] = None,
    product_fee: Optional[str] = None,
    initial_term: Optional[str] = None,
    full_term: Optional[str] = None,
    is_retention: Optional[str] = None,
    is_tracker: Optional[str] = None,
    sort: str = "set_key",
    order: str = "asc",
    limit: str = str(RATE_LIST_DEFAULT_LIMIT),
    offset: str = "0",
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List rates with equality filters, sorting and clamped pagination."""
    filters = {
        "set_key": set_key,
        "property": property,
        "rate_type": rate_type,
        "tier": tier,
        "product": product,
        "product_fee": product_fee,
        "initial_term": initial_term,
        "full_term": full_term,
        "is_retention": is_retention,
        "is_tracker": is_tracker,
    }
    logger.info(f"GET /rates - {({k: v for k, v in filters.items() if v})} sort={sort} {order}")
    rates = RateService(db).list_rates(filters, sort=sort, order=order, limit=limit, offset=offset)
    return {"rates": rates}


@router.get("/audit-log")
async def get_rate_audit_log(
    set_key: Optional[str] = None,
    limit: str = str(AUDIT_LOG_DEFAULT_LIMIT),
    offset: str = "0",
    current_user: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Rate change history, newest first (admin only)."""
    return {"audit_log": RateService(db).list_audit_log(set_key=set_key, limit=limit, offset=offset)}


@router.patch("/{rate_id}")
async def patch_rate(
    rate_id: int,
    request: RatePatchRequest,
    current_user: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Update one editable field of a rate (admin only).

    The change is written to rate_audit_log afterwards; an audit failure is
    logged but does not undo the change.
    """
    actor = RateActor(user_id=current_user.id, email=current_user.email, name=current_user.name)
    outcome = RateService(db).patch_rate(
        rate_id,
        request.field,
        request.value,
        request.table_name,
        actor,
        context=request.context,
    )
    return {
        "success": True,
        "rate": outcome["rate"],
        "audit_logged": outcome["audit_logged"],
        "message": f"{request.field} updated successfully",
    }

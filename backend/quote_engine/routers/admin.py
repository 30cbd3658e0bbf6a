"""
MFS Quote Engine - Admin Router
Read-only data-health console over the rate tables.
Admin observes and diagnoses - never mutates.
"""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..config import DEFAULT_DATA_HEALTH_SET_KEY
from ..database import get_db
from ..models.db_models import UserDB
from ..services.rate_health import RateHealthAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class DataHealthStats(BaseModel):
    """Summary counts for one set_key/property scan."""
    set_key: str
    property: str
    schema_kind: str
    total_rows: int
    exact_duplicate_groups: int
    cross_tier_duplicate_groups: int
    non_numeric_fees: int
    missing_max_ltv: int


class ExactDuplicateGroup(BaseModel):
    property: str
    product: str
    fee: str
    tier: str
    rate: str
    count: int
    sample_ids: List[Any]


class CrossTierDuplicateGroup(BaseModel):
    property: str
    product: str
    fee: str
    tiers: List[str]
    count: int
    sample_ids: List[Any]


class FeeAnomaly(BaseModel):
    id: Any
    product: Optional[str] = None
    product_fee: Optional[Any] = None


class MaxLtvAnomaly(BaseModel):
    id: Any
    product: Optional[str] = None
    max_ltv: Optional[Any] = None


class DataHealthAnomalies(BaseModel):
    non_numeric_fees: List[FeeAnomaly]
    missing_max_ltv: List[MaxLtvAnomaly]


class DataHealthResponse(BaseModel):
    """Duplicate groups and anomalies for ops remediation."""
    stats: DataHealthStats
    exact_duplicates: List[ExactDuplicateGroup]
    cross_tier_duplicates: List[CrossTierDuplicateGroup]
    anomalies: DataHealthAnomalies


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("/data-health", response_model=DataHealthResponse)
async def get_data_health(
    set_key: str = DEFAULT_DATA_HEALTH_SET_KEY,
    property: Optional[str] = None,
    current_user: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Scan one rate set for duplicate and malformed rows.

    Query params:
    - set_key (default: RATES_SPEC); Bridging_Var, Bridging_Fix and Fusion
      read the Bridging/Fusion table
    - property (Residential | Commercial | Semi-Commercial | Core)
    """
    return RateHealthAnalyzer(db).analyze(set_key=set_key, property=property)

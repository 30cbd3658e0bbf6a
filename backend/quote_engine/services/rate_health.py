"""
Rate Health Analyzer

Read-only scan of one rate table for duplicate and malformed pricing rows, so
ops can remediate imports quickly. Uniqueness per product/fee/tier/property is
not enforced by the store, which is why this audit exists.

The two rate schemas disagree on the "tier" dimension:
    BTL (rates_flat)                          tier
    Bridging/Fusion (bridge_fusion_rates_full) type + "/" + charge_type
normalized_tier_key() maps both onto one comparable value.

Report sections:
- exact_duplicates: same property, product, fee, tier-like key and rate
- cross_tier_duplicates: same property, product and fee across more than one
  distinct tier-like key (likely unintended collisions)
- anomalies: non-numeric product_fee values, max_ltv that is not a number
"""
import logging
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import DEFAULT_DATA_HEALTH_SET_KEY, DUPLICATE_SAMPLE_CAP
from ..errors import StoreError
from ..models.db_models import SchemaKind


logger = logging.getLogger(__name__)

NO_FEE = "none"


# =============================================================================
# KEY NORMALIZATION
# =============================================================================

def to_finite_number(value: Any) -> Optional[float]:
    """Finite float for numbers and numeric strings, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def format_number(number: float) -> str:
    """2.0 -> "2", 4.5 -> "4.5"."""
    return str(int(number)) if float(number).is_integer() else repr(float(number))


def fee_key(row: Dict[str, Any]) -> str:
    # A missing fee groups as "none", not as fee 0
    number = to_finite_number(row.get("product_fee"))
    return NO_FEE if number is None else format_number(number)


def rate_key(row: Dict[str, Any]) -> str:
    rate = row.get("rate")
    if rate is None or rate == "":
        return ""
    number = to_finite_number(rate)
    return format_number(number) if number is not None else str(rate)


def normalized_tier_key(row: Dict[str, Any], schema_kind: SchemaKind) -> str:
    """Tier-like dimension: `tier` for BTL, "type/charge_type" for Bridging/Fusion."""
    if schema_kind is SchemaKind.BTL:
        return str(row.get("tier") or "")
    parts = (row.get("type"), row.get("charge_type"))
    return "/".join(str(p) for p in parts if p)


def _group(rows: Iterable[Dict[str, Any]], key_fn) -> Dict[tuple, List[Dict[str, Any]]]:
    groups: Dict[tuple, List[Dict[str, Any]]] = {}
    for row in rows:
        groups.setdefault(key_fn(row), []).append(row)
    return groups


def _sample_ids(rows: List[Dict[str, Any]]) -> List[Any]:
    return [r.get("id") for r in rows[:DUPLICATE_SAMPLE_CAP]]


# =============================================================================
# ANALYSIS
# =============================================================================

def find_exact_duplicates(rows: List[Dict[str, Any]], schema_kind: SchemaKind) -> List[Dict[str, Any]]:
    groups = _group(rows, lambda r: (
        r.get("property") or "",
        r.get("product") or "",
        fee_key(r),
        normalized_tier_key(r, schema_kind),
        rate_key(r),
    ))
    duplicates = []
    for (prop, product, fee, tier, rate), members in groups.items():
        if len(members) > 1:
            duplicates.append({
                "property": prop,
                "product": product,
                "fee": fee,
                "tier": tier,
                "rate": rate,
                "count": len(members),
                "sample_ids": _sample_ids(members),
            })
    return duplicates


def find_cross_tier_duplicates(rows: List[Dict[str, Any]], schema_kind: SchemaKind) -> List[Dict[str, Any]]:
    groups = _group(rows, lambda r: (
        r.get("property") or "",
        r.get("product") or "",
        fee_key(r),
    ))
    duplicates = []
    for (prop, product, fee), members in groups.items():
        # Distinct tier-like values in first-seen order
        tiers = list(dict.fromkeys(normalized_tier_key(r, schema_kind) for r in members))
        if len(members) > 1 and len(tiers) > 1:
            duplicates.append({
                "property": prop,
                "product": product,
                "fee": fee,
                "tiers": tiers,
                "count": len(members),
                "sample_ids": _sample_ids(members),
            })
    return duplicates


def find_anomalies(rows: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    non_numeric_fees = [
        {"id": r.get("id"), "product": r.get("product"), "product_fee": r.get("product_fee")}
        for r in rows
        if r.get("product_fee") not in (None, "") and to_finite_number(r.get("product_fee")) is None
    ]
    # Null max_ltv counts as missing rather than as 0
    missing_max_ltv = [
        {"id": r.get("id"), "product": r.get("product"), "max_ltv": r.get("max_ltv")}
        for r in rows
        if to_finite_number(r.get("max_ltv")) is None
    ]
    return {"non_numeric_fees": non_numeric_fees, "missing_max_ltv": missing_max_ltv}


def analyze_rate_rows(
    rows: List[Dict[str, Any]],
    schema_kind: SchemaKind,
    set_key: str,
    property: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the data-health report for already-loaded rate rows."""
    exact = find_exact_duplicates(rows, schema_kind)
    cross_tier = find_cross_tier_duplicates(rows, schema_kind)
    anomalies = find_anomalies(rows)

    stats = {
        "set_key": set_key,
        "property": property or "ALL",
        "schema_kind": schema_kind.value,
        "total_rows": len(rows),
        "exact_duplicate_groups": len(exact),
        "cross_tier_duplicate_groups": len(cross_tier),
        "non_numeric_fees": len(anomalies["non_numeric_fees"]),
        "missing_max_ltv": len(anomalies["missing_max_ltv"]),
    }
    return {
        "stats": stats,
        "exact_duplicates": exact,
        "cross_tier_duplicates": cross_tier,
        "anomalies": anomalies,
    }


class RateHealthAnalyzer:
    """
    Usage:
        report = RateHealthAnalyzer(db).analyze("RATES_SPEC", property="Residential")
    """

    def __init__(self, db: Session):
        self.db = db

    def analyze(self, set_key: str = DEFAULT_DATA_HEALTH_SET_KEY, property: Optional[str] = None) -> Dict[str, Any]:
        schema_kind = SchemaKind.from_set_key(set_key)
        model = schema_kind.rate_model

        query = self.db.query(model).filter(model.set_key == set_key)
        if property:
            query = query.filter(model.property == property)
        try:
            rows = [r.to_dict() for r in query.order_by(model.id.asc()).all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error loading {schema_kind.table_name} for data health: {e}")
            raise StoreError("Failed to load rates") from e

        report = analyze_rate_rows(rows, schema_kind, set_key, property)
        logger.info(f"Data health for {set_key} ({property or 'ALL'}): {report['stats']}")
        return report

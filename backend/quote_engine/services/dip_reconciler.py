"""
DIP Reconciler

Keeps exactly one canonical DIP-stage result row per quote once a DIP has
been issued.

Steps:
1. Delete any existing DIP row for the quote
2. Load the remaining QUOTE-stage candidates
3. Pick the best candidate: highest coalesce(net_loan, gross_loan, 0),
   ties keep the first row encountered
4. Clone it (minus id/created_at/updated_at/stage) as the new DIP row

This is read-derive-write with no transaction spanning the steps and no
per-quote serialization. Two promotions racing on one quote can both insert;
on Postgres the partial unique index (see migrations/add_dip_stage_index.py)
rejects the second insert. Failures are logged and never fail the quote
update that triggered the run.
"""
import logging
import re
from typing import Any, Dict, Iterable, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import ProductFamily, ResultStage


logger = logging.getLogger(__name__)

_ISSUED = re.compile(r"issued", re.IGNORECASE)
_CLONE_EXCLUDED = ("id", "created_at", "updated_at", "stage")


def is_issued_status(status: Any) -> bool:
    """True when a status string contains "issued" (any case)."""
    return isinstance(status, str) and bool(_ISSUED.search(status))


def candidate_score(row: Dict[str, Any]) -> float:
    """coalesce(net_loan, gross_loan, 0) as a number."""
    value = row.get("net_loan")
    if value is None:
        value = row.get("gross_loan")
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def select_best_candidate(candidates: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Linear scan for the highest score; on ties the earlier row wins."""
    best = None
    best_score = None
    for row in candidates:
        score = candidate_score(row)
        if best is None or score > best_score:
            best, best_score = row, score
    return best


class DipReconciler:
    """
    Usage:
        reconciler = DipReconciler(db)
        dip_row = reconciler.reconcile(quote_id, ProductFamily.BTL)
    """

    def __init__(self, db: Session):
        self.db = db

    def reconcile(self, quote_id: str, family: ProductFamily) -> Optional[Dict[str, Any]]:
        """
        Rebuild the DIP row for a quote.

        Returns the new DIP row as a dict, or None when there were no QUOTE
        candidates or the run failed (logged).
        """
        try:
            return self._reconcile(quote_id, family)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Non-fatal: failed to ensure DIP stage result for quote {quote_id}: {e}")
            return None

    def _reconcile(self, quote_id: str, family: ProductFamily) -> Optional[Dict[str, Any]]:
        model = family.result_model

        # Step 1: singleton invariant before recomputation
        removed = self.db.query(model).filter(
            model.quote_id == quote_id,
            model.stage == ResultStage.DIP.value,
        ).delete(synchronize_session=False)
        self.db.commit()

        # Step 2: QUOTE-stage candidates
        candidates = (
            self.db.query(model)
            .filter(model.quote_id == quote_id, model.stage != ResultStage.DIP.value)
            .order_by(model.created_at.asc())
            .all()
        )
        if not candidates:
            logger.info(f"No QUOTE results to promote to DIP for quote {quote_id} (removed {removed})")
            return None

        # Step 3: best candidate
        best = select_best_candidate([row.to_dict() for row in candidates])

        # Step 4: clone as DIP
        fields = {k: v for k, v in best.items() if k not in _CLONE_EXCLUDED}
        fields["quote_id"] = quote_id
        values, extras = model.split_fields(fields)
        dip_row = model(id=str(uuid4()), stage=ResultStage.DIP.value, payload=extras, **values)
        self.db.add(dip_row)
        self.db.commit()

        logger.info(
            f"DIP result for quote {quote_id} cloned from {best.get('id')} "
            f"({best.get('fee_column') or best.get('product_name')})"
        )
        return dip_row.to_dict()

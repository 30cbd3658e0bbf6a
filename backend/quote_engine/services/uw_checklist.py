"""
UW Checklist Service

Underwriting checklist state per quote and stage. Items are stored as a list
of checked ids and exchanged with clients as {item_id: true}.

Saving mirrors the checked count onto `uw_checklist_progress` of the owning
quote (BTL first, then Bridging) as a best-effort post-write step.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StoreError, ValidationError
from ..models.db_models import ChecklistStage, UWChecklistStateDB
from .post_write import PostWriteStep, run_post_write_steps
from .quote_store import QuoteStore


logger = logging.getLogger(__name__)


def normalize_checked_items(checked_items: Any) -> List[str]:
    """{id: bool} keeps only the true entries; lists are taken as-is."""
    if checked_items is None:
        return []
    if isinstance(checked_items, dict):
        return [str(k) for k, v in checked_items.items() if v is True]
    if isinstance(checked_items, (list, tuple)):
        return [str(i) for i in checked_items]
    raise ValidationError("checked_items must be an object or a list", details={"checked_items": repr(checked_items)})


def as_checked_map(items: List[str]) -> Dict[str, bool]:
    return {item: True for item in items}


def _stage_value(stage: Optional[str]) -> str:
    if not stage:
        return ChecklistStage.BOTH.value
    try:
        return ChecklistStage(stage).value
    except ValueError:
        valid = [s.value for s in ChecklistStage]
        raise ValidationError(f"Invalid stage. Must be one of: {valid}", details={"stage": stage})


class UWChecklistService:

    def __init__(self, db: Session, store: Optional[QuoteStore] = None):
        self.db = db
        self.store = store or QuoteStore(db)

    def _find(self, quote_id: str, stage: str) -> Optional[UWChecklistStateDB]:
        try:
            return (
                self.db.query(UWChecklistStateDB)
                .filter(UWChecklistStateDB.quote_id == quote_id, UWChecklistStateDB.stage == stage)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching UW checklist state for quote {quote_id}: {e}")
            raise StoreError("Failed to fetch UW checklist state") from e

    def get_checklist(self, quote_id: str, stage: Optional[str] = None) -> Dict[str, Any]:
        stage_value = _stage_value(stage)
        state = self._find(quote_id, stage_value)
        if state is None:
            return {"quote_id": quote_id, "checked_items": {}, "custom_requirements": None, "stage": stage_value}

        data = state.to_dict()
        data["checked_items"] = as_checked_map(data["checked_items"])
        return data

    def save_checklist(
        self,
        quote_id: str,
        checked_items: Any,
        stage: Optional[str] = None,
        custom_requirements: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Upsert on (quote_id, stage) and mirror the checked count onto the quote."""
        stage_value = _stage_value(stage)
        items = normalize_checked_items(checked_items)

        state = self._find(quote_id, stage_value)
        if state is None:
            state = UWChecklistStateDB(id=str(uuid4()), quote_id=quote_id, stage=stage_value)
            self.db.add(state)
        state.checked_items = items
        state.custom_requirements = custom_requirements or None
        state.last_updated_by = updated_by or "system"

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error saving UW checklist state for quote {quote_id}: {e}")
            raise StoreError("Failed to save UW checklist state") from e

        data = state.to_dict()
        logger.info(f"UW checklist state saved for quote {quote_id}: {len(items)} checked ({stage_value})")

        run_post_write_steps(self.db, [
            PostWriteStep("uw_checklist_progress", lambda: self.store.set_checklist_progress(quote_id, len(items))),
        ], context=f"for quote {quote_id}")

        data["checked_items"] = as_checked_map(items)
        return data

"""
Quote Store

CRUD over the two parallel quote families:
    BTL       quotes / quote_results
    BRIDGING  bridge_quotes / bridge_quote_results

Resolution protocol:
- The family is picked once at the boundary (ProductFamily) and passed down
  explicitly to the result writer and the DIP reconciler.
- resolve_family() probes the hinted family (BTL when no hint) and falls back
  to the sibling only on the family's "no rows" signal. Any other store error
  propagates immediately as StoreError.
- Updates retry the identical write against the sibling when it touches zero
  rows, so a stale or missing calculator_type hint still lands on the right row.

Timestamp promotion:
    quote_status -> quote_issued_at, dip_status -> dip_issued_at.
    Once set, an issued timestamp only moves forward.

Side effects after a successful primary write (result replacement, DIP
reconciliation, child cleanup) are best-effort post-write steps. Their
failures are logged, never surfaced, and never roll the quote back.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from dateutil import parser as date_parser
from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import QUOTE_LIST_DEFAULT_LIMIT
from ..errors import NotFoundError, StoreError, ValidationError
from ..models.db_models import ProductFamily, UWChecklistStateDB
from .dip_reconciler import DipReconciler, is_issued_status
from .post_write import PostWriteStep, run_post_write_steps
from .reference_numbers import ReferenceNumberIssuer
from .result_writer import ResultSetWriter, to_nullable_number


logger = logging.getLogger(__name__)

# Bookkeeping fields a client can never set directly
_CREATE_READ_ONLY = ("id", "reference_number", "calculator_type", "user_id", "created_at", "updated_at", "results")
_UPDATE_READ_ONLY = _CREATE_READ_ONLY

_NUMERIC_COLUMNS = ("loan_amount", "gross_loan", "property_value", "ltv")
_TIMESTAMP_COLUMNS = ("quote_issued_at", "dip_issued_at")
_ISSUE_PAIRS = (
    ("quote_status", "quote_issued_at"),
    ("dip_status", "dip_issued_at"),
)


# =============================================================================
# FIELD HELPERS
# =============================================================================

def parse_timestamp(value: Any, field_name: str = "timestamp") -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = date_parser.isoparse(value)
        except ValueError:
            raise ValidationError(
                f"Invalid {field_name}",
                details={field_name: f"'{value}' is not an ISO-8601 timestamp"},
            )
    else:
        raise ValidationError(f"Invalid {field_name}", details={field_name: "must be an ISO-8601 string"})

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def promote_issued_timestamps(
    updates: Dict[str, Any],
    existing_quote_issued_at: Optional[datetime],
    existing_dip_issued_at: Optional[datetime],
    now: datetime,
) -> Dict[str, Any]:
    """
    Apply the issued-timestamp rules to an update dict.

    - status being set to an "issued" value: existing, else supplied, else now
    - status untouched (or not issued) and a timestamp already exists: keep it,
      unless the caller supplies a strictly newer one
    """
    promoted = dict(updates)
    existing = {
        "quote_issued_at": existing_quote_issued_at,
        "dip_issued_at": existing_dip_issued_at,
    }

    for status_field, ts_field in _ISSUE_PAIRS:
        current = existing[ts_field]
        supplied = parse_timestamp(promoted.get(ts_field), ts_field)

        if is_issued_status(promoted.get(status_field)):
            promoted[ts_field] = current or supplied or now
        elif current is not None:
            promoted[ts_field] = supplied if supplied is not None and supplied > current else current
        elif ts_field in promoted:
            promoted[ts_field] = supplied

    return promoted


def _prepare_values(model, fields: Dict[str, Any], existing_payload: Optional[Dict[str, Any]] = None):
    """Split fields into column values plus merged payload, coercing typed columns."""
    values, extras = model.split_fields(fields)
    for name in _NUMERIC_COLUMNS:
        if name in values:
            values[name] = to_nullable_number(values[name])
    for name in _TIMESTAMP_COLUMNS:
        if name in values and not isinstance(values[name], datetime):
            values[name] = parse_timestamp(values[name], name)
    if extras:
        values["payload"] = {**(existing_payload or {}), **extras}
    return values


def _created_sort_key(quote: Dict[str, Any]) -> datetime:
    return quote.get("created_at") or datetime.min


# =============================================================================
# STORE
# =============================================================================

class QuoteStore:
    """
    Usage:
        store = QuoteStore(db)
        quote = store.create("bridging", {"name": "Smith"}, user_id=user.id)
        store.update(quote["id"], {"dip_status": "Issued"})
    """

    def __init__(
        self,
        db: Session,
        issuer: Optional[ReferenceNumberIssuer] = None,
        writer: Optional[ResultSetWriter] = None,
        reconciler: Optional[DipReconciler] = None,
    ):
        self.db = db
        self.issuer = issuer or ReferenceNumberIssuer(db)
        self.writer = writer or ResultSetWriter(db)
        self.reconciler = reconciler or DipReconciler(db)

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def _probe(self, family: ProductFamily, quote_id: str):
        """Fetch a quote row from one family; None on that family's "no rows" signal."""
        model = family.quote_model
        try:
            return self.db.query(model).filter(model.id == quote_id).one()
        except NoResultFound:
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching quote {quote_id} from {family.quote_table}: {e}")
            raise StoreError("Failed to fetch quote") from e

    def resolve_family(self, quote_id: str, hint: Optional[str] = None) -> Tuple[ProductFamily, Any]:
        """
        Which family owns quote_id, with its row.

        Probes the hinted family (BTL without a hint), then the sibling.
        Raises NotFoundError when neither holds the quote.
        """
        primary = ProductFamily.from_calculator_type(hint) if hint else ProductFamily.BTL
        for family in (primary, primary.sibling):
            row = self._probe(family, quote_id)
            if row is not None:
                if family is not primary:
                    logger.info(f"Quote {quote_id} resolved via fallback to {family.quote_table}")
                return family, row
        raise NotFoundError("Quote not found")

    def _reload(self, family: ProductFamily, quote_id: str) -> Dict[str, Any]:
        row = self._probe(family, quote_id)
        if row is None:
            raise NotFoundError("Quote not found")
        return row.to_dict()

    def _write_update(self, family: ProductFamily, quote_id: str, values: Dict[str, Any]) -> ProductFamily:
        """UPDATE against family, retried once against the sibling on zero affected rows."""
        for target in (family, family.sibling):
            model = target.quote_model
            try:
                affected = (
                    self.db.query(model)
                    .filter(model.id == quote_id)
                    .update(values, synchronize_session=False)
                )
                if affected:
                    self.db.commit()
                    return target
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Error updating quote {quote_id} in {target.quote_table}: {e}")
                raise StoreError("Failed to update quote") from e
            logger.info(f"Update of quote {quote_id} touched 0 rows in {target.quote_table}")
        raise NotFoundError("Quote not found in either table")

    def _load_results(self, family: ProductFamily, quote_id: str) -> List[Dict[str, Any]]:
        model = family.result_model
        try:
            rows = (
                self.db.query(model)
                .filter(model.quote_id == quote_id)
                .order_by(model.created_at.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching results for quote {quote_id} from {family.results_table}: {e}")
            return []
        return [r.to_dict() for r in rows]

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create(
        self,
        calculator_type: str,
        fields: Dict[str, Any],
        user_id: Optional[str] = None,
        results: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Insert a quote into the family selected by calculator_type.

        The owner is the authenticated user; a client-supplied user_id is only
        used when there is no authenticated identity. Results, when supplied,
        are written as a best-effort step after the quote commits.
        """
        family = ProductFamily.from_calculator_type(calculator_type)
        model = family.quote_model
        owner = user_id or fields.get("user_id")

        data = {k: v for k, v in fields.items() if k not in _CREATE_READ_ONLY}
        values = _prepare_values(model, data)
        values.setdefault("payload", {})

        quote_id = str(uuid4())
        quote = model(
            id=quote_id,
            reference_number=self.issuer.issue(),
            calculator_type=family.value,
            user_id=owner,
            **values,
        )
        try:
            self.db.add(quote)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating quote in {family.quote_table}: {e}")
            raise StoreError("Failed to create quote") from e

        logger.info(f"Created {family.value} quote {quote_id} ({quote.reference_number})")

        if results:
            run_post_write_steps(
                self.db,
                [PostWriteStep("results", lambda: self.writer.insert_results(quote_id, family, results))],
                context=f"for quote {quote_id}",
            )

        return self._reload(family, quote_id)

    def list(
        self,
        calculator_type: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = QUOTE_LIST_DEFAULT_LIMIT,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Newest-first page of quotes.

        With no calculator_type both families are paged with the same
        offset/limit, merged by created_at descending and truncated to limit.
        A family that fails to load is logged and skipped in that case.
        """
        kind = (calculator_type or "").strip().lower()
        if kind in ("bridging", "bridge"):
            return self._page(ProductFamily.BRIDGING, user_id, limit, offset)
        if kind == "btl":
            return self._page(ProductFamily.BTL, user_id, limit, offset)

        combined = []
        for family in ProductFamily:
            try:
                combined.extend(self._page(family, user_id, limit, offset))
            except StoreError as e:
                logger.error(f"Error fetching {family.value} quotes for combined list: {e}")
        combined.sort(key=_created_sort_key, reverse=True)
        return combined[:limit]

    def _page(self, family: ProductFamily, user_id: Optional[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        model = family.quote_model
        query = self.db.query(model)
        if user_id:
            query = query.filter(model.user_id == user_id)
        try:
            rows = query.order_by(model.created_at.desc()).offset(offset).limit(limit).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Failed to fetch {family.value} quotes") from e
        return [r.to_dict() for r in rows]

    def get(self, quote_id: str, include_results: bool = False) -> Dict[str, Any]:
        """Fetch a quote, BTL first then Bridging; results come from the owning family."""
        family, quote = self.resolve_family(quote_id)
        data = quote.to_dict()
        if include_results:
            data["results"] = self._load_results(family, quote_id)
        return data

    def update(
        self,
        quote_id: str,
        fields: Dict[str, Any],
        calculator_type: Optional[str] = None,
        results: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Partial update with field-merge semantics.

        Runs, after the quote commits:
        - result replacement when a non-empty results list is supplied
        - DIP reconciliation when dip_status is being set to an issued value
        """
        now = datetime.utcnow()
        family, current = self.resolve_family(quote_id, calculator_type)

        updates = {k: v for k, v in fields.items() if k not in _UPDATE_READ_ONLY}
        if "dip_status" in updates or "quote_status" in updates:
            logger.info(
                f"Status update for quote {quote_id}: quote_status={updates.get('quote_status')!r} "
                f"dip_status={updates.get('dip_status')!r}"
            )
        updates = promote_issued_timestamps(updates, current.quote_issued_at, current.dip_issued_at, now)
        updates["updated_at"] = now

        values = _prepare_values(family.quote_model, updates, existing_payload=current.payload)
        target = self._write_update(family, quote_id, values)

        steps = []
        if results:
            steps.append(PostWriteStep(
                "results", lambda: self.writer.replace_results(quote_id, target, results),
            ))
        if is_issued_status(updates.get("dip_status")):
            steps.append(PostWriteStep(
                "dip_stage", lambda: self.reconciler.reconcile(quote_id, target),
            ))
        run_post_write_steps(self.db, steps, context=f"for quote {quote_id}")

        return self._reload(target, quote_id)

    def delete(self, quote_id: str) -> Dict[str, Any]:
        """Delete a quote (BTL first, then Bridging) and, best-effort, its children."""
        family, quote = self.resolve_family(quote_id)
        deleted = quote.to_dict()
        try:
            self.db.delete(quote)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting quote {quote_id} from {family.quote_table}: {e}")
            raise StoreError("Failed to delete quote") from e

        result_model = family.result_model
        run_post_write_steps(self.db, [
            PostWriteStep("results", lambda: self._delete_children(result_model, result_model.quote_id, quote_id)),
            PostWriteStep("uw_checklist", lambda: self._delete_children(
                UWChecklistStateDB, UWChecklistStateDB.quote_id, quote_id,
            )),
        ], context=f"for deleted quote {quote_id}")

        logger.info(f"Deleted {family.value} quote {quote_id}")
        return deleted

    def _delete_children(self, model, column, quote_id: str) -> int:
        removed = self.db.query(model).filter(column == quote_id).delete(synchronize_session=False)
        self.db.commit()
        return removed

    def set_checklist_progress(self, quote_id: str, checked_count: int) -> ProductFamily:
        """Mirror UW checklist progress onto the owning quote, BTL first."""
        return self._write_update(ProductFamily.BTL, quote_id, {"uw_checklist_progress": checked_count})

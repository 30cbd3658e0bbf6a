"""
Result Set Writer

Replaces a quote's result rows wholesale. There is no partial patch of
individual result rows: on update the whole set for the quote is deleted and
re-inserted.

Partial failure policy:
    The delete is committed before the insert runs. If the insert fails the
    quote is left with zero result rows; the failure is logged and the owning
    quote write is NOT rolled back. Concurrent readers between the two
    statements also observe zero rows.
"""
import logging
import math
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.db_models import ProductFamily, ResultStage


logger = logging.getLogger(__name__)

# Fields owned by the writer, never taken from the client payload
_MANAGED_FIELDS = ("id", "quote_id", "stage", "serviced_months", "created_at", "updated_at")
_LOAN_COLUMNS = ("gross_loan", "net_loan")
_MONTH_COLUMNS = ("initial_term", "rolled_months")
_NON_NUMERIC_CHARS = re.compile(r"[^0-9.\-]")


def to_nullable_number(value: Any) -> Optional[float]:
    """
    Parse a number or return None.

    Accepts finite ints/floats and numeric strings with currency symbols or
    thousands separators ("£250,000" -> 250000). Empty strings, booleans and
    anything unparseable become None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        cleaned = _NON_NUMERIC_CHARS.sub("", value)
        if cleaned == "":
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _whole(number: Optional[float]):
    if number is None:
        return None
    return int(number) if float(number).is_integer() else number


def to_whole_months(value: Any) -> Optional[int]:
    """Month counts are stored as integers; fractions round half up (24.5 -> 25)."""
    number = to_nullable_number(value)
    if number is None:
        return None
    return int(math.floor(number + 0.5))


def compute_serviced_months(initial_term: Any, rolled_months: Any) -> Optional[int]:
    """max(0, initial_term - rolled_months) in whole months when both are numeric, else None."""
    term = to_whole_months(initial_term)
    rolled = to_whole_months(rolled_months)
    if term is None or rolled is None:
        return None
    return max(0, term - rolled)


def build_result_row(family: ProductFamily, quote_id: str, result: Dict[str, Any]):
    """Map a client result dict onto a QUOTE-stage row of the family's results table."""
    model = family.result_model
    fields = {k: v for k, v in result.items() if k not in _MANAGED_FIELDS}
    values, extras = model.split_fields(fields)

    for name in _LOAN_COLUMNS:
        if name in values:
            values[name] = _whole(to_nullable_number(values[name]))
    for name in _MONTH_COLUMNS:
        if name in values:
            values[name] = to_whole_months(values[name])

    return model(
        id=str(uuid4()),
        quote_id=quote_id,
        stage=ResultStage.QUOTE.value,
        serviced_months=compute_serviced_months(result.get("initial_term"), result.get("rolled_months")),
        payload=extras,
        **values,
    )


class ResultSetWriter:
    """Writes result rows into the results table of one product family."""

    def __init__(self, db: Session):
        self.db = db

    def insert_results(self, quote_id: str, family: ProductFamily, results: List[Dict[str, Any]]) -> int:
        """
        Bulk-insert result rows for a quote.

        Returns the number of rows written, or 0 when the insert failed
        (logged, session rolled back).
        """
        if not results:
            return 0

        rows = [build_result_row(family, quote_id, r) for r in results]
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Error saving {len(rows)} results to {family.results_table} for quote {quote_id}: {e}"
            )
            return 0

        logger.info(f"Saved {len(rows)} results to {family.results_table} for quote {quote_id}")
        return len(rows)

    def replace_results(self, quote_id: str, family: ProductFamily, results: List[Dict[str, Any]]) -> int:
        """Delete every existing row for the quote, commit, then insert the new set."""
        model = family.result_model
        deleted = self.db.query(model).filter(model.quote_id == quote_id).delete(synchronize_session=False)
        self.db.commit()
        logger.info(f"Replacing results for quote {quote_id} in {family.results_table}: removed {deleted}")

        return self.insert_results(quote_id, family, results)

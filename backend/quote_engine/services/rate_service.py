"""
Rate Service

Read access to the rate tables plus the audited single-field rate patch.

Patch policy:
    write-then-best-effort-audit. The rate update commits first; the audit
    entry is written afterwards and a failure there is logged without
    reverting the rate.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import (
    AUDIT_LOG_DEFAULT_LIMIT, AUDIT_LOG_MAX_LIMIT,
    EDITABLE_RATE_FIELDS, EDITABLE_RATE_TABLES,
    RATE_LIST_DEFAULT_LIMIT, RATE_LIST_MAX_LIMIT,
    RATE_MAX, RATE_MIN,
)
from ..errors import NotFoundError, StoreError, ValidationError
from ..models.db_models import RateAuditLogDB, SchemaKind
from .rate_health import format_number, to_finite_number


logger = logging.getLogger(__name__)

RATE_EQ_FILTERS = ("set_key", "property", "rate_type", "tier", "product", "product_fee", "initial_term", "full_term")
RATE_BOOL_FILTERS = ("is_retention", "is_tracker")
_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


@dataclass
class RateActor:
    """Who made a rate change."""
    user_id: Optional[str]
    email: Optional[str]
    name: Optional[str] = None


def _clamp(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    if number == 0:
        number = default
    return max(low, min(number, high))


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def coerce_rate_value(field: str, value: Any) -> Any:
    """Validate and convert a patch value for one of the editable fields."""
    if field == "product_fee":
        return None if value is None else str(value)

    number = to_finite_number(value)
    if field == "rate":
        if number is None or number < RATE_MIN or number > RATE_MAX:
            raise ValidationError(
                "Rate must be a number between 0 and 100",
                details={"value": f"{value!r} is outside [{RATE_MIN:g}, {RATE_MAX:g}]"},
            )
        return number

    if number is None:
        raise ValidationError(f"{field} must be a number", details={field: f"{value!r} is not numeric"})
    if field in ("min_term", "max_term"):
        if not number.is_integer():
            raise ValidationError(f"{field} must be a whole number of months", details={field: repr(value)})
        return int(number)
    return number


class RateService:
    """
    Usage:
        service = RateService(db)
        rates = service.list_rates({"set_key": "RATES_SPEC", "property": "Residential"})
        updated = service.patch_rate(12, "rate", 4.25, "rates_flat", actor)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # LISTING
    # =========================================================================

    def list_rates(
        self,
        filters: Dict[str, Any],
        sort: str = "set_key",
        order: str = "asc",
        limit: Any = RATE_LIST_DEFAULT_LIMIT,
        offset: Any = 0,
    ) -> List[Dict[str, Any]]:
        """Rates from the table that matches filters['set_key'] (BTL when absent)."""
        schema_kind = SchemaKind.from_set_key(filters.get("set_key"))
        model = schema_kind.rate_model
        columns = model.__table__.columns
        query = self.db.query(model)

        for name in RATE_EQ_FILTERS:
            value = filters.get(name)
            if value is None or value == "":
                continue
            if name not in columns:
                logger.info(f"Ignoring filter '{name}' not present on {schema_kind.table_name}")
                continue
            if columns[name].type.python_type in (int, float):
                number = to_finite_number(value)
                if number is None:
                    raise ValidationError(f"{name} must be numeric", details={name: repr(value)})
                value = number
            else:
                value = str(value)
            query = query.filter(getattr(model, name) == value)

        for name in RATE_BOOL_FILTERS:
            value = filters.get(name)
            if value is None or value == "":
                continue
            flag = str(value).lower()
            if flag in _TRUE:
                query = query.filter(getattr(model, name).is_(True))
            elif flag in _FALSE:
                query = query.filter(getattr(model, name).is_(False))

        sort_column = getattr(model, sort) if isinstance(sort, str) and sort in columns else model.set_key
        sort_column = sort_column.desc() if str(order).lower() == "desc" else sort_column.asc()

        limit_num = _clamp(limit, RATE_LIST_DEFAULT_LIMIT, 1, RATE_LIST_MAX_LIMIT)
        offset_num = _clamp(offset, 0, 0, 10 ** 9)

        try:
            rows = query.order_by(sort_column).offset(offset_num).limit(limit_num).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching rates from {schema_kind.table_name}: {e}")
            raise StoreError("Failed to fetch rates") from e
        return [r.to_dict() for r in rows]

    def list_audit_log(
        self,
        set_key: Optional[str] = None,
        limit: Any = AUDIT_LOG_DEFAULT_LIMIT,
        offset: Any = 0,
    ) -> List[Dict[str, Any]]:
        """Rate change history, newest first."""
        query = self.db.query(RateAuditLogDB)
        if set_key:
            query = query.filter(RateAuditLogDB.set_key == set_key)
        limit_num = _clamp(limit, AUDIT_LOG_DEFAULT_LIMIT, 1, AUDIT_LOG_MAX_LIMIT)
        offset_num = _clamp(offset, 0, 0, 10 ** 9)
        try:
            rows = (
                query.order_by(RateAuditLogDB.created_at.desc())
                .offset(offset_num)
                .limit(limit_num)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching rate audit log: {e}")
            raise StoreError("Failed to fetch audit log") from e
        return [r.to_dict() for r in rows]

    # =========================================================================
    # PATCH + AUDIT
    # =========================================================================

    def patch_rate(
        self,
        rate_id: int,
        field: str,
        value: Any,
        table_name: str,
        actor: RateActor,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Update one allow-listed field of a rate row and record it in the audit log.

        Returns {"rate": <updated row>, "audit_logged": bool}.
        """
        if table_name not in EDITABLE_RATE_TABLES:
            raise ValidationError("Invalid table name", details={"table_name": table_name})
        if field not in EDITABLE_RATE_FIELDS:
            raise ValidationError(f"Field '{field}' is not editable", details={"field": field})
        new_value = coerce_rate_value(field, value)

        model = SchemaKind.from_table_name(table_name).rate_model
        try:
            record = self.db.query(model).filter(model.id == rate_id).one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("Failed to fetch rate") from e
        if record is None:
            raise NotFoundError("Rate not found")

        old_value = getattr(record, field)
        logger.info(
            f"Updating {table_name}.{field} for rate {rate_id}: {old_value!r} -> {new_value!r} "
            f"by {actor.email or actor.user_id}"
        )

        try:
            setattr(record, field, new_value)
            record.updated_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating rate {rate_id} in {table_name}: {e}")
            raise StoreError("Failed to update rate") from e

        updated = record.to_dict()
        audit_logged = self._write_audit_entry(updated, table_name, field, old_value, new_value, actor, context or {})
        return {"rate": updated, "audit_logged": audit_logged}

    def _write_audit_entry(
        self,
        rate: Dict[str, Any],
        table_name: str,
        field: str,
        old_value: Any,
        new_value: Any,
        actor: RateActor,
        context: Dict[str, Any],
    ) -> bool:
        try:
            entry = RateAuditLogDB(
                id=str(uuid4()),
                table_name=table_name,
                record_id=int(rate["id"]),
                field_name=field,
                old_value=_as_text(old_value),
                new_value=_as_text(new_value),
                set_key=context.get("set_key") or rate.get("set_key"),
                product=context.get("product") or rate.get("product"),
                property=context.get("property") or rate.get("property"),
                min_ltv=_as_text(context.get("min_ltv") or rate.get("min_ltv")),
                max_ltv=_as_text(context.get("max_ltv") or rate.get("max_ltv")),
                user_id=actor.user_id,
                user_email=actor.email,
                user_name=actor.name or actor.email,
            )
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create audit log entry for rate {rate['id']} ({field}): {e}")
            return False

        logger.info(f"Audit log entry created for rate {rate['id']} ({field})")
        return True

"""
MFS Quote Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage

BTL and Bridging quotes live in two structurally parallel table pairs:
    quotes / quote_results                 (ProductFamily.BTL)
    bridge_quotes / bridge_quote_results   (ProductFamily.BRIDGING)

Rates live in one table per schema:
    rates_flat                 (SchemaKind.BTL)
    bridge_fusion_rates_full   (SchemaKind.BRIDGING)
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declared_attr

from ..config import BRIDGING_SET_KEYS, BRIDGING_RATES_TABLE, BTL_RATES_TABLE
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class ProductFamily(str, Enum):
    """Which quote/result table pair owns a quote."""
    BTL = "BTL"
    BRIDGING = "BRIDGING"

    @classmethod
    def from_calculator_type(cls, calculator_type: Optional[str]) -> "ProductFamily":
        """'bridging'/'bridge' (any case) selects BRIDGING, anything else BTL."""
        if calculator_type and str(calculator_type).strip().lower() in ("bridging", "bridge"):
            return cls.BRIDGING
        return cls.BTL

    @property
    def sibling(self) -> "ProductFamily":
        return ProductFamily.BRIDGING if self is ProductFamily.BTL else ProductFamily.BTL

    @property
    def quote_model(self):
        return _FAMILY_MODELS[self][0]

    @property
    def result_model(self):
        return _FAMILY_MODELS[self][1]

    @property
    def quote_table(self) -> str:
        return self.quote_model.__tablename__

    @property
    def results_table(self) -> str:
        return self.result_model.__tablename__


class ResultStage(str, Enum):
    """Stage of a quote result row. At most one DIP row exists per quote."""
    QUOTE = "QUOTE"
    DIP = "DIP"


class SchemaKind(str, Enum):
    """Rate table schema. BTL rows carry `tier`, Bridging/Fusion rows `type` + `charge_type`."""
    BTL = "BTL"
    BRIDGING = "BRIDGING"

    @classmethod
    def from_set_key(cls, set_key: Optional[str]) -> "SchemaKind":
        return cls.BRIDGING if set_key in BRIDGING_SET_KEYS else cls.BTL

    @classmethod
    def from_table_name(cls, table_name: str) -> "SchemaKind":
        return cls.BRIDGING if table_name == BRIDGING_RATES_TABLE else cls.BTL

    @property
    def rate_model(self):
        return BridgeFusionRateDB if self is SchemaKind.BRIDGING else RateFlatDB

    @property
    def table_name(self) -> str:
        return BRIDGING_RATES_TABLE if self is SchemaKind.BRIDGING else BTL_RATES_TABLE


class ChecklistStage(str, Enum):
    """Stage a UW checklist applies to."""
    BOTH = "Both"
    QUOTE = "Quote"
    DIP = "DIP"


# =============================================================================
# SHARED HELPERS
# =============================================================================

class PayloadMixin:
    """
    Rows that keep scenario/computed fields without a dedicated column in a
    JSON `payload` column. to_dict() flattens payload back into the row shape.
    """

    @classmethod
    def column_names(cls) -> Tuple[str, ...]:
        return tuple(c.key for c in cls.__table__.columns)

    @classmethod
    def split_fields(cls, fields: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Split a flat field dict into (column values, payload extras)."""
        columns = set(cls.column_names()) - {"payload"}
        values, extras = {}, {}
        for key, value in fields.items():
            if key in columns:
                values[key] = value
            else:
                extras[key] = value
        return values, extras

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.payload or {})
        for name in self.column_names():
            if name == "payload":
                continue
            data[name] = getattr(self, name)
        return data


class QuoteColumnsMixin(PayloadMixin):
    """Columns shared by quotes and bridge_quotes."""

    id = Column(String(36), primary_key=True)  # UUID
    reference_number = Column(String(50), unique=True, nullable=False, index=True)
    calculator_type = Column(String(20), nullable=False)  # BTL | BRIDGING
    user_id = Column(String(36), nullable=True, index=True)

    name = Column(String(255), nullable=True)
    borrower_name = Column(String(255), nullable=True)
    loan_amount = Column(Float, nullable=True)
    gross_loan = Column(Float, nullable=True)
    property_value = Column(Float, nullable=True)
    ltv = Column(Float, nullable=True)

    # Free-text statuses; a case-insensitive "issued" substring marks promotion
    quote_status = Column(String(50), nullable=True)
    dip_status = Column(String(50), nullable=True)
    # Monotonic once set
    quote_issued_at = Column(DateTime, nullable=True)
    dip_issued_at = Column(DateTime, nullable=True)

    uw_checklist_progress = Column(Integer, default=0)

    # Remaining scenario fields
    payload = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ResultColumnsMixin(PayloadMixin):
    """Columns shared by quote_results and bridge_quote_results."""

    __quote_table__ = None

    id = Column(String(36), primary_key=True)  # UUID

    @declared_attr
    def quote_id(cls):
        return Column(
            String(36),
            ForeignKey(f"{cls.__quote_table__}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    stage = Column(String(10), nullable=False, default=ResultStage.QUOTE.value)
    fee_column = Column(String(50), nullable=True)
    product_name = Column(String(255), nullable=True)

    gross_loan = Column(Float, nullable=True)
    net_loan = Column(Float, nullable=True)

    initial_term = Column(Integer, nullable=True)
    rolled_months = Column(Integer, nullable=True)
    serviced_months = Column(Integer, nullable=True)  # max(0, initial_term - rolled_months)

    # Rates, fees, interest schedules - opaque to the core
    payload = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# USERS
# =============================================================================

class UserDB(Base):
    """Broker or admin account. Credentials are managed outside this service."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(String(20), default="user")  # user | admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# QUOTES
# =============================================================================

class QuoteDB(QuoteColumnsMixin, Base):
    """Buy-To-Let quote."""
    __tablename__ = "quotes"


class QuoteResultDB(ResultColumnsMixin, Base):
    """Priced product/fee option for a BTL quote."""
    __tablename__ = "quote_results"
    __quote_table__ = "quotes"


class BridgeQuoteDB(QuoteColumnsMixin, Base):
    """Bridging quote."""
    __tablename__ = "bridge_quotes"


class BridgeQuoteResultDB(ResultColumnsMixin, Base):
    """Priced product/fee option for a Bridging quote."""
    __tablename__ = "bridge_quote_results"
    __quote_table__ = "bridge_quotes"


_FAMILY_MODELS = {
    ProductFamily.BTL: (QuoteDB, QuoteResultDB),
    ProductFamily.BRIDGING: (BridgeQuoteDB, BridgeQuoteResultDB),
}


class UWChecklistStateDB(Base):
    """Underwriting checklist progress for one quote and stage."""
    __tablename__ = "uw_checklist_state"
    __table_args__ = (UniqueConstraint("quote_id", "stage", name="uq_uw_checklist_quote_stage"),)

    id = Column(String(36), primary_key=True)  # UUID
    quote_id = Column(String(36), nullable=False, index=True)  # BTL or Bridging quote id
    stage = Column(String(10), nullable=False, default=ChecklistStage.BOTH.value)
    checked_items = Column(JSON, nullable=False, default=list)  # ["item-id", ...]
    custom_requirements = Column(Text, nullable=True)
    last_updated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "stage": self.stage,
            "checked_items": list(self.checked_items or []),
            "custom_requirements": self.custom_requirements,
            "last_updated_by": self.last_updated_by,
            "updated_at": self.updated_at,
        }


# =============================================================================
# RATES
# =============================================================================

class RateColumnsMixin:
    """Columns shared by both rate schemas."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    set_key = Column(String(50), nullable=False, index=True)
    property = Column(String(50), nullable=True, index=True)  # Residential, Commercial, Semi-Commercial, Core
    product = Column(String(255), nullable=True)

    # Kept as text so malformed imports stay visible to the data-health scan
    product_fee = Column(String(50), nullable=True)
    max_ltv = Column(String(20), nullable=True)

    rate = Column(Float, nullable=True)
    min_ltv = Column(Float, nullable=True)
    min_loan = Column(Float, nullable=True)
    max_loan = Column(Float, nullable=True)
    min_term = Column(Integer, nullable=True)
    max_term = Column(Integer, nullable=True)
    initial_term = Column(Integer, nullable=True)
    full_term = Column(Integer, nullable=True)
    is_retention = Column(Boolean, nullable=True)
    is_tracker = Column(Boolean, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {c.key: getattr(self, c.key) for c in self.__table__.columns}


class RateFlatDB(RateColumnsMixin, Base):
    """BTL rate row (tier-based schema)."""
    __tablename__ = BTL_RATES_TABLE

    tier = Column(String(20), nullable=True)
    rate_type = Column(String(50), nullable=True)
    status = Column(String(20), nullable=True)


class BridgeFusionRateDB(RateColumnsMixin, Base):
    """Bridging/Fusion rate row (type + charge_type schema)."""
    __tablename__ = BRIDGING_RATES_TABLE

    type = Column(String(50), nullable=True)  # Fixed | Variable
    charge_type = Column(String(50), nullable=True)  # First charge | Second charge


class RateAuditLogDB(Base):
    """Append-only record of single-field rate patches."""
    __tablename__ = "rate_audit_log"

    id = Column(String(36), primary_key=True)  # UUID
    table_name = Column(String(100), nullable=False)
    record_id = Column(Integer, nullable=False, index=True)
    field_name = Column(String(50), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    # Context snapshot so the log reads without joining back to the rate
    set_key = Column(String(50), nullable=True, index=True)
    product = Column(String(255), nullable=True)
    property = Column(String(50), nullable=True)
    min_ltv = Column(String(20), nullable=True)
    max_ltv = Column(String(20), nullable=True)

    user_id = Column(String(36), nullable=True)
    user_email = Column(String(255), nullable=True)
    user_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {c.key: getattr(self, c.key) for c in self.__table__.columns}

"""MFS Quote Engine - Data Models"""
from .db_models import (
    # Enums
    ProductFamily, ResultStage, SchemaKind, ChecklistStage,
    # Tables
    UserDB,
    QuoteDB, QuoteResultDB, BridgeQuoteDB, BridgeQuoteResultDB,
    UWChecklistStateDB,
    RateFlatDB, BridgeFusionRateDB, RateAuditLogDB,
)

__all__ = [
    "ProductFamily", "ResultStage", "SchemaKind", "ChecklistStage",
    "UserDB",
    "QuoteDB", "QuoteResultDB", "BridgeQuoteDB", "BridgeQuoteResultDB",
    "UWChecklistStateDB",
    "RateFlatDB", "BridgeFusionRateDB", "RateAuditLogDB",
]

"""
MFS Quote Engine - Configuration

Environment-driven settings and domain constants shared by routers and services.
"""
import os

# Runtime environment
APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Reference numbers fall back to PREFIX + unix millis when the sequence is unavailable
REFERENCE_PREFIX = os.getenv("REFERENCE_PREFIX", "MFS")

# =============================================================================
# RATE TABLES
# =============================================================================

# Bridging/Fusion set keys live in a structurally different rate table
BRIDGING_SET_KEYS = ("Bridging_Var", "Bridging_Fix", "Fusion")

BTL_RATES_TABLE = "rates_flat"
BRIDGING_RATES_TABLE = "bridge_fusion_rates_full"

DEFAULT_DATA_HEALTH_SET_KEY = "RATES_SPEC"
DUPLICATE_SAMPLE_CAP = 10

EDITABLE_RATE_TABLES = (BRIDGING_RATES_TABLE, BTL_RATES_TABLE)
EDITABLE_RATE_FIELDS = ("rate", "min_loan", "max_loan", "product_fee", "min_term", "max_term")
RATE_MIN = 0.0
RATE_MAX = 100.0

# =============================================================================
# PAGINATION
# =============================================================================

QUOTE_LIST_DEFAULT_LIMIT = 100
RATE_LIST_DEFAULT_LIMIT = 500
RATE_LIST_MAX_LIMIT = 2000
AUDIT_LOG_DEFAULT_LIMIT = 50
AUDIT_LOG_MAX_LIMIT = 200


def is_production() -> bool:
    """True when running with APP_ENV=production."""
    return APP_ENV.lower() == "production"

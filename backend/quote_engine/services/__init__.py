"""
Quote Engine Services

Quote lifecycle:
- QuoteStore: CRUD across the BTL and Bridging table pairs with fallback resolution
- ResultSetWriter: wholesale replacement of a quote's result rows
- DipReconciler: single canonical DIP-stage result row per quote
- ReferenceNumberIssuer: quote references with timestamp fallback

Rates:
- RateHealthAnalyzer: duplicate/anomaly scan of a rate table
- RateService: rate listing, audited single-field patch, audit log
"""

from .reference_numbers import ReferenceNumberIssuer
from .result_writer import ResultSetWriter
from .dip_reconciler import DipReconciler
from .quote_store import QuoteStore
from .uw_checklist import UWChecklistService
from .rate_health import RateHealthAnalyzer
from .rate_service import RateService, RateActor

__all__ = [
    'ReferenceNumberIssuer',
    'ResultSetWriter',
    'DipReconciler',
    'QuoteStore',
    'UWChecklistService',
    'RateHealthAnalyzer',
    'RateService',
    'RateActor',
]

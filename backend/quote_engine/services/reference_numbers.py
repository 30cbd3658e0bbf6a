"""
Reference Number Issuer

Issues the human-readable reference stamped on every new quote.

The sequence lives in the database (`generate_reference_number()` on Postgres).
When the generator is unavailable or fails, the issuer falls back to
PREFIX + unix millis. Issuance never blocks quote creation.
"""
import logging
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import REFERENCE_PREFIX


logger = logging.getLogger(__name__)


class ReferenceGeneratorUnavailable(RuntimeError):
    """The configured store has no reference sequence."""


def fallback_reference(prefix: str = REFERENCE_PREFIX) -> str:
    """PREFIX + current unix time in milliseconds, e.g. MFS1760870400123."""
    return f"{prefix}{int(time.time() * 1000)}"


class ReferenceNumberIssuer:
    """
    Usage:
        issuer = ReferenceNumberIssuer(db)
        reference = issuer.issue()

    `generator` replaces the database sequence (tests, alternative stores).
    """

    def __init__(self, db: Session, generator: Optional[Callable[[], Optional[str]]] = None):
        self.db = db
        self.generator = generator or self._database_sequence

    def _database_sequence(self) -> Optional[str]:
        bind = self.db.get_bind()
        if bind.dialect.name != "postgresql":
            raise ReferenceGeneratorUnavailable(
                f"generate_reference_number() not available on {bind.dialect.name}"
            )
        # Savepoint so a failing call leaves the outer transaction usable
        with self.db.begin_nested():
            return self.db.execute(text("SELECT generate_reference_number()")).scalar()

    def issue(self) -> str:
        try:
            reference = self.generator()
        except Exception as e:
            logger.error(f"Reference number generator failed, using fallback: {e}")
            return fallback_reference()

        if not reference:
            logger.warning("Reference number generator returned nothing, using fallback")
            return fallback_reference()
        return str(reference)

"""
Migration: Add the quote reference number generator.

Creates a sequence and the generate_reference_number() function that
ReferenceNumberIssuer calls. References look like MFS000123. Without this
function the issuer falls back to PREFIX + unix millis.

Usage: python -m migrations.add_reference_number_sequence
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quote_engine.config import REFERENCE_PREFIX
from quote_engine.database import engine
from sqlalchemy import text


def run_migration():
    """Create quote_reference_seq and generate_reference_number()."""
    with engine.connect() as conn:
        conn.execute(text("CREATE SEQUENCE IF NOT EXISTS quote_reference_seq START 1"))
        print("Ensured quote_reference_seq")

        conn.execute(text(f"""
            CREATE OR REPLACE FUNCTION generate_reference_number()
            RETURNS TEXT AS $$
            BEGIN
                RETURN '{REFERENCE_PREFIX}' || LPAD(nextval('quote_reference_seq')::TEXT, 6, '0');
            END;
            $$ LANGUAGE plpgsql
        """))
        print("Created generate_reference_number()")

        conn.commit()
        print("Migration complete")


if __name__ == "__main__":
    run_migration()

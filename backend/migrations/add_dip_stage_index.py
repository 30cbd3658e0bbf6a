"""
Migration: Enforce at most one DIP-stage result row per quote.

Adds a partial unique index on each result table so a concurrent second DIP
reconcile fails its insert instead of leaving two DIP rows behind.

Run this script to update the database schema.
Usage: python -m migrations.add_dip_stage_index
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quote_engine.database import engine
from sqlalchemy import text

RESULT_TABLES = ("quote_results", "bridge_quote_results")


def index_exists(conn, index_name: str) -> bool:
    """Check if an index exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM pg_indexes
            WHERE indexname = :index_name
        )
    """), {"index_name": index_name})
    return result.fetchone()[0]


def run_migration():
    """Create partial unique indexes on (quote_id) WHERE stage = 'DIP'."""
    with engine.connect() as conn:
        for table_name in RESULT_TABLES:
            index_name = f"uq_{table_name}_single_dip"
            if index_exists(conn, index_name):
                print(f"{index_name} already exists")
                continue

            # Existing duplicates would block the index; keep the newest DIP row
            # (highest id among rows with equal created_at)
            deleted = conn.execute(text(f"""
                DELETE FROM {table_name} r
                USING {table_name} newer
                WHERE r.stage = 'DIP'
                  AND newer.stage = 'DIP'
                  AND r.quote_id = newer.quote_id
                  AND (
                      r.created_at < newer.created_at
                      OR (r.created_at = newer.created_at AND r.id < newer.id)
                  )
            """))
            if deleted.rowcount:
                print(f"Removed {deleted.rowcount} stale DIP rows from {table_name}")

            conn.execute(text(f"""
                CREATE UNIQUE INDEX {index_name}
                ON {table_name}(quote_id)
                WHERE stage = 'DIP'
            """))
            print(f"Created {index_name}")

        conn.commit()
        print("Migration complete")


if __name__ == "__main__":
    run_migration()

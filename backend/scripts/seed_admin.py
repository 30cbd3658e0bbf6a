#!/usr/bin/env python3
"""
Admin User Seed Script
Creates (or promotes) an admin user and prints a bearer token for it.

Credentials live with the identity provider; this only registers the user row
the API resolves tokens against.

Usage:
    python -m scripts.seed_admin <email> <name>

Example:
    python -m scripts.seed_admin ops@mfs.example "Ops Admin"
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from quote_engine.database import SessionLocal, init_db
from quote_engine.models.db_models import UserDB
from quote_engine.auth import create_access_token


def create_admin_user(email: str, name: str) -> bool:
    """Create an admin user in the database."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        user = db.query(UserDB).filter(UserDB.email == email).first()

        if user:
            if user.role == "admin":
                print(f"User '{email}' is already an admin.")
            else:
                # Upgrade existing user to admin
                user.role = "admin"
                db.commit()
                print(f"Upgraded existing user '{email}' to admin role.")
        else:
            user = UserDB(
                id=str(uuid4()),
                email=email,
                name=name,
                role="admin",
            )
            db.add(user)
            db.commit()
            print("Admin user created successfully!")
            print(f"  Email: {email}")
            print(f"  Name: {name}")
            print("  Role: admin")

        token = create_access_token(user.id, user.email, role="admin")
        print(f"  Token: {token}")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    name = sys.argv[2]

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, name)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

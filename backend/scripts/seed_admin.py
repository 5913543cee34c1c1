#!/usr/bin/env python3
"""
Admin User Seed Script
Creates (or promotes) an admin for the Follow Loop admin panel.

Usage:
    python -m scripts.seed_admin <email> <username> <password> [organization_id]

Example:
    python -m scripts.seed_admin admin@followloop.app admin securepassword123
"""
import sys
import os
import logging
from typing import Optional
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import UserDB, UserRole
from app.auth import hash_password

logger = logging.getLogger("seed_admin")


def create_admin_user(
    db: Session,
    email: str,
    username: str,
    password: str,
    organization_id: Optional[str] = None,
) -> UserDB:
    """
    Create an admin, or promote the existing account with this email.

    Raises ValueError when the username belongs to a different account.
    """
    existing = db.query(UserDB).filter(UserDB.email == email).first()
    if existing:
        if existing.role != UserRole.ADMIN.value:
            existing.role = UserRole.ADMIN.value
            db.commit()
            logger.info(f"Promoted existing user '{email}' to admin")
        else:
            logger.info(f"User '{email}' is already an admin")
        return existing

    if db.query(UserDB).filter(UserDB.username == username).first():
        raise ValueError(f"Username '{username}' already exists")

    admin_user = UserDB(
        id=str(uuid4()),
        email=email,
        username=username,
        password_hash=hash_password(password),
        role=UserRole.ADMIN.value,
        organization_id=organization_id,
    )
    db.add(admin_user)
    db.commit()
    logger.info(f"Admin user created: {email} ({username})")
    return admin_user


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    if len(sys.argv) not in (4, 5):
        print(__doc__)
        sys.exit(1)

    email, username, password = sys.argv[1:4]
    organization_id = sys.argv[4] if len(sys.argv) == 5 else None

    if len(password) < 8:
        logger.error("Password must be at least 8 characters.")
        sys.exit(1)
    if "@" not in email:
        logger.error("Invalid email format.")
        sys.exit(1)

    init_db()
    db = SessionLocal()
    try:
        create_admin_user(db, email, username, password, organization_id)
    except ValueError as e:
        logger.error(str(e))
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()

"""Provision an administrator account.

Usage:
    python create_admin.py --email admin@example.com --password secret1 [--name Admin]
"""

import argparse
import sys

import structlog

from auth import normalize_email, register
from config import load_settings
from database import Database
from errors import ValidationError
from log_config import configure_logging

logger = structlog.get_logger(__name__)


def create_admin(db: Database, settings, email: str, password: str, name: str = "Admin") -> bool:
    """Create the admin account unless the email is already registered."""
    email = normalize_email(email)
    if db["user"].find_one({"email": email}, {"_id": 1}):
        logger.info("Admin user already exists", email=email)
        return False
    register(db, settings, name=name, email=email, password=password, is_admin=True)
    logger.info("Admin user created", email=email)
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create the shop administrator account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name", default="Admin")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings)

    with Database(settings.database_url, settings.database_name, timeout_ms=settings.db_timeout_ms) as db:
        db.ensure_indexes()
        try:
            create_admin(db, settings, args.email, args.password, args.name)
        except ValidationError as e:
            for err in e.errors:
                logger.error("Invalid admin account", field=err["field"], message=err["message"])
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

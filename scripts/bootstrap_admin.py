#!/usr/bin/env python3
"""Seed the dashboard operator account.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=admin ADMIN_PASSWORD='correct horse battery' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username admin --password 'correct horse battery'

Environment Variables:
    ADMIN_USERNAME: Login name for the operator account
    ADMIN_PASSWORD: Password (at least MIN_PASSWORD_LENGTH characters)
    ADMIN_NAME: Optional display name
    JWT_SECRET: Required, same value the app runs with
    DATABASE_URL: SQLite URL (defaults to sqlite:///./pixelist.db)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_admin(
    username: str, password: str, name: str | None = None, dry_run: bool = False
) -> dict:
    """Create the operator account unless it already exists.

    Returns:
        dict with user_id, username and status ('created', 'exists' or 'dry_run')
    """
    # Import here so .env and CLI env overrides are read first
    from pixelist.config import get_settings
    from pixelist.service.runtime import Runtime

    runtime = Runtime(get_settings())
    try:
        existing = runtime.store.get_user_by_username(username)
        if existing:
            print(f"User {username} already exists (id: {existing.id})")
            return {"user_id": existing.id, "username": username, "status": "exists"}

        if dry_run:
            print(f"[DRY RUN] Would create user: {username}")
            return {"user_id": None, "username": username, "status": "dry_run"}

        user, _ = runtime.auth.ensure_user(username, password, name=name)
        print(f"Created user: {username} (id: {user.id})")
        return {"user_id": user.id, "username": username, "status": "created"}
    finally:
        runtime.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Seed the Pixelist operator account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Login name (or set ADMIN_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME"),
        help="Display name (or set ADMIN_NAME env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        return 1

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1

    from pixelist.config import ConfigurationError
    from pixelist.service.errors import ServiceError

    try:
        result = bootstrap_admin(args.username, args.password, args.name, args.dry_run)
    except (ConfigurationError, ServiceError) as exc:
        print(f"Error: {exc}")
        return 1

    if result["status"] == "created":
        print("\nOperator account created.")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "exists":
        print("\nNo changes needed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

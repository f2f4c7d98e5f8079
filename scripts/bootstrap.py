#!/usr/bin/env python3
"""CLI script to bootstrap a fresh Venuin access database.

Usage:
    uv run python scripts/bootstrap.py seed-plans
    uv run python scripts/bootstrap.py create-super-admin --email ops@venuin.io --password changeme

Connects directly to the database using DATABASE_URL from environment or .env file.
Super admins cannot be created through the API; this script is the only way in.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.venuin
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def seed_plans() -> None:
    """Insert the default plan catalog where missing."""
    from src.venuin.core.database import close_db, get_session_factory, init_db
    from src.venuin.services.tenants import seed_default_plans
    from src.venuin.storage.repository import AccessRepository

    await init_db()
    repository = AccessRepository(get_session_factory())
    async with repository.transaction() as store:
        created = await seed_default_plans(store)

    if created:
        for plan in created:
            print(f"  Created plan: {plan.slug} ({plan.name})")
    else:
        print("All default plans already exist")
    await close_db()


async def create_super_admin(email: str, password: str, name: str | None) -> None:
    """Create a super admin account."""
    from src.venuin.auth.principal import SubjectKind
    from src.venuin.auth.sessions import normalize_email
    from src.venuin.core.database import close_db, get_session_factory, init_db
    from src.venuin.core.security import hash_password
    from src.venuin.storage.repository import AccessRepository

    await init_db()
    repository = AccessRepository(get_session_factory())
    async with repository.transaction() as store:
        account = await store.create_account(
            SubjectKind.super_admin,
            normalize_email(email),
            password_hash=hash_password(password),
            name=name,
        )
        await store.add_audit_event(
            "super_admin.created",
            actor_kind="cli",
            target_id=account.id,
        )

    print("Super admin created:")
    print(f"  ID:    {account.id}")
    print(f"  Email: {account.email}")
    await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Bootstrap the Venuin access database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("seed-plans", help="Insert the Starter / Professional / Enterprise plans")

    admin_parser = subparsers.add_parser("create-super-admin", help="Create a super admin account")
    admin_parser.add_argument("--email", required=True, help="Super admin email")
    admin_parser.add_argument("--password", required=True, help="Super admin password (min 8 chars)")
    admin_parser.add_argument("--name", default=None, help="Display name")

    args = parser.parse_args()

    if args.command == "seed-plans":
        asyncio.run(seed_plans())
    elif args.command == "create-super-admin":
        if len(args.password) < 8:
            parser.error("--password must be at least 8 characters")
        asyncio.run(create_super_admin(args.email, args.password, args.name))


if __name__ == "__main__":
    main()

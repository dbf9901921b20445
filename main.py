#!/usr/bin/env python3
"""
AdBond admin CLI -- bootstrap accounts and work the verification queue
without the web UI.

Usage:
  python main.py create-admin admin@adbond.net --password 'a-long-password'
  python main.py pending
  python main.py pending --page 2 --limit 20
  python main.py verify 3f2c... approved --admin admin@adbond.net
  python main.py verify 3f2c... rejected --admin admin@adbond.net --notes "Website unreachable"

Environment variables (or .env):
  DATABASE_URL               SQLAlchemy URL shared with the API (default sqlite:///adbond.db)
  RESEND_API_KEY             Needed for welcome / rejection emails
  ADMIN_NOTIFICATION_EMAIL   Inbox for new-registration notices
"""

import argparse
import sys
from typing import Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import AdBondError
from entities.store import EntityStore
from entities.verification import build_workflow

_MIN_ADMIN_PASSWORD = 8


def _create_admin(args: argparse.Namespace, user_store: UserStore) -> int:
    if len(args.password) < _MIN_ADMIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_ADMIN_PASSWORD} characters.")
        return 1
    user_id = user_store.create_user(
        User(email=args.email, role="admin", hashed_password=hash_password(args.password))
    )
    print(f"  Admin created: {args.email.lower()} (id {user_id})")
    return 0


def _pending(args: argparse.Namespace, entity_store: EntityStore) -> int:
    result = entity_store.list_pending(page=args.page, limit=args.limit)
    if not result.entities:
        print("  No entities awaiting verification.")
        return 0
    print(f"\n  Pending verification -- page {result.page}/{result.total_pages} ({result.total} total)")
    print("  " + "-" * 76)
    for e in result.entities:
        print(f"  {e.id}  {e.entity_type:<10} {e.name[:28]:<28} {e.email}")
    print()
    return 0


def _verify(args: argparse.Namespace, entity_store: EntityStore, user_store: UserStore) -> int:
    admin = user_store.get_by_email(args.admin)
    if admin is None or admin.role != "admin":
        print(f"  [!] '{args.admin}' is not an admin account.")
        return 1

    workflow = build_workflow(entity_store, user_store, get_settings())
    outcome = workflow.decide(args.entity_id, args.status, admin.id, args.notes)
    print(f"  {outcome.entity.name}: {outcome.entity.verification_status}")
    if outcome.message:
        print(f"  {outcome.message}")
    if outcome.error:
        print(f"  [!] {outcome.error}")
    return 0 if outcome.success else 2


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="adbond",
        description="AdBond marketplace administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = commands.add_parser("create-admin", help="Create an admin login")
    p_admin.add_argument("email", help="Admin email address")
    p_admin.add_argument("--password", required=True, help="Initial password (min 8 characters)")

    p_pending = commands.add_parser("pending", help="List entities awaiting verification, oldest first")
    p_pending.add_argument("--page", type=int, default=1)
    p_pending.add_argument("--limit", type=int, default=10)

    p_verify = commands.add_parser("verify", help="Approve, reject, hold, or reset an entity")
    p_verify.add_argument("entity_id", help="Entity id (see `pending`)")
    p_verify.add_argument("status", choices=["pending", "approved", "rejected", "on_hold"])
    p_verify.add_argument("--admin", required=True, metavar="EMAIL", help="Admin account recorded as approver")
    p_verify.add_argument("--notes", default=None, help="Reviewer notes, included in rejection emails")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    user_store = UserStore(settings.database_url)
    entity_store = EntityStore(settings.database_url)
    try:
        if args.command == "create-admin":
            return _create_admin(args, user_store)
        if args.command == "pending":
            return _pending(args, entity_store)
        return _verify(args, entity_store, user_store)
    except AdBondError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        entity_store.close()
        user_store.close()


if __name__ == "__main__":
    sys.exit(main())

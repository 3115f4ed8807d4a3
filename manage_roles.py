#!/usr/bin/env python3
"""
Role management CLI.

Usage:
    python manage_roles.py set <user_id> <role>
    python manage_roles.py list [role]
    python manage_roles.py find <telegram_id>
    python manage_roles.py audit [limit]

Roles: siteAdmin, communityAdmin, user
"""
import argparse
import asyncio
import json
import logging
import sys

from bot.services.identity_service import IdentityService
from bot.utils.email import mask_email
from bot.utils.permissions import Role, role_display_name
from database.db import Database

logger = logging.getLogger(__name__)


def _format_user(user) -> str:
    email = mask_email(user.email) if user.email else "(not linked)"
    username = f"@{user.username}" if user.username else "-"
    return f"{user.id}  tg={user.telegram_id}  {username}  {email}  {role_display_name(user.role)}"


def _cli_role(name: str) -> Role | None:
    try:
        return Role(name)
    except ValueError:
        print(f"Unknown role {name!r}. Valid roles: {', '.join(r.value for r in Role)}")
        return None


async def cmd_set(identities: IdentityService, user_id: str, role_name: str) -> int:
    role = _cli_role(role_name)
    if role is None:
        return 2

    user = await identities.set_role(user_id, role, actor="manage_roles")
    print(f"✅ {user.id} is now {role_display_name(user.role)}")
    return 0


async def cmd_list(identities: IdentityService, role_name: str | None, limit: int) -> int:
    role = None
    if role_name:
        role = _cli_role(role_name)
        if role is None:
            return 2

    users = await identities.list_users(role=role, limit=limit)
    if not users:
        print("No users found.")
        return 0
    for user in users:
        print(_format_user(user))
    return 0


async def cmd_find(identities: IdentityService, telegram_id: int) -> int:
    user = await identities.get_by_telegram_id(telegram_id)
    if user is None:
        print(f"No user with telegram_id={telegram_id}")
        return 1
    print(_format_user(user))
    return 0


async def cmd_audit(identities: IdentityService, limit: int) -> int:
    events = await identities.audit_events(limit=limit)
    if not events:
        print("No audit events.")
        return 0
    for event in events:
        meta = json.loads(event.event_metadata) if event.event_metadata else {}
        meta.pop("email", None)
        when = event.created_at.strftime("%Y-%m-%d %H:%M:%S") if event.created_at else "-"
        print(f"{when}  {event.event:<14} user={event.user_id or '-'}  tg={event.telegram_id or '-'}  {meta}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage user roles")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    set_cmd = sub.add_parser("set", help="Assign a role to a user")
    set_cmd.add_argument("user_id")
    set_cmd.add_argument("role")

    list_cmd = sub.add_parser("list", help="List users, optionally filtered by role")
    list_cmd.add_argument("role", nargs="?")
    list_cmd.add_argument("--limit", type=int, default=50)

    find_cmd = sub.add_parser("find", help="Look up a user by Telegram id")
    find_cmd.add_argument("telegram_id", type=int)

    audit_cmd = sub.add_parser("audit", help="Show recent auth events")
    audit_cmd.add_argument("limit", nargs="?", type=int, default=20)

    return parser


async def run(args: argparse.Namespace, database: Database | None = None) -> int:
    database = database or Database(args.database_url)
    identities = IdentityService(database)
    try:
        if args.command == "set":
            return await cmd_set(identities, args.user_id, args.role)
        if args.command == "list":
            return await cmd_list(identities, args.role, args.limit)
        if args.command == "find":
            return await cmd_find(identities, args.telegram_id)
        return await cmd_audit(identities, args.limit)
    finally:
        await database.close()


def main(argv=None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except Exception as e:
        user_message = getattr(e, "user_message", None)
        print(f"❌ {user_message or e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

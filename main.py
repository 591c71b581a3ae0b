#!/usr/bin/env python3
"""
Shelfguard -- command-line client for the item catalog.

The CLI is one client context: its session token is persisted in a local
SQLite cache (SESSION_CACHE_PATH) between invocations, bootstrapped at start,
and cleared by `logout` or when it has expired.

Usage:
  python main.py init-admin admin@example.com "Site Admin"
  python main.py register bob@example.com Bob
  python main.py login bob@example.com
  python main.py whoami
  python main.py items list
  python main.py items add "Desk lamp" 19.99 --photo lamp.jpg
  python main.py items update <id> --price 17.50
  python main.py items delete <id>
  python main.py users list
  python main.py users set-role <id> admin
  python main.py logout

Passwords are read with getpass and never echoed or logged.

Environment variables: see core/config.py (DATABASE_URL, SECRET_KEY, ...).
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Optional

from auth import policy
from auth.context import AuthSession
from auth.service import AuthService
from auth.store import CredentialStore
from cache.store import SessionCache
from catalog.media import MediaStore
from catalog.models import ContentFields, ContentRecord
from catalog.service import CatalogService
from catalog.store import ContentStore
from core.config import get_settings
from core.errors import AppError

logger = logging.getLogger("shelfguard.cli")


class Client:
    """Everything one CLI invocation needs, built from Settings."""

    def __init__(self) -> None:
        settings = get_settings()
        self.credentials = CredentialStore(settings.database_url)
        self.content = ContentStore(settings.database_url)
        self.cache = SessionCache(settings.session_cache_path)
        self.auth_service = AuthService.from_settings(settings, self.credentials)
        self.catalog = CatalogService(
            self.content,
            MediaStore(settings.media_root, settings.media_base_url),
            timeout=settings.collaborator_timeout_seconds,
        )
        self.session = AuthSession(self.auth_service, self.cache)
        self.session.bootstrap()

    def close(self) -> None:
        self.cache.close()
        self.content.close()
        self.credentials.close()


def _read_password(confirm: bool = False) -> str:
    password = getpass.getpass("  Password: ")
    if confirm and getpass.getpass("  Repeat password: ") != password:
        raise SystemExit("  [!] Passwords do not match.")
    return password


def _print_item(record: ContentRecord) -> None:
    photo = f"  {record.photo_url}" if record.photo_url else ""
    print(f"  {record.id}  {record.price:>10}  {record.name}  ({record.owner_email}){photo}")


def _photo_fields(args: argparse.Namespace) -> dict:
    if getattr(args, "photo", None):
        path = Path(args.photo).resolve()
        if not path.is_file():
            raise SystemExit(f"  [!] '{args.photo}' is not a readable file.")
        return {"photo_filename": path.name, "photo_data": path.read_bytes()}
    if getattr(args, "photo_url", None):
        return {"photo_url": args.photo_url}
    return {}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(client: Client, args: argparse.Namespace) -> None:
    session = client.session
    identity = session.identity

    if args.command == "init-admin":
        created = await client.auth_service.create_first_admin(args.email, _read_password(confirm=True), args.name)
        print(f"  Admin account created for {created.email}. Run `login` to sign in.")

    elif args.command == "register":
        created = await session.register(args.email, _read_password(confirm=True), args.name)
        print(f"  Registered and signed in as {created.email}.")

    elif args.command == "login":
        signed_in = await session.login(args.email, _read_password())
        print(f"  Signed in as {signed_in.name} <{signed_in.email}> ({signed_in.role.value}).")

    elif args.command == "logout":
        session.logout()
        print("  Signed out.")

    elif args.command == "whoami":
        current = session.current_session()
        if current is None:
            print("  Not signed in.")
        else:
            who = current.identity
            print(f"  {who.name} <{who.email}> ({who.role.value})")
            print(f"  Session expires {current.expires_at:%Y-%m-%d %H:%M} UTC")

    elif args.command == "items":
        await _run_items(client, identity, args)

    elif args.command == "users":
        if args.action == "list":
            for record in await client.auth_service.list_users(identity):
                marker = "" if policy.role_control_enabled(identity, record.id) else "  (you)"
                print(f"  {record.id}  {record.role.value:<5}  {record.email}  {record.name}{marker}")
        else:
            updated = await client.auth_service.set_role(identity, args.id, args.role)
            print(f"  {updated.email} is now {updated.role.value}.")


async def _run_items(client: Client, identity, args: argparse.Namespace) -> None:
    catalog = client.catalog
    if args.action == "list":
        records = await catalog.list_visible(identity)
        if not records:
            print("  No items.")
        for record in records:
            _print_item(record)
    elif args.action == "add":
        record = await catalog.create(identity, ContentFields(name=args.name, price=args.price, **_photo_fields(args)))
        _print_item(record)
    elif args.action == "update":
        fields = ContentFields(name=args.name, price=args.price, clear_photo=args.clear_photo, **_photo_fields(args))
        _print_item(await catalog.update(identity, args.id, fields))
    elif args.action == "delete":
        await catalog.delete(identity, args.id)
        print(f"  Deleted {args.id}.")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelfguard",
        description="Accounts and owner-scoped item management for the Shelfguard catalog.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-admin", help="Create the first admin account (empty database only)")
    p.add_argument("email")
    p.add_argument("name")

    p = sub.add_parser("register", help="Create an account and sign in")
    p.add_argument("email")
    p.add_argument("name")

    p = sub.add_parser("login", help="Sign in")
    p.add_argument("email")

    sub.add_parser("logout", help="Sign out (safe to repeat)")
    sub.add_parser("whoami", help="Show the signed-in identity")

    items = sub.add_parser("items", help="List and manage items").add_subparsers(dest="action", required=True)
    items.add_parser("list", help="List the items you can see")
    p = items.add_parser("add", help="Create an item")
    p.add_argument("name")
    p.add_argument("price")
    photo = p.add_mutually_exclusive_group()
    photo.add_argument("--photo", metavar="PATH", help="Upload a photo file")
    photo.add_argument("--photo-url", metavar="URL", help="Link an existing photo")
    p = items.add_parser("update", help="Change an item you own (admins: any item)")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--price")
    photo = p.add_mutually_exclusive_group()
    photo.add_argument("--photo", metavar="PATH", help="Upload a replacement photo")
    photo.add_argument("--photo-url", metavar="URL", help="Link a replacement photo")
    photo.add_argument("--clear-photo", action="store_true", help="Remove the photo")
    p = items.add_parser("delete", help="Delete an item you own (admins: any item)")
    p.add_argument("id")

    users = sub.add_parser("users", help="Admin: manage accounts").add_subparsers(dest="action", required=True)
    users.add_parser("list", help="List accounts")
    p = users.add_parser("set-role", help="Change an account's role")
    p.add_argument("id")
    p.add_argument("role", choices=["user", "admin"])
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    client = Client()
    try:
        asyncio.run(_run(client, args))
    except AppError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
AuthGuard admin CLI -- operator actions on users and brute-force counters.

Usage:
  python main.py create-user alice alice@example.com
  python main.py create-user alice alice@example.com --password 's3cret-pass'
  python main.py unlock alice
  python main.py unblock-ip 203.0.113.7
  python main.py status --user alice --ip 203.0.113.7

Environment variables (see core/config.py for the full list):
  DATABASE_URL  SQLAlchemy URL of the user database.
  REDIS_URL     Counter store. unlock / unblock-ip / status only make sense
                against the same Redis the API uses; without it they act on
                a throwaway in-process store.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.errors import StoreUnavailable
from auth.models import User
from auth.ratelimit import LoginThrottle
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from cache.store import MemoryCounterStore, open_counter_store
from core.config import Settings, get_settings


def _open_throttle(settings: Settings) -> LoginThrottle:
    store = open_counter_store(settings.redis_url, timeout=settings.store_timeout_seconds)
    if isinstance(store, MemoryCounterStore):
        print("  [!] REDIS_URL is not set -- operating on an empty in-process store.", file=sys.stderr)
    return LoginThrottle(store, settings)


def _read_password(args: argparse.Namespace) -> str:
    if args.password:
        return args.password
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def cmd_create_user(args: argparse.Namespace, settings: Settings) -> int:
    password = _read_password(args)
    if len(password) < settings.min_password_length:
        print(f"  [!] Password must be at least {settings.min_password_length} characters long.")
        return 1
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
        return 1
    store = UserStore(settings.database_url)
    try:
        user_id = store.create_user(
            User(
                username=args.username,
                email=args.email,
                hashed_password=hash_password(password, rounds=settings.bcrypt_rounds),
            )
        )
    except IntegrityError:
        print(f"  [!] A user with username '{args.username}' or email '{args.email}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created user '{args.username}' (id {user_id}).")
    return 0


def cmd_unlock(args: argparse.Namespace, settings: Settings) -> int:
    throttle = _open_throttle(settings)
    try:
        removed = throttle.unlock_user(args.username)
    finally:
        throttle.store.close()
    print(f"  {'Unlocked' if removed else 'No lockout or failures recorded for'} '{args.username}'.")
    return 0


def cmd_unblock_ip(args: argparse.Namespace, settings: Settings) -> int:
    throttle = _open_throttle(settings)
    try:
        removed = throttle.unblock_ip(args.ip)
    finally:
        throttle.store.close()
    print(f"  {'Unblocked' if removed else 'No block or failures recorded for'} {args.ip}.")
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    if not args.user and not args.ip:
        print("  [!] Pass --user and/or --ip.")
        return 1
    throttle = _open_throttle(settings)
    try:
        if args.user:
            ttl = throttle.lockout_ttl(args.user)
            state = f"locked, {ttl}s left" if ttl else "not locked"
            print(f"  user {args.user}: {state}")
        if args.ip:
            ttl = throttle.ip_block_ttl(args.ip)
            level = throttle.ip_block_level(args.ip)
            state = f"blocked, {ttl}s left" if ttl else "not blocked"
            print(f"  ip {args.ip}: {state} (block level {level})")
    finally:
        throttle.store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="AuthGuard -- user and brute-force counter administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a local user")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("--password", help="Password (prompted for when omitted)")
    create.set_defaults(func=cmd_create_user)

    unlock = sub.add_parser("unlock", help="Lift a user's lockout and reset its failure counter")
    unlock.add_argument("username")
    unlock.set_defaults(func=cmd_unlock)

    unblock = sub.add_parser("unblock-ip", help="Lift an IP block and reset its backoff level")
    unblock.add_argument("ip")
    unblock.set_defaults(func=cmd_unblock_ip)

    status = sub.add_parser("status", help="Show lockout and IP block state")
    status.add_argument("--user", metavar="USERNAME")
    status.add_argument("--ip")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args, get_settings())
    except StoreUnavailable as exc:
        print(f"  [!] {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())

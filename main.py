#!/usr/bin/env python3
"""
Auth service -- account registration, login and rotating token issuance.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8081
  python main.py serve --reload
  python main.py purge-tokens

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Signing key for access tokens, at least 32 characters.
                 Required unless DEBUG=true.
  DEBUG          true to auto-generate a throwaway SECRET_KEY for local dev.
  DATABASE_URL   SQLAlchemy URL. Defaults to auth/auth_service.db (SQLite).
"""

import argparse
import logging
import sys

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StorageError
from auth.refresh import RefreshTokenStore
from auth.store import AccountStore
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    """Run the API under uvicorn. Blocks until the server stops."""
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    """Delete expired refresh-token rows once and report how many were removed.

    The API already sweeps on a timer; this is for deployments that prefer a
    cron job, or for cleaning up after the service has been down a while.
    """
    settings = get_settings()
    try:
        store = AccountStore(db_url=settings.database_url)
    except SQLAlchemyError as exc:
        print(f"  [!] Could not open database: {exc}", file=sys.stderr)
        return 1
    try:
        removed = RefreshTokenStore(store).purge_expired()
    except StorageError as exc:
        print(f"  [!] Purge failed: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="auth-service",
        description="Identity credential and token service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve
  python main.py serve --port 8081 --reload
  DATABASE_URL=sqlite:////var/lib/auth/auth.db python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8081, help="Bind port (default: 8081)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens and exit")
    purge.set_defaults(func=_purge_tokens)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    try:
        return args.func(args)
    except ValidationError as exc:
        # Settings refused the environment (missing SECRET_KEY, bad TTL, ...).
        print(f"  [!] Invalid configuration:\n{exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

"""CLI for storefront registry and counter maintenance.

Usage::

    uv run python -m scripts.manage_storefronts <command> [options]

Commands:
    add-storefront          Register a storefront for a client id
    list-storefronts        List registered storefronts
    deactivate-storefront   Deactivate a storefront (its cid stops validating)
    prune-counters          Delete idle rate-limit counter records
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from credit_gate.config import settings
from credit_gate.factory import create_counter_store
from credit_gate.security.rate_limiter import FixedWindowRateLimiter
from credit_gate.storage.orm import Calculator
from credit_gate.storefronts.domains import normalize_domain

INACTIVE_STATUS = 0


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    Uses the same database URL as the async app (psycopg v3
    handles both sync and async natively).
    """
    engine = create_engine(settings.database_url)
    return Session(engine)


def add_storefront(args: argparse.Namespace) -> None:
    """Register a storefront domain for a client id."""
    with get_sync_session() as session:
        existing = session.execute(
            select(Calculator).where(Calculator.unicid == args.cid)
        ).scalar_one_or_none()
        if existing is not None:
            print(f"Client id already registered: {args.cid}", file=sys.stderr)
            sys.exit(1)

        storefront = Calculator(
            name=normalize_domain(args.domain),
            unicid=args.cid,
            type=args.type,
            dsk_status=settings.registry_active_status,
        )
        session.add(storefront)
        session.commit()
        print(f"Storefront registered: {storefront.name} (cid: {args.cid})")


def list_storefronts(_args: argparse.Namespace) -> None:
    """List all storefronts with their status."""
    with get_sync_session() as session:
        rows = (
            session.execute(select(Calculator).order_by(Calculator.name))
            .scalars()
            .all()
        )

        if not rows:
            print("No storefronts found.")
            return

        print("Storefronts:")
        for i, row in enumerate(rows, 1):
            active = row.dsk_status == settings.registry_active_status
            status = "active" if active else "inactive"
            print(f"  {i}. {row.name} cid={row.unicid} type={row.type} {status}")


def deactivate_storefront(args: argparse.Namespace) -> None:
    """Deactivate a storefront by client id."""
    with get_sync_session() as session:
        storefront = session.execute(
            select(Calculator).where(Calculator.unicid == args.cid)
        ).scalar_one_or_none()
        if storefront is None:
            print(f"Storefront not found: {args.cid}", file=sys.stderr)
            sys.exit(1)

        if storefront.dsk_status != settings.registry_active_status:
            print(f"Storefront already inactive: {args.cid}", file=sys.stderr)
            sys.exit(1)

        storefront.dsk_status = INACTIVE_STATUS
        session.commit()
        print(f"Storefront deactivated: {storefront.name} (cid: {args.cid})")


def prune_counters(args: argparse.Namespace) -> None:
    """Delete counter records idle for longer than --max-age seconds.

    Records inside the configured rate-limit window are always kept.
    """
    limiter = FixedWindowRateLimiter(create_counter_store(settings))
    removed = limiter.prune(
        args.max_age, window_seconds=settings.rate_limit_window_seconds
    )
    print(f"Counter records removed: {removed}")


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Storefront management CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # add-storefront
    p = sub.add_parser("add-storefront", help="Register a storefront")
    p.add_argument("--cid", required=True, help="Client id issued to the merchant")
    p.add_argument("--domain", required=True, help="Storefront domain or URL")
    p.add_argument(
        "--type",
        type=int,
        default=settings.registry_integration_type,
        help="Integration type tag",
    )

    # list-storefronts
    sub.add_parser("list-storefronts", help="List all storefronts")

    # deactivate-storefront
    p = sub.add_parser("deactivate-storefront", help="Deactivate a storefront")
    p.add_argument("--cid", required=True, help="Client id")

    # prune-counters
    p = sub.add_parser("prune-counters", help="Delete idle rate-limit counters")
    p.add_argument(
        "--max-age", type=int, default=3600, help="Idle seconds before removal"
    )

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "add-storefront": add_storefront,
        "list-storefronts": list_storefronts,
        "deactivate-storefront": deactivate_storefront,
        "prune-counters": prune_counters,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()

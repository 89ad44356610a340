#!/usr/bin/env python3
"""
Billing operator commands.

Usage:
    python -m resumeapi.scripts.billing_admin sync <user_id>
    python -m resumeapi.scripts.billing_admin check-prices
    python -m resumeapi.scripts.billing_admin reset-customers --yes
    python -m resumeapi.scripts.billing_admin replay-events [--limit 50]

reset-customers is for after switching Stripe accounts: stored customer ids
point at the old account, and clearing them lets checkout create fresh ones.
"""
import argparse
import json
import sys
from typing import List, Optional

from resumeapi.core.config import settings
from resumeapi.core.errors import AppError
from resumeapi.core.logging import configure_logging
from resumeapi.features.billing.checkout import validate_price
from resumeapi.features.billing.provider import BillingProvider, BillingProviderError
from resumeapi.features.billing.service import build_provider
from resumeapi.features.billing.sync import sync_subscription
from resumeapi.features.billing.webhooks import replay_failed_events
from resumeapi.features.users.service import clear_all_customer_ids


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_sync(provider: BillingProvider, args) -> int:
    record = sync_subscription(provider, args.user_id)
    _emit({"user_id": args.user_id, **record.model_dump()})
    return 0


def cmd_check_prices(provider: BillingProvider, args) -> int:
    configured = {
        "STRIPE_PRICE_ID_PROFESSIONAL": settings.STRIPE_PRICE_ID_PROFESSIONAL,
        "STRIPE_PRICE_ID_PREMIUM": settings.STRIPE_PRICE_ID_PREMIUM,
    }
    ok = True
    for name, price_id in configured.items():
        if not price_id:
            print(f"❌ {name}: not set")
            ok = False
            continue
        try:
            price = validate_price(provider, price_id)
        except AppError as e:
            print(f"❌ {name}={price_id}: {e.message}")
            ok = False
            continue
        amount = f"{price.unit_amount / 100:.2f}" if price.unit_amount is not None else "?"
        print(f"✅ {name}={price_id}: recurring every {price.interval or '?'}, amount {amount}")
    return 0 if ok else 1


def cmd_reset_customers(provider: Optional[BillingProvider], args) -> int:
    if not args.yes:
        print("Refusing to clear customer ids without --yes")
        return 2
    cleared = clear_all_customer_ids()
    print(f"Cleared stripe_customer_id on {cleared} user(s)")
    return 0


def cmd_replay_events(provider: BillingProvider, args) -> int:
    summary = replay_failed_events(provider, limit=args.limit)
    _emit(summary)
    return 0 if summary["failed"] == 0 else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Billing operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sync_p = sub.add_parser("sync", help="Pull one user's subscription from Stripe")
    sync_p.add_argument("user_id")
    sync_p.set_defaults(func=cmd_sync, needs_provider=True)

    prices_p = sub.add_parser("check-prices", help="Verify configured price ids are recurring Stripe prices")
    prices_p.set_defaults(func=cmd_check_prices, needs_provider=True)

    reset_p = sub.add_parser("reset-customers", help="Clear every stored Stripe customer id")
    reset_p.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset_p.set_defaults(func=cmd_reset_customers, needs_provider=False)

    replay_p = sub.add_parser("replay-events", help="Re-dispatch webhook events that failed processing")
    replay_p.add_argument("--limit", type=int, default=50)
    replay_p.set_defaults(func=cmd_replay_events, needs_provider=True)

    return parser


def main(argv: Optional[List[str]] = None, provider: Optional[BillingProvider] = None) -> int:
    """Entry point. Returns the process exit code."""
    # stdout carries the JSON results
    configure_logging(settings.ENV, stream=sys.stderr)
    args = build_parser().parse_args(argv)

    active_provider = provider or build_provider()
    if args.needs_provider and active_provider is None:
        print("ERROR: STRIPE_SECRET_KEY is not configured", file=sys.stderr)
        return 1

    try:
        return args.func(active_provider, args)
    except (AppError, BillingProviderError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

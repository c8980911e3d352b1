"""
Operator CLI for Pocket Ledger

Maintenance commands that run against the configured storage backend:

    python app/main.py diagnose --owner <id>
    python app/main.py verify-audit --owner <id>
    python app/main.py repair --owner <id> [--date YYYY-MM-DD] --yes
    python app/main.py recompute --owner <id> --month 3 --year 2025
    python app/main.py migrate [--dry-run]

DESIGN PRINCIPLES:
1. Read-only by default (diagnose, verify-audit)
2. Every write command is explicit, and repair needs --yes
3. Output is JSON so it can be piped and archived

Exit codes: 0 = ok, 1 = drift or audit mismatch found, 2 = error.
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Any, Optional

import structlog

from pocket_ledger.audit import configure_logging
from pocket_ledger.config import get_settings, validate_all_settings
from pocket_ledger.errors import LedgerError
from pocket_ledger.orchestrator import LedgerComponents, create_ledger_components
from pocket_ledger.services.storage import StorageError, migrate_legacy_documents


logger = structlog.get_logger(__name__)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value}. Expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pocket-ledger",
        description="Ledger consistency tools: drift diagnosis, audit verification, repair.",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "mongo"],
        default=None,
        help="Storage backend (defaults to STORAGE_BACKEND)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    diagnose = sub.add_parser("diagnose", help="Compare wallet totals with transaction flow")
    diagnose.add_argument("--owner", required=True)

    verify = sub.add_parser("verify-audit", help="Check each wallet against its audit trail")
    verify.add_argument("--owner", required=True)

    repair = sub.add_parser("repair", help="Book a positive discrepancy as an opening balance")
    repair.add_argument("--owner", required=True)
    repair.add_argument("--date", type=_parse_date, default=None, help="Booking date (default today)")
    repair.add_argument("--yes", action="store_true", help="Confirm the write")

    recompute = sub.add_parser("recompute", help="Recompute rollovers from a month forward")
    recompute.add_argument("--owner", required=True)
    recompute.add_argument("--month", type=int, required=True, choices=range(1, 13), metavar="1-12")
    recompute.add_argument("--year", type=int, required=True)
    recompute.add_argument("--horizon", type=int, default=None, help="Months to walk at most")

    migrate = sub.add_parser("migrate", help="Rewrite legacy documents (mongo backend only)")
    migrate.add_argument("--dry-run", action="store_true")

    return parser


async def cmd_diagnose(components: LedgerComponents, args: argparse.Namespace) -> int:
    report = await components.oracle.diagnose(args.owner)
    _print({**report.model_dump(mode="json"), "status": report.status.value})
    return 1 if report.has_drift else 0


async def cmd_verify_audit(components: LedgerComponents, args: argparse.Namespace) -> int:
    checks = await components.oracle.verify_audit_trail(args.owner)
    _print([
        {
            **check.model_dump(mode="json"),
            "expected_balance": str(check.expected_balance),
            "drift": str(check.drift),
            "consistent": check.is_consistent,
        }
        for check in checks
    ])
    return 0 if all(check.is_consistent for check in checks) else 1


async def cmd_repair(components: LedgerComponents, args: argparse.Namespace) -> int:
    report = await components.oracle.diagnose(args.owner)
    if not args.yes:
        _print({
            "discrepancy": str(report.discrepancy),
            "message": "Nothing written. Re-run with --yes to book the discrepancy.",
        })
        return 1 if report.has_drift else 0

    transaction = await components.repairer.record_opening_balance(args.owner, today=args.date)
    if transaction is None:
        _print({"discrepancy": str(report.discrepancy), "message": "Nothing to book."})
        return 0
    _print({"recorded": transaction.model_dump(mode="json")})
    return 0


async def cmd_recompute(components: LedgerComponents, args: argparse.Namespace) -> int:
    result = await components.rollover.recompute_chain(
        args.owner, args.month, args.year, horizon_months=args.horizon
    )
    _print({
        "stop_reason": result.stop_reason.value,
        "months_visited": result.months_visited,
        "updated": [period.label for period in result.updated_periods],
        "created": [period.label for period in result.created_periods],
    })
    return 0


async def cmd_migrate(components: LedgerComponents, args: argparse.Namespace) -> int:
    if components.mongo_client is None:
        _print({"error": "migrate needs the mongo backend"})
        return 2
    counts = migrate_legacy_documents(components.mongo_client, dry_run=args.dry_run)
    if not args.dry_run:
        components.mongo_client.ensure_indexes()
    _print({"dry_run": args.dry_run, "rewritten": counts})
    return 0


COMMANDS = {
    "diagnose": cmd_diagnose,
    "verify-audit": cmd_verify_audit,
    "repair": cmd_repair,
    "recompute": cmd_recompute,
    "migrate": cmd_migrate,
}


async def run(args: argparse.Namespace, components: Optional[LedgerComponents] = None) -> int:
    components = components or create_ledger_components(backend=args.backend)
    try:
        return await COMMANDS[args.command](components, args)
    finally:
        if components.mongo_client is not None:
            components.mongo_client.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings_status = validate_all_settings()
    if not all(value for key, value in settings_status.items() if not key.endswith("_error")):
        _print({"error": "invalid configuration", "details": settings_status})
        return 2
    configure_logging(get_settings().app.log_level)

    try:
        return asyncio.run(run(args))
    except (LedgerError, StorageError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        _print({"error": str(e)})
        return 2


if __name__ == "__main__":
    sys.exit(main())

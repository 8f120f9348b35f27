# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from signal import SIGINT, SIGTERM, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from escrowsync.app import (
    build_indexer,
    close_store,
    list_party_agreements,
    list_quarantine,
    rebuild_profile_aggregates,
    retry_quarantine,
    run_indexer,
    verify_signature,
)
from escrowsync.config import configure_logging
from escrowsync.domain.amounts import is_valid_address
from escrowsync.domain.errors import UnreachableSource
from escrowsync.domain.model import CREDENTIALS_PARTITION, agreement_partition

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from escrowsync.app import Indexer

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index escrow agreements from the ledger")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Catch up with the ledger, then follow live notifications")
    subparsers.add_parser("catch-up", help="Replay notifications up to the current head and exit")

    quarantine = subparsers.add_parser(
        "quarantine", help="Inspect or retry quarantined notifications"
    )
    quarantine_sub = quarantine.add_subparsers(dest="quarantine_command", required=True)
    quarantine_list = quarantine_sub.add_parser("list", help="List quarantine entries")
    quarantine_list.add_argument(
        "--all",
        action="store_true",
        help="Include resolved entries",
    )
    quarantine_retry = quarantine_sub.add_parser("retry", help="Retry a held partition")
    target = quarantine_retry.add_mutually_exclusive_group(required=True)
    target.add_argument("--agreement", type=int, help="Agreement id whose partition to retry")
    target.add_argument(
        "--credentials",
        action="store_true",
        help="Retry the credential partition",
    )

    rebuild = subparsers.add_parser(
        "rebuild-aggregates",
        help="Compare profile aggregates with the activity log and rebuild them",
    )
    rebuild.add_argument(
        "--check",
        action="store_true",
        help="Only report mismatches, do not rebuild",
    )

    agreements = subparsers.add_parser("agreements", help="List agreement ids for an address")
    agreements.add_argument("address", type=str, help="Party address (0x...)")
    agreements.add_argument(
        "--role",
        choices=("company", "talent", "both"),
        default="both",
        help="Restrict to agreements where the address has this role (default: %(default)s)",
    )

    verify = subparsers.add_parser("verify", help="Verify a signed message")
    verify.add_argument("--message", type=str, required=True)
    verify.add_argument("--signature", type=str, required=True)
    verify.add_argument("--address", type=str, required=True, help="Claimed signer address")

    return parser.parse_args(list(argv))


def _validate_args(args: argparse.Namespace) -> None:
    if args.command == "agreements" and not is_valid_address(args.address):
        raise ValueError(f"Invalid address: {args.address}")
    if (
        args.command == "quarantine"
        and args.quarantine_command == "retry"
        and args.agreement is not None
        and args.agreement < 0
    ):
        raise ValueError("Agreement id must be non-negative")


async def _run_until_signalled(indexer: Indexer, *, follow: bool) -> int:
    loop = asyncio.get_running_loop()
    for signum in (SIGINT, SIGTERM):
        try:
            loop.add_signal_handler(signum, indexer.runner.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            continue
    return await run_indexer(indexer, follow=follow)


def _run_command(args: argparse.Namespace) -> int:
    """Run one command and return the process exit code."""

    match args.command:
        case "run" | "catch-up":
            indexer = build_indexer()
            try:
                position = asyncio.run(
                    _run_until_signalled(indexer, follow=args.command == "run")
                )
            finally:
                close_store()
            log.info("Feed cursor at %s", position)
        case "quarantine" if args.quarantine_command == "list":
            entries = list_quarantine(include_resolved=args.all)
            for entry in entries:
                print(
                    f"{entry.partition}\t{entry.position}\t{entry.type}\t{entry.fault}\t"
                    f"{entry.status}\t{entry.idempotency_key}\t{entry.message}"
                )
            log.info("%s quarantine entr(ies)", len(entries))
        case "quarantine":
            partition = (
                CREDENTIALS_PARTITION if args.credentials else agreement_partition(args.agreement)
            )
            outcomes = asyncio.run(retry_quarantine(build_indexer(), partition))
            log.info("Retried %s: %s", partition, ", ".join(outcomes) or "nothing to retry")
        case "rebuild-aggregates":
            mismatches = rebuild_profile_aggregates(check_only=args.check)
            for mismatch in mismatches:
                print(f"{mismatch.address}\texpected={mismatch.expected}\tactual={mismatch.actual}")
            if args.check and mismatches:
                return 1
        case "agreements":
            for agreement_id in asyncio.run(list_party_agreements(args.address, role=args.role)):
                print(agreement_id)
        case "verify":
            valid = asyncio.run(verify_signature(args.message, args.signature, args.address))
            print("valid" if valid else "invalid")
            if not valid:
                return 1
        case _:
            raise ValueError(f"Unsupported command: {args.command}")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate_args(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.debug else logging.INFO)
    try:
        exit_code = _run_command(parsed_args)
    except UnreachableSource as exc:
        log.error("Ledger temporarily unavailable: %s", exc)
        sys.exit(3)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()

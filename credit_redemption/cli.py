"""
Ledger operator CLI.

Checks a device balance and redeems transactions by hand, e.g. when
support needs to replay a purchase a device never managed to redeem.
Redemption is idempotent at the ledger, so replaying is always safe.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from structlog import get_logger

from credit_redemption.config import Settings, get_settings
from credit_redemption.exceptions import RedemptionPipelineError
from credit_redemption.models.domain import RedemptionOutcome
from credit_redemption.observability.logging import setup_logging
from credit_redemption.observability.tracing import setup_tracing
from credit_redemption.services.credit_packs import get_credits_for_product
from credit_redemption.services.device_id import current_device_id
from credit_redemption.services.ledger_client import LedgerClient
from credit_redemption.services.receipt import FileReceiptSource, LegacyReceiptResolver
from credit_redemption.services.verifier import transaction_from_jws

logger = get_logger(__name__)


def _print_outcome(outcome: RedemptionOutcome) -> None:
    suffix = " (already redeemed)" if outcome.already_redeemed else ""
    print(
        f"protocol={outcome.protocol.value} granted={outcome.granted} "
        f"balance={outcome.balance}{suffix}"
    )


async def _balance(client: LedgerClient, device_id: str, _: argparse.Namespace) -> None:
    balance = await client.fetch_balance(device_id)
    print(f"device={device_id} balance={balance}")


async def _redeem_signed(client: LedgerClient, device_id: str, args: argparse.Namespace) -> None:
    jws = Path(args.jws_file).read_text(encoding="utf-8").strip()
    transaction = transaction_from_jws(jws)
    logger.info(
        "cli_redeem_signed",
        transaction_id=transaction.transaction_id,
        product_id=transaction.product_id,
        expected_credits=get_credits_for_product(transaction.product_id),
    )
    _print_outcome(await client.redeem_signed_transactions(device_id, [jws]))


async def _redeem_receipt(client: LedgerClient, device_id: str, args: argparse.Namespace) -> None:
    resolver = LegacyReceiptResolver(FileReceiptSource(Path(args.receipt_file)))
    receipt_b64 = await resolver.legacy_receipt(refresh_if_needed=False)
    _print_outcome(await client.redeem_receipt(device_id, receipt_b64))


def _inspect_jws(args: argparse.Namespace) -> None:
    jws = Path(args.jws_file).read_text(encoding="utf-8").strip()
    transaction = transaction_from_jws(jws)
    print(
        f"transaction_id={transaction.transaction_id} product_id={transaction.product_id} "
        f"environment={transaction.environment.value} "
        f"purchase_date={transaction.purchase_date.isoformat()} "
        f"credits={get_credits_for_product(transaction.product_id)}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credit-redemption",
        description="Credit ledger redemption tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show the balance of this device
  credit-redemption balance

  # Replay a signed transaction for a specific device
  credit-redemption --device-id 6F1C... redeem-signed tx.jws

  # Redeem a legacy receipt file
  credit-redemption redeem-receipt receipt.bin
        """,
    )
    parser.add_argument("--device-id", help="Device id (default: persisted id of this install)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("balance", help="Fetch the ledger balance")

    signed = sub.add_parser("redeem-signed", help="Redeem a signed transaction (JWS file)")
    signed.add_argument("jws_file")

    receipt = sub.add_parser("redeem-receipt", help="Redeem a raw app receipt file")
    receipt.add_argument("receipt_file")

    inspect = sub.add_parser("inspect-jws", help="Decode a signed transaction without redeeming")
    inspect.add_argument("jws_file")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> None:
    if args.command == "inspect-jws":
        _inspect_jws(args)
        return

    device_id = args.device_id or current_device_id(settings)
    client = LedgerClient(settings.ledger_base_url, timeout=settings.request_timeout_seconds)
    commands = {
        "balance": _balance,
        "redeem-signed": _redeem_signed,
        "redeem-receipt": _redeem_receipt,
    }
    await commands[args.command](client, device_id, args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG", "log_format": "console"})
    setup_logging(settings)
    setup_tracing(settings)

    try:
        asyncio.run(run(args, settings))
    except RedemptionPipelineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())

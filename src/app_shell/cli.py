import argparse
import logging
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from src.adapters.clock import SystemClock
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import (
    SQLiteEntitlementRepo,
    SQLitePaymentRecordRepo,
    SQLitePostRepo,
)
from src.api.deps import build_verifier, get_settings
from src.components.entitlements import list_entitlements
from src.components.payments import ExternalVerificationFailedError, reported_state_from_external
from src.components.reconciliation import ReconciliationConfig, ReconciliationCoordinator
from src.core.ports.payment import ExternalVerificationUnavailableError, PaymentVerificationPort
from src.domain.entities import Post
from src.rules.loader import load_rules
from src.rules.models import Rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")


@dataclass
class CliContext:
    rules: Rules
    db_path: str
    migrations_dir: Path
    posts: SQLitePostRepo
    payments: SQLitePaymentRecordRepo
    entitlements: SQLiteEntitlementRepo

    @classmethod
    def create(cls, rules_path: Path, data_dir: Path | None = None) -> "CliContext":
        settings = get_settings()
        rules = load_rules(rules_path)
        data_dir = data_dir or settings.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        db_path = str(data_dir / rules.ops.db_filename)
        return cls(
            rules=rules,
            db_path=db_path,
            migrations_dir=settings.migrations_dir,
            posts=SQLitePostRepo(db_path),
            payments=SQLitePaymentRecordRepo(db_path),
            entitlements=SQLiteEntitlementRepo(db_path),
        )

    def coordinator(self, verifier: PaymentVerificationPort) -> ReconciliationCoordinator:
        return ReconciliationCoordinator(
            payments=self.payments,
            entitlements=self.entitlements,
            verifier=verifier,
            clock=SystemClock(),
            config=ReconciliationConfig(
                user_cancel_reasons=tuple(self.rules.payments.user_cancel_reasons),
                lock_timeout_seconds=self.rules.payments.lock_timeout_seconds,
            ),
        )


DEMO_POSTS = [
    Post(
        id="demo-sunrise",
        creator_id="demo-creator",
        creator_name="Demo Creator",
        title="Sunrise over the ridge",
        description="A timelapse from the summit, full resolution for supporters.",
        price=Decimal("1"),
        content_type="video",
        full_content="Full-length timelapse with the behind-the-scenes notes.",
        full_content_url="https://example.com/media/sunrise.mp4",
        tags=["timelapse", "outdoors"],
    ),
    Post(
        id="demo-recipe",
        creator_id="demo-creator",
        creator_name="Demo Creator",
        title="Grandmother's bread recipe",
        description="The one she never wrote down, until now.",
        price=Decimal("0.5"),
        content_type="text",
        full_content="500g flour, 350g water, 10g salt, 5g yeast. Knead, rest, bake at 230C.",
        tags=["cooking"],
    ),
]


def handle_migrate(ctx: CliContext, args: argparse.Namespace) -> None:
    applied = SQLiteMigrator(ctx.db_path, str(ctx.migrations_dir)).run_migrations()
    print(f"Applied {len(applied)} migration(s) to {ctx.db_path}.")


def handle_seed(ctx: CliContext, args: argparse.Namespace) -> None:
    for post in DEMO_POSTS:
        ctx.posts.save(post)
        print(f"Seeded post {post.id}: {post.title} ({post.price})")


def handle_show_payment(ctx: CliContext, args: argparse.Namespace) -> None:
    record = ctx.payments.get(args.payment_id)
    if record is None:
        logger.error("Payment %s not found.", args.payment_id)
        sys.exit(1)

    print(f"Payment:     {record.payment_id}")
    print(f"State:       {record.state.value}")
    print(f"User:        {record.user_id or '-'}")
    print(f"Content:     {record.content_id or '-'}")
    print(f"Amount:      {record.amount if record.amount is not None else '-'}")
    print(f"Transaction: {record.transaction_id or '-'}")
    print(f"Updated:     {record.updated_at.isoformat()}")


def handle_recover(ctx: CliContext, args: argparse.Namespace) -> None:
    verifier = build_verifier(ctx.rules)
    try:
        external = verifier.fetch_payment(args.payment_id)
    except ExternalVerificationUnavailableError as e:
        logger.error("Payment network unavailable: %s", e)
        sys.exit(2)

    reported = reported_state_from_external(external)
    price = ctx.posts.get_price(external.content_id) if external.content_id else None
    try:
        outcome = ctx.coordinator(verifier).recover_incomplete(
            args.payment_id, reported, payload=external, expected_amount=price
        )
    except ExternalVerificationFailedError as e:
        logger.error("Payment %s marked failed: %s", args.payment_id, e.reason)
        sys.exit(3)
    print(
        f"Payment {args.payment_id}: network reports {reported.value}, "
        f"stored {outcome.record.state.value} (changed={outcome.changed}, "
        f"granted={outcome.entitlement_granted})"
    )


def handle_grants(ctx: CliContext, args: argparse.Namespace) -> None:
    grants = list_entitlements(ctx.entitlements, args.user_id)
    if not grants:
        print(f"No entitlements for {args.user_id}.")
        return
    for g in grants:
        print(f" - {g.content_id} (granted {g.granted_at.isoformat()}, payment {g.source_payment_id})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Creator Paywall CLI")
    parser.add_argument("--rules", default=None, help="Path to rules.yaml")
    parser.add_argument("--data-dir", default=None, help="Directory holding the database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending database migrations")
    subparsers.add_parser("seed", help="Insert demo creator posts")

    show_parser = subparsers.add_parser("show-payment", help="Print a payment record")
    show_parser.add_argument("payment_id")

    recover_parser = subparsers.add_parser(
        "recover", help="Fetch a payment from the network and reconcile it"
    )
    recover_parser.add_argument("payment_id")

    grants_parser = subparsers.add_parser("grants", help="List a user's entitlements")
    grants_parser.add_argument("user_id")

    return parser


HANDLERS = {
    "migrate": handle_migrate,
    "seed": handle_seed,
    "show-payment": handle_show_payment,
    "recover": handle_recover,
    "grants": handle_grants,
}


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    rules_path = Path(args.rules) if args.rules else get_settings().rules_path
    if not rules_path.exists():
        logger.error("Rules file %s not found.", rules_path)
        sys.exit(1)

    ctx = CliContext.create(rules_path, Path(args.data_dir) if args.data_dir else None)
    HANDLERS[args.command](ctx, args)


if __name__ == "__main__":
    main()

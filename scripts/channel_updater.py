# scripts/channel_updater.py
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Tuple

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.channel_cohort import select_cohort  # noqa: E402
from scripts.channel_config import (  # noqa: E402
    ConfigError,
    NotificationConfig,
    NotificationKind,
    ProcessingContext,
    load_client,
    load_configs,
    load_context,
)
from scripts.channel_format import FormattedOutput, OutputDocument, format_documents  # noqa: E402
from scripts.channel_post_actions import PostActionReport, apply_post_actions  # noqa: E402
from services.email_sender.notifier import EmailNotifier, build_notifier  # noqa: E402
from services.file_delivery import DeliveryReceipt, Destination, deliver  # noqa: E402

load_dotenv(ROOT / ".env")

logger = logging.getLogger(__name__)

DeliverFn = Callable[[str, str, str, Destination], DeliveryReceipt]


class OutcomeStatus(str, Enum):
    SKIPPED = "skipped"
    NO_RESULTS = "no_results"
    DRY_RUN = "dry_run"
    SUCCESS = "success"
    DELIVERY_FAILED = "delivery_failed"
    ERROR = "error"


@dataclass
class NotificationOutcome:
    kind: NotificationKind
    status: OutcomeStatus
    order_count: int = 0
    files: List[str] = field(default_factory=list)
    receipts: List[DeliveryReceipt] = field(default_factory=list)
    post_actions: Optional[PostActionReport] = None
    email_subject: str = ""
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.status in (OutcomeStatus.DELIVERY_FAILED, OutcomeStatus.ERROR)

    def summary(self) -> str:
        parts = [f"{self.kind.value}={self.status.value}", f"orders={self.order_count}", f"files={len(self.files)}"]
        if self.post_actions is not None and self.post_actions.failed:
            parts.append(f"mutation_errors={self.post_actions.failed}")
        if self.error:
            parts.append(f"error={self.error!r}")
        return " ".join(parts)


def destination_for(ctx: ProcessingContext) -> Destination:
    if ctx.is_ftp_mode:
        if ctx.sftp_destination is None:
            raise ConfigError("CHAN_OUTPUT_METHOD=FTP but no SFTP destination is configured")
        return ctx.sftp_destination
    return ctx.local_destination


def delivery_message(config: NotificationConfig, doc: OutputDocument, receipt: DeliveryReceipt) -> Tuple[str, str]:
    """Subject and body for one delivered (or not) document."""
    if receipt.remote:
        if receipt.ok:
            return (
                f"SFTP Upload Successful for {config.name}",
                f"The file '{doc.filename}' was successfully uploaded to SFTP at '{receipt.location}'.",
            )
        return (
            f"SFTP Upload Failed for {config.name}",
            f"The file '{doc.filename}' could not be uploaded to SFTP. Please check the logs for details.",
        )
    if receipt.ok:
        return (
            f"Local Save Successful for {config.name}",
            f"The file '{doc.filename}' was successfully saved locally at '{receipt.location}'.",
        )
    return (
        f"Local Save Failed for {config.name}",
        f"The file '{doc.filename}' could not be saved locally. Error: {receipt.error}",
    )


def outcome_email(
    config: NotificationConfig, output: FormattedOutput, receipts: List[DeliveryReceipt]
) -> Tuple[str, str]:
    messages = [delivery_message(config, doc, r) for doc, r in zip(output.documents, receipts)]
    if not output.is_xml:
        return messages[0]
    if all(receipts):
        subject = f"XML Upload Successful for {config.name} ({len(receipts)} file(s))"
    else:
        subject = f"XML Upload Had Failures for {config.name}"
    return subject, "\n\n".join(body for _, body in messages)


def run_notification(
    config: NotificationConfig,
    ctx: ProcessingContext,
    client,
    notifier: EmailNotifier,
    deliver_fn: DeliverFn = deliver,
    *,
    dry_run: bool = False,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> NotificationOutcome:
    """
    Process one notification type end to end.

    Any exception abandons the type before mutation and sends one error email.
    Post-delivery actions run only when every document was delivered.
    """
    if not config.enabled:
        logger.info("%s is disabled, skipping", config.name)
        return NotificationOutcome(kind=config.kind, status=OutcomeStatus.SKIPPED)

    logger.info("Processing %s...", config.name)
    outcome = NotificationOutcome(kind=config.kind, status=OutcomeStatus.NO_RESULTS)
    try:
        cohort = select_cohort(client, config, ctx, today=today)
        outcome.order_count = len(cohort)
        if not cohort:
            logger.info("No orders found for %s", config.name)
            return outcome
        logger.info("Found %s orders for %s", len(cohort), config.name)

        output = format_documents(cohort, config, ctx, now=now)
        outcome.files = [d.filename for d in output.documents]
        if not output.documents:
            logger.info("No files generated for %s - no unique order numbers.", config.name)
            return outcome

        if dry_run:
            for doc in output.documents:
                logger.info("[dry-run] %s: %s (%s bytes)", config.name, doc.filename, len(doc.content))
            outcome.status = OutcomeStatus.DRY_RUN
            return outcome

        destination = destination_for(ctx)
        receipts = [deliver_fn(doc.content, doc.filename, config.directory, destination) for doc in output.documents]
        outcome.receipts = receipts

        if all(receipts):
            outcome.post_actions = apply_post_actions(client, config, output)
            outcome.status = OutcomeStatus.SUCCESS
        else:
            logger.error("%s: %s of %s files not delivered, skipping post actions",
                         config.name, sum(1 for r in receipts if not r), len(receipts))
            outcome.status = OutcomeStatus.DELIVERY_FAILED

        subject, body = outcome_email(config, output, receipts)
    except Exception as e:
        logger.exception("Error processing %s: %s", config.name, e)
        outcome.status = OutcomeStatus.ERROR
        outcome.error = str(e)
        subject, body = f"Error Processing {config.name}", f"An error occurred: {e}"

    outcome.email_subject = subject
    notifier.send(subject, body)
    return outcome


def run_pipeline(
    configs: Iterable[NotificationConfig],
    ctx: ProcessingContext,
    client,
    notifier: EmailNotifier,
    deliver_fn: DeliverFn = deliver,
    *,
    only: Optional[Set[NotificationKind]] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> List[NotificationOutcome]:
    outcomes: List[NotificationOutcome] = []
    for config in configs:
        if only and config.kind not in only:
            outcomes.append(NotificationOutcome(kind=config.kind, status=OutcomeStatus.SKIPPED))
            continue
        outcomes.append(
            run_notification(config, ctx, client, notifier, deliver_fn, dry_run=dry_run, now=now, today=today)
        )
    return outcomes


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Send channel status updates for Linnworks orders")
    parser.add_argument("--dry-run", action="store_true", help="select and format only: no delivery, no updates, no email")
    parser.add_argument(
        "--only",
        action="append",
        choices=[k.value for k in NotificationKind],
        help="run only this notification type (repeatable)",
    )
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[CHAN] %(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        ctx = load_context()
        configs = load_configs()
        client = load_client()
    except ConfigError as e:
        print(f"[CHAN] Configuration error: {e}", file=sys.stderr)
        return 2

    print(
        f"[CHAN] start source={ctx.source!r} sub_source={ctx.sub_source!r} output={ctx.output_method} "
        f"file_type={ctx.file_type} dry_run={args.dry_run}"
    )

    notifier = build_notifier(
        enabled=ctx.send_email and not args.dry_run,
        backend=ctx.email_backend,
        client=client,
        recipient_guid=ctx.email_recipient_guid,
        email_to=ctx.email_to,
    )
    only = {NotificationKind(v) for v in args.only} if args.only else None
    outcomes = run_pipeline(configs, ctx, client, notifier, only=only, dry_run=args.dry_run)

    for o in outcomes:
        print(f"[CHAN] {o.summary()}")
    failed = [o for o in outcomes if o.failed]
    print(f"[CHAN] done: {len(outcomes) - len(failed)} ok, {len(failed)} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())

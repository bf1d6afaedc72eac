from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol

from scripts.channel_config import UPDATED_FOLDER, FolderAction, NotificationConfig
from scripts.channel_format import FormattedOutput
from services.linnworks.models import (
    EMPTY_GUID,
    TRUE_VALUE,
    ExtendedProperty,
    OrderNote,
    upsert_property,
)

logger = logging.getLogger(__name__)

CANCEL_NOTE = "Cancelled via actionCancelled macro"


class OrderMutationApi(Protocol):
    def assign_to_folder(self, order_ids: Iterable[str], folder: str) -> None: ...

    def cancel_order(self, order_id: str, note: str, *, fulfilment_center: str = ..., refund: float = ...) -> None: ...

    def get_extended_properties(self, order_id: str) -> List[ExtendedProperty]: ...

    def set_extended_properties(self, order_id: str, props: Iterable[ExtendedProperty]) -> None: ...

    def get_order_notes(self, order_id: str) -> List[OrderNote]: ...

    def set_order_notes(self, order_id: str, notes: Iterable[OrderNote]) -> None: ...


@dataclass
class MutationTally:
    succeeded: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def ok(self) -> None:
        self.succeeded += 1

    def fail(self, order_id: str) -> None:
        self.failed += 1
        self.failed_ids.append(order_id)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


@dataclass
class PostActionReport:
    folder: Optional[MutationTally] = None
    cancel: Optional[MutationTally] = None
    extended_property: Optional[MutationTally] = None

    @property
    def failed(self) -> int:
        return sum(t.failed for t in (self.folder, self.cancel, self.extended_property) if t is not None)


def move_orders_to_folder(client: OrderMutationApi, order_ids: Iterable[str], folder: str) -> MutationTally:
    tally = MutationTally()
    ids = list(order_ids)
    if not ids:
        return tally
    logger.info("Moving %s orders to %r folder", len(ids), folder)
    for order_id in ids:
        try:
            client.assign_to_folder([order_id], folder)
            tally.ok()
        except Exception as e:
            tally.fail(order_id)
            logger.error("Error moving order %s to folder %r: %s", order_id, folder, e)
    logger.info("Folder move complete. Success: %s, Errors: %s", tally.succeeded, tally.failed)
    return tally


def cancel_orders(client: OrderMutationApi, order_ids: Iterable[str], note: str = CANCEL_NOTE) -> MutationTally:
    tally = MutationTally()
    ids = list(order_ids)
    if not ids:
        return tally
    logger.info("Cancelling %s orders...", len(ids))
    for order_id in ids:
        try:
            client.cancel_order(order_id, note, fulfilment_center=EMPTY_GUID, refund=0)
            tally.ok()
        except Exception as e:
            tally.fail(order_id)
            logger.error("Error cancelling order %s: %s", order_id, e)
    logger.info("Cancellation complete. Success: %s, Errors: %s", tally.succeeded, tally.failed)
    return tally


def set_extended_property(
    client: OrderMutationApi, order_ids: Iterable[str], name: str, value: str = TRUE_VALUE
) -> MutationTally:
    """
    Set one extended property on every order.

    Each order's bag is read, upserted and written back whole, so every other
    property survives with its row id and type.
    """
    tally = MutationTally()
    ids = list(order_ids)
    if not ids or not name:
        return tally
    logger.info("Setting %s=%s on %s orders", name, value, len(ids))
    for order_id in ids:
        try:
            props = client.get_extended_properties(order_id)
            client.set_extended_properties(order_id, upsert_property(props, name, value))
            tally.ok()
        except Exception as e:
            tally.fail(order_id)
            logger.error("Error setting %s on order %s: %s", name, order_id, e)
    logger.info("%s update complete. Success: %s, Errors: %s", name, tally.succeeded, tally.failed)
    return tally


def add_order_note(
    client: OrderMutationApi,
    order_id: str,
    text: str,
    created_by: str = "Channel Updater",
    *,
    internal: bool = True,
    now: Optional[datetime] = None,
) -> None:
    """Append a note, keeping every existing one. Raises on client errors."""
    notes = list(client.get_order_notes(order_id))
    notes.append(
        OrderNote(
            note=text,
            order_id=order_id,
            note_id=str(uuid.uuid4()),
            note_date=now or datetime.now(timezone.utc),
            internal=internal,
            created_by=created_by,
        )
    )
    client.set_order_notes(order_id, notes)


def apply_post_actions(client: OrderMutationApi, config: NotificationConfig, output: FormattedOutput) -> PostActionReport:
    """Run the folder/cancel action and the EP update for a delivered notification type."""
    logger.info("Processing post-output actions for %s...", config.name)
    report = PostActionReport()

    if config.folder_action == FolderAction.MOVE_TRACKED:
        report.folder = move_orders_to_folder(client, output.tracking_order_ids, UPDATED_FOLDER)
    elif config.folder_action == FolderAction.MOVE_ALL:
        report.folder = move_orders_to_folder(client, output.order_ids, UPDATED_FOLDER)
    elif config.folder_action == FolderAction.CANCEL:
        report.cancel = cancel_orders(client, output.order_ids)

    if config.ep_update:
        report.extended_property = set_extended_property(client, output.order_ids, config.ep_update)

    return report

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from services.file_delivery import LocalDestination, SftpDestination
from services.linnworks.client import DEFAULT_AUTH_URL, DEFAULT_TIMEOUT_SEC, LinnworksClient

UPDATED_FOLDER = "Updated"
COMPLETED_FOLDER = "Completed"
CHANNEL_UPDATES_REQUIRED = "ChannelUpdatesRequired"
BATCH_SIZE = 200
BUYER_REFERENCE = "D026"
SENDER_ADDRESS = "R0200"
MAX_STATUSES_PER_FILE = 1500


class ConfigError(ValueError):
    pass


def _env(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _to_bool(value: str, default: bool = False) -> bool:
    raw = (value or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _to_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} is invalid: {raw!r}") from e


class NotificationKind(str, Enum):
    ACKNOWLEDGE = "notifyAcknowledge"
    OUT_OF_STOCK = "notifyOOS"
    BACK_IN_STOCK = "notifyBIS"
    SHIPPED = "notifyShipped"
    ACTION_CANCEL = "actionCancelled"
    NOTIFY_CANCEL = "notifyCancelled"


class SelectionMode(str, Enum):
    OPEN_ALL = "open_all"
    OPEN_FOLDER = "open_folder"
    OPEN_NO_EP_FILTER = "open_no_ep_filter"
    PROCESSED_SHIPPED = "processed_shipped"
    PROCESSED_CANCELLED = "processed_cancelled"

    @property
    def is_open(self) -> bool:
        return self in (SelectionMode.OPEN_ALL, SelectionMode.OPEN_FOLDER, SelectionMode.OPEN_NO_EP_FILTER)


class FolderAction(str, Enum):
    NONE = "none"
    MOVE_TRACKED = "move_tracked"
    MOVE_ALL = "move_all"
    CANCEL = "cancel"


@dataclass(frozen=True)
class NotificationConfig:
    kind: NotificationKind
    enabled: bool
    folder: str
    directory: str
    selection: SelectionMode
    ep_filter: str
    ep_update: str
    requires_channel_updates: bool
    folder_action: FolderAction
    file_prefix: str
    xml_update_type: str
    xml_data_type: str
    xml_status_code: str
    per_item_order_numbers: bool = False
    include_held_date: bool = False
    tracking_folder: str = ""

    @property
    def name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class ProcessingContext:
    source: str
    sub_source: str
    sort_field: str = "ORDERID"
    sort_direction: str = "DESCENDING"
    look_back_days: int = 7
    file_type: str = "CSV"
    new_folder: str = ""
    output_method: str = "Local"
    local_destination: LocalDestination = field(default_factory=lambda: LocalDestination(Path(".")))
    sftp_destination: Optional[SftpDestination] = None
    send_email: bool = False
    email_backend: str = "linnworks"
    email_recipient_guid: str = ""
    email_to: List[str] = field(default_factory=list)

    @property
    def is_xml_mode(self) -> bool:
        return self.file_type.strip().upper() == "XML"

    @property
    def is_ftp_mode(self) -> bool:
        return self.output_method.strip().upper() == "FTP"

    @property
    def sort_by_reference(self) -> bool:
        return self.sort_field.strip().upper() == "REFERENCE"

    @property
    def sort_ascending(self) -> bool:
        return self.sort_direction.strip().upper() == "ASCENDING"


def build_notification_configs(
    *,
    enabled: Mapping[NotificationKind, bool],
    new_folder: str,
    oos_folder: str,
    bis_folder: str,
    cancel_folder: str,
    directories: Mapping[NotificationKind, str],
) -> List[NotificationConfig]:
    """Return the six canonical variants in processing order."""

    def _dir(kind: NotificationKind) -> str:
        return directories.get(kind, "")

    return [
        NotificationConfig(
            kind=NotificationKind.ACKNOWLEDGE,
            enabled=enabled.get(NotificationKind.ACKNOWLEDGE, False),
            folder=new_folder,
            directory=_dir(NotificationKind.ACKNOWLEDGE),
            selection=SelectionMode.OPEN_ALL,
            ep_filter="statusACK",
            ep_update="statusACK",
            requires_channel_updates=True,
            folder_action=FolderAction.MOVE_TRACKED,
            file_prefix="Acknowledge",
            xml_update_type="ACK",
            xml_data_type="30",
            xml_status_code="11",
            tracking_folder=new_folder,
        ),
        NotificationConfig(
            kind=NotificationKind.OUT_OF_STOCK,
            enabled=enabled.get(NotificationKind.OUT_OF_STOCK, False),
            folder=oos_folder,
            directory=_dir(NotificationKind.OUT_OF_STOCK),
            selection=SelectionMode.OPEN_FOLDER,
            ep_filter="statusOOS",
            ep_update="statusOOS",
            requires_channel_updates=True,
            folder_action=FolderAction.NONE,
            file_prefix="OOS",
            xml_update_type="OOS",
            xml_data_type="30",
            xml_status_code="92",
        ),
        NotificationConfig(
            kind=NotificationKind.BACK_IN_STOCK,
            enabled=enabled.get(NotificationKind.BACK_IN_STOCK, False),
            folder=bis_folder,
            directory=_dir(NotificationKind.BACK_IN_STOCK),
            selection=SelectionMode.OPEN_FOLDER,
            ep_filter="statusBIS",
            ep_update="statusBIS",
            requires_channel_updates=True,
            folder_action=FolderAction.MOVE_ALL,
            file_prefix="BIS",
            xml_update_type="BIS",
            xml_data_type="30",
            xml_status_code="15",
            include_held_date=True,
        ),
        NotificationConfig(
            kind=NotificationKind.SHIPPED,
            enabled=enabled.get(NotificationKind.SHIPPED, False),
            folder="",
            directory=_dir(NotificationKind.SHIPPED),
            selection=SelectionMode.PROCESSED_SHIPPED,
            ep_filter="StatusASN",
            ep_update="StatusASN",
            requires_channel_updates=True,
            folder_action=FolderAction.NONE,
            file_prefix="Shipped",
            xml_update_type="ASN",
            xml_data_type="30",
            xml_status_code="40",
        ),
        NotificationConfig(
            kind=NotificationKind.ACTION_CANCEL,
            enabled=enabled.get(NotificationKind.ACTION_CANCEL, False),
            folder=cancel_folder,
            directory=_dir(NotificationKind.ACTION_CANCEL),
            selection=SelectionMode.OPEN_NO_EP_FILTER,
            ep_filter="",
            ep_update="",
            requires_channel_updates=False,
            folder_action=FolderAction.CANCEL,
            file_prefix="ActionCancelled",
            xml_update_type="CANC",
            xml_data_type="35",
            xml_status_code="17",
        ),
        NotificationConfig(
            kind=NotificationKind.NOTIFY_CANCEL,
            enabled=enabled.get(NotificationKind.NOTIFY_CANCEL, False),
            folder="",
            directory=_dir(NotificationKind.NOTIFY_CANCEL),
            selection=SelectionMode.PROCESSED_CANCELLED,
            ep_filter="StatusCANC",
            ep_update="StatusCANC",
            requires_channel_updates=True,
            folder_action=FolderAction.NONE,
            file_prefix="Cancelled",
            xml_update_type="CANC",
            xml_data_type="35",
            xml_status_code="17",
            per_item_order_numbers=True,
        ),
    ]


_ENABLE_VARS: Dict[NotificationKind, str] = {
    NotificationKind.ACKNOWLEDGE: "CHAN_NOTIFY_ACKNOWLEDGE",
    NotificationKind.OUT_OF_STOCK: "CHAN_NOTIFY_OOS",
    NotificationKind.BACK_IN_STOCK: "CHAN_NOTIFY_BIS",
    NotificationKind.SHIPPED: "CHAN_NOTIFY_SHIPPED",
    NotificationKind.ACTION_CANCEL: "CHAN_ACTION_CANCELLED",
    NotificationKind.NOTIFY_CANCEL: "CHAN_NOTIFY_CANCELLED",
}

_DIRECTORY_VARS: Dict[NotificationKind, str] = {
    NotificationKind.ACKNOWLEDGE: "CHAN_ACKNOWLEDGE_DIRECTORY",
    NotificationKind.OUT_OF_STOCK: "CHAN_OOS_DIRECTORY",
    NotificationKind.BACK_IN_STOCK: "CHAN_BIS_DIRECTORY",
    NotificationKind.SHIPPED: "CHAN_SHIPPED_DIRECTORY",
    NotificationKind.ACTION_CANCEL: "CHAN_ACTION_CANCELLED_DIRECTORY",
    NotificationKind.NOTIFY_CANCEL: "CHAN_CANCEL_DIRECTORY",
}


def load_configs(env: Optional[Mapping[str, str]] = None) -> List[NotificationConfig]:
    env = os.environ if env is None else env
    return build_notification_configs(
        enabled={kind: _to_bool(_env(env, var)) for kind, var in _ENABLE_VARS.items()},
        new_folder=_env(env, "CHAN_NEW_FOLDER", "New"),
        oos_folder=_env(env, "CHAN_OOS_FOLDER", "Out of Stock"),
        bis_folder=_env(env, "CHAN_BIS_FOLDER", "Back in Stock"),
        cancel_folder=_env(env, "CHAN_CANCEL_FOLDER", "To Be Cancelled"),
        directories={kind: _env(env, var) for kind, var in _DIRECTORY_VARS.items()},
    )


def load_context(env: Optional[Mapping[str, str]] = None) -> ProcessingContext:
    """
    Build the ProcessingContext from environment variables.

    Raises ConfigError when a required value is missing or malformed. The email
    recipient is validated by the notifier; a bad one only disables email.
    """
    env = os.environ if env is None else env

    sub_source = _env(env, "CHAN_SUB_SOURCE")
    if not sub_source:
        raise ConfigError("CHAN_SUB_SOURCE is not set")
    source = _env(env, "CHAN_SOURCE")

    sort_field = _env(env, "CHAN_SORT_FIELD", "ORDERID").upper()
    if sort_field not in {"ORDERID", "REFERENCE"}:
        raise ConfigError(f"CHAN_SORT_FIELD must be ORDERID or REFERENCE, got {sort_field!r}")
    sort_direction = _env(env, "CHAN_SORT_DIRECTION", "DESCENDING").upper()
    if sort_direction not in {"ASCENDING", "DESCENDING"}:
        raise ConfigError(f"CHAN_SORT_DIRECTION must be ASCENDING or DESCENDING, got {sort_direction!r}")

    look_back_days = _to_int(env, "CHAN_LOOK_BACK_DAYS", 7)
    if look_back_days < 0:
        raise ConfigError("CHAN_LOOK_BACK_DAYS must be >= 0")

    output_method = _env(env, "CHAN_OUTPUT_METHOD", "Local")
    sftp: Optional[SftpDestination] = None
    if output_method.upper() == "FTP":
        host = _env(env, "SFTP_SERVER")
        if not host:
            raise ConfigError("SFTP_SERVER is not set (CHAN_OUTPUT_METHOD=FTP)")
        sftp = SftpDestination(
            host=host,
            port=_to_int(env, "SFTP_PORT", 22),
            username=_env(env, "SFTP_USERNAME"),
            password=_env(env, "SFTP_PASSWORD"),
            root=_env(env, "SFTP_FOLDER_ROOT"),
        )

    local_path = _env(env, "CHAN_LOCAL_FILE_PATH", "exports/channel_updates")

    send_email = _to_bool(_env(env, "CHAN_SEND_EMAIL"))
    email_backend = _env(env, "CHAN_EMAIL_BACKEND", "linnworks").lower()
    if email_backend not in {"linnworks", "smtp"}:
        raise ConfigError(f"CHAN_EMAIL_BACKEND must be linnworks or smtp, got {email_backend!r}")
    email_to = [x.strip() for x in _env(env, "CHAN_EMAIL_TO").split(",") if x.strip()]

    return ProcessingContext(
        source=source,
        sub_source=sub_source,
        sort_field=sort_field,
        sort_direction=sort_direction,
        look_back_days=look_back_days,
        file_type=_env(env, "CHAN_FILE_TYPE", "CSV"),
        new_folder=_env(env, "CHAN_NEW_FOLDER", "New"),
        output_method=output_method,
        local_destination=LocalDestination(Path(local_path)),
        sftp_destination=sftp,
        send_email=send_email,
        email_backend=email_backend,
        email_recipient_guid=_env(env, "CHAN_EMAIL_RECIPIENT_GUID"),
        email_to=email_to,
    )


def load_client(env: Optional[Mapping[str, str]] = None) -> LinnworksClient:
    env = os.environ if env is None else env
    creds = {
        "LINNWORKS_APPLICATION_ID": _env(env, "LINNWORKS_APPLICATION_ID"),
        "LINNWORKS_APPLICATION_SECRET": _env(env, "LINNWORKS_APPLICATION_SECRET"),
        "LINNWORKS_TOKEN": _env(env, "LINNWORKS_TOKEN"),
    }
    missing = [name for name, value in creds.items() if not value]
    if missing:
        raise ConfigError(f"Missing env: {', '.join(missing)}")
    return LinnworksClient(
        creds["LINNWORKS_APPLICATION_ID"],
        creds["LINNWORKS_APPLICATION_SECRET"],
        creds["LINNWORKS_TOKEN"],
        auth_url=_env(env, "LINNWORKS_AUTH_URL", DEFAULT_AUTH_URL),
        timeout_sec=_to_int(env, "LINNWORKS_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
    )

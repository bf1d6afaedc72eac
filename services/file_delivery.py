from __future__ import annotations

import logging
import posixpath
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import paramiko

logger = logging.getLogger(__name__)

SFTP_TIMEOUT_SEC = 30


@dataclass(frozen=True)
class SftpDestination:
    host: str
    port: int
    username: str
    password: str
    root: str = ""

    @property
    def server(self) -> str:
        h = (self.host or "").strip()
        if h.lower().startswith("sftp://"):
            h = h[len("sftp://"):]
        return h.rstrip("/")

    def remote_path(self, directory: str, filename: str) -> str:
        # keep the "{root}/{directory}/{filename}" shape, minus empty segments
        parts = [p.strip("/") for p in (self.root, directory) if p and p.strip("/")]
        return "/" + posixpath.join(*parts, filename) if parts else filename

    def __repr__(self) -> str:
        return f"SftpDestination(host={self.server!r}, port={self.port}, username={self.username!r}, root={self.root!r})"


@dataclass(frozen=True)
class LocalDestination:
    base_dir: Path

    def local_path(self, filename: str) -> Path:
        return Path(self.base_dir) / filename


Destination = Union[SftpDestination, LocalDestination]


@dataclass(frozen=True)
class DeliveryReceipt:
    ok: bool
    location: str
    error: Optional[str] = None
    remote: bool = False

    def __bool__(self) -> bool:
        return self.ok


def upload_sftp(content: str, destination: SftpDestination, remote_path: str) -> None:
    """Open a session, write the document to remote_path and close. Raises on any failure."""
    sock = socket.create_connection((destination.server, int(destination.port)), timeout=SFTP_TIMEOUT_SEC)
    try:
        transport = paramiko.Transport(sock)
    except Exception:
        sock.close()
        raise
    transport.banner_timeout = SFTP_TIMEOUT_SEC
    transport.auth_timeout = SFTP_TIMEOUT_SEC
    try:
        transport.connect(username=destination.username, password=destination.password)
        sftp = paramiko.SFTPClient.from_transport(transport)
        if sftp is None:
            raise RuntimeError("SFTP session could not be opened")
        try:
            sftp.get_channel().settimeout(SFTP_TIMEOUT_SEC)
            with sftp.open(remote_path, "wb") as fh:
                fh.write(content.encode("utf-8"))
            attrs = sftp.stat(remote_path)
            if attrs.st_size is not None and attrs.st_size <= 0 and content:
                raise RuntimeError(f"remote file is empty after upload: {remote_path}")
        finally:
            sftp.close()
    finally:
        transport.close()


def save_local(content: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def deliver(content: str, filename: str, directory: str, destination: Destination) -> DeliveryReceipt:
    """
    Deliver one document.

    Never raises: transport and filesystem errors become a failed receipt so the
    caller can skip the post-delivery actions and report.
    """
    if isinstance(destination, SftpDestination):
        remote_path = destination.remote_path(directory, filename)
        logger.info("Uploading to SFTP: %s", remote_path)
        try:
            upload_sftp(content, destination, remote_path)
        except Exception as e:
            logger.error("FAILED: could not upload %s to SFTP: %s: %s", filename, type(e).__name__, e)
            return DeliveryReceipt(ok=False, location=remote_path, error=str(e), remote=True)
        logger.info("SUCCESS: file uploaded to SFTP %s", remote_path)
        return DeliveryReceipt(ok=True, location=remote_path, remote=True)

    path = destination.local_path(filename)
    try:
        save_local(content, path)
    except OSError as e:
        logger.error("FAILED: could not save file locally %s: %s", path, e)
        return DeliveryReceipt(ok=False, location=str(path), error=str(e))
    logger.info("File saved locally at: %s", path)
    return DeliveryReceipt(ok=True, location=str(path))

from __future__ import annotations

import paramiko

from services import file_delivery
from services.file_delivery import DeliveryReceipt, LocalDestination, SftpDestination, deliver


def test_local_save(tmp_path):
    dest = LocalDestination(tmp_path / "out")

    receipt = deliver("a,b\r\n", "x.csv", "ignored", dest)

    assert receipt and not receipt.remote
    assert receipt.location == str(tmp_path / "out" / "x.csv")
    assert (tmp_path / "out" / "x.csv").read_text(encoding="utf-8") == "a,b\r\n"


def test_local_save_failure_is_a_receipt(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    receipt = deliver("data", "x.csv", "", LocalDestination(blocker))

    assert isinstance(receipt, DeliveryReceipt)
    assert not receipt
    assert receipt.error


def test_remote_path_shape():
    dest = SftpDestination("sftp://files.example.com/", 22, "u", "p", "/incoming")

    assert dest.server == "files.example.com"
    assert dest.remote_path("ack", "f.xml") == "/incoming/ack/f.xml"
    assert dest.remote_path("", "f.xml") == "/incoming/f.xml"
    assert SftpDestination("h", 22, "u", "p").remote_path("", "f.xml") == "f.xml"
    assert "secret" not in repr(SftpDestination("h", 22, "u", "secret"))


def test_sftp_failure_is_a_receipt(monkeypatch):
    def refuse(*args, **kwargs):
        raise paramiko.SSHException("connection refused")

    monkeypatch.setattr(file_delivery, "upload_sftp", refuse)

    receipt = deliver("data", "f.xml", "asn", SftpDestination("h", 22, "u", "p", "/in"))

    assert not receipt and receipt.remote
    assert receipt.location == "/in/asn/f.xml"
    assert "connection refused" in receipt.error


def test_sftp_success(monkeypatch):
    uploads = []
    monkeypatch.setattr(file_delivery, "upload_sftp", lambda content, dest, path: uploads.append((content, path)))

    receipt = deliver("data", "f.xml", "asn", SftpDestination("sftp://h", 22, "u", "p", "/in"))

    assert receipt
    assert uploads == [("data", "/in/asn/f.xml")]


class _FakeFile:
    def __init__(self, store, path):
        self.store, self.path = store, path

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def write(self, data):
        self.store[self.path] = data


class _FakeSftp:
    def __init__(self):
        self.files = {}
        self.closed = False

    def get_channel(self):
        class _Chan:
            def settimeout(self, value):
                pass

        return _Chan()

    def open(self, path, mode):
        return _FakeFile(self.files, path)

    def stat(self, path):
        class _Attrs:
            st_size = len(self.files[path])

        return _Attrs()

    def close(self):
        self.closed = True


class _FakeSocket:
    closed = False

    def close(self):
        self.closed = True


class _FakeTransport:
    instances = []

    def __init__(self, sock):
        self.sock = sock
        self.closed = False
        self.credentials = None
        _FakeTransport.instances.append(self)

    def connect(self, username, password):
        self.credentials = (username, password)

    def close(self):
        self.closed = True


def test_upload_sftp_writes_and_closes(monkeypatch):
    sftp = _FakeSftp()
    _FakeTransport.instances = []
    connects = []

    def create_connection(address, timeout=None):
        connects.append((address, timeout))
        return _FakeSocket()

    monkeypatch.setattr(file_delivery.socket, "create_connection", create_connection)
    monkeypatch.setattr(paramiko, "Transport", _FakeTransport)
    monkeypatch.setattr(paramiko.SFTPClient, "from_transport", classmethod(lambda cls, t: sftp))

    file_delivery.upload_sftp("héllo", SftpDestination("sftp://h", 2222, "u", "p"), "/in/f.xml")

    transport = _FakeTransport.instances[0]
    assert connects == [(("h", 2222), file_delivery.SFTP_TIMEOUT_SEC)]
    assert isinstance(transport.sock, _FakeSocket)
    assert transport.banner_timeout == transport.auth_timeout == file_delivery.SFTP_TIMEOUT_SEC
    assert transport.credentials == ("u", "p")
    assert sftp.files["/in/f.xml"] == "héllo".encode("utf-8")
    assert sftp.closed and transport.closed


def test_unreachable_host_fails_within_timeout(monkeypatch):
    seen = []

    def create_connection(address, timeout=None):
        seen.append(timeout)
        raise TimeoutError("timed out")

    monkeypatch.setattr(file_delivery.socket, "create_connection", create_connection)

    receipt = deliver("data", "f.xml", "", SftpDestination("10.255.255.1", 22, "u", "p"))

    assert not receipt and receipt.remote
    assert seen == [file_delivery.SFTP_TIMEOUT_SEC]
    assert "timed out" in receipt.error

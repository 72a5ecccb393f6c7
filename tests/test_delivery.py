import datetime as dt
import smtplib

import pytest
import requests
from pytz import utc

from dmsreport import delivery
from dmsreport.delivery import SmtpMailer, cleanup_scratch, compose_message, notify_chat
from dmsreport.errors import DeleteError, DeliveryError
from dmsreport.window import compute_report_window

WINDOW = compute_report_window("Asia/Bangkok", dt.datetime(2026, 10, 19, 3, 0, tzinfo=utc))


def test_compose_message(settings, tmp_path):
    attachment = tmp_path / "DMS_20261019.xlsx"
    attachment.write_bytes(b"PK\x03\x04fake")
    msg = compose_message(settings, WINDOW, "DMS_20261019.xls", attachment)

    assert msg["Subject"] == "DMS_20261019.xls ช่วง0600ถึง1800"
    assert msg["From"] == "reports@example.com"
    assert msg["To"] == "ops@example.com, lead@example.com"
    assert "06:00 - 18:00" in msg.get_body(("plain",)).get_content()

    parts = list(msg.iter_attachments())
    assert len(parts) == 1
    assert parts[0].get_filename() == "DMS_20261019.xlsx"
    assert parts[0].get_content_type() == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert parts[0].get_content() == b"PK\x03\x04fake"


def test_compose_message_unknown_type_is_octet_stream(settings, tmp_path):
    raw = tmp_path / "export.unknownext"
    raw.write_bytes(b"<table></table>")
    part = next(compose_message(settings, WINDOW, raw.name, raw).iter_attachments())
    assert part.get_content_type() == "application/octet-stream"


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def send_message(self, message):
        self.calls.append(("send", message["Subject"]))
        return {}


class RefusingSMTP(FakeSMTP):
    def login(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


@pytest.fixture(autouse=True)
def _reset_fake():
    FakeSMTP.instances = []


def test_mailer_uses_ssl_on_465(monkeypatch, settings, tmp_path):
    monkeypatch.setattr(delivery.smtplib, "SMTP_SSL", FakeSMTP)
    att = tmp_path / "a.xlsx"
    att.write_bytes(b"x")
    SmtpMailer.from_settings(settings).send(compose_message(settings, WINDOW, "a.xls", att))

    smtp = FakeSMTP.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.gmail.com", 465)
    assert smtp.calls == [("login", "reports@example.com"), ("send", "a.xls ช่วง0600ถึง1800"), "quit"]


def test_mailer_starttls_on_other_ports(monkeypatch, settings, tmp_path):
    monkeypatch.setattr(delivery.smtplib, "SMTP", FakeSMTP)
    att = tmp_path / "a.xlsx"
    att.write_bytes(b"x")
    SmtpMailer("mail.example.com", 587, "u", "p").send(compose_message(settings, WINDOW, "a.xls", att))
    assert FakeSMTP.instances[0].calls[0] == "starttls"


def test_mailer_transport_failure_is_delivery_error(monkeypatch, settings, tmp_path):
    monkeypatch.setattr(delivery.smtplib, "SMTP_SSL", RefusingSMTP)
    att = tmp_path / "a.xlsx"
    att.write_bytes(b"x")
    with pytest.raises(DeliveryError, match="Email send failed"):
        SmtpMailer.from_settings(settings).send(compose_message(settings, WINDOW, "a.xls", att))


def test_cleanup_scratch_removes_files(tmp_path):
    (tmp_path / "a.xls").write_text("a")
    (tmp_path / "a.xlsx").write_text("b")
    (tmp_path / "keep").mkdir()
    assert cleanup_scratch(tmp_path) == []
    assert [p.name for p in tmp_path.iterdir()] == ["keep"]


def test_cleanup_scratch_missing_dir(tmp_path):
    assert cleanup_scratch(tmp_path / "never-created") == []


def test_cleanup_scratch_reports_failures(monkeypatch, tmp_path):
    (tmp_path / "locked.xls").write_text("a")
    (tmp_path / "ok.xls").write_text("b")

    def fake_delete(path):
        if path.name == "locked.xls":
            raise DeleteError(f"Could not delete {path}: permission denied")
        path.unlink()

    monkeypatch.setattr(delivery, "delete_file", fake_delete)
    warnings = cleanup_scratch(tmp_path)
    assert len(warnings) == 1 and "locked.xls" in warnings[0]
    assert not (tmp_path / "ok.xls").exists()


class FakeResponse:
    def __init__(self, status=200):
        self.status_code = status
        self.text = "err" if status >= 400 else "ok"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)


class FakeHTTPSession:
    posted = []
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def post(self, url, headers=None, json=None, timeout=None):
        FakeHTTPSession.posted.append((url, json))
        return FakeResponse(FakeHTTPSession.status)


def test_notify_chat_skipped_without_webhook(monkeypatch):
    monkeypatch.setattr(delivery.requests, "Session", FakeHTTPSession)
    FakeHTTPSession.posted = []
    assert notify_chat("", "title", ["x"]) is False
    assert FakeHTTPSession.posted == []


def test_notify_chat_posts_text(monkeypatch):
    monkeypatch.setattr(delivery.requests, "Session", FakeHTTPSession)
    FakeHTTPSession.posted, FakeHTTPSession.status = [], 200
    assert notify_chat("https://chat.example/hook", "DMS report sent", ["File: a.xls"]) is True
    url, payload = FakeHTTPSession.posted[0]
    assert url == "https://chat.example/hook"
    assert payload == {"text": "*DMS report sent*\nFile: a.xls"}


def test_notify_chat_http_error_is_logged_not_raised(monkeypatch):
    monkeypatch.setattr(delivery.requests, "Session", FakeHTTPSession)
    FakeHTTPSession.posted, FakeHTTPSession.status = [], 500
    assert notify_chat("https://chat.example/hook", "t", []) is False

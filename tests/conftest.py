"""Shared fixtures: relay configuration, local identity and a scripted SMTP client."""

from __future__ import annotations

import pytest
import aiosmtplib

from forward_mta.config import RelayConfig
from forward_mta.identity import LocalIdentity


CONFIG_TOML = """\
sender_email = "ops@x.com"
recipient_email = "ops@x.com"
smtp_host = "smtp.x.com"
smtp_username = "relay-user"
smtp_password = "relay-secret"
"""


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig(
        sender_email="ops@x.com",
        recipient_email="ops@x.com",
        smtp_host="smtp.x.com",
        smtp_username="relay-user",
        smtp_password="relay-secret",
    )


@pytest.fixture
def identity() -> LocalIdentity:
    return LocalIdentity(
        hostname="myhost",
        invoking_user="root",
        effective_user="root",
        group="root",
        effective_group="root",
        uid=0,
        gid=0,
        euid=0,
        egid=0,
        platform="Linux-test",
    )


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "relay.toml"
    path.write_text(CONFIG_TOML)
    path.chmod(0o600)
    return path


class FakeRelay:
    """Script shared by every FakeSMTP created during a test."""

    def __init__(self):
        self.created: list[FakeSMTP] = []
        self.failures: dict[str, Exception] = {}
        self.extensions = {"starttls", "auth", "8bitmime"}
        self.data_response = aiosmtplib.SMTPResponse(250, "2.0.0 OK queued")
        self.quit_error: Exception | None = None

    @property
    def smtp(self) -> "FakeSMTP":
        return self.created[-1]


class FakeSMTP:
    def __init__(self, relay: FakeRelay, **kwargs):
        self.relay = relay
        self.kwargs = kwargs
        self.commands: list[str] = []
        self.is_connected = False
        self.closed = False
        self.login_credentials = None
        self.mail_from = None
        self.mail_options = None
        self.rcpt_to = None
        self.payload = None

    def _run(self, command: str) -> None:
        self.commands.append(command)
        error = self.relay.failures.get(command)
        if error is not None:
            raise error

    async def connect(self):
        self._run("CONNECT")
        self.is_connected = True

    async def starttls(self, tls_context=None, **kwargs):
        if "starttls" not in self.relay.extensions:
            self.commands.append("STARTTLS")
            raise aiosmtplib.SMTPException("SMTP STARTTLS extension not supported by server.")
        self._run("STARTTLS")

    async def login(self, username, password, **kwargs):
        self._run("LOGIN")
        self.login_credentials = (username, password)

    async def mail(self, sender, options=None, **kwargs):
        self._run("MAIL")
        self.mail_from = sender
        self.mail_options = list(options or [])

    async def rcpt(self, recipient, options=None, **kwargs):
        self._run("RCPT")
        self.rcpt_to = recipient

    async def data(self, message, **kwargs):
        self._run("DATA")
        self.payload = message
        return self.relay.data_response

    async def quit(self):
        self.commands.append("QUIT")
        if self.relay.quit_error is not None:
            raise self.relay.quit_error
        self.is_connected = False

    def close(self):
        self.closed = True
        self.is_connected = False

    def supports_extension(self, extension: str) -> bool:
        return extension.lower() in self.relay.extensions


@pytest.fixture
def fake_relay(monkeypatch) -> FakeRelay:
    relay = FakeRelay()

    def factory(**kwargs):
        smtp = FakeSMTP(relay, **kwargs)
        relay.created.append(smtp)
        return smtp

    monkeypatch.setattr("forward_mta.relay.aiosmtplib.SMTP", factory)
    return relay

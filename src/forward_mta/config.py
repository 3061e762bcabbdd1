# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Relay configuration loading and validation.

The configuration is a small TOML file holding the fixed envelope addresses
and the relay credentials. It is read once at start, validated with pydantic
and then passed around as an immutable ``RelayConfig`` value.

Example:
    Configuration file format (/etc/forward-as-attachment-mta.config.toml)::

        sender_email = "alerts@example.com"
        recipient_email = "ops@example.com"
        smtp_host = "smtp.example.com"
        smtp_username = "alerts@example.com"
        smtp_password = "secret"

        # optional
        smtp_port = 587
        smtp_security = "starttls"
        timeout = 30

    Loading the configuration::

        config = load_config()  # honours FORWARD_AS_ATTACHMENT_MTA_CONFIG_FILE
"""

from __future__ import annotations

import os
import stat
import tomllib
from email.utils import parseaddr
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .logger import get_logger

CONFIG_PATH_ENV = "FORWARD_AS_ATTACHMENT_MTA_CONFIG_FILE"
DEFAULT_CONFIG_PATH = "/etc/forward-as-attachment-mta.config.toml"

logger = get_logger("config")


class RelayConfig(BaseModel):
    """Fixed relay settings for the whole process lifetime.

    Attributes:
        sender_email: Envelope and header sender of every wrapper message.
        recipient_email: The single operator mailbox receiving every wrapper.
        smtp_host: Relay host name.
        smtp_username: Relay login.
        smtp_password: Relay password (excluded from repr).
        smtp_port: Relay port, 587 unless configured.
        smtp_security: "starttls" or "tls" (implicit TLS). Unset means
            implicit TLS on port 465 and STARTTLS elsewhere.
        timeout: Seconds allowed for connect, TLS handshake and each command.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    sender_email: str
    recipient_email: str
    smtp_host: Annotated[str, Field(min_length=1)]
    smtp_username: Annotated[str, Field(min_length=1)]
    smtp_password: Annotated[str, Field(min_length=1, repr=False)]
    smtp_port: Annotated[int, Field(default=587, gt=0, lt=65536)]
    smtp_security: Literal["starttls", "tls"] | None = None
    timeout: Annotated[float, Field(default=30.0, gt=0)]

    @field_validator("sender_email", "recipient_email")
    @classmethod
    def bare_mailbox(cls, v: str) -> str:
        """Accept only a bare ``local@domain`` address."""
        value = v.strip()
        _name, addr = parseaddr(value)
        local, at, domain = addr.rpartition("@")
        if addr != value or not at or not local or not domain or any(c.isspace() for c in addr):
            raise ValueError(f"not a bare email address: {v!r}")
        return value

    @field_validator("smtp_host")
    @classmethod
    def host_without_whitespace(cls, v: str) -> str:
        value = v.strip()
        if not value or any(c.isspace() for c in value):
            raise ValueError(f"invalid host name: {v!r}")
        return value

    @property
    def implicit_tls(self) -> bool:
        """True when the TLS handshake happens right after TCP connect."""
        if self.smtp_security is None:
            return self.smtp_port == 465
        return self.smtp_security == "tls"


def resolve_config_path(override: str | None = None) -> Path:
    """Pick the configuration file: explicit override, environment, default."""
    if override:
        return Path(override)
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        problems.append(f"{location}: {err['msg']}")
    return "; ".join(problems)


def load_config(path: str | os.PathLike[str] | None = None) -> RelayConfig:
    """Read and validate the TOML configuration file.

    Args:
        path: Explicit file path; when None the environment variable and then
            the default location are used.

    Returns:
        The validated, immutable ``RelayConfig``.

    Raises:
        ConfigError: If the file is missing, unreadable, not valid TOML, or
            any field is missing, unknown or malformed.
    """
    config_path = resolve_config_path(os.fspath(path) if path is not None else None)
    logger.debug("loading config from %s", config_path)
    try:
        content = config_path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"cannot read config file {str(config_path)!r}: {exc.strerror or exc}") from exc

    try:
        data = tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"invalid TOML in {str(config_path)!r}: {exc}") from exc

    try:
        return RelayConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config {str(config_path)!r}: {_describe_validation_error(exc)}") from exc


def permission_warning(path: str | os.PathLike[str]) -> str | None:
    """Describe too-lax permissions on the credentials file, if any.

    Returns:
        A warning line when group or others have any access to the file, or
        when its mode cannot be determined; None when only the owner has
        access.
    """
    try:
        mode = os.stat(path).st_mode
    except OSError as exc:
        return (
            "WARNING: could not determine permissions of the config file, "
            f"they may or may not be too lax: {exc}"
        )
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        return (
            "WARNING: the config file contains SMTP credentials and has "
            f"too-lax permissions: {stat.filemode(mode)}"
        )
    return None


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "RelayConfig",
    "load_config",
    "permission_warning",
    "resolve_config_path",
]

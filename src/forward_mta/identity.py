# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Local process identity used to enrich the wrapper message text.

Nothing here influences delivery. Every lookup falls back to a placeholder
instead of failing, since the information is purely advisory.
"""

from __future__ import annotations

import grp
import os
import platform
import pwd
import socket
from dataclasses import dataclass

UNKNOWN = "???"


@dataclass(frozen=True)
class LocalIdentity:
    """Who invoked sendmail, and where.

    Attributes:
        hostname: Local host name.
        invoking_user: Name of the real user running the process.
        effective_user: Name of the effective user (differs under setuid).
        group: Name of the real group.
        effective_group: Name of the effective group.
        uid, gid, euid, egid: Numeric real/effective ids.
        platform: Operating system description.
    """

    hostname: str = UNKNOWN
    invoking_user: str = UNKNOWN
    effective_user: str = ""
    group: str = ""
    effective_group: str = ""
    uid: int | None = None
    gid: int | None = None
    euid: int | None = None
    egid: int | None = None
    platform: str = ""

    def describe(self) -> list[str]:
        """Summary lines for the wrapper message body."""
        return [
            f"uid:{_num(self.uid)} gid:{_num(self.gid)} euid:{_num(self.euid)} egid:{_num(self.egid)}",
            f"username: {self.invoking_user}",
            f"groupname: {self.group}",
            f"effective username: {self.effective_user}",
            f"effective groupname: {self.effective_group}",
            "",
            f"hostname: {self.hostname}",
            f"platform: {self.platform}",
        ]


def _num(value: int | None) -> str:
    return UNKNOWN if value is None else str(value)


def _user_name(uid: int) -> str | None:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return None


def _group_name(gid: int) -> str | None:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


def resolve_local_identity() -> LocalIdentity:
    """Collect host and user information for the current process."""
    try:
        hostname = socket.gethostname() or UNKNOWN
    except OSError:
        hostname = UNKNOWN

    uid, gid = os.getuid(), os.getgid()
    euid, egid = os.geteuid(), os.getegid()
    invoking_user = (
        _user_name(uid)
        or os.environ.get("LOGNAME")
        or os.environ.get("USER")
        or str(uid)
    )
    return LocalIdentity(
        hostname=hostname,
        invoking_user=invoking_user,
        effective_user=_user_name(euid) or str(euid),
        group=_group_name(gid) or str(gid),
        effective_group=_group_name(egid) or str(egid),
        uid=uid,
        gid=gid,
        euid=euid,
        egid=egid,
        platform=platform.platform(),
    )


__all__ = ["LocalIdentity", "UNKNOWN", "resolve_local_identity"]

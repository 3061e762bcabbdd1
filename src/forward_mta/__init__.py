# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sendmail replacement that forwards every message as an attachment.

Local daemons (cron, smartd, ...) hand their mail to ``sendmail``. This
package provides a ``sendmail`` that ignores the requested recipients and
instead wraps the whole original message into a new one from a fixed sender
to a fixed operator mailbox, relayed through a single authenticated SMTP
relay. Relays that restrict sender and recipient addresses are thereby always
satisfied.

Components:
    invocation: sendmail argument interpretation.
    parser: tolerant parsing of the original message.
    wrapper: construction of the wrapper message.
    relay: the SMTP transaction (aiosmtplib).
    cli: the ``sendmail`` entry point (click).

Example:
    Programmatic use::

        from forward_mta.config import load_config
        from forward_mta.identity import resolve_local_identity
        from forward_mta.parser import parse_message
        from forward_mta.relay import deliver
        from forward_mta.wrapper import build_wrapper

        config = load_config("/etc/forward-as-attachment-mta.config.toml")
        outbound = build_wrapper(parse_message(raw), config, resolve_local_identity())
        asyncio.run(deliver(outbound, config))
"""

__version__ = "0.3.0"

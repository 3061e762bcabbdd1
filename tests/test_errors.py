import pytest

from forward_mta.errors import (
    AuthError,
    ConfigError,
    ForwardMtaError,
    MalformedInputError,
    RelayRejectedError,
    TransportError,
    UsageError,
)


@pytest.mark.parametrize(
    "error, code, status",
    [
        (UsageError("bad flag"), "usage", 64),
        (ConfigError("missing"), "config", 78),
        (MalformedInputError("unreadable"), "malformed_input", 65),
        (TransportError("refused"), "transport", 75),
        (AuthError("denied", smtp_code=535), "auth", 77),
    ],
)
def test_error_codes(error, code, status):
    assert isinstance(error, ForwardMtaError)
    assert error.code == code
    assert error.exit_status == status


def test_relay_rejected_classification():
    transient = RelayRejectedError(451, "4.3.0 try again", "data")
    permanent = RelayRejectedError(554, "5.7.1 rejected", "rcpt")

    assert transient.transient is True
    assert transient.exit_status == 75
    assert permanent.transient is False
    assert permanent.exit_status == 69
    assert str(permanent) == "relay rejected RCPT: 554 5.7.1 rejected"

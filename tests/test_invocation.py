import pytest

from forward_mta.errors import UsageError
from forward_mta.invocation import interpret_arguments


def test_no_arguments():
    invocation = interpret_arguments([])

    assert invocation.recipients == ()
    assert invocation.extract_recipients is False
    assert invocation.envelope_from is None
    assert invocation.delivery_mode == "m"


def test_cron_style_invocation():
    invocation = interpret_arguments(["-FCronDaemon", "-i", "-B8BITMIME", "-oem", "root"])

    assert invocation.full_name == "CronDaemon"
    assert invocation.ignore_dots is True
    assert invocation.options == ("em",)
    assert invocation.recipients == ("root",)


def test_read_recipients_from_headers():
    invocation = interpret_arguments(["-t", "-oi"])

    assert invocation.extract_recipients is True
    assert invocation.ignore_dots is True
    assert invocation.recipients == ()


def test_clustered_boolean_flags():
    invocation = interpret_arguments(["-tiv"])

    assert invocation.extract_recipients is True
    assert invocation.ignore_dots is True
    assert invocation.verbose is True


def test_sender_as_separate_argument():
    invocation = interpret_arguments(["-f", "cron@host", "root@example.com"])

    assert invocation.envelope_from == "cron@host"
    assert invocation.recipients == ("root@example.com",)


def test_sender_attached_and_obsolete_r_flag():
    assert interpret_arguments(["-fcron@host"]).envelope_from == "cron@host"
    assert interpret_arguments(["-r", "cron@host"]).envelope_from == "cron@host"


def test_repeated_sender():
    assert interpret_arguments(["-fa@b", "-f", "a@b"]).envelope_from == "a@b"
    assert interpret_arguments(["-fa@b", "-fc@d"]).envelope_from is None


def test_flag_without_value_is_a_usage_error():
    with pytest.raises(UsageError) as exc_info:
        interpret_arguments(["root", "-f"])
    assert exc_info.value.exit_status == 64

    with pytest.raises(UsageError):
        interpret_arguments(["-X"])


def test_unknown_flags_are_ignored():
    invocation = interpret_arguments(["-Q", "-Zfoo", "--long-option=1", "-", "root"])

    assert invocation.ignored == ("-Q", "-Zfoo", "--long-option=1", "-")
    assert invocation.recipients == ("root",)


def test_double_dash_ends_options():
    invocation = interpret_arguments(["-t", "--", "-odd-recipient", "root"])

    assert invocation.extract_recipients is True
    assert invocation.recipients == ("-odd-recipient", "root")


def test_headers_and_argv_recipients_together():
    invocation = interpret_arguments(["-t", "a@b"])

    assert invocation.extract_recipients is True
    assert invocation.recipients == ("a@b",)


def test_mode_config_and_optional_values():
    invocation = interpret_arguments(["-bs", "-C", "/tmp/relay.toml", "-q", "-d0.1", "-odi"])

    assert invocation.delivery_mode == "s"
    assert invocation.config_file == "/tmp/relay.toml"
    assert invocation.options == ("di",)


def test_non_utf8_arguments():
    invocation = interpret_arguments(["-f", "cron\udcff@host", "root"])

    assert invocation.lossy is True
    assert invocation.envelope_from is None
    assert invocation.display().startswith("(non-utf-8): ")
    assert "�" in invocation.display()


def test_display_lists_arguments():
    assert interpret_arguments(["-t", "-oi"]).display() == "['-t', '-oi']"

import logging

from forward_mta.logger import LOG_LEVEL_ENV, configure_logging, get_logger


def test_get_logger_reuses_existing_logger():
    logger = get_logger("TestLogger")
    handler_count = len(logger.handlers)

    same_logger = get_logger("TestLogger")
    assert logger is same_logger
    assert len(same_logger.handlers) == handler_count


def test_default_level_is_warning(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    configure_logging()
    assert logging.getLogger().level == logging.WARNING


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "info")
    configure_logging()
    assert logging.getLogger().level == logging.INFO

    monkeypatch.setenv(LOG_LEVEL_ENV, "bogus")
    configure_logging()
    assert logging.getLogger().level == logging.WARNING


def test_verbose_forces_debug(monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "ERROR")
    configure_logging(verbose=True)
    assert logging.getLogger().level == logging.DEBUG
    assert len(logging.getLogger().handlers) == 1

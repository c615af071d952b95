import logging

from log import configure, get_logger


def test_no_duplicate_handlers():
    first = get_logger("bitlab.test.dup")
    second = get_logger("bitlab.test.dup")
    assert first is second
    assert len(first.handlers) == 1


def test_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "bitlab.log"
    logger = get_logger("bitlab.test.file", log_level="debug", log_file=log_file)
    logger.debug("hello %s", "peer")
    for handler in logger.handlers:
        handler.flush()
    assert "[bitlab.test.file] [DEBUG]: hello peer" in log_file.read_text()


def test_configure_updates_existing_loggers():
    logger = get_logger("bitlab.test.level")
    try:
        configure("warning")
        assert logger.level == logging.WARNING
    finally:
        configure("INFO")
    assert logger.level == logging.INFO

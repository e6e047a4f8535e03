import logging

from herald.logging import SubstringFilter, setup_logger


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord(
        "urllib3.connectionpool", logging.WARNING, __file__, 1, message, None, None
    )


def test_substring_filter():
    f = SubstringFilter(["discarding connection"])

    assert not f.filter(make_record("Connection pool is full, discarding connection: host"))
    assert f.filter(make_record("Retrying after connection broken"))


def test_setup_logger_does_not_stack_filters():
    logger = logging.getLogger("herald.tests.setup_logger")
    setup_logger(logger)
    setup_logger(logger)

    assert len([f for f in logger.filters if isinstance(f, SubstringFilter)]) == 1
    assert not logger.filters[0].filter(
        make_record("Connection pool is full, discarding connection: localhost")
    )

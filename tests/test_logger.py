import logging

from petlog_rag.src.utils.logger import get_logger


def test_single_stdout_handler_without_propagation():
    logger = get_logger("petlog_rag.tests.logger_single")
    again = get_logger("petlog_rag.tests.logger_single")

    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_explicit_level_wins():
    logger = get_logger("petlog_rag.tests.logger_level", level=logging.ERROR)
    assert logger.level == logging.ERROR
    assert logger.handlers[0].level == logging.ERROR

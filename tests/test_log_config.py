import logging
import sys

import pytest
from loguru import logger

from log_config import InterceptHandler, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    root.handlers = handlers
    root.setLevel(level)


def test_file_sink_receives_loguru_and_stdlib_records(restore_logging, tmp_path):
    log_file = tmp_path / "unitorrent.log"
    assert setup_logging("debug", log_file=str(log_file), console=False) == str(log_file)

    logger.info("merge applied")
    logging.getLogger("some.library").warning("stdlib says hi")
    # remove() drains the enqueued file sink
    logger.remove()

    text = log_file.read_text(encoding="utf-8")
    assert "merge applied" in text
    assert "stdlib says hi" in text
    assert any(isinstance(h, InterceptHandler) for h in logging.getLogger().handlers)


def test_noisy_http_loggers_are_quieted(restore_logging, tmp_path):
    setup_logging("INFO", log_file=str(tmp_path / "x.log"), console=False)
    assert logging.getLogger("urllib3").level == logging.WARNING
    assert logging.getLogger("requests").level == logging.WARNING

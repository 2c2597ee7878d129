import logging
import os
import sys

from agentstory.utils import configure_logging


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "app.log"
    monkeypatch.setenv("AS_LOG_LEVEL", "INFO")
    monkeypatch.setenv("AS_LOG_FILE", str(log_file))
    monkeypatch.setenv("AS_LOG_LEVELS", "agentstory.llm=DEBUG")

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("agentstory.worker")
        configure_logging("agentstory.worker")

        stream_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and not isinstance(handler, logging.FileHandler)
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stream_handlers) == 1
        assert stream_handlers[0].stream is sys.stdout
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
        assert logging.getLogger("agentstory.llm").level == logging.DEBUG
    finally:
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)
        logging.getLogger("agentstory.llm").setLevel(logging.NOTSET)

from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("urllib3", "pymongo")


class _LineFormatter(logging.Formatter):
    # Request lines are already JSON; everything else gets level and logger name.
    def format(self, record: logging.LogRecord) -> str:
        if record.name == "trainops.request":
            return record.getMessage()
        return super().format(record)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_LineFormatter("%(levelname)s %(name)s %(message)s"))

    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

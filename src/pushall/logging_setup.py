#!/usr/bin/env python3
"""
Log configuration shared by the pushall service and its CLIs.

Modules only ever call get_logger(__name__). Handlers live on the root
logger and are installed by setup_logging(), which is safe to call again
(e.g. once the config file names a log file).
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
LOG_FORMAT_SIMPLE = "%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Messages that already start with one of these keep their own marker
_MARKERS = tuple("⚠️❌💥📡🔔")


class EmojiFormatter(logging.Formatter):
    """Prefixes WARNING and above with a marker so they stand out in a terminal."""

    LEVEL_EMOJIS = {
        logging.DEBUG: "",
        logging.INFO: "",
        logging.WARNING: "⚠️ ",
        logging.ERROR: "❌ ",
        logging.CRITICAL: "💥 ",
    }

    def format(self, record: logging.LogRecord) -> str:
        emoji = self.LEVEL_EMOJIS.get(record.levelno, "")
        if emoji and not record.getMessage().strip().startswith(_MARKERS):
            record.msg = f"{emoji}{record.msg}"
        return super().format(record)


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    verbose: bool = False,
    console_output: bool = True,
    log_file: str | None = None,
    simple_format: bool = False,
) -> None:
    """
    Replace the root handlers.

    `verbose` switches from INFO to DEBUG. The console gets the marker
    formatter (bare messages when `simple_format`, handy on a TTY); a
    `log_file` always gets full timestamped lines.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if console_output:
        fmt = LOG_FORMAT_SIMPLE if simple_format else LOG_FORMAT
        root.addHandler(_handler(
            logging.StreamHandler(sys.stdout), level, EmojiFormatter(fmt, datefmt=DATE_FORMAT)
        ))

    if log_file:
        root.addHandler(_handler(
            logging.FileHandler(log_file, encoding="utf-8"),
            level,
            logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT),
        ))

    # uvicorn access log is per-request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

"""
Logger setup shared by every replica module
"""

import logging
import sys
from datetime import datetime

from . import config


class ReplicaFormatter(logging.Formatter):
    """
    Formats records as:
    [ 2026-01-06 05:32:41 ] : INFO : replica.fetcher : Message
    """

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        run_id = getattr(record, "run_id", None)
        context = f"{record.name}[{run_id[:8]}]" if run_id else record.name
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logger(name="replica", log_file=None, level=None):
    """Sets up the 'replica' logger; child loggers propagate to it."""
    logger = logging.getLogger(name)

    if name != "replica":
        logger.propagate = True
        setup_logger("replica", log_file=log_file, level=level)
        return logger

    # Avoid duplicate handlers if setup_logger is called multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level or config.LOG_LEVEL)
    formatter = ReplicaFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = log_file or config.LOG_FILE
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name):
    return setup_logger(name)

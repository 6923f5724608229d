"""
Structured run narration.

Every stage writes to a RunEventEmitter instead of printing. Each event is
appended to the run's log stream, forwarded to the stdlib logger and handed
to any subscriber (the websocket layer and tests subscribe the same way).
"""

import logging
from typing import Callable, List, Optional

from .log import get_logger
from .models import CloneRun, LogEntry

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

Subscriber = Callable[[CloneRun, LogEntry], None]


class RunEventEmitter:
    def __init__(self, run: CloneRun, logger: Optional[logging.Logger] = None):
        self.run = run
        self.logger = logger or get_logger("replica.pipeline")
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, level: str, category: str, message: str, **details) -> LogEntry:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        entry = LogEntry(level=level, category=category, message=message, details=details or None)
        self.run.logs.append(entry)

        suffix = f" {details}" if details else ""
        self.logger.log(LEVELS[level], f"[{category}] {message}{suffix}", extra={"run_id": self.run.id})

        for callback in list(self._subscribers):
            try:
                callback(self.run, entry)
            except Exception as e:
                self.logger.warning(f"Event subscriber failed: {e}", extra={"run_id": self.run.id})
        return entry

    def debug(self, category: str, message: str, **details) -> LogEntry:
        return self.emit("debug", category, message, **details)

    def info(self, category: str, message: str, **details) -> LogEntry:
        return self.emit("info", category, message, **details)

    def success(self, category: str, message: str, **details) -> LogEntry:
        return self.emit("success", category, message, **details)

    def warning(self, category: str, message: str, **details) -> LogEntry:
        return self.emit("warning", category, message, **details)

    def error(self, category: str, message: str, **details) -> LogEntry:
        return self.emit("error", category, message, **details)

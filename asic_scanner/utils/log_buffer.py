"""In-memory buffer of recent backend log lines, served by the API."""
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Deque


class LogBuffer:
    """
    Recent scanner log lines for the /api/system/logs endpoint.

    Holds at most ``maxlen`` entries; the oldest are dropped first.
    """

    def __init__(self, maxlen: int = 500):
        self.logs: Deque[dict] = deque(maxlen=maxlen)
        self.lock = threading.Lock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.logs)

    def add(self, message: str, level: str = "info"):
        """Append a timestamped line. ``level`` is a log level name or "success"."""
        with self.lock:
            self.logs.append({
                "timestamp": datetime.now().isoformat(),
                "message": message,
                "level": level
            })

    def get_recent(self, count: int = 200):
        """The newest ``count`` entries, oldest first."""
        with self.lock:
            return list(self.logs)[-count:]

    def clear(self):
        with self.lock:
            self.logs.clear()


class BufferHandler(logging.Handler):
    """Routes log records into a LogBuffer."""

    def __init__(self, buffer: LogBuffer, level=logging.INFO):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record):
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        level = record.levelname.lower()
        if record.levelno < logging.WARNING and "✓" in message:
            level = "success"
        self.buffer.add(message, level)


LOG_FORMAT = "[%(name)s] %(message)s"


def setup_logging(buffer: LogBuffer, level=logging.INFO):
    """Log to stderr and into the buffer."""
    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handler = BufferHandler(buffer)
    handler.setFormatter(formatter)
    root.addHandler(stream)
    root.addHandler(handler)

    logging.getLogger("werkzeug").setLevel(logging.ERROR)

import threading
from collections import deque
from datetime import datetime
from typing import List, Tuple

from loguru import logger


class StatusReporter:
    """
    Import status, for observability only.

    Every message goes to the log and is kept in a bounded history so the last
    activity of the importer can be inspected without reading log files.
    """

    def __init__(self, history_size: int = 1000):
        self._lock = threading.Lock()
        self._logs = deque(maxlen=history_size)
        self._errors = deque(maxlen=history_size)

    def add_log(self, message: str):
        logger.info(message)
        with self._lock:
            self._logs.append((datetime.utcnow(), message))

    def add_error(self, message: str):
        logger.error(message)
        with self._lock:
            self._errors.append((datetime.utcnow(), message))

    def recent_logs(self) -> List[Tuple[datetime, str]]:
        with self._lock:
            return list(self._logs)

    def recent_errors(self) -> List[Tuple[datetime, str]]:
        with self._lock:
            return list(self._errors)

    @property
    def last_error(self):
        with self._lock:
            return self._errors[-1][1] if self._errors else None

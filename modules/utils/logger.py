"""
Structured logging plus a recorder for recognized-gesture events.
"""

import os
import logging
import logging.handlers
import time
from functools import wraps


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure structured logging for the application."""
    console_format = "%(asctime)s  %(levelname)-5s  %(message)s"
    file_format = "%(asctime)s [%(levelname)-7s] %(name)-25s | %(message)s"
    date_format = "%H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(root_logger.level)
    console.setFormatter(logging.Formatter(console_format, datefmt=date_format))
    root_logger.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(file_format, datefmt=date_format))
        root_logger.addHandler(file_handler)

    return root_logger


class GestureLogger:
    """Downstream consumer of label events: logs them and keeps the sequence.

    Subscribe ``on_label_changed`` / ``on_label_observed`` to an EventBus.
    """

    def __init__(self, max_sequence: int = 100):
        self.logger = logging.getLogger("gesture_events")
        self._sequence = []
        self._max_sequence = max_sequence
        self._last_observed = None

    def on_label_changed(self, previous=None, label=None, confidence=None, **_):
        entry = {
            "timestamp": time.time(),
            "previous": previous,
            "label": label,
            "confidence": confidence,
        }
        self._sequence.append(entry)
        if len(self._sequence) > self._max_sequence:
            self._sequence = self._sequence[-self._max_sequence:]
        self.logger.info(
            "Gesture: %-15s | Previous: %-15s | Confidence: %s",
            label,
            previous or "none",
            f"{confidence:.2%}" if confidence is not None else "N/A",
        )

    def on_label_observed(self, label=None, confidence=None, **_):
        self._last_observed = (label, confidence)
        self.logger.debug("Prediction: %s (%.2f%%)", label, (confidence or 0.0) * 100)

    @property
    def sequence(self):
        """Labels in the order they were recognized."""
        return [entry["label"] for entry in self._sequence]

    @property
    def last_observed(self):
        return self._last_observed

    def get_history(self, last_n=None):
        if last_n:
            return self._sequence[-last_n:]
        return self._sequence.copy()

    @property
    def total_changes(self):
        return len(self._sequence)


def log_timing(func):
    """Decorator to log function execution time."""
    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("%s took %.2fms", func.__name__, elapsed)
        return result

    return wrapper

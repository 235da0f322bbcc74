"""
Structured JSON Logger
=====================

Bounded Context: Observability Infrastructure

One JSON object per record, so sample drops, session transitions and
collaborator failures can be filtered by event name and session.

Design:
- Records go through the standard logging module (thread-safe)
- session_id is lifted out of metadata into a top-level field
- Level checks happen before the entry is built; rejected samples are
  logged at DEBUG once per GPS fix

Output:
    {
        "timestamp": "2026-03-02T09:12:45.123456+00:00",
        "level": "INFO",
        "component": "exploration",
        "event": "session.state.changed",
        "session_id": "9f1c...",
        "message": "Exploration idle -> exploring",
        "metadata": {"reason": null}
    }
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent


class StructuredLogger:
    """
    JSON logger for one component, backed by logger earthwalk.<component>.

    Usage:
        logger = create_logger("claim")
        logger.warning(
            event=LogEvent.SPEED_WARNING_STARTED,
            message="Over speed (34.2 km/h), countdown started",
            metadata={'session_id': session_id, 'speed_kmh': 34.2}
        )
    """

    def __init__(self, component: str, level: int = logging.INFO):
        self.component = component
        self.logger = logging.getLogger(f"earthwalk.{component}")
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(_PassThroughFormatter())
            self.logger.addHandler(handler)

    def _log(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        entry: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': logging.getLevelName(level),
            'component': self.component,
            'event': event.value,
        }

        fields = dict(metadata or {})
        session_id = fields.pop('session_id', None)
        if session_id is not None:
            entry['session_id'] = session_id
        entry['message'] = message
        if fields:
            entry['metadata'] = fields

        if exc_info is not None:
            entry['exception'] = {'type': type(exc_info).__name__, 'message': str(exc_info)}

        self.logger.log(level, json.dumps(entry, default=str), exc_info=exc_info)

    def debug(self, event: LogEvent, message: str,
              metadata: Optional[Dict[str, Any]] = None) -> None:
        """Input-quality drops and ignored commands; never surfaced to the user."""
        self._log(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str,
             metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str,
                metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Log a failure. exc_info adds an "exception" field and the traceback.

        Example:
            >>> try:
            ...     store.upload_territory(...)
            ... except TerritoryStoreError as e:
            ...     logger.error(
            ...         event=LogEvent.COLLABORATOR_ERROR,
            ...         message="Territory upload failed, path kept for retry",
            ...         exc_info=e,
            ...     )
        """
        self._log(logging.ERROR, event, message, metadata, exc_info)


class _PassThroughFormatter(logging.Formatter):
    """The message is already JSON."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_logger(component: str, level: int = logging.INFO) -> StructuredLogger:
    return StructuredLogger(component=component, level=level)

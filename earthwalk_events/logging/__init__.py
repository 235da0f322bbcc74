"""
Structured Logging for Earthwalk
================================

JSON-structured logging shared by the tracker, the sessions and the MQTT
publishers.

Example:
    >>> from earthwalk_events.logging import create_logger, LogEvent
    >>> logger = create_logger("tracker")
    >>> logger.debug(
    ...     event=LogEvent.SAMPLE_REJECTED,
    ...     message="Sample dropped",
    ...     metadata={'reason': 'rejected_low_accuracy', 'accuracy_m': 120.0}
    ... )
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]

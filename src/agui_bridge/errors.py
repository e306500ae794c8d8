"""Error taxonomy for the bridge.

Only configuration errors are ever raised into the agent's execution path.
Transport and correlation failures are recovered locally by the adapters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(BridgeError, ValueError):
    """Raised when the bridge cannot run with the given configuration.

    The most important case is a run that carries no resolvable run id:
    deterministic message ids are derived from it, so continuing without
    one would silently break correlation between the adapters.
    """


class FrameDecodeError(BridgeError, ValueError):
    """Raised when a length-prefixed binary frame is malformed."""


class EventValidationError(BridgeError):
    """Raised by a strict validating transport for an invalid event."""

    def __init__(self, event_type: str, detail: str):
        super().__init__(f"Invalid {event_type} event: {detail}")
        self.event_type = event_type
        self.detail = detail


@contextmanager
def emission_guard(action: str) -> Iterator[None]:
    """Log and swallow failures while emitting, so the agent never sees them.

    ``EventValidationError`` from a strict validating transport propagates.
    """
    try:
        yield
    except EventValidationError:
        raise
    except Exception as e:
        logger.warning(f"Failed to {action}: {e}")

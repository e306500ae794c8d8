"""Identifier generation.

Random ids for events that need no coordination, and deterministic ids for
the message id both adapters must agree on without talking to each other.
"""

from __future__ import annotations

import time
import uuid

# Fixed namespace so ids are stable across processes and restarts
BRIDGE_NAMESPACE = uuid.UUID("6f1c1a4e-3c1b-5b8e-9a4f-2d7e0c9b8a61")


def generate_id() -> str:
    """Generate a random UUID4 string."""
    return str(uuid.uuid4())


def deterministic_id(run_id: str, turn_index: int) -> str:
    """Derive a message id from a run id and a model turn index.

    The same ``(run_id, turn_index)`` pair always yields the same id, which
    lets the lifecycle middleware and the callback handler name the same
    assistant message independently.

    Args:
        run_id: Authoritative run identifier
        turn_index: Zero-based model turn within the run

    Returns:
        A UUID string derived from both inputs
    """
    return str(uuid.uuid5(BRIDGE_NAMESPACE, f"{run_id}:{turn_index}"))


def now_ms() -> int:
    """Wall-clock timestamp in epoch milliseconds."""
    return int(time.time() * 1000)

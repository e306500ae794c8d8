"""State delta computation (RFC 6902 JSON Patch)."""

from __future__ import annotations

import json
from typing import Any

import jsonpatch


def to_jsonable(value: Any) -> Any:
    """Round-trip through JSON so patches only see plain JSON types."""
    return json.loads(json.dumps(value, default=str))


def compute_state_delta(old_state: Any, new_state: Any) -> list[dict[str, Any]]:
    """Compute the JSON Patch operations that turn ``old_state`` into ``new_state``.

    Returns:
        List of patch operations; empty when the states are equal
    """
    patch = jsonpatch.make_patch(to_jsonable(old_state), to_jsonable(new_state))
    return list(patch.patch)

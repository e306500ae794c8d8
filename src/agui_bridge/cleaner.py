"""Cleaning of engine-serialized objects before they reach the UI.

Agent engines often hand callbacks serialized message objects
(``{"lc": 1, "kwargs": {...}}``) and raw binary content. These helpers
flatten the wrappers, pull the displayable text out of tool outputs, and
drop image payloads that would bloat the event stream.
"""

from __future__ import annotations

import json
from typing import Any

IMAGE_PLACEHOLDER = "[image data omitted]"

# base64 strings longer than this are treated as binary payloads
_MAX_INLINE_BASE64 = 1000


def _is_serialized_object(data: dict[str, Any]) -> bool:
    return (data.get("lc") == 1 or data.get("lc_serializable") is True) and bool(
        data.get("kwargs") or data.get("lc_kwargs")
    )


def clean_serialized_data(data: Any) -> Any:
    """Recursively unwrap serialized engine objects.

    Wrapper objects are replaced by their ``kwargs``; the internal ``lc``,
    ``type``, ``id`` and ``lc_*`` keys are dropped everywhere.
    """
    if isinstance(data, list):
        return [clean_serialized_data(item) for item in data]

    if isinstance(data, dict):
        if _is_serialized_object(data):
            return clean_serialized_data(data.get("kwargs") or data.get("lc_kwargs"))
        return {
            key: clean_serialized_data(value)
            for key, value in data.items()
            if key not in ("lc", "type", "id") and not key.startswith("lc_")
        }

    return data


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def extract_tool_output(output: Any) -> str:
    """Extract displayable text from a tool output.

    Handles plain strings, JSON-encoded strings, message-like objects with a
    ``content`` attribute, serialized message dicts, and dicts carrying a
    ``result`` or ``output`` field. Anything else becomes the JSON of its
    cleaned form.
    """
    if output is None:
        return ""

    parsed = output
    if isinstance(output, str):
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError:
            return output
        if not isinstance(parsed, dict | list):
            return output

    if not isinstance(parsed, dict | list):
        content = getattr(parsed, "content", None)
        if content is not None:
            return _as_text(content)
        return str(parsed)

    if isinstance(parsed, list):
        return json.dumps(clean_serialized_data(parsed), default=str)

    kwargs = parsed.get("kwargs") or parsed.get("lc_kwargs") or parsed
    if isinstance(kwargs, dict) and kwargs.get("content") is not None:
        return _as_text(kwargs["content"])

    if parsed.get("result") is not None:
        return _as_text(parsed["result"])
    if parsed.get("output") is not None:
        return _as_text(parsed["output"])

    return json.dumps(clean_serialized_data(parsed), default=str)


def sanitize_for_transport(data: Any) -> Any:
    """Replace image sources and large base64 blobs with a placeholder.

    All other data passes through unchanged.
    """
    if isinstance(data, dict):
        if data.get("type") == "image" and "source" in data:
            sanitized = dict(data)
            sanitized["source"] = {"type": "base64", "data": IMAGE_PLACEHOLDER}
            return sanitized
        if (
            data.get("type") == "base64"
            and "data" in data
            and len(str(data.get("data", ""))) > _MAX_INLINE_BASE64
        ):
            return {"type": "base64", "data": IMAGE_PLACEHOLDER}
        return {key: sanitize_for_transport(value) for key, value in data.items()}
    if isinstance(data, list | tuple):
        return [sanitize_for_transport(item) for item in data]
    return data

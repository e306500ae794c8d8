"""Bridge between an agent engine's hooks and callbacks and the AG-UI event protocol."""

from .bridge import AGUIBridge, create_agui_bridge
from .callbacks import AGUICallbackHandler
from .cleaner import clean_serialized_data, extract_tool_output, sanitize_for_transport
from .config import BridgeOptions
from .correlation import CorrelationStore, CorrelationTable
from .emission import DEFAULT_MAX_PAYLOAD_SIZE, SmartEmissionPolicy
from .engine import AgentRuntime, LifecycleHooks, ObservabilityCallbacks
from .errors import BridgeError, ConfigurationError, EventValidationError, FrameDecodeError
from .events import LARGE_RESULT_CHUNK, EVENT_ADAPTER, BaseEvent, EventType, parse_event
from .ids import deterministic_id, generate_id
from .middleware import AGUIMiddleware
from .normalizer import expand_event
from .state_diff import compute_state_delta
from .transport import (
    BINARY_MEDIA_TYPE,
    SSE_MEDIA_TYPE,
    BinaryTransport,
    CancellationToken,
    QueuedTransport,
    SSETransport,
    Transport,
    ValidatingTransport,
)

__version__ = "0.1.0"

__all__ = [
    "BINARY_MEDIA_TYPE",
    "DEFAULT_MAX_PAYLOAD_SIZE",
    "EVENT_ADAPTER",
    "LARGE_RESULT_CHUNK",
    "SSE_MEDIA_TYPE",
    "AGUIBridge",
    "AGUICallbackHandler",
    "AGUIMiddleware",
    "AgentRuntime",
    "BaseEvent",
    "BinaryTransport",
    "BridgeError",
    "BridgeOptions",
    "CancellationToken",
    "ConfigurationError",
    "CorrelationStore",
    "CorrelationTable",
    "EventType",
    "EventValidationError",
    "FrameDecodeError",
    "LifecycleHooks",
    "ObservabilityCallbacks",
    "QueuedTransport",
    "SSETransport",
    "SmartEmissionPolicy",
    "Transport",
    "ValidatingTransport",
    "clean_serialized_data",
    "compute_state_delta",
    "create_agui_bridge",
    "deterministic_id",
    "expand_event",
    "extract_tool_output",
    "generate_id",
    "parse_event",
    "sanitize_for_transport",
]

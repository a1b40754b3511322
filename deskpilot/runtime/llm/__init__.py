from .errors import CancellationToken, LLMRequestError, classify_provider_exception, is_retryable_error_code
from .provider import StreamProvider
from .types import CompletionResult, FinishReason, RawToolCall, StreamEvent, StreamEventKind, StreamRequest, TokenUsage, ToolSpec

__all__ = [
    "CancellationToken",
    "CompletionResult",
    "FinishReason",
    "LLMRequestError",
    "RawToolCall",
    "StreamEvent",
    "StreamEventKind",
    "StreamProvider",
    "StreamRequest",
    "TokenUsage",
    "ToolSpec",
    "classify_provider_exception",
    "is_retryable_error_code",
]

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from .errors import CancellationToken
from .types import CompletionResult, StreamEvent, StreamRequest


class StreamProvider(Protocol):
    """
    A model endpoint the run loop can stream from.

    `name` is the provider family ("openai", "gemini", ...) and selects schema adapters.
    `stream()` must report provider failures as an `ERROR` event rather than raising, and end
    each step with a `STEP_FINISH` event.
    """

    name: str
    model: str

    def stream(self, request: StreamRequest, *, cancel: CancellationToken) -> AsyncIterator[StreamEvent]: ...

    async def complete(self, request: StreamRequest, *, cancel: CancellationToken) -> CompletionResult: ...

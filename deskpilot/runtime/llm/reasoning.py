from __future__ import annotations

from collections.abc import AsyncIterator

from .types import StreamEvent, StreamEventKind

THINKING_RESPONSE_START_TAG = "---\n► **THINKING**\n"
ANSWER_RESPONSE_START_TAG = "---\n► **ANSWER**\n"


def _partial_suffix_len(text: str, tag: str) -> int:
    """Length of the longest suffix of `text` that is a proper prefix of `tag`."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if tag.startswith(text[-size:]):
            return size
    return 0


class ThinkTagSplitter:
    """
    Splits a leading `<think>...</think>` section out of streamed text deltas.

    Only a section at the very start of the answer counts as reasoning. Partial tags split across
    deltas are held back until they can be decided.
    """

    def __init__(self, tag_name: str = "think") -> None:
        self._open = f"<{tag_name}>"
        self._close = f"</{tag_name}>"
        self._buffer = ""
        self._mode = "detect"

    def feed(self, delta: str) -> list[StreamEvent]:
        if self._mode == "text":
            return [StreamEvent.text_delta(delta)] if delta else []

        self._buffer += delta
        out: list[StreamEvent] = []

        if self._mode == "detect":
            head = self._buffer.lstrip()
            if len(head) < len(self._open) and self._open.startswith(head):
                return out
            if not head.startswith(self._open):
                self._mode = "text"
                text, self._buffer = self._buffer, ""
                return [StreamEvent.text_delta(text)] if text else []
            self._mode = "reasoning"
            self._buffer = head[len(self._open):]

        idx = self._buffer.find(self._close)
        if idx >= 0:
            reasoning = self._buffer[:idx]
            rest = self._buffer[idx + len(self._close):].lstrip("\n")
            self._buffer = ""
            self._mode = "text"
            if reasoning:
                out.append(StreamEvent.reasoning_delta(reasoning))
            if rest:
                out.append(StreamEvent.text_delta(rest))
            return out

        keep = _partial_suffix_len(self._buffer, self._close)
        emit = self._buffer[: len(self._buffer) - keep]
        self._buffer = self._buffer[len(self._buffer) - keep:]
        if emit:
            out.append(StreamEvent.reasoning_delta(emit))
        return out

    def flush(self) -> list[StreamEvent]:
        text, self._buffer = self._buffer, ""
        if not text:
            return []
        if self._mode == "reasoning":
            return [StreamEvent.reasoning_delta(text)]
        return [StreamEvent.text_delta(text)]


async def split_think_tags(events: AsyncIterator[StreamEvent], *, tag_name: str = "think") -> AsyncIterator[StreamEvent]:
    """Stream wrapper applying `ThinkTagSplitter` to text deltas; other events pass through."""
    splitter = ThinkTagSplitter(tag_name)
    async for event in events:
        if event.kind is StreamEventKind.TEXT_DELTA:
            for out in splitter.feed(event.text or ""):
                yield out
            continue
        for out in splitter.flush():
            yield out
        yield event
    for out in splitter.flush():
        yield out

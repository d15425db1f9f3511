"""
Server-Sent Events capture.

Incrementally reassembles the text streamed by LLM providers from raw SSE
bytes, within byte / event ceilings. Capture never affects what the caller
receives.
"""

import codecs
import json
from enum import Enum
from typing import Any, Callable, List, Optional

DEFAULT_MAX_BYTES = 256_000
DEFAULT_MAX_EVENTS = 2000

DONE_SENTINEL = "[DONE]"


class SSEState(str, Enum):
    BUFFERING = "buffering"
    DISPATCHING = "dispatching"
    TRUNCATED = "truncated"


# --- Delta extractors, tried in order ---

def _openai_chat_delta(payload: Any) -> Optional[str]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    return None


def _openai_completion_text(payload: Any) -> Optional[str]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        text = choices[0].get("text")
        if isinstance(text, str):
            return text
    return None


def _anthropic_delta(payload: Any) -> Optional[str]:
    delta = payload.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    return None


def _content_block_delta(payload: Any) -> Optional[str]:
    block = payload.get("content_block_delta")
    if isinstance(block, dict):
        return _anthropic_delta(block)
    return None


DELTA_EXTRACTORS: List[Callable[[Any], Optional[str]]] = [
    _openai_chat_delta,
    _openai_completion_text,
    _anthropic_delta,
    _content_block_delta,
]


def extract_delta_text(data: str) -> str:
    """
    Text carried by one SSE event's data.

    Unknown JSON shapes yield "", non-JSON payloads yield the trimmed data.
    """
    trimmed = data.strip()
    if not trimmed or trimmed == DONE_SENTINEL:
        return ""
    try:
        payload = json.loads(trimmed)
    except ValueError:
        return trimmed
    if not isinstance(payload, dict):
        return ""
    for extractor in DELTA_EXTRACTORS:
        text = extractor(payload)
        if text is not None:
            return text
    return ""


class SSECapture:
    """
    Feed raw chunks, read back the reassembled text.

    Once a ceiling is crossed the capture is truncated: further chunks are
    ignored and ``text`` keeps what fit.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES, max_events: int = DEFAULT_MAX_EVENTS):
        self.max_bytes = max_bytes
        self.max_events = max_events
        self.state = SSEState.BUFFERING
        self.text = ""
        self.event_count = 0
        self.total_bytes = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data_lines: List[str] = []

    @property
    def truncated(self) -> bool:
        return self.state is SSEState.TRUNCATED

    def feed(self, chunk: bytes) -> str:
        """Consume a chunk. Returns the text appended by it ("" if none)."""
        if self.truncated:
            return ""
        self._buffer = (self._buffer + self._decoder.decode(chunk)).replace("\r\n", "\n")

        appended = []
        while not self.truncated:
            index = self._buffer.find("\n")
            if index == -1:
                break
            line, self._buffer = self._buffer[:index], self._buffer[index + 1:]
            delta = self._process_line(line)
            if delta:
                appended.append(delta)
        return "".join(appended)

    def _process_line(self, line: str) -> str:
        if line.startswith("data:"):
            self._data_lines.append(line[5:].lstrip())
            return ""
        if line != "" or not self._data_lines:
            return ""

        self.state = SSEState.DISPATCHING
        data = "\n".join(self._data_lines)
        self._data_lines = []

        self.event_count += 1
        if self.event_count > self.max_events:
            self.state = SSEState.TRUNCATED
            return ""

        delta = extract_delta_text(data)
        if delta:
            size = len(delta.encode("utf-8"))
            if self.total_bytes + size > self.max_bytes:
                self.state = SSEState.TRUNCATED
                return ""
            self.total_bytes += size
            self.text += delta

        self.state = SSEState.BUFFERING
        return delta

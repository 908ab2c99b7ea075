from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any

# Where partial-message events carry their text, most specific first.
_PARTIAL_TEXT_POINTERS: tuple[str, ...] = (
    "/delta/text",
    "/content_block/text",
    "/message/text",
    "/text",
    "/delta",
)


@dataclass(slots=True)
class StreamSummary:
    emitted_any_chunk: bool = False
    emitted_partial_chunk: bool = False
    emitted_full_message: bool = False


def _value_at_pointer(value: Any, pointer: str) -> Any:
    current = value
    for key in pointer.strip("/").split("/"):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _non_empty_text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def extract_partial_text(event: Any) -> str | None:
    for pointer in _PARTIAL_TEXT_POINTERS:
        text = _non_empty_text(_value_at_pointer(event, pointer))
        if text is not None:
            return text
    return None


def extract_message_text(content: Any) -> str | None:
    if isinstance(content, str):
        return _non_empty_text(content)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return _non_empty_text("".join(parts))
    return None


class StreamJsonDecoder:
    """
    Turn ``--output-format stream-json`` lines of one round into text chunks.

    Partial-message events win: once one was seen, whole ``assistant`` messages
    repeating the same text are skipped. A final ``result`` is only used when no
    full message was emitted. Lines that are not JSON pass through verbatim.
    """

    def __init__(self) -> None:
        self.summary = StreamSummary()

    def decode_line(self, line: str) -> str | None:
        trimmed = line.rstrip("\r\n")
        if not trimmed:
            return None
        try:
            value = json.loads(trimmed)
        except json.JSONDecodeError:
            self.summary.emitted_any_chunk = True
            return f"{trimmed}\n"

        chunk = self._extract_chunk(value)
        if chunk:
            self.summary.emitted_any_chunk = True
        return chunk

    def _extract_chunk(self, value: Any) -> str | None:
        if not isinstance(value, dict):
            return None

        event = value.get("event")
        if event is not None:
            partial = extract_partial_text(event)
            if partial is not None:
                self.summary.emitted_partial_chunk = True
                return partial

        if self.summary.emitted_partial_chunk:
            return None

        value_type = value.get("type")
        if value_type == "assistant":
            text = extract_message_text(_value_at_pointer(value, "/message/content"))
            if text is None:
                text = _non_empty_text(_value_at_pointer(value, "/message/text"))
            if text is not None:
                self.summary.emitted_full_message = True
                return text

        if not self.summary.emitted_full_message and value_type == "result":
            text = _non_empty_text(value.get("result"))
            if text is not None:
                self.summary.emitted_full_message = True
                return text

        return None


class StreamLineReader:
    """Split raw stdout bytes into complete text lines, holding back partial ones."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(bytes(data))
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def finish(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return [tail] if tail else []

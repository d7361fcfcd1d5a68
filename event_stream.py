#!/usr/bin/env python3

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from errors import ParseRecoverable

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass
class StreamEvent:
    """One decoded event-stream line"""

    kind: str  # 'content', 'analysis' or 'done'
    content: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


def extract_fragment(parsed: Any) -> Optional[str]:
    """Pull choices[0].delta.content out of a completion chunk"""
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


def _is_truncated(error: json.JSONDecodeError, payload: str) -> bool:
    # the decoder reports end-of-input or an open string for cut-off objects
    return error.pos >= len(payload) or error.msg.startswith("Unterminated string")


class EventStreamDecoder:
    """Incremental decoder for `data: <json>` event streams.

    Bytes are fed as they arrive; only newline-terminated lines are parsed.
    A terminated line whose JSON stops mid-object is held back, without its
    newline, at the front of the buffer so it continues with the next bytes.
    If the next complete line does not continue it, the held line is dropped
    on its own and what followed is decoded separately. Lines that are
    plainly invalid JSON are logged and skipped.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._held = 0
        self.done = False
        self.skipped_lines = 0

    @property
    def pending(self) -> str:
        """Text received but not yet parsed"""
        return self._buffer

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        return self._drain(final=False)

    def flush(self) -> List[StreamEvent]:
        """Parse whatever is left once the transport has closed"""
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer and not self._buffer.endswith("\n"):
            self._buffer += "\n"
        return self._drain(final=True)

    def _drain(self, final: bool) -> List[StreamEvent]:
        events = []
        while True:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break

            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1:]
            held, self._held = self._held, 0

            try:
                # a cut-off line may only wait when nothing complete follows it
                event = self._parse_line(line, allow_partial=not final and "\n" not in self._buffer)
            except ParseRecoverable:
                self._buffer = line + self._buffer
                self._held = held or len(line)
                break
            except json.JSONDecodeError:
                if 0 < held < len(line):
                    self._skip(line[:held])
                    self._buffer = line[held:] + "\n" + self._buffer
                else:
                    self._skip(line)
                continue

            if event:
                events.append(event)
        return events

    def _skip(self, line: str):
        self.skipped_lines += 1
        logger.warning(f"Skipping malformed stream line: {line[:200]}")

    def _parse_line(self, line: str, allow_partial: bool) -> Optional[StreamEvent]:
        if line.endswith("\r"):
            line = line[:-1]
        if line.startswith(":") or line.strip() == "":
            return None
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return StreamEvent(kind="done")

        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError as e:
            if allow_partial and _is_truncated(e, payload):
                raise ParseRecoverable(str(e)) from e
            raise

        if isinstance(parsed, dict) and parsed.get("type") == "analysis":
            return StreamEvent(kind="analysis", payload=parsed)

        fragment = extract_fragment(parsed)
        if fragment is None:
            return None
        return StreamEvent(kind="content", content=fragment)

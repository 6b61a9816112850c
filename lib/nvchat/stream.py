"""Decoding of chat-completion responses, streamed (SSE) or whole."""
import json
import re
from typing import Any, Dict, Iterable, Iterator, NamedTuple, Union

from .errors import EmptyResponseError

REASONING_BEGIN = "[Begin of Assistant Reasoning]"
REASONING_END = "[/End of Assistant Reasoning]"

_REASONING_BLOCK = re.compile(
    re.escape(REASONING_BEGIN) + r".*?" + re.escape(REASONING_END) + r"\s*\n?",
    re.DOTALL,
)

# chunk kinds
REASONING_START = "reasoning_start"
REASONING = "reasoning"
REASONING_STOP = "reasoning_stop"
CONTENT = "content"


class Delta(NamedTuple):
    reasoning: str = ""
    content: str = ""

    def __bool__(self):
        return bool(self.reasoning or self.content)


class Chunk(NamedTuple):
    kind: str
    text: str


def strip_reasoning(text: str) -> str:
    """Drop the delimited reasoning segments from a transcript entry"""
    return _REASONING_BLOCK.sub("", text)


def iter_sse_payloads(lines: Iterable[Union[str, bytes]]) -> Iterator[Dict[str, Any]]:
    """Yield the JSON objects of an SSE body, one per ``data:`` line"""
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if line.startswith("data: "):
            line = line[6:]
        line = line.strip()
        if not line or line == "[DONE]":
            continue
        try:
            chunk = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(chunk, dict):
            yield chunk


def _text(obj: Any, key: str) -> str:
    if isinstance(obj, dict):
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return ""


def _first_choice(chunk: Dict[str, Any]) -> Dict[str, Any]:
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def extract_delta(chunk: Dict[str, Any]) -> Delta:
    """Reasoning/content of one streamed chunk.

    ``choices[0].delta`` is the normal place; some servers put the text under
    ``choices[0].message`` instead.
    """
    choice = _first_choice(chunk)
    source = choice.get("delta")
    if not isinstance(source, dict):
        source = choice.get("message")
    return Delta(_text(source, "reasoning_content"), _text(source, "content"))


def iter_deltas(lines: Iterable[Union[str, bytes]]) -> Iterator[Delta]:
    for chunk in iter_sse_payloads(lines):
        delta = extract_delta(chunk)
        if delta:
            yield delta


def decode_completion(body: str) -> Delta:
    """Reasoning/content of a non-streamed response body"""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise EmptyResponseError(body) from None
    choice = _first_choice(data) if isinstance(data, dict) else {}
    delta = choice.get("delta")
    message = choice.get("message")
    reasoning = _text(delta, "reasoning_content") or _text(message, "reasoning_content")
    content = _text(delta, "content") or _text(message, "content")
    result = Delta(reasoning, content)
    if not result:
        raise EmptyResponseError(body)
    return result


class ResponseAssembler:
    """Turns deltas into display chunks and the transcript text.

    A reasoning segment is opened by the first reasoning delta and closed by
    the first content delta after it, or by ``finish()``.
    """

    def __init__(self):
        self._parts = []
        self.in_reasoning = False

    def feed(self, delta: Delta) -> Iterator[Chunk]:
        if delta.reasoning:
            if not self.in_reasoning:
                self.in_reasoning = True
                self._parts.append(REASONING_BEGIN + "\n")
                yield Chunk(REASONING_START, REASONING_BEGIN)
            self._parts.append(delta.reasoning)
            yield Chunk(REASONING, delta.reasoning)
        if delta.content:
            yield from self._close()
            self._parts.append(delta.content)
            yield Chunk(CONTENT, delta.content)

    def finish(self) -> Iterator[Chunk]:
        yield from self._close()

    def _close(self) -> Iterator[Chunk]:
        if self.in_reasoning:
            self.in_reasoning = False
            self._parts.append("\n" + REASONING_END + "\n\n")
            yield Chunk(REASONING_STOP, REASONING_END)

    @property
    def text(self) -> str:
        return "".join(self._parts)

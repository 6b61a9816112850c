"""
Shared fixtures: no colors, no real environment, no network.
"""
import json
from typing import List

import pytest

from nvchat.config import API_KEY_ENV_NAMES, Settings
from nvchat.conversation import Conversation
from nvchat.ui import Colors

_ENV_VARS = API_KEY_ENV_NAMES + [
    "NVIDIA_CHAT_MODEL",
    "NVIDIA_CHAT_BASE_URL",
    "NVIDIA_CHAT_HISTORY_DIR",
    "NVIDIA_CHAT_TIMEOUT",
    "NVIDIA_CHAT_MAX_RETRIES",
    "XDG_CACHE_HOME",
]


@pytest.fixture(scope="session", autouse=True)
def _no_colors():
    """Plain text output makes assertions readable"""
    Colors.disable()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeResponse:
    """Just enough of requests.Response for the client"""

    def __init__(self, status_code=200, body="", lines=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self._lines = lines or []
        self.closed = False

    @property
    def text(self):
        return self._body

    def iter_lines(self):
        for line in self._lines:
            yield line.encode("utf-8")

    def close(self):
        self.closed = True


def sse_lines(*deltas) -> List[str]:
    """SSE body lines for a list of delta dicts, ending with [DONE]"""
    lines = []
    for delta in deltas:
        lines.append("data: " + json.dumps({"choices": [{"delta": delta}]}))
        lines.append("")
    lines.append("data: [DONE]")
    return lines


def completion_body(content="", reasoning="") -> str:
    message = {"role": "assistant", "content": content}
    if reasoning:
        message["reasoning_content"] = reasoning
    return json.dumps({"choices": [{"message": message}]})


class FakePoster:
    """Replacement for Session.post that records payloads"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, json=None, stream=False, timeout=None):
        self.calls.append({"url": url, "json": json, "stream": stream, "timeout": timeout})
        return self.responses.pop(0)

    @property
    def payload(self):
        return self.calls[-1]["json"]


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def conversation(tmp_path, settings):
    conv = Conversation(tmp_path / "conv.json")
    conv.ensure(settings)
    return conv

import json
import logging
from typing import Any, Dict, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_BASE_URL, DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, Settings
from .conversation import Conversation
from .errors import APIError, EmptyResponseError, TransportError
from .payload import build_messages, build_payload
from .stream import CONTENT, Chunk, ResponseAssembler, decode_completion, iter_deltas

logger = logging.getLogger(__name__)


class ChatClient:
    """One POST to /chat/completions per turn."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL,
                 timeout: int = DEFAULT_TIMEOUT, max_retries: int = DEFAULT_MAX_RETRIES):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.http_session = requests.Session()
        # total=0 unless NVIDIA_CHAT_MAX_RETRIES says otherwise
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=20,
            pool_block=False
        )
        self.http_session.mount("https://", adapter)
        self.http_session.mount("http://", adapter)
        self.http_session.headers.update({
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        })

    @classmethod
    def from_settings(cls, api_key: str, settings: Settings) -> "ChatClient":
        return cls(api_key, settings.base_url, settings.timeout, settings.max_retries)

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def post(self, payload: Dict[str, Any], stream: bool) -> requests.Response:
        logger.debug("POST %s model=%s stream=%s", self.url, payload.get("model"), stream)
        logger.debug("Payload: %s", json.dumps(payload, ensure_ascii=False))
        try:
            response = self.http_session.post(
                self.url,
                json=payload,
                stream=stream,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            body = response.text
            response.close()
            raise APIError(response.status_code, response.reason or "", body)
        return response

    def complete(self, payload: Dict[str, Any], stream: bool,
                 assembler: Optional[ResponseAssembler] = None) -> Iterator[Chunk]:
        """Yield display chunks; the generator's return value is the transcript"""
        assembler = assembler if assembler is not None else ResponseAssembler()
        response = self.post(payload, stream)
        try:
            if stream:
                yield from self._handle_stream_response(response, assembler)
            else:
                yield from self._handle_non_stream_response(response, assembler)
        finally:
            response.close()
        return assembler.text

    def _handle_stream_response(self, response, assembler: ResponseAssembler) -> Iterator[Chunk]:
        try:
            for delta in iter_deltas(response.iter_lines()):
                yield from assembler.feed(delta)
        except requests.exceptions.RequestException as e:
            yield from assembler.finish()
            raise TransportError(f"Stream interrupted: {e}") from e
        yield from assembler.finish()

    def _handle_non_stream_response(self, response, assembler: ResponseAssembler) -> Iterator[Chunk]:
        delta = decode_completion(response.text)
        yield from assembler.feed(delta)
        yield from assembler.finish()

    def one_shot(self, prompt: str, settings: Settings, system_prompt: str = "") -> Iterator[str]:
        """Single request without a conversation file; yields content only"""
        definition = settings.definition
        messages = build_messages(definition, settings.params, system_prompt,
                                  [{"role": "user", "content": prompt}])
        payload = build_payload(settings.model, definition, settings.params, messages, settings.stream)
        try:
            for chunk in self.complete(payload, settings.stream):
                if chunk.kind == CONTENT:
                    yield chunk.text
        except EmptyResponseError as e:
            # nothing we could parse: show what the server sent
            yield e.body


class ChatSession:
    """A conversation file plus the client and settings that drive it."""

    def __init__(self, client: ChatClient, conversation: Conversation, settings: Settings,
                 system_prompt: str = ""):
        self.client = client
        self.conversation = conversation
        self.settings = settings
        # -s content for this run; wins over the persisted system prompt
        self.system_prompt = system_prompt

    def effective_system_prompt(self) -> str:
        return self.system_prompt or self.conversation.system()

    def build_request(self) -> Dict[str, Any]:
        definition = self.settings.definition
        messages = build_messages(definition, self.settings.params, self.effective_system_prompt(),
                                  self.conversation.messages())
        return build_payload(self.settings.model, definition, self.settings.params, messages,
                             self.settings.stream)

    def turn(self, user_text: str) -> Iterator[Chunk]:
        """Append the user message, call the API, append the reply.

        Whatever assistant text arrived is saved, even when the stream breaks
        off halfway.
        """
        self.conversation.check_limit(self.settings.history_limit)
        self.conversation.append_message("user", user_text)
        payload = self.build_request()

        assembler = ResponseAssembler()
        try:
            yield from self.client.complete(payload, self.settings.stream, assembler)
        finally:
            if assembler.text.strip():
                self.conversation.append_message("assistant", assembler.text)
        return assembler.text

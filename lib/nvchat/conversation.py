"""The conversation file: system prompt, persisted settings, message history."""
import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DEFAULT_HISTORY_LIMIT, DEFAULT_STREAM, Settings
from .errors import ConversationError, HistoryLimitError
from .stream import strip_reasoning

logger = logging.getLogger(__name__)

EXPORT_SEPARATOR = "\n\n---\n\n"


def new_conversation_data(settings: Settings) -> Dict[str, Any]:
    """Skeleton written the first time a conversation file is used"""
    return {
        "system": "",
        "settings": {
            "stream": DEFAULT_STREAM,
            "history_limit": DEFAULT_HISTORY_LIMIT,
            "default": {},
            "models": {settings.model: settings.definition.defaults()},
        },
        "messages": [],
    }


def _well_formed(data: Any) -> bool:
    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        return False
    file_settings = data.get("settings")
    return (
        isinstance(file_settings, dict)
        and isinstance(file_settings.get("default"), dict)
        and isinstance(file_settings.get("models"), dict)
    )


class Conversation:
    """One conversation file on disk.

    Every mutation is a read-modify-write of the whole document, and every
    write goes to a temp file in the same directory that is then renamed over
    the target.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"<Conversation {self.path}>"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ensure(self, settings: Settings) -> bool:
        """Create the file if missing, replace it if malformed.

        Returns True when a fresh file was written.
        """
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.save(new_conversation_data(settings))
            logger.debug("Created conversation file %s", self.path)
            return True

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None
        except OSError as e:
            raise ConversationError(f"Failed reading {self.path}: {e}") from e

        if _well_formed(data):
            return False

        backup = self.path.with_name(f"{self.path.name}.bak.{int(time.time())}")
        os.replace(self.path, backup)
        logger.warning(
            "Conversation file at %s was malformed. Backed up to %s and creating a new one.",
            self.path, backup,
        )
        self.save(new_conversation_data(settings))
        return True

    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConversationError(f"Failed reading conversation {self.path}: {e}") from e

    def save(self, data: Dict[str, Any]):
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise ConversationError(f"Failed writing conversation {self.path}: {e}") from e

    def raw_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConversationError(f"Failed reading conversation {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def messages(self) -> List[Dict[str, str]]:
        return self.load()["messages"]

    def message_count(self) -> int:
        return len(self.messages())

    def system(self) -> str:
        return self.load().get("system") or ""

    def file_settings(self) -> Dict[str, Any]:
        return self.load().get("settings") or {}

    def append_message(self, role: str, content: str):
        data = self.load()
        data["messages"].append({"role": role, "content": content})
        self.save(data)

    def clear(self):
        data = self.load()
        data["messages"] = []
        self.save(data)

    def persist_system(self, content: str):
        data = self.load()
        data["system"] = content
        self.save(data)

    def persist_settings(self, settings: Settings):
        """Store the session's effective values for the active model"""
        data = self.load()
        file_settings = data.setdefault("settings", {})
        file_settings.setdefault("default", {})
        models = file_settings.setdefault("models", {})
        models.setdefault(settings.model, {}).update(settings.persisted_params())
        file_settings["stream"] = settings.stream
        file_settings["history_limit"] = settings.history_limit
        self.save(data)

    def check_limit(self, limit: int):
        """Refuse to add a message once ``limit`` is reached; nothing is ever evicted"""
        count = self.message_count()
        if count >= limit:
            raise HistoryLimitError(self.path, count, limit)

    # ------------------------------------------------------------------
    # Copy / export
    # ------------------------------------------------------------------

    def copy_to(self, target: Union[str, Path]):
        try:
            shutil.copyfile(self.path, Path(target).expanduser())
        except OSError as e:
            raise ConversationError(f"Failed to save: {e}") from e

    def assistant_responses(self) -> List[str]:
        return [m.get("content", "") for m in self.messages() if m.get("role") == "assistant"]

    def export_last(self, n: int, target: Union[str, Path], strip_thinking: bool = False):
        """Write the last ``n`` assistant responses, oldest first"""
        if n < 1:
            raise ConversationError(f"n must be at least 1, got {n}")
        responses = self.assistant_responses()
        if not responses:
            raise ConversationError("no assistant responses found")
        self._write_export(responses[-n:], target, strip_thinking)

    def export_nth(self, n: int, target: Union[str, Path], strip_thinking: bool = False):
        """Write the Nth-to-last assistant response (1 is the latest)"""
        responses = self.assistant_responses()
        if not responses:
            raise ConversationError("no assistant responses found")
        if n < 1 or n > len(responses):
            raise ConversationError(
                f"index out of bounds: specified {n}, but there are only "
                f"{len(responses)} assistant responses"
            )
        self._write_export([responses[-n]], target, strip_thinking)

    def _write_export(self, responses: List[str], target, strip_thinking: bool):
        if strip_thinking:
            responses = [strip_reasoning(r) for r in responses]
        try:
            Path(target).expanduser().write_text(EXPORT_SEPARATOR.join(responses), encoding="utf-8")
        except OSError as e:
            raise ConversationError(f"Failed to export: {e}") from e


def read_system_prompt(path: Optional[Union[str, Path]]) -> str:
    """Content of a ``-s``/``/persist-system`` file"""
    if not path:
        return ""
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConversationError(f"System prompt file not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConversationError(f"Failed to read file: {e}") from e

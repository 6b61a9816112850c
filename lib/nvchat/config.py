"""Effective settings: built-in defaults, file settings, environment, flags."""
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .models import (
    DEFAULT_MODEL,
    ModelDefinition,
    format_number,
    get_model_definition,
    parse_bool,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://integrate.api.nvidia.com/v1"
DEFAULT_STREAM = True
DEFAULT_HISTORY_LIMIT = 40
DEFAULT_TIMEOUT = 300
DEFAULT_MAX_RETRIES = 0

API_KEY_ENV_NAMES = [
    "NVIDIA_BUILD_AI_ACCESS_TOKEN",
    "NVIDIA_ACCESS_TOKEN",
    "ACCESS_TOKEN",
    "NVIDIA_API_KEY",
    "API_KEY",
]

# settings that live outside the per-model maps
GLOBAL_SETTINGS = ("stream", "history_limit")

# override marker for "/param unset": back to the schema default
UNSET = object()


def _getenv_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default


def get_api_key_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    for name in API_KEY_ENV_NAMES:
        value = environ.get(name)
        if value:
            return value
    return ""


def default_history_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    if environ.get("NVIDIA_CHAT_HISTORY_DIR"):
        return Path(environ["NVIDIA_CHAT_HISTORY_DIR"]).expanduser()
    cache_home = environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(cache_home).expanduser() / "nvidia-chat"


def default_conversation_path(environ: Optional[Mapping[str, str]] = None,
                              now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return default_history_dir(environ) / f"conversation-{stamp}.json"


def parse_history_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid history_limit (positive integer): {value}") from None
    if isinstance(value, bool) or limit <= 0 or (isinstance(value, float) and value != limit):
        raise ConfigError(f"invalid history_limit (positive integer): {value}")
    return limit


def parse_stream(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return parse_bool(value)
        except ConfigError:
            pass
    raise ConfigError(f"invalid stream flag (true|false): {value}")


class Settings:
    """The effective settings map for one run.

    Values are layered, lowest precedence first:

    1. the active model's schema defaults plus the global defaults,
    2. the conversation file (``settings.default`` then
       ``settings.models[<model>]``, plus ``stream``/``history_limit``),
    3. session overrides, i.e. CLI flags and interactive ``/param`` commands.

    Overrides are kept as the raw strings the user typed so they can be
    re-parsed against another model's schema after ``/model``.
    """

    def __init__(self, model: str = DEFAULT_MODEL, base_url: str = DEFAULT_BASE_URL,
                 timeout: int = DEFAULT_TIMEOUT, max_retries: int = DEFAULT_MAX_RETRIES):
        if timeout <= 0:
            raise ConfigError(f"invalid timeout (positive number of seconds): {timeout}")
        if max_retries < 0:
            raise ConfigError(f"invalid max retries (0 or more): {max_retries}")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.stream = DEFAULT_STREAM
        self.history_limit = DEFAULT_HISTORY_LIMIT
        self.params: Dict[str, Any] = {}
        self.overrides: Dict[str, Any] = {}
        self.file_settings: Dict[str, Any] = {}
        self._ignored = set()
        self.apply()

    @classmethod
    def from_environment(cls, model: Optional[str] = None, base_url: Optional[str] = None,
                         timeout: Optional[int] = None,
                         environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Flags win over NVIDIA_CHAT_* variables, which win over built-ins"""
        environ = os.environ if environ is None else environ
        return cls(
            model=model or environ.get("NVIDIA_CHAT_MODEL") or DEFAULT_MODEL,
            base_url=base_url or environ.get("NVIDIA_CHAT_BASE_URL") or DEFAULT_BASE_URL,
            timeout=timeout if timeout is not None else _getenv_int(environ, "NVIDIA_CHAT_TIMEOUT", DEFAULT_TIMEOUT),
            max_retries=_getenv_int(environ, "NVIDIA_CHAT_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        )

    @property
    def definition(self) -> ModelDefinition:
        return get_model_definition(self.model)

    def knows(self, name: str) -> bool:
        return name in GLOBAL_SETTINGS or name in self.definition.parameters

    # ------------------------------------------------------------------
    # Layering
    # ------------------------------------------------------------------

    def load_file_settings(self, file_settings: Optional[Mapping[str, Any]], strict: bool = True):
        self.file_settings = dict(file_settings or {})
        self.apply(strict=strict)

    def add_overrides(self, overrides: Mapping[str, Any], strict: bool = True):
        self.overrides.update(overrides)
        self.apply(strict=strict)

    def apply(self, strict: bool = True):
        """Recompute stream, history_limit and params from all layers.

        With ``strict`` an invalid override raises ConfigError. Otherwise it
        is dropped with a warning.
        """
        definition = self.definition
        params = definition.defaults()
        stream = DEFAULT_STREAM
        history_limit = DEFAULT_HISTORY_LIMIT

        # conversation file
        fs = self.file_settings
        if "stream" in fs:
            stream = self._from_file("stream", fs["stream"], parse_stream)
        if fs.get("history_limit"):
            history_limit = self._from_file("history_limit", fs["history_limit"], parse_history_limit)
        model_maps = [fs.get("default") or {}, (fs.get("models") or {}).get(self.model) or {}]
        for layer in model_maps:
            for name, value in layer.items():
                param = definition.parameters.get(name)
                if param is None:
                    continue
                params[name] = self._from_file(name, value, param.validate)

        # session overrides
        for name, text in list(self.overrides.items()):
            if text is UNSET:
                if name == "stream":
                    stream = DEFAULT_STREAM
                elif name == "history_limit":
                    history_limit = DEFAULT_HISTORY_LIMIT
                elif name in definition.parameters:
                    params[name] = definition.parameters[name].default
                continue
            try:
                if name == "stream":
                    stream = parse_stream(text)
                elif name == "history_limit":
                    history_limit = parse_history_limit(text)
                elif name in definition.parameters:
                    params[name] = definition.parameters[name].parse(text)
                elif (self.model, name) not in self._ignored:
                    self._ignored.add((self.model, name))
                    logger.warning("Model %s has no parameter %r; ignoring it", self.model, name)
            except ConfigError as e:
                if strict:
                    raise ConfigError(f"Invalid {name}: {e}") from None
                logger.warning("Dropping %s=%s for model %s: %s", name, text, self.model, e)
                del self.overrides[name]

        self.params = params
        self.stream = stream
        self.history_limit = history_limit

    def _from_file(self, name, value, check):
        try:
            return check(value)
        except ConfigError as e:
            raise ConfigError(f"Invalid {name} in conversation file: {e}") from None

    # ------------------------------------------------------------------
    # Interactive changes
    # ------------------------------------------------------------------

    def set(self, name: str, text: str) -> Any:
        """Validate and record a session override, returning the typed value"""
        if not self.knows(name):
            raise ConfigError(f"unknown parameter: {name}")
        if name == "stream":
            value = parse_stream(text)
        elif name == "history_limit":
            value = parse_history_limit(text)
        else:
            value = self.definition.parameters[name].parse(text)
        self.overrides[name] = text
        self.apply()
        return value

    def unset(self, name: str) -> Any:
        """Revert a setting to its built-in default for this session"""
        if not self.knows(name):
            raise ConfigError(f"unknown parameter: {name}")
        self.overrides[name] = UNSET
        self.apply()
        return self.get(name)

    def get(self, name: str) -> Any:
        if name == "stream":
            return self.stream
        if name == "history_limit":
            return self.history_limit
        return self.params.get(name)

    def switch_model(self, model: str):
        """Re-resolve for another model; on failure the old model stays active"""
        previous = self.model
        self.model = model
        try:
            self.apply(strict=False)
        except ConfigError as e:
            self.model = previous
            self.apply(strict=False)
            raise ConfigError(f"Cannot switch to {model}: {e}") from None

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def persisted_params(self) -> Dict[str, Any]:
        return dict(self.params)

    def summary(self) -> str:
        parts = [f"model={self.model}"]
        parts += [f"{name}={format_number(value) if value is not None else 'null'}"
                  for name, value in sorted(self.params.items())]
        parts += [f"stream={format_number(self.stream)}", f"history_limit={self.history_limit}"]
        return " ".join(parts)

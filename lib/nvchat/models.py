"""Per-model parameter schemas.

Every model served by the endpoint accepts a slightly different set of
sampling parameters, with its own ranges and defaults. The table below is the
single source of truth for them: the CLI flags, the interactive ``/param``
commands, validation and payload assembly are all derived from it.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigError
from .ui import UI

FLOAT = "float"
INT = "int"
STRING = "string"
BOOL = "bool"
STRING_ARRAY = "string_array"

GENERIC_MODEL = "others"

_MISSING = object()

_TRUE_WORDS = {"1", "t", "true", "yes", "on"}
_FALSE_WORDS = {"0", "f", "false", "no", "off"}


def parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ConfigError(f"invalid boolean value (true/false): {text}")


def format_number(value: Any) -> str:
    """Render numbers the short way: 1.0 -> 1, 0.95 -> 0.95"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


@dataclass(frozen=True)
class ModelParameter:
    type: str
    default: Any
    description: str
    api_key: str = ""
    min: Optional[float] = None
    max: Optional[float] = None
    options: List[str] = field(default_factory=list)
    # payload omits the field when the value equals this
    omit_value: Any = _MISSING
    # None is sent as JSON null instead of being left out
    nullable: bool = False

    def parse(self, text: str) -> Any:
        """Convert a flag/command string into a typed value and validate it"""
        if self.type == FLOAT:
            try:
                value = float(text)
            except ValueError:
                raise ConfigError(f"invalid float value: {text}") from None
        elif self.type == INT:
            try:
                value = int(text)
            except ValueError:
                raise ConfigError(f"invalid integer value: {text}") from None
        elif self.type == BOOL:
            value = parse_bool(text)
        else:
            value = text
        return self.validate(value)

    def validate(self, value: Any) -> Any:
        """Check a typed value (from a flag or from the JSON file)"""
        if value is None:
            if self.nullable or self.default is None:
                return None
            raise ConfigError("value may not be null")

        if self.type in (FLOAT, INT):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"expected a number, got {value!r}")
            if self.type == INT:
                if isinstance(value, float):
                    if not value.is_integer():
                        raise ConfigError(f"invalid integer value: {format_number(value)}")
                    value = int(value)
            else:
                value = float(value)
            if (self.min is not None and value < self.min) or (self.max is not None and value > self.max):
                raise ConfigError(
                    f"value out of range [{self.range_text()}]: {format_number(value)}"
                )
            return value

        if self.type == BOOL:
            if isinstance(value, str):
                return parse_bool(value)
            if not isinstance(value, bool):
                raise ConfigError(f"invalid boolean value (true/false): {value!r}")
            return value

        if not isinstance(value, str):
            raise ConfigError(f"expected a string, got {value!r}")
        if self.options and value not in self.options:
            raise ConfigError(f"invalid option. Must be one of: {', '.join(self.options)}")
        return value

    def range_text(self) -> str:
        low = "-inf" if self.min is None else format_number(self.min)
        high = "inf" if self.max is None else format_number(self.max)
        return f"{low}, {high}"

    def omitted(self, value: Any) -> bool:
        if value is None:
            return not self.nullable
        return self.omit_value is not _MISSING and value == self.omit_value


@dataclass(frozen=True)
class ModelDefinition:
    parameters: Dict[str, ModelParameter]
    # control string sent as a system message when thinking is on
    thinking_system_message: str = ""
    # control string sent when thinking is off
    no_thinking_system_message: str = ""
    # thinking travels as chat_template_kwargs.thinking
    chat_template_kwargs_thinking: bool = False

    def defaults(self) -> Dict[str, Any]:
        return {name: p.default for name, p in self.parameters.items()}

    @property
    def has_thinking_toggle(self) -> bool:
        return bool(self.thinking_system_message) or self.chat_template_kwargs_thinking


# ---------------------------------------------------------------------------
# Parameter building blocks
# ---------------------------------------------------------------------------

def _temperature(default, low=0.0, high=1.0, description="Sampling temperature."):
    return ModelParameter(FLOAT, default, description, "temperature", min=low, max=high)


def _top_p(default, low=0.01, description="Top-p sampling."):
    return ModelParameter(FLOAT, default, description, "top_p", min=low, max=1.0)


def _frequency_penalty(description="Frequency penalty."):
    return ModelParameter(FLOAT, 0.0, description, "frequency_penalty", min=-2.0, max=2.0)


def _presence_penalty(description="Presence penalty."):
    return ModelParameter(FLOAT, 0.0, description, "presence_penalty", min=-2.0, max=2.0)


def _max_tokens(default, high=None, description="Maximum tokens to generate."):
    return ModelParameter(INT, default, description, "max_tokens", min=1, max=high)


def _stop(description="Stop sequences."):
    return ModelParameter(STRING_ARRAY, "", description, "stop", omit_value="")


def _seed():
    return ModelParameter(
        INT, 0, "Seed for reproducibility. Default 0 means not included.", "seed", omit_value=0
    )


def _thinking(default, description):
    return ModelParameter(BOOL, default, description)


def _sampling(temperature, top_p, max_tokens, max_tokens_high=None, penalties=True, seed=False,
              temperature_low=0.0, top_p_low=0.01):
    params = {
        "temperature": _temperature(temperature, low=temperature_low),
        "top_p": _top_p(top_p, low=top_p_low),
        "max_tokens": _max_tokens(max_tokens, max_tokens_high),
        "stop": _stop(),
    }
    if penalties:
        params["frequency_penalty"] = _frequency_penalty()
        params["presence_penalty"] = _presence_penalty()
    if seed:
        params["seed"] = _seed()
    return params


# ---------------------------------------------------------------------------
# Model table
# ---------------------------------------------------------------------------

MODEL_DEFINITIONS: Dict[str, ModelDefinition] = {
    "openai/gpt-oss-120b": ModelDefinition(parameters={
        "temperature": _temperature(
            1.0, description="The sampling temperature to use for text generation. The higher the "
            "temperature value is, the less deterministic the output text will be. It is not "
            "recommended to modify both temperature and top_p in the same call."),
        "top_p": _top_p(
            1.0, description="The top-p sampling mass used for text generation. Only the most likely "
            "tokens summing to top_p cumulative probability are sampled. It is not recommended to "
            "modify both temperature and top_p in the same call."),
        "frequency_penalty": _frequency_penalty(
            "Indicates how much to penalize new tokens based on their existing frequency in the "
            "text so far, decreasing model likelihood to repeat the same line verbatim."),
        "presence_penalty": _presence_penalty(
            "Positive values penalize new tokens based on whether they appear in the text so far, "
            "increasing model likelihood to talk about new topics."),
        "max_tokens": _max_tokens(
            4096, 4096, "The maximum number of tokens to generate in any given call. The model is "
            "not aware of this value; generation simply stops at the number of tokens specified."),
        "stop": _stop(
            "A string where the API will stop generating further tokens. The returned text will "
            "not contain the stop sequence."),
        "reasoning_effort": ModelParameter(
            STRING, "medium",
            "Controls the effort level for reasoning. 'low' provides basic reasoning, 'medium' "
            "balanced reasoning and 'high' detailed step-by-step reasoning.",
            "reasoning_effort", options=["low", "medium", "high"]),
    }),
    "bytedance/seed-oss-36b-instruct": ModelDefinition(parameters={
        **_sampling(1.1, 0.95, 4096, seed=True),
        "temperature": _temperature(1.1, high=2.0, description="The sampling temperature to use for text generation."),
        "thinking_budget": ModelParameter(
            INT, -1,
            "Token budget for the model's internal reasoning. -1 for unlimited thinking, 0 for no "
            "thinking, or a positive integer to limit thinking tokens. Recommended values are "
            "multiples of 512. Must be less than max_tokens.",
            "thinking_budget", min=-1, max=16384),
    }),
    "qwen/qwen3-coder-480b-a35b-instruct": ModelDefinition(parameters=_sampling(0.7, 0.8, 4096, 16384)),
    "nvidia/nvidia-nemotron-nano-9b-v2": ModelDefinition(
        thinking_system_message="/think",
        parameters={
            **_sampling(0.6, 0.95, 2048, 8192, seed=True),
            "min_thinking_tokens": ModelParameter(
                INT, 1024,
                "The minimum number of tokens the model should use for internal reasoning. Must be "
                "less than max_thinking_tokens.",
                "min_thinking_tokens", min=1, max=4096),
            "max_thinking_tokens": ModelParameter(
                INT, 2048,
                "The maximum number of tokens the model can use for internal reasoning. Must be "
                "greater than min_thinking_tokens.",
                "max_thinking_tokens", min=1, max=4096),
            "thinking": _thinking(False, "Enable thinking mode. Prepends a '/think' system message."),
        },
    ),
    "nvidia/llama-3.3-nemotron-super-49b-v1.5": ModelDefinition(
        thinking_system_message="/think",
        no_thinking_system_message="/no_think",
        parameters={
            **_sampling(0.6, 0.95, 65536, seed=True),
            "thinking": _thinking(
                False, "Enable thinking mode. Prepends a system message to enable/disable thinking."),
        },
    ),
    "mistralai/mistral-nemotron": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "mistralai/mistral-small-24b-instruct": ModelDefinition(parameters=_sampling(0.2, 0.7, 1024, 8192)),
    "deepseek-ai/deepseek-v3.1": ModelDefinition(
        chat_template_kwargs_thinking=True,
        parameters={
            **_sampling(0.2, 0.7, 8192, 16384, penalties=False, temperature_low=0.01),
            "seed": ModelParameter(
                INT, None, "Seed for reproducibility. Sent as null if not set.", "seed", nullable=True),
            "thinking": _thinking(True, "Enable thinking mode via chat_template_kwargs."),
        },
    ),
    "deepseek-ai/deepseek-r1-distill-qwen-32b": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "deepseek-ai/deepseek-r1-distill-llama-8b": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "deepseek-ai/deepseek-r1-0528": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "qwen/qwen3-next-80b-a3b-instruct": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "qwen/qwen3-next-80b-a3b-thinking": ModelDefinition(parameters=_sampling(0.6, 0.7, 4096, 4096)),
    "moonshotai/kimi-k2-instruct-0905": ModelDefinition(
        parameters=_sampling(0.6, 0.9, 4096, 16384, penalties=False)),
    "google/codegemma-7b": ModelDefinition(
        parameters=_sampling(0.5, 1.0, 1024, 1024, penalties=False, seed=True, top_p_low=0.0)),
    "google/gemma-7b": ModelDefinition(
        parameters=_sampling(0.5, 1.0, 1024, 1024, penalties=False, top_p_low=0.0)),
    "mistralai/mixtral-8x22b-instruct-v0.1": ModelDefinition(
        parameters=_sampling(0.5, 1.0, 1024, 1024, penalties=False, seed=True, top_p_low=0.0)),
    # fallback for ids not listed above
    GENERIC_MODEL: ModelDefinition(parameters=_sampling(0.5, 1.0, 1024, top_p_low=0.0)),
}

MODELS_LIST = [name for name in MODEL_DEFINITIONS if name != GENERIC_MODEL]

DEFAULT_MODEL = "openai/gpt-oss-120b"


def get_model_definition(name: str) -> ModelDefinition:
    return MODEL_DEFINITIONS.get(name, MODEL_DEFINITIONS[GENERIC_MODEL])


def is_known_model(name: str) -> bool:
    return name in MODEL_DEFINITIONS and name != GENERIC_MODEL


def all_parameters() -> Dict[str, ModelParameter]:
    """Union of every parameter in the table, first definition wins"""
    params: Dict[str, ModelParameter] = {}
    for definition in MODEL_DEFINITIONS.values():
        for name, param in definition.parameters.items():
            params.setdefault(name, param)
    return dict(sorted(params.items()))


def format_model_info(name: str) -> str:
    """Human readable description of one model's parameters"""
    if not is_known_model(name):
        raise ConfigError(f"Model '{name}' not found.")
    definition = MODEL_DEFINITIONS[name]

    lines = [UI.header(f"Model: {name}"), "", UI.header("Parameters:")]
    for param_name in sorted(definition.parameters):
        param = definition.parameters[param_name]
        lines.append(f"  {UI.highlight(param_name)}")
        lines.append(f"    Description: {param.description}")
        lines.append(f"    Type: {param.type}")
        default = "null" if param.default is None else format_number(param.default)
        lines.append(f"    Default: {default}")
        if param.type in (FLOAT, INT):
            if param.min is not None and param.max is not None:
                lines.append(f"    Range: {format_number(param.min)} to {format_number(param.max)}")
            elif param.min is not None:
                lines.append(f"    Range: >= {format_number(param.min)}")
            elif param.max is not None:
                lines.append(f"    Range: <= {format_number(param.max)}")
        if param.options:
            lines.append(f"    Options: {', '.join(param.options)}")
        lines.append("")

    if definition.has_thinking_toggle:
        lines.append(UI.header("Special Behavior:"))
        if definition.thinking_system_message:
            lines.append("  - This model uses a system message to control thinking. "
                         "Use `/thinking true` to enable.")
        if definition.chat_template_kwargs_thinking:
            lines.append("  - This model uses 'chat_template_kwargs' to control thinking. "
                         "Use `/thinking true` to enable.")
    return "\n".join(lines) + "\n"

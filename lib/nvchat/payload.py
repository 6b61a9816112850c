"""Projection of the effective settings onto a model-specific request body."""
from typing import Any, Dict, Iterable, List, Mapping

from .models import ModelDefinition


def thinking_control_message(definition: ModelDefinition, params: Mapping[str, Any]) -> str:
    """The '/think' style system message some models are steered with, or ''"""
    if not definition.thinking_system_message:
        return ""
    if params.get("thinking"):
        return definition.thinking_system_message
    return definition.no_thinking_system_message


def build_messages(definition: ModelDefinition, params: Mapping[str, Any], system_prompt: str,
                   history: Iterable[Mapping[str, str]]) -> List[Dict[str, str]]:
    """Thinking control message, then the system prompt, then the history"""
    messages = []
    control = thinking_control_message(definition, params)
    if control:
        messages.append({"role": "system", "content": control})
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return messages


def build_payload(model: str, definition: ModelDefinition, params: Mapping[str, Any],
                  messages: List[Dict[str, str]], stream: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": stream,
    }

    for name, param in definition.parameters.items():
        # e.g. 'thinking' is only steered through messages/kwargs
        if not param.api_key:
            continue
        value = params.get(name, param.default)
        if param.omitted(value):
            continue
        payload[param.api_key] = value

    if definition.chat_template_kwargs_thinking:
        payload["chat_template_kwargs"] = {"thinking": bool(params.get("thinking"))}

    return payload

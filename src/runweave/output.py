"""Turn structured tool output into display text."""

import json
from typing import Any

import yaml

TERMINAL_TOOL_NAME = "run_terminal_command"


def to_yaml(value: Any) -> str:
    """Readable rendering of a JSON-like value."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    dumped = yaml.safe_dump(value, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return dumped.strip()


def format_tool_output(output: Any) -> str:
    """Flatten a tool result's output parts into one string.

    Parts are ``{"type": "json", "value": ...}`` or ``{"type": "text", "text": ...}``;
    a json part carrying an ``errorMessage`` renders as that message.
    """
    if not output:
        return ""
    if isinstance(output, str):
        return output
    if not isinstance(output, list):
        return to_yaml(output)

    parts = []
    for item in output:
        if isinstance(item, dict) and item.get("type") == "json":
            value = item.get("value")
            if isinstance(value, dict) and "errorMessage" in value:
                parts.append(str(value["errorMessage"]))
            else:
                parts.append(to_yaml(value))
        elif isinstance(item, dict) and item.get("type") == "text":
            parts.append(item.get("text") or "")
        else:
            parts.append(str(item))
    return "\n".join(parts)


def format_tool_result(tool_name: str, output: list[Any]) -> str:
    """Terminal commands show raw stdout/stderr; everything else is formatted."""
    if tool_name == TERMINAL_TOOL_NAME and output and isinstance(output[0], dict):
        value = output[0].get("value")
        if isinstance(value, dict) and (value.get("stdout") or value.get("stderr")):
            return (value.get("stdout") or "") + (value.get("stderr") or "")
    return format_tool_output(output)


def extract_spawn_result_content(result: Any) -> tuple[str, bool]:
    """Pull displayable text out of one spawned agent's result value.

    Returns ``(content, has_error)``. Results come in several shapes: a bare
    string, ``{"value": "..."}``, ``{"value": {"errorMessage": ...}}``,
    ``{"value": {"message": ...}}``, or top-level ``errorMessage``/``message``.
    """
    if isinstance(result, str):
        return result, False

    if isinstance(result, dict):
        nested = result.get("value")
        if isinstance(nested, str):
            return nested, False
        if isinstance(nested, dict):
            if nested.get("errorMessage"):
                return str(nested["errorMessage"]), True
            if nested.get("message"):
                return str(nested["message"]), False
        if not result:
            return "", False
        if result.get("errorMessage"):
            return str(result["errorMessage"]), True
        if result.get("message"):
            return str(result["message"]), False

    if not result:
        return "", False

    return format_tool_output([{"type": "json", "value": result}]), False

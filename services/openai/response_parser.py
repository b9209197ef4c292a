"""Helpers to parse Responses API outputs."""

import json
from typing import Any, Dict, Optional


def parse_function_call(response: Any, *, tool_name: str) -> Dict[str, Any]:
    """Return the decoded arguments of the function call for `tool_name`.

    Raises:
        RuntimeError: If the response holds no such call or its arguments are not a JSON object.
    """
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "function_call" and getattr(item, "name", None) == tool_name:
            try:
                args = json.loads(getattr(item, "arguments", "{}") or "{}")
            except json.JSONDecodeError as exc:
                raise RuntimeError(f"Function call '{tool_name}' returned malformed arguments.") from exc
            if not isinstance(args, dict):
                raise RuntimeError(f"Function call '{tool_name}' returned non-object arguments.")
            return args
    raise RuntimeError(f"No function_call output for '{tool_name}' found in Responses API output.")


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }

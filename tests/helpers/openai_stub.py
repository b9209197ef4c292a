"""Minimal stand-in for ``openai.AsyncOpenAI`` as used by the receipt extractor.

Each call to ``responses.create`` pops the next queued item: a dict becomes the
JSON arguments of a ``function_call`` output for the requested tool, and an
exception is raised as-is.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any


class AsyncOpenAIStub:
    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: list[dict[str, Any]] = []
        self.responses = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        tool_name = kwargs["tool_choice"]["name"]
        call = SimpleNamespace(type="function_call", name=tool_name, arguments=json.dumps(result))
        return SimpleNamespace(output=[call], usage=SimpleNamespace(input_tokens=10, output_tokens=5))

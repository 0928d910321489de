"""Remote generation with a bounded tool-calling loop.

One ``generate`` call is one exchange: the model is called repeatedly while it
keeps requesting tools, up to ``max_steps`` completions. The produced turns
come back as a batch for MessageStore.reconcile; every assistant turn carries
the completion id and every tool turn an id derived from its tool-call id, so
a replayed batch deduplicates cleanly.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import openai

from agent.cache_policy import to_api_messages
from agent.errors import GenerationError
from agent.turns import StructuredTurn, TextPart, ToolCallPart, ToolResultPart, Turn, TurnRole
from tools import get_tool_definitions, handle_tool_call

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5
CREDENTIALS_HINT = "Make sure to set OPENROUTER_API_KEY (or ANTHROPIC_API_KEY) in your .env file"


@dataclass
class GenerationResult:
    turns: List[Turn] = field(default_factory=list)
    steps: int = 0
    reached_step_limit: bool = False
    usage: Dict[str, int] = field(default_factory=dict)
    elapsed_ms: int = 0


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, json.JSONDecodeError):
        logger.warning("Invalid JSON in tool call arguments: %s", str(raw)[:100])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _add_usage(totals: Dict[str, int], usage: Any) -> None:
    if usage is None:
        return
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = getattr(usage, key, None)
        if isinstance(value, int):
            totals[key] = totals.get(key, 0) + value
    details = getattr(usage, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", None) if details is not None else None
    if isinstance(cached, int):
        totals["cached_tokens"] = totals.get("cached_tokens", 0) + cached


class ModelClient:
    """Runs exchanges against an OpenAI-compatible chat completions endpoint.

    Args:
        client: ``openai.OpenAI`` instance.
        model: Model name (OpenRouter format, e.g. ``anthropic/claude-sonnet-4``).
        max_steps: Ceiling on completions per exchange.
        tools: Tool schemas; defaults to every tool in the ``tools`` package.
        tool_handler: ``(name, arguments) -> result`` used to run tool calls.
        on_text: Called with each chunk of assistant text as it arrives.
        on_tool_call: Called with ``(name, arguments)`` before a tool runs.
        max_tokens: Optional completion budget per step.
    """

    def __init__(
        self,
        client,
        model: str,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        tools: list = None,
        tool_handler: Callable[[str, Dict[str, Any]], Dict[str, Any]] = None,
        on_text: Callable[[str], None] = None,
        on_tool_call: Callable[[str, Dict[str, Any]], None] = None,
        max_tokens: int = None,
    ):
        self._client = client
        self._model = model
        self._max_steps = max(1, max_steps)
        self._tools = tools if tools is not None else get_tool_definitions()
        self._tool_handler = tool_handler or handle_tool_call
        self._on_text = on_text
        self._on_tool_call = on_tool_call
        self._max_tokens = max_tokens

    @property
    def max_steps(self) -> int:
        return self._max_steps

    def _build_api_kwargs(self, api_messages: list) -> dict:
        api_kwargs = {
            "model": self._model,
            "messages": api_messages,
            "timeout": 600.0,
        }
        if self._tools:
            api_kwargs["tools"] = self._tools
        if self._max_tokens is not None:
            api_kwargs["max_tokens"] = self._max_tokens
        return api_kwargs

    def _call(self, api_messages: list):
        try:
            return self._client.chat.completions.create(**self._build_api_kwargs(api_messages))
        except openai.AuthenticationError as e:
            raise GenerationError(f"Authentication failed: {e}", hint=CREDENTIALS_HINT) from e
        except openai.APIError as e:
            raise GenerationError(f"Model call failed: {e}", hint=CREDENTIALS_HINT) from e

    def _run_tools(self, tool_calls: Sequence[ToolCallPart]) -> StructuredTurn:
        results = []
        for call in tool_calls:
            if self._on_tool_call:
                self._on_tool_call(call.tool_name, call.args)
            result = self._tool_handler(call.tool_name, call.args)
            results.append(ToolResultPart(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                result=result,
            ))
        return StructuredTurn(role=TurnRole.TOOL, content=results, id=f"tool-{tool_calls[0].tool_call_id}")

    def generate(self, turns: Sequence[Turn]) -> GenerationResult:
        """Run one exchange over *turns* and return the produced batch.

        Raises:
            GenerationError: if the endpoint call fails.
        """
        start = time.monotonic()
        api_messages = to_api_messages(turns)
        result = GenerationResult()

        while result.steps < self._max_steps:
            result.steps += 1
            response = self._call(api_messages)
            _add_usage(result.usage, getattr(response, "usage", None))
            message = response.choices[0].message

            text = message.content or ""
            if text and self._on_text:
                self._on_text(text)

            parts: List[Any] = [TextPart(text=text)] if text else []
            tool_calls = [
                ToolCallPart(
                    tool_call_id=tc.id,
                    tool_name=tc.function.name,
                    args=_parse_arguments(tc.function.arguments),
                )
                for tc in (message.tool_calls or [])
            ]
            parts.extend(tool_calls)

            completion_id = getattr(response, "id", None) or f"msg-{uuid.uuid4().hex}"
            assistant = StructuredTurn(role=TurnRole.ASSISTANT, content=parts, id=completion_id)
            result.turns.append(assistant)
            api_messages.extend(to_api_messages([assistant]))

            if not tool_calls:
                break

            tool_turn = self._run_tools(tool_calls)
            result.turns.append(tool_turn)
            api_messages.extend(to_api_messages([tool_turn]))
        else:
            # Loop exhausted with the model still asking for tools.
            result.reached_step_limit = True

        result.elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Exchange finished in %d step(s), %d ms, usage=%s",
                     result.steps, result.elapsed_ms, result.usage)
        return result

    __call__ = generate

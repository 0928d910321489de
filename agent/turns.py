"""Conversation turns and their durable JSON shape.

A turn is one entry of the conversation log. Its content is either a plain
string (``TextTurn``) or an ordered list of typed parts (``StructuredTurn``).
Every place that reads content dispatches over that union explicitly via
``render_text`` / ``iter_parts`` so a new content shape fails loudly instead of
being silently rendered as ``None``.

Durable format (one element of the JSON array on disk)::

    {
        "role": "assistant",
        "id": "msg-123",
        "content": [
            {"type": "text", "text": "Running it now."},
            {"type": "tool-call", "toolCallId": "call_1",
             "toolName": "executeCommand", "args": {"command": "ls"}}
        ],
        "providerOptions": {"anthropic": {"cacheControl": {"type": "ephemeral"}}}
    }

Field order is irrelevant to readers and unknown top-level keys are ignored.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from agent.errors import MalformedTurnError


class TurnRole:
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    ALL = frozenset({SYSTEM, USER, ASSISTANT, TOOL})
    # Roles whose turns are produced by the remote call and carry an id
    IDENTIFIED = frozenset({ASSISTANT, TOOL})


CACHE_PROVIDER = "anthropic"
CACHE_CONTROL_KEY = "cacheControl"
EPHEMERAL_CACHE_CONTROL = {"type": "ephemeral"}


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


@dataclass
class TextPart:
    text: str
    provider_options: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "text", "text": self.text}
        if self.provider_options:
            data["providerOptions"] = copy.deepcopy(self.provider_options)
        return data


@dataclass
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool-call",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": copy.deepcopy(self.args),
        }


@dataclass
class ToolResultPart:
    tool_call_id: str
    tool_name: str
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool-result",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": copy.deepcopy(self.result),
        }


ContentPart = Union[TextPart, ToolCallPart, ToolResultPart]


# ---------------------------------------------------------------------------
# Cache-marker helpers on provider option dicts
# ---------------------------------------------------------------------------


def options_have_marker(options: Optional[Dict[str, Any]]) -> bool:
    if not options:
        return False
    provider = options.get(CACHE_PROVIDER)
    return isinstance(provider, dict) and bool(provider.get(CACHE_CONTROL_KEY))


def options_with_marker(options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of *options* carrying a fresh ephemeral cache marker."""
    updated = copy.deepcopy(options) if options else {}
    provider = updated.get(CACHE_PROVIDER)
    if not isinstance(provider, dict):
        provider = {}
    provider[CACHE_CONTROL_KEY] = dict(EPHEMERAL_CACHE_CONTROL)
    updated[CACHE_PROVIDER] = provider
    return updated


def options_without_marker(options: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a copy of *options* with the cache marker removed.

    Containers left empty by the removal collapse to ``None`` so a stripped
    turn serializes exactly like one that never had a marker.
    """
    if not options:
        return None
    updated = copy.deepcopy(options)
    provider = updated.get(CACHE_PROVIDER)
    if isinstance(provider, dict):
        provider.pop(CACHE_CONTROL_KEY, None)
        if not provider:
            del updated[CACHE_PROVIDER]
    return updated or None


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


@dataclass
class _TurnBase:
    role: str

    @property
    def is_identified(self) -> bool:
        return self.role in TurnRole.IDENTIFIED and bool(self.id)

    @property
    def has_cache_marker(self) -> bool:
        if options_have_marker(self.provider_options):
            return True
        last = self.last_part()
        return isinstance(last, TextPart) and options_have_marker(last.provider_options)

    def set_cache_marker(self) -> None:
        self.provider_options = options_with_marker(self.provider_options)

    def clear_cache_marker(self) -> bool:
        """Strip the marker from the turn and its parts. Returns True if one was removed."""
        removed = options_have_marker(self.provider_options)
        self.provider_options = options_without_marker(self.provider_options)
        for part in iter_parts(self):
            if isinstance(part, TextPart) and options_have_marker(part.provider_options):
                part.provider_options = options_without_marker(part.provider_options)
                removed = True
        return removed

    def last_part(self) -> Optional[ContentPart]:
        parts = list(iter_parts(self))
        return parts[-1] if parts else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role}
        if isinstance(self, TextTurn):
            data["content"] = self.content
        elif isinstance(self, StructuredTurn):
            data["content"] = [part.to_dict() for part in self.content]
        else:
            raise TypeError(f"Unknown turn type: {type(self).__name__}")
        if self.id:
            data["id"] = self.id
        if self.provider_options:
            data["providerOptions"] = copy.deepcopy(self.provider_options)
        return data


@dataclass
class TextTurn(_TurnBase):
    content: str = ""
    id: Optional[str] = None
    provider_options: Optional[Dict[str, Any]] = None


@dataclass
class StructuredTurn(_TurnBase):
    content: List[ContentPart] = field(default_factory=list)
    id: Optional[str] = None
    provider_options: Optional[Dict[str, Any]] = None


Turn = Union[TextTurn, StructuredTurn]


def iter_parts(turn: Turn) -> Iterator[ContentPart]:
    """Yield the content parts of *turn*; a text turn yields nothing."""
    if isinstance(turn, TextTurn):
        return iter(())
    if isinstance(turn, StructuredTurn):
        return iter(turn.content)
    raise TypeError(f"Unknown turn type: {type(turn).__name__}")


def _bracket_part(part: ContentPart) -> str:
    if isinstance(part, ToolCallPart):
        return "[tool-call]"
    if isinstance(part, ToolResultPart):
        return "[tool-result]"
    raise TypeError(f"Unknown content part: {type(part).__name__}")


def render_text(turn: Turn, describe_part: Callable[[ContentPart], str] = _bracket_part) -> str:
    """Flatten a turn to plain text.

    Text parts contribute their text; every other part is rendered by
    *describe_part* (``[tool-call]`` / ``[tool-result]`` by default).
    """
    if isinstance(turn, TextTurn):
        return turn.content or ""
    if isinstance(turn, StructuredTurn):
        rendered = []
        for part in turn.content:
            if isinstance(part, TextPart):
                rendered.append(part.text)
            else:
                rendered.append(describe_part(part))
        return "".join(rendered)
    raise TypeError(f"Unknown turn type: {type(turn).__name__}")


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def system_turn(text: str, cached: bool = True) -> TextTurn:
    turn = TextTurn(role=TurnRole.SYSTEM, content=text)
    if cached:
        turn.set_cache_marker()
    return turn


def user_turn(text: str) -> TextTurn:
    return TextTurn(role=TurnRole.USER, content=text)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _part_from_dict(data: Any) -> ContentPart:
    if not isinstance(data, dict):
        raise MalformedTurnError(f"Content part must be an object, got {type(data).__name__}")
    kind = data.get("type")
    if kind == "text":
        return TextPart(text=str(data.get("text", "")), provider_options=data.get("providerOptions"))
    if kind == "tool-call":
        args = data.get("args", data.get("input"))
        return ToolCallPart(
            tool_call_id=str(data.get("toolCallId", "")),
            tool_name=str(data.get("toolName", "")),
            args=args if isinstance(args, dict) else {},
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_call_id=str(data.get("toolCallId", "")),
            tool_name=str(data.get("toolName", "")),
            result=data.get("result", data.get("output")),
        )
    raise MalformedTurnError(f"Unknown content part type: {kind!r}")


def turn_from_dict(data: Any) -> Turn:
    """Decode one durable log entry into a Turn.

    Raises:
        MalformedTurnError: when the entry is not an object, has an unknown
            role, or has content that is neither a string nor a part list.
    """
    if not isinstance(data, dict):
        raise MalformedTurnError(f"Turn must be an object, got {type(data).__name__}")
    role = data.get("role")
    if role not in TurnRole.ALL:
        raise MalformedTurnError(f"Unknown turn role: {role!r}")

    turn_id = data.get("id") or None
    options = data.get("providerOptions") or None
    content = data.get("content", "")

    if content is None or isinstance(content, str):
        return TextTurn(role=role, content=content or "", id=turn_id, provider_options=options)
    if isinstance(content, list):
        parts = [_part_from_dict(part) for part in content]
        return StructuredTurn(role=role, content=parts, id=turn_id, provider_options=options)
    raise MalformedTurnError(f"Unsupported content for {role} turn: {type(content).__name__}")


def turns_from_json_list(data: Any) -> List[Turn]:
    if not isinstance(data, list):
        raise MalformedTurnError("Conversation log must be a JSON array of turns")
    return [turn_from_dict(item) for item in data]

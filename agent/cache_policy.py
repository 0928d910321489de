"""Prompt-cache breakpoint policy.

The conversation carries at most two cache markers:

    - a permanent one on the leading system turn, set when the conversation
      is created and never touched by reconciliation;
    - a transient one on the most recent assistant turn, moved forward after
      every exchange.

Moving the transient marker to the newest assistant turn lets the endpoint
reuse the longest stable prefix turn-over-turn while writing at most one new
cache segment per exchange. Everything older is demoted.

This module is pure decision logic plus the two places where markers leave
the in-memory model: the offline log cleaner and the wire rendering.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from agent.turns import (
    EPHEMERAL_CACHE_CONTROL,
    StructuredTurn,
    TextPart,
    TextTurn,
    ToolCallPart,
    ToolResultPart,
    Turn,
    TurnRole,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheMutations:
    """Mutations needed to fold one batch into the store.

    ``strip_from`` indexes existing store turns, ``mark_on`` indexes the batch.
    """

    strip_from: Tuple[int, ...] = ()
    mark_on: Optional[int] = None


def compute_mutations(
    turns: Sequence[Turn],
    batch: Sequence[Turn],
    seen_ids: Iterable[str],
    enable_cache: bool,
) -> CacheMutations:
    """Decide which markers to strip and where the new one goes.

    Only assistant turns are ever demoted; the system marker is left alone.
    The new marker lands on the last batch turn only if it is an assistant
    turn that will actually be appended (identified and not seen before,
    including earlier in the same batch). A batch that ends in a tool turn
    leaves the store without a transient marker until the next assistant
    turn arrives.
    """
    if not enable_cache:
        return CacheMutations()

    strip_from = tuple(
        index for index, turn in enumerate(turns)
        if turn.role == TurnRole.ASSISTANT and turn.has_cache_marker
    )

    mark_on = None
    if batch:
        last_index = len(batch) - 1
        last = batch[last_index]
        if last.role == TurnRole.ASSISTANT and last.is_identified:
            earlier_ids = {t.id for t in batch[:last_index] if t.is_identified}
            if last.id not in set(seen_ids) and last.id not in earlier_ids:
                mark_on = last_index

    return CacheMutations(strip_from=strip_from, mark_on=mark_on)


# ---------------------------------------------------------------------------
# Offline cleanup of persisted logs
# ---------------------------------------------------------------------------


@dataclass
class CleanReport:
    cleaned: int = 0
    preserved: int = 0
    total_messages: int = 0


def clean_cache_markers(turns: List[Turn]) -> CleanReport:
    """Strip redundant markers from a loaded log, in place.

    Keeps the markers on system turns and on the final assistant turn;
    every other assistant marker is removed. Used to repair logs written
    before reconciliation enforced the single-breakpoint rule.
    """
    report = CleanReport(total_messages=len(turns))
    last_assistant = None
    for index in range(len(turns) - 1, -1, -1):
        if turns[index].role == TurnRole.ASSISTANT:
            last_assistant = index
            break

    for index, turn in enumerate(turns):
        if not turn.has_cache_marker:
            continue
        if turn.role == TurnRole.SYSTEM:
            report.preserved += 1
        elif turn.role == TurnRole.ASSISTANT and index == last_assistant:
            report.preserved += 1
        elif turn.role == TurnRole.ASSISTANT:
            turn.clear_cache_marker()
            report.cleaned += 1
            logger.debug("Removed cache marker from assistant turn at index %d", index)
    return report


# ---------------------------------------------------------------------------
# Wire rendering
# ---------------------------------------------------------------------------


def _text_block(text: str, cached: bool = False) -> Dict[str, Any]:
    block: Dict[str, Any] = {"type": "text", "text": text}
    if cached:
        block["cache_control"] = dict(EPHEMERAL_CACHE_CONTROL)
    return block


def _render_text_turn(turn: TextTurn) -> Dict[str, Any]:
    if turn.has_cache_marker and turn.content:
        return {"role": turn.role, "content": [_text_block(turn.content, cached=True)]}
    return {"role": turn.role, "content": turn.content}


def _render_structured_turn(turn: StructuredTurn) -> List[Dict[str, Any]]:
    if turn.role == TurnRole.TOOL:
        messages = []
        for part in turn.content:
            if isinstance(part, ToolResultPart):
                result = part.result if isinstance(part.result, str) else json.dumps(part.result, ensure_ascii=False)
                messages.append({"role": "tool", "tool_call_id": part.tool_call_id, "content": result})
            elif isinstance(part, (TextPart, ToolCallPart)):
                logger.debug("Ignoring %s part inside a tool turn", type(part).__name__)
            else:
                raise TypeError(f"Unknown content part: {type(part).__name__}")
        return messages

    blocks = []
    tool_calls = []
    for part in turn.content:
        if isinstance(part, TextPart):
            if part.text:
                blocks.append(_text_block(part.text))
        elif isinstance(part, ToolCallPart):
            tool_calls.append({
                "id": part.tool_call_id,
                "type": "function",
                "function": {
                    "name": part.tool_name,
                    "arguments": json.dumps(part.args, ensure_ascii=False),
                },
            })
        elif isinstance(part, ToolResultPart):
            logger.debug("Ignoring tool-result part inside a %s turn", turn.role)
        else:
            raise TypeError(f"Unknown content part: {type(part).__name__}")

    if turn.has_cache_marker:
        if blocks:
            blocks[-1]["cache_control"] = dict(EPHEMERAL_CACHE_CONTROL)
        else:
            logger.debug("Cache marker on %s turn without text; not sent", turn.role)

    message: Dict[str, Any] = {"role": turn.role, "content": blocks or ""}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return [message]


def to_api_messages(turns: Iterable[Turn]) -> List[Dict[str, Any]]:
    """Render turns as OpenAI-compatible chat messages.

    A cache marker becomes ``cache_control: {"type": "ephemeral"}`` on the
    last content block of its message; that is the only provider-specific
    attribute set here.
    """
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        if isinstance(turn, TextTurn):
            messages.append(_render_text_turn(turn))
        elif isinstance(turn, StructuredTurn):
            messages.extend(_render_structured_turn(turn))
        else:
            raise TypeError(f"Unknown turn type: {type(turn).__name__}")
    return messages

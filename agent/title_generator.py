"""Conversation title summarization.

Asks the model for a 2-6 word title describing the recent conversation.
Never raises: any failure yields ``FALLBACK_TITLE`` so the exchange loop is
never blocked by a side task.
"""

import logging
import re
from typing import Sequence

from agent.turns import Turn, TurnRole, render_text

logger = logging.getLogger(__name__)

EMPTY_TITLE = "New Chat"
FALLBACK_TITLE = "Chat Session"
MAX_TITLE_CHARS = 50
RECENT_TURNS = 10

TITLE_PROMPT = (
    "Please generate a very brief, descriptive title (2-6 words) for this conversation. "
    "Focus on the main topic or task being discussed. Do not include quotes or extra "
    "formatting, just the title:\n\n{conversation}\n\nTitle:"
)
CURRENT_TITLE_HINT = "The conversation is currently titled \"{title}\"; keep it if it still fits.\n\n"


def build_conversation_text(turns: Sequence[Turn], limit: int = RECENT_TURNS) -> str:
    """Render the last *limit* user/assistant turns as ``User: ...`` lines."""
    recent = [t for t in turns if t.role in (TurnRole.USER, TurnRole.ASSISTANT)][-limit:]
    lines = []
    for turn in recent:
        label = "User" if turn.role == TurnRole.USER else "Assistant"
        lines.append(f"{label}: {render_text(turn)}")
    return "\n".join(lines)


def clean_title(text: str) -> str:
    title = re.sub(r"['\"]", "", text or "")
    title = re.sub(r"^Title:\s*", "", title.strip())
    return title.strip()[:MAX_TITLE_CHARS]


class TitleGenerator:
    """Generates conversation titles with an OpenAI-compatible client.

    Args:
        client: ``openai.OpenAI`` instance (or anything with the same
            ``chat.completions.create`` surface).
        model: Model name to summarize with.
        max_tokens: Completion budget for the title.
    """

    def __init__(self, client, model: str, max_tokens: int = 50):
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    def generate(self, turns: Sequence[Turn], current_title: str = "") -> str:
        conversation = build_conversation_text(turns)
        if not conversation:
            return EMPTY_TITLE

        prompt = TITLE_PROMPT.format(conversation=conversation)
        if current_title:
            prompt = CURRENT_TITLE_HINT.format(title=current_title) + prompt

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._max_tokens,
            )
            text = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning("Title generation failed: %s", e)
            return FALLBACK_TITLE

        return clean_title(text) or FALLBACK_TITLE

    __call__ = generate

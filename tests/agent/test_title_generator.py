"""Tests for agent.title_generator."""

from types import SimpleNamespace
from unittest.mock import MagicMock

from agent.title_generator import (
    EMPTY_TITLE,
    FALLBACK_TITLE,
    TitleGenerator,
    build_conversation_text,
    clean_title,
)
from agent.turns import StructuredTurn, TextPart, ToolCallPart, TurnRole, system_turn, user_turn


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = _response(content)
    return client


def _assistant(text, turn_id="a1"):
    return StructuredTurn(role=TurnRole.ASSISTANT, content=[TextPart(text=text)], id=turn_id)


class TestBuildConversationText:
    def test_skips_system_and_labels_roles(self):
        turns = [system_turn("sys"), user_turn("fix the bug"), _assistant("Fixed")]
        assert build_conversation_text(turns) == "User: fix the bug\nAssistant: Fixed"

    def test_keeps_only_recent_turns(self):
        turns = [user_turn(f"q{n}") for n in range(15)]
        text = build_conversation_text(turns, limit=3)
        assert text.splitlines() == ["User: q12", "User: q13", "User: q14"]

    def test_tool_calls_rendered_as_placeholders(self):
        turn = StructuredTurn(
            role=TurnRole.ASSISTANT,
            content=[TextPart("Let me look "), ToolCallPart("c1", "executeCommand", {"command": "ls"})],
            id="a1",
        )
        assert build_conversation_text([turn]) == "Assistant: Let me look [tool-call]"


class TestCleanTitle:
    def test_strips_quotes_and_prefix(self):
        assert clean_title('Title: "Fix Login Bug"') == "Fix Login Bug"

    def test_truncates(self):
        assert len(clean_title("word " * 30)) == 50

    def test_empty(self):
        assert clean_title(None) == ""


class TestTitleGenerator:
    def test_returns_model_title(self):
        client = _client("Deploy Pipeline Setup")
        title = TitleGenerator(client, "m")([user_turn("set up deploys")])
        assert title == "Deploy Pipeline Setup"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "m"
        assert kwargs["max_tokens"] == 50
        assert "User: set up deploys" in kwargs["messages"][0]["content"]

    def test_nothing_to_summarize(self):
        client = _client("unused")
        assert TitleGenerator(client, "m").generate([system_turn("sys")]) == EMPTY_TITLE
        client.chat.completions.create.assert_not_called()

    def test_failure_returns_fallback(self):
        client = _client(error=RuntimeError("network down"))
        assert TitleGenerator(client, "m").generate([user_turn("hi")]) == FALLBACK_TITLE

    def test_blank_reply_returns_fallback(self):
        assert TitleGenerator(_client('""'), "m").generate([user_turn("hi")]) == FALLBACK_TITLE

    def test_current_title_included_in_prompt(self):
        client = _client("Fix Bug")
        TitleGenerator(client, "m").generate([user_turn("hi")], current_title="Old Title")
        prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert '"Old Title"' in prompt

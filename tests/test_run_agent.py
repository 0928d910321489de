"""Tests for run_agent: resume selection and session wiring."""

import json
import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import run_agent
from agent.conversation_identity import ConversationIdentity
from agent.session_coordinator import SessionState
from agent.session_persister import SessionPersister
from agent.turns import TextTurn, TurnRole, user_turn
from luna_cli.config import AgentSettings

GOOD = "conversation-2024-01-01T00-00-00-000Z-fix_bug.json"
BAD = "conversation-bad-id-My_Title.json"


@pytest.fixture
def settings(tmp_path):
    return AgentSettings(
        agent_name="Luna",
        model="test/model",
        base_url="http://localhost/v1",
        logs_dir=tmp_path / "conversation-logs",
        max_steps=5,
        title_interval=5,
        enable_cache=True,
        command_timeout=5,
        api_key="sk-test",
    )


def _write_log(logs_dir, name, entries, mtime):
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = logs_dir / name
    path.write_text(json.dumps(entries), encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


def _inputs(*lines):
    feed = iter(lines)

    def _input(prompt):
        try:
            return next(feed)
        except StopIteration:
            raise EOFError
    return _input


def _completion(response_id, content):
    message = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(id=response_id, choices=[SimpleNamespace(message=message)], usage=None)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectConversation:
    def test_no_logs_means_fresh(self, settings):
        output = []
        persister = SessionPersister(logs_dir=settings.logs_dir)
        assert run_agent.select_conversation(persister, _inputs(), output.append) is None
        assert "first time" in output[0]

    def test_choice_by_number(self, settings):
        _write_log(settings.logs_dir, GOOD, [{"role": "user", "content": "hi"}], 2_000_000)
        _write_log(settings.logs_dir, BAD, [{"role": "user", "content": "yo"}], 1_000_000)
        persister = SessionPersister(logs_dir=settings.logs_dir)
        assert run_agent.select_conversation(persister, _inputs("2"), lambda line: None) == BAD

    def test_invalid_choice_starts_fresh(self, settings):
        _write_log(settings.logs_dir, GOOD, [], 1_000_000)
        persister = SessionPersister(logs_dir=settings.logs_dir)
        assert run_agent.select_conversation(persister, _inputs("7"), lambda line: None) is None


class TestRecap:
    def test_recap_user_turns(self):
        lines = run_agent.recap_lines([user_turn("first"), user_turn("second")], "Luna")
        assert lines == ["You: first", "You: second"]

    def test_recap_long_assistant(self):
        long_turn = TextTurn(role=TurnRole.ASSISTANT, content="x" * 150, id="a1")
        (line,) = run_agent.recap_lines([long_turn], "Nova")
        assert line == "Nova: " + "x" * 100 + "..."


# ---------------------------------------------------------------------------
# open_conversation
# ---------------------------------------------------------------------------


class TestOpenConversation:
    def _open(self, settings, *inputs):
        identity = ConversationIdentity(settings.logs_dir)
        persister = SessionPersister(logs_dir=settings.logs_dir)
        return run_agent.open_conversation(settings, identity, persister, _inputs(*inputs), lambda line: None)

    def test_fresh_conversation_has_cached_system_turn(self, settings):
        store, record, resumed = self._open(settings)
        assert not resumed
        assert len(store) == 1
        assert store.turns[0].role == TurnRole.SYSTEM
        assert store.turns[0].has_cache_marker
        assert "I'm Luna" in store.turns[0].content
        assert record.file_path.parent == settings.logs_dir

    def test_resume_valid_log(self, settings):
        _write_log(settings.logs_dir, GOOD, [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "fix it"},
            {"role": "assistant", "id": "a1", "content": "done"},
        ], 1_000_000)
        store, record, resumed = self._open(settings, "1")
        assert resumed
        assert record.title == "Fix Bug"
        assert record.file_path == settings.logs_dir / GOOD
        assert store.seen_ids == frozenset({"a1"})

    def test_resume_repairs_malformed_id(self, settings):
        _write_log(settings.logs_dir, BAD, [{"role": "user", "content": "hi"}], 1_000_000)
        store, record, resumed = self._open(settings, "1")
        assert resumed
        assert record.title == "My Title"
        assert record.file_path.name == f"conversation-{record.id}-my_title.json"
        assert record.file_path.exists()
        assert not (settings.logs_dir / BAD).exists()


# ---------------------------------------------------------------------------
# End-to-end with a fake client
# ---------------------------------------------------------------------------


class TestBuildSession:
    def test_one_exchange_persists_log(self, settings):
        client = MagicMock()
        client.chat.completions.create.side_effect = [_completion("gen-1", "Hello there")]
        output = []
        coordinator = run_agent.build_session(
            settings, client=client, input_fn=_inputs("hi", "exit"), output_fn=output.append,
        )
        assert coordinator.run() is SessionState.CLOSED

        (log,) = list(settings.logs_dir.glob("conversation-*.json"))
        data = json.loads(log.read_text(encoding="utf-8"))
        assert [m["role"] for m in data] == ["system", "user", "assistant"]
        assert data[2]["id"] == "gen-1"
        assert "providerOptions" in data[0] and "providerOptions" in data[2]
        assert "Hello there" in output

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["tools"][0]["function"]["name"] == "executeCommand"


class TestMain:
    def test_missing_key_stops_early(self, capsys):
        settings = MagicMock(agent_name="Luna", api_key=None)
        with patch("run_agent.load_env"), \
                patch("run_agent.resolve_settings", return_value=settings), \
                patch("run_agent.build_session") as build:
            run_agent.main()
        build.assert_not_called()
        assert "No inference provider configured" in capsys.readouterr().out

    def test_no_cache_flag_passed_as_override(self):
        with patch("run_agent.load_env"), \
                patch("run_agent.resolve_settings") as resolve, \
                patch("run_agent.validate_api_key", return_value=(False, "missing")):
            run_agent.main(no_cache=True, max_steps=3)
        overrides = resolve.call_args.args[0]
        assert overrides["enable_cache"] is False
        assert overrides["max_steps"] == 3

"""Tests for agent.message_store: reconciliation of exchange batches.

Covers:
    - append() deduplication by id
    - reconcile() marker movement (single transient breakpoint)
    - system marker permanence across many exchanges
    - duplicate and unidentified batch turns
    - seeding the seen-id set from a resumed log
"""

import pytest

from agent.message_store import MessageStore
from agent.turns import (
    StructuredTurn,
    TextPart,
    ToolResultPart,
    TurnRole,
    system_turn,
    user_turn,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _assistant(turn_id, text="ok"):
    return StructuredTurn(role=TurnRole.ASSISTANT, content=[TextPart(text=text)], id=turn_id)


def _tool(turn_id, result="done"):
    return StructuredTurn(
        role=TurnRole.TOOL,
        content=[ToolResultPart(tool_call_id=turn_id, tool_name="executeCommand", result=result)],
        id=turn_id,
    )


def _non_system_markers(store):
    return [i for i in store.marker_indices() if store.turns[i].role != TurnRole.SYSTEM]


@pytest.fixture
def store():
    return MessageStore([system_turn("You are Luna.")])


# ---------------------------------------------------------------------------
# append
# ---------------------------------------------------------------------------


class TestAppend:
    def test_user_turns_always_appended(self, store):
        assert store.append(user_turn("hi"))
        assert store.append(user_turn("hi"))
        assert len(store) == 3

    def test_duplicate_id_is_noop(self, store):
        assert store.append(_assistant("1"))
        assert not store.append(_assistant("1"))
        assert len(store) == 2

    def test_append_records_seen_id(self, store):
        store.append(_tool("t1"))
        assert "t1" in store.seen_ids


# ---------------------------------------------------------------------------
# reconcile: scenarios
# ---------------------------------------------------------------------------


class TestReconcileScenarios:
    def test_first_assistant_gets_marker(self, store):
        store.reconcile([_assistant("1")], enable_cache=True)
        turns = store.turns
        assert [t.role for t in turns] == ["system", "assistant"]
        assert turns[0].has_cache_marker
        assert turns[1].has_cache_marker
        assert turns[1].id == "1"

    def test_marker_moves_to_newest_assistant(self, store):
        store.reconcile([_assistant("1")], enable_cache=True)
        store.reconcile([_assistant("2")], enable_cache=True)
        turns = store.turns
        assert [t.id for t in turns] == [None, "1", "2"]
        assert turns[0].has_cache_marker
        assert not turns[1].has_cache_marker
        assert turns[2].has_cache_marker

    def test_stripped_turn_has_no_empty_containers(self, store):
        store.reconcile([_assistant("1")], enable_cache=True)
        store.reconcile([_assistant("2")], enable_cache=True)
        stripped = store.turns[1]
        assert stripped.provider_options is None
        assert "providerOptions" not in stripped.to_dict()

    def test_repeated_id_not_appended(self, store):
        store.reconcile([_assistant("1")], enable_cache=True)
        store.reconcile([_assistant("2")], enable_cache=True)
        result = store.reconcile([_assistant("2")], enable_cache=True)
        assert len(store) == 3
        assert result.duplicates == 1
        assert result.appended == []

    def test_repeated_id_leaves_no_transient_marker(self, store):
        """The stale marker is stripped before the batch is examined."""
        store.reconcile([_assistant("1")], enable_cache=True)
        store.reconcile([_assistant("1")], enable_cache=True)
        assert _non_system_markers(store) == []
        assert store.turns[0].has_cache_marker


# ---------------------------------------------------------------------------
# reconcile: properties
# ---------------------------------------------------------------------------


class TestReconcileProperties:
    def test_at_most_one_non_system_marker(self, store):
        batches = [
            [_assistant("a1"), _tool("t1"), _assistant("a2")],
            [_assistant("a3")],
            [_assistant("a4"), _tool("t2")],
            [_assistant("a2"), _assistant("a5")],
            [_tool("t3")],
            [_assistant("a6")],
        ]
        for batch in batches:
            store.append(user_turn("next"))
            store.reconcile(batch, enable_cache=True)
            assert len(_non_system_markers(store)) <= 1

    def test_marker_only_on_latest_assistant(self, store):
        store.reconcile([_assistant("a1"), _tool("t1"), _assistant("a2")], enable_cache=True)
        markers = _non_system_markers(store)
        assert markers == [3]
        assert store.turns[3].id == "a2"

    def test_length_grows_by_new_ids_only(self, store):
        store.reconcile([_assistant("a1"), _tool("t1")], enable_cache=True)
        before = len(store)
        store.reconcile([_assistant("a1"), _tool("t1"), _tool("t2"), _assistant("a2")], enable_cache=True)
        assert len(store) == before + 2

    def test_duplicate_within_batch_appended_once(self, store):
        result = store.reconcile([_assistant("a1"), _assistant("a1")], enable_cache=True)
        assert len(result.appended) == 1
        assert result.duplicates == 1
        assert len(store) == 2

    def test_system_marker_survives_many_exchanges(self, store):
        for n in range(10):
            store.reconcile([_assistant(f"a{n}")], enable_cache=True)
        assert store.turns[0].has_cache_marker

    def test_batch_ending_in_tool_places_no_marker(self, store):
        store.reconcile([_assistant("a1")], enable_cache=True)
        store.reconcile([_assistant("a2"), _tool("t1")], enable_cache=True)
        assert _non_system_markers(store) == []

    def test_existing_turn_content_untouched(self, store):
        store.reconcile([_assistant("a1", text="first answer")], enable_cache=True)
        snapshot = [t.to_dict()["content"] for t in store.turns]
        store.reconcile([_assistant("a2")], enable_cache=True)
        assert [t.to_dict()["content"] for t in store.turns[:2]] == snapshot


# ---------------------------------------------------------------------------
# reconcile: cache disabled and unidentified turns
# ---------------------------------------------------------------------------


class TestReconcileEdgeCases:
    def test_cache_disabled_neither_strips_nor_marks(self, store):
        store.reconcile([_assistant("a1")], enable_cache=True)
        result = store.reconcile([_assistant("a2")], enable_cache=False)
        assert store.turns[1].has_cache_marker
        assert not store.turns[2].has_cache_marker
        assert result.stripped == ()
        assert result.marked is None

    def test_unidentified_turns_are_dropped(self, store):
        """Pins current behaviour: turns without an id never reach the log."""
        result = store.reconcile(
            [_assistant(None, text="lost"), _assistant("a1")], enable_cache=True
        )
        assert result.dropped_unidentified == 1
        assert [t.id for t in store.turns] == [None, "a1"]

    def test_user_turn_in_batch_dropped(self, store):
        result = store.reconcile([user_turn("echo"), _assistant("a1")], enable_cache=True)
        assert result.dropped_unidentified == 1
        assert len(store) == 2

    def test_result_reports_marked_index(self, store):
        store.append(user_turn("hi"))
        result = store.reconcile([_assistant("a1")], enable_cache=True)
        assert result.marked == 2


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------


class TestResumeSeeding:
    def test_seen_ids_seeded_from_existing_turns(self):
        existing = [system_turn("sys"), user_turn("hi"), _assistant("a1"), _tool("t1")]
        store = MessageStore(existing)
        assert store.seen_ids == frozenset({"a1", "t1"})
        store.reconcile([_assistant("a1"), _tool("t1")], enable_cache=True)
        assert len(store) == 4

    def test_json_round_trip_keeps_markers(self, store):
        store.reconcile([_assistant("a1")], enable_cache=True)
        restored = MessageStore.from_json_list(store.to_json_list())
        assert restored.marker_indices() == [0, 1]
        assert restored.seen_ids == frozenset({"a1"})

"""Interactive session loop as an explicit state machine.

    IDLE -> AWAITING_INPUT -> IN_FLIGHT -> RECONCILING -> PERSISTED -> IDLE ...

AWAITING_INPUT handles the local commands (``exit``, ``save``, ``history``)
and turns anything else into a user turn. PERSISTED either returns to IDLE or,
when the exchange hit the step ceiling, asks whether to keep going: yes goes
straight back to IN_FLIGHT with a synthetic ``continue`` turn, no closes the
session. CLOSED is terminal.

Every RECONCILING -> PERSISTED transition rewrites the whole log. A final
best-effort write also runs when the loop ends for any reason, so a failed
remote call never loses what was already reconciled.
"""

import enum
import logging
from typing import Callable, Optional, Sequence

from agent.conversation_identity import ConversationIdentity
from agent.errors import GenerationError, InvalidTransitionError
from agent.message_store import MessageStore
from agent.model_client import GenerationResult
from agent.session_persister import SessionPersister
from agent.turns import Turn, TurnRole, user_turn

logger = logging.getLogger(__name__)

CONTINUE_INPUT = "continue"
YES_ANSWERS = ("y", "yes")


class SessionState(enum.Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    IN_FLIGHT = "in_flight"
    RECONCILING = "reconciling"
    PERSISTED = "persisted"
    CLOSED = "closed"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.AWAITING_INPUT, SessionState.CLOSED},
    SessionState.AWAITING_INPUT: {SessionState.AWAITING_INPUT, SessionState.IN_FLIGHT, SessionState.CLOSED},
    SessionState.IN_FLIGHT: {SessionState.RECONCILING, SessionState.CLOSED},
    SessionState.RECONCILING: {SessionState.PERSISTED},
    SessionState.PERSISTED: {SessionState.IDLE, SessionState.IN_FLIGHT, SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class SessionCoordinator:
    """Drives one conversation from first prompt to close.

    Args:
        store: Conversation log, already seeded (system turn or resumed turns).
        identity: Renames the log file when the title changes.
        persister: Writes the log; its ``record`` is the live identity.
        generate: ``turns -> GenerationResult`` (usually a ModelClient).
        input_fn: Prompt function for terminal input.
        output_fn: Sink for user-facing text.
        title_fn: ``(turns, current_title) -> title``; titles are skipped if None.
        agent_name: Display name in prompts.
        enable_cache: Whether reconciliation maintains the cache breakpoint.
        title_interval: Retitle every N user queries.
        resumed: Whether this session continues an existing log.
        show_details: Print usage/timing after each exchange.
    """

    def __init__(
        self,
        *,
        store: MessageStore,
        identity: ConversationIdentity,
        persister: SessionPersister,
        generate: Callable[[Sequence[Turn]], GenerationResult],
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
        title_fn: Callable[[Sequence[Turn], str], str] = None,
        agent_name: str = "Luna",
        enable_cache: bool = True,
        title_interval: int = 5,
        resumed: bool = False,
        show_details: bool = False,
    ):
        self._store = store
        self._identity = identity
        self._persister = persister
        self._generate = generate
        self._input_fn = input_fn
        self._output_fn = output_fn
        self._title_fn = title_fn
        self._agent_name = agent_name
        self._enable_cache = enable_cache
        self._title_interval = max(1, title_interval)
        self._resumed = resumed
        self._show_details = show_details

        self._state = SessionState.IDLE
        self._user_query_count = 0
        self._exchange_count = 0
        self._pending_title: Optional[str] = None
        self._last_result: Optional[GenerationResult] = None
        self._last_error: Optional[GenerationError] = None

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def user_query_count(self) -> int:
        return self._user_query_count

    @property
    def exchange_count(self) -> int:
        return self._exchange_count

    @property
    def last_error(self) -> Optional[GenerationError]:
        return self._last_error

    # -- State machine --------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {new_state.value}")
        logger.debug("Session state %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def run(self) -> SessionState:
        """Run until CLOSED. Returns the final state."""
        handlers = {
            SessionState.IDLE: lambda: self._transition(SessionState.AWAITING_INPUT),
            SessionState.AWAITING_INPUT: self._await_input,
            SessionState.IN_FLIGHT: self._exchange,
            SessionState.PERSISTED: self._after_persist,
        }
        try:
            while self._state is not SessionState.CLOSED:
                handlers[self._state]()
        finally:
            self._final_save()
        return self._state

    # -- State handlers -------------------------------------------------------

    def _await_input(self) -> None:
        try:
            text = self._input_fn("You: ")
        except (EOFError, KeyboardInterrupt):
            self._transition(SessionState.CLOSED)
            return

        command = text.strip().lower()
        if command == "exit":
            self._output_fn(
                f"{self._agent_name}: Take care! I really enjoyed helping you today. "
                "Feel free to come back anytime! ✨"
            )
            self._transition(SessionState.CLOSED)
        elif command == "save":
            path = self.save()
            if path:
                self._output_fn(f"💾 Conversation saved to {path}")
            self._transition(SessionState.AWAITING_INPUT)
        elif command == "history":
            record = self._persister.record
            self._output_fn(f"📊 Current conversation: {len(self._store)} messages")
            self._output_fn(f"🆔 Conversation ID: {record.id if record else '-'}")
            self._output_fn(f"🔄 Resumed: {'Yes' if self._resumed else 'No'}")
            self._transition(SessionState.AWAITING_INPUT)
        elif not command:
            self._transition(SessionState.AWAITING_INPUT)
        else:
            self._submit_user_input(text, counted=True)
            self._transition(SessionState.IN_FLIGHT)

    def _exchange(self) -> None:
        self._output_fn(f"\n{self._agent_name}: ")
        try:
            result = self._generate(self._store.turns)
        except GenerationError as e:
            self._last_error = e
            logger.error("Remote call failed: %s", e)
            self._output_fn(f"Error talking to the model: {e}")
            if e.hint:
                self._output_fn(e.hint)
            self._transition(SessionState.CLOSED)
            return

        self._transition(SessionState.RECONCILING)
        self._last_result = result
        self._exchange_count += 1
        self._store.reconcile(result.turns, self._enable_cache)
        self._apply_pending_title()
        self.save()
        self._transition(SessionState.PERSISTED)

    def _after_persist(self) -> None:
        result = self._last_result
        if result is not None and result.reached_step_limit:
            answer = self._ask(
                f"\n⚠️  Reached maximum steps ({result.steps}). Continue? (y/n): "
            )
            if answer in YES_ANSWERS:
                self._output_fn("\n🔄 Continuing...")
                self._submit_user_input(CONTINUE_INPUT, counted=False)
                self._transition(SessionState.IN_FLIGHT)
            else:
                self._output_fn("\n⏹️  Stopped by user.")
                self._transition(SessionState.CLOSED)
            return

        if result is not None:
            logger.info("Exchange %d: %d ms, usage=%s", self._exchange_count, result.elapsed_ms, result.usage)
            if self._show_details:
                self._output_fn("\n📊 Response Details:")
                self._output_fn(f"- Token usage: {result.usage}")
                self._output_fn(f"- Response time: {result.elapsed_ms} ms\n")
        self._transition(SessionState.IDLE)

    # -- Helpers --------------------------------------------------------------

    def _ask(self, prompt: str) -> str:
        try:
            return self._input_fn(prompt).strip().lower()
        except (EOFError, KeyboardInterrupt):
            return ""

    def _submit_user_input(self, text: str, counted: bool) -> None:
        self._store.append(user_turn(text))
        if not counted:
            return
        self._user_query_count += 1
        if self._title_fn and self._user_query_count % self._title_interval == 0:
            current = self._persister.record.title if self._persister.record else ""
            self._output_fn("\n📝 Let me give our conversation a nice title...")
            self._pending_title = self._title_fn(self._store.turns, current)
            self._output_fn(f"🎯 I think we're talking about: \"{self._pending_title}\"")

    def _apply_pending_title(self) -> None:
        title, self._pending_title = self._pending_title, None
        record = self._persister.record
        if title is None or record is None or title == record.title:
            return
        self._persister.record = self._identity.rename(record, title)

    def save(self):
        """Write the full log now. Returns the written path or None."""
        return self._persister.persist(self._store.turns)

    def _final_save(self) -> None:
        has_user_turns = any(t.role == TurnRole.USER for t in self._store)
        if not has_user_turns and self._persister.save_count == 0 and not self._resumed:
            logger.debug("Nothing said in this session; not writing an empty log")
            return
        path = self.save()
        if path:
            self._output_fn(f"💾 Final conversation saved to {path}")

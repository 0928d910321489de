"""Session persistence -- conversation logs as JSON arrays of turns.

Owns the ConversationRecord of the running session, so the file that gets
written always matches the record's id and title (a rename swaps the record
atomically through the ``record`` setter).

Every save rewrites the whole log: persistence is not incremental, and the
last full write wins.

Dependencies:
    agent.turns -- Turn codec
    agent.conversation_identity -- ConversationRecord, parse_file_name
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from agent.conversation_identity import FILE_PREFIX, FILE_SUFFIX, ConversationRecord, parse_file_name
from agent.errors import MalformedConversationError
from agent.turns import Turn, TurnRole, render_text, turns_from_json_list

logger = logging.getLogger(__name__)

RESUME_CANDIDATE_LIMIT = 10


@dataclass
class ConversationSummary:
    """One resume candidate as shown in the selection table."""

    index: int
    file_name: str
    last_modified: datetime
    display_title: str
    message_count: int


def read_log_file(path: Path) -> List[Turn]:
    """Read and decode one conversation log.

    Raises:
        MalformedConversationError: if the file is unreadable, not JSON, or
            not an array of turns.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedConversationError(f"Cannot read {Path(path).name}: {e}") from e
    try:
        return turns_from_json_list(raw)
    except MalformedConversationError as e:
        raise MalformedConversationError(f"{Path(path).name}: {e}") from e


def write_log_file(path: Path, turns: Sequence[Turn]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([turn.to_dict() for turn in turns], f, indent=2, ensure_ascii=False, default=str)


def iter_log_files(logs_dir: Path) -> List[Path]:
    """All ``conversation-*.json`` files in *logs_dir* (unsorted)."""
    logs_dir = Path(logs_dir)
    if not logs_dir.is_dir():
        return []
    return [
        p for p in logs_dir.iterdir()
        if p.is_file() and p.name.startswith(FILE_PREFIX) and p.name.endswith(FILE_SUFFIX)
    ]


class SessionPersister:
    """Writes and reads conversation logs in one logs directory.

    Args:
        logs_dir: Directory holding the ``conversation-*.json`` files.
        record: Identity of the conversation being written, if any yet.
    """

    def __init__(self, *, logs_dir: Path, record: ConversationRecord = None):
        self._logs_dir = Path(logs_dir)
        self._record = record
        self._save_count = 0

    # -- Properties -----------------------------------------------------------

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir

    @property
    def record(self) -> Optional[ConversationRecord]:
        return self._record

    @record.setter
    def record(self, value: ConversationRecord):
        """Swap the record; subsequent writes go to its file_path."""
        self._record = value

    @property
    def session_log_file(self) -> Optional[Path]:
        return self._record.file_path if self._record else None

    @property
    def save_count(self) -> int:
        return self._save_count

    # -- Bulk persistence -----------------------------------------------------

    def ensure_logs_dir(self) -> Path:
        self._logs_dir.mkdir(parents=True, exist_ok=True)
        return self._logs_dir

    def persist(self, turns: Sequence[Turn]) -> Optional[Path]:
        """Rewrite the session log with the full list of turns.

        Returns the written path, or None if the write failed. A failed write
        is logged and leaves the previous file content in place.
        """
        if self._record is None:
            logger.warning("No conversation record; nothing persisted")
            return None
        path = self._record.file_path
        try:
            write_log_file(path, turns)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save conversation log %s: %s", path, e)
            return None
        self._save_count += 1
        logger.debug("Saved %d turns to %s", len(turns), path)
        return path

    # -- Loading --------------------------------------------------------------

    def load_conversation(self, file_name: str) -> List[Turn]:
        """Load the turns of *file_name* from the logs directory.

        Raises:
            MalformedConversationError: if the file is not a valid turn array.
        """
        return read_log_file(self._logs_dir / Path(file_name).name)

    def list_conversations(self, limit: int = RESUME_CANDIDATE_LIMIT) -> List[ConversationSummary]:
        """Most recently modified conversations, newest first.

        Files that cannot be parsed are skipped (and logged) so one broken
        log never hides the others.
        """
        files = sorted(iter_log_files(self._logs_dir), key=lambda p: p.stat().st_mtime, reverse=True)
        summaries = []
        for path in files[:limit]:
            try:
                turns = read_log_file(path)
            except MalformedConversationError as e:
                logger.warning("Skipping unreadable conversation: %s", e)
                continue
            summaries.append(ConversationSummary(
                index=len(summaries) + 1,
                file_name=path.name,
                last_modified=datetime.fromtimestamp(path.stat().st_mtime),
                display_title=_display_title(path.name, turns),
                message_count=sum(1 for t in turns if t.role in (TurnRole.USER, TurnRole.ASSISTANT)),
            ))
        return summaries


def last_user_message(turns: Sequence[Turn]) -> Optional[str]:
    for turn in reversed(turns):
        if turn.role == TurnRole.USER:
            return render_text(turn)
    return None


def _display_title(file_name: str, turns: Sequence[Turn]) -> str:
    try:
        _, title = parse_file_name(file_name)
    except MalformedConversationError:
        title = ""
    if title:
        return title
    message = last_user_message(turns)
    return message[:60] if message else "No messages"

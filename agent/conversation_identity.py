"""Conversation identity: id, title and log file path.

The file path is always derived from the id and the slugged title::

    conversation-<id>.json
    conversation-<id>-<slug>.json

ids are filesystem-safe ISO-8601 timestamps (``2024-01-01T00-00-00-000Z``).
Files whose name carries a malformed id are repaired on resume by moving them
to a fresh id. Neither repair nor title renames ever overwrite an existing
file; when the target is taken the old path stays authoritative.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from agent.errors import IdentityRepairError, MalformedConversationError

logger = logging.getLogger(__name__)

FILE_PREFIX = "conversation-"
FILE_SUFFIX = ".json"

_ID_PATTERN = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z"
_ID_RE = re.compile(rf"^{_ID_PATTERN}$")
_FILE_RE = re.compile(rf"^{FILE_PREFIX}({_ID_PATTERN})(?:-(.+))?{re.escape(FILE_SUFFIX)}$")


@dataclass
class ConversationRecord:
    id: str
    title: str
    file_path: Path
    last_modified: Optional[datetime] = None

    @property
    def file_name(self) -> str:
        return self.file_path.name


def new_timestamp(now: datetime = None) -> str:
    """Return *now* (default: current UTC time) as a conversation id."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def is_valid_id(value: str) -> bool:
    return bool(value) and bool(_ID_RE.match(value))


def slugify(title: str) -> str:
    """Filesystem-safe form of a title: ``"Fix Bug!"`` -> ``"fix_bug"``."""
    if not title:
        return ""
    cleaned = re.sub(r"[^a-zA-Z0-9\s\-_]", "", title.strip())
    return re.sub(r"\s+", "_", cleaned).lower()


def deslugify(slug: str) -> str:
    """Best-effort display title from a slug: ``"fix_bug"`` -> ``"Fix Bug"``.

    Lossy: the original casing and punctuation are not recoverable.
    """
    if not slug:
        return ""
    spaced = slug.replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def parse_file_name(file_name: str) -> Tuple[str, str]:
    """Split a log file name into ``(id, title)``.

    The id returned for a non-conforming name is whatever the name holds and
    may fail ``is_valid_id``; callers decide how to repair it.

    Raises:
        MalformedConversationError: if the name is not ``conversation-*.json``.
    """
    match = _FILE_RE.match(file_name)
    if match:
        return match.group(1), deslugify(match.group(2) or "")

    if not (file_name.startswith(FILE_PREFIX) and file_name.endswith(FILE_SUFFIX)):
        raise MalformedConversationError(f"Not a conversation log file name: {file_name}")

    stem = file_name[len(FILE_PREFIX):-len(FILE_SUFFIX)]
    head, sep, tail = stem.rpartition("-")
    # slugs are lowercase; a tail like "00Z" belongs to a truncated timestamp
    if sep and head and re.search(r"[a-z_]", tail):
        return head, deslugify(tail)
    return stem, ""


class ConversationIdentity:
    """Creates, resolves and renames conversation records in one logs directory."""

    def __init__(self, logs_dir: Path):
        self._logs_dir = Path(logs_dir)

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir

    def path_for(self, conversation_id: str, title: str = "") -> Path:
        slug = slugify(title)
        if slug:
            return self._logs_dir / f"{FILE_PREFIX}{conversation_id}-{slug}{FILE_SUFFIX}"
        return self._logs_dir / f"{FILE_PREFIX}{conversation_id}{FILE_SUFFIX}"

    def create(self, fallback_timestamp: str = None) -> ConversationRecord:
        """Start a new, untitled conversation record."""
        conversation_id = fallback_timestamp or new_timestamp()
        if not is_valid_id(conversation_id):
            logger.warning("Invalid conversation id %r; generating a fresh one", conversation_id)
            conversation_id = new_timestamp()
        return ConversationRecord(id=conversation_id, title="", file_path=self.path_for(conversation_id))

    def resolve(self, selected_file_name: str, fallback_timestamp: str = None) -> ConversationRecord:
        """Build the record for an existing log file chosen for resume.

        A valid name is returned as-is with no filesystem change. A name with
        a malformed id gets *fallback_timestamp* as its id and the file is
        moved to the corrected path, unless that path is already taken, in
        which case the file stays where it is.
        """
        file_name = Path(selected_file_name).name
        parsed_id, title = parse_file_name(file_name)
        current = self._logs_dir / file_name

        if is_valid_id(parsed_id):
            return ConversationRecord(
                id=parsed_id,
                title=title,
                file_path=current,
                last_modified=_mtime(current),
            )

        repaired_id = fallback_timestamp if is_valid_id(fallback_timestamp or "") else new_timestamp()
        logger.info("Repairing malformed conversation id %r -> %s", parsed_id, repaired_id)
        record = ConversationRecord(id=repaired_id, title=title, file_path=current,
                                    last_modified=_mtime(current))
        target = self.path_for(repaired_id, title)
        if not current.exists():
            return replace(record, file_path=target)
        try:
            self._move(current, target)
        except IdentityRepairError as e:
            logger.warning("Keeping %s: %s", current.name, e)
            return record
        return replace(record, file_path=target, last_modified=_mtime(target))

    def rename(self, record: ConversationRecord, new_title: str) -> ConversationRecord:
        """Give *record* a new title and move its file to match.

        Idempotent: renaming to the title the record already has is a no-op.
        When the computed path is taken by another file, nothing changes and
        *record* is returned as-is, so its path still matches its title.
        """
        new_path = self.path_for(record.id, new_title)
        if new_path == record.file_path:
            return replace(record, title=new_title)

        if new_path.exists():
            logger.warning("Not renaming %s: %s already exists", record.file_name, new_path.name)
            return record

        if not record.file_path.exists():
            # Nothing persisted yet; the next write lands on the new path.
            return replace(record, title=new_title, file_path=new_path)

        try:
            self._move(record.file_path, new_path)
        except IdentityRepairError as e:
            logger.warning("Keeping %s: %s", record.file_name, e)
            return record
        logger.debug("Renamed %s -> %s", record.file_name, new_path.name)
        return replace(record, title=new_title, file_path=new_path, last_modified=_mtime(new_path))

    @staticmethod
    def _move(source: Path, target: Path) -> None:
        if target.exists():
            raise IdentityRepairError(f"{target.name} already exists")
        try:
            source.rename(target)
        except OSError as e:
            raise IdentityRepairError(f"cannot move to {target.name}: {e}") from e


def _mtime(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        return None

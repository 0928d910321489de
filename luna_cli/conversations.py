"""
luna_cli/conversations.py: manage conversation logs from the shell.

    luna-logs list
    luna-logs show 1
    luna-logs show conversation-2025-09-16T09-31-36-920Z.json
    luna-logs clean all
    luna-logs clean 1
    luna-logs delete 1

<id> is either the 1-based position in the name-sorted (newest first)
listing or a file name, with or without ``.json``. A broken log is reported
and skipped; it never aborts an operation over several files.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import fire

from agent.cache_policy import CleanReport, clean_cache_markers
from agent.conversation_identity import FILE_PREFIX, FILE_SUFFIX
from agent.errors import MalformedConversationError
from agent.session_persister import iter_log_files, last_user_message, read_log_file, write_log_file
from agent.turns import ContentPart, ToolCallPart, ToolResultPart, Turn, TurnRole, iter_parts, render_text
from luna_cli.config import load_config
from tools import EXECUTE_COMMAND_TOOL

logger = logging.getLogger(__name__)

_W = 60


@dataclass
class ConversationStats:
    total: int = 0
    by_role: Dict[str, int] = field(default_factory=lambda: {role: 0 for role in sorted(TurnRole.ALL)})
    commands: int = 0


def conversation_stats(turns: Sequence[Turn]) -> ConversationStats:
    stats = ConversationStats(total=len(turns))
    for turn in turns:
        stats.by_role[turn.role] = stats.by_role.get(turn.role, 0) + 1
        if turn.role == TurnRole.TOOL:
            first = next(iter(iter_parts(turn)), None)
            if isinstance(first, ToolResultPart) and first.tool_name == EXECUTE_COMMAND_TOOL:
                stats.commands += 1
    return stats


def _describe_command(part: ContentPart) -> str:
    if isinstance(part, ToolCallPart):
        return f"[Command: {part.args.get('command', 'unknown')}]"
    if isinstance(part, ToolResultPart):
        return "[tool-result]"
    raise TypeError(f"Unknown content part: {type(part).__name__}")


def sorted_log_names(logs_dir: Path) -> List[str]:
    """Log file names, newest id first."""
    return sorted((p.name for p in iter_log_files(logs_dir)), reverse=True)


def find_log(logs_dir: Path, identifier) -> Optional[Path]:
    """Resolve a numeric position or a file name to an existing log path."""
    names = sorted_log_names(logs_dir)
    identifier = str(identifier)
    if identifier.isdigit():
        index = int(identifier) - 1
        target = names[index] if 0 <= index < len(names) else None
    else:
        target = identifier if identifier.endswith(FILE_SUFFIX) else f"{identifier}{FILE_SUFFIX}"
    if not target or target not in names:
        return None
    return Path(logs_dir) / target


def clean_log_file(path: Path) -> CleanReport:
    """Strip redundant cache markers from one log, rewriting it only if needed.

    Raises:
        MalformedConversationError: if the file is not a valid turn array.
    """
    turns = read_log_file(path)
    report = clean_cache_markers(turns)
    if report.cleaned:
        write_log_file(path, turns)
    return report


class ConversationLogs:
    """Conversation log utility.

    Args:
        logs_dir: Logs directory; defaults to the configured ``logs_dir``.
    """

    def __init__(self, logs_dir: str = None):
        self._logs_dir = Path(logs_dir or load_config()["logs_dir"]).expanduser()

    def _require_dir(self) -> bool:
        if not self._logs_dir.is_dir():
            print(f"❌ No {self._logs_dir} directory found")
            return False
        return True

    def list(self):
        """List all conversations with a one-line summary."""
        if not self._require_dir():
            return
        names = sorted_log_names(self._logs_dir)
        if not names:
            print("📭 No conversation logs found")
            return

        print(f"📚 Found {len(names)} conversation logs:")
        print("═" * 120)
        print(f"{'ID':<3}│ {'Timestamp':<26}│ {'Messages':<8}│ {'Commands':<8}│ Last User Message")
        print("═" * 120)
        for index, name in enumerate(names, 1):
            stamp = name[len(FILE_PREFIX):-len(FILE_SUFFIX)][:24]
            try:
                turns = read_log_file(self._logs_dir / name)
            except MalformedConversationError as e:
                logger.warning("%s", e)
                print(f"{index:<3}│ {'ERROR':<26}│ {'N/A':<8}│ {'N/A':<8}│ Failed to parse {name}")
                continue
            stats = conversation_stats(turns)
            last = (last_user_message(turns) or "No messages")[:60]
            print(f"{index:<3}│ {stamp:<26}│ {stats.total:<8}│ {stats.commands:<8}│ {last}")
        print("═" * 120)

    def show(self, identifier):
        """Show statistics and the most recent messages of one conversation."""
        if not self._require_dir():
            return
        path = find_log(self._logs_dir, identifier)
        if path is None:
            print(f"❌ Conversation not found: {identifier}")
            return
        try:
            turns = read_log_file(path)
        except MalformedConversationError as e:
            print(f"❌ Error reading conversation: {e}")
            return

        stats = conversation_stats(turns)
        print(f"\n📄 Conversation Details: {path.name}")
        print("─" * _W)
        print("📊 Statistics:")
        print(f"   Total messages: {stats.total}")
        for role in (TurnRole.USER, TurnRole.ASSISTANT, TurnRole.SYSTEM, TurnRole.TOOL):
            print(f"   {role.capitalize()} messages: {stats.by_role.get(role, 0)}")
        print(f"   Commands executed: {stats.commands}")
        print("   Cache markers: " + (", ".join(str(i) for i, t in enumerate(turns) if t.has_cache_marker) or "none"))

        print("\n💬 Recent Messages:")
        print("─" * _W)
        for turn in turns[-8:]:
            if turn.role == TurnRole.USER:
                print(f"\n👤 User: {render_text(turn)}")
            elif turn.role == TurnRole.ASSISTANT:
                text = render_text(turn, describe_part=_describe_command)
                print(f"🤖 Assistant: {text[:200]}{'...' if len(text) > 200 else ''}")

    def clean(self, target="all"):
        """Remove redundant cache markers from ``all`` logs or a single one."""
        if not self._require_dir():
            return
        if str(target) == "all":
            return self._clean_all()

        path = find_log(self._logs_dir, target)
        if path is None:
            print(f"❌ Conversation not found: {target}")
            return
        try:
            report = clean_log_file(path)
        except (MalformedConversationError, OSError) as e:
            print(f"❌ Error processing {path.name}: {e}")
            return
        print(f"\n🎉 Cleanup completed for {path.name}!")
        print(f"🧹 Cache blocks removed: {report.cleaned}")
        print(f"✨ Cache blocks preserved: {report.preserved}")

    def _clean_all(self):
        names = sorted_log_names(self._logs_dir)
        if not names:
            print("📭 No conversation files found")
            return

        print(f"🚀 Starting cache control cleanup for {len(names)} conversation files...\n")
        processed = errors = cleaned = preserved = 0
        for name in names:
            try:
                report = clean_log_file(self._logs_dir / name)
            except (MalformedConversationError, OSError) as e:
                errors += 1
                print(f"❌ Skipping {name}: {e}")
                continue
            processed += 1
            cleaned += report.cleaned
            preserved += report.preserved
            if report.cleaned:
                print(f"  💾 {name}: {report.cleaned} blocks removed, {report.preserved} preserved")
            else:
                print(f"  ✨ {name}: already clean ({report.preserved} preserved)")

        print("\n" + "═" * _W)
        print("📊 CLEANUP SUMMARY")
        print("═" * _W)
        print(f"📁 Total files found: {len(names)}")
        print(f"✅ Files processed: {processed}")
        print(f"❌ Files with errors: {errors}")
        print(f"🧹 Total cache blocks removed: {cleaned}")
        print(f"✨ Total cache blocks preserved: {preserved}")
        return {"processed": processed, "errors": errors, "cleaned": cleaned, "preserved": preserved}

    def delete(self, identifier):
        """Delete one conversation log."""
        if not self._require_dir():
            return
        path = find_log(self._logs_dir, identifier)
        if path is None:
            print(f"❌ Conversation not found: {identifier}")
            return
        try:
            path.unlink()
        except OSError as e:
            print(f"❌ Error deleting conversation: {e}")
            return
        print(f"✅ Deleted conversation: {path.name}")


def main():
    fire.Fire(ConversationLogs)


if __name__ == "__main__":
    main()

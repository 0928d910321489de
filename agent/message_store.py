"""Ordered, append-only conversation log with id deduplication.

MessageStore owns the seen-id set and is the single writer of transient cache
markers. Reconciliation never reorders, deletes or edits existing turns; the
only mutation it makes to an existing turn is stripping a stale assistant
cache marker.

Not thread-safe: one session drives one store, one exchange at a time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from agent.cache_policy import compute_mutations
from agent.turns import Turn, TurnRole, turns_from_json_list

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """What one ``reconcile`` call did to the store."""

    appended: List[Turn] = field(default_factory=list)
    duplicates: int = 0
    dropped_unidentified: int = 0
    stripped: Tuple[int, ...] = ()
    marked: Optional[int] = None


class MessageStore:
    """In-memory mirror of one conversation log.

    Args:
        turns: Existing turns, e.g. loaded from disk on resume. Their
            assistant/tool ids seed the seen-id set so a replayed batch is
            not appended twice.
    """

    def __init__(self, turns: Sequence[Turn] = None):
        self._turns: List[Turn] = []
        self._seen_ids = set()
        for turn in turns or ():
            self._turns.append(turn)
            if turn.is_identified:
                self._seen_ids.add(turn.id)

    # -- Read access ----------------------------------------------------------

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def seen_ids(self) -> FrozenSet[str]:
        return frozenset(self._seen_ids)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def marker_indices(self) -> List[int]:
        return [i for i, turn in enumerate(self._turns) if turn.has_cache_marker]

    # -- Mutation -------------------------------------------------------------

    def append(self, turn: Turn) -> bool:
        """Append *turn* to the tail.

        Returns False without appending when the turn carries an id that is
        already known. Turns without an id (system/user) are always appended;
        callers must not submit the same user input twice.
        """
        if turn.is_identified:
            if turn.id in self._seen_ids:
                logger.debug("Skipping duplicate %s turn %s", turn.role, turn.id)
                return False
            self._seen_ids.add(turn.id)
        self._turns.append(turn)
        return True

    def reconcile(self, batch: Sequence[Turn], enable_cache: bool = True) -> ReconcileResult:
        """Fold the final turns of one exchange into the log.

        With caching enabled, markers on earlier assistant turns are stripped
        and the last turn of the batch (if it is a new assistant turn) gets a
        fresh marker, leaving exactly one transient breakpoint. Assistant and
        tool turns whose id was already seen are skipped. Batch turns without
        an id are dropped: they cannot be deduplicated on a retry or resume
        and are treated as already represented.
        """
        mutations = compute_mutations(self._turns, batch, self._seen_ids, enable_cache)
        result = ReconcileResult(stripped=mutations.strip_from)

        for index in mutations.strip_from:
            self._turns[index].clear_cache_marker()

        for index, turn in enumerate(batch):
            if turn.role not in TurnRole.IDENTIFIED or not turn.id:
                result.dropped_unidentified += 1
                logger.debug("Dropping unidentified %s turn from batch", turn.role)
                continue
            if turn.id in self._seen_ids:
                result.duplicates += 1
                continue
            if index == mutations.mark_on:
                turn.set_cache_marker()
                result.marked = len(self._turns)
            self._seen_ids.add(turn.id)
            self._turns.append(turn)
            result.appended.append(turn)

        if result.appended or result.stripped:
            logger.debug(
                "Reconciled batch: %d appended, %d duplicate(s), %d dropped, stripped=%s, marked=%s",
                len(result.appended), result.duplicates, result.dropped_unidentified,
                list(result.stripped), result.marked,
            )
        return result

    # -- Serialization --------------------------------------------------------

    def to_json_list(self) -> List[Dict[str, Any]]:
        return [turn.to_dict() for turn in self._turns]

    @classmethod
    def from_json_list(cls, data: Any) -> "MessageStore":
        """Build a store from a decoded log file.

        Raises:
            MalformedTurnError: if *data* is not a valid turn array.
        """
        return cls(turns_from_json_list(data))

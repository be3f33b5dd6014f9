"""Append-only transcript for a single query."""

import logging
from typing import (
    List,
    Set,
)

from mcpchat.core.schema import (
    Role,
    Turn,
)

logger = logging.getLogger(__name__)


class ConversationState:
    """
    Ordered sequence of turns owned by one ``Orchestrator.run`` call.

    Turns can only be appended.  A tool turn is accepted only if an earlier assistant turn
    requested that ``tool_call_id``.
    """

    def __init__(self) -> None:
        self._turns: List[Turn] = []
        self._requested_ids: Set[str] = set()

    def append(self, turn: Turn) -> None:
        """Append *turn*, enforcing that tool results answer a prior request."""
        if turn.role is Role.TOOL and turn.tool_call_id not in self._requested_ids:
            raise ValueError(f"tool turn references unknown tool_call_id {turn.tool_call_id!r}")

        if turn.role is Role.ASSISTANT:
            self._requested_ids.update(call.id for call in turn.tool_calls)

        self._turns.append(turn)
        logger.debug("Transcript += %s turn (%d total)", turn.role.value, len(self._turns))

    def snapshot(self) -> List[Turn]:
        """Return a copy of the turns, suitable for handing to a provider."""
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

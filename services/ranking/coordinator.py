"""
Sort Coordinator
Discards results of sorts that a newer request has superseded
"""

from typing import Iterable, Optional, Union

import structlog

from shared.schemas.ticket import SortMode, Ticket

from .sorter import SortOutcome, TicketSorter

logger = structlog.get_logger()


class SortCoordinator:
    """
    Serializes visible results of overlapping sort requests.

    Each request takes a new token; when it completes, its result is only
    applied if no later request has started in the meantime. A smart sort
    that fell back switches the coordinator's mode to updated so the
    caller can show the downgrade.
    """

    def __init__(self, sorter: TicketSorter, mode: SortMode = SortMode.DEFAULT):
        self.sorter = sorter
        self.mode = mode
        self.latest: Optional[SortOutcome] = None
        self._token = 0

    @property
    def token(self) -> int:
        return self._token

    async def request(
        self,
        tickets: Iterable[Ticket],
        mode: Union[SortMode, str, None] = None,
        user_email: Optional[str] = None,
    ) -> Optional[SortOutcome]:
        """
        Run a sort; returns None if a newer request superseded it.
        """
        if mode is not None:
            self.mode = SortMode(mode)
        self._token += 1
        token = self._token

        outcome = await self.sorter.sort_with_outcome(tickets, self.mode, user_email)

        if token != self._token:
            logger.debug("Discarding superseded sort", token=token, latest=self._token)
            return None

        if outcome.fell_back:
            self.mode = outcome.applied_mode
        self.latest = outcome
        return outcome

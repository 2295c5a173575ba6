import asyncio

from shared.schemas.ticket import SortMode
from services.ranking.coordinator import SortCoordinator
from services.ranking.sorter import SortOutcome


class GatedSorter:
    """Sorter whose calls finish only when the test releases them"""

    def __init__(self):
        self.gates: list[asyncio.Event] = []
        self.fall_back = False

    async def sort_with_outcome(self, tickets, mode, user_email=None):
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        if self.fall_back:
            return SortOutcome(list(tickets), mode, SortMode.UPDATED, fell_back=True, message="down")
        return SortOutcome(list(tickets), mode, mode)


def test_superseded_request_is_discarded(ticket):
    async def scenario():
        sorter = GatedSorter()
        coordinator = SortCoordinator(sorter)

        first = asyncio.ensure_future(coordinator.request([ticket("A-1")], SortMode.CREATED))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(coordinator.request([ticket("A-2")], SortMode.STATUS))
        await asyncio.sleep(0)

        # The older request finishes last but was superseded
        sorter.gates[1].set()
        newer = await second
        sorter.gates[0].set()
        older = await first
        return coordinator, older, newer

    coordinator, older, newer = asyncio.run(scenario())

    assert older is None
    assert newer.applied_mode == SortMode.STATUS
    assert coordinator.latest is newer
    assert coordinator.mode == SortMode.STATUS


def test_fallback_switches_mode_to_updated(ticket):
    async def scenario():
        sorter = GatedSorter()
        sorter.fall_back = True
        coordinator = SortCoordinator(sorter)
        task = asyncio.ensure_future(coordinator.request([ticket("A-1")]))
        await asyncio.sleep(0)
        sorter.gates[0].set()
        return coordinator, await task

    coordinator, outcome = asyncio.run(scenario())

    assert outcome.fell_back
    assert coordinator.mode == SortMode.UPDATED

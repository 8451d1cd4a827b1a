from datetime import datetime, timedelta

import pytest

from app.core.exceptions import BadRequestError, InvalidTransitionError, NotAuthenticatedError, NotFoundError
from app.services.package_queue import MAX_ESTIMATED_MINUTES, QueueService, remaining_seconds
from app.stores.memory import MemoryQueueStore

pytestmark = pytest.mark.asyncio

T0 = datetime(2026, 1, 5, 9, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def queue(clock) -> QueueService:
    return QueueService(MemoryQueueStore(), clock=clock)


async def test_enqueue_defaults(queue):
    entry = await queue.enqueue("owner-1", "report-1", "Plan Your Business Legacy with Confidence", ["Doc A"])
    assert entry.status == "queued"
    assert entry.requested_at == T0
    assert entry.estimated_completion_time == T0 + timedelta(seconds=600)
    assert entry.documents == ["Doc A"]
    assert queue.remaining_seconds(entry) == 600


async def test_countdown_floors_and_clamps(queue, clock):
    entry = await queue.enqueue("owner-1", "report-1", "Pkg")
    assert remaining_seconds(entry, T0 + timedelta(seconds=90.5)) == 509
    clock.now = T0 + timedelta(seconds=601)
    assert queue.remaining_seconds(entry) == 0
    # countdown reaching zero does not finish the job
    assert (await queue.get_entry(entry.id)).status == "queued"


async def test_enqueue_validation(queue):
    with pytest.raises(NotAuthenticatedError):
        await queue.enqueue(None, "report-1", "Pkg")
    with pytest.raises(BadRequestError):
        await queue.enqueue("owner-1", "", "Pkg")
    with pytest.raises(BadRequestError):
        await queue.enqueue("owner-1", "report-1", "Pkg", estimated_minutes=-1)
    with pytest.raises(BadRequestError):
        await queue.enqueue("owner-1", "report-1", "Pkg", estimated_minutes=MAX_ESTIMATED_MINUTES + 1)
    longest = await queue.enqueue("owner-1", "report-1", "Pkg", estimated_minutes=MAX_ESTIMATED_MINUTES)
    assert longest.status == "queued"


async def test_forward_only_transitions(queue, clock):
    entry = await queue.enqueue("owner-1", "report-1", "Pkg")
    with pytest.raises(InvalidTransitionError):
        await queue.transition_status(entry.id, "completed")

    clock.now = T0 + timedelta(minutes=2)
    processing = await queue.transition_status(entry.id, "processing")
    assert processing.status == "processing"
    assert processing.updated_at == clock.now

    clock.now = T0 + timedelta(minutes=9)
    done = await queue.transition_status(entry.id, "completed")
    assert done.completed_at == clock.now

    with pytest.raises(InvalidTransitionError) as exc:
        await queue.transition_status(entry.id, "processing")
    assert exc.value.details == {"entry_id": entry.id, "current": "completed", "requested": "processing"}


async def test_failed_is_terminal(queue):
    entry = await queue.enqueue("owner-1", "report-1", "Pkg")
    await queue.transition_status(entry.id, "failed")
    with pytest.raises(InvalidTransitionError):
        await queue.transition_status(entry.id, "processing")


async def test_unknown_status_and_entry(queue):
    entry = await queue.enqueue("owner-1", "report-1", "Pkg")
    with pytest.raises(BadRequestError):
        await queue.transition_status(entry.id, "paused")
    with pytest.raises(NotFoundError):
        await queue.transition_status("missing", "processing")
    with pytest.raises(NotFoundError):
        await queue.get_entry(entry.id, owner_id="someone-else")


async def test_active_listing_newest_first(queue, clock):
    first = await queue.enqueue("owner-1", "report-1", "Pkg A")
    clock.now = T0 + timedelta(seconds=30)
    second = await queue.enqueue("owner-1", "report-2", "Pkg B")
    await queue.enqueue("owner-2", "report-1", "Pkg C")
    clock.now = T0 + timedelta(seconds=60)
    third = await queue.enqueue("owner-1", "report-1", "Pkg D")
    await queue.transition_status(third.id, "failed")

    active = await queue.list_active_for_owner("owner-1")
    assert [e.id for e in active] == [second.id, first.id]
    for_report = await queue.list_active_for_report("owner-1", "report-1")
    assert [e.id for e in for_report] == [first.id]


async def test_purge_completed_is_idempotent(queue):
    a = await queue.enqueue("owner-1", "report-1", "Pkg A")
    b = await queue.enqueue("owner-1", "report-1", "Pkg B")
    for status in ("processing", "completed"):
        await queue.transition_status(a.id, status)
    assert await queue.purge_completed("report-1") == 1
    assert await queue.purge_completed("report-1") == 0
    with pytest.raises(NotFoundError):
        await queue.get_entry(a.id)
    assert (await queue.get_entry(b.id)).status == "queued"

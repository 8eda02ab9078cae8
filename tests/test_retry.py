import pytest

from meetscribe.models import PermanentFailure, Success, TransientFailure
from meetscribe.retry import RetryCoordinator


def make_coordinator(client, sleep, **kwargs):
    delivered = []
    coordinator = RetryCoordinator(
        client,
        lambda chunk, outcome: delivered.append((chunk.sequence, outcome.text)),
        sleep=sleep,
        **kwargs,
    )
    return coordinator, delivered


@pytest.mark.asyncio
async def test_enqueue_starts_with_zero_attempts(make_chunk, scripted_client, fake_sleep):
    coordinator, _ = make_coordinator(scripted_client(), fake_sleep)

    item = coordinator.enqueue(make_chunk(3))

    assert item.attempts == 0
    assert len(coordinator) == 1
    assert coordinator.pending[0].chunk.sequence == 3


@pytest.mark.asyncio
async def test_two_failures_then_success_waits_two_and_four_seconds(make_chunk, scripted_client, fake_sleep):
    fail = TransientFailure("502 Bad Gateway")
    client = scripted_client(script={1: [fail, fail, Success("attendance was discussed")]})
    coordinator, delivered = make_coordinator(client, fake_sleep)
    coordinator.enqueue(make_chunk(1))

    report = await coordinator.drain()

    assert fake_sleep.delays == [2.0, 4.0]
    assert delivered == [(1, "attendance was discussed")]
    assert report.succeeded == 1
    assert report.attempts == 3
    assert len(coordinator) == 0


@pytest.mark.asyncio
async def test_exhausted_item_is_repended(make_chunk, scripted_client, fake_sleep):
    client = scripted_client(default=TransientFailure("timed out"))
    coordinator, delivered = make_coordinator(client, fake_sleep)
    coordinator.enqueue(make_chunk(1))

    report = await coordinator.drain()

    assert client.calls == [1, 1, 1]
    assert fake_sleep.delays == [2.0, 4.0]
    assert delivered == []
    assert report.repended == 1
    assert report.exhausted[0].sequence == 1
    assert "timed out" in str(report.exhausted[0])
    assert [item.chunk.sequence for item in coordinator.pending] == [1]
    assert coordinator.pending[0].attempts == 3


@pytest.mark.asyncio
async def test_delays_never_decrease(make_chunk, scripted_client, fake_sleep):
    client = scripted_client(default=TransientFailure("unavailable"))
    coordinator, _ = make_coordinator(client, fake_sleep, max_retries=5)
    coordinator.enqueue(make_chunk(1))

    await coordinator.drain()

    assert fake_sleep.delays == [2.0, 4.0, 8.0, 16.0]
    assert fake_sleep.delays == sorted(fake_sleep.delays)


@pytest.mark.asyncio
async def test_items_are_processed_sequentially_in_order(make_chunk, scripted_client, fake_sleep):
    client = scripted_client(default=Success("recovered text here"))
    coordinator, delivered = make_coordinator(client, fake_sleep)
    for sequence in (4, 2, 7):
        coordinator.enqueue(make_chunk(sequence))

    await coordinator.drain()

    assert client.calls == [4, 2, 7]
    assert client.max_active == 1
    assert [sequence for sequence, _ in delivered] == [4, 2, 7]


@pytest.mark.asyncio
async def test_permanent_failure_during_drain_is_dropped(make_chunk, scripted_client, fake_sleep):
    client = scripted_client(script={1: [TransientFailure("busy"), PermanentFailure("Invalid audio data")]})
    coordinator, delivered = make_coordinator(client, fake_sleep)
    coordinator.enqueue(make_chunk(1))

    report = await coordinator.drain()

    assert report.dropped == 1
    assert delivered == []
    assert len(coordinator) == 0
    assert fake_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_abandon_clears_pending(make_chunk, scripted_client, fake_sleep):
    coordinator, _ = make_coordinator(scripted_client(), fake_sleep)
    coordinator.enqueue(make_chunk(1))
    coordinator.enqueue(make_chunk(2))

    abandoned = coordinator.abandon()

    assert [item.chunk.sequence for item in abandoned] == [1, 2]
    assert coordinator.pending == []


@pytest.mark.asyncio
async def test_zero_retries_repends_without_calling_client(make_chunk, scripted_client, fake_sleep):
    client = scripted_client()
    coordinator, _ = make_coordinator(client, fake_sleep, max_retries=0)
    coordinator.enqueue(make_chunk(1))

    report = await coordinator.drain()

    assert client.calls == []
    assert report.repended == 1


@pytest.mark.asyncio
async def test_eligible_only_drain_waits_for_backoff(make_chunk, scripted_client, fake_sleep):
    now = [100.0]
    client = scripted_client(script={1: [TransientFailure("busy")] * 3 + [Success("finally through")]})
    coordinator, delivered = make_coordinator(client, fake_sleep, clock=lambda: now[0])
    coordinator.enqueue(make_chunk(1))

    await coordinator.drain()
    assert coordinator.pending[0].next_eligible_at == 108.0

    report = await coordinator.drain(only_eligible=True)
    assert report.attempts == 0
    assert len(client.calls) == 3

    now[0] = 108.0
    report = await coordinator.drain(only_eligible=True)
    assert report.succeeded == 1
    assert delivered == [(1, "finally through")]

import pytest

from dailydraw.models import NotificationType


def _errors(broadcaster):
    return [n for n in broadcaster.history() if n.type is NotificationType.ERROR]


@pytest.mark.asyncio
async def test_load_returns_entries(loader, backend, sleeper):
    entries = await loader.load()

    assert [entry.id for entry in entries] == ["1", "2", "3"]
    assert entries[1].owner_ref == "bob"
    assert backend.fetch_calls == 1
    assert sleeper.calls == []
    assert not loader.failed


@pytest.mark.asyncio
async def test_exhausted_retries_produce_one_error(loader, backend, broadcaster, sleeper):
    backend.fetch_failures = 5

    entries = await loader.load()

    assert entries == []
    assert backend.fetch_calls == 3
    assert sleeper.calls == [2.0, 4.0]
    assert loader.failed
    assert loader.error == "Unable to load photos. Please check your connection and try again."
    errors = _errors(broadcaster)
    assert len(errors) == 1
    assert errors[0].urgent is True
    assert errors[0].message.startswith("Failed to load photos:")


@pytest.mark.asyncio
async def test_failed_loader_waits_for_manual_retry(loader, backend, broadcaster):
    backend.fetch_failures = 3
    await loader.load()

    assert await loader.load() == []
    assert backend.fetch_calls == 3
    assert len(_errors(broadcaster)) == 1


@pytest.mark.asyncio
async def test_recovers_on_second_attempt(loader, backend, broadcaster, sleeper):
    backend.fetch_failures = 1

    entries = await loader.load()

    assert len(entries) == 3
    assert backend.fetch_calls == 2
    assert sleeper.calls == [2.0]
    assert loader.attempts == 0
    assert _errors(broadcaster) == []


@pytest.mark.asyncio
async def test_retry_resets_the_error(loader, backend):
    backend.fetch_failures = 3
    await loader.load()
    assert loader.failed

    entries = await loader.retry()

    assert len(entries) == 3
    assert not loader.failed
    assert loader.entries == entries

import asyncio
import json

import pytest

from medverse_common.cache import CallbackReloader, InMemoryQueryCache, JsonFileStorage


@pytest.mark.asyncio
async def test_invalidate_stale_skips_protected_and_fresh_entries(clock):
    cache = InMemoryQueryCache(stale_after_ms=60000, clock=clock)
    cache.set(("prescriptions", "p-1"), ["amoxicillin"])
    cache.set(("auth", "session"), {"user": "u-1"})
    cache.set(("user-profile", "u-1"), {"name": "A"})
    clock.advance(61)
    cache.set(("lab-reports", "p-1"), [])

    await cache.invalidate_stale()

    assert not cache.is_fresh(("prescriptions", "p-1"))
    assert cache.is_fresh(("auth", "session"))
    assert cache.is_fresh(("user-profile", "u-1"))
    assert cache.is_fresh(("lab-reports", "p-1"))
    assert cache.get(("prescriptions", "p-1")) == ["amoxicillin"]


@pytest.mark.asyncio
async def test_fetch_refetches_invalidated_entries(clock):
    cache = InMemoryQueryCache(clock=clock)
    calls = []

    async def loader():
        calls.append(1)
        return len(calls)

    assert await cache.fetch(("patients",), loader) == 1
    assert await cache.fetch(("patients",), loader) == 1

    clock.advance(120)
    await cache.invalidate_stale()

    assert await cache.fetch(("patients",), loader) == 2


@pytest.mark.asyncio
async def test_clear_all_empties_cache(clock):
    cache = InMemoryQueryCache(clock=clock)
    cache.set(("auth", "session"), "token")

    await cache.clear_all()

    assert len(cache) == 0


def test_json_file_storage_persists_across_instances(tmp_path):
    path = tmp_path / "storage" / "local.json"
    storage = JsonFileStorage(path)
    storage.set("theme", "dark")
    storage.set("sb-access-token", "token")
    storage.remove("sb-access-token")

    reopened = JsonFileStorage(path)

    assert reopened.keys() == ["theme"]
    assert json.loads(path.read_text()) == {"theme": "dark"}

    reopened.clear()
    assert JsonFileStorage(path).keys() == []


def test_json_file_storage_discards_corrupt_file(tmp_path):
    path = tmp_path / "local.json"
    path.write_text("{not json")

    storage = JsonFileStorage(path)

    assert storage.keys() == []
    storage.set("theme", "light")
    assert JsonFileStorage(path).get("theme") == "light"


def test_callback_reloader_runs_immediately_without_loop():
    calls = []
    reloader = CallbackReloader(lambda: calls.append("reload"))

    reloader.schedule_reload()

    assert calls == ["reload"]
    assert reloader.scheduled == 1


@pytest.mark.asyncio
async def test_callback_reloader_defers_inside_loop():
    calls = []
    reloader = CallbackReloader(lambda: calls.append("reload"), delay=0.01)

    reloader.schedule_reload()
    assert calls == []

    await asyncio.sleep(0.05)
    assert calls == ["reload"]

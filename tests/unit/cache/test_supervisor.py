import asyncio

import pytest

from medverse_common.cache import (
    CacheClearError,
    CacheManager,
    InMemoryQueryCache,
    LoadingState,
    get_testing_config,
)
from tests.fixtures.cache_fakes import BrokenQueryCache, BrokenStorage


class TimeoutCounter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


def test_times_out_exactly_once_on_the_fifteenth_tick(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", timeout_ms=15000, tick_ms=1000, on_timeout=on_timeout)
    supervisor.set_loading(True)

    for _ in range(14):
        supervisor.tick()
    assert supervisor.state is LoadingState.LOADING
    assert on_timeout.calls == 0

    supervisor.tick()
    assert supervisor.elapsed_ms == 15000
    assert supervisor.timed_out
    assert supervisor.show_cache_options
    assert on_timeout.calls == 1

    for _ in range(20):
        supervisor.tick()
    assert on_timeout.calls == 1


def test_finishing_before_timeout_never_times_out(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", on_timeout=on_timeout)
    supervisor.set_loading(True)
    for _ in range(14):
        supervisor.tick()

    supervisor.set_loading(False)
    for _ in range(5):
        supervisor.tick()

    assert supervisor.state is LoadingState.IDLE
    assert supervisor.elapsed_ms == 0
    assert on_timeout.calls == 0
    assert manager.registry.count() == 0


def test_completing_the_operation_clears_the_timed_out_overlay(manager):
    supervisor = manager.supervisor("loading-operation", operation_id="x")
    supervisor.set_loading(True)
    assert supervisor.operation_id == "x"

    for _ in range(15):
        supervisor.tick()
    assert supervisor.timed_out

    manager.registry.complete_operation("x")

    assert not supervisor.timed_out
    assert supervisor.state is LoadingState.IDLE
    assert manager.registry.count() == 0


def test_completion_wins_over_timeout_in_the_same_tick(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", timeout_ms=3000, on_timeout=on_timeout)
    supervisor.set_loading(True)
    supervisor.tick()
    supervisor.tick()

    manager.stop_loading(supervisor.operation_id)
    state = supervisor.tick()

    assert state is LoadingState.IDLE
    assert on_timeout.calls == 0


def test_new_episode_can_time_out_again(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", timeout_ms=2000, on_timeout=on_timeout)

    for _ in range(2):
        supervisor.set_loading(True)
        supervisor.tick()
        supervisor.tick()
        supervisor.set_loading(False)

    assert on_timeout.calls == 2


def test_failing_on_timeout_callback_does_not_break_ticking(manager):
    def explode():
        raise RuntimeError("callback bug")

    supervisor = manager.supervisor("patients", timeout_ms=1000, on_timeout=explode)
    supervisor.set_loading(True)

    assert supervisor.tick() is LoadingState.TIMED_OUT


def test_close_completes_live_operation(manager):
    supervisor = manager.supervisor("patients")
    supervisor.set_loading(True)
    assert manager.registry.count() == 1

    supervisor.close()

    assert manager.registry.count() == 0
    assert supervisor.closed
    with pytest.raises(RuntimeError):
        supervisor.set_loading(True)


def test_completion_records_hit_for_category(manager, clock):
    supervisor = manager.supervisor("patients")
    supervisor.set_loading(True)
    clock.advance(2)
    supervisor.set_loading(False)

    stats = manager.get_cache_stats().cache_stats["patients"]
    assert (stats.hits, stats.misses) == (1, 0)


def test_rejects_non_positive_intervals(manager):
    with pytest.raises(ValueError):
        manager.supervisor("patients", tick_ms=0)


@pytest.mark.asyncio
async def test_clearing_dismisses_overlay_but_keeps_loading(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", timeout_ms=2000, on_timeout=on_timeout, auto_tick=False)
    supervisor.set_loading(True)
    supervisor.tick()
    supervisor.tick()
    assert supervisor.timed_out

    await supervisor.clear_cache("light")

    assert supervisor.state is LoadingState.LOADING
    assert manager.registry.count() == 1
    supervisor.tick()
    assert not supervisor.timed_out
    assert on_timeout.calls == 1


@pytest.mark.asyncio
async def test_confirmed_full_clear_ends_the_episode(manager, reloader):
    supervisor = manager.supervisor("patients", timeout_ms=1000, auto_tick=False)
    supervisor.set_loading(True)
    supervisor.tick()

    await supervisor.clear_cache("full", confirmed=True)

    assert supervisor.state is LoadingState.IDLE
    assert manager.registry.count() == 0
    assert reloader.scheduled == 1


@pytest.mark.asyncio
async def test_failed_clear_keeps_overlay(clock):
    manager = CacheManager(
        get_testing_config(),
        query_cache=BrokenQueryCache(),
        session_storage=BrokenStorage(),
        clock=clock,
    )
    supervisor = manager.supervisor("patients", timeout_ms=1000, auto_tick=False)
    supervisor.set_loading(True)
    supervisor.tick()

    with pytest.raises(CacheClearError):
        await supervisor.clear_cache("medium")

    assert supervisor.timed_out


@pytest.mark.asyncio
async def test_timer_task_drives_timeout_and_stops_on_completion(manager):
    on_timeout = TimeoutCounter()
    supervisor = manager.supervisor("patients", timeout_ms=30, tick_ms=10, on_timeout=on_timeout)

    supervisor.set_loading(True)
    await asyncio.sleep(0.15)
    assert supervisor.timed_out
    assert on_timeout.calls == 1

    supervisor.set_loading(False)
    await asyncio.sleep(0.05)
    assert supervisor.state is LoadingState.IDLE
    assert supervisor.elapsed_ms == 0


@pytest.mark.asyncio
async def test_track_wraps_work_as_an_operation(manager):
    async with manager.supervisor("lab-reports") as supervisor:
        async with supervisor.track():
            assert supervisor.is_loading
            assert manager.registry.count() == 1
        assert not supervisor.is_loading

    assert manager.registry.count() == 0


@pytest.mark.asyncio
async def test_context_exit_completes_unfinished_operation(manager):
    async with manager.supervisor("lab-reports") as supervisor:
        supervisor.set_loading(True)

    assert manager.registry.count() == 0


@pytest.mark.asyncio
async def test_async_on_timeout_callback_is_awaited(manager):
    fired = asyncio.Event()

    async def on_timeout():
        fired.set()

    supervisor = manager.supervisor("patients", timeout_ms=1000, on_timeout=on_timeout, auto_tick=False)
    supervisor.set_loading(True)
    supervisor.tick()

    await asyncio.wait_for(fired.wait(), timeout=1)


@pytest.mark.asyncio
async def test_auto_clear_escalates_to_medium_but_never_full(clock, session_storage):
    config = get_testing_config()
    config.auto_clear_on_timeout = True
    config.medium_escalation_ms = 25000
    query_cache = InMemoryQueryCache(clock=clock)
    manager = CacheManager(config, query_cache=query_cache, session_storage=session_storage, clock=clock)
    supervisor = manager.supervisor("patients", timeout_ms=15000, auto_tick=False)
    supervisor.set_loading(True)

    for _ in range(15):
        supervisor.tick()
    await asyncio.sleep(0.01)
    actions = [entry.action for entry in manager.action_log.recent()]
    assert "clearCache:light" in actions
    assert "clearCache:medium" not in actions

    for _ in range(10):
        supervisor.tick()
    await asyncio.sleep(0.01)
    actions = [entry.action for entry in manager.action_log.recent()]
    assert "clearCache:medium" in actions
    assert not any(action.startswith("clearCache:full") for action in actions)
    assert supervisor.is_loading

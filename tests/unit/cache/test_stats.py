import pytest

from medverse_common.cache import ActionLog, CacheManagerConfig, OperationRegistry, StatisticsAggregator


@pytest.fixture
def aggregator(clock):
    log = ActionLog(cap=20, clock=clock)
    registry = OperationRegistry(log, clock=clock)
    return StatisticsAggregator(registry, log, CacheManagerConfig(last_log_size=3), clock=clock)


def test_snapshot_reflects_registry_and_log(aggregator):
    aggregator.registry.start_operation("a", "patients")
    aggregator.registry.start_operation("b", "patients")
    aggregator.registry.complete_operation("a")

    stats = aggregator.get_cache_stats()

    assert stats.active_operations == 1
    assert [entry.action for entry in stats.last_log] == ["complete:a", "start:b", "start:a"]


def test_last_log_is_a_most_recent_slice(aggregator):
    for i in range(6):
        aggregator.registry.start_operation(f"op-{i}", "work")

    stats = aggregator.get_cache_stats()

    assert [entry.action for entry in stats.last_log] == ["start:op-5", "start:op-4", "start:op-3"]


def test_hits_and_misses_accumulate_per_category(aggregator):
    aggregator.record_hit("patients")
    aggregator.record_hit("patients")
    aggregator.record_miss("patients")
    aggregator.record_miss("lab-reports")

    stats = aggregator.get_cache_stats().cache_stats

    assert (stats["patients"].hits, stats["patients"].misses) == (2, 1)
    assert (stats["lab-reports"].hits, stats["lab-reports"].misses) == (0, 1)
    assert stats["patients"].hit_rate == pytest.approx(2 / 3)


def test_duration_above_max_load_time_is_a_miss(aggregator):
    aggregator.record_duration("patients", 1200)
    aggregator.record_duration("patients", 15000)
    aggregator.record_duration("patients", 15001)

    stats = aggregator.get_cache_stats().cache_stats["patients"]

    assert (stats.hits, stats.misses) == (2, 1)


def test_reset_clears_counters(aggregator):
    aggregator.record_hit("patients")
    aggregator.reset()
    assert aggregator.get_cache_stats().cache_stats == {}


def test_snapshot_is_detached_from_live_counters(aggregator):
    aggregator.record_hit("patients")
    snapshot = aggregator.get_cache_stats()
    aggregator.record_hit("patients")

    assert snapshot.cache_stats["patients"].hits == 1


def test_mark_cleared_stamps_categories(aggregator, clock):
    aggregator.record_hit("patients")
    clock.advance(10)
    aggregator.mark_cleared()

    assert aggregator.get_cache_stats().cache_stats["patients"].last_clear == clock()


def test_to_dict_is_serializable(aggregator):
    aggregator.registry.start_operation("a", "patients")
    aggregator.record_miss("patients")

    data = aggregator.get_cache_stats().to_dict()

    assert data["active_operations"] == 1
    assert data["cache_stats"]["patients"]["misses"] == 1
    assert data["last_log"][0]["action"] == "start:a"
    assert data["config"]["action_log_cap"] == 20

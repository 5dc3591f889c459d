import random

import pytest

from medverse_common.cache import ActionLog, OperationRegistry


@pytest.fixture
def registry(clock):
    return OperationRegistry(ActionLog(cap=20, clock=clock), clock=clock)


def test_start_and_complete_track_count(registry):
    registry.start_operation("a", "patients")
    registry.start_operation("b", "prescriptions")
    assert registry.count() == 2

    removed = registry.complete_operation("a")
    assert removed is not None
    assert removed.name == "patients"
    assert registry.count() == 1
    assert registry.contains("b")


def test_duplicate_start_restarts_instead_of_duplicating(registry, clock):
    registry.start_operation("a", "patients")
    clock.advance(3)
    registry.start_operation("a", "patients")

    assert registry.count() == 1
    assert registry.get("a").started_at == clock()


def test_completing_unknown_id_is_a_noop(registry):
    registry.start_operation("a", "patients")
    log_size = len(registry.action_log)

    assert registry.complete_operation("missing") is None
    assert registry.complete_operation("missing") is None
    assert registry.count() == 1
    assert registry.contains("a")
    assert len(registry.action_log) == log_size + 2


def test_every_start_and_complete_call_is_logged(registry):
    registry.start_operation("a", "patients")
    registry.complete_operation("a")
    registry.complete_operation("a")

    actions = [entry.action for entry in registry.action_log.recent()]
    assert actions == ["complete:a:unknown", "complete:a", "start:a"]


def test_double_completion_counts_once(registry):
    registry.start_operation("a", "patients")
    registry.complete_operation("a")
    registry.complete_operation("a")
    assert registry.count() == 0


def test_count_matches_live_starts_for_random_sequences(clock):
    rng = random.Random(7)
    registry = OperationRegistry(ActionLog(cap=20, clock=clock), clock=clock)
    live: set[str] = set()
    ids = [f"op-{i}" for i in range(8)]

    for _ in range(500):
        op_id = rng.choice(ids)
        if rng.random() < 0.5:
            registry.start_operation(op_id, "work")
            live.add(op_id)
        else:
            registry.complete_operation(op_id)
            live.discard(op_id)
        assert registry.count() == len(live)
        assert registry.count() >= 0


def test_every_mutation_logs_in_order(registry):
    registry.start_operation("a", "patients")
    registry.start_operation("b", "patients")
    registry.complete_operation("a")

    actions = [entry.action for entry in registry.action_log.recent()]
    assert actions == ["complete:a", "start:b", "start:a"]


def test_clear_purges_everything(registry):
    registry.start_operation("a", "patients")
    registry.start_operation("b", "patients")

    assert registry.clear() == 2
    assert registry.count() == 0
    assert registry.action_log.recent(1)[0].action == "registry:cleared"


def test_action_log_is_bounded_and_most_recent_first(clock):
    log = ActionLog(cap=5, clock=clock)
    for i in range(12):
        clock.advance(1)
        log.append(f"action-{i}")

    assert len(log) == 5
    assert [e.action for e in log.recent()] == [f"action-{i}" for i in range(11, 6, -1)]
    assert [e.action for e in log.recent(2)] == ["action-11", "action-10"]


def test_action_log_rejects_non_positive_cap():
    with pytest.raises(ValueError):
        ActionLog(cap=0)


def test_operation_duration(registry, clock):
    registry.start_operation("a", "patients")
    clock.advance(2.5)
    assert registry.get("a").duration_ms(clock()) == pytest.approx(2500)

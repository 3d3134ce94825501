from aggregation import Aggregate
from periods import PeriodKey
from scheduler import SchedulerManager


def test_sweep_purges_expired_entries(cache, clock) -> None:
    old = PeriodKey.for_year("user-1", 2024)
    cache.store(old, Aggregate.empty(old, include_monthly=True))
    clock.advance(hours=2)
    fresh = PeriodKey.for_year("user-1", 2025)
    cache.store(fresh, Aggregate.empty(fresh, include_monthly=True))

    manager = SchedulerManager(cache)

    assert manager._run_sweep() == 1
    assert cache.lookup(old) is None
    assert cache.lookup(fresh) is not None


def test_start_registers_sweep_job(cache) -> None:
    manager = SchedulerManager(cache)
    manager.start()
    try:
        job = manager.scheduler.get_job("cache_sweep")
        assert job is not None
        assert job.args == ("interval",)
    finally:
        manager.stop()

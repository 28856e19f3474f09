import time
import threading

from services.stats_scheduler import StatsScheduler

class RunResultStub:
    def __init__(self, success: bool = True):
        self.success = success

class FakeStatsService:
    def __init__(self):
        self.calls = []
        self.cancel_seen = None

    def run(self, cancel=None, execution_type="manual"):
        self.calls.append(execution_type)
        self.cancel_seen = cancel
        time.sleep(0.01)
        return RunResultStub(success=True)

def test_stats_scheduler_start_stop_lifecycle() -> None:
    svc = FakeStatsService()
    sched = StatsScheduler(stats_service=svc, interval_seconds=1)

    sched.start()
    time.sleep(0.2)

    assert getattr(sched, "_running", False) is True
    thread = getattr(sched, "_thread", None)
    assert thread is not None and isinstance(thread, threading.Thread)
    assert thread.is_alive()
    assert svc.calls == ["scheduled"]

    sched.stop()
    time.sleep(0.1)
    assert getattr(sched, "_running", False) is False
    thread_after = getattr(sched, "_thread", None)
    assert thread_after is None or not thread_after.is_alive()


def test_stats_scheduler_start_idempotent() -> None:
    svc = FakeStatsService()
    sched = StatsScheduler(stats_service=svc, interval_seconds=1)

    sched.start()
    time.sleep(0.15)
    first_thread = getattr(sched, "_thread", None)

    sched.start()
    time.sleep(0.15)
    second_thread = getattr(sched, "_thread", None)

    assert first_thread is second_thread

    sched.stop()
    time.sleep(0.1)


def test_stop_signals_running_calculation() -> None:
    svc = FakeStatsService()
    sched = StatsScheduler(stats_service=svc, interval_seconds=1)

    sched.start()
    time.sleep(0.1)
    assert svc.cancel_seen is not None and not svc.cancel_seen.is_set()

    sched.stop()
    assert svc.cancel_seen.is_set()


def test_failing_run_does_not_kill_loop() -> None:
    class FlakyService(FakeStatsService):
        def run(self, cancel=None, execution_type="manual"):
            super().run(cancel, execution_type)
            raise RuntimeError("boom")

    svc = FlakyService()
    sched = StatsScheduler(stats_service=svc, interval_seconds=0)

    sched.start()
    time.sleep(0.1)
    assert sched._thread.is_alive()
    assert len(svc.calls) >= 2

    sched.stop()

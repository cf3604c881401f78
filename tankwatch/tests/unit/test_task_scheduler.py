"""
Unit tests for the background task scheduler
Driven by a manual clock through run_pending()
"""
import pytest
from unittest.mock import AsyncMock, Mock

from tankwatch.core.time_utils import ManualClock
from tankwatch.services.scheduler.task_scheduler import TaskScheduler


@pytest.fixture
def clock():
    return ManualClock(1_700_000_000.0)


@pytest.fixture
def scheduler(clock):
    return TaskScheduler(clock=clock, tick_interval=3600)


class TestTaskScheduler:
    """Unit tests for TaskScheduler"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_task_not_run_before_interval(self, scheduler, clock):
        func = AsyncMock()
        scheduler.register_task("sweep", func, interval_seconds=600)

        clock.advance(599)
        assert await scheduler.run_pending() == []
        func.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_due_task_runs_and_reschedules(self, scheduler, clock):
        func = AsyncMock()
        scheduler.register_task("sweep", func, interval_seconds=600)

        clock.advance(600)
        assert await scheduler.run_pending() == ["sweep"]
        assert await scheduler.run_pending() == []

        clock.advance(600)
        await scheduler.run_pending()

        assert func.await_count == 2
        status = scheduler.get_task_status("sweep")
        assert status["run_count"] == 2
        assert status["next_run_in_seconds"] == 600

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sync_task_runs_in_executor(self, scheduler, clock):
        func = Mock()
        scheduler.register_task("flush", func, interval_seconds=10)

        clock.advance(10)
        await scheduler.run_pending()

        func.assert_called_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_task_is_counted_not_raised(self, scheduler, clock):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        scheduler.register_task("failing", failing, interval_seconds=60)
        scheduler.register_task("healthy", healthy, interval_seconds=60)

        clock.advance(60)
        await scheduler.run_pending()

        status = scheduler.get_task_status()
        assert status["tasks"]["failing"]["error_count"] == 1
        assert status["tasks"]["failing"]["last_error"] == "boom"
        assert status["tasks"]["healthy"]["run_count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disabled_task_skipped(self, scheduler, clock):
        func = AsyncMock()
        scheduler.register_task("off", func, interval_seconds=1, enabled=False)

        clock.advance(10)
        await scheduler.run_pending()

        func.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_stop(self, scheduler):
        await scheduler.start()
        assert scheduler.get_task_status()["scheduler_running"] is True

        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.unit
    def test_unknown_task_status(self, scheduler):
        assert "error" in scheduler.get_task_status("missing")

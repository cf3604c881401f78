"""
Background Task Scheduler
Runs the monitor's periodic jobs
- Liveness sweep
- Connection heartbeat
- Forced broker re-authentication
"""
import asyncio
import inspect
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from tankwatch.core.time_utils import SystemClock

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Represents a scheduled task"""
    name: str
    func: Callable
    interval_seconds: float
    enabled: bool = True
    last_run: Optional[float] = None
    next_run: Optional[float] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


class TaskScheduler:
    """
    Background task scheduler with interval-based execution.

    Features:
    - Interval-based task scheduling against an injectable clock
    - Async and sync task execution
    - A failing task is logged and counted, never stops the scheduler
    - Task statistics
    """

    def __init__(self, clock=None, tick_interval: float = 1.0):
        """
        Initialize task scheduler.

        Args:
            clock: Object with now() -> epoch seconds
            tick_interval: Seconds between due-task checks
        """
        self.clock = clock or SystemClock()
        self.tick_interval = tick_interval
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.scheduler_task = None

    def register_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: float,
        enabled: bool = True
    ) -> None:
        """
        Register a periodic task. First run is one interval from now.

        Args:
            name: Task identifier
            func: Async or sync callable taking no arguments
            interval_seconds: Execution interval in seconds
            enabled: Whether task is enabled
        """
        now = self.clock.now()

        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            next_run=now + interval_seconds
        )

        self.tasks[name] = task
        logger.info(
            f"Registered task '{name}': "
            f"interval={interval_seconds}s, enabled={enabled}"
        )

    async def start(self) -> None:
        """Start the task scheduler"""
        if self.running:
            logger.warning("Task scheduler already running")
            return

        self.running = True
        self.scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Task scheduler started")

    async def stop(self) -> None:
        """Stop the task scheduler"""
        if not self.running:
            return

        self.running = False

        if self.scheduler_task:
            self.scheduler_task.cancel()
            try:
                await self.scheduler_task
            except asyncio.CancelledError:
                pass
            self.scheduler_task = None

        logger.info("Task scheduler stopped")

    async def run_pending(self) -> List[str]:
        """
        Execute every enabled task that is due.

        Returns:
            Names of the tasks that ran
        """
        now = self.clock.now()
        due = []

        for task in self.tasks.values():
            if not task.enabled:
                continue
            if task.next_run is None or now >= task.next_run:
                due.append(task)
                task.next_run = now + task.interval_seconds

        if due:
            await asyncio.gather(*(self._execute_task(task) for task in due))

        return [task.name for task in due]

    async def _scheduler_loop(self) -> None:
        """Main scheduler loop"""
        logger.info("Scheduler loop started")

        while self.running:
            try:
                await self.run_pending()
                await asyncio.sleep(self.tick_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
                await asyncio.sleep(5.0)  # Back off on error

        logger.info("Scheduler loop stopped")

    async def _execute_task(self, task: ScheduledTask) -> None:
        """
        Execute a scheduled task.

        Args:
            task: Task to execute
        """
        start_time = self.clock.now()

        try:
            logger.debug(f"Executing task '{task.name}'")

            if inspect.iscoroutinefunction(task.func):
                await task.func()
            else:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, task.func)

            task.last_run = start_time
            task.run_count += 1

            duration = self.clock.now() - start_time
            logger.debug(
                f"Task '{task.name}' completed in {duration:.2f}s "
                f"(run #{task.run_count})"
            )

        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.error_count += 1
            task.last_error = str(e)

            logger.error(
                f"Error executing task '{task.name}': {e}",
                extra={
                    'task_name': task.name,
                    'error_count': task.error_count,
                    'traceback': traceback.format_exc()
                }
            )

    def get_task_status(self, name: Optional[str] = None) -> Dict[str, Any]:
        """
        Get status of tasks.

        Args:
            name: Optional task name to get specific task status

        Returns:
            Dictionary with task status information
        """
        if name:
            if name not in self.tasks:
                return {"error": f"Task '{name}' not found"}
            return self._format_task_status(self.tasks[name])

        return {
            'scheduler_running': self.running,
            'total_tasks': len(self.tasks),
            'enabled_tasks': sum(1 for t in self.tasks.values() if t.enabled),
            'tasks': {
                task_name: self._format_task_status(task)
                for task_name, task in self.tasks.items()
            }
        }

    def _format_task_status(self, task: ScheduledTask) -> Dict[str, Any]:
        """Format task status for display"""
        now = self.clock.now()

        return {
            'name': task.name,
            'enabled': task.enabled,
            'interval_seconds': task.interval_seconds,
            'run_count': task.run_count,
            'error_count': task.error_count,
            'last_run': task.last_run,
            'last_run_ago_seconds': (
                round(now - task.last_run, 1)
                if task.last_run is not None else None
            ),
            'next_run': task.next_run,
            'next_run_in_seconds': (
                round(task.next_run - now, 1)
                if task.next_run is not None else None
            ),
            'last_error': task.last_error
        }

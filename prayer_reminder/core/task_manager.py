"""
Single place for scheduling: repeating in-memory timers and background jobs
run on an asyncio loop in a daemon thread.
"""
import asyncio
import concurrent.futures
import functools
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self._lock = threading.RLock()
        self._stopped = False
        self._setup_async_loop()

    def _setup_async_loop(self) -> None:
        """Setup async event loop in background thread."""
        self.async_loop = asyncio.new_event_loop()

        def run_async_loop():
            asyncio.set_event_loop(self.async_loop)
            self.async_loop.run_forever()

        self.async_thread = threading.Thread(target=run_async_loop, daemon=True)
        self.async_thread.start()

    def schedule_task(self, name: str, callback: Callable[[], Any], delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds; repeat every delay seconds unless one_time."""
        with self._lock:
            if self._stopped:
                self.logger.debug(f"Task manager stopped, not scheduling {name}")
                return
            self._start_timer(name, callback, delay, one_time, datetime.now().timestamp() + delay)

    def _start_timer(self, name: str, callback: Callable[[], Any], delay: float, one_time: bool,
                     scheduled_time: float) -> None:
        try:
            if name in self.tasks:
                self.logger.debug(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            wait = max(0.0, scheduled_time - datetime.now().timestamp())
            timer = Timer(wait, self._run_task, args=(name, callback, delay, one_time, scheduled_time))
            timer.daemon = True
            timer.scheduled_time = scheduled_time

            self.tasks[name] = timer
            timer.start()
            self.logger.debug(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")
        except Exception as e:
            self.logger.error(f"Error scheduling task {name}: {e}")

    def _run_task(self, name: str, callback: Callable[[], Any], delay: float, one_time: bool,
                  scheduled_time: float) -> None:
        """Run the task and reschedule if needed."""
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        with self._lock:
            # A cancel or a newer schedule_task for this name replaces our entry
            if self.tasks.get(name) is not threading.current_thread():
                return
            if one_time or self._stopped:
                self.tasks.pop(name, None)
                return
            # Next run is anchored to the previous slot so callback time does not accumulate
            now = datetime.now().timestamp()
            next_time = scheduled_time + delay
            if next_time <= now:
                self.logger.debug(f"Task {name} overran its period, running again now")
                next_time = now
            self._start_timer(name, callback, delay, one_time, next_time)

    def cancel_task(self, name: str) -> None:
        """Cancel a scheduled task; no further runs occur."""
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is not None:
            timer.cancel()
            self.logger.info(f"Cancelled task {name}")

    def submit(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        """Run fn(*args) off the caller's thread; returns a concurrent Future."""
        call = functools.partial(fn, *args)

        async def runner():
            return await self.async_loop.run_in_executor(None, call)

        return asyncio.run_coroutine_threadsafe(runner(), self.async_loop)

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        for name, timer in list(self.tasks.items()):
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        with self._lock:
            self._stopped = True
            timers = list(self.tasks.values())
            self.tasks.clear()
        for task in timers:
            task.cancel()
        if hasattr(self, "async_loop"):
            self.async_loop.call_soon_threadsafe(self.async_loop.stop)

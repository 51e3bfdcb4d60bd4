"""
Periodic background tasks: catalog cache sweep and throttled storage health checks.

Tasks only delete expired entries or refresh availability flags; they never
mutate live configuration data. A failing task is logged and counted, and the
loop carries on with the rest.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import validate_config
from ..util.logging import logger

TICK_SEC = 0.5


@dataclass
class ScheduledTask:
    name: str
    interval: int
    func: Callable[[], object]
    last_run: Optional[float] = None
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None

    def is_due(self, now: float) -> bool:
        return self.last_run is None or now - self.last_run >= self.interval

    def next_run(self) -> Optional[float]:
        return self.last_run + self.interval if self.last_run is not None else None


tasks: Dict[str, ScheduledTask] = {}
running = False
shutdown_event: Optional[threading.Event] = None
_thread: Optional[threading.Thread] = None
_registry_lock = threading.Lock()


def register_task(name: str, interval_sec: int, func: Callable[[], object]) -> ScheduledTask:
    """
    Schedule `func` every `interval_sec` seconds. Re-registering a name replaces
    the previous task and makes it due immediately.
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")
    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    task = ScheduledTask(name, interval_sec, func)
    with _registry_lock:
        tasks[name] = task
    logger.debug(f"Registered heartbeat task '{name}' (every {interval_sec}s)")
    return task


def unregister_task(name: str) -> None:
    with _registry_lock:
        removed = tasks.pop(name, None)
    if removed is not None:
        logger.debug(f"Unregistered heartbeat task '{name}'")


def list_tasks() -> List[str]:
    with _registry_lock:
        return list(tasks)


def due_tasks(now: Optional[float] = None) -> List[ScheduledTask]:
    now = time.monotonic() if now is None else now
    with _registry_lock:
        return [task for task in tasks.values() if task.is_due(now)]


def run_task(task: ScheduledTask) -> None:
    """Run one task, recording timing; failures are re-raised as RuntimeError."""
    began = time.monotonic()
    try:
        task.func()
    except Exception as e:
        task.last_run = time.monotonic()
        task.failures += 1
        task.last_error = str(e)
        raise RuntimeError(f"Task '{task.name}' failed after {task.last_run - began:.2f}s: {e}") from e

    task.last_run = time.monotonic()
    task.runs += 1
    task.last_error = None
    logger.debug(f"Heartbeat task '{task.name}' finished in {task.last_run - began:.2f}s")


def tick(now: Optional[float] = None) -> int:
    """Run every due task once. Returns how many failed."""
    failed = 0
    for task in due_tasks(now):
        try:
            run_task(task)
        except RuntimeError as e:
            failed += 1
            logger.error(f"Heartbeat {e}")
    return failed


def start() -> None:
    """Run the loop in the calling thread until stop() is called."""
    global running, shutdown_event

    if running:
        raise RuntimeError("Heartbeat already running")

    # usually runs on the daemon thread, where a raise would go unseen
    issues = validate_config()
    if issues:
        logger.error(f"Heartbeat not started, configuration invalid: {issues}")
        return

    running = True
    shutdown_event = threading.Event()
    logger.info(f"Starting heartbeat loop with tasks: {list_tasks()}")
    try:
        while running and not shutdown_event.is_set():
            tick()
            shutdown_event.wait(TICK_SEC)
    finally:
        running = False
        logger.info("Heartbeat loop stopped")


def start_background() -> threading.Thread:
    """Run the loop on a daemon thread; a live loop is reused."""
    global _thread
    if _thread is not None and _thread.is_alive():
        return _thread
    _thread = threading.Thread(target=start, name="shopconfig-heartbeat", daemon=True)
    _thread.start()
    return _thread


def stop() -> None:
    global running, _thread

    if not running:
        return
    running = False
    if shutdown_event:
        shutdown_event.set()
    if _thread is not None and _thread is not threading.current_thread():
        _thread.join(timeout=2.0)
    _thread = None


def reset_task(name: str) -> None:
    """Make a task due on the next tick."""
    with _registry_lock:
        task = tasks.get(name)
    if task is not None:
        task.last_run = None


def get_status() -> Dict[str, object]:
    with _registry_lock:
        snapshot = list(tasks.values())
    return {
        "status": "running" if running else "stopped",
        "tasks": {
            task.name: {
                "interval_sec": task.interval,
                "last_run": task.last_run,
                "next_run": task.next_run(),
                "runs": task.runs,
                "failures": task.failures,
                "last_error": task.last_error,
            }
            for task in snapshot
        },
    }

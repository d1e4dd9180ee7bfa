"""
Heartbeat - periodic task scheduler driving the reconciliation worker.

A single loop checks task intervals and runs due tasks one at a time, so a
task never overlaps with itself. A run that takes longer than its interval
delays the next one instead of running concurrently.
"""

import threading
import time
from typing import Callable, Dict, Optional

from .config import is_reconcile_enabled, validate_reconcile_config
from ..util.logging import logger


tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
running = False
shutdown_event: Optional[threading.Event] = None
loop_thread: Optional[threading.Thread] = None

POLL_INTERVAL_SEC = 0.1


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier
        interval_sec: How often to run this task in seconds
        func: Function to call
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    tasks[name] = {
        "func": func,
        "interval": interval_sec,
        "last_run": None
    }

    logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")


def unregister_task(name: str):
    """Remove a task from the registry."""
    if name in tasks:
        del tasks[name]
        logger.info(f"Unregistered heartbeat task '{name}'")


def list_tasks():
    """Return list of registered task names."""
    return list(tasks.keys())


def _arm() -> threading.Event:
    """Check preconditions, mark the heartbeat running and return the loop's shutdown event."""
    global running, shutdown_event

    if running:
        raise RuntimeError("Heartbeat already running")

    issues = validate_reconcile_config()
    if issues:
        raise ValueError(f"Heartbeat configuration invalid: {issues}")

    running = True
    shutdown_event = threading.Event()
    return shutdown_event


def _run_loop(event: threading.Event):
    """Run due tasks until the given event is set."""
    global running

    logger.info(f"Starting heartbeat loop with tasks: {list(tasks.keys())}")

    try:
        while not event.is_set():
            for name, task_info in list(tasks.items()):
                if event.is_set():
                    break
                if should_run_task(name, task_info):
                    try:
                        run_task(name, task_info)
                    except Exception as e:
                        # Error isolation - log error but continue loop
                        logger.error(f"Heartbeat task '{name}' failed: {e}")

            event.wait(POLL_INTERVAL_SEC)
    finally:
        # A newer loop may own the flag if stop() timed out waiting for this one
        if shutdown_event is event:
            running = False
        logger.info("Heartbeat loop stopped")


def start():
    """
    Run the heartbeat loop in the calling thread until stop() is called.
    """
    if not is_reconcile_enabled():
        logger.info("Heartbeat disabled (RECONCILE_ENABLED=false). Skipping start.")
        return

    _run_loop(_arm())


def start_in_background() -> Optional[threading.Thread]:
    """Run the heartbeat loop on a daemon thread. Returns the thread, or None if disabled."""
    global loop_thread

    if not is_reconcile_enabled():
        logger.info("Heartbeat disabled (RECONCILE_ENABLED=false). Skipping start.")
        return None

    if loop_thread is not None and loop_thread.is_alive():
        raise RuntimeError("Heartbeat already running")

    # Armed here, not in the thread, so a stop() right after this call reaches the loop
    event = _arm()
    loop_thread = threading.Thread(target=_run_loop, args=(event,), name="heartbeat", daemon=True)
    loop_thread.start()
    return loop_thread


def stop(timeout: float = 5.0):
    """Stop the heartbeat loop gracefully."""
    global running, loop_thread

    if not running and loop_thread is None:
        logger.info("Heartbeat not running")
        return

    logger.info("Stopping heartbeat loop...")
    running = False

    if shutdown_event:
        shutdown_event.set()

    if loop_thread is not None and loop_thread is not threading.current_thread():
        loop_thread.join(timeout)
    loop_thread = None


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if task_info["last_run"] is None:
        return True  # Run immediately if never run

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing."""
    start_time = time.monotonic()

    try:
        task_info["func"]()
    except Exception as e:
        end_time = time.monotonic()
        task_info["last_run"] = end_time
        logger.log_heartbeat_task(name, start_time, end_time, status="failed")
        raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e

    end_time = time.monotonic()
    # Next interval counts from the end of this run
    task_info["last_run"] = end_time
    logger.log_heartbeat_task(name, start_time, end_time)


def reset_task(name: str):
    """Reset a task's last_run time to force immediate execution."""
    if name in tasks:
        tasks[name]["last_run"] = None
        logger.info(f"Reset heartbeat task '{name}' (will run immediately)")


def get_status():
    """Return current heartbeat status for monitoring."""
    if not is_reconcile_enabled():
        return {"status": "disabled", "reason": "RECONCILE_ENABLED=false"}

    now = time.monotonic()
    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "seconds_since_last_run": round(now - info["last_run"], 2) if info["last_run"] is not None else None,
                "seconds_until_next_run": max(0.0, round(info["last_run"] + info["interval"] - now, 2)) if info["last_run"] is not None else 0.0,
            }
            for name, info in tasks.items()
        }
    }

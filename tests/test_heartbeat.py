"""
Heartbeat task registry and loop: catalog cache sweep and storage health checks.
"""

import logging
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from shopconfig.core import heartbeat
from shopconfig.core.heartbeat import (
    ScheduledTask,
    due_tasks,
    get_status,
    list_tasks,
    register_task,
    reset_task,
    run_task,
    start,
    start_background,
    stop,
    tick,
    unregister_task,
)


@pytest.fixture(autouse=True)
def reset_heartbeat():
    heartbeat.tasks.clear()
    heartbeat.running = False
    heartbeat.shutdown_event = None
    yield
    stop()


class TestRegistry:
    def test_register(self):
        task = register_task("catalog_cache_sweep", 30, lambda: None)
        assert list_tasks() == ["catalog_cache_sweep"]
        assert task.interval == 30
        assert task.last_run is None

    def test_non_callable_is_rejected(self):
        with pytest.raises(ValueError, match="must be callable"):
            register_task("bad_task", 30, "not_callable")

    def test_interval_below_one_second_is_rejected(self):
        with pytest.raises(ValueError, match="Interval must be >= 1 second"):
            register_task("bad_task", 0, lambda: None)

    def test_reregistering_replaces(self):
        register_task("sweep", 30, lambda: None)
        register_task("sweep", 60, lambda: None)
        assert list_tasks() == ["sweep"]
        assert heartbeat.tasks["sweep"].interval == 60

    def test_unregister_is_idempotent(self):
        register_task("sweep", 30, lambda: None)
        unregister_task("sweep")
        unregister_task("sweep")
        assert list_tasks() == []


class TestScheduling:
    def test_new_task_is_due(self):
        assert ScheduledTask("t", 30, lambda: None).is_due(time.monotonic())

    def test_due_after_interval(self):
        now = time.monotonic()
        task = ScheduledTask("t", 30, lambda: None, last_run=now - 35)
        assert task.is_due(now)
        assert task.next_run() == now - 5

    def test_not_due_before_interval(self):
        now = time.monotonic()
        assert not ScheduledTask("t", 30, lambda: None, last_run=now - 10).is_due(now)

    def test_due_tasks_filters(self):
        now = time.monotonic()
        register_task("fresh", 30, lambda: None)
        register_task("recent", 30, lambda: None).last_run = now
        assert [task.name for task in due_tasks(now)] == ["fresh"]

    def test_reset_forces_next_run(self):
        register_task("sweep", 30, lambda: None).last_run = time.monotonic()
        reset_task("sweep")
        assert [task.name for task in due_tasks()] == ["sweep"]


class TestExecution:
    def test_run_task_records_success(self):
        func = MagicMock()
        task = ScheduledTask("sweep", 30, func)
        run_task(task)
        func.assert_called_once()
        assert task.runs == 1
        assert task.last_run is not None

    def test_run_task_records_failure(self):
        task = ScheduledTask("health_check", 30, MagicMock(side_effect=ValueError("backend down")))
        with pytest.raises(RuntimeError, match="backend down"):
            run_task(task)
        assert task.failures == 1
        assert task.last_error == "backend down"
        assert task.last_run is not None

    def test_tick_isolates_failures(self):
        ran = MagicMock()
        register_task("failing", 30, MagicMock(side_effect=RuntimeError("crash")))
        register_task("sweep", 30, ran)
        assert tick() == 1
        ran.assert_called_once()
        assert tick() == 0

    def test_start_already_running(self):
        with patch('shopconfig.core.heartbeat.running', True), \
                pytest.raises(RuntimeError, match="already running"):
            start()

    def test_start_with_invalid_config_logs_and_returns(self, caplog):
        with patch('shopconfig.core.heartbeat.validate_config', return_value=["bad setting"]), \
                caplog.at_level(logging.ERROR, logger="shopconfig"):
            start()
        assert heartbeat.running is False
        assert "configuration invalid: ['bad setting']" in caplog.text

    def test_background_start_with_invalid_config_exits_quietly(self, caplog):
        with patch('shopconfig.core.heartbeat.validate_config', return_value=["bad setting"]), \
                caplog.at_level(logging.ERROR, logger="shopconfig"):
            thread = start_background()
            thread.join(timeout=5)
        assert not thread.is_alive()
        assert heartbeat.running is False
        assert "Heartbeat not started" in caplog.text

    def test_stop_when_not_running(self):
        stop()
        assert heartbeat.running is False

    def test_background_loop_survives_failing_task(self):
        ran = threading.Event()

        def failing():
            raise RuntimeError("sweep crashed")

        register_task("failing", 1, failing)
        register_task("sweep", 1, ran.set)

        start_background()
        try:
            assert ran.wait(timeout=5)
            assert get_status()["status"] == "running"
        finally:
            stop()
        assert heartbeat.running is False
        assert heartbeat.tasks["failing"].failures >= 1


class TestStatus:
    def test_stopped(self):
        register_task("config_health_check", 30, lambda: None)
        status = get_status()
        assert status["status"] == "stopped"
        assert status["tasks"]["config_health_check"]["next_run"] is None
        assert status["tasks"]["config_health_check"]["failures"] == 0

    def test_running(self):
        with patch('shopconfig.core.heartbeat.running', True):
            register_task("catalog_cache_sweep", 60, lambda: None)
            status = get_status()
        assert status["status"] == "running"
        assert status["tasks"]["catalog_cache_sweep"]["interval_sec"] == 60

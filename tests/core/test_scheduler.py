# tests/core/test_scheduler.py

import asyncio
from unittest.mock import MagicMock

import pytest

from kubedrain.core.scheduler import Scheduler, parse_interval


@pytest.mark.parametrize("value, seconds", [("30s", 30), ("10m", 600), ("1h", 3600), ("5M", 300)])
def test_parse_interval(value, seconds):
    assert parse_interval(value) == seconds


@pytest.mark.parametrize("value", ["", "10", "m", "1d", "0m", "-5m"])
def test_parse_interval_rejects_bad_values(value):
    with pytest.raises(ValueError):
        parse_interval(value)


@pytest.mark.asyncio
async def test_add_job_from_string_schedules_correctly():
    """
    Tests that add_job_from_string parses correct string and adds task.
    """
    scheduler = Scheduler()
    mock_job = MagicMock()

    async def async_job():
        mock_job()

    # Act
    scheduler.add_job_from_string(async_job, "1h")
    await asyncio.sleep(0)

    # Assert
    assert len(scheduler.tasks) == 1
    mock_job.assert_called_once()
    await scheduler.stop()
    assert scheduler.tasks == []


@pytest.mark.asyncio
async def test_job_errors_do_not_stop_the_loop():
    scheduler = Scheduler()

    async def failing_job():
        raise RuntimeError("boom")

    scheduler.add_job_from_string(failing_job, "1s")
    await asyncio.sleep(0.01)

    task = scheduler.tasks[0]
    assert not task.done()
    await scheduler.stop()
    assert task.cancelled()


def test_add_job_from_string_invalid_interval():
    scheduler = Scheduler()

    async def async_job():
        pass

    with pytest.raises(ValueError):
        scheduler.add_job_from_string(async_job, "soon")

"""Tests for the auto-refresh loop."""

import asyncio

from portal_sync.refresh import AutoRefreshDriver
from tests.fakes import instant_sleep


class RecordingSleep:
    def __init__(self):
        self.intervals = []

    async def __call__(self, seconds):
        self.intervals.append(seconds)
        await asyncio.sleep(0)


async def test_refreshes_on_interval_until_stopped():
    refreshed = 0
    reached = asyncio.Event()

    async def refresh():
        nonlocal refreshed
        refreshed += 1
        if refreshed == 3:
            reached.set()

    sleep = RecordingSleep()
    driver = AutoRefreshDriver("monitoring", refresh, 30.0, lambda: True, sleep=sleep)
    driver.start()
    await asyncio.wait_for(reached.wait(), timeout=1)
    await driver.stop()

    assert not driver.running
    assert driver.cycles >= 3
    assert set(sleep.intervals) == {30.0}

    stopped_at = refreshed
    for _ in range(5):
        await asyncio.sleep(0)
    assert refreshed == stopped_at


async def test_start_is_idempotent():
    async def refresh():
        await asyncio.sleep(0)

    driver = AutoRefreshDriver("monitoring", refresh, 30.0, lambda: True, sleep=instant_sleep)
    driver.start()
    first = driver._task
    driver.start()
    assert driver._task is first
    await driver.stop()
    await driver.stop()


async def test_loop_ends_when_authorization_is_lost():
    authorized = True
    refreshed = 0

    async def refresh():
        nonlocal refreshed, authorized
        refreshed += 1
        authorized = False

    driver = AutoRefreshDriver("monitoring", refresh, 30.0, lambda: authorized, sleep=instant_sleep)
    driver.start()
    for _ in range(20):
        if not driver.running:
            break
        await asyncio.sleep(0)

    assert not driver.running
    assert refreshed == 1
    await driver.stop()


async def test_refresh_errors_do_not_stop_the_loop():
    attempts = 0
    reached = asyncio.Event()

    async def refresh():
        nonlocal attempts
        attempts += 1
        if attempts == 3:
            reached.set()
        raise RuntimeError("backend hiccup")

    driver = AutoRefreshDriver("monitoring", refresh, 30.0, lambda: True, sleep=instant_sleep)
    driver.start()
    await asyncio.wait_for(reached.wait(), timeout=1)
    await driver.stop()

    assert attempts >= 3
    assert driver.cycles >= 2

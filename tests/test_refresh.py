"""Refresh scheduling."""

import datetime
from unittest.mock import Mock

from eth_vault.errors import ReadFailed
from eth_vault.refresh import RefreshScheduler, run_refresh_loop


def test_should_refresh():
    scheduler = RefreshScheduler(datetime.timedelta(seconds=15))

    assert scheduler.should_refresh(100.0, 1)
    assert not scheduler.should_refresh(101.0, 1)
    # New block
    assert scheduler.should_refresh(102.0, 2)
    assert not scheduler.should_refresh(110.0, 2)
    # Timer
    assert scheduler.should_refresh(117.0, 2)
    assert not scheduler.should_refresh(118.0, None)


def test_refresh_loop_on_new_blocks(gateway):
    """Every cycle sees a new block and refreshes."""
    calls = []

    def _mine():
        calls.append(gateway.block_number)
        gateway.block_number += 1

    refreshes = run_refresh_loop(gateway, [_mine], tick=datetime.timedelta(0), max_cycles=3)
    assert refreshes == 3
    assert calls == [20_000_000, 20_000_001, 20_000_002]


def test_refresh_loop_idle_chain(gateway):
    """Same block, poll interval not passed: only the first refresh."""
    calls = []
    refreshes = run_refresh_loop(gateway, [lambda: calls.append(1)], tick=datetime.timedelta(0), max_cycles=5)
    assert refreshes == 1
    assert calls == [1]


def test_refresh_loop_failing_callback(gateway):
    """A failed read does not stop other refreshes."""
    calls = []

    def _fail():
        raise ReadFailed("node down")

    run_refresh_loop(gateway, [_fail, lambda: calls.append(1)], tick=datetime.timedelta(0), max_cycles=1)
    assert calls == [1]


def test_refresh_loop_block_number_unavailable(gateway):
    """Timer still drives refreshes when the chain tip cannot be read."""
    calls = []
    gateway.get_block_number = Mock(side_effect=ReadFailed("node down"))

    refreshes = run_refresh_loop(gateway, [lambda: calls.append(1)], tick=datetime.timedelta(0), max_cycles=2)
    assert refreshes == 1
    assert calls == [1]

"""Keep vault views fresh.

Reads go stale when

- time passes: maturity countdowns, other users' deposits moving TVL
- a new block lands: our own transactions, rate updates

:py:class:`RefreshScheduler` decides when to re-read,
:py:func:`run_refresh_loop` drives the refresh callbacks.
Everything runs in one thread, blocking only on gateway I/O and sleep.
"""

import datetime
import logging
import time
from typing import Callable, Iterable

from eth_vault.config import DEFAULT_POLL_INTERVAL
from eth_vault.errors import GatewayError
from eth_vault.gateway import ContractGateway


logger = logging.getLogger(__name__)

#: Re-read something, e.g. ``tracker.refresh`` or ``flow.refresh``
RefreshCallback = Callable[[], object]


class RefreshScheduler:
    """Refresh on a timer and on every new block."""

    def __init__(self, poll_interval: datetime.timedelta = DEFAULT_POLL_INTERVAL):
        assert isinstance(poll_interval, datetime.timedelta), f"Got {type(poll_interval)}"
        assert poll_interval.total_seconds() > 0
        self.poll_interval = poll_interval
        self.last_refresh_at: float | None = None
        self.last_block_number: int | None = None

    def should_refresh(self, now: float, block_number: int | None) -> bool:
        """Is it time to re-read.

        Remembers the refresh if the answer is yes.

        :param now:
            Monotonic seconds

        :param block_number:
            Current chain tip, ``None`` if it could not be read
        """
        due = (
            self.last_refresh_at is None
            or now - self.last_refresh_at >= self.poll_interval.total_seconds()
            or (block_number is not None and block_number != self.last_block_number)
        )

        if due:
            self.last_refresh_at = now
            if block_number is not None:
                self.last_block_number = block_number

        return due


def run_refresh_loop(
    gateway: ContractGateway,
    callbacks: Iterable[RefreshCallback],
    scheduler: RefreshScheduler | None = None,
    tick=datetime.timedelta(seconds=1),
    max_cycles: int | None = None,
) -> int:
    """Poll the chain tip and run refresh callbacks when due.

    A failing callback is logged and does not stop the others.
    The next cycle retries it.

    :param tick:
        How often we poll the block number

    :param max_cycles:
        Stop after this many ticks. Run forever if not given.

    :return:
        How many refreshes were run
    """
    callbacks = list(callbacks)
    if scheduler is None:
        scheduler = RefreshScheduler()

    refreshes = 0
    cycle = 0
    while max_cycles is None or cycle < max_cycles:
        cycle += 1

        try:
            block_number = gateway.get_block_number()
        except GatewayError as e:
            logger.warning("Could not read block number: %s", e)
            block_number = None

        if scheduler.should_refresh(time.monotonic(), block_number):
            logger.debug("Refreshing at block %s", block_number)
            for callback in callbacks:
                try:
                    callback()
                except GatewayError as e:
                    logger.warning("Refresh %s failed: %s", callback, e)
            refreshes += 1

        if max_cycles is None or cycle < max_cycles:
            time.sleep(tick.total_seconds())

    return refreshes

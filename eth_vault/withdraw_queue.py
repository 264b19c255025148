"""Withdrawal queue tracking.

The queue contract has no per-user index. To find the requests of a user we

- read ``nextRequestId``: request ids are 1-based, sequential and never reused
- read ``getRequest(id)`` and ``isMatured(id)`` for every id
- keep rows owned by the connected account

The table is rebuilt in full on every refresh. This is linear in the total number
of requests ever made, so we refuse to enumerate beyond :py:data:`eth_vault.config.DEFAULT_MAX_REQUEST_SCAN`.

Example:

.. code-block:: python

    tracker = WithdrawalQueueTracker(gateway, config, account)
    tracker.refresh()

    for row in tracker.rows:
        print(row.request_id, row.status.value, row.countdown)

    tracker.cancel(tracker.rows[0].request_id)

"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Iterable

from eth_typing import HexAddress

from eth_vault.config import VaultConfig
from eth_vault.errors import CancelNotAllowed, ReadFailed
from eth_vault.flow import TransactionOutcome, create_cancel_flow
from eth_vault.gateway import ContractCall, ContractGateway


logger = logging.getLogger(__name__)


class WithdrawStatus(enum.Enum):
    """Lifecycle of a withdrawal request as shown to the user."""

    #: Solved by the operator, assets paid out
    completed = "completed"

    #: Cancelled by the owner, shares returned
    cancelled = "cancelled"

    #: Maturity reached, waiting for the operator to solve
    ready = "ready"

    #: Still inside the maturity window
    pending = "pending"


@dataclass(slots=True, frozen=True)
class WithdrawRequest:
    """One withdrawal request as stored in the queue contract."""

    #: 1-based sequential id
    request_id: int

    owner: HexAddress

    #: Raw share amount. Zero once cancelled.
    share_amount: int

    #: Unix timestamp
    created_at: int

    completed: bool

    #: ``isMatured()`` at the time of the read
    is_matured: bool


@dataclass(slots=True, frozen=True)
class WithdrawRequestRow:
    """Derived row for the user's withdrawal request table."""

    request_id: int
    share_amount: int
    status: WithdrawStatus

    #: Seconds until maturity, negative if passed
    seconds_remaining: int

    #: Unix timestamp
    matures_at: int

    #: Human readable time left
    countdown: str

    can_cancel: bool


def get_request_ids(next_request_id: int, max_requests: int = 10_000) -> list[int]:
    """Which request ids exist in the queue.

    :param next_request_id:
        ``nextRequestId()`` of the queue, the id the next request will get

    :param max_requests:
        Do not enumerate queues with more requests than this

    :return:
        ``1 .. next_request_id - 1``, or an empty list if there are no requests
        or too many of them
    """
    count = next_request_id - 1
    if count <= 0:
        return []

    if count >= max_requests:
        logger.warning("Withdrawal queue has %d requests, over the scan limit %d, not enumerating", count, max_requests)
        return []

    return list(range(1, next_request_id))


def classify_request(request: WithdrawRequest) -> WithdrawStatus:
    """Get the status of a request.

    Completed wins over everything. A cancelled request has zero shares left.
    """
    if request.completed:
        return WithdrawStatus.completed
    if request.share_amount == 0:
        return WithdrawStatus.cancelled
    if request.is_matured:
        return WithdrawStatus.ready
    return WithdrawStatus.pending


def format_countdown(seconds: int) -> str:
    """Format time left until maturity.

    - ``Ready`` when passed
    - ``2d 5h``
    - ``5h 12m``
    - ``12m``
    """
    if seconds <= 0:
        return "Ready"

    days, remainder = divmod(seconds, 86_400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def derive_rows(
    requests: Iterable[WithdrawRequest],
    account: HexAddress | str | None,
    now: int,
    maturity_window: int,
) -> list[WithdrawRequestRow]:
    """Build the request table of an account.

    :param requests:
        All requests read from the queue

    :param account:
        Whose requests we show. Compared case-insensitively.

    :param now:
        Unix timestamp

    :param maturity_window:
        Seconds from creation until a request matures

    :return:
        Rows sorted by request id
    """
    if account is None:
        return []

    account = account.lower()
    rows = []
    for request in requests:
        if request.owner.lower() != account:
            continue

        status = classify_request(request)
        matures_at = request.created_at + maturity_window
        seconds_remaining = matures_at - now
        rows.append(
            WithdrawRequestRow(
                request_id=request.request_id,
                share_amount=request.share_amount,
                status=status,
                seconds_remaining=seconds_remaining,
                matures_at=matures_at,
                countdown=format_countdown(seconds_remaining),
                can_cancel=status == WithdrawStatus.pending,
            )
        )

    rows.sort(key=lambda r: r.request_id)
    return rows


class WithdrawalQueueTracker:
    """Keep the withdrawal request table of one account up to date."""

    def __init__(
        self,
        gateway: ContractGateway,
        config: VaultConfig,
        account: HexAddress | str | None,
    ):
        self.gateway = gateway
        self.config = config
        self.account = account

        #: Read from the queue on the first refresh
        self.maturity_window: int | None = None

        #: Last read ``nextRequestId()``
        self.next_request_id: int | None = None

        self.rows: list[WithdrawRequestRow] = []

        self.cancel_flow = create_cancel_flow(gateway, config, account)

    def __repr__(self):
        return f"<WithdrawalQueueTracker {self.account} rows:{len(self.rows)}>"

    def _call(self, method: str, *args) -> ContractCall:
        return ContractCall(self.config.queue_address, "withdraw_queue", method, args)

    def get_maturity_window(self) -> int:
        """Maturity window in seconds.

        Read once. Until the read succeeds we use the configured fallback.
        """
        if self.maturity_window is None:
            try:
                maturity_window = self.gateway.read(self._call("MATURITY_PERIOD"))
            except ReadFailed as e:
                logger.warning("Could not read maturity window, using %d: %s", self.config.default_maturity_window, e)
                return self.config.default_maturity_window

            if not maturity_window:
                logger.warning("Queue reports zero maturity window, using %d", self.config.default_maturity_window)
                return self.config.default_maturity_window

            self.maturity_window = maturity_window
            logger.info("Withdrawal queue maturity window is %d seconds", maturity_window)
        return self.maturity_window

    def fetch_next_request_id(self) -> int:
        return self.gateway.read(self._call("nextRequestId"))

    def fetch_request(self, request_id: int) -> WithdrawRequest | None:
        """Read one request and its maturity.

        :return:
            ``None`` if the request itself cannot be read.
            A failed maturity read counts as not matured.
        """
        assert request_id >= 1, f"Bad request id {request_id}"
        try:
            user, share_amount, created_at, completed = self.gateway.read(self._call("getRequest", request_id))
        except ReadFailed as e:
            logger.warning("Skipping withdrawal request %d, could not read it: %s", request_id, e)
            return None

        try:
            is_matured = self.gateway.read(self._call("isMatured", request_id))
        except ReadFailed as e:
            logger.warning("Could not read maturity of withdrawal request %d, assuming not matured: %s", request_id, e)
            is_matured = False

        return WithdrawRequest(
            request_id=request_id,
            owner=user,
            share_amount=share_amount,
            created_at=created_at,
            completed=completed,
            is_matured=is_matured,
        )

    def fetch_requests(self) -> list[WithdrawRequest]:
        """Read all requests in the queue, of all users.

        Unreadable requests are left out.
        """
        self.next_request_id = self.fetch_next_request_id()
        ids = get_request_ids(self.next_request_id, self.config.max_request_scan)
        requests = (self.fetch_request(request_id) for request_id in ids)
        return [r for r in requests if r is not None]

    def refresh(self, now: int | None = None) -> list[WithdrawRequestRow]:
        """Rebuild the table.

        :param now:
            Unix timestamp. Wall clock if not given.

        :raise ReadFailed:
            ``nextRequestId`` could not be read, the previous rows are kept
        """
        if self.account is None:
            self.rows = []
            return self.rows

        if now is None:
            now = int(time.time())

        maturity_window = self.get_maturity_window()
        requests = self.fetch_requests()
        self.rows = derive_rows(requests, self.account, now, maturity_window)
        logger.info("Withdrawal queue refreshed, %d requests in queue, %d owned by %s", len(requests), len(self.rows), self.account)
        return self.rows

    def get_row(self, request_id: int) -> WithdrawRequestRow | None:
        for row in self.rows:
            if row.request_id == request_id:
                return row
        return None

    def cancel(self, request_id: int) -> TransactionOutcome:
        """Cancel a pending request and rebuild the table.

        :raise CancelNotAllowed:
            The request is not ours, or not pending
        """
        row = self.get_row(request_id)
        if row is None:
            raise CancelNotAllowed(f"Request {request_id} is not in the table of {self.account}")
        if not row.can_cancel:
            raise CancelNotAllowed(f"Request {request_id} is {row.status.value}, only pending requests can be cancelled")

        self.cancel_flow.refresh()
        outcome = self.cancel_flow.submit_action(request_id)

        try:
            self.refresh()
        except ReadFailed as e:
            logger.warning("Could not refresh withdrawal queue after cancelling %d: %s", request_id, e)

        return outcome

    def get_pending_share_total(self) -> int:
        """Shares locked in the queue: pending and ready requests."""
        return sum(r.share_amount for r in self.rows if r.status in (WithdrawStatus.pending, WithdrawStatus.ready))

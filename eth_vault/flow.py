"""Approve-then-act transaction flows.

Deposits and withdrawal requests both need two transactions:

1. ERC-20 ``approve()`` so the spender contract can pull our tokens
2. The action itself: ``Teller.deposit()`` or ``WithdrawQueue.requestWithdraw()``

:py:class:`TransactionFlow` is one reusable state machine for this,
configured with the token, the spender and the action call.
Cancelling a withdrawal request uses the same class without the approval stage.

State transitions:

.. code-block:: text

    idle -> checking_allowance -> needs_approval | ready
    needs_approval -> submitting -> awaiting_confirmation -> confirmed -> idle -> (refresh)
    ready -> submitting -> awaiting_confirmation -> confirmed -> idle -> (refresh)
    submitting -> <previous state>      (user rejected, broadcast failed, any other error)
    awaiting_confirmation -> failed     (reverted, timed out, any other error)
    failed -> idle                      (reset)

- After an approval is confirmed allowance and balance are read again, as the approved
  amount can differ from the amount the user finally acts with
- Only one transaction in flight per flow
- Nothing is ever retried automatically

Example:

.. code-block:: python

    flow = create_deposit_flow(gateway, config, account)
    flow.refresh()
    flow.set_amount("100.5")

    if flow.state == FlowState.needs_approval:
        flow.submit_approval()

    outcome = flow.submit_action()
    assert outcome.receipt.is_success()

"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable

from eth_typing import HexAddress
from hexbytes import HexBytes

from eth_vault.amount import format_max_amount, is_valid_amount_input, parse_amount
from eth_vault.config import VaultConfig
from eth_vault.errors import ConfirmationTimedOut, FlowBusy, InputError, InvalidFlowState, ReadFailed, Reverted, SubmissionFailed, UserRejected
from eth_vault.estimate import estimate_shares
from eth_vault.gateway import ContractCall, ContractGateway, PendingTransaction, Receipt


logger = logging.getLogger(__name__)


class FlowState(enum.Enum):
    """Where a transaction flow is."""

    idle = "idle"
    checking_allowance = "checking_allowance"
    needs_approval = "needs_approval"
    ready = "ready"
    submitting = "submitting"
    awaiting_confirmation = "awaiting_confirmation"
    confirmed = "confirmed"
    failed = "failed"


#: States with a transaction being signed or mined
BUSY_STATES = frozenset({FlowState.submitting, FlowState.awaiting_confirmation})


#: Build the action call from the flow value (amount, or request id for cancels)
ActionFactory = Callable[[int], ContractCall]

#: Called after a flow transaction has been confirmed
ConfirmationListener = Callable[["TransactionOutcome"], None]


def needs_approval(allowance: int | None, amount: int) -> bool:
    """Do we need to approve before acting.

    :param allowance:
        Current allowance, ``None`` if not read yet

    :param amount:
        Amount we are going to act with

    :return:
        True only if the allowance is known, we act with a non-zero amount,
        and the allowance does not cover it
    """
    return allowance is not None and amount > 0 and allowance < amount


@dataclass(slots=True, frozen=True)
class TransactionOutcome:
    """Confirmed transaction of a flow."""

    #: ``approve`` or ``action``
    kind: str

    #: What was called
    call: ContractCall

    tx_hash: HexBytes

    receipt: Receipt


@dataclass(slots=True, frozen=True)
class FlowView:
    """Read-only snapshot of a flow for the rendering layer."""

    name: str
    state: FlowState
    amount_text: str
    amount: int
    balance: int | None
    allowance: int | None
    needs_approval: bool
    busy: bool
    can_approve: bool
    can_submit: bool
    last_error: str | None

    #: Shares the typed deposit would mint at the last read rate, ``None`` without a rate
    estimated_shares: int | None = None


class TransactionFlow:
    """Approve-then-act state machine.

    Owns at most one pending transaction at a time.
    Blocking: submit methods return after the transaction is confirmed.
    """

    def __init__(
        self,
        gateway: ContractGateway,
        account: HexAddress | str | None,
        action: ActionFactory,
        token: HexAddress | str | None = None,
        spender: HexAddress | str | None = None,
        decimals: int = 18,
        requires_amount: bool = True,
        rate_call: ContractCall | None = None,
        name: str = "flow",
    ):
        """
        :param gateway:
            Chain access

        :param account:
            Connected account. ``None`` if no wallet is connected, the flow is then inert.

        :param action:
            Builds the action call from the amount

        :param token:
            ERC-20 we spend. ``None`` for flows without an approval stage.

        :param spender:
            Contract pulling the tokens

        :param decimals:
            Token decimals for amount parsing

        :param requires_amount:
            Check amount against zero and balance before acting.
            Cancels do not have an amount.

        :param rate_call:
            Read the share rate on every refresh for share estimates

        :param name:
            For logging
        """
        assert isinstance(gateway, ContractGateway), f"Got {type(gateway)}"
        if token is not None:
            assert spender is not None, "Approval flows need a spender"

        self.gateway = gateway
        self.account = account
        self.action = action
        self.token = token
        self.spender = spender
        self.decimals = decimals
        self.requires_amount = requires_amount
        self.rate_call = rate_call
        self.name = name

        self.state = FlowState.idle
        self.amount_text = ""
        self.balance: int | None = None
        self.allowance: int | None = None
        self.rate: int | None = None
        self.pending_tx: PendingTransaction | None = None
        self.last_error: Exception | None = None
        self.listeners: list[ConfirmationListener] = []

    def __repr__(self):
        return f"<TransactionFlow {self.name} {self.state.value} amount:{self.amount_text!r}>"

    @property
    def amount(self) -> int:
        """Raw amount of the typed input."""
        return parse_amount(self.amount_text, self.decimals)

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES

    def add_confirmation_listener(self, listener: ConfirmationListener):
        """Get called after each confirmed transaction, e.g. to refresh other views."""
        self.listeners.append(listener)

    def set_amount(self, text: str):
        """Update the typed amount.

        :raise InputError:
            If the text is not a decimal number. The previous input is kept.
        """
        if not is_valid_amount_input(text):
            raise InputError(f"Not a valid amount: {text!r}")
        self.amount_text = text
        if self.state in (FlowState.needs_approval, FlowState.ready):
            self._settle()

    def fill_max(self):
        """Set the input to the full known balance."""
        if self.balance:
            self.set_amount(format_max_amount(self.balance, self.decimals))

    def refresh(self):
        """Read balance and allowance and decide between approve and act.

        :raise FlowBusy:
            If a transaction is in flight

        :raise ReadFailed:
            If the reads fail. Previously read values are kept.
        """
        self._check_not_busy()

        if self.account is None:
            self.state = FlowState.idle
            return

        if self.token is None:
            self.state = FlowState.ready
            return

        self.state = FlowState.checking_allowance
        try:
            balance = self.gateway.read(ContractCall(self.token, "erc20", "balanceOf", (self.account,)))
            allowance = self.gateway.read(ContractCall(self.token, "erc20", "allowance", (self.account, self.spender)))
        except ReadFailed:
            self.state = FlowState.idle
            raise

        self.balance = balance
        self.allowance = allowance
        logger.debug("Flow %s refreshed, balance %d, allowance %d", self.name, balance, allowance)

        if self.rate_call is not None:
            try:
                self.rate = self.gateway.read(self.rate_call)
            except ReadFailed as e:
                # Estimates are display only, a stale rate must not block the flow
                logger.warning("Flow %s could not read rate, keeping %s: %s", self.name, self.rate, e)

        self._settle()

    def reset(self):
        """Clear a failed flow so the user can start again.

        Never touches a broadcast transaction.
        """
        self._check_not_busy()
        self.last_error = None
        self.state = FlowState.idle
        if self.account is not None and (self.token is None or self.allowance is not None):
            self._settle()

    def can_approve(self) -> bool:
        """Should the approve button be enabled."""
        return self.state == FlowState.needs_approval and self.amount > 0

    def can_submit(self) -> bool:
        """Should the action button be enabled."""
        if self.state != FlowState.ready:
            return False
        if not self.requires_amount:
            return True
        amount = self.amount
        if amount == 0:
            return False
        return self.balance is None or amount <= self.balance

    def submit_approval(self) -> TransactionOutcome:
        """Approve the spender for the typed amount.

        After confirmation allowance is read again.

        :raise InvalidFlowState:
            If we do not need an approval now

        :raise UserRejected:
            Signing declined, flow stays in ``needs_approval``

        :raise SubmissionFailed:
            Not broadcast, flow stays in ``needs_approval``

        :raise Reverted:
            Flow goes to ``failed``
        """
        self._check_not_busy()
        if self.token is None:
            raise InvalidFlowState(f"Flow {self.name} has no approval stage")
        if self.state != FlowState.needs_approval:
            raise InvalidFlowState(f"Flow {self.name} cannot approve in state {self.state.value}")

        call = ContractCall(self.token, "erc20", "approve", (self.spender, self.amount))
        return self._submit("approve", call)

    def submit_action(self, value: int | None = None) -> TransactionOutcome:
        """Broadcast the action and wait for it.

        After confirmation the input is cleared and balances are read again.

        :param value:
            Passed to the action factory. Defaults to the typed amount.

        :raise InputError:
            Zero amount or more than the balance, or no value for flows without an amount

        :raise InvalidFlowState:
            If not in ``ready`` state, e.g. approval is still needed

        :raise UserRejected:
            Signing declined, flow stays in ``ready``

        :raise SubmissionFailed:
            Not broadcast, flow stays in ``ready``

        :raise Reverted:
            Flow goes to ``failed``
        """
        self._check_not_busy()

        if self.requires_amount:
            amount = self.amount
            if amount == 0:
                raise InputError(f"Flow {self.name}: amount is zero")
            if self.balance is not None and amount > self.balance:
                raise InputError(f"Flow {self.name}: amount {amount} exceeds balance {self.balance}")
        else:
            if value is None:
                raise InputError(f"Flow {self.name} needs a value to act on")
            amount = 0

        if self.state != FlowState.ready:
            raise InvalidFlowState(f"Flow {self.name} cannot act in state {self.state.value}")

        call = self.action(value if value is not None else amount)
        return self._submit("action", call)

    def get_view(self) -> FlowView:
        amount = self.amount
        return FlowView(
            name=self.name,
            state=self.state,
            amount_text=self.amount_text,
            amount=amount,
            balance=self.balance,
            allowance=self.allowance,
            needs_approval=needs_approval(self.allowance, amount),
            busy=self.busy,
            can_approve=self.can_approve(),
            can_submit=self.can_submit(),
            last_error=str(self.last_error) if self.last_error else None,
            estimated_shares=self.get_estimated_shares(),
        )

    def get_estimated_shares(self) -> int | None:
        """Shares the typed amount would mint at the last read rate.

        Display only, see :py:func:`eth_vault.estimate.estimate_shares`.
        """
        if self.rate is None:
            return None
        return estimate_shares(self.amount, self.rate)

    def _check_not_busy(self):
        if self.busy:
            raise FlowBusy(f"Flow {self.name} has transaction {self.pending_tx} in flight")

    def _settle(self):
        if needs_approval(self.allowance, self.amount):
            self.state = FlowState.needs_approval
        else:
            self.state = FlowState.ready

    def _submit(self, kind: str, call: ContractCall) -> TransactionOutcome:
        if self.account is None:
            raise InvalidFlowState(f"Flow {self.name}: no account connected")

        previous_state = self.state
        self.state = FlowState.submitting
        self.last_error = None

        # Every exit path releases the in-flight slot
        try:
            tx_hash = self.gateway.write(call)
        except (UserRejected, SubmissionFailed) as e:
            logger.warning("Flow %s could not submit %s: %s", self.name, call, e)
            self.state = previous_state
            self.last_error = e
            raise
        except Exception as e:
            logger.exception("Flow %s crashed submitting %s", self.name, call)
            self.state = previous_state
            self.last_error = e
            raise

        self.pending_tx = tx_hash
        self.state = FlowState.awaiting_confirmation

        try:
            receipt = self.gateway.wait(tx_hash)
        except (Reverted, ConfirmationTimedOut) as e:
            logger.warning("Flow %s transaction %s failed: %s", self.name, tx_hash.hex(), e)
            self.pending_tx = None
            self.state = FlowState.failed
            self.last_error = e
            raise
        except Exception as e:
            # Broadcast already happened, we do not know if it lands
            logger.exception("Flow %s crashed waiting for %s", self.name, tx_hash.hex())
            self.pending_tx = None
            self.state = FlowState.failed
            self.last_error = e
            raise

        self.pending_tx = None
        self.state = FlowState.confirmed
        outcome = TransactionOutcome(kind=kind, call=call, tx_hash=tx_hash, receipt=receipt)
        logger.info("Flow %s %s confirmed in block %d", self.name, kind, receipt.block_number)

        if kind == "action":
            self.amount_text = ""

        self.state = FlowState.idle
        try:
            self.refresh()
        except ReadFailed as e:
            # The transaction went through, stale numbers get fixed on the next poll
            logger.warning("Flow %s could not refresh after confirmation: %s", self.name, e)

        for listener in self.listeners:
            listener(outcome)

        return outcome


def create_deposit_flow(
    gateway: ContractGateway,
    config: VaultConfig,
    account: HexAddress | str | None,
    minimum_mint: int = 0,
) -> TransactionFlow:
    """Deposit the deposit asset through the Teller.

    The vault contract pulls the tokens, so it is the approval spender.

    :param minimum_mint:
        Revert if fewer shares would be minted.
        Zero disables the guard, which is the default.
        See :py:func:`eth_vault.estimate.calculate_minimum_mint`.
    """
    assert minimum_mint >= 0

    def _deposit(amount: int) -> ContractCall:
        return ContractCall(
            config.teller_address,
            "teller",
            "deposit",
            (config.deposit_asset_address, amount, minimum_mint),
        )

    return TransactionFlow(
        gateway,
        account,
        action=_deposit,
        token=config.deposit_asset_address,
        spender=config.vault_address,
        decimals=config.asset_decimals,
        rate_call=ContractCall(config.accountant_address, "accountant", "getRate"),
        name="deposit",
    )


def create_withdraw_request_flow(
    gateway: ContractGateway,
    config: VaultConfig,
    account: HexAddress | str | None,
) -> TransactionFlow:
    """Queue vault shares for withdrawal.

    The queue pulls the shares, so it is the approval spender.
    """

    def _request_withdraw(amount: int) -> ContractCall:
        return ContractCall(config.queue_address, "withdraw_queue", "requestWithdraw", (amount,))

    return TransactionFlow(
        gateway,
        account,
        action=_request_withdraw,
        token=config.vault_address,
        spender=config.queue_address,
        decimals=config.share_decimals,
        name="withdraw_request",
    )


def create_cancel_flow(
    gateway: ContractGateway,
    config: VaultConfig,
    account: HexAddress | str | None,
) -> TransactionFlow:
    """Cancel withdrawal requests.

    No approval stage. The flow value is the request id.
    """

    def _cancel(request_id: int) -> ContractCall:
        assert request_id >= 1, f"Bad request id {request_id}"
        return ContractCall(config.queue_address, "withdraw_queue", "cancelWithdraw", (request_id,))

    return TransactionFlow(
        gateway,
        account,
        action=_cancel,
        requires_amount=False,
        name="cancel",
    )

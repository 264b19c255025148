"""Approve-then-act transaction flows against a scripted gateway."""

import pytest

from eth_vault.errors import FlowBusy, InputError, InvalidFlowState, ReadFailed, Reverted, SubmissionFailed, UserRejected
from eth_vault.flow import FlowState, TransactionFlow, create_cancel_flow, create_deposit_flow, create_withdraw_request_flow, needs_approval
from eth_vault.gateway import ContractCall


def _balance_call(token: str, account: str) -> ContractCall:
    return ContractCall(token, "erc20", "balanceOf", (account,))


def _allowance_call(token: str, account: str, spender: str) -> ContractCall:
    return ContractCall(token, "erc20", "allowance", (account, spender))


@pytest.fixture()
def deposit_flow(gateway, config, account) -> TransactionFlow:
    """Deposit flow for a user holding 1000 USDe with no allowance.

    Confirmed approvals and deposits move the scripted chain state.
    """
    token = config.deposit_asset_address
    gateway.set_read(_balance_call(token, account), 1000 * 10**18)
    gateway.set_read(_allowance_call(token, account, config.vault_address), 0)

    def _approve(call: ContractCall):
        spender, amount = call.args
        gateway.set_read(_allowance_call(token, account, spender), amount)

    def _deposit(call: ContractCall):
        _, amount, _ = call.args
        balance = gateway.reads[_balance_call(token, account)]
        allowance = gateway.reads[_allowance_call(token, account, config.vault_address)]
        gateway.set_read(_balance_call(token, account), balance - amount)
        gateway.set_read(_allowance_call(token, account, config.vault_address), allowance - amount)

    gateway.effects["approve"] = _approve
    gateway.effects["deposit"] = _deposit

    flow = create_deposit_flow(gateway, config, account)
    flow.refresh()
    return flow


@pytest.mark.parametrize(
    "allowance, amount, expected",
    [
        (None, 100, False),
        (0, 0, False),
        (0, 1, True),
        (99, 100, True),
        (100, 100, False),
        (101, 100, False),
    ],
)
def test_needs_approval(allowance, amount, expected):
    assert needs_approval(allowance, amount) == expected


def test_refresh_reads_balance_and_allowance(deposit_flow: TransactionFlow):
    assert deposit_flow.balance == 1000 * 10**18
    assert deposit_flow.allowance == 0
    # Nothing typed, nothing to approve
    assert deposit_flow.state == FlowState.ready
    assert not deposit_flow.can_submit()


def test_typing_amount_switches_to_approval(deposit_flow: TransactionFlow):
    deposit_flow.set_amount("100")
    assert deposit_flow.state == FlowState.needs_approval
    assert deposit_flow.can_approve()
    assert not deposit_flow.can_submit()

    deposit_flow.set_amount("")
    assert deposit_flow.state == FlowState.ready


def test_invalid_input_keeps_previous(deposit_flow: TransactionFlow):
    deposit_flow.set_amount("1.5")
    with pytest.raises(InputError):
        deposit_flow.set_amount("1.5.")
    assert deposit_flow.amount_text == "1.5"
    assert deposit_flow.amount == 1_500_000_000_000_000_000


def test_approve_then_deposit(gateway, config, deposit_flow: TransactionFlow):
    """Full deposit cycle with the default zero minimum mint."""
    amount = 100 * 10**18
    deposit_flow.set_amount("100")

    outcome = deposit_flow.submit_approval()
    assert outcome.kind == "approve"
    assert outcome.receipt.is_success()
    assert deposit_flow.allowance == amount
    assert deposit_flow.state == FlowState.ready
    # Approval does not clear the input
    assert deposit_flow.amount_text == "100"

    outcome = deposit_flow.submit_action()
    assert outcome.kind == "action"
    assert deposit_flow.amount_text == ""
    assert deposit_flow.balance == 900 * 10**18
    assert deposit_flow.allowance == 0
    assert deposit_flow.state == FlowState.ready

    assert gateway.writes == [
        ContractCall(config.deposit_asset_address, "erc20", "approve", (config.vault_address, amount)),
        ContractCall(config.teller_address, "teller", "deposit", (config.deposit_asset_address, amount, 0)),
    ]


def test_existing_allowance_skips_approval(gateway, config, account):
    token = config.deposit_asset_address
    gateway.set_read(_balance_call(token, account), 50 * 10**18)
    gateway.set_read(_allowance_call(token, account, config.vault_address), 2**256 - 1)

    flow = create_deposit_flow(gateway, config, account)
    flow.refresh()
    flow.set_amount("50")
    assert flow.state == FlowState.ready
    assert flow.can_submit()

    with pytest.raises(InvalidFlowState):
        flow.submit_approval()


def test_approved_less_than_final_amount(deposit_flow: TransactionFlow):
    """User approves 10, then types 20: approve again."""
    deposit_flow.set_amount("10")
    deposit_flow.submit_approval()
    assert deposit_flow.state == FlowState.ready

    deposit_flow.set_amount("20")
    assert deposit_flow.state == FlowState.needs_approval

    with pytest.raises(InvalidFlowState):
        deposit_flow.submit_action()


def test_rejected_approval(gateway, deposit_flow: TransactionFlow):
    """Declined signature leaves the flow where it was."""
    deposit_flow.set_amount("100")
    gateway.write_error = UserRejected("User denied transaction signature")

    with pytest.raises(UserRejected):
        deposit_flow.submit_approval()

    assert deposit_flow.state == FlowState.needs_approval
    assert deposit_flow.balance == 1000 * 10**18
    assert deposit_flow.allowance == 0
    assert deposit_flow.pending_tx is None
    assert isinstance(deposit_flow.last_error, UserRejected)
    assert gateway.writes == []

    # User can try again
    deposit_flow.submit_approval()
    assert deposit_flow.state == FlowState.ready


def test_submission_failed_keeps_ready(gateway, deposit_flow: TransactionFlow):
    deposit_flow.set_amount("100")
    deposit_flow.submit_approval()

    gateway.write_error = SubmissionFailed("execution reverted: ERC20: insufficient allowance")
    with pytest.raises(SubmissionFailed):
        deposit_flow.submit_action()

    assert deposit_flow.state == FlowState.ready
    assert deposit_flow.amount_text == "100"


def test_reverted_deposit(gateway, deposit_flow: TransactionFlow):
    """Mined but reverted goes to failed, reset lets the user start again."""
    deposit_flow.set_amount("100")
    deposit_flow.submit_approval()

    gateway.wait_error = Reverted("Transaction reverted", revert_reason="TellerWithMultiAssetSupport__Paused")
    with pytest.raises(Reverted):
        deposit_flow.submit_action()

    assert deposit_flow.state == FlowState.failed
    assert deposit_flow.pending_tx is None
    assert deposit_flow.get_view().last_error == "Transaction reverted"

    with pytest.raises(InvalidFlowState):
        deposit_flow.submit_action()

    deposit_flow.reset()
    assert deposit_flow.state == FlowState.ready
    assert deposit_flow.last_error is None

    # Not retried behind the user's back
    assert len(gateway.writes) == 2


def test_action_input_checks(deposit_flow: TransactionFlow):
    with pytest.raises(InputError):
        deposit_flow.submit_action()

    deposit_flow.set_amount("1000.000000000000000001")
    deposit_flow.allowance = 2**256 - 1
    deposit_flow.set_amount(deposit_flow.amount_text)
    assert deposit_flow.state == FlowState.ready
    assert not deposit_flow.can_submit()
    with pytest.raises(InputError):
        deposit_flow.submit_action()


def test_one_transaction_in_flight(gateway, deposit_flow: TransactionFlow):
    """Second submit while waiting for the receipt is refused."""
    errors = []
    approve_effect = gateway.effects["approve"]

    def _approve_and_double_submit(call: ContractCall):
        assert deposit_flow.state == FlowState.awaiting_confirmation
        assert deposit_flow.busy
        for action in (deposit_flow.submit_approval, deposit_flow.submit_action, deposit_flow.refresh, deposit_flow.reset):
            with pytest.raises(FlowBusy) as exc_info:
                action()
            errors.append(exc_info.value)
        approve_effect(call)

    gateway.effects["approve"] = _approve_and_double_submit

    deposit_flow.set_amount("5")
    deposit_flow.submit_approval()
    assert len(errors) == 4
    assert len(gateway.writes) == 1


def test_fill_max(deposit_flow: TransactionFlow):
    deposit_flow.fill_max()
    assert deposit_flow.amount_text == "1000"
    assert deposit_flow.amount == deposit_flow.balance


def test_refresh_read_failure(gateway, config, account, deposit_flow: TransactionFlow):
    gateway.failing_reads.add(_allowance_call(config.deposit_asset_address, account, config.vault_address))

    with pytest.raises(ReadFailed):
        deposit_flow.refresh()

    assert deposit_flow.state == FlowState.idle
    assert deposit_flow.balance == 1000 * 10**18


def test_no_account(gateway, config):
    flow = create_deposit_flow(gateway, config, None)
    flow.refresh()
    assert flow.state == FlowState.idle
    assert not flow.can_submit()
    assert gateway.read_log == []


def test_minimum_mint(gateway, config, account):
    token = config.deposit_asset_address
    gateway.set_read(_balance_call(token, account), 10 * 10**18)
    gateway.set_read(_allowance_call(token, account, config.vault_address), 10 * 10**18)

    flow = create_deposit_flow(gateway, config, account, minimum_mint=9 * 10**18)
    flow.refresh()
    flow.set_amount("10")
    flow.submit_action()

    assert gateway.writes[0].args == (token, 10 * 10**18, 9 * 10**18)


def test_withdraw_request_flow(gateway, config, account):
    """Shares are approved to the queue, then queued."""
    shares = config.vault_address
    gateway.set_read(_balance_call(shares, account), 3 * 10**18)
    gateway.set_read(_allowance_call(shares, account, config.queue_address), 0)
    gateway.effects["approve"] = lambda call: gateway.set_read(_allowance_call(shares, account, call.args[0]), call.args[1])

    flow = create_withdraw_request_flow(gateway, config, account)
    flow.refresh()
    flow.set_amount("2.5")
    flow.submit_approval()
    flow.submit_action()

    amount = 2_500_000_000_000_000_000
    assert gateway.writes == [
        ContractCall(shares, "erc20", "approve", (config.queue_address, amount)),
        ContractCall(config.queue_address, "withdraw_queue", "requestWithdraw", (amount,)),
    ]


def test_confirmation_listener(deposit_flow: TransactionFlow):
    outcomes = []
    deposit_flow.add_confirmation_listener(outcomes.append)
    deposit_flow.set_amount("1")
    deposit_flow.submit_approval()
    deposit_flow.submit_action()
    assert [o.kind for o in outcomes] == ["approve", "action"]


def test_view(deposit_flow: TransactionFlow):
    deposit_flow.set_amount("100")
    view = deposit_flow.get_view()
    assert view.name == "deposit"
    assert view.state == FlowState.needs_approval
    assert view.amount == 100 * 10**18
    assert view.needs_approval
    assert view.can_approve
    assert not view.can_submit
    assert not view.busy
    assert view.last_error is None


def test_unexpected_write_error_releases_flow(gateway, deposit_flow: TransactionFlow):
    """Node connection dies before broadcast: back to where we were, not stuck busy."""
    deposit_flow.set_amount("100")
    gateway.write_error = ConnectionError("Connection refused")

    with pytest.raises(ConnectionError):
        deposit_flow.submit_approval()

    assert deposit_flow.state == FlowState.needs_approval
    assert not deposit_flow.busy
    assert isinstance(deposit_flow.last_error, ConnectionError)

    deposit_flow.refresh()
    deposit_flow.reset()
    deposit_flow.submit_approval()
    assert deposit_flow.state == FlowState.ready


def test_unexpected_wait_error_fails_flow(gateway, deposit_flow: TransactionFlow):
    """Connection dies after broadcast: failed, and reset works."""
    deposit_flow.set_amount("100")
    gateway.wait_error = ConnectionError("Connection reset by peer")

    with pytest.raises(ConnectionError):
        deposit_flow.submit_approval()

    assert deposit_flow.state == FlowState.failed
    assert deposit_flow.pending_tx is None
    assert isinstance(deposit_flow.last_error, ConnectionError)

    deposit_flow.reset()
    assert deposit_flow.state == FlowState.needs_approval
    deposit_flow.refresh()
    assert deposit_flow.state == FlowState.needs_approval


def test_estimated_shares(gateway, config, deposit_flow: TransactionFlow):
    """Rate is read with balance and allowance."""
    assert deposit_flow.get_view().estimated_shares is None

    gateway.set_read(ContractCall(config.accountant_address, "accountant", "getRate"), 1_250_000_000_000_000_000)
    deposit_flow.refresh()
    deposit_flow.set_amount("100")

    view = deposit_flow.get_view()
    assert deposit_flow.rate == 1_250_000_000_000_000_000
    assert view.estimated_shares == 80 * 10**18

    deposit_flow.set_amount("")
    assert deposit_flow.get_view().estimated_shares == 0


def test_rate_read_failure_keeps_flow_usable(gateway, config, deposit_flow: TransactionFlow):
    rate_call = ContractCall(config.accountant_address, "accountant", "getRate")
    gateway.set_read(rate_call, 10**18)
    deposit_flow.refresh()

    gateway.failing_reads.add(rate_call)
    deposit_flow.refresh()
    deposit_flow.set_amount("10")

    assert deposit_flow.rate == 10**18
    assert deposit_flow.state == FlowState.needs_approval


def test_withdraw_request_flow_has_no_estimate(gateway, config):
    flow = create_withdraw_request_flow(gateway, config, None)
    assert flow.rate_call is None
    assert flow.get_view().estimated_shares is None


def test_cancel_flow_needs_request_id(gateway, config, account):
    flow = create_cancel_flow(gateway, config, account)
    flow.refresh()
    assert flow.state == FlowState.ready

    with pytest.raises(InputError):
        flow.submit_action()
    assert gateway.writes == []

    flow.submit_action(3)
    assert gateway.writes == [ContractCall(config.queue_address, "withdraw_queue", "cancelWithdraw", (3,))]

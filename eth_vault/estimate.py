"""Share estimations.

- Deposit: estimate number of shares we are going to receive
- Request value: estimate how much deposit asset queued shares are worth

The rate is the Accountant's ``getRate()``: deposit asset units per one share,
as a fixed point number with 18 decimals.

.. note::

    Estimates are for display only. Deposits are broadcast with ``minimumMint = 0``
    unless the caller passes a minimum, e.g. from :py:func:`calculate_minimum_mint`.
    The chain side is the only authority on the minted amount.

"""

import logging

from eth_vault.config import VaultConfig
from eth_vault.gateway import ContractCall, ContractGateway


logger = logging.getLogger(__name__)

#: Rate fixed point precision
RATE_DECIMALS = 18

#: 100% in basis points
BPS = 10_000


def estimate_shares(deposit_amount: int, rate: int) -> int:
    """Estimate how many shares a deposit mints.

    Multiply before divide, so no precision is lost in the intermediate result.

    :param deposit_amount:
        Raw deposit asset amount

    :param rate:
        Raw rate, ``10**18`` means one share is worth one deposit asset unit

    :return:
        Raw share amount, or zero if either input is zero
    """
    assert type(deposit_amount) == int, f"Got {type(deposit_amount)}"
    assert type(rate) == int, f"Got {type(rate)}"

    if rate == 0 or deposit_amount == 0:
        return 0
    return deposit_amount * 10**RATE_DECIMALS // rate


def estimate_assets(share_amount: int, rate: int) -> int:
    """Estimate the deposit asset value of shares at the current rate."""
    assert type(share_amount) == int, f"Got {type(share_amount)}"
    assert type(rate) == int, f"Got {type(rate)}"
    return share_amount * rate // 10**RATE_DECIMALS


def calculate_minimum_mint(estimate: int, slippage_bps: int) -> int:
    """Turn a share estimate into a ``minimumMint`` guard.

    Opt-in: pass the result as ``minimum_mint`` to :py:func:`eth_vault.flow.create_deposit_flow`.

    :param estimate:
        Raw share estimate from :py:func:`estimate_shares`

    :param slippage_bps:
        Tolerance, 50 = 0.5%
    """
    assert 0 <= slippage_bps < BPS, f"Bad slippage: {slippage_bps}"
    return estimate * (BPS - slippage_bps) // BPS


def fetch_rate(gateway: ContractGateway, config: VaultConfig) -> int:
    """Read the current share rate from the Accountant."""
    rate = gateway.read(ContractCall(config.accountant_address, "accountant", "getRate"))
    logger.debug("Share rate is %d", rate)
    return rate

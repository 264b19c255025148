"""Vault statistics.

Public numbers every visitor sees, and the position of the connected account.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from eth_typing import HexAddress

from eth_vault.amount import convert_to_decimals
from eth_vault.config import VaultConfig
from eth_vault.estimate import RATE_DECIMALS, estimate_assets, fetch_rate
from eth_vault.gateway import ContractCall, ContractGateway


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class VaultStats:
    """Snapshot of the vault numbers.

    All amounts raw.
    """

    #: Deposit asset held by the vault
    tvl: int

    #: Accountant rate, deposit asset per share with 18 decimals
    rate: int

    #: Shares of the account, ``None`` without an account
    share_balance: int | None = None

    #: Deposit asset in the wallet of the account, ``None`` without an account
    asset_balance: int | None = None

    def get_position_value(self) -> int | None:
        """Shares of the account valued in the deposit asset."""
        if self.share_balance is None:
            return None
        return estimate_assets(self.share_balance, self.rate)

    def get_rate_decimal(self) -> Decimal:
        return convert_to_decimals(self.rate, RATE_DECIMALS)


def fetch_vault_stats(
    gateway: ContractGateway,
    config: VaultConfig,
    account: HexAddress | str | None = None,
) -> VaultStats:
    """Read vault statistics.

    :param account:
        Also read balances of this account

    :raise ReadFailed:
        If any of the reads fails
    """
    tvl = gateway.read(ContractCall(config.deposit_asset_address, "erc20", "balanceOf", (config.vault_address,)))
    rate = fetch_rate(gateway, config)

    share_balance = asset_balance = None
    if account is not None:
        share_balance = gateway.read(ContractCall(config.vault_address, "erc20", "balanceOf", (account,)))
        asset_balance = gateway.read(ContractCall(config.deposit_asset_address, "erc20", "balanceOf", (account,)))

    stats = VaultStats(tvl=tvl, rate=rate, share_balance=share_balance, asset_balance=asset_balance)
    logger.debug("Vault stats: %s", stats)
    return stats

"""Vault deployment configuration.

Contract addresses and the constants the engine consumes but never computes.

Addresses can be overridden with environment variables:

.. code-block:: shell

    export JSON_RPC_URL=https://ethereum-rpc.publicnode.com
    export VAULT_ADDRESS=0x324dcd943a79Ff3497845479980F6bC936B8116E
    export QUEUE_ADDRESS=0x659c35aF4b862A93D9C1D61B4bAa6595f357dE70

"""

import datetime
import os
from dataclasses import dataclass, replace

from eth_typing import HexAddress
from web3 import Web3

#: Mainnet USDe vault share token (BoringVault)
VAULT_ADDRESS = "0x324dcd943a79Ff3497845479980F6bC936B8116E"

#: Teller accepting USDe deposits
TELLER_ADDRESS = "0x9a1f42B252cc0a7fEDD06010c3EA35ce24A4E779"

#: Withdrawal request queue
QUEUE_ADDRESS = "0x659c35aF4b862A93D9C1D61B4bAa6595f357dE70"

#: Accountant publishing the share rate
ACCOUNTANT_ADDRESS = "0x04D4E50cDC047b7E36460a813075D075AF59683d"

#: USDe on Ethereum mainnet
USDE_ADDRESS = "0x4c9EDD5852cd905f086C759E8383e09bff1E68B3"

#: Used until ``MATURITY_PERIOD`` has been read from the queue.
#:
#: 3 days.
DEFAULT_MATURITY_WINDOW = 259_200

#: How often we poll reads
DEFAULT_POLL_INTERVAL = datetime.timedelta(seconds=15)

#: Do not enumerate the withdrawal queue if it has more requests than this.
#:
#: Each request costs two reads.
DEFAULT_MAX_REQUEST_SCAN = 10_000

#: Default public Ethereum node used by the console script
DEFAULT_JSON_RPC_URL = "https://ethereum-rpc.publicnode.com"


@dataclass(slots=True, frozen=True)
class VaultConfig:
    """Where the vault contracts live and how we treat them."""

    #: Vault share token, also the spender of deposit approvals
    vault_address: HexAddress

    #: Teller taking deposits
    teller_address: HexAddress

    #: Withdrawal queue, spender of share approvals
    queue_address: HexAddress

    #: Accountant giving the exchange rate
    accountant_address: HexAddress

    #: The token users deposit
    deposit_asset_address: HexAddress

    #: Deposit asset decimals
    asset_decimals: int = 18

    #: Share token decimals
    share_decimals: int = 18

    #: Maturity window fallback in seconds
    default_maturity_window: int = DEFAULT_MATURITY_WINDOW

    #: Read poll interval
    poll_interval: datetime.timedelta = DEFAULT_POLL_INTERVAL

    #: Withdrawal queue enumeration cap
    max_request_scan: int = DEFAULT_MAX_REQUEST_SCAN

    def __post_init__(self):
        for name in ("vault_address", "teller_address", "queue_address", "accountant_address", "deposit_asset_address"):
            value = getattr(self, name)
            assert Web3.is_address(value.lower()), f"{name} is not an address: {value}"
        assert self.default_maturity_window > 0
        assert self.max_request_scan > 0

    @staticmethod
    def create_mainnet() -> "VaultConfig":
        """Configuration for the deployed USDe vault on Ethereum mainnet."""
        return VaultConfig(
            vault_address=VAULT_ADDRESS,
            teller_address=TELLER_ADDRESS,
            queue_address=QUEUE_ADDRESS,
            accountant_address=ACCOUNTANT_ADDRESS,
            deposit_asset_address=USDE_ADDRESS,
        )


#: Environment variable -> config field
_ENV_OVERRIDES = {
    "VAULT_ADDRESS": "vault_address",
    "TELLER_ADDRESS": "teller_address",
    "QUEUE_ADDRESS": "queue_address",
    "ACCOUNTANT_ADDRESS": "accountant_address",
    "DEPOSIT_ASSET_ADDRESS": "deposit_asset_address",
}


def read_config_from_env(base: VaultConfig | None = None) -> VaultConfig:
    """Read vault configuration, letting environment variables override addresses.

    :param base:
        Defaults. Mainnet deployment if not given.

    :raise AssertionError:
        If an overridden address is not a valid address
    """
    if base is None:
        base = VaultConfig.create_mainnet()

    overrides = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            overrides[field_name] = value

    return replace(base, **overrides)


def read_json_rpc_url() -> str:
    """Read the node URL from ``JSON_RPC_URL``, or use a public mainnet node."""
    return os.environ.get("JSON_RPC_URL") or DEFAULT_JSON_RPC_URL

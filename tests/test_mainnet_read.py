"""Read the deployed USDe vault on Ethereum mainnet."""

import os

import flaky
import pytest
from web3 import Web3

from eth_vault.config import VaultConfig
from eth_vault.gateway import Web3ContractGateway
from eth_vault.stats import fetch_vault_stats
from eth_vault.withdraw_queue import WithdrawalQueueTracker

JSON_RPC_ETHEREUM = os.environ.get("JSON_RPC_ETHEREUM")

pytestmark = pytest.mark.skipif(
    JSON_RPC_ETHEREUM is None,
    reason="Set JSON_RPC_ETHEREUM environment variable to Ethereum mainnet node to run this test",
)


@pytest.fixture(scope="module")
def web3() -> Web3:
    web3 = Web3(Web3.HTTPProvider(JSON_RPC_ETHEREUM))
    assert web3.eth.chain_id == 1
    return web3


@flaky.flaky
def test_mainnet_vault_stats(web3: Web3):
    config = VaultConfig.create_mainnet()
    gateway = Web3ContractGateway(web3)

    stats = fetch_vault_stats(gateway, config)
    assert stats.tvl >= 0
    assert stats.rate > 0
    assert gateway.get_block_number() > 20_000_000


@flaky.flaky
def test_mainnet_withdraw_queue(web3: Web3):
    config = VaultConfig.create_mainnet()
    gateway = Web3ContractGateway(web3)

    tracker = WithdrawalQueueTracker(gateway, config, "0x0000000000000000000000000000000000000001")
    assert tracker.get_maturity_window() > 0
    assert tracker.fetch_next_request_id() >= 1

"""Display USDe vault statistics and withdrawal requests of an account.

Shows a quick snapshot of:

- Vault TVL and the share rate
- Share and USDe balances of the account
- Withdrawal requests of the account and time left until they mature

Usage:

.. code-block:: shell

    export JSON_RPC_URL=https://ethereum-rpc.publicnode.com
    export ACCOUNT=0x...
    python scripts/vault-status.py

Set ``WATCH=true`` to keep refreshing on new blocks.

"""

import logging
import os
import sys

from tabulate import tabulate
from web3 import Web3

from eth_vault.amount import format_amount, shorten_address
from eth_vault.config import read_config_from_env, read_json_rpc_url
from eth_vault.errors import VaultEngineError
from eth_vault.estimate import estimate_assets
from eth_vault.gateway import Web3ContractGateway
from eth_vault.refresh import RefreshScheduler, run_refresh_loop
from eth_vault.stats import fetch_vault_stats
from eth_vault.utils import from_unix_timestamp, get_url_domain, setup_console_logging
from eth_vault.withdraw_queue import WithdrawalQueueTracker

logger = logging.getLogger(__name__)


def print_status(gateway: Web3ContractGateway, tracker: WithdrawalQueueTracker):
    config = tracker.config
    account = tracker.account

    stats = fetch_vault_stats(gateway, config, account)

    print(f"\nBlock: {gateway.get_block_number():,}")
    print(f"Vault: {config.vault_address}")
    print(f"TVL: {format_amount(stats.tvl, config.asset_decimals)} USDe")
    print(f"Share rate: {stats.get_rate_decimal():.6f} USDe")

    if account is None:
        print("\nSet ACCOUNT to see balances and withdrawal requests")
        return

    print(f"\nAccount: {shorten_address(account)}")
    print(f"Shares: {format_amount(stats.share_balance, config.share_decimals)}")
    print(f"Position value: {format_amount(stats.get_position_value(), config.asset_decimals)} USDe")
    print(f"Wallet: {format_amount(stats.asset_balance, config.asset_decimals)} USDe")

    rows = tracker.refresh()
    if not rows:
        print("\nNo withdrawal requests")
        return

    table = tabulate(
        [
            {
                "Request": row.request_id,
                "Shares": format_amount(row.share_amount, config.share_decimals),
                "Est. USDe": format_amount(estimate_assets(row.share_amount, stats.rate), config.asset_decimals),
                "Status": row.status.value,
                "Matures (UTC)": from_unix_timestamp(row.matures_at).strftime("%Y-%m-%d %H:%M"),
                "Time left": row.countdown,
            }
            for row in rows
        ],
        headers="keys",
        tablefmt="simple",
    )

    print("\nWithdrawal requests")
    print(table)
    print(f"\nShares in queue: {format_amount(tracker.get_pending_share_total(), config.share_decimals)}")


def main() -> int:
    setup_console_logging(default_log_level="info")

    json_rpc_url = read_json_rpc_url()
    config = read_config_from_env()
    account = os.environ.get("ACCOUNT") or None

    web3 = Web3(Web3.HTTPProvider(json_rpc_url))
    logger.info("Connecting to %s", get_url_domain(json_rpc_url))
    print(f"Connected to chain {web3.eth.chain_id}")

    gateway = Web3ContractGateway(web3, account=account)
    tracker = WithdrawalQueueTracker(gateway, config, account)

    try:
        if os.environ.get("WATCH") == "true":
            run_refresh_loop(
                gateway,
                [lambda: print_status(gateway, tracker)],
                RefreshScheduler(config.poll_interval),
            )
        else:
            print_status(gateway, tracker)
    except VaultEngineError as e:
        logger.error("Could not read vault status: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Embedded contract ABIs.

Only the functions the vault engine calls are included.

- ERC-20 for the deposit asset and the vault share token
- Teller for deposits
- WithdrawQueue for withdrawal requests
- Accountant for the exchange rate

Contract proxies are constructed with :py:func:`get_deployed_contract` and cached
per address, so repeated reads do not rebuild the web3.py contract classes.
"""

from functools import lru_cache

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract


#: Minimal ERC-20
ERC20_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

#: Teller: entry point for deposits.
#:
#: ``minimumMint`` is the slippage guard, see :py:func:`eth_vault.estimate.calculate_minimum_mint`.
TELLER_ABI = [
    {
        "type": "function",
        "name": "deposit",
        "stateMutability": "payable",
        "inputs": [
            {"name": "depositAsset", "type": "address"},
            {"name": "depositAmount", "type": "uint256"},
            {"name": "minimumMint", "type": "uint256"},
        ],
        "outputs": [{"name": "shares", "type": "uint256"}],
    },
]

#: Time-delayed withdrawal request queue
WITHDRAW_QUEUE_ABI = [
    {
        "type": "function",
        "name": "requestWithdraw",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "amountOfShares", "type": "uint96"}],
        "outputs": [{"name": "requestId", "type": "uint96"}],
    },
    {
        "type": "function",
        "name": "cancelWithdraw",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "requestId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getRequest",
        "stateMutability": "view",
        "inputs": [{"name": "requestId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "user", "type": "address"},
                    {"name": "amountOfShares", "type": "uint96"},
                    {"name": "creationTime", "type": "uint40"},
                    {"name": "completed", "type": "bool"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "isMatured",
        "stateMutability": "view",
        "inputs": [{"name": "requestId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "nextRequestId",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint96"}],
    },
    {
        "type": "function",
        "name": "MATURITY_PERIOD",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint24"}],
    },
]

#: Publishes the share exchange rate
ACCOUNTANT_ABI = [
    {
        "type": "function",
        "name": "getRate",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "rate", "type": "uint256"}],
    },
]

#: Map ABI names used in :py:class:`eth_vault.gateway.ContractCall` to the ABI data
ABIS = {
    "erc20": ERC20_ABI,
    "teller": TELLER_ABI,
    "withdraw_queue": WITHDRAW_QUEUE_ABI,
    "accountant": ACCOUNTANT_ABI,
}


def get_abi(name: str) -> list[dict]:
    """Get one of the embedded ABIs by its short name."""
    abi = ABIS.get(name)
    assert abi is not None, f"Unknown ABI {name}, we have {list(ABIS.keys())}"
    return abi


@lru_cache(maxsize=64)
def get_deployed_contract(
    web3: Web3,
    abi_name: str,
    address: HexAddress | str,
) -> Contract:
    """Get a contract proxy for a deployed contract.

    :param web3:
        Web3 instance

    :param abi_name:
        One of the keys of :py:data:`ABIS`

    :param address:
        Contract address, does not need to be checksummed
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, "get_deployed_contract() address was None"
    address = Web3.to_checksum_address(address)
    return web3.eth.contract(address=address, abi=get_abi(abi_name))

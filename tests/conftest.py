"""Shared fixtures.

:py:class:`FakeGateway` replays scripted contract reads and lets tests
decide how each write ends, so flows can be tested without a node.
"""

from typing import Any, Callable

import pytest
from hexbytes import HexBytes

from eth_vault.config import VaultConfig
from eth_vault.errors import ReadFailed
from eth_vault.gateway import ContractCall, ContractGateway, PendingTransaction, Receipt

#: Connected test user
USER = "0x1111111111111111111111111111111111111111"

#: Someone else with requests in the queue
OTHER_USER = "0x2222222222222222222222222222222222222222"


class FakeGateway(ContractGateway):
    """Contract gateway with scripted results.

    - Reads return what was set with :py:meth:`set_read`, unscripted reads fail
    - Writes are recorded. ``write_error`` / ``wait_error`` make the next write fail.
    - ``effects`` run on confirmation, keyed by method name, to move the scripted chain state
    """

    def __init__(self):
        self.reads: dict[ContractCall, Any] = {}
        self.failing_reads: set[ContractCall] = set()
        self.read_log: list[ContractCall] = []
        self.writes: list[ContractCall] = []
        self.pending: dict[HexBytes, ContractCall] = {}
        self.effects: dict[str, Callable[[ContractCall], None]] = {}
        self.write_error: Exception | None = None
        self.wait_error: Exception | None = None
        self.block_number = 20_000_000

    def set_read(self, call: ContractCall, value: Any):
        self.reads[call] = value

    def read(self, call: ContractCall) -> Any:
        self.read_log.append(call)
        if call in self.failing_reads:
            raise ReadFailed(f"Scripted failure {call}")
        if call not in self.reads:
            raise ReadFailed(f"Unscripted read {call}")
        return self.reads[call]

    def write(self, call: ContractCall) -> PendingTransaction:
        if self.write_error is not None:
            e = self.write_error
            self.write_error = None
            raise e

        self.writes.append(call)
        tx_hash = HexBytes(len(self.writes).to_bytes(32, "big"))
        self.pending[tx_hash] = call
        return tx_hash

    def wait(self, tx: PendingTransaction) -> Receipt:
        call = self.pending.pop(tx)
        if self.wait_error is not None:
            e = self.wait_error
            self.wait_error = None
            raise e

        self.block_number += 1
        effect = self.effects.get(call.method)
        if effect:
            effect(call)
        return Receipt(tx_hash=tx, block_number=self.block_number, status=1, gas_used=50_000)

    def get_block_number(self) -> int:
        return self.block_number


@pytest.fixture()
def config() -> VaultConfig:
    return VaultConfig.create_mainnet()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def account() -> str:
    return USER

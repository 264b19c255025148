"""Contract gateway.

The vault engine talks to the chain only through :py:class:`ContractGateway`:

- ``read()`` a view function
- ``write()`` a state changing function and get a pending transaction handle back
- ``wait()`` for the pending transaction to turn into a receipt

The engine never encodes ABI data or picks an RPC transport itself.
:py:class:`Web3ContractGateway` is the web3.py implementation.
Tests use a scripted fake gateway.

Example:

.. code-block:: python

    web3 = Web3(Web3.HTTPProvider(json_rpc_url))
    gateway = Web3ContractGateway(web3, account=Account.from_key(private_key))

    call = ContractCall(config.queue_address, "withdraw_queue", "nextRequestId")
    next_request_id = gateway.read(call)

"""

import datetime
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, TypeAlias

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3RPCError

from eth_vault.abi import get_deployed_contract
from eth_vault.errors import ConfirmationTimedOut, ReadFailed, Reverted, SubmissionFailed, UserRejected


logger = logging.getLogger(__name__)

#: Handle of a broadcast transaction.
#:
#: Transaction hash for web3.py.
PendingTransaction: TypeAlias = HexBytes

#: EIP-1193 error code for "User Rejected Request"
USER_REJECTED_ERROR_CODE = 4001


@dataclass(slots=True, frozen=True)
class ContractCall:
    """One contract function call with its arguments.

    Hashable, so fake gateways can key scripted results by the call.
    """

    #: Contract address
    target: HexAddress | str

    #: Which embedded ABI, see :py:data:`eth_vault.abi.ABIS`
    abi_name: str

    #: Solidity function name
    method: str

    #: Positional arguments
    args: tuple = ()

    def __post_init__(self):
        assert self.target.startswith("0x"), f"Bad target: {self.target}"
        assert type(self.args) == tuple, f"args must be tuple, got {type(self.args)}"

    def __repr__(self):
        args = ", ".join(str(a) for a in self.args)
        return f"<{self.abi_name} {self.target}.{self.method}({args})>"


@dataclass(slots=True, frozen=True)
class Receipt:
    """Mined transaction."""

    tx_hash: HexBytes
    block_number: int

    #: 1 = success, 0 = reverted
    status: int

    gas_used: int = 0

    def is_success(self) -> bool:
        return self.status == 1


class ContractGateway(ABC):
    """Read/write capability the vault engine consumes."""

    @abstractmethod
    def read(self, call: ContractCall) -> Any:
        """Call a view function.

        :raise ReadFailed:
            If the call reverted or the node failed
        """

    @abstractmethod
    def write(self, call: ContractCall) -> PendingTransaction:
        """Sign and broadcast a transaction.

        :return:
            Pending transaction handle to pass to :py:meth:`wait`

        :raise UserRejected:
            Signing was declined

        :raise SubmissionFailed:
            The transaction was not broadcast
        """

    @abstractmethod
    def wait(self, tx: PendingTransaction) -> Receipt:
        """Wait until a transaction is mined.

        :raise Reverted:
            The transaction was mined but failed

        :raise ConfirmationTimedOut:
            If the gateway has a confirmation timeout configured
        """

    @abstractmethod
    def get_block_number(self) -> int:
        """Current chain tip, used to detect new blocks."""


def _get_rpc_error(e: Exception) -> dict:
    """Dig out JSON-RPC error payload from different web3.py exception flavours."""
    rpc_response = getattr(e, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        return rpc_response["error"]

    if e.args and isinstance(e.args[0], dict):
        return e.args[0]

    return {"message": str(e)}


def is_user_rejection(e: Exception) -> bool:
    """Did the wallet refuse to sign.

    - EIP-1193 code 4001
    - MetaMask and WalletConnect style messages
    """
    error = _get_rpc_error(e)
    if error.get("code") == USER_REJECTED_ERROR_CODE:
        return True
    message = str(error.get("message", "")).lower()
    return "user rejected" in message or "user denied" in message


class Web3ContractGateway(ContractGateway):
    """Contract gateway using web3.py.

    - Node-managed accounts: the transaction is sent with ``transact({"from": address})``
    - Local private keys: pass a :py:class:`eth_account.signers.local.LocalAccount`
      and we sign and broadcast raw transactions

    Confirmation waits forever unless ``max_timeout`` is given.
    A timed out transaction is never broadcast again.
    """

    def __init__(
        self,
        web3: Web3,
        account: HexAddress | str | LocalAccount | None = None,
        gas: int | None = None,
        max_timeout: datetime.timedelta | None = None,
        poll_delay=datetime.timedelta(seconds=1),
        max_poll_errors: int = 10,
    ):
        """
        :param web3:
            Connected Web3 instance

        :param account:
            Account sending transactions. Reads work without.

        :param gas:
            Fixed gas limit. If not given, estimated by the node.

        :param max_timeout:
            Give up waiting for a receipt after this.

        :param poll_delay:
            How often we ask for the receipt

        :param max_poll_errors:
            Give up waiting after this many node errors in a row while polling the receipt
        """
        assert isinstance(web3, Web3), f"Got {type(web3)}"
        assert isinstance(poll_delay, datetime.timedelta)
        assert max_poll_errors > 0
        self.web3 = web3
        self.account = account
        self.gas = gas
        self.max_timeout = max_timeout
        self.poll_delay = poll_delay
        self.max_poll_errors = max_poll_errors

    def __repr__(self):
        return f"<Web3ContractGateway for {self.get_sender_address()}>"

    def get_sender_address(self) -> HexAddress | None:
        """Address of the account we write with, if any."""
        if self.account is None:
            return None
        if isinstance(self.account, LocalAccount):
            return self.account.address
        return Web3.to_checksum_address(self.account)

    def get_bound_function(self, call: ContractCall) -> ContractFunction:
        """Bind the call to a web3.py contract function."""
        contract = get_deployed_contract(self.web3, call.abi_name, call.target)
        args = [Web3.to_checksum_address(a) if isinstance(a, str) and Web3.is_address(a.lower()) else a for a in call.args]
        return getattr(contract.functions, call.method)(*args)

    def read(self, call: ContractCall) -> Any:
        try:
            func = self.get_bound_function(call)
            result = func.call()
        except (ContractLogicError, Web3RPCError, ValueError) as e:
            raise ReadFailed(f"Read {call} failed: {e}") from e
        except Exception as e:
            # Argument validation, connection errors and the like from web3.py and its transports
            raise ReadFailed(f"Read {call} crashed: {e.__class__.__name__}: {e}") from e
        logger.debug("Read %s: %s", call, result)
        return result

    def write(self, call: ContractCall) -> PendingTransaction:
        sender = self.get_sender_address()
        assert sender, f"No account configured, cannot write {call}"

        tx_params = {"from": sender}
        if self.gas:
            tx_params["gas"] = self.gas

        logger.info("Broadcasting %s from %s", call, sender)

        try:
            func = self.get_bound_function(call)
            if isinstance(self.account, LocalAccount):
                tx_params["nonce"] = self.web3.eth.get_transaction_count(sender)
                tx = func.build_transaction(tx_params)
                signed = self.account.sign_transaction(tx)
                tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = func.transact(tx_params)
        except ContractLogicError as e:
            # Gas estimation replays the call and hit a revert
            raise SubmissionFailed(f"Transaction {call} would revert: {e}") from e
        except (Web3RPCError, ValueError) as e:
            if is_user_rejection(e):
                logger.warning("User rejected %s", call)
                raise UserRejected(f"User rejected {call}") from e
            raise SubmissionFailed(f"Could not broadcast {call}: {e}") from e
        except Exception as e:
            raise SubmissionFailed(f"Could not broadcast {call}: {e.__class__.__name__}: {e}") from e

        tx_hash = HexBytes(tx_hash)
        logger.info("Broadcasted %s as %s", call, tx_hash.hex())
        return tx_hash

    def wait(self, tx: PendingTransaction) -> Receipt:
        tx_hash = HexBytes(tx)
        started_at = time.monotonic()
        poll_errors = 0

        while True:
            receipt = None
            try:
                receipt = self.web3.eth.get_transaction_receipt(tx_hash)
                poll_errors = 0
            except TransactionNotFound as e:
                logger.debug("Transaction not found yet: %s", e)
            except Exception as e:
                poll_errors += 1
                logger.warning("Could not poll receipt of %s, error %d/%d: %s", tx_hash.hex(), poll_errors, self.max_poll_errors, e)
                if poll_errors >= self.max_poll_errors:
                    raise ConfirmationTimedOut(f"Gave up polling {tx_hash.hex()} after {poll_errors} errors, it may still be mined: {e}") from e

            if receipt:
                break

            if self.max_timeout is not None and time.monotonic() - started_at > self.max_timeout.total_seconds():
                raise ConfirmationTimedOut(f"Transaction {tx_hash.hex()} not confirmed in {self.max_timeout}. Poll delay: {self.poll_delay.total_seconds()}s")

            time.sleep(self.poll_delay.total_seconds())

        result = Receipt(
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            gas_used=receipt.get("gasUsed", 0),
        )

        if not result.is_success():
            try:
                revert_reason = self.fetch_revert_reason(tx_hash, receipt["blockNumber"])
            except Exception as e:
                # The receipt already tells it reverted, the reason is a nicety
                logger.warning("Could not replay %s for the revert reason: %s", tx_hash.hex(), e)
                revert_reason = "<could not extract the revert reason>"
            raise Reverted(
                f"Transaction {tx_hash.hex()} reverted in block {result.block_number}: {revert_reason}",
                tx_hash=tx_hash,
                revert_reason=revert_reason,
            )

        logger.info("Confirmed %s in block %d", tx_hash.hex(), result.block_number)
        return result

    def fetch_revert_reason(
        self,
        tx_hash: HexBytes,
        block_number: int,
        unknown_error_message="<could not extract the revert reason>",
    ) -> str:
        """Replay a failed transaction to get its revert reason.

        Replays against the state before the block it was mined in,
        which needs an archive node for old blocks.
        """
        tx = self.web3.eth.get_transaction(tx_hash)
        replay_tx = {
            "to": tx["to"],
            "from": tx["from"],
            "value": tx["value"],
            "data": tx["input"],
            "gas": tx["gas"],
        }

        try:
            self.web3.eth.call(replay_tx, block_number - 1)
        except ContractLogicError as e:
            return e.args[0]
        except (Web3RPCError, ValueError) as e:
            logger.debug("Revert exception result is: %s", e)
            return str(_get_rpc_error(e).get("message", unknown_error_message))

        logger.warning("Transaction %s reverted, but replaying it succeeded", tx_hash.hex())
        return unknown_error_message

    def get_block_number(self) -> int:
        try:
            return self.web3.eth.block_number
        except Exception as e:
            raise ReadFailed(f"Could not read block number: {e.__class__.__name__}: {e}") from e

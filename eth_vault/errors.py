"""Exceptions raised by the vault engine.

None of these are fatal: each is raised to the caller of the action that caused it,
and the state of the flow that raised it is left so that the user can re-initiate.
"""

from hexbytes import HexBytes


class VaultEngineError(Exception):
    """Base class for all vault engine errors."""


class InputError(VaultEngineError):
    """The typed amount is malformed, zero or more than the balance.

    Raised before any transaction is issued.
    """


class InvalidFlowState(VaultEngineError):
    """Operation is not allowed in the current transaction flow state."""


class FlowBusy(InvalidFlowState):
    """The flow already has a transaction in flight.

    Only one pending transaction per flow.
    """


class CancelNotAllowed(InvalidFlowState):
    """Only pending withdrawal requests can be cancelled."""


class GatewayError(VaultEngineError):
    """Contract gateway read, write or wait failed."""


class ReadFailed(GatewayError):
    """A view call failed."""


class UserRejected(GatewayError):
    """The wallet declined to sign the transaction.

    Nothing was broadcast.
    """


class SubmissionFailed(GatewayError):
    """The transaction could not be broadcast.

    E.g. gas estimation reverted because the allowance or balance was stale,
    or the node refused the transaction.
    """


class Reverted(GatewayError):
    """The transaction was mined, but reverted."""

    def __init__(self, message: str, tx_hash: HexBytes | None = None, revert_reason: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class ConfirmationTimedOut(GatewayError):
    """We gave up waiting for the transaction receipt.

    The transaction may still be mined later.
    """

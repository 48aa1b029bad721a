"""
Error taxonomy for the SentiOasis session layer.

Operation-level failures (connect, register, request) are raised to the
caller as one of these types. Background failures (liveness polling) are
never raised; they are converted with :meth:`SessionError.to_info` and
stored on the relevant state object instead.
"""

from __future__ import annotations

from sentioasis_runtime.types import ErrorInfo

# User-facing messages shared with the web client
WALLET_NOT_INSTALLED = "MetaMask is not installed"
NO_ACCOUNTS_FOUND = "No accounts found"
FAILED_TO_CONNECT = "Failed to connect wallet"
CONTRACT_NOT_INITIALIZED = "Contract not initialized"
CONTRACT_ADDRESS_MISSING = (
    "Contract address not configured. "
    "Please set SENTIOASIS_CONTRACT_ADDRESS environment variable."
)


class SessionError(Exception):
    """Base class for every error raised by the session layer."""

    kind = "SessionError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = str(self)

    @classmethod
    def default_message(cls) -> str:
        return cls.kind

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message)


class ProviderUnavailable(SessionError):
    """No wallet provider is injected."""

    kind = "ProviderUnavailable"

    @classmethod
    def default_message(cls) -> str:
        return WALLET_NOT_INSTALLED


class NoAccountsAuthorized(SessionError):
    """The provider granted access but returned no accounts."""

    kind = "NoAccountsAuthorized"

    @classmethod
    def default_message(cls) -> str:
        return NO_ACCOUNTS_FOUND


class WalletConnectFailed(SessionError):
    """Any other provider failure while connecting."""

    kind = "WalletConnectFailed"

    @classmethod
    def default_message(cls) -> str:
        return FAILED_TO_CONNECT


class OperationInProgress(SessionError):
    """A non-reentrant operation was called while one is already running."""

    kind = "OperationInProgress"


class BindingFailed(SessionError):
    """Contract address, ABI or network mismatch detected by the verification read."""

    kind = "BindingFailed"


class ContractNotReady(SessionError):
    """A contract operation was called while the binding is not READY."""

    kind = "ContractNotReady"

    @classmethod
    def default_message(cls) -> str:
        return CONTRACT_NOT_INITIALIZED


class CallReverted(SessionError):
    """The contract rejected a call or transaction."""

    kind = "CallReverted"


class InsufficientPayment(CallReverted):
    """The attached value does not match the agent's price."""

    kind = "InsufficientPayment"


class TransientReadFailure(SessionError):
    """A read failed during a background refresh."""

    kind = "TransientReadFailure"


class TransactionFailed(SessionError):
    """The node rejected or never mined a transaction (funds, nonce, timeout)."""

    kind = "TransactionFailed"

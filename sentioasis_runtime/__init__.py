"""
SentiOasis runtime for Python.

Session and liveness coordination for the confidential sentiment
analysis marketplace: a wallet session, a verified contract binding on
top of it, and a monitor that infers whether the off-chain worker is
alive.

Example::

    from sentioasis_runtime import SentimentRuntime

    runtime = SentimentRuntime.from_settings()
    await runtime.connect()

    agents = await runtime.contract.enumerate_agents()
    unsubscribe = runtime.on_result(lambda result: print(result.sentiment))

    print(runtime.liveness.snapshot.is_online)

    unsubscribe()
    await runtime.close()
"""

from sentioasis_runtime.client import SentimentRuntime
from sentioasis_runtime.config import NETWORKS, Settings, get_network
from sentioasis_runtime.contract import ContractSession, MarketplaceContract
from sentioasis_runtime.errors import (
    BindingFailed,
    CallReverted,
    ContractNotReady,
    InsufficientPayment,
    NoAccountsAuthorized,
    OperationInProgress,
    ProviderUnavailable,
    SessionError,
    TransactionFailed,
    TransientReadFailure,
    WalletConnectFailed,
)
from sentioasis_runtime.events import EventManager, Subscription
from sentioasis_runtime.inference import InferenceClient, SentimentAnalysisService
from sentioasis_runtime.liveness import LivenessMonitor
from sentioasis_runtime.provider import RpcWalletProvider, Signer, WalletProvider
from sentioasis_runtime.types import (
    Agent,
    BindingStatus,
    ChainEvent,
    ConnectionStatus,
    ContractSessionState,
    ErrorInfo,
    LivenessSnapshot,
    NetworkConfig,
    PlatformStats,
    SentimentResult,
    TransactionResult,
    WalletSessionState,
    WorkerRegistration,
)
from sentioasis_runtime.wallet import WalletSession

__all__ = [
    "SentimentRuntime",
    "WalletSession",
    "ContractSession",
    "MarketplaceContract",
    "LivenessMonitor",
    "EventManager",
    "Subscription",
    "WalletProvider",
    "RpcWalletProvider",
    "Signer",
    "InferenceClient",
    "SentimentAnalysisService",
    "Settings",
    "NETWORKS",
    "get_network",
    "Agent",
    "BindingStatus",
    "ChainEvent",
    "ConnectionStatus",
    "ContractSessionState",
    "ErrorInfo",
    "LivenessSnapshot",
    "NetworkConfig",
    "PlatformStats",
    "SentimentResult",
    "TransactionResult",
    "WalletSessionState",
    "WorkerRegistration",
    "SessionError",
    "ProviderUnavailable",
    "NoAccountsAuthorized",
    "WalletConnectFailed",
    "OperationInProgress",
    "BindingFailed",
    "ContractNotReady",
    "CallReverted",
    "InsufficientPayment",
    "TransientReadFailure",
    "TransactionFailed",
]

__version__ = "0.1.0"

"""
Pydantic models for the SentiOasis runtime.

Every state object is frozen. Components never mutate a state in place;
they build a new value (usually with ``model_copy(update=...)``) and swap
it in with a single assignment, so readers never observe a half-updated
combination of fields.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


Sentiment = Literal["positive", "neutral", "negative"]


# ============================================================
#  Errors
# ============================================================


class ErrorInfo(BaseModel):
    """Serializable description of a failure attached to a state."""

    kind: str
    message: str

    model_config = {"frozen": True}


# ============================================================
#  Wallet session
# ============================================================


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class WalletSessionState(BaseModel):
    """Connection state of the user's signing wallet.

    ``account`` and ``chain_id`` are set if and only if
    ``connection_status`` is ``CONNECTED``.
    """

    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    account: str | None = None
    chain_id: int | None = None
    last_error: ErrorInfo | None = None

    model_config = {"frozen": True}

    @property
    def is_connected(self) -> bool:
        return self.connection_status is ConnectionStatus.CONNECTED


# ============================================================
#  Contract session
# ============================================================


class BindingStatus(str, Enum):
    IDLE = "idle"
    BINDING = "binding"
    READY = "ready"
    ERROR = "error"


class ContractSessionState(BaseModel):
    """Binding state of the marketplace contract.

    ``epoch`` increases on every bind attempt and every reset. A bind
    result only applies to the epoch it was started in.
    """

    binding_status: BindingStatus = BindingStatus.IDLE
    bound_address: str | None = None
    last_error: ErrorInfo | None = None
    epoch: int = 0

    model_config = {"frozen": True}

    @property
    def is_ready(self) -> bool:
        return self.binding_status is BindingStatus.READY


# ============================================================
#  Marketplace data
# ============================================================


class Agent(BaseModel):
    """Point-in-time projection of an on-chain agent record."""

    id: int
    owner: str
    model_endpoint: str = Field(alias="modelUrl")
    price: Decimal
    price_wei: int
    active: bool

    model_config = {"populate_by_name": True, "frozen": True}


class SentimentResult(BaseModel):
    """A sentiment result, either emitted on-chain or computed locally."""

    request_id: int
    sentiment: Sentiment
    confidence: int
    worker: str | None = None
    block_number: int | None = None
    observed_at: datetime

    model_config = {"frozen": True}


class WorkerRegistration(BaseModel):
    """An off-chain worker registration observed on-chain."""

    app_id: str
    worker_address: str
    block_number: int | None = None

    model_config = {"frozen": True}


class TransactionResult(BaseModel):
    """Receipt summary of a mined transaction."""

    tx_hash: str
    block_number: int
    status: int = 1

    model_config = {"frozen": True}


class ChainEvent(BaseModel):
    """A decoded contract log."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    block_number: int
    log_index: int = 0
    tx_hash: str | None = None
    timestamp: datetime | None = None

    model_config = {"frozen": True}


# ============================================================
#  Liveness
# ============================================================


class PlatformStats(BaseModel):
    """Aggregate counters reported by ``getPlatformStats``.

    ``fee_bps`` holds the contract's fee rate exactly as reported.
    """

    agent_count: int = 0
    request_count: int = 0
    fee_bps: int = 0
    total_fees: int = 0

    model_config = {"frozen": True}


class LivenessSnapshot(BaseModel):
    """Current belief about the off-chain worker.

    ``is_online`` is inferred from recent activity and decays when no new
    results are observed; it is not a direct health check.
    """

    worker_enabled: bool = False
    worker_address: str | None = None
    app_id: str | None = None
    is_online: bool = False
    last_activity_at: datetime | None = None
    processed_count: int = 0
    platform_stats: PlatformStats | None = None
    last_error: ErrorInfo | None = None
    refreshed_at: datetime | None = None

    model_config = {"frozen": True}


# ============================================================
#  Networks
# ============================================================


class NativeCurrency(BaseModel):
    name: str
    symbol: str
    decimals: int = 18

    model_config = {"frozen": True}


class NetworkConfig(BaseModel):
    """An EVM network the wallet can be asked to switch to."""

    chain_id: int
    chain_name: str
    rpc_url: str
    block_explorer_url: str | None = None
    native_currency: NativeCurrency

    model_config = {"frozen": True}

    @property
    def hex_chain_id(self) -> str:
        return hex(self.chain_id)

    def add_chain_params(self) -> dict[str, Any]:
        """Payload for ``wallet_addEthereumChain``."""
        params: dict[str, Any] = {
            "chainId": self.hex_chain_id,
            "chainName": self.chain_name,
            "nativeCurrency": self.native_currency.model_dump(),
            "rpcUrls": [self.rpc_url],
        }
        if self.block_explorer_url:
            params["blockExplorerUrls"] = [self.block_explorer_url]
        return params


# ============================================================
#  Inference
# ============================================================


class SentimentPrediction(BaseModel):
    """One ranked label from a text-classification model."""

    label: str
    score: float


class TransformerAnalysisResult(BaseModel):
    """Outcome of a single inference call."""

    predictions: list[SentimentPrediction] = Field(default_factory=list)
    model_used: str
    processing_time_ms: int = 0
    error: str | None = None


class ModelInfo(BaseModel):
    id: str
    task: str = "text-classification"
    library_name: str | None = None


class ModelValidationResult(BaseModel):
    is_valid: bool
    error: str | None = None
    model_info: ModelInfo | None = None


class TransformerModel(BaseModel):
    """A catalogued text-classification model."""

    id: str
    name: str
    model_id: str
    description: str
    task: str = "text-classification"
    labels: list[str] = Field(default_factory=list)


class SentimentDistribution(BaseModel):
    positive: int = 0
    neutral: int = 0
    negative: int = 0


class SentimentStatistics(BaseModel):
    """Aggregate over a list of :class:`SentimentResult`."""

    total: int = 0
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    average_confidence: int = 0
    distribution: SentimentDistribution = Field(default_factory=SentimentDistribution)

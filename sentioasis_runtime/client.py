"""
SentiOasis runtime: Python client.

Wires the wallet session, the contract session and the liveness monitor
together. Wallet changes rebind the contract; a ready contract starts
the monitor.

Usage::

    from sentioasis_runtime import SentimentRuntime

    runtime = SentimentRuntime.from_settings()
    await runtime.connect()
    print(runtime.wallet.account, runtime.contract.state.binding_status)

    agents = await runtime.contract.enumerate_agents()
    await runtime.contract.request_sentiment(agents[0].id, "great product", agents[0].price)

    print(runtime.liveness.snapshot.is_online)
    await runtime.close()
"""

from __future__ import annotations

import logging

from sentioasis_runtime.config import Settings
from sentioasis_runtime.contract import ContractFactory, ContractSession, ResultCallback
from sentioasis_runtime.events import Subscription
from sentioasis_runtime.inference import InferenceClient, SentimentAnalysisService
from sentioasis_runtime.liveness import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SCAN_WINDOW_BLOCKS,
    Clock,
    LivenessMonitor,
)
from sentioasis_runtime.provider import RpcWalletProvider, WalletProvider
from sentioasis_runtime.types import NetworkConfig, WalletSessionState
from sentioasis_runtime.wallet import WalletSession

logger = logging.getLogger(__name__)


class SentimentRuntime:
    """
    The main SentiOasis client.

    Owns one :class:`WalletSession`, one :class:`ContractSession` following
    it and one :class:`LivenessMonitor` following the contract.
    """

    def __init__(
        self,
        provider: WalletProvider | None,
        contract_address: str | None,
        *,
        network: NetworkConfig | None = None,
        contract_factory: ContractFactory | None = None,
        inference: InferenceClient | None = None,
        event_poll_interval: float = 5.0,
        liveness_poll_interval: float = DEFAULT_POLL_INTERVAL,
        scan_window_blocks: int = DEFAULT_SCAN_WINDOW_BLOCKS,
        clock: Clock | None = None,
    ) -> None:
        self._provider = provider
        self._owns_provider = False
        self._inference = inference
        self._owns_inference = False

        self.wallet = WalletSession(provider, network=network)
        self.contract = ContractSession(
            self.wallet,
            contract_address,
            contract_factory=contract_factory,
            event_poll_interval=event_poll_interval,
        )
        self.liveness = LivenessMonitor(
            self.contract,
            poll_interval=liveness_poll_interval,
            scan_window_blocks=scan_window_blocks,
            clock=clock,
        )
        self.analysis = SentimentAnalysisService(inference) if inference is not None else None
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SentimentRuntime:
        """Build a runtime from ``SENTIOASIS_*`` settings."""
        settings = settings or Settings()
        network = settings.resolved_network
        provider = RpcWalletProvider(network.rpc_url, private_key=settings.private_key or None)
        inference = InferenceClient(
            settings.huggingface_api_key or None,
            base_url=settings.inference_base_url,
            timeout=settings.inference_timeout,
            max_text_length=settings.max_text_length,
        )
        runtime = cls(
            provider,
            settings.contract_address,
            network=network,
            inference=inference,
            event_poll_interval=settings.event_poll_interval,
            liveness_poll_interval=settings.liveness_poll_interval,
            scan_window_blocks=settings.liveness_scan_window_blocks,
        )
        runtime._owns_provider = True
        runtime._owns_inference = True
        return runtime

    @property
    def is_connected(self) -> bool:
        return self.wallet.is_connected

    @property
    def address(self) -> str | None:
        """Connected account (set after connect)."""
        return self.wallet.account

    async def start(self) -> None:
        """Attach the sessions to their sources and watch the provider."""
        if self._started:
            return
        await self.contract.start()
        await self.liveness.start()
        if self._provider is not None:
            self._provider.start_watching()
        self._started = True

    async def connect(self) -> WalletSessionState:
        """Connect the wallet; the contract binds and the monitor starts."""
        await self.start()
        state = await self.wallet.connect()
        logger.info(
            "Runtime connected: account=%s contract=%s",
            state.account,
            self.contract.state.binding_status.value,
        )
        return state

    async def disconnect(self) -> None:
        await self.wallet.disconnect()

    def on_result(self, handler: ResultCallback) -> Subscription:
        """Subscribe to on-chain sentiment results for the current binding."""
        return self.contract.subscribe_to_results(handler)

    async def close(self) -> None:
        """Tear everything down and release owned resources."""
        await self.liveness.stop()
        await self.contract.close()
        if self._provider is not None:
            await self._provider.stop_watching()
        await self.wallet.close()
        if self._owns_provider and isinstance(self._provider, RpcWalletProvider):
            await self._provider.close()
        if self._owns_inference and self._inference is not None:
            await self._inference.close()
        self._started = False
        logger.info("Runtime closed")

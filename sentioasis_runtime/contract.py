"""
ContractSession: a verified marketplace contract handle bound to the
current wallet session, plus the typed domain operations on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, Web3Exception

from sentioasis_runtime.abi import (
    MARKETPLACE_ABI,
    SENTIMENT_RESULT_EVENT,
    WORKER_REGISTERED_EVENT,
)
from sentioasis_runtime.errors import (
    CONTRACT_ADDRESS_MISSING,
    BindingFailed,
    CallReverted,
    ContractNotReady,
    InsufficientPayment,
    TransactionFailed,
)
from sentioasis_runtime.events import EventManager, ListenerRegistry, StateListener, Subscription
from sentioasis_runtime.provider import Signer
from sentioasis_runtime.state import (
    INITIAL_CONTRACT_STATE,
    BindFailed,
    BindingReset,
    BindStarted,
    BindSucceeded,
    ContractAction,
    contract_transition,
)
from sentioasis_runtime.types import (
    Agent,
    BindingStatus,
    ChainEvent,
    ContractSessionState,
    PlatformStats,
    SentimentResult,
    TransactionResult,
    WalletSessionState,
    WorkerRegistration,
)
from sentioasis_runtime.validation import MAX_TEXT_LENGTH, is_valid_price, is_valid_url, validate_text
from sentioasis_runtime.wallet import WalletSession

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_BYTES32 = "0x" + "0" * 64
_SENTIMENTS = ("positive", "neutral", "negative")

ResultCallback = Callable[[SentimentResult], Awaitable[None] | None]
RegistrationCallback = Callable[[WorkerRegistration], Awaitable[None] | None]


def _to_ether(wei: int) -> Decimal:
    return Decimal(str(Web3.from_wei(wei, "ether")))


def _hexify(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


def _revert_error(exc: ContractLogicError) -> CallReverted:
    message = str(exc)
    lowered = message.lower()
    if "payment" in lowered or "price" in lowered:
        return InsufficientPayment(message)
    return CallReverted(message)


# ============================================================
#  Typed contract binding
# ============================================================


class MarketplaceContract:
    """Typed async wrapper over the marketplace contract.

    Reads go through ``eth_call``; writes are sent by the bound
    :class:`Signer` and awaited until mined.
    """

    def __init__(
        self,
        web3: AsyncWeb3,
        address: str,
        signer: Signer | None = None,
        abi: list[dict[str, Any]] | None = None,
    ) -> None:
        self.address = Web3.to_checksum_address(address)
        self._web3 = web3
        self._signer = signer
        self._contract = web3.eth.contract(address=self.address, abi=abi or MARKETPLACE_ABI)

    # ---- Reads ----

    async def get_agent_count(self) -> int:
        return int(await self._contract.functions.getAgentCount().call())

    async def get_agent(self, index: int) -> Agent:
        owner, model_url, price, active = await self._contract.functions.agents(index).call()
        return Agent(
            id=index,
            owner=owner,
            model_endpoint=model_url,
            price=_to_ether(price),
            price_wei=int(price),
            active=bool(active),
        )

    async def get_platform_stats(self) -> tuple[PlatformStats, bool]:
        """Return the platform counters and the worker-enabled flag."""
        total_agents, total_requests, total_fees, fee, rofl_active = (
            await self._contract.functions.getPlatformStats().call()
        )
        stats = PlatformStats(
            agent_count=int(total_agents),
            request_count=int(total_requests),
            fee_bps=int(fee),
            total_fees=int(total_fees),
        )
        return stats, bool(rofl_active)

    async def expected_app_id(self) -> str | None:
        raw = Web3.to_hex(await self._contract.functions.expectedROFLAppId().call())
        return None if raw == ZERO_BYTES32 else raw

    async def worker_address(self) -> str | None:
        address = await self._contract.functions.roflWorkerAddress().call()
        return None if not address or address == ZERO_ADDRESS else address

    async def worker_enabled(self) -> bool:
        return bool(await self._contract.functions.roflEnabled().call())

    async def block_number(self) -> int:
        return int(await self._web3.eth.block_number)

    async def block_timestamp(self, block_number: int) -> datetime:
        block = await self._web3.eth.get_block(block_number)
        return datetime.fromtimestamp(block["timestamp"], tz=timezone.utc)

    async def get_events(
        self, names: list[str], from_block: int, to_block: int
    ) -> list[ChainEvent]:
        events: list[ChainEvent] = []
        for name in names:
            event_type = getattr(self._contract.events, name)
            logs = await event_type().get_logs(from_block=from_block, to_block=to_block)
            for log in logs:
                events.append(
                    ChainEvent(
                        name=log["event"],
                        args={k: _hexify(v) for k, v in dict(log["args"]).items()},
                        block_number=log["blockNumber"],
                        log_index=log["logIndex"],
                        tx_hash=Web3.to_hex(log["transactionHash"]),
                    )
                )
        return events

    # ---- Writes ----

    async def register_agent(self, model_endpoint: str, price_wei: int) -> TransactionResult:
        return await self._transact(
            self._contract.functions.registerAgent(model_endpoint, price_wei)
        )

    async def request_sentiment(self, agent_id: int, text: str, value_wei: int) -> TransactionResult:
        return await self._transact(
            self._contract.functions.requestSentiment(agent_id, text), value=value_wei
        )

    async def _transact(self, call: Any, value: int = 0) -> TransactionResult:
        if self._signer is None:
            raise ContractNotReady("No signer bound to contract")
        try:
            tx_hash = await self._signer.send(call, value)
            receipt = await self._web3.eth.wait_for_transaction_receipt(tx_hash)
        except ContractLogicError as exc:
            raise _revert_error(exc) from exc
        except Web3Exception as exc:
            raise TransactionFailed(f"Transaction failed: {exc}") from exc

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise CallReverted(f"Transaction {tx_hex} reverted")
        return TransactionResult(
            tx_hash=tx_hex,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
        )


ContractFactory = Callable[[Any, str, Signer | None], MarketplaceContract]


def _to_sentiment_result(event: ChainEvent) -> SentimentResult:
    sentiment = str(event.args.get("sentiment", "")).lower()
    return SentimentResult(
        request_id=int(event.args.get("requestId", 0)),
        sentiment=sentiment if sentiment in _SENTIMENTS else "neutral",
        confidence=int(event.args.get("confidence", 0)),
        worker=event.args.get("worker"),
        block_number=event.block_number,
        observed_at=event.timestamp or datetime.now(timezone.utc),
    )


def _to_worker_registration(event: ChainEvent) -> WorkerRegistration:
    return WorkerRegistration(
        app_id=str(event.args.get("appId", "")),
        worker_address=str(event.args.get("workerAddress", "")),
        block_number=event.block_number,
    )


# ============================================================
#  Session
# ============================================================


class ContractSession:
    """Binds the marketplace contract to the connected wallet.

    Rebinds whenever the wallet enters ``CONNECTED`` with a new account
    or chain and returns to ``IDLE`` whenever it leaves ``CONNECTED``.
    The binding is only ``READY`` after a verification read succeeded.
    """

    def __init__(
        self,
        wallet: WalletSession,
        contract_address: str | None,
        *,
        contract_factory: ContractFactory | None = None,
        event_poll_interval: float = 5.0,
        max_text_length: int = MAX_TEXT_LENGTH,
    ) -> None:
        self._wallet = wallet
        self._address = contract_address or None
        self._factory: ContractFactory = contract_factory or MarketplaceContract
        self._event_poll_interval = event_poll_interval
        self._max_text_length = max_text_length

        self._state: ContractSessionState = INITIAL_CONTRACT_STATE
        self._contract: MarketplaceContract | None = None
        self._events: EventManager | None = None
        self._bound_key: tuple[str | None, int | None] | None = None
        self._bind_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._listeners = ListenerRegistry("contract")
        self._wallet_subscription: Subscription | None = None

    @property
    def state(self) -> ContractSessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state.is_ready

    @property
    def address(self) -> str | None:
        return self._address

    @property
    def contract(self) -> MarketplaceContract | None:
        """The verified contract handle, or ``None`` unless ``READY``."""
        return self._contract if self._state.is_ready else None

    @property
    def events(self) -> EventManager | None:
        return self._events if self._state.is_ready else None

    def subscribe(self, listener: StateListener) -> Subscription:
        """Register an ``(old_state, new_state)`` listener."""
        return self._listeners.add(listener)

    async def start(self) -> None:
        """Follow the wallet session, binding now if it is connected."""
        if self._wallet_subscription is None:
            self._wallet_subscription = self._wallet.subscribe(self._on_wallet_state)
        if self._wallet.is_connected:
            await self.bind()

    async def close(self) -> None:
        if self._wallet_subscription is not None:
            self._wallet_subscription.cancel()
            self._wallet_subscription = None
        await self.unbind()

    async def _on_wallet_state(self, old: WalletSessionState, new: WalletSessionState) -> None:
        if new.is_connected:
            if (new.account, new.chain_id) != self._bound_key:
                await self.bind()
        elif self._bound_key is not None or self._state.binding_status is not BindingStatus.IDLE:
            await self.unbind()

    async def _apply(self, action: ContractAction) -> None:
        old = self._state
        new = contract_transition(old, action)
        if new == old:
            return
        self._state = new
        await self._listeners.notify(old, new)

    async def _teardown(self) -> None:
        """Drop the handle and every event subscription on it."""
        events, self._events = self._events, None
        self._contract = None
        if events is not None:
            await events.stop()

    # ---- Binding ----

    async def bind(self) -> ContractSessionState:
        """(Re)bind to the configured address and verify it with a read.

        Concurrent calls queue behind each other.
        """
        async with self._bind_lock:
            await self._teardown()
            wallet_state = self._wallet.state
            if not wallet_state.is_connected:
                self._bound_key = None
                if self._state.binding_status is not BindingStatus.IDLE:
                    await self._apply(BindingReset())
                return self._state

            self._bound_key = (wallet_state.account, wallet_state.chain_id)
            await self._apply(BindStarted(address=self._address))
            epoch = self._state.epoch

            if not self._address:
                error = BindingFailed(CONTRACT_ADDRESS_MISSING)
                logger.warning("Contract binding failed: %s", error.message)
                await self._apply(BindFailed(epoch=epoch, error=error.to_info()))
                return self._state

            try:
                contract = self._factory(self._wallet.web3, self._address, self._wallet.signer)
                await contract.get_agent_count()
                events = EventManager(contract, poll_interval=self._event_poll_interval)
                await events.start()
            except Exception as exc:
                error = BindingFailed(
                    f"Contract call failed: {exc}. "
                    f"Check if the contract is deployed at {self._address}"
                )
                logger.warning("Contract binding failed: %s", error.message)
                await self._apply(BindFailed(epoch=epoch, error=error.to_info()))
                return self._state

            self._contract = contract
            self._events = events
            await self._apply(BindSucceeded(epoch=epoch))
            logger.info(
                "Contract bound at %s for %s on chain %s",
                self._address,
                wallet_state.account,
                wallet_state.chain_id,
            )
            return self._state

    async def unbind(self) -> None:
        """Return to ``IDLE``, tearing down the handle and subscriptions."""
        async with self._bind_lock:
            await self._teardown()
            self._bound_key = None
            if self._state.binding_status is not BindingStatus.IDLE:
                await self._apply(BindingReset())
                logger.info("Contract binding released")

    def _require_ready(self) -> MarketplaceContract:
        if not self._state.is_ready or self._contract is None:
            raise ContractNotReady()
        return self._contract

    def _require_events(self) -> EventManager:
        self._require_ready()
        if self._events is None:
            raise ContractNotReady("Event subscriptions unavailable")
        return self._events

    # ---- Domain operations ----

    async def register_agent(self, model_endpoint: str, price: str | Decimal) -> TransactionResult:
        """Register an agent and wait for the transaction to be mined.

        No local state changes: re-enumerate agents to observe the result.

        Raises:
            ContractNotReady: The binding is not ``READY``.
            ValueError: Invalid endpoint URL or non-positive price.
            CallReverted: The contract rejected the transaction.
            TransactionFailed: The node rejected the transaction or it was not mined.
        """
        self._require_ready()
        if not is_valid_url(model_endpoint):
            raise ValueError("Please enter a valid URL")
        if not is_valid_price(price):
            raise ValueError("Please enter a valid price greater than 0")
        price_wei = Web3.to_wei(Decimal(str(price)), "ether")

        async with self._write_lock:
            contract = self._require_ready()
            result = await contract.register_agent(model_endpoint, price_wei)
        logger.info("Agent registered (%s): tx=%s", model_endpoint, result.tx_hash)
        return result

    async def request_sentiment(
        self,
        agent_id: int,
        text: str,
        payment_amount: str | Decimal,
    ) -> TransactionResult:
        """Submit a sentiment request paying *payment_amount* (in ether).

        Raises:
            ContractNotReady: The binding is not ``READY``.
            ValueError: Invalid text or payment amount.
            InsufficientPayment: The payment does not match the agent's price.
            CallReverted: Any other contract rejection.
            TransactionFailed: The node rejected the transaction or it was not mined.
        """
        self._require_ready()
        cleaned = validate_text(text, max_length=self._max_text_length)
        try:
            amount = Decimal(str(payment_amount))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid payment amount: {payment_amount!r}") from exc
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"Invalid payment amount: {payment_amount!r}")
        value_wei = Web3.to_wei(amount, "ether")

        async with self._write_lock:
            contract = self._require_ready()
            result = await contract.request_sentiment(agent_id, cleaned, value_wei)
        logger.info("Sentiment request submitted for agent %d: tx=%s", agent_id, result.tx_hash)
        return result

    async def enumerate_agents(self) -> list[Agent]:
        """Read every agent record, in on-chain index order.

        One round trip per agent; cache the result instead of calling
        this on every render.
        """
        contract = self._require_ready()
        count = await contract.get_agent_count()
        agents: list[Agent] = []
        for index in range(count):
            agents.append(await contract.get_agent(index))
        return agents

    def subscribe_to_results(self, callback: ResultCallback) -> Subscription:
        """Deliver every ``SentimentResult`` emitted from now on."""
        events = self._require_events()

        async def _handle(event: ChainEvent) -> None:
            result = callback(_to_sentiment_result(event))
            if asyncio.iscoroutine(result):
                await result

        return events.subscribe(SENTIMENT_RESULT_EVENT, _handle)

    def subscribe_to_worker_registrations(self, callback: RegistrationCallback) -> Subscription:
        """Deliver every worker registration emitted from now on."""
        events = self._require_events()

        async def _handle(event: ChainEvent) -> None:
            result = callback(_to_worker_registration(event))
            if asyncio.iscoroutine(result):
                await result

        return events.subscribe(WORKER_REGISTERED_EVENT, _handle)

    # ---- Reads used by the liveness monitor ----

    async def get_platform_stats(self) -> tuple[PlatformStats, bool]:
        return await self._require_ready().get_platform_stats()

    async def get_worker_identity(self) -> tuple[str | None, str | None]:
        """Return ``(app_id, worker_address)`` of the registered worker."""
        contract = self._require_ready()
        app_id = await contract.expected_app_id()
        worker = await contract.worker_address()
        return app_id, worker

    async def is_worker_enabled(self) -> bool:
        return await self._require_ready().worker_enabled()

    async def recent_events(self, name: str, window_blocks: int) -> list[ChainEvent]:
        """Events named *name* within the trailing *window_blocks* blocks.

        The newest event carries its block timestamp.
        """
        contract = self._require_ready()
        latest = await contract.block_number()
        from_block = max(0, latest - window_blocks)
        events = await contract.get_events([name], from_block, latest)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        if events and events[-1].timestamp is None:
            newest = events[-1]
            stamped = newest.model_copy(
                update={"timestamp": await contract.block_timestamp(newest.block_number)}
            )
            events[-1] = stamped
        return events

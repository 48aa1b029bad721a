"""
Shared fakes for the SentiOasis runtime tests.

``FakeProvider`` stands in for an injected wallet and ``FakeMarketplace``
for the typed contract binding, so sessions can be exercised without a
live node.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from eth_abi import encode
from web3 import Web3
from web3.providers import AsyncBaseProvider

from sentioasis_runtime.errors import CallReverted, InsufficientPayment
from sentioasis_runtime.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED, Signer, WalletProvider
from sentioasis_runtime.types import Agent, ChainEvent, PlatformStats, TransactionResult

# Digit-only addresses are already in checksum form
ACCOUNT_A = "0x1111111111111111111111111111111111111111"
ACCOUNT_B = "0x2222222222222222222222222222222222222222"
CONTRACT_ADDRESS = "0x3333333333333333333333333333333333333333"
WORKER_ADDRESS = "0x4444444444444444444444444444444444444444"
APP_ID = "0x" + "ab" * 32

SAPPHIRE_TESTNET = 23295
GENESIS_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)
BLOCK_TIME = timedelta(seconds=6)


def block_time(number: int) -> datetime:
    return GENESIS_TIME + BLOCK_TIME * number


def make_agent(index: int, price: str = "0.1", owner: str = ACCOUNT_B) -> Agent:
    price_dec = Decimal(price)
    return Agent(
        id=index,
        owner=owner,
        model_endpoint=f"https://huggingface.co/org/model-{index}",
        price=price_dec,
        price_wei=int(price_dec * 10**18),
        active=True,
    )


class FakeProvider(WalletProvider):
    """In-memory wallet provider."""

    def __init__(self, accounts: list[str] | None = None, chain_id: int = SAPPHIRE_TESTNET) -> None:
        super().__init__()
        self.accounts = list(accounts) if accounts is not None else [ACCOUNT_A]
        self.chain_id = chain_id
        self.requests: list[tuple[str, Any]] = []
        self.reject_requests = False
        self.accounts_error: Exception | None = None
        self.gate: asyncio.Event | None = None

    @property
    def web3(self) -> None:
        return None

    async def request_accounts(self) -> list[str]:
        if self.gate is not None:
            await self.gate.wait()
        if self.accounts_error is not None:
            raise self.accounts_error
        return list(self.accounts)

    async def get_signer(self) -> Signer:
        return Signer(None, self.accounts[0])  # type: ignore[arg-type]

    async def get_network(self) -> int:
        return self.chain_id

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        self.requests.append((method, params))
        if self.reject_requests:
            raise RuntimeError("User rejected the request")
        return None

    async def push_accounts(self, accounts: list[str]) -> None:
        self.accounts = list(accounts)
        await self.emit(ACCOUNTS_CHANGED, accounts)

    async def push_chain(self, chain_id: int) -> None:
        self.chain_id = chain_id
        await self.emit(CHAIN_CHANGED, hex(chain_id))


class FakeMarketplace:
    """In-memory marketplace contract with a simple block clock."""

    def __init__(self, agents: list[Agent] | None = None, head: int = 100) -> None:
        self.agents = list(agents or [])
        self.head = head
        self.logs: list[ChainEvent] = []
        self.stats = PlatformStats(agent_count=len(self.agents), request_count=0, fee_bps=250, total_fees=0)
        self.rofl_active = True
        self.app_id: str | None = APP_ID
        self.worker: str | None = WORKER_ADDRESS
        self.check_error: Exception | None = None
        self.check_gate: asyncio.Event | None = None
        self.stats_error: Exception | None = None
        self.stats_gate: asyncio.Event | None = None
        self.identity_error: Exception | None = None
        self.events_error: Exception | None = None
        self.stats_calls = 0
        self.submitted: list[tuple[int, str, int]] = []

    # ---- Reads ----

    async def get_agent_count(self) -> int:
        if self.check_gate is not None:
            await self.check_gate.wait()
        if self.check_error is not None:
            raise self.check_error
        return len(self.agents)

    async def get_agent(self, index: int) -> Agent:
        return self.agents[index]

    async def get_platform_stats(self) -> tuple[PlatformStats, bool]:
        self.stats_calls += 1
        if self.stats_gate is not None:
            await self.stats_gate.wait()
        if self.stats_error is not None:
            raise self.stats_error
        return self.stats, self.rofl_active

    async def expected_app_id(self) -> str | None:
        if self.identity_error is not None:
            raise self.identity_error
        return self.app_id

    async def worker_address(self) -> str | None:
        if self.identity_error is not None:
            raise self.identity_error
        return self.worker

    async def worker_enabled(self) -> bool:
        return self.rofl_active

    async def block_number(self) -> int:
        return self.head

    async def block_timestamp(self, block_number: int) -> datetime:
        return block_time(block_number)

    async def get_events(self, names: list[str], from_block: int, to_block: int) -> list[ChainEvent]:
        if self.events_error is not None:
            raise self.events_error
        return [
            e for e in self.logs
            if e.name in names and from_block <= e.block_number <= to_block
        ]

    # ---- Writes ----

    def _mine(self) -> TransactionResult:
        self.head += 1
        return TransactionResult(tx_hash="0x" + f"{self.head:064x}", block_number=self.head)

    async def register_agent(self, model_endpoint: str, price_wei: int) -> TransactionResult:
        if price_wei <= 0:
            raise CallReverted("execution reverted: Price must be greater than 0")
        index = len(self.agents)
        self.agents.append(
            Agent(
                id=index,
                owner=ACCOUNT_A,
                model_endpoint=model_endpoint,
                price=Decimal(price_wei) / Decimal(10**18),
                price_wei=price_wei,
                active=True,
            )
        )
        return self._mine()

    async def request_sentiment(self, agent_id: int, text: str, value_wei: int) -> TransactionResult:
        if agent_id >= len(self.agents):
            raise CallReverted("execution reverted: Agent does not exist")
        if value_wei != self.agents[agent_id].price_wei:
            raise InsufficientPayment("execution reverted: Incorrect payment amount")
        self.submitted.append((agent_id, text, value_wei))
        return self._mine()

    # ---- Test helpers ----

    def emit(self, name: str, args: dict[str, Any], block: int | None = None) -> ChainEvent:
        if block is None:
            self.head += 1
            block = self.head
        event = ChainEvent(name=name, args=args, block_number=block, log_index=len(self.logs))
        self.logs.append(event)
        return event

    def emit_result(self, request_id: int = 1, block: int | None = None) -> ChainEvent:
        return self.emit(
            "SentimentResult",
            {"requestId": request_id, "sentiment": "POSITIVE", "confidence": 93, "worker": WORKER_ADDRESS},
            block,
        )

    def emit_registration(self, block: int | None = None) -> ChainEvent:
        return self.emit(
            "ROFLWorkerRegistered",
            {"appId": APP_ID, "workerAddress": WORKER_ADDRESS},
            block,
        )


class FakeFactory:
    """Contract factory returning a fixed :class:`FakeMarketplace`."""

    def __init__(self, market: FakeMarketplace) -> None:
        self.market = market
        self.calls: list[tuple[Any, str, Signer | None]] = []

    def __call__(self, web3: Any, address: str, signer: Signer | None) -> FakeMarketplace:
        self.calls.append((web3, address, signer))
        return self.market


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def market() -> FakeMarketplace:
    return FakeMarketplace([make_agent(0, "0.1"), make_agent(1, "0.2"), make_agent(2, "0.05")])


@pytest.fixture
def factory(market: FakeMarketplace) -> FakeFactory:
    return FakeFactory(market)


# ============================================================
#  JSON-RPC transport stub
# ============================================================


def selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


def topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


def abi_hex(types: list[str], values: list[Any]) -> str:
    return Web3.to_hex(encode(types, values))


def revert_error(reason: str) -> dict[str, Any]:
    """JSON-RPC error object for ``revert(reason)``."""
    return {
        "code": 3,
        "message": f"execution reverted: {reason}",
        "data": "0x08c379a0" + encode(["string"], [reason]).hex(),
    }


def _block_arg(value: Any, head: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    return head


class StubRpc(AsyncBaseProvider):
    """Async JSON-RPC transport answering from canned chain state."""

    def __init__(self, chain_id: int = SAPPHIRE_TESTNET) -> None:
        super().__init__()
        self.chain_id = chain_id
        self.accounts = [ACCOUNT_A]
        self.head = 100
        self.call_results: dict[str, str] = {}
        self.logs: list[dict[str, Any]] = []
        self.errors: dict[str, dict[str, Any]] = {}
        self.receipt_status = 1
        self.calls: list[tuple[str, Any]] = []

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return True

    async def disconnect(self) -> None:
        return None

    @property
    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def params_for(self, method: str) -> list[Any]:
        return [params for m, params in self.calls if m == method]

    async def make_request(self, method: str, params: Any) -> dict[str, Any]:
        self.calls.append((method, params))
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": 1, "error": self.errors[method]}
        handler = getattr(self, f"_{method}", None)
        if handler is None:
            return {
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": -32601, "message": f"the method {method} does not exist"},
            }
        return {"jsonrpc": "2.0", "id": 1, "result": handler(params)}

    def _eth_chainId(self, params: Any) -> str:
        return hex(self.chain_id)

    def _eth_accounts(self, params: Any) -> list[str]:
        return list(self.accounts)

    def _eth_blockNumber(self, params: Any) -> str:
        return hex(self.head)

    def _eth_getBlockByNumber(self, params: Any) -> dict[str, Any]:
        number = _block_arg(params[0], self.head)
        return {
            "number": hex(number),
            "hash": "0x" + f"{number:064x}",
            "parentHash": "0x" + f"{max(number - 1, 0):064x}",
            "timestamp": hex(int(block_time(number).timestamp())),
            "baseFeePerGas": hex(7),
            "gasLimit": hex(30_000_000),
            "gasUsed": "0x0",
            "transactions": [],
        }

    def _eth_gasPrice(self, params: Any) -> str:
        return hex(10**9)

    def _eth_maxPriorityFeePerGas(self, params: Any) -> str:
        return hex(10**9)

    def _eth_estimateGas(self, params: Any) -> str:
        return hex(100_000)

    def _eth_getTransactionCount(self, params: Any) -> str:
        return hex(5)

    def _eth_call(self, params: Any) -> str:
        tx = params[0]
        data = tx.get("data") or tx.get("input")
        return self.call_results[data[:10].lower()]

    def _tx_hash(self) -> str:
        return "0x" + f"{len(self.calls):064x}"

    def _eth_sendTransaction(self, params: Any) -> str:
        return self._tx_hash()

    def _eth_sendRawTransaction(self, params: Any) -> str:
        return self._tx_hash()

    def _eth_getTransactionReceipt(self, params: Any) -> dict[str, Any]:
        self.head += 1
        return {
            "transactionHash": params[0],
            "transactionIndex": "0x0",
            "blockHash": "0x" + f"{self.head:064x}",
            "blockNumber": hex(self.head),
            "from": ACCOUNT_A,
            "to": CONTRACT_ADDRESS,
            "cumulativeGasUsed": hex(21_000),
            "gasUsed": hex(21_000),
            "effectiveGasPrice": hex(10**9),
            "contractAddress": None,
            "logs": [],
            "logsBloom": "0x" + "00" * 256,
            "status": hex(self.receipt_status),
            "type": "0x2",
        }

    def _eth_getLogs(self, params: Any) -> list[dict[str, Any]]:
        query = params[0]
        from_block = _block_arg(query.get("fromBlock"), 0)
        to_block = _block_arg(query.get("toBlock"), self.head)
        wanted = (query.get("topics") or [None])[0]
        if isinstance(wanted, str):
            wanted = [wanted]
        return [
            log for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block
            and (wanted is None or log["topics"][0] in [w.lower() for w in wanted])
        ]

    # ---- Log builders ----

    def _log(self, topics: list[str], data: str, block: int) -> dict[str, Any]:
        index = len(self.logs)
        log = {
            "address": CONTRACT_ADDRESS,
            "topics": topics,
            "data": data,
            "blockNumber": hex(block),
            "blockHash": "0x" + f"{block:064x}",
            "transactionHash": "0x" + f"{1000 + index:064x}",
            "transactionIndex": "0x0",
            "logIndex": hex(index),
            "removed": False,
        }
        self.logs.append(log)
        return log

    def add_result_log(self, request_id: int, sentiment: str, confidence: int, block: int) -> dict[str, Any]:
        return self._log(
            [topic("SentimentResult(uint256,string,uint256,address)"), "0x" + f"{request_id:064x}"],
            abi_hex(["string", "uint256", "address"], [sentiment, confidence, WORKER_ADDRESS]),
            block,
        )

    def add_registration_log(self, block: int) -> dict[str, Any]:
        return self._log(
            [topic("ROFLWorkerRegistered(bytes32,address)")],
            abi_hex(["bytes32", "address"], [bytes.fromhex("ab" * 32), WORKER_ADDRESS]),
            block,
        )


@pytest.fixture
def rpc() -> StubRpc:
    return StubRpc()

"""
Wallet providers: the signing collaborators a :class:`WalletSession` talks to.

A provider mirrors the browser wallet surface (EIP-1193): it grants
accounts, hands out a signer, reports the chain, forwards raw wallet
requests such as ``wallet_switchEthereumChain`` and pushes
``accountsChanged`` / ``chainChanged`` notifications to listeners.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Awaitable, Callable

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.providers import AsyncBaseProvider

logger = logging.getLogger(__name__)

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"

ProviderHandler = Callable[[Any], Awaitable[None] | None]


class Signer:
    """Sends state-changing contract calls on behalf of one account.

    With a local key the transaction is built, signed and sent raw;
    otherwise the node signs for its own managed account.
    """

    def __init__(
        self,
        web3: AsyncWeb3,
        address: str,
        account: LocalAccount | None = None,
    ) -> None:
        self._web3 = web3
        self.address = address
        self._account = account

    @property
    def is_local(self) -> bool:
        return self._account is not None

    async def send(self, call: Any, value: int = 0) -> bytes:
        """Submit a bound contract function call and return the tx hash."""
        params: dict[str, Any] = {"from": self.address}
        if value:
            params["value"] = value

        if self._account is None:
            return await call.transact(params)

        params["nonce"] = await self._web3.eth.get_transaction_count(
            self.address, "pending"
        )
        tx = await call.build_transaction(params)
        signed = self._account.sign_transaction(tx)
        return await self._web3.eth.send_raw_transaction(signed.raw_transaction)


class WalletProvider(ABC):
    """Abstract injected wallet provider."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[ProviderHandler]] = defaultdict(list)

    @property
    @abstractmethod
    def web3(self) -> AsyncWeb3 | None:
        """Web3 handle used to build contract bindings."""

    @abstractmethod
    async def request_accounts(self) -> list[str]:
        """Ask the user for account access (``eth_requestAccounts``)."""

    @abstractmethod
    async def get_signer(self) -> Signer:
        """Return a signer for the first authorized account."""

    @abstractmethod
    async def get_network(self) -> int:
        """Return the chain id the provider is currently on."""

    @abstractmethod
    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Forward a raw wallet/JSON-RPC request."""

    # ---- Notifications ----

    def on(self, event: str, handler: ProviderHandler) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: ProviderHandler) -> None:
        handlers = self._listeners.get(event, [])
        self._listeners[event] = [h for h in handlers if h != handler]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def start_watching(self) -> None:
        """Begin pushing notifications. Providers that push natively need nothing."""

    async def stop_watching(self) -> None:
        """Stop pushing notifications started by :meth:`start_watching`."""

    async def emit(self, event: str, payload: Any) -> None:
        """Push a notification to every registered handler."""
        for handler in list(self._listeners.get(event, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in provider handler for %s", event)


class RpcWalletProvider(WalletProvider):
    """Wallet provider backed by a JSON-RPC endpoint.

    Uses a local ``eth_account`` key when *private_key* is given and the
    node's managed accounts otherwise. Providers talking to a plain RPC
    node do not push notifications by themselves, so
    :meth:`start_watching` polls accounts and chain id and emits the
    changes it sees. *transport* replaces the default HTTP transport.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str | None = None,
        watch_interval: float = 2.0,
        transport: AsyncBaseProvider | None = None,
    ) -> None:
        super().__init__()
        self.rpc_url = rpc_url
        self._web3 = AsyncWeb3(transport or AsyncHTTPProvider(rpc_url))
        self._account: LocalAccount | None = (
            Account.from_key(private_key) if private_key else None
        )
        self._watch_interval = watch_interval
        self._watch_task: asyncio.Task[None] | None = None
        self._last_accounts: list[str] | None = None
        self._last_chain_id: int | None = None

    @property
    def web3(self) -> AsyncWeb3:
        return self._web3

    async def request_accounts(self) -> list[str]:
        if self._account is not None:
            return [self._account.address]
        return list(await self._web3.eth.accounts)

    async def get_signer(self) -> Signer:
        accounts = await self.request_accounts()
        if not accounts:
            raise RuntimeError("No accounts available for signing")
        return Signer(self._web3, accounts[0], self._account)

    async def get_network(self) -> int:
        return int(await self._web3.eth.chain_id)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        if method == "eth_requestAccounts":
            return await self.request_accounts()
        response = await self._web3.provider.make_request(method, params or [])
        if "error" in response:
            err = response["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise RuntimeError(f"RPC {method} failed: {message}")
        return response.get("result")

    async def use_account(self, private_key: str | None) -> None:
        """Switch the signing key and notify listeners."""
        self._account = Account.from_key(private_key) if private_key else None
        accounts = await self.request_accounts()
        self._last_accounts = accounts
        await self.emit(ACCOUNTS_CHANGED, accounts)

    # ---- Watching ----

    @property
    def is_watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    def start_watching(self) -> None:
        if self._watch_task and not self._watch_task.done():
            return
        self._watch_task = asyncio.create_task(self._watch_loop())

    async def stop_watching(self) -> None:
        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        self._watch_task = None

    async def _watch_loop(self) -> None:
        """Poll accounts and chain id and emit changes."""
        try:
            while True:
                await asyncio.sleep(self._watch_interval)
                try:
                    accounts = await self.request_accounts()
                    chain_id = await self.get_network()
                except Exception:
                    logger.debug("Provider watch failed, will retry next interval")
                    continue
                if self._last_accounts is not None and accounts != self._last_accounts:
                    await self.emit(ACCOUNTS_CHANGED, accounts)
                if self._last_chain_id is not None and chain_id != self._last_chain_id:
                    await self.emit(CHAIN_CHANGED, hex(chain_id))
                self._last_accounts = accounts
                self._last_chain_id = chain_id
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        await self.stop_watching()
        await self._web3.provider.disconnect()

"""
WalletSession: the single source of truth for "do we have an authorized,
connected signing account, and on which network".
"""

from __future__ import annotations

import logging
from typing import Any

from web3 import AsyncWeb3, Web3

from sentioasis_runtime.errors import (
    NoAccountsAuthorized,
    OperationInProgress,
    ProviderUnavailable,
    SessionError,
    WalletConnectFailed,
)
from sentioasis_runtime.events import ListenerRegistry, StateListener, Subscription
from sentioasis_runtime.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED, Signer, WalletProvider
from sentioasis_runtime.state import (
    INITIAL_WALLET_STATE,
    AccountsChanged,
    ChainChanged,
    ConnectFailed,
    ConnectStarted,
    ConnectSucceeded,
    Disconnected,
    WalletAction,
    wallet_transition,
)
from sentioasis_runtime.types import ConnectionStatus, NetworkConfig, WalletSessionState

logger = logging.getLogger(__name__)


def _parse_chain_id(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


class WalletSession:
    """Owns the connection to the user's signing provider.

    State changes are pushed to listeners registered with
    :meth:`subscribe`; listeners are awaited before the triggering
    operation returns.
    """

    def __init__(
        self,
        provider: WalletProvider | None,
        network: NetworkConfig | None = None,
    ) -> None:
        self._provider = provider
        self._network = network
        self._state: WalletSessionState = INITIAL_WALLET_STATE
        self._signer: Signer | None = None
        self._listeners = ListenerRegistry("wallet")

        if provider is not None:
            provider.on(ACCOUNTS_CHANGED, self._handle_accounts_changed)
            provider.on(CHAIN_CHANGED, self._handle_chain_changed)

    @property
    def state(self) -> WalletSessionState:
        return self._state

    @property
    def account(self) -> str | None:
        return self._state.account

    @property
    def chain_id(self) -> int | None:
        return self._state.chain_id

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def provider(self) -> WalletProvider | None:
        return self._provider

    @property
    def signer(self) -> Signer | None:
        """Signer for the connected account (``None`` unless connected)."""
        return self._signer

    @property
    def web3(self) -> AsyncWeb3 | None:
        return self._provider.web3 if self._provider is not None else None

    def subscribe(self, listener: StateListener) -> Subscription:
        """Register an ``(old_state, new_state)`` listener."""
        return self._listeners.add(listener)

    async def _apply(self, action: WalletAction) -> None:
        old = self._state
        new = wallet_transition(old, action)
        if new == old:
            return
        self._state = new
        if not new.is_connected:
            self._signer = None
        await self._listeners.notify(old, new)

    async def _fail(self, error: SessionError) -> None:
        if self._state.connection_status is not ConnectionStatus.CONNECTING:
            # disconnect() ran while we were waiting on the provider
            logger.info("Superseded wallet connection failed: %s", error.message)
            return
        logger.warning("Wallet connection failed: %s", error.message)
        await self._apply(ConnectFailed(error=error.to_info()))

    # ---- Operations ----

    async def connect(self) -> WalletSessionState:
        """Request account access and establish the session.

        Raises:
            OperationInProgress: A connection attempt is already running.
            ProviderUnavailable: No provider is injected.
            NoAccountsAuthorized: Access was granted with no accounts.
            WalletConnectFailed: Any other provider failure.
        """
        if self._state.connection_status is ConnectionStatus.CONNECTING:
            raise OperationInProgress("Wallet connection already in progress")

        await self._apply(ConnectStarted())
        try:
            if self._provider is None:
                raise ProviderUnavailable()
            accounts = await self._provider.request_accounts()
            if not accounts:
                raise NoAccountsAuthorized()
            signer = await self._provider.get_signer()
            chain_id = _parse_chain_id(await self._provider.get_network())
        except SessionError as exc:
            await self._fail(exc)
            raise
        except Exception as exc:
            error = WalletConnectFailed(str(exc) or None)
            await self._fail(error)
            raise error from exc

        if self._state.connection_status is not ConnectionStatus.CONNECTING:
            # disconnect() ran while we were waiting on the provider
            logger.info("Wallet connection superseded before completion")
            return self._state

        self._signer = signer
        account = Web3.to_checksum_address(accounts[0])
        await self._apply(ConnectSucceeded(account=account, chain_id=chain_id))
        logger.info("Wallet connected as %s on chain %d", account, chain_id)
        return self._state

    async def disconnect(self) -> None:
        """Reset to the initial state. Safe to call in any state."""
        was_connected = self._state.connection_status is not ConnectionStatus.DISCONNECTED
        await self._apply(Disconnected())
        if was_connected:
            logger.info("Wallet disconnected")

    async def switch_network(self, target: NetworkConfig | None = None) -> bool:
        """Ask the provider to add and switch to *target* (best effort).

        Failures are logged, never raised: the user may simply decline the
        prompt. Returns whether both requests went through. The session
        state only changes once the provider pushes ``chainChanged``.
        """
        network = target or self._network
        try:
            if self._provider is None:
                raise ProviderUnavailable()
            if network is None:
                raise ValueError("No target network configured")
            await self._provider.request("wallet_addEthereumChain", [network.add_chain_params()])
            await self._provider.request(
                "wallet_switchEthereumChain", [{"chainId": network.hex_chain_id}]
            )
        except Exception as exc:
            name = network.chain_name if network is not None else "target network"
            logger.warning("Failed to switch to %s: %s", name, exc)
            return False
        return True

    async def close(self) -> None:
        """Detach from the provider and disconnect."""
        if self._provider is not None:
            self._provider.remove_listener(ACCOUNTS_CHANGED, self._handle_accounts_changed)
            self._provider.remove_listener(CHAIN_CHANGED, self._handle_chain_changed)
        await self.disconnect()

    # ---- Provider notifications ----

    async def _handle_accounts_changed(self, accounts: list[str] | None) -> None:
        accounts = list(accounts or [])
        if not accounts:
            await self.disconnect()
            return
        if not self.is_connected or self._provider is None:
            return

        account = Web3.to_checksum_address(accounts[0])
        if account == self._state.account:
            return

        # Implicit reconnect: the signer belongs to the previous account
        try:
            self._signer = await self._provider.get_signer()
        except Exception as exc:
            logger.warning("Could not refresh signer after account change: %s", exc)
            await self.disconnect()
            return
        await self._apply(AccountsChanged(accounts=[account]))
        logger.info("Wallet account changed to %s", account)

    async def _handle_chain_changed(self, chain_id: Any) -> None:
        new_chain = _parse_chain_id(chain_id)
        await self._apply(ChainChanged(chain_id=new_chain))
        logger.info("Wallet chain changed to %d", new_chain)

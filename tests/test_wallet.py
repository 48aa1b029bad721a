"""
Tests for WalletSession.

Uses an in-memory provider; no wallet or node required.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from sentioasis_runtime.config import get_network
from sentioasis_runtime.errors import (
    FAILED_TO_CONNECT,
    NO_ACCOUNTS_FOUND,
    WALLET_NOT_INSTALLED,
    NoAccountsAuthorized,
    OperationInProgress,
    ProviderUnavailable,
    WalletConnectFailed,
)
from sentioasis_runtime.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED
from sentioasis_runtime.types import ConnectionStatus
from sentioasis_runtime.wallet import WalletSession

from conftest import ACCOUNT_A, ACCOUNT_B, SAPPHIRE_TESTNET, FakeProvider


# ============================================================
#  Connect / disconnect
# ============================================================


@pytest.mark.asyncio
async def test_connect_success(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    state = await wallet.connect()

    assert state.connection_status is ConnectionStatus.CONNECTED
    assert wallet.account == ACCOUNT_A
    assert wallet.chain_id == SAPPHIRE_TESTNET
    assert wallet.signer is not None
    assert wallet.signer.address == ACCOUNT_A


@pytest.mark.asyncio
async def test_connect_notifies_listeners_in_order(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    seen: list[ConnectionStatus] = []
    wallet.subscribe(lambda old, new: seen.append(new.connection_status))

    await wallet.connect()

    assert seen == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]


@pytest.mark.asyncio
async def test_connect_without_provider() -> None:
    wallet = WalletSession(None)

    with pytest.raises(ProviderUnavailable) as exc_info:
        await wallet.connect()

    assert exc_info.value.message == WALLET_NOT_INSTALLED
    assert wallet.state.connection_status is ConnectionStatus.ERROR
    assert wallet.state.last_error is not None
    assert wallet.state.last_error.kind == "ProviderUnavailable"
    assert wallet.account is None


@pytest.mark.asyncio
async def test_connect_with_no_accounts() -> None:
    wallet = WalletSession(FakeProvider(accounts=[]))

    with pytest.raises(NoAccountsAuthorized) as exc_info:
        await wallet.connect()

    assert exc_info.value.message == NO_ACCOUNTS_FOUND
    assert wallet.state.connection_status is ConnectionStatus.ERROR
    assert not wallet.is_connected


@pytest.mark.asyncio
async def test_connect_provider_failure_is_wrapped(provider: FakeProvider) -> None:
    provider.accounts_error = RuntimeError("User rejected the request")
    wallet = WalletSession(provider)

    with pytest.raises(WalletConnectFailed) as exc_info:
        await wallet.connect()

    assert "User rejected" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert wallet.state.last_error is not None
    assert wallet.state.last_error.kind == "WalletConnectFailed"


@pytest.mark.asyncio
async def test_connect_failure_with_empty_message_uses_default(provider: FakeProvider) -> None:
    provider.accounts_error = RuntimeError()
    wallet = WalletSession(provider)

    with pytest.raises(WalletConnectFailed) as exc_info:
        await wallet.connect()

    assert exc_info.value.message == FAILED_TO_CONNECT


@pytest.mark.asyncio
async def test_connect_after_error_can_succeed(provider: FakeProvider) -> None:
    provider.accounts_error = RuntimeError("locked")
    wallet = WalletSession(provider)
    with pytest.raises(WalletConnectFailed):
        await wallet.connect()

    provider.accounts_error = None
    await wallet.connect()

    assert wallet.is_connected
    assert wallet.state.last_error is None


@pytest.mark.asyncio
async def test_concurrent_connect_is_rejected(provider: FakeProvider) -> None:
    provider.gate = asyncio.Event()
    wallet = WalletSession(provider)

    first = asyncio.create_task(wallet.connect())
    await asyncio.sleep(0)
    assert wallet.state.connection_status is ConnectionStatus.CONNECTING

    with pytest.raises(OperationInProgress):
        await wallet.connect()

    provider.gate.set()
    state = await first
    assert state.is_connected


@pytest.mark.asyncio
async def test_disconnect_during_connect_wins(provider: FakeProvider) -> None:
    provider.gate = asyncio.Event()
    wallet = WalletSession(provider)

    pending = asyncio.create_task(wallet.connect())
    await asyncio.sleep(0)
    await wallet.disconnect()
    provider.gate.set()
    await pending

    assert wallet.state.connection_status is ConnectionStatus.DISCONNECTED
    assert wallet.signer is None


@pytest.mark.asyncio
async def test_failure_after_disconnect_keeps_disconnected_state(provider: FakeProvider) -> None:
    provider.gate = asyncio.Event()
    provider.accounts_error = RuntimeError("Provider went away")
    wallet = WalletSession(provider)
    states = []
    wallet.subscribe(lambda old, new: states.append(new))

    pending = asyncio.create_task(wallet.connect())
    await asyncio.sleep(0)
    await wallet.disconnect()
    provider.gate.set()

    with pytest.raises(WalletConnectFailed):
        await pending

    assert wallet.state.connection_status is ConnectionStatus.DISCONNECTED
    assert wallet.state.last_error is None
    assert [s.connection_status for s in states] == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.DISCONNECTED,
    ]


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    calls = []
    wallet.subscribe(lambda old, new: calls.append(new))

    await wallet.disconnect()
    assert calls == []

    await wallet.connect()
    await wallet.disconnect()
    await wallet.disconnect()

    assert wallet.state.connection_status is ConnectionStatus.DISCONNECTED
    assert wallet.account is None
    assert wallet.chain_id is None
    assert wallet.signer is None
    assert len(calls) == 3


# ============================================================
#  Provider notifications
# ============================================================


@pytest.mark.asyncio
async def test_empty_accounts_disconnects(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    await wallet.connect()

    await provider.push_accounts([])

    assert wallet.state.connection_status is ConnectionStatus.DISCONNECTED
    assert wallet.account is None


@pytest.mark.asyncio
async def test_account_switch_updates_account_and_signer(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    await wallet.connect()

    await provider.push_accounts([ACCOUNT_B])

    assert wallet.is_connected
    assert wallet.account == ACCOUNT_B
    assert wallet.chain_id == SAPPHIRE_TESTNET
    assert wallet.signer is not None
    assert wallet.signer.address == ACCOUNT_B


@pytest.mark.asyncio
async def test_account_notification_before_connect_is_ignored(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)

    await provider.push_accounts([ACCOUNT_B])

    assert wallet.state.connection_status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_chain_change_updates_chain(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    await wallet.connect()

    await provider.push_chain(23294)

    assert wallet.chain_id == 23294
    assert wallet.account == ACCOUNT_A


@pytest.mark.asyncio
async def test_close_detaches_from_provider(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    assert provider.listener_count(ACCOUNTS_CHANGED) == 1
    assert provider.listener_count(CHAIN_CHANGED) == 1
    await wallet.connect()

    await wallet.close()

    assert provider.listener_count(ACCOUNTS_CHANGED) == 0
    assert provider.listener_count(CHAIN_CHANGED) == 0
    assert not wallet.is_connected


@pytest.mark.asyncio
async def test_close_detaches_every_session_sharing_a_provider(provider: FakeProvider) -> None:
    wallets = [WalletSession(provider) for _ in range(3)]
    assert provider.listener_count(CHAIN_CHANGED) == 3

    for wallet in wallets:
        await wallet.connect()
    for wallet in wallets:
        await wallet.close()

    assert provider.listener_count(ACCOUNTS_CHANGED) == 0
    assert provider.listener_count(CHAIN_CHANGED) == 0


@pytest.mark.asyncio
async def test_closed_session_ignores_later_notifications(provider: FakeProvider) -> None:
    closed = WalletSession(provider)
    live = WalletSession(provider)
    await closed.connect()
    await live.connect()
    await closed.close()

    await provider.push_chain(23294)

    assert live.chain_id == 23294
    assert closed.chain_id is None
    assert closed.state.connection_status is ConnectionStatus.DISCONNECTED


# ============================================================
#  Network switching
# ============================================================


@pytest.mark.asyncio
async def test_switch_network_adds_then_switches(provider: FakeProvider) -> None:
    network = get_network("sapphire-testnet")
    wallet = WalletSession(provider, network)

    assert await wallet.switch_network() is True

    methods = [method for method, _ in provider.requests]
    assert methods == ["wallet_addEthereumChain", "wallet_switchEthereumChain"]
    add_params = provider.requests[0][1][0]
    assert add_params["chainId"] == "0x5aff"
    assert add_params["rpcUrls"] == ["https://testnet.sapphire.oasis.dev"]
    assert provider.requests[1][1] == [{"chainId": "0x5aff"}]


@pytest.mark.asyncio
async def test_switch_network_failure_is_logged_not_raised(
    provider: FakeProvider, caplog: pytest.LogCaptureFixture
) -> None:
    provider.reject_requests = True
    wallet = WalletSession(provider, get_network("sapphire-testnet"))
    await wallet.connect()
    before = wallet.state

    with caplog.at_level(logging.WARNING, logger="sentioasis_runtime.wallet"):
        assert await wallet.switch_network() is False

    assert wallet.state == before
    assert "Failed to switch to Sapphire Testnet" in caplog.text


@pytest.mark.asyncio
async def test_switch_network_without_target(provider: FakeProvider) -> None:
    wallet = WalletSession(provider)
    assert await wallet.switch_network() is False
    assert provider.requests == []

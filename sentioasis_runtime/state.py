"""
Pure state transitions for the wallet and contract sessions.

Each session is a tagged-union state machine: ``transition(state, action)``
returns the next state and performs no I/O. The async session classes are
thin adapters that run provider/contract calls and feed the outcomes
through these functions.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel

from sentioasis_runtime.types import (
    BindingStatus,
    ConnectionStatus,
    ContractSessionState,
    ErrorInfo,
    WalletSessionState,
)


# ============================================================
#  Wallet actions
# ============================================================


class ConnectStarted(BaseModel):
    type: Literal["connect_started"] = "connect_started"


class ConnectSucceeded(BaseModel):
    type: Literal["connect_succeeded"] = "connect_succeeded"
    account: str
    chain_id: int


class ConnectFailed(BaseModel):
    type: Literal["connect_failed"] = "connect_failed"
    error: ErrorInfo


class Disconnected(BaseModel):
    type: Literal["disconnected"] = "disconnected"


class ChainChanged(BaseModel):
    type: Literal["chain_changed"] = "chain_changed"
    chain_id: int


class AccountsChanged(BaseModel):
    type: Literal["accounts_changed"] = "accounts_changed"
    accounts: list[str]


WalletAction = Union[
    ConnectStarted,
    ConnectSucceeded,
    ConnectFailed,
    Disconnected,
    ChainChanged,
    AccountsChanged,
]


INITIAL_WALLET_STATE = WalletSessionState()


def wallet_transition(state: WalletSessionState, action: WalletAction) -> WalletSessionState:
    """Compute the next wallet state for *action*."""
    if isinstance(action, ConnectStarted):
        return WalletSessionState(connection_status=ConnectionStatus.CONNECTING)

    if isinstance(action, ConnectSucceeded):
        return WalletSessionState(
            connection_status=ConnectionStatus.CONNECTED,
            account=action.account,
            chain_id=action.chain_id,
        )

    if isinstance(action, ConnectFailed):
        return WalletSessionState(
            connection_status=ConnectionStatus.ERROR,
            last_error=action.error,
        )

    if isinstance(action, Disconnected):
        return INITIAL_WALLET_STATE

    if isinstance(action, ChainChanged):
        if not state.is_connected:
            return state
        return state.model_copy(update={"chain_id": action.chain_id})

    if isinstance(action, AccountsChanged):
        if not action.accounts:
            return INITIAL_WALLET_STATE
        # A non-empty list only matters for an established session
        if not state.is_connected:
            return state
        return state.model_copy(update={"account": action.accounts[0]})

    return state


# ============================================================
#  Contract actions
# ============================================================


class BindStarted(BaseModel):
    type: Literal["bind_started"] = "bind_started"
    address: str | None = None


class BindSucceeded(BaseModel):
    type: Literal["bind_succeeded"] = "bind_succeeded"
    epoch: int


class BindFailed(BaseModel):
    type: Literal["bind_failed"] = "bind_failed"
    epoch: int
    error: ErrorInfo


class BindingReset(BaseModel):
    type: Literal["binding_reset"] = "binding_reset"


ContractAction = Union[BindStarted, BindSucceeded, BindFailed, BindingReset]


INITIAL_CONTRACT_STATE = ContractSessionState()


def contract_transition(state: ContractSessionState, action: ContractAction) -> ContractSessionState:
    """Compute the next contract binding state for *action*.

    Bind outcomes carrying an epoch other than the current one belong to
    a superseded binding and are dropped.
    """
    if isinstance(action, BindStarted):
        return ContractSessionState(
            binding_status=BindingStatus.BINDING,
            bound_address=action.address,
            epoch=state.epoch + 1,
        )

    if isinstance(action, BindSucceeded):
        if action.epoch != state.epoch or state.binding_status is not BindingStatus.BINDING:
            return state
        return state.model_copy(
            update={"binding_status": BindingStatus.READY, "last_error": None}
        )

    if isinstance(action, BindFailed):
        if action.epoch != state.epoch or state.binding_status is not BindingStatus.BINDING:
            return state
        return state.model_copy(
            update={"binding_status": BindingStatus.ERROR, "last_error": action.error}
        )

    if isinstance(action, BindingReset):
        return ContractSessionState(epoch=state.epoch + 1)

    return state

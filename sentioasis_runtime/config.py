"""Runtime settings and EVM network presets."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from sentioasis_runtime.types import NativeCurrency, NetworkConfig


NETWORKS: dict[str, NetworkConfig] = {
    "sapphire-testnet": NetworkConfig(
        chain_id=23295,
        chain_name="Sapphire Testnet",
        rpc_url="https://testnet.sapphire.oasis.dev",
        block_explorer_url="https://testnet.explorer.sapphire.oasis.dev/",
        native_currency=NativeCurrency(name="TEST", symbol="TEST"),
    ),
    "sapphire-mainnet": NetworkConfig(
        chain_id=23294,
        chain_name="Sapphire",
        rpc_url="https://sapphire.oasis.io",
        block_explorer_url="https://explorer.oasis.io/mainnet/sapphire",
        native_currency=NativeCurrency(name="ROSE", symbol="ROSE"),
    ),
    "localhost": NetworkConfig(
        chain_id=1337,
        chain_name="Localhost",
        rpc_url="http://127.0.0.1:8545",
        native_currency=NativeCurrency(name="Ether", symbol="ETH"),
    ),
}


def get_network(name: str) -> NetworkConfig:
    """Get a network preset by name. Raises ``KeyError`` if not found."""
    if name not in NETWORKS:
        raise KeyError(
            f"Unknown network '{name}'. Available: {list_network_names()}"
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    return list(NETWORKS.keys())


class Settings(BaseSettings):
    """Environment-driven configuration (``SENTIOASIS_*`` variables)."""

    model_config = SettingsConfigDict(
        env_prefix="SENTIOASIS_",
        env_file=".env",
        extra="ignore",
    )

    # Chain
    network: str = "sapphire-testnet"
    rpc_url: str = ""  # Overrides the preset's RPC URL when set
    chain_id: int | None = None  # Overrides the preset's chain id when set
    contract_address: str = ""
    private_key: str = ""  # Local signing key; node-managed accounts when empty

    # Liveness
    liveness_poll_interval: float = 30.0
    # ~5 minutes of blocks at a 6s block time; tune per chain
    liveness_scan_window_blocks: int = 50
    event_poll_interval: float = 5.0

    # Inference
    huggingface_api_key: str = ""
    inference_base_url: str = "https://api-inference.huggingface.co/models"
    inference_timeout: float = 30.0
    max_text_length: int = 10000

    @property
    def resolved_network(self) -> NetworkConfig:
        preset = get_network(self.network)
        update: dict[str, object] = {}
        if self.rpc_url:
            update["rpc_url"] = self.rpc_url
        if self.chain_id is not None:
            update["chain_id"] = self.chain_id
        return preset.model_copy(update=update) if update else preset

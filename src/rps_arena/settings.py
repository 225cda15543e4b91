from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from secret_store import default_secrets_path


@dataclass(frozen=True)
class NetworkConfig:
    chain_id: int
    rpc_url: str
    arena_address: str
    usdc_address: str
    label: str


TESTNET = NetworkConfig(
    chain_id=84532,
    rpc_url="https://sepolia.base.org",
    arena_address="0x88DCc778b995Cd266696Ee4E961482ab7588C09e",
    usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    label="Base Sepolia",
)

MAINNET = NetworkConfig(
    chain_id=8453,
    rpc_url="https://mainnet.base.org",
    arena_address="0xd7bee67cc28F983Ac14645D6537489C289cc7e52",
    usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    label="Base",
)

NETWORKS = {"testnet": TESTNET, "mainnet": MAINNET}


@dataclass(frozen=True)
class Timing:
    # All values in seconds.
    poll_interval: float = 2.0
    grace: int = 5
    phase_timeout: float = 180.0
    activation_timeout: float = 120.0
    join_timeout: float = 600.0
    match_timeout: float = 1500.0
    settle_delay: float = 3.0


@dataclass(frozen=True)
class Settings:
    private_key: str
    network: NetworkConfig
    rpc_url: str
    arena_address: str
    usdc_address: str
    secrets_path: str
    timing: Timing = field(default_factory=Timing)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env

    private_key = env.get("AGENT_KEY") or env.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError("AGENT_KEY (or PRIVATE_KEY) environment variable is required")

    network_name = env.get("NETWORK", "mainnet").strip().lower()
    network = MAINNET if network_name == "mainnet" else TESTNET

    return Settings(
        private_key=private_key,
        network=network,
        rpc_url=env.get("RPC_URL") or network.rpc_url,
        arena_address=env.get("ARENA_ADDRESS") or network.arena_address,
        usdc_address=env.get("USDC_ADDRESS") or network.usdc_address,
        secrets_path=env.get("WOF_SECRETS_FILE") or default_secrets_path(),
    )

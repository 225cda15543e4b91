from __future__ import annotations

import pytest

import fakes  # noqa: F401
from settings import MAINNET, TESTNET, load_settings  # type: ignore[import-not-found]


def test_private_key_is_required() -> None:
    with pytest.raises(ValueError):
        load_settings({})


def test_agent_key_wins_over_private_key() -> None:
    settings = load_settings({"AGENT_KEY": "0xaaa", "PRIVATE_KEY": "0xbbb"})
    assert settings.private_key == "0xaaa"
    assert load_settings({"PRIVATE_KEY": "0xbbb"}).private_key == "0xbbb"


def test_defaults_to_mainnet() -> None:
    settings = load_settings({"AGENT_KEY": "0xaaa"})
    assert settings.network is MAINNET
    assert settings.rpc_url == MAINNET.rpc_url
    assert settings.secrets_path.endswith(".wof-rps-secrets.json")


def test_testnet_and_overrides() -> None:
    settings = load_settings(
        {
            "AGENT_KEY": "0xaaa",
            "NETWORK": "testnet",
            "RPC_URL": "http://localhost:8545",
            "ARENA_ADDRESS": "0x" + "1" * 40,
            "WOF_SECRETS_FILE": "/tmp/s.json",
        }
    )
    assert settings.network is TESTNET
    assert settings.network.chain_id == 84532
    assert settings.rpc_url == "http://localhost:8545"
    assert settings.arena_address == "0x" + "1" * 40
    assert settings.usdc_address == TESTNET.usdc_address
    assert settings.secrets_path == "/tmp/s.json"

"""Vault configuration."""

import pytest

from eth_vault.config import DEFAULT_JSON_RPC_URL, QUEUE_ADDRESS, VaultConfig, read_config_from_env, read_json_rpc_url


def test_mainnet_config():
    config = VaultConfig.create_mainnet()
    assert config.queue_address == QUEUE_ADDRESS
    assert config.default_maturity_window == 259_200
    assert config.poll_interval.total_seconds() == 15
    assert config.max_request_scan == 10_000
    assert config.asset_decimals == config.share_decimals == 18


def test_env_overrides(monkeypatch):
    other_queue = "0x3333333333333333333333333333333333333333"
    monkeypatch.setenv("QUEUE_ADDRESS", other_queue)
    monkeypatch.delenv("VAULT_ADDRESS", raising=False)

    config = read_config_from_env()
    assert config.queue_address == other_queue
    assert config.vault_address == VaultConfig.create_mainnet().vault_address


def test_bad_address(monkeypatch):
    monkeypatch.setenv("TELLER_ADDRESS", "0x123")
    with pytest.raises(AssertionError):
        read_config_from_env()


def test_json_rpc_url(monkeypatch):
    monkeypatch.delenv("JSON_RPC_URL", raising=False)
    assert read_json_rpc_url() == DEFAULT_JSON_RPC_URL

    monkeypatch.setenv("JSON_RPC_URL", "http://localhost:8545")
    assert read_json_rpc_url() == "http://localhost:8545"

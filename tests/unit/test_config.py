"""
Unit tests for environment-driven configuration.
"""

import json
from pathlib import Path

import pytest

from xip.core.config import (
    BASE_SEPOLIA_CHAIN_ID,
    HORIZEN_TESTNET_CHAIN_ID,
    ONE_TOKEN,
    RelayerConfig,
    SolverConfig,
    load_networks,
    load_private_key,
)
from xip.core.errors import InvalidParameters


ENV_VARS = (
    "XIP_NETWORKS", "PRIVATE_KEY", "MAX_BID_AMOUNT", "MIN_PROFIT_MARGIN", "BID_INCREMENT",
    "SOLVER_ROUTES", "SOLVER_START_BLOCK", "PROOF_REQUIRED_CHAINS", "STRICT_PROOF", "PORT",
    "RELAYER_URL", "PROOF_API_KEY", "XIP_DATA_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)


class TestNetworks:

    def test_defaults(self):
        networks = load_networks()
        assert [n.chain_id for n in networks] == [HORIZEN_TESTNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID]
        assert [n.key for n in networks] == ["horizen", "base"]

    def test_from_json(self, monkeypatch):
        monkeypatch.setenv("XIP_NETWORKS", json.dumps([
            {"key": "a", "chainId": 1, "rpcUrl": "http://a", "bridgeAddress": "0x01"},
            {"key": "b", "name": "Bee", "chain_id": 2},
        ]))
        a, b = load_networks()
        assert (a.key, a.name, a.chain_id, a.rpc_url, a.bridge_address) == ("a", "a", 1, "http://a", "0x01")
        assert (b.name, b.chain_id) == ("Bee", 2)

    def test_invalid_json(self, monkeypatch):
        monkeypatch.setenv("XIP_NETWORKS", "[not json")
        with pytest.raises(InvalidParameters):
            load_networks()


class TestSolverConfig:

    def test_defaults(self):
        config = SolverConfig.from_env()
        assert config.max_bid_amount == 1000 * ONE_TOKEN
        assert config.min_profit_margin == 0.02
        assert config.routes == {}
        assert config.start_block is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("MAX_BID_AMOUNT", "250")
        monkeypatch.setenv("MIN_PROFIT_MARGIN", "0.05")
        monkeypatch.setenv("BID_INCREMENT", "0.5")
        monkeypatch.setenv("SOLVER_ROUTES", json.dumps({"1": 2, "2": 1}))
        monkeypatch.setenv("SOLVER_START_BLOCK", "17")
        monkeypatch.setenv("RELAYER_URL", "http://relayer:3000")

        config = SolverConfig.from_env()
        assert config.max_bid_amount == 250 * ONE_TOKEN
        assert config.min_profit_margin == 0.05
        assert config.bid_increment == ONE_TOKEN // 2
        assert config.routes == {1: 2, 2: 1}
        assert config.start_block == 17
        assert config.relayer_url == "http://relayer:3000"


class TestRelayerConfig:

    def test_defaults(self):
        config = RelayerConfig.from_env()
        assert config.port == 3000
        assert config.strict_proof is False
        assert config.requires_proof(BASE_SEPOLIA_CHAIN_ID)
        assert not config.requires_proof(HORIZEN_TESTNET_CHAIN_ID)

    def test_proof_chains(self, monkeypatch):
        monkeypatch.setenv("PROOF_REQUIRED_CHAINS", "1, 2")
        assert RelayerConfig.from_env().proof_required_chains == {1, 2}

    def test_empty_proof_chains_disables_policy(self, monkeypatch):
        monkeypatch.setenv("PROOF_REQUIRED_CHAINS", "")
        assert RelayerConfig.from_env().proof_required_chains == set()

    def test_strict_and_port(self, monkeypatch):
        monkeypatch.setenv("STRICT_PROOF", "true")
        monkeypatch.setenv("PORT", "8080")
        config = RelayerConfig.from_env()
        assert config.strict_proof is True
        assert config.port == 8080

    def test_data_dir(self, monkeypatch, tmp_path):
        assert RelayerConfig.from_env().data_dir == Path("~/.xip").expanduser()
        monkeypatch.setenv("XIP_DATA_DIR", str(tmp_path / "relayer"))
        assert RelayerConfig.from_env().data_dir == tmp_path / "relayer"


class TestPrivateKey:

    def test_missing(self):
        with pytest.raises(InvalidParameters):
            load_private_key()

    def test_present(self, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)
        assert load_private_key() == "0x" + "11" * 32

    def test_optional_when_not_required(self):
        assert load_private_key(required=False) is None

    @pytest.mark.parametrize("value", ["0x1234", "0x" + "zz" * 32])
    def test_malformed(self, monkeypatch, value):
        monkeypatch.setenv("PRIVATE_KEY", value)
        with pytest.raises(InvalidParameters):
            load_private_key(required=False)

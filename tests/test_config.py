#!/usr/bin/env python3
"""
Unit tests for configuration loading
"""

import json

import pytest

from market_indexer.config import MarketConfig, Settings, load_abi, load_config
from market_indexer.errors import ConfigError

ENV_VARS = ('RPC_URL', 'CHAIN_ID', 'REGISTRY_ADDRESS', 'MARKETPLACE_ADDRESS', 'START_BLOCK',
            'CONFIG_PATH', 'LOG_LEVEL', 'REQUEST_TIMEOUT')


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


def write(path, text):
    path.write_text(text)
    return path


class TestLoadConfig:

    def test_defaults_without_file(self):
        config = load_config()

        assert config.network.rpc_url == "http://localhost:8545"
        assert config.fetch.ranges == [5000, 50000, None]
        assert config.fetch.batch_size == 20
        assert config.windows.recent_sales == 1000
        assert config.windows.offers == 10000
        assert 'test' in config.probe_domains
        assert config.log_level == 'INFO'

    def test_yaml_with_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv('TEST_NODE_URL', 'http://node:8545')
        path = write(tmp_path / 'market.yaml', """
network:
  rpc_url: ${TEST_NODE_URL}
  chain_id: 8083
contracts:
  registry: "0x1111111111111111111111111111111111111111"
  start_block: 1200
fetch:
  ranges: [100, null]
windows:
  offers: 50
log_level: debug
""")

        config = load_config(path)

        assert config.network.rpc_url == 'http://node:8545'
        assert config.network.chain_id == 8083
        assert config.contracts.start_block == 1200
        assert config.fetch.ranges == [100, None]
        assert config.windows.offers == 50
        assert config.windows.activity == 2000
        assert config.log_level == 'DEBUG'

    def test_environment_overrides_yaml(self, tmp_path, monkeypatch):
        path = write(tmp_path / 'market.yaml', "network:\n  rpc_url: http://yaml:8545\ncontracts:\n  start_block: 7\n")
        monkeypatch.setenv('RPC_URL', 'http://env:8545')
        monkeypatch.setenv('START_BLOCK', '')
        monkeypatch.setenv('MARKETPLACE_ADDRESS', '0x2222222222222222222222222222222222222222')

        config = load_config(path)

        assert config.network.rpc_url == 'http://env:8545'
        assert config.contracts.start_block == 7
        assert config.contracts.marketplace == '0x2222222222222222222222222222222222222222'

    def test_explicit_settings(self):
        config = load_config(settings=Settings(rpc_url='http://explicit:8545', chain_id=1))

        assert config.network.rpc_url == 'http://explicit:8545'
        assert config.network.chain_id == 1

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / 'missing.yaml')

    def test_malformed_yaml(self, tmp_path):
        path = write(tmp_path / 'bad.yaml', "network: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = write(tmp_path / 'list.yaml', "- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    @pytest.mark.parametrize('body', [
        "fetch:\n  batch_size: 50\n",
        "fetch:\n  ranges: []\n",
        "fetch:\n  ranges: [0]\n",
        "log_level: loud\n",
    ])
    def test_invalid_values(self, tmp_path, body):
        path = write(tmp_path / 'invalid.yaml', body)
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)

    def test_relative_abi_paths(self, tmp_path):
        path = write(tmp_path / 'market.yaml', "abis:\n  registry: abis/Registry.json\n")

        config = load_config(path)

        assert config.abis.registry == str(tmp_path.resolve() / 'abis' / 'Registry.json')


class TestLoadAbi:

    def test_bundled_abis(self):
        config = MarketConfig()
        marketplace_events = {e['name'] for e in load_abi(config.abis.marketplace) if e['type'] == 'event'}
        registry_functions = {e['name'] for e in load_abi(config.abis.registry) if e['type'] == 'function'}

        assert {'AuctionCreated', 'AuctionEnded', 'OfferMade', 'OfferAccepted', 'OfferCancelled'} <= marketplace_events
        assert {'getDomain', 'getRecord', 'getUserDomains'} <= registry_functions

    def test_artifact_format(self, tmp_path):
        path = tmp_path / 'artifact.json'
        path.write_text(json.dumps({'contractName': 'X', 'abi': [{'type': 'event', 'name': 'E'}]}))
        assert load_abi(path) == [{'type': 'event', 'name': 'E'}]

    def test_invalid_format(self, tmp_path):
        path = tmp_path / 'bad.json'
        path.write_text(json.dumps({'bytecode': '0x'}))
        with pytest.raises(ConfigError, match="Invalid ABI format"):
            load_abi(path)

    def test_unreadable(self, tmp_path):
        with pytest.raises(ConfigError):
            load_abi(tmp_path / 'missing.json')

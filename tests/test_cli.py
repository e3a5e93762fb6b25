#!/usr/bin/env python3
"""
Tests for the command line entry point
"""

import argparse

import pytest
from rich.console import Console

from conftest import ETHER, SELLER
from market_indexer import cli
from market_indexer.chain import ZERO_ADDRESS


@pytest.fixture
def run(market, chain, monkeypatch, tmp_path):
    for var in ('RPC_URL', 'REGISTRY_ADDRESS', 'MARKETPLACE_ADDRESS', 'LOG_LEVEL', 'CONFIG_PATH', 'START_BLOCK'):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, 'connect', lambda config: chain)
    monkeypatch.setattr(cli, 'console', Console(width=200))

    def _run(*argv):
        return cli.main(list(argv))

    return _run


class TestParser:

    def test_subcommands(self):
        args = cli.build_parser().parse_args(['--log-level', 'DEBUG', 'sales', '--limit', '5'])
        assert args.command == 'sales'
        assert args.limit == 5
        assert args.log_level == 'DEBUG'

    def test_watch_defaults(self):
        args = cli.build_parser().parse_args(['auctions'])
        assert args.watch is False
        assert args.interval == 30

    def test_parse_amount(self):
        assert cli.parse_amount('1.5') == 3 * ETHER // 2
        assert cli.parse_amount('0') == 0
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_amount('lots')
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_amount('-1')

    def test_check_bid_amount_in_wei(self):
        args = cli.build_parser().parse_args(['check-bid', 'alice', '2'])
        assert args.amount == 2 * ETHER


class TestMain:

    def test_auctions(self, market, run, capsys):
        market.create_auction('test', 99_000, end_time=market.chain_time + 3600)

        assert run('auctions') == 0
        assert 'test.shm' in capsys.readouterr().out

    def test_no_auctions(self, run, capsys):
        assert run('auctions') == 0
        assert 'No active auctions found' in capsys.readouterr().out

    def test_preflight_failure_exit_code(self, market, run, capsys):
        market.auctions['alice'] = ('alice', SELLER, ETHER, 0, ZERO_ADDRESS, market.chain_time + 100, False)

        assert run('check-bid', 'alice', '5') == 1
        assert 'Auction is not active' in capsys.readouterr().out

    def test_check_offer(self, market, run, capsys):
        market.domains['alice'] = (SELLER, market.chain_time + 86400, False, 0, False)

        assert run('check-offer', 'alice', '1', '7') == 0
        assert 'is valid' in capsys.readouterr().out

    def test_resolve_unknown_domain(self, run, capsys):
        assert run('resolve', 'nobody.shm') == 1
        assert 'not found' in capsys.readouterr().out

    def test_missing_config_file(self, run, tmp_path, capsys):
        assert run('--config', str(tmp_path / 'nope.yaml'), 'stats') == 1
        assert 'Config file not found' in capsys.readouterr().out

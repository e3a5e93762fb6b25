"""
Read-only state reader for the SHNS naming-service marketplace.

Rebuilds live auctions, offers, sales and domain history from registry and
marketplace contract logs plus authoritative contract reads.
"""

from .blockchain_data import BlockchainDataService
from .chain import ChainReader, connect
from .config import MarketConfig, Settings, load_config
from .decoder import DomainNameDecoder
from .errors import (
    ChainConnectionError,
    ConfigError,
    DomainNotFoundError,
    MarketIndexerError,
    PreflightError,
    describe_error,
)
from .fetcher import DEFAULT_STRATEGIES, EventFetcher, RangeStrategy
from .preflight import TransactionPreflight
from .resolver import DomainResolver

__version__ = "0.1.0"

__all__ = [
    'BlockchainDataService',
    'ChainReader',
    'ChainConnectionError',
    'ConfigError',
    'DEFAULT_STRATEGIES',
    'DomainNameDecoder',
    'DomainNotFoundError',
    'DomainResolver',
    'EventFetcher',
    'MarketConfig',
    'MarketIndexerError',
    'PreflightError',
    'RangeStrategy',
    'Settings',
    'TransactionPreflight',
    'connect',
    'describe_error',
    'load_config',
]

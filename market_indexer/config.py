#!/usr/bin/env python3
"""
Configuration management for the marketplace indexer.

Two layers, merged by load_config():
  - Settings: environment variables / .env file (pydantic-settings)
  - MarketConfig: optional YAML file with network, contract, fetch and
    look-back window settings. ${VAR} references are expanded before parsing.

Environment values that are set take precedence over the YAML file.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)

PACKAGE_ABI_DIR = Path(__file__).parent / "abis"

DEFAULT_PROBE_DOMAINS = [
    'test', 'demo', 'hello', 'world', 'name', 'domain',
    'nick', 'nikhil', 'nikkhil', 'example', 'sample', 'cool', 'awesome',
    'best', 'top', 'great', 'super',
]

MAX_BATCH_SIZE = 20


class Settings(BaseSettings):
    """Environment based settings"""

    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None
    registry_address: Optional[str] = None
    marketplace_address: Optional[str] = None
    start_block: Optional[int] = None
    config_path: str = "config.yaml"
    log_level: Optional[str] = None
    request_timeout: Optional[int] = None

    @field_validator('chain_id', 'start_block', 'request_timeout', mode='before')
    @classmethod
    def parse_optional_int(cls, v):
        """Handle empty strings for numeric fields"""
        if v == '' or v is None:
            return None
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}


class NetworkConfig(BaseModel):
    """RPC endpoint settings"""
    rpc_url: str = Field("http://localhost:8545", description="JSON-RPC endpoint")
    chain_id: Optional[int] = Field(None, description="Expected chain id, checked on connect when set")
    poa: bool = Field(False, description="Inject the extra-data PoA middleware")
    request_timeout: int = Field(30, ge=1, description="HTTP request timeout in seconds")


class ContractsConfig(BaseModel):
    """Deployed contract addresses"""
    registry: Optional[str] = Field(None, description="Naming registry contract address")
    marketplace: Optional[str] = Field(None, description="Marketplace contract address")
    start_block: int = Field(0, ge=0, description="Lowest block any log query may touch")


class AbiConfig(BaseModel):
    """ABI file locations"""
    registry: str = str(PACKAGE_ABI_DIR / "registry.json")
    marketplace: str = str(PACKAGE_ABI_DIR / "marketplace.json")


class FetchConfig(BaseModel):
    """Log fetching behaviour"""
    ranges: List[Optional[int]] = Field(
        default_factory=lambda: [5000, 50000, None],
        description="Block spans tried in order; null means full history",
    )
    min_split_span: int = Field(500, ge=1, description="Smallest range split on provider limit errors")
    batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE, description="Concurrent RPC reads per batch")

    @field_validator('ranges')
    @classmethod
    def validate_ranges(cls, v):
        if not v:
            raise ValueError('at least one range is required')
        for span in v:
            if span is not None and span <= 0:
                raise ValueError(f'range span must be positive, got {span}')
        return v


class WindowsConfig(BaseModel):
    """Fixed look-back windows (in blocks)"""
    recent_sales: int = Field(1000, ge=1)
    offers: int = Field(10000, ge=1)
    transfer_history: int = Field(5000, ge=1)
    activity: int = Field(2000, ge=1)


class MarketConfig(BaseModel):
    """Complete indexer configuration"""
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)
    abis: AbiConfig = Field(default_factory=AbiConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    windows: WindowsConfig = Field(default_factory=WindowsConfig)
    probe_domains: List[str] = Field(default_factory=lambda: list(DEFAULT_PROBE_DOMAINS))
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = str(v).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'unknown log level {v}')
        return level


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML with environment variables expanded"""
    with open(path, 'r') as f:
        config_content = f.read()

    config_content = os.path.expandvars(config_content)

    try:
        data = yaml.safe_load(config_content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    return data


def _resolve_abi_paths(data: Dict[str, Any], base_dir: Path) -> None:
    abis = data.get('abis')
    if not isinstance(abis, dict):
        return
    for key, value in abis.items():
        if isinstance(value, str) and not os.path.isabs(value):
            abis[key] = str(base_dir / value)


def _apply_settings(data: Dict[str, Any], settings: Settings) -> None:
    """Overlay environment settings that are set onto the YAML data"""
    network = data.setdefault('network', {})
    contracts = data.setdefault('contracts', {})

    if settings.rpc_url:
        network['rpc_url'] = settings.rpc_url
    if settings.chain_id is not None:
        network['chain_id'] = settings.chain_id
    if settings.request_timeout is not None:
        network['request_timeout'] = settings.request_timeout
    if settings.registry_address:
        contracts['registry'] = settings.registry_address
    if settings.marketplace_address:
        contracts['marketplace'] = settings.marketplace_address
    if settings.start_block is not None:
        contracts['start_block'] = settings.start_block
    if settings.log_level:
        data['log_level'] = settings.log_level


def load_config(path: Optional[Union[str, Path]] = None, settings: Optional[Settings] = None) -> MarketConfig:
    """Build the effective configuration from YAML (if present) and environment"""
    if settings is None:
        settings = Settings()

    config_path = Path(path or settings.config_path)
    data: Dict[str, Any] = {}

    if config_path.exists():
        data = _read_yaml(config_path)
        _resolve_abi_paths(data, config_path.resolve().parent)
        logger.info(f"Loaded configuration from {config_path}")
    elif path is not None:
        raise ConfigError(f"Config file not found: {config_path}")
    else:
        logger.debug(f"No config file at {config_path}, using defaults and environment")

    _apply_settings(data, settings)

    try:
        return MarketConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_abi(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Load a contract ABI from JSON.

    Handles both formats: a bare ABI list, or an artifact dict with an 'abi' key
    (hardhat/brownie build output).
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load ABI from {path}: {e}") from e

    if isinstance(data, dict) and 'abi' in data:
        return data['abi']
    if isinstance(data, list):
        return data
    raise ConfigError(f"Invalid ABI format in {path}")

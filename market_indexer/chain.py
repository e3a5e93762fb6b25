"""
Read-only chain access: Web3 connection, contract handles, cached blocks
and bounded fan-out of RPC reads.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .config import MAX_BATCH_SIZE, MarketConfig, load_abi
from .errors import ChainConnectionError

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_tx_hash(tx_hash: Any) -> str:
    """Normalize a transaction hash to a hex string with 0x prefix.

    Accepts bytes/bytearray/HexBytes or str.
    """
    if isinstance(tx_hash, (bytes, bytearray)):
        return '0x' + bytes(tx_hash).hex()
    s = str(tx_hash)
    return s if s.startswith('0x') else f'0x{s}'


def normalize_hex(value: Any) -> str:
    """Lower-case 0x hex form of a bytes value or hex string"""
    return normalize_tx_hash(value).lower()


def normalize_address(address_raw: Any) -> str:
    """Normalize address to checksummed format"""
    if isinstance(address_raw, int):
        address_raw = f"0x{address_raw:040x}"
    address_hex = str(address_raw)
    try:
        return Web3.to_checksum_address(address_hex)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to checksum address {address_hex}, using lowercase: {e}")
        return address_hex.lower()


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return str(a).lower() == str(b).lower()


def short_hex(value: str) -> str:
    return f"{value[:5]}..{value[-4:]}" if value and len(value) > 10 else str(value)


def name_topic(name: str) -> str:
    """Topic value carried by an indexed string parameter: keccak256 of the UTF-8 name"""
    return normalize_hex(Web3.keccak(text=name))


class ChainReader:
    """Explicitly constructed handle on the node and the two marketplace contracts"""

    MAX_BLOCK_CACHE = 1000

    def __init__(self, w3: Web3, registry, marketplace, batch_size: int = MAX_BATCH_SIZE):
        self.w3 = w3
        self.registry = registry
        self.marketplace = marketplace
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self._block_cache: "OrderedDict[int, Any]" = OrderedDict()
        self._cache_lock = threading.Lock()

    @property
    def contracts(self) -> List[Any]:
        return [c for c in (self.marketplace, self.registry) if c is not None]

    def latest_block_number(self) -> int:
        return int(self.w3.eth.block_number)

    def latest_timestamp(self) -> int:
        """Chain time: timestamp of the latest block"""
        return int(self.w3.eth.get_block('latest')['timestamp'])

    def get_block(self, block_number: int):
        """Get block data with caching to reduce Web3 calls"""
        with self._cache_lock:
            if block_number in self._block_cache:
                return self._block_cache[block_number]

        block_data = self.w3.eth.get_block(block_number)

        with self._cache_lock:
            # Evict oldest block if cache too large
            if len(self._block_cache) >= self.MAX_BLOCK_CACHE:
                oldest_block, _ = self._block_cache.popitem(last=False)
                logger.debug(f"Evicted block {oldest_block} from cache")
            self._block_cache[block_number] = block_data
        return block_data

    def block_timestamp(self, block_number: int) -> int:
        return int(self.get_block(block_number)['timestamp'])

    def get_transaction(self, tx_hash: str):
        return self.w3.eth.get_transaction(normalize_tx_hash(tx_hash))

    def map_bounded(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Run fn over items with at most batch_size concurrent calls, keeping input order.

        fn is expected to handle its own per-item failures.
        """
        items = list(items)
        if not items:
            return []
        if len(items) == 1 or self.batch_size == 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=min(self.batch_size, len(items))) as ex:
            return list(ex.map(fn, items))


def connect(config: MarketConfig) -> ChainReader:
    """Connect to the configured node and build contract handles"""
    network = config.network
    contracts = config.contracts

    if not contracts.registry or not contracts.marketplace:
        raise ChainConnectionError("Both registry and marketplace contract addresses must be configured")
    for label, address in (('registry', contracts.registry), ('marketplace', contracts.marketplace)):
        if not Web3.is_address(address):
            raise ChainConnectionError(f"Invalid {label} address: {address}")

    w3 = Web3(Web3.HTTPProvider(network.rpc_url, request_kwargs={'timeout': network.request_timeout}))

    if network.poa:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    if not w3.is_connected():
        raise ChainConnectionError(f"Failed to connect to {network.rpc_url}")

    if network.chain_id is not None:
        actual_chain_id = w3.eth.chain_id
        if actual_chain_id != network.chain_id:
            raise ChainConnectionError(
                f"Connected to chain {actual_chain_id}, expected {network.chain_id}"
            )

    registry = w3.eth.contract(address=Web3.to_checksum_address(contracts.registry), abi=load_abi(config.abis.registry))
    marketplace = w3.eth.contract(address=Web3.to_checksum_address(contracts.marketplace), abi=load_abi(config.abis.marketplace))

    latest_block = w3.eth.get_block('latest')
    logger.info(f"[{latest_block['number']}] Connected to {network.rpc_url} "
                f"(registry {short_hex(registry.address)}, marketplace {short_hex(marketplace.address)})")

    return ChainReader(w3, registry, marketplace, batch_size=config.fetch.batch_size)

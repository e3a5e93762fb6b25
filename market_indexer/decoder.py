"""
Recover domain names hidden behind indexed (hashed) string parameters.

An indexed `string name` event argument is stored in the log as
keccak256(name), so the plaintext is recovered from the call data of the
transaction that emitted the log. When the log's topic is known the decoded
name is accepted only if it hashes back to that topic.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .chain import ChainReader, name_topic, normalize_address, normalize_hex, short_hex
from .models import LogEvent, NamedEvent

logger = logging.getLogger(__name__)


def plain_name(value: Any) -> Optional[str]:
    """Return value if it is already a plaintext name rather than a 32 byte topic"""
    if isinstance(value, str) and value and not (value.startswith('0x') and len(value) == 66):
        return value
    return None


def name_matcher(name: str) -> Callable[[LogEvent], bool]:
    """Predicate selecting logs whose `name` argument is the given domain"""
    topic = name_topic(name)

    def _match(event: LogEvent) -> bool:
        value = event.args.get('name')
        if value is None:
            return False
        if plain_name(value):
            return value == name
        return normalize_hex(value) == topic

    return _match


class DomainNameDecoder:
    """Decode the name argument of the transactions behind name-indexed logs"""

    def __init__(self, chain: ChainReader, contracts: Optional[Sequence[Any]] = None):
        self.chain = chain
        self.contracts = list(contracts) if contracts is not None else chain.contracts
        self._cache: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def decode(self, tx_hash: Any, name_topic_value: Any = None) -> Optional[str]:
        """Plaintext name passed to the transaction, or None when it cannot be recovered"""
        key = normalize_hex(tx_hash)
        with self._lock:
            cached = key in self._cache
            name = self._cache.get(key)

        if not cached:
            try:
                tx = self.chain.get_transaction(key)
            except Exception as e:
                logger.warning(f"Failed to fetch transaction {short_hex(key)}: {e}")
                return None
            name = self._decode_input(key, tx)
            with self._lock:
                self._cache[key] = name

        if name is None:
            return None
        if name_topic_value is not None and name_topic(name) != normalize_hex(name_topic_value):
            logger.debug(f"Decoded name '{name}' from {short_hex(key)} does not match the log topic")
            return None
        return name

    def decode_events(self, events: Iterable[LogEvent]) -> List[NamedEvent]:
        """Attach names to a batch of logs, skipping any that cannot be decoded"""

        def _decode_one(event: LogEvent) -> Optional[NamedEvent]:
            raw_name = event.args.get('name')
            try:
                name = plain_name(raw_name) or self.decode(event.tx_hash, raw_name)
            except Exception as e:
                logger.warning(f"Skipping {event.event} in {short_hex(event.tx_hash)}: {e}")
                return None
            if not name:
                logger.debug(f"Skipping {event.event} in {short_hex(event.tx_hash)}: name not recoverable")
                return None
            return NamedEvent(
                event=event.event,
                domain_name=name,
                block_number=event.block_number,
                log_index=event.log_index,
                tx_hash=event.tx_hash,
            )

        results = self.chain.map_bounded(_decode_one, list(events))
        return [r for r in results if r is not None]

    def _decode_input(self, tx_hash: str, tx) -> Optional[str]:
        data = tx.get('input')
        if not data:
            return None

        for contract in self._ordered_contracts(tx.get('to')):
            try:
                fn, params = contract.decode_function_input(data)
            except Exception:
                continue
            name = self._name_argument(fn, params)
            if name:
                return name

        logger.debug(f"No known function signature matches the input of {short_hex(tx_hash)}")
        return None

    def _ordered_contracts(self, to_address: Optional[str]) -> List[Any]:
        """Contracts to try, the transaction's target first"""
        if not to_address:
            return list(self.contracts)
        target = normalize_address(to_address).lower()
        first = [c for c in self.contracts if str(c.address).lower() == target]
        rest = [c for c in self.contracts if str(c.address).lower() != target]
        return first + rest

    @staticmethod
    def _name_argument(fn, params: Dict[str, Any]) -> Optional[str]:
        """The `name` argument, else the first string argument in ABI order"""
        name = params.get('name')
        if isinstance(name, str) and name:
            return name
        abi = getattr(fn, 'abi', None) or {}
        for param in abi.get('inputs', []):
            if param.get('type') != 'string':
                continue
            value = params.get(param.get('name'))
            if isinstance(value, str) and value:
                return value
        return None

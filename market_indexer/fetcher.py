"""
Event fetching with progressively wider block ranges.

No indexing service is available, so logs are read straight from the node
with eth_getLogs. Recent activity is far more likely than old activity, so
the cheapest (narrowest) range is tried first and the range is widened only
while nothing has been found:

    last 5,000 blocks -> last 50,000 blocks -> full history

Each range is one RangeStrategy; the fetcher walks the ordered list with a
single success predicate (non-empty result). A failed range is logged and the
next one is attempted. Exhausting every range returns an empty list, never an
exception, so callers treat [] as "nothing found".
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .aggregator import dedupe_logs
from .chain import ChainReader, normalize_address, normalize_tx_hash
from .config import FetchConfig
from .models import LogEvent

logger = logging.getLogger(__name__)

LogMatcher = Callable[[LogEvent], bool]


class RangeStrategy:
    """A block window ending at the latest block; span=None means full history"""

    def __init__(self, name: str, span: Optional[int]):
        if span is not None and span <= 0:
            raise ValueError(f"span must be positive, got {span}")
        self.name = name
        self.span = span

    def bounds(self, latest: int, start_block: int = 0) -> Tuple[int, int]:
        if self.span is None:
            return (start_block, latest)
        return (max(start_block, latest - self.span), latest)

    def __repr__(self):
        return f"RangeStrategy({self.name!r}, span={self.span})"


DEFAULT_STRATEGIES = (
    RangeStrategy('recent', 5000),
    RangeStrategy('wide', 50000),
    RangeStrategy('full', None),
)


def strategies_from_config(fetch_config: FetchConfig) -> Tuple[RangeStrategy, ...]:
    return tuple(
        RangeStrategy('full' if span is None else f'last-{span}', span)
        for span in fetch_config.ranges
    )


class EventFetcher:
    """Fetch contract logs, widening the block range until something is found"""

    # Provider errors where a smaller range is likely to succeed
    SPLIT_ERROR_MARKERS = [
        'too many results',
        'response size',
        'limit',
        'timeout',
        'gateway',
        'internal error',
        'server error',
    ]

    def __init__(self, chain: ChainReader, strategies: Sequence[RangeStrategy] = DEFAULT_STRATEGIES,
                 start_block: int = 0, min_split_span: int = 500):
        if not strategies:
            raise ValueError("at least one range strategy is required")
        self.chain = chain
        self.strategies = tuple(strategies)
        self.start_block = start_block
        self.min_split_span = min_split_span
        logger.debug(f"Range strategies: {describe_strategies(self.strategies)}")

    def fetch(self, contract, event_name: str, start_block: Optional[int] = None,
              argument_filters: Optional[Dict[str, Any]] = None,
              match: Optional[LogMatcher] = None) -> List[LogEvent]:
        """Try each range strategy in order and return the first non-empty result.

        match, when given, filters the logs of each attempt before the
        non-empty check, so a range only counts when it holds a matching log.
        """
        return self._fetch_with(self.strategies, contract, event_name, start_block, argument_filters, match)

    def fetch_window(self, contract, event_name: str, span: int,
                     argument_filters: Optional[Dict[str, Any]] = None,
                     match: Optional[LogMatcher] = None) -> List[LogEvent]:
        """Fetch a single fixed look-back window"""
        strategy = RangeStrategy(f'last-{span}', span)
        return self._fetch_with((strategy,), contract, event_name, None, argument_filters, match)

    def fetch_all(self, contract, event_name: str, start_block: Optional[int] = None,
                  argument_filters: Optional[Dict[str, Any]] = None,
                  match: Optional[LogMatcher] = None) -> List[LogEvent]:
        """Every log from start_block to the latest block in one query.

        No early stop: use this when a missing log changes the answer, such
        as end events that retire auctions.
        """
        strategy = RangeStrategy('full', None)
        return self._fetch_with((strategy,), contract, event_name, start_block, argument_filters, match)

    def _fetch_with(self, strategies: Iterable[RangeStrategy], contract, event_name: str,
                    start_block: Optional[int], argument_filters: Optional[Dict[str, Any]],
                    match: Optional[LogMatcher] = None) -> List[LogEvent]:
        try:
            event_cls = getattr(contract.events, event_name)
        except Exception:
            logger.error(f"Event {event_name} is not in the contract ABI")
            return []

        try:
            latest = self.chain.latest_block_number()
        except Exception as e:
            logger.error(f"Failed to read latest block while fetching {event_name}: {e}")
            return []

        floor = self.start_block if start_block is None else max(self.start_block, start_block)
        attempted = set()

        for strategy in strategies:
            from_block, to_block = strategy.bounds(latest, floor)
            if (from_block, to_block) in attempted:
                logger.debug(f"Skipping {strategy.name} range for {event_name}: same window as a previous attempt")
                continue
            attempted.add((from_block, to_block))

            logger.debug(f"🔍 {event_name}: trying {strategy.name} range {from_block}-{to_block}")
            try:
                raw_logs = self._get_event_logs_with_split(event_cls, from_block, to_block, argument_filters)
            except Exception as e:
                logger.warning(f"{event_name}: {strategy.name} range {from_block}-{to_block} failed: {e}")
                continue

            events = dedupe_logs(self._to_log_event(event_name, entry) for entry in raw_logs)
            if match is not None:
                events = [e for e in events if match(e)]
            if events:
                logger.info(f"[{to_block}] Found {len(events)} {event_name} events in {strategy.name} range "
                            f"{from_block}-{to_block}")
                return events

        logger.info(f"No {event_name} events found after {len(attempted)} range attempts")
        return []

    def _get_event_logs_with_split(self, event_cls, from_block: int, to_block: int,
                                   argument_filters: Optional[Dict] = None) -> List[Any]:
        """Fetch logs for an event using eth_getLogs with adaptive range splitting.

        Splits the block range on provider size/limit errors; any other error
        (or a range already at min_split_span) is re-raised.
        """
        try:
            filter_args = {'from_block': from_block, 'to_block': to_block}
            if argument_filters:
                filter_args['argument_filters'] = argument_filters
            return list(event_cls.get_logs(**filter_args))
        except Exception as e:
            span = to_block - from_block
            msg = str(e).lower()
            should_split = span > self.min_split_span and any(x in msg for x in self.SPLIT_ERROR_MARKERS)
            if should_split:
                mid = from_block + span // 2
                logger.debug(f"Splitting log query {from_block}-{to_block} at {mid}: {e}")
                left = self._get_event_logs_with_split(event_cls, from_block, mid, argument_filters)
                right = self._get_event_logs_with_split(event_cls, mid + 1, to_block, argument_filters)
                return left + right
            raise

    @staticmethod
    def _to_log_event(event_name: str, entry) -> LogEvent:
        address = entry.get('address') if hasattr(entry, 'get') else None
        return LogEvent(
            event=entry.get('event') or event_name,
            address=normalize_address(address) if address else '',
            block_number=int(entry['blockNumber']),
            log_index=int(entry['logIndex']),
            tx_hash=normalize_tx_hash(entry['transactionHash']),
            args=dict(entry['args']),
        )


def describe_strategies(strategies: Sequence[RangeStrategy]) -> str:
    return " -> ".join(
        'full history' if s.span is None else f"last {s.span:,} blocks" for s in strategies
    )


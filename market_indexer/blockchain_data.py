#!/usr/bin/env python3
"""
Marketplace data service: live auctions, offers, sales and domain history
reconstructed from contract logs and authoritative contract reads.

Every public operation is best effort. RPC and decode failures are logged and
produce an empty result (or None for single-object lookups); they never
raise, so callers treat an empty list as "nothing found".
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from web3 import Web3

from .aggregator import merge_auctions, merge_offers, merge_sales
from .chain import ChainReader, ZERO_ADDRESS, connect, normalize_address, normalize_hex, same_address, short_hex
from .config import MarketConfig
from .decoder import DomainNameDecoder, name_matcher
from .fetcher import EventFetcher, strategies_from_config
from .models import (
    AuctionDiagnosis,
    AuctionRecord,
    DomainInfo,
    DomainTransaction,
    LogEvent,
    NamedEvent,
    OfferEvent,
    OfferRecord,
    SaleRecord,
    TradingStats,
    TransferRecord,
    UserOffer,
)
from .reconciler import (
    auction_from_struct,
    auction_is_live,
    live_contract_offers,
    reconcile_auctions,
    reconcile_offers,
    superseded_names,
)
from .resolver import strip_tld

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60
WEEK = 7 * DAY


def _display_args(args: Dict[str, Any]) -> Dict[str, Any]:
    """Event args with byte values rendered as hex"""
    return {
        key: normalize_hex(value) if isinstance(value, (bytes, bytearray)) else value
        for key, value in args.items()
    }


class BlockchainDataService:
    """Read-side marketplace queries over a registry and marketplace contract pair"""

    def __init__(self, chain: ChainReader, fetcher: EventFetcher, decoder: DomainNameDecoder,
                 config: MarketConfig):
        self.chain = chain
        self.fetcher = fetcher
        self.decoder = decoder
        self.config = config
        self.registry = chain.registry
        self.marketplace = chain.marketplace

    @classmethod
    def from_config(cls, config: MarketConfig, chain: Optional[ChainReader] = None) -> "BlockchainDataService":
        """Wire the service and its collaborators from configuration"""
        if chain is None:
            chain = connect(config)
        fetcher = EventFetcher(
            chain,
            strategies=strategies_from_config(config.fetch),
            start_block=config.contracts.start_block,
            min_split_span=config.fetch.min_split_span,
        )
        decoder = DomainNameDecoder(chain)
        return cls(chain, fetcher, decoder, config)

    # ------------------------------------------------------------------
    # Auctions
    # ------------------------------------------------------------------

    def get_active_auctions(self) -> List[AuctionRecord]:
        """Auctions that are live at chain time, soonest end first.

        Candidates come from decoded AuctionCreated logs, or from the static
        probe list when no creation log exists in any range. Each candidate is
        re-read from the contract; logs only nominate names.
        """
        try:
            chain_time = self.chain.latest_timestamp()
        except Exception as e:
            logger.error(f"Failed to read chain time: {e}")
            return []

        created_logs = self.fetcher.fetch(self.marketplace, 'AuctionCreated')
        created = self.decoder.decode_events(created_logs)

        candidates: Dict[str, Optional[NamedEvent]] = {}
        if created_logs:
            source = 'events'
            for event in created:
                current = candidates.get(event.domain_name)
                if current is None or event.position > current.position:
                    candidates[event.domain_name] = event
            start_block = min(log.block_number for log in created_logs)
        else:
            logger.info(f"No AuctionCreated logs found, probing {len(self.config.probe_domains)} known names")
            source = 'probe'
            candidates = {name: None for name in self.config.probe_domains}
            start_block = None

        if not candidates:
            logger.info("No auction candidates to check")
            return []

        ended_logs = self.fetcher.fetch_all(self.marketplace, 'AuctionEnded', start_block=start_block)
        ended_names = superseded_names(created, self.decoder.decode_events(ended_logs))

        def _read(item: Tuple[str, Optional[NamedEvent]]) -> Optional[AuctionRecord]:
            name, created_event = item
            try:
                raw = self.marketplace.functions.auctions(name).call()
            except Exception as e:
                logger.warning(f"Skipping auction {name}: contract read failed: {e}")
                return None
            extra = {'source': source}
            if created_event is not None:
                extra['created_block'] = created_event.block_number
                extra['tx_hash'] = created_event.tx_hash
            try:
                return auction_from_struct(name, raw, chain_time, **extra)
            except Exception as e:
                logger.warning(f"Skipping auction {name}: unexpected struct {raw}: {e}")
                return None

        records = [r for r in self.chain.map_bounded(_read, list(candidates.items())) if r is not None]
        live = reconcile_auctions(records, chain_time, ended_names)
        live = [self._with_created_at(record) for record in live]

        logger.info(f"⏱️  {len(live)} active auctions out of {len(candidates)} candidates ({source})")
        return merge_auctions(live)

    def _with_created_at(self, record: AuctionRecord) -> AuctionRecord:
        if record.created_block is None:
            return record
        try:
            return record.model_copy(update={'created_at': self.chain.block_timestamp(record.created_block)})
        except Exception as e:
            logger.debug(f"No timestamp for block {record.created_block}: {e}")
            return record

    def diagnose_auction(self, domain_name: str) -> Optional[AuctionDiagnosis]:
        """Cross-check one auction's stored state against its lifecycle logs"""
        name = strip_tld(domain_name)
        try:
            raw = self.marketplace.functions.auctions(name).call()
            chain_time = self.chain.latest_timestamp()
            record = auction_from_struct(name, raw, chain_time)
        except Exception as e:
            logger.error(f"Failed to read auction {name}: {e}")
            return None

        match = name_matcher(name)
        creation_events = self.fetcher.fetch(self.marketplace, 'AuctionCreated', match=match)
        ended_events = self.fetcher.fetch(self.marketplace, 'AuctionEnded', match=match)

        if same_address(record.seller, ZERO_ADDRESS) and record.end_time == 0:
            verdict = f"No auction found for {name}"
        elif auction_is_live(record, chain_time):
            verdict = "Auction is active and should appear in the active auctions list"
        elif record.active:
            verdict = "Auction end time has passed but it has not been ended on-chain"
        elif not ended_events:
            verdict = "ISSUE: Auction is inactive but no AuctionEnded event found"
        else:
            verdict = "Auction ended normally"

        return AuctionDiagnosis(
            domain_name=name,
            auction=record,
            chain_time=chain_time,
            time_until_end=record.end_time - chain_time,
            creation_events=creation_events,
            ended_events=ended_events,
            verdict=verdict,
        )

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def get_offers_for_domain(self, domain_name: str) -> List[OfferRecord]:
        """Open offers on a domain, highest amount first"""
        name = strip_tld(domain_name)
        try:
            chain_time = self.chain.latest_timestamp()
        except Exception as e:
            logger.error(f"Failed to read chain time: {e}")
            return []

        try:
            raw_offers = self.marketplace.functions.getOffers(name).call()
        except Exception as e:
            logger.info(f"getOffers unavailable for {name} ({e}), rebuilding offers from logs")
            raw_offers = None

        if raw_offers is not None:
            offers = live_contract_offers(name, raw_offers, chain_time)
        else:
            offers = self._offers_from_logs(name, chain_time)
        return merge_offers(offers)

    def _offers_from_logs(self, name: str, chain_time: int) -> List[OfferRecord]:
        span = self.config.windows.offers
        match = name_matcher(name)
        made_logs = self.fetcher.fetch_window(self.marketplace, 'OfferMade', span, match=match)
        if not made_logs:
            return []
        accepted_logs = self.fetcher.fetch_window(self.marketplace, 'OfferAccepted', span, match=match)
        cancelled_logs = self.fetcher.fetch_window(self.marketplace, 'OfferCancelled', span, match=match)

        timestamps = self._block_timestamps(log.block_number for log in made_logs)
        made = [self._offer_event('made', log, timestamps.get(log.block_number)) for log in made_logs]
        closed = (
            [self._offer_event('accepted', log) for log in accepted_logs]
            + [self._offer_event('cancelled', log) for log in cancelled_logs]
        )
        return reconcile_offers(name, made, closed, chain_time)

    @staticmethod
    def _offer_event(kind: str, log: LogEvent, timestamp: Optional[int] = None) -> OfferEvent:
        return OfferEvent(
            kind=kind,
            buyer=normalize_address(log.args['buyer']),
            amount=int(log.args.get('amount', 0)),
            expiry=int(log.args.get('expiry', 0)),
            block_number=log.block_number,
            log_index=log.log_index,
            tx_hash=log.tx_hash,
            timestamp=timestamp,
        )

    def get_user_offers(self, address: str) -> List[UserOffer]:
        """Offers a user has open (or left to expire) in the contract, newest first"""
        if not Web3.is_address(address):
            logger.warning(f"Invalid address: {address}")
            return []
        buyer = normalize_address(address)
        try:
            chain_time = self.chain.latest_timestamp()
        except Exception as e:
            logger.error(f"Failed to read chain time: {e}")
            return []

        made_logs = self.fetcher.fetch_window(
            self.marketplace, 'OfferMade', self.config.windows.offers,
            argument_filters={'buyer': buyer},
            match=lambda log: same_address(log.args.get('buyer'), buyer),
        )
        latest: Dict[str, NamedEvent] = {}
        for event in self.decoder.decode_events(made_logs):
            current = latest.get(event.domain_name)
            if current is None or event.position > current.position:
                latest[event.domain_name] = event
        if not latest:
            return []

        timestamps = self._block_timestamps(e.block_number for e in latest.values())

        def _read(event: NamedEvent) -> List[UserOffer]:
            try:
                raw_offers = self.marketplace.functions.getOffers(event.domain_name).call()
            except Exception as e:
                logger.warning(f"Skipping offers on {event.domain_name}: {e}")
                return []
            found = []
            for index, raw in enumerate(raw_offers):
                try:
                    offer_buyer, amount, expiry, active = raw
                except (TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed offer #{index} for {event.domain_name}: {e}")
                    continue
                if not active or not same_address(offer_buyer, buyer):
                    continue
                found.append(UserOffer(
                    domain=event.domain_name,
                    index=index,
                    amount=int(amount),
                    expiry=int(expiry),
                    active=bool(active),
                    time_left=max(0, int(expiry) - chain_time),
                    timestamp=timestamps.get(event.block_number),
                    tx_hash=event.tx_hash,
                    status='active' if int(expiry) > chain_time else 'expired',
                ))
            return found

        offers = [offer for group in self.chain.map_bounded(_read, list(latest.values())) for offer in group]
        offers.sort(key=lambda o: (o.timestamp or 0, o.domain, o.index), reverse=True)
        logger.info(f"Found {len(offers)} offers by {short_hex(buyer)}")
        return offers

    # ------------------------------------------------------------------
    # Sales and statistics
    # ------------------------------------------------------------------

    def get_recent_sales(self, limit: Optional[int] = 20) -> List[SaleRecord]:
        """Direct sales, auction settlements and accepted offers, newest first"""
        span = self.config.windows.recent_sales
        sold = self.fetcher.fetch_window(self.registry, 'DomainSold', span)
        auction_ended = self.fetcher.fetch_window(self.marketplace, 'AuctionEnded', span)
        accepted = self.fetcher.fetch_window(self.marketplace, 'OfferAccepted', span)

        logs = sold + auction_ended + accepted
        if not logs:
            return []

        names = self._names_for(logs)
        timestamps = self._block_timestamps(log.block_number for log in logs)

        sales = []
        for log in logs:
            name = names.get(log.key)
            timestamp = timestamps.get(log.block_number)
            if name is None or timestamp is None:
                continue
            try:
                sale = self._sale_from_log(log, name, timestamp)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping {log.event} in {short_hex(log.tx_hash)}: {e}")
                continue
            if sale is not None:
                sales.append(sale)

        return merge_sales(sales, limit=limit)

    @staticmethod
    def _sale_from_log(log: LogEvent, name: str, timestamp: int) -> Optional[SaleRecord]:
        args = log.args
        common = dict(
            domain=name,
            timestamp=timestamp,
            tx_hash=log.tx_hash,
            block_number=log.block_number,
            log_index=log.log_index,
        )
        if log.event == 'DomainSold':
            return SaleRecord(price=int(args['price']), seller=normalize_address(args['from']),
                              buyer=normalize_address(args['to']), kind='sale', **common)
        if log.event == 'AuctionEnded':
            # Ended without bids: nothing changed hands
            if same_address(args['winner'], ZERO_ADDRESS) or int(args['amount']) == 0:
                return None
            return SaleRecord(price=int(args['amount']), seller=None,
                              buyer=normalize_address(args['winner']), kind='auction', **common)
        if log.event == 'OfferAccepted':
            return SaleRecord(price=int(args['amount']), seller=normalize_address(args['seller']),
                              buyer=normalize_address(args['buyer']), kind='offer', **common)
        return None

    def get_trading_stats(self) -> TradingStats:
        """Volume, average and top sale over the last 24 hours and 7 days of chain time"""
        try:
            chain_time = self.chain.latest_timestamp()
        except Exception as e:
            logger.error(f"Failed to read chain time: {e}")
            return TradingStats()

        sales = self.get_recent_sales(limit=None)
        day_sales = [s for s in sales if s.timestamp > chain_time - DAY]
        week_sales = [s for s in sales if s.timestamp > chain_time - WEEK]

        volume_24h = sum(s.price for s in day_sales)
        volume_7d = sum(s.price for s in week_sales)
        top = max(week_sales, key=lambda s: s.price, default=None)

        return TradingStats(
            volume_24h=volume_24h,
            volume_7d=volume_7d,
            avg_price_24h=volume_24h // len(day_sales) if day_sales else 0,
            avg_price_7d=volume_7d // len(week_sales) if week_sales else 0,
            sales_count_24h=len(day_sales),
            sales_count_7d=len(week_sales),
            top_sale_domain=top.domain if top else None,
            top_sale_price=top.price if top else 0,
            total_sales=len(sales),
        )

    # ------------------------------------------------------------------
    # Domain history and ownership
    # ------------------------------------------------------------------

    def get_domain_transfer_history(self, domain_name: str) -> List[TransferRecord]:
        """Registrations and transfers of a domain, newest first"""
        name = strip_tld(domain_name)
        span = self.config.windows.transfer_history
        match = name_matcher(name)
        logs = (
            self.fetcher.fetch_window(self.registry, 'DomainTransferred', span, match=match)
            + self.fetcher.fetch_window(self.registry, 'DomainRegistered', span, match=match)
        )

        def _record(log: LogEvent) -> Optional[TransferRecord]:
            try:
                tx = self.chain.get_transaction(log.tx_hash)
                timestamp = self.chain.block_timestamp(log.block_number)
                if log.event == 'DomainRegistered':
                    from_address, to_address = ZERO_ADDRESS, normalize_address(log.args['owner'])
                    kind, expiry = 'registration', int(log.args.get('expiry', 0))
                else:
                    from_address = normalize_address(log.args['from'])
                    to_address = normalize_address(log.args['to'])
                    kind, expiry = 'transfer', None
                return TransferRecord(
                    domain=name,
                    from_address=from_address,
                    to_address=to_address,
                    timestamp=timestamp,
                    tx_hash=log.tx_hash,
                    gas_limit=int(tx.get('gas', 0)),
                    block_number=log.block_number,
                    kind=kind,
                    expiry=expiry,
                )
            except Exception as e:
                logger.warning(f"Skipping {log.event} in {short_hex(log.tx_hash)}: {e}")
                return None

        ordered = sorted(logs, key=lambda log: log.position, reverse=True)
        return [r for r in self.chain.map_bounded(_record, ordered) if r is not None]

    def search_domain_transactions(self, domain_name: str) -> List[DomainTransaction]:
        """Every registry and marketplace event naming the domain, newest first"""
        name = strip_tld(domain_name)
        span = self.config.windows.activity
        match = name_matcher(name)

        logs: List[LogEvent] = []
        for contract in self.chain.contracts:
            for event_name in self._event_names(contract):
                logs.extend(self.fetcher.fetch_window(contract, event_name, span, match=match))

        def _transaction(log: LogEvent) -> Optional[DomainTransaction]:
            try:
                tx = self.chain.get_transaction(log.tx_hash)
                to_address = tx.get('to')
                return DomainTransaction(
                    domain=name,
                    event=log.event,
                    args=_display_args(log.args),
                    timestamp=self.chain.block_timestamp(log.block_number),
                    tx_hash=log.tx_hash,
                    block_number=log.block_number,
                    gas_limit=int(tx.get('gas', 0)),
                    from_address=normalize_address(tx['from']) if tx.get('from') else None,
                    to_address=normalize_address(to_address) if to_address else None,
                    value=int(tx.get('value', 0)),
                )
            except Exception as e:
                logger.warning(f"Skipping {log.event} in {short_hex(log.tx_hash)}: {e}")
                return None

        ordered = sorted(logs, key=lambda log: log.position, reverse=True)
        return [t for t in self.chain.map_bounded(_transaction, ordered) if t is not None]

    def get_domains_by_owner(self, address: str) -> List[DomainInfo]:
        """Unexpired domains currently owned by an address"""
        if not Web3.is_address(address):
            logger.warning(f"Invalid address: {address}")
            return []
        owner = normalize_address(address)
        try:
            names = self.registry.functions.getUserDomains(owner).call()
            chain_time = self.chain.latest_timestamp()
        except Exception as e:
            logger.error(f"Failed to list domains of {short_hex(owner)}: {e}")
            return []

        def _read(name: str) -> Optional[DomainInfo]:
            try:
                current_owner, expiry, is_for_sale, price, is_premium = \
                    self.registry.functions.getDomain(name).call()
            except Exception as e:
                logger.warning(f"Skipping domain {name}: {e}")
                return None
            if not same_address(current_owner, owner) or int(expiry) <= chain_time:
                return None
            return DomainInfo(
                name=name,
                owner=normalize_address(current_owner),
                expiry=int(expiry),
                is_for_sale=bool(is_for_sale),
                price=int(price),
                is_premium=bool(is_premium),
                is_expired=False,
            )

        return [d for d in self.chain.map_bounded(_read, list(names)) if d is not None]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _names_for(self, logs: Iterable[LogEvent]) -> Dict[Tuple[str, int], str]:
        """Decoded domain name per log key"""
        return {
            (event.tx_hash.lower(), event.log_index): event.domain_name
            for event in self.decoder.decode_events(logs)
        }

    def _block_timestamps(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        blocks = sorted(set(block_numbers))

        def _timestamp(block_number: int) -> Optional[int]:
            try:
                return self.chain.block_timestamp(block_number)
            except Exception as e:
                logger.warning(f"Failed to read block {block_number}: {e}")
                return None

        timestamps = self.chain.map_bounded(_timestamp, blocks)
        return {b: t for b, t in zip(blocks, timestamps) if t is not None}

    @staticmethod
    def _event_names(contract) -> List[str]:
        return [item['name'] for item in contract.abi if item.get('type') == 'event']

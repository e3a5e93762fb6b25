"""
State reconciliation: decide which logged auctions and offers still
correspond to live state.

Logs only say that something happened; they cannot say that it was later
invalidated. Everything here therefore works on authoritative contract reads
(or on the full made/closed log history) plus the current chain time, the
timestamp of the latest block. The contract's stored `active` flag is never
trusted on its own: an auction or offer is live only if the flag is set AND
its end/expiry time is strictly after chain time.

All functions are pure and operate on immutable models.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .chain import ZERO_ADDRESS, normalize_address
from .models import AuctionRecord, NamedEvent, OfferEvent, OfferRecord

logger = logging.getLogger(__name__)

Position = Tuple[int, int]


def auction_is_live(record: AuctionRecord, chain_time: int) -> bool:
    return bool(record.active) and record.end_time > chain_time


def auction_from_struct(domain_name: str, raw: Sequence[Any], chain_time: Optional[int] = None,
                        **extra) -> AuctionRecord:
    """Build an AuctionRecord from the auctions(name) struct.

    Struct layout: (name, seller, startPrice, currentBid, highestBidder, endTime, active)
    """
    _, seller, start_price, current_bid, highest_bidder, end_time, active = raw
    return AuctionRecord(
        domain_name=domain_name,
        seller=normalize_address(seller),
        start_price=int(start_price),
        current_bid=int(current_bid),
        highest_bidder=normalize_address(highest_bidder),
        end_time=int(end_time),
        active=bool(active),
        chain_time=chain_time,
        **extra,
    )


def _latest_positions(events: Iterable[NamedEvent]) -> Dict[str, Position]:
    latest = {}
    for event in events:
        if event.domain_name not in latest or event.position > latest[event.domain_name]:
            latest[event.domain_name] = event.position
    return latest


def superseded_names(created: Iterable[NamedEvent], ended: Iterable[NamedEvent]) -> FrozenSet[str]:
    """Names whose most recent lifecycle event is an end event"""
    last_created = _latest_positions(created)
    last_ended = _latest_positions(ended)
    return frozenset(
        name for name, position in last_ended.items()
        if position > last_created.get(name, (-1, -1))
    )


def reconcile_auctions(records: Iterable[AuctionRecord], chain_time: int,
                       ended_names: FrozenSet[str] = frozenset()) -> List[AuctionRecord]:
    """Keep auctions that are live at chain_time and have not been ended by a later log"""
    live = []
    for record in records:
        if record.domain_name in ended_names:
            logger.debug(f"Auction {record.domain_name} ended by a later log, dropping")
            continue
        if not auction_is_live(record, chain_time):
            logger.debug(f"Auction {record.domain_name} not live "
                         f"(active={record.active}, end_time={record.end_time}, chain_time={chain_time})")
            continue
        live.append(record.model_copy(update={'chain_time': chain_time}))
    return live


def _latest_by_buyer(events: Iterable[OfferEvent]) -> Dict[str, OfferEvent]:
    latest = {}
    for event in events:
        current = latest.get(event.buyer_key)
        if current is None or event.position > current.position:
            latest[event.buyer_key] = event
    return latest


def reconcile_offers(domain_name: str, made: Iterable[OfferEvent], closed: Iterable[OfferEvent],
                     chain_time: int) -> List[OfferRecord]:
    """Offers still open for a domain, rebuilt from its offer logs.

    The latest made event per buyer survives only when it comes after that
    buyer's latest accepted/cancelled event and has not expired.
    """
    latest_made = _latest_by_buyer(made)
    latest_closed = _latest_by_buyer(closed)

    open_offers = []
    for buyer_key, offer in latest_made.items():
        close = latest_closed.get(buyer_key)
        if close is not None and close.position > offer.position:
            continue
        if offer.expiry <= chain_time:
            continue
        open_offers.append(OfferRecord(
            domain_name=domain_name,
            buyer=offer.buyer,
            amount=offer.amount,
            expiry=offer.expiry,
            active=True,
            timestamp=offer.timestamp,
            tx_hash=offer.tx_hash,
            block_number=offer.block_number,
            chain_time=chain_time,
        ))
    return open_offers


def live_contract_offers(domain_name: str, raw_offers: Sequence[Sequence[Any]],
                         chain_time: int) -> List[OfferRecord]:
    """Filter the getOffers(name) list to active, unexpired entries.

    Entry layout: (buyer, amount, expiry, active). The index in the contract
    list is kept since accept/cancel calls address offers by index.
    """
    offers = []
    for index, raw in enumerate(raw_offers):
        try:
            buyer, amount, expiry, active = raw
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed offer #{index} for {domain_name}: {e}")
            continue
        if not active or int(expiry) <= chain_time or str(buyer).lower() == ZERO_ADDRESS:
            continue
        offers.append(OfferRecord(
            domain_name=domain_name,
            buyer=normalize_address(buyer),
            amount=int(amount),
            expiry=int(expiry),
            active=True,
            index=index,
            chain_time=chain_time,
        ))
    return offers

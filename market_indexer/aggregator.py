"""
Merge reconciled records into de-duplicated, display-ordered lists.
"""

from typing import Iterable, List, Optional

from .models import AuctionRecord, LogEvent, OfferRecord, SaleRecord


def dedupe_logs(events: Iterable[LogEvent]) -> List[LogEvent]:
    """Unique by (tx_hash, log_index), ordered by chain position"""
    unique = {}
    for event in events:
        unique.setdefault(event.key, event)
    return sorted(unique.values(), key=lambda e: e.position)


def merge_auctions(*groups: Iterable[AuctionRecord]) -> List[AuctionRecord]:
    """One record per domain name, soonest end first.

    When a name appears more than once, the record read last wins.
    """
    by_name = {}
    for group in groups:
        for record in group:
            by_name[record.domain_name] = record
    return sorted(by_name.values(), key=lambda r: (r.end_time, r.domain_name))


def merge_offers(*groups: Iterable[OfferRecord]) -> List[OfferRecord]:
    """One offer per buyer address, highest amount first"""
    by_buyer = {}
    for group in groups:
        for offer in group:
            key = offer.buyer.lower()
            current = by_buyer.get(key)
            if current is None or offer.amount > current.amount:
                by_buyer[key] = offer
    return sorted(by_buyer.values(), key=lambda o: (-o.amount, o.expiry))


def merge_sales(*groups: Iterable[SaleRecord], limit: Optional[int] = None) -> List[SaleRecord]:
    """Unique by (tx_hash, log_index), most recent first"""
    unique = {}
    for group in groups:
        for sale in group:
            unique.setdefault(sale.key, sale)
    sales = sorted(unique.values(), key=lambda s: (s.timestamp, s.block_number, s.log_index), reverse=True)
    if limit is not None:
        sales = sales[:limit]
    return sales

"""
Display helpers for amounts, durations, addresses and event names.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from web3 import Web3

TRANSACTION_TYPES = {
    'DomainRegistered': 'Registered',
    'DomainTransferred': 'Transferred',
    'DomainSold': 'Sold',
    'AuctionCreated': 'Auction Created',
    'BidPlaced': 'Bid Placed',
    'AuctionEnded': 'Auction Ended',
    'OfferMade': 'Offer Made',
    'OfferAccepted': 'Offer Accepted',
    'OfferCancelled': 'Offer Cancelled',
}

TRANSACTION_STYLES = {
    'DomainRegistered': 'green',
    'DomainTransferred': 'blue',
    'DomainSold': 'bold green',
    'AuctionCreated': 'magenta',
    'BidPlaced': 'yellow',
    'AuctionEnded': 'bold magenta',
    'OfferMade': 'cyan',
    'OfferAccepted': 'bold cyan',
    'OfferCancelled': 'red',
}


def format_transaction_type(event_name: str) -> str:
    return TRANSACTION_TYPES.get(event_name, event_name)


def transaction_type_style(event_name: str) -> str:
    return TRANSACTION_STYLES.get(event_name, 'white')


def format_eth(wei: int, symbol: str = 'SHM', decimals: int = 4) -> str:
    """Wei amount as a token string, e.g. 1.5 SHM"""
    amount = Decimal(Web3.from_wei(int(wei), 'ether'))
    text = f"{amount:.{decimals}f}".rstrip('0').rstrip('.')
    if text in ('', '-0'):
        text = '0'
    return f"{text} {symbol}" if symbol else text


def format_time_left(seconds: int) -> str:
    if seconds <= 0:
        return "Ended"
    days, rem = divmod(int(seconds), 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def short_address(address: Optional[str]) -> str:
    if not address:
        return "Unknown"
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_timestamp(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

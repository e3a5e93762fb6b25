"""
Read-only checks run before a marketplace transaction is submitted.

Each check reads the current contract state and raises PreflightError with
a short message when the transaction would revert. Nothing is ever sent.
"""

import logging

from web3 import Web3

from .chain import ChainReader, ZERO_ADDRESS, same_address
from .errors import PreflightError
from .formatting import format_eth
from .models import AuctionRecord
from .reconciler import auction_from_struct, auction_is_live
from .resolver import TLD, strip_tld

logger = logging.getLogger(__name__)

MIN_AUCTION_HOURS = 1
MAX_AUCTION_HOURS = 720
MIN_OFFER_DAYS = 1
MAX_OFFER_DAYS = 365


class TransactionPreflight:
    """Validate auction and offer transactions against chain state"""

    def __init__(self, chain: ChainReader):
        self.chain = chain
        self.registry = chain.registry
        self.marketplace = chain.marketplace

    def check_create_auction(self, domain_name: str, account: str, start_price: int, duration_hours: int) -> None:
        name = strip_tld(domain_name)
        if not MIN_AUCTION_HOURS <= duration_hours <= MAX_AUCTION_HOURS:
            raise PreflightError("Invalid duration (must be 1 hour to 30 days)")
        if start_price <= 0:
            raise PreflightError("Invalid start price (must be > 0)")
        if not Web3.is_address(account):
            raise PreflightError(f"Invalid account address: {account}")

        linked_registry = self.marketplace.functions.registryContract().call()
        if not same_address(linked_registry, self.registry.address):
            raise PreflightError("Marketplace is not linked to this registry")

        owner, expiry, _, _, _ = self.registry.functions.getDomain(name).call()
        if same_address(owner, ZERO_ADDRESS):
            raise PreflightError(f"Domain {name}{TLD} is not registered")
        if not same_address(owner, account):
            raise PreflightError("You do not own this domain")

        chain_time = self.chain.latest_timestamp()
        if int(expiry) <= chain_time:
            raise PreflightError(f"Domain {name}{TLD} has expired")

        auction = auction_from_struct(name, self.marketplace.functions.auctions(name).call(), chain_time)
        if auction_is_live(auction, chain_time):
            raise PreflightError("An auction is already active for this domain")

        logger.info(f"✅ Auction for {name} passes preflight checks")

    def check_place_bid(self, domain_name: str, amount: int) -> AuctionRecord:
        """Return the auction when a bid of amount (wei) would be accepted"""
        name = strip_tld(domain_name)
        chain_time = self.chain.latest_timestamp()
        auction = auction_from_struct(name, self.marketplace.functions.auctions(name).call(), chain_time)

        if not auction.active:
            raise PreflightError("Auction is not active")
        if auction.end_time <= chain_time:
            raise PreflightError("Auction has ended")
        if amount <= auction.minimum_bid:
            raise PreflightError(f"Bid must be greater than {format_eth(auction.minimum_bid)}")
        return auction

    def check_make_offer(self, domain_name: str, amount: int, expiry_days: int) -> int:
        """Return the offer expiry timestamp (chain time based) when the offer is valid"""
        name = strip_tld(domain_name)
        if amount <= 0:
            raise PreflightError("Offer amount must be greater than 0")
        if not MIN_OFFER_DAYS <= expiry_days <= MAX_OFFER_DAYS:
            raise PreflightError("Offer expiry must be between 1 and 365 days")

        owner, expiry, _, _, _ = self.registry.functions.getDomain(name).call()
        if same_address(owner, ZERO_ADDRESS):
            raise PreflightError(f"Domain {name}{TLD} is not registered")

        chain_time = self.chain.latest_timestamp()
        if int(expiry) <= chain_time:
            raise PreflightError(f"Domain {name}{TLD} has expired")
        return chain_time + expiry_days * 86400

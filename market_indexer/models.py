#!/usr/bin/env python3
"""
Pydantic models for marketplace state reconstructed from chain data.

All models are immutable value types. Amounts are integers in wei and
times are Unix timestamps in seconds.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class LogEvent(BaseModel):
    """A decoded contract log"""
    model_config = ConfigDict(frozen=True)

    event: str = Field(..., description="Event name (e.g., AuctionCreated)")
    address: str = Field(..., description="Emitting contract address")
    block_number: int = Field(..., description="Block number")
    log_index: int = Field(..., description="Log index within the block")
    tx_hash: str = Field(..., description="Transaction hash (0x prefixed)")
    args: Dict[str, Any] = Field(default_factory=dict, description="Decoded event arguments")

    @property
    def key(self) -> Tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


class NamedEvent(BaseModel):
    """A log whose hashed domain name was recovered from its transaction"""
    model_config = ConfigDict(frozen=True)

    event: str
    domain_name: str
    block_number: int
    log_index: int
    tx_hash: str

    @property
    def position(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


class AuctionRecord(BaseModel):
    """Auction state as read from the marketplace contract"""
    model_config = ConfigDict(frozen=True)

    domain_name: str = Field(..., description="Domain name without the .shm suffix")
    seller: str = Field(..., description="Address that created the auction")
    start_price: int = Field(..., description="Starting price in wei")
    current_bid: int = Field(0, description="Highest bid in wei")
    highest_bidder: str = Field(..., description="Address of the highest bidder")
    end_time: int = Field(..., description="Unix timestamp when the auction ends")
    active: bool = Field(..., description="Contract-stored active flag (not trusted on its own)")
    created_at: Optional[int] = Field(None, description="Timestamp of the creation block")
    created_block: Optional[int] = Field(None, description="Block of the creation event")
    tx_hash: Optional[str] = Field(None, description="Creation transaction hash")
    source: Literal['events', 'probe'] = Field('events', description="How the candidate was discovered")
    chain_time: Optional[int] = Field(None, description="Latest block timestamp at read time")

    @property
    def time_remaining(self) -> int:
        if self.chain_time is None:
            return 0
        return max(0, self.end_time - self.chain_time)

    @property
    def minimum_bid(self) -> int:
        """A new bid must be strictly greater than this amount"""
        return max(self.current_bid, self.start_price)


class OfferEvent(BaseModel):
    """One offer lifecycle log for a single domain"""
    model_config = ConfigDict(frozen=True)

    kind: Literal['made', 'accepted', 'cancelled']
    buyer: str
    amount: int = 0
    expiry: int = 0
    block_number: int
    log_index: int
    tx_hash: str
    timestamp: Optional[int] = None

    @property
    def position(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def buyer_key(self) -> str:
        return self.buyer.lower()


class OfferRecord(BaseModel):
    """A live offer on a domain"""
    model_config = ConfigDict(frozen=True)

    domain_name: str = Field(..., description="Domain the offer is for")
    buyer: str = Field(..., description="Address that made the offer")
    amount: int = Field(..., description="Offered amount in wei")
    expiry: int = Field(..., description="Unix timestamp when the offer expires")
    active: bool = Field(True, description="Whether the offer is still open")
    index: Optional[int] = Field(None, description="Position in the contract's offer list")
    timestamp: Optional[int] = Field(None, description="Timestamp of the OfferMade block")
    tx_hash: Optional[str] = Field(None, description="OfferMade transaction hash")
    block_number: Optional[int] = Field(None, description="OfferMade block number")
    chain_time: Optional[int] = Field(None, description="Latest block timestamp at read time")

    @property
    def time_left(self) -> int:
        if self.chain_time is None:
            return 0
        return max(0, self.expiry - self.chain_time)


class UserOffer(BaseModel):
    """An offer made by a given user, located in the contract's offer list"""
    model_config = ConfigDict(frozen=True)

    domain: str
    index: int
    amount: int
    expiry: int
    active: bool
    time_left: int
    timestamp: Optional[int] = None
    tx_hash: str
    status: Literal['active', 'expired']


class SaleRecord(BaseModel):
    """A completed sale derived from historical logs"""
    model_config = ConfigDict(frozen=True)

    domain: str = Field(..., description="Domain name")
    price: int = Field(..., description="Sale price in wei")
    seller: Optional[str] = Field(None, description="Seller address, unknown for auction settlements")
    buyer: str = Field(..., description="Buyer / auction winner")
    timestamp: int = Field(..., description="Block timestamp of the sale")
    kind: Literal['sale', 'auction', 'offer'] = Field(..., description="Sale mechanism")
    tx_hash: str = Field(..., description="Transaction hash")
    block_number: int = Field(..., description="Block number")
    log_index: int = Field(0, description="Log index")

    @property
    def key(self) -> Tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)


class TransferRecord(BaseModel):
    """Ownership change of a domain (registration or transfer)"""
    model_config = ConfigDict(frozen=True)

    domain: str
    from_address: str
    to_address: str
    timestamp: int
    tx_hash: str
    gas_limit: int
    block_number: int
    kind: Literal['transfer', 'registration'] = 'transfer'
    expiry: Optional[int] = None


class DomainTransaction(BaseModel):
    """Any registry or marketplace event touching a domain"""
    model_config = ConfigDict(frozen=True)

    domain: str
    event: str
    args: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    tx_hash: str
    block_number: int
    gas_limit: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: int = 0


class DomainInfo(BaseModel):
    """Registry record of a domain"""
    model_config = ConfigDict(frozen=True)

    name: str
    owner: str
    expiry: int
    is_for_sale: bool
    price: int
    is_premium: bool
    is_expired: bool = False


class TradingStats(BaseModel):
    """Trading statistics over recent sales (amounts in wei)"""
    model_config = ConfigDict(frozen=True)

    volume_24h: int = 0
    volume_7d: int = 0
    avg_price_24h: int = 0
    avg_price_7d: int = 0
    sales_count_24h: int = 0
    sales_count_7d: int = 0
    top_sale_domain: Optional[str] = None
    top_sale_price: int = 0
    total_sales: int = 0


class AuctionDiagnosis(BaseModel):
    """Result of cross-checking one auction against its logs"""
    model_config = ConfigDict(frozen=True)

    domain_name: str
    auction: AuctionRecord
    chain_time: int
    time_until_end: int
    creation_events: List[LogEvent] = Field(default_factory=list)
    ended_events: List[LogEvent] = Field(default_factory=list)
    verdict: str

#!/usr/bin/env python3
"""
Pytest configuration: in-memory fakes of the node and the registry /
marketplace contracts, so the indexer runs without network access.
"""

import pytest
from web3 import Web3

from market_indexer.blockchain_data import BlockchainDataService
from market_indexer.chain import ChainReader, ZERO_ADDRESS
from market_indexer.config import MarketConfig
from market_indexer.decoder import DomainNameDecoder
from market_indexer.fetcher import EventFetcher

REGISTRY_ADDRESS = Web3.to_checksum_address('0x' + '11' * 20)
MARKETPLACE_ADDRESS = Web3.to_checksum_address('0x' + '22' * 20)

SELLER = Web3.to_checksum_address('0x' + 'a1' * 20)
BUYER = Web3.to_checksum_address('0x' + 'b2' * 20)
BIDDER = Web3.to_checksum_address('0x' + 'c3' * 20)
OTHER = Web3.to_checksum_address('0x' + 'd4' * 20)

LATEST_BLOCK = 100_000
GENESIS_TIME = 1_700_000_000
BLOCK_TIME = 2

ETHER = 10 ** 18

REGISTRY_EVENTS = ['DomainRegistered', 'DomainTransferred', 'DomainSold']
MARKETPLACE_EVENTS = ['AuctionCreated', 'BidPlaced', 'AuctionEnded', 'OfferMade', 'OfferAccepted', 'OfferCancelled']

EMPTY_AUCTION = ('', ZERO_ADDRESS, 0, 0, ZERO_ADDRESS, 0, False)
EMPTY_DOMAIN = (ZERO_ADDRESS, 0, False, 0, False)


def block_time(block_number):
    return GENESIS_TIME + block_number * BLOCK_TIME


class FakeEvent:
    """contract.events.<Name> with get_logs over stored log dicts"""

    def __init__(self, name):
        self.name = name
        self.logs = []
        self.calls = []
        self.error_for = None

    def get_logs(self, from_block, to_block, argument_filters=None):
        self.calls.append((from_block, to_block))
        if self.error_for is not None:
            error = self.error_for(from_block, to_block)
            if error is not None:
                raise error
        result = [log for log in self.logs if from_block <= log['blockNumber'] <= to_block]
        for key, value in (argument_filters or {}).items():
            result = [log for log in result if str(log['args'].get(key, '')).lower() == str(value).lower()]
        return result


class FakeEvents:
    def __init__(self, names):
        self._events = {name: FakeEvent(name) for name in names}

    def __getattr__(self, name):
        try:
            return self.__dict__['_events'][name]
        except KeyError:
            raise AttributeError(name)


class FakeCall:
    def __init__(self, impl, args):
        self.impl = impl
        self.args = args

    def call(self):
        return self.impl(*self.args)


class FakeFunctions:
    def __init__(self):
        self._impl = {}

    def register(self, name, impl):
        self._impl[name] = impl

    def __getattr__(self, name):
        impl = self.__dict__['_impl'].get(name)
        if impl is None:
            raise AttributeError(name)
        return lambda *args: FakeCall(impl, args)


class FakeDecodedFunction:
    """The function object decode_function_input returns, with its ABI entry"""

    def __init__(self, fn_name, inputs):
        self.fn_name = fn_name
        self.abi = {'type': 'function', 'name': fn_name,
                    'inputs': [{'name': name, 'type': abi_type} for name, abi_type in inputs]}


class FakeContract:
    def __init__(self, address, event_names):
        self.address = address
        self.abi = [{'type': 'event', 'name': name} for name in event_names]
        self.events = FakeEvents(event_names)
        self.functions = FakeFunctions()
        self.inputs = {}

    def decode_function_input(self, data):
        """inputs[data] is (fn_name, params) or (fn_name, params, [(arg, abi_type), ...])"""
        if data not in self.inputs:
            raise ValueError("Could not find any function with matching selector")
        fn_name, params, *rest = self.inputs[data]
        if rest:
            inputs = rest[0]
        else:
            inputs = [(k, 'string' if isinstance(v, str) else 'uint256') for k, v in params.items()]
        return FakeDecodedFunction(fn_name, inputs), params


class FakeEth:
    def __init__(self, latest_block=LATEST_BLOCK):
        self.latest_block = latest_block
        self.transactions = {}
        self.block_requests = []
        self.chain_id = 8083

    @property
    def block_number(self):
        return self.latest_block

    def get_block(self, block_identifier):
        number = self.latest_block if block_identifier == 'latest' else int(block_identifier)
        self.block_requests.append(block_identifier)
        return {'number': number, 'timestamp': block_time(number)}

    def get_transaction(self, tx_hash):
        try:
            return self.transactions[tx_hash.lower()]
        except KeyError:
            raise ValueError(f"Transaction {tx_hash} not found")


class FakeWeb3:
    def __init__(self, eth):
        self.eth = eth


class FakeMarket:
    """Registry + marketplace state with helpers to emit logs"""

    def __init__(self, latest_block=LATEST_BLOCK):
        self.eth = FakeEth(latest_block)
        self.w3 = FakeWeb3(self.eth)
        self.registry = FakeContract(REGISTRY_ADDRESS, REGISTRY_EVENTS)
        self.marketplace = FakeContract(MARKETPLACE_ADDRESS, MARKETPLACE_EVENTS)

        self.auctions = {}
        self.offers = {}
        self.offers_supported = True
        self.domains = {}
        self.records = {}
        self.user_domains = {}
        self.linked_registry = REGISTRY_ADDRESS
        self._tx_count = 0

        m = self.marketplace.functions
        m.register('auctions', lambda name: self.auctions.get(name, EMPTY_AUCTION))
        m.register('getOffers', self._get_offers)
        m.register('registryContract', lambda: self.linked_registry)

        r = self.registry.functions
        r.register('getDomain', lambda name: self.domains.get(name, EMPTY_DOMAIN))
        r.register('getRecord', lambda name: self.records.get(name, ''))
        r.register('getUserDomains', lambda owner: self.user_domains.get(owner.lower(), []))

    @property
    def chain_time(self):
        return block_time(self.eth.latest_block)

    def _get_offers(self, name):
        if not self.offers_supported:
            raise ValueError("execution reverted: function selector was not recognized")
        return self.offers.get(name, [])

    def event(self, contract, name):
        return getattr(contract.events, name)

    def emit(self, contract, event_name, block, args, fn=None, name=None, log_index=0,
             tx_hash=None, sender=SELLER, gas=210000, value=0):
        """Record a log plus the transaction that emitted it.

        When name is given the log carries keccak(name) as its `name` argument
        and the transaction input decodes to fn(name, ...).
        """
        self._tx_count += 1
        if tx_hash is None:
            tx_hash = '0x' + f'{self._tx_count:064x}'
        args = dict(args)
        tx_input = f'0xinput{self._tx_count:04d}'
        if name is not None:
            args.setdefault('name', Web3.keccak(text=name))
            contract.inputs[tx_input] = (fn or event_name, {'name': name})

        if tx_hash.lower() not in self.eth.transactions:
            self.eth.transactions[tx_hash.lower()] = {
                'hash': tx_hash,
                'from': sender,
                'to': contract.address,
                'input': tx_input,
                'gas': gas,
                'value': value,
                'blockNumber': block,
            }
        else:
            tx_input = self.eth.transactions[tx_hash.lower()]['input']
            if name is not None:
                contract.inputs[tx_input] = (fn or event_name, {'name': name})

        self.event(contract, event_name).logs.append({
            'event': event_name,
            'address': contract.address,
            'blockNumber': block,
            'logIndex': log_index,
            'transactionHash': bytes.fromhex(tx_hash[2:]),
            'args': args,
        })
        return tx_hash

    def create_auction(self, name, block, end_time, start_price=ETHER, current_bid=0,
                       highest_bidder=ZERO_ADDRESS, active=True, seller=SELLER):
        self.auctions[name] = (name, seller, start_price, current_bid, highest_bidder, end_time, active)
        return self.emit(self.marketplace, 'AuctionCreated', block,
                         {'seller': seller, 'startPrice': start_price, 'endTime': end_time},
                         fn='createAuction', name=name)


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def chain(market):
    return ChainReader(market.w3, market.registry, market.marketplace, batch_size=4)


@pytest.fixture
def config():
    return MarketConfig()


@pytest.fixture
def fetcher(chain):
    return EventFetcher(chain)


@pytest.fixture
def decoder(chain):
    return DomainNameDecoder(chain)


@pytest.fixture
def service(chain, fetcher, decoder, config):
    return BlockchainDataService(chain, fetcher, decoder, config)

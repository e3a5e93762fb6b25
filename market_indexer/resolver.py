"""
Resolve .shm domain names to addresses and back.
"""

import logging
from typing import Optional

from web3 import Web3

from .chain import ChainReader, ZERO_ADDRESS, normalize_address, short_hex
from .errors import DomainNotFoundError

logger = logging.getLogger(__name__)

TLD = '.shm'


def strip_tld(domain: str) -> str:
    domain = domain.strip()
    if domain.lower().endswith(TLD):
        return domain[:-len(TLD)]
    return domain


class DomainResolver:
    """Name <-> address lookups against the registry contract"""

    def __init__(self, chain: ChainReader):
        self.chain = chain
        self.registry = chain.registry

    def resolve_to_address(self, domain: str) -> str:
        """Address a domain points at.

        A custom address record takes precedence over the owner. Unregistered
        or expired domains raise DomainNotFoundError.
        """
        name = strip_tld(domain)
        if not name:
            raise DomainNotFoundError("Domain name is empty")

        owner, expiry, _, _, _ = self.registry.functions.getDomain(name).call()
        if str(owner).lower() == ZERO_ADDRESS:
            raise DomainNotFoundError(f"Domain {name}{TLD} not found")

        chain_time = self.chain.latest_timestamp()
        if int(expiry) <= chain_time:
            raise DomainNotFoundError(f"Domain {name}{TLD} has expired")

        try:
            record = self.registry.functions.getRecord(name).call()
        except Exception as e:
            logger.debug(f"No address record for {name}: {e}")
            record = ''

        if record and self.is_address(record):
            return normalize_address(record)
        return normalize_address(owner)

    def reverse_resolve(self, address: str) -> Optional[str]:
        """Primary domain of an address (its first owned domain), or None"""
        if not self.is_address(address):
            return None
        try:
            domains = self.registry.functions.getUserDomains(Web3.to_checksum_address(address)).call()
        except Exception as e:
            logger.warning(f"Reverse resolution failed for {short_hex(address)}: {e}")
            return None
        if not domains:
            return None
        return f"{domains[0]}{TLD}"

    @staticmethod
    def is_domain(value: str) -> bool:
        if not value:
            return False
        value = value.strip()
        if value.lower().endswith(TLD):
            return True
        return not value.startswith('0x') and len(value) < 64

    @staticmethod
    def is_address(value: str) -> bool:
        return bool(value) and Web3.is_address(value)

    @staticmethod
    def strip_tld(domain: str) -> str:
        return strip_tld(domain)

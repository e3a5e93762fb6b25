"""
Exception types and user-facing error messages.
"""

from typing import Any, Optional


class MarketIndexerError(Exception):
    """Base class for errors raised by market_indexer"""


class ConfigError(MarketIndexerError):
    """Invalid or unreadable configuration"""


class ChainConnectionError(MarketIndexerError):
    """RPC node unreachable or contracts not configured"""


class DomainNotFoundError(MarketIndexerError):
    """Domain is not registered or has expired"""


class PreflightError(MarketIndexerError):
    """A read-only check determined the transaction would fail"""


# Revert reasons emitted by the registry/marketplace contracts and the
# message shown for each one
KNOWN_REVERT_REASONS = {
    'Not domain owner': 'You do not own this domain',
    'Auction already active': 'An auction is already active for this domain',
    'Invalid start price': 'Invalid start price (must be > 0)',
    'Invalid duration': 'Invalid duration (must be 1 hour to 30 days)',
    'insufficient funds': 'Insufficient funds for gas fees',
}

USER_REJECTED_CODES = (4001, 'ACTION_REJECTED')


def _error_code(exc: BaseException) -> Any:
    code = getattr(exc, 'code', None)
    if code is not None:
        return code
    # web3 and eth providers often raise ValueError({'code': ..., 'message': ...})
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0].get('code')
    return None


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, 'message', None)
    if isinstance(message, str) and message:
        return message
    if exc.args and isinstance(exc.args[0], dict):
        return str(exc.args[0].get('message', ''))
    return str(exc)


def describe_error(exc: BaseException, action: Optional[str] = None) -> str:
    """Rewrite a provider/contract error into a short human readable string.

    This is a cosmetic mapping only; callers decide what to do with the error.
    """
    if isinstance(exc, MarketIndexerError):
        return str(exc)

    code = _error_code(exc)
    message = _error_message(exc)

    if code in USER_REJECTED_CODES or 'user rejected' in message.lower():
        return 'Transaction cancelled by user'

    for reason, friendly in KNOWN_REVERT_REASONS.items():
        if reason in message:
            return friendly

    if 'execution reverted' in message:
        return 'Transaction reverted - check the amount and the current marketplace state'

    prefix = f"{action} failed" if action else "Error"
    return f"{prefix}: {message}" if message else prefix

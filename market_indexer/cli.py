#!/usr/bin/env python3
"""
Command line interface for the marketplace indexer.

    market-indexer auctions --watch
    market-indexer offers alice.shm
    market-indexer check-bid alice 1.5
"""

import argparse
import logging
import sys
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from web3 import Web3

from .blockchain_data import BlockchainDataService
from .chain import connect
from .config import load_config
from .errors import ConfigError, describe_error
from .formatting import (
    format_eth,
    format_time_left,
    format_timestamp,
    format_transaction_type,
    short_address,
    transaction_type_style,
)
from .models import AuctionRecord
from .preflight import TransactionPreflight
from .resolver import DomainResolver, TLD

logger = logging.getLogger(__name__)
console = Console()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_amount(value: str) -> int:
    """SHM amount from the command line, returned in wei"""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {value}")
    if amount < 0:
        raise argparse.ArgumentTypeError(f"amount must not be negative: {value}")
    return int(Web3.to_wei(amount, 'ether'))


def auctions_table(auctions: List[AuctionRecord]) -> Table:
    table = Table(title="🏛️ Active Auctions", title_style="bold cyan")
    table.add_column("Domain", style="bold")
    table.add_column("Seller", style="dim")
    table.add_column("Start Price", style="cyan")
    table.add_column("Current Bid", style="green")
    table.add_column("Highest Bidder", style="dim")
    table.add_column("Time Left", style="magenta")

    for auction in auctions:
        table.add_row(
            f"{auction.domain_name}{TLD}",
            short_address(auction.seller),
            format_eth(auction.start_price),
            format_eth(auction.current_bid) if auction.current_bid else "-",
            short_address(auction.highest_bidder) if auction.current_bid else "-",
            format_time_left(auction.time_remaining),
        )
    return table


def cmd_auctions(service: BlockchainDataService, args) -> int:
    if not args.watch:
        auctions = service.get_active_auctions()
        console.print(auctions_table(auctions))
        if not auctions:
            console.print("[yellow]No active auctions found[/yellow]")
        return 0

    console.print(Panel.fit(
        "🔍 [bold cyan]Watching active auctions[/bold cyan]\n"
        f"Refreshing every {args.interval} seconds, Ctrl-C to stop",
        title="Auction Monitor"
    ))
    with Live(auctions_table([]), console=console, refresh_per_second=1) as live:
        while True:
            try:
                live.update(auctions_table(service.get_active_auctions()))
                time.sleep(args.interval)
            except KeyboardInterrupt:
                console.print("\n[yellow]Stopping auction monitor...[/yellow]")
                break
    return 0


def cmd_offers(service: BlockchainDataService, args) -> int:
    offers = service.get_offers_for_domain(args.domain)
    table = Table(title=f"💰 Offers on {args.domain}", title_style="bold cyan")
    table.add_column("#", style="dim")
    table.add_column("Buyer", style="cyan")
    table.add_column("Amount", style="green")
    table.add_column("Expires In", style="magenta")
    for offer in offers:
        table.add_row(
            "-" if offer.index is None else str(offer.index),
            short_address(offer.buyer),
            format_eth(offer.amount),
            format_time_left(offer.time_left),
        )
    console.print(table)
    return 0


def cmd_user_offers(service: BlockchainDataService, args) -> int:
    offers = service.get_user_offers(args.address)
    table = Table(title=f"📨 Offers by {short_address(args.address)}", title_style="bold cyan")
    table.add_column("Domain", style="bold")
    table.add_column("#", style="dim")
    table.add_column("Amount", style="green")
    table.add_column("Expires In", style="magenta")
    table.add_column("Status")
    for offer in offers:
        status = "🟢 ACTIVE" if offer.status == 'active' else "🔴 EXPIRED"
        table.add_row(
            f"{offer.domain}{TLD}",
            str(offer.index),
            format_eth(offer.amount),
            format_time_left(offer.time_left),
            status,
        )
    console.print(table)
    return 0


def cmd_sales(service: BlockchainDataService, args) -> int:
    sales = service.get_recent_sales(limit=args.limit)
    table = Table(title="🧾 Recent Sales", title_style="bold cyan")
    table.add_column("Domain", style="bold")
    table.add_column("Type")
    table.add_column("Price", style="green")
    table.add_column("Seller", style="dim")
    table.add_column("Buyer", style="cyan")
    table.add_column("Time")
    for sale in sales:
        table.add_row(
            f"{sale.domain}{TLD}",
            sale.kind,
            format_eth(sale.price),
            short_address(sale.seller),
            short_address(sale.buyer),
            format_timestamp(sale.timestamp),
        )
    console.print(table)
    return 0


def cmd_stats(service: BlockchainDataService, args) -> int:
    stats = service.get_trading_stats()
    top = f"{stats.top_sale_domain}{TLD} ({format_eth(stats.top_sale_price)})" if stats.top_sale_domain else "-"
    summary_text = f"""
[bold green]24h Volume:[/bold green] {format_eth(stats.volume_24h)} ({stats.sales_count_24h} sales)
[bold green]7d Volume:[/bold green] {format_eth(stats.volume_7d)} ({stats.sales_count_7d} sales)
[bold blue]24h Avg Price:[/bold blue] {format_eth(stats.avg_price_24h)}
[bold blue]7d Avg Price:[/bold blue] {format_eth(stats.avg_price_7d)}
[bold yellow]Top Sale:[/bold yellow] {top}
[bold cyan]Sales Seen:[/bold cyan] {stats.total_sales}
    """
    console.print(Panel(summary_text, title="📊 Trading Stats", title_align="left", style="bold"))
    return 0


def cmd_history(service: BlockchainDataService, args) -> int:
    history = service.get_domain_transfer_history(args.domain)
    table = Table(title=f"📜 Ownership history of {args.domain}", title_style="bold cyan")
    table.add_column("Type")
    table.add_column("From", style="dim")
    table.add_column("To", style="cyan")
    table.add_column("Time")
    table.add_column("Gas Limit", style="dim")
    table.add_column("Tx", style="dim")
    for record in history:
        table.add_row(
            record.kind,
            short_address(record.from_address),
            short_address(record.to_address),
            format_timestamp(record.timestamp),
            str(record.gas_limit),
            short_address(record.tx_hash),
        )
    console.print(table)
    return 0


def cmd_activity(service: BlockchainDataService, args) -> int:
    transactions = service.search_domain_transactions(args.domain)
    table = Table(title=f"🔎 Activity for {args.domain}", title_style="bold cyan")
    table.add_column("Event")
    table.add_column("From", style="dim")
    table.add_column("Value", style="green")
    table.add_column("Block", style="dim")
    table.add_column("Time")
    for tx in transactions:
        style = transaction_type_style(tx.event)
        table.add_row(
            f"[{style}]{format_transaction_type(tx.event)}[/{style}]",
            short_address(tx.from_address),
            format_eth(tx.value) if tx.value else "-",
            str(tx.block_number),
            format_timestamp(tx.timestamp),
        )
    console.print(table)
    return 0


def cmd_owned(service: BlockchainDataService, args) -> int:
    domains = service.get_domains_by_owner(args.address)
    table = Table(title=f"🗂️ Domains owned by {short_address(args.address)}", title_style="bold cyan")
    table.add_column("Domain", style="bold")
    table.add_column("Expires")
    table.add_column("For Sale")
    table.add_column("Price", style="green")
    table.add_column("Premium")
    for domain in domains:
        table.add_row(
            f"{domain.name}{TLD}",
            format_timestamp(domain.expiry),
            "yes" if domain.is_for_sale else "no",
            format_eth(domain.price) if domain.is_for_sale else "-",
            "⭐" if domain.is_premium else "",
        )
    console.print(table)
    return 0


def cmd_resolve(service: BlockchainDataService, args) -> int:
    resolver = DomainResolver(service.chain)
    value = args.value
    if resolver.is_address(value):
        domain = resolver.reverse_resolve(value)
        if domain is None:
            console.print(f"[yellow]No domain found for {value}[/yellow]")
            return 1
        console.print(f"{value} → [bold cyan]{domain}[/bold cyan]")
        return 0
    if not resolver.is_domain(value):
        console.print(f"[red]❌ Not a domain or address: {value}[/red]")
        return 1
    address = resolver.resolve_to_address(value)
    console.print(f"{resolver.strip_tld(value)}{TLD} → [bold cyan]{address}[/bold cyan]")
    return 0


def cmd_inspect(service: BlockchainDataService, args) -> int:
    diagnosis = service.diagnose_auction(args.domain)
    if diagnosis is None:
        console.print(f"[red]❌ Could not read auction {args.domain}[/red]")
        return 1
    auction = diagnosis.auction
    text = f"""
[bold]Seller:[/bold] {auction.seller}
[bold]Start Price:[/bold] {format_eth(auction.start_price)}
[bold]Current Bid:[/bold] {format_eth(auction.current_bid)} by {short_address(auction.highest_bidder)}
[bold]End Time:[/bold] {format_timestamp(auction.end_time)}
[bold]Chain Time:[/bold] {format_timestamp(diagnosis.chain_time)}
[bold]Time Until End:[/bold] {diagnosis.time_until_end}s
[bold]Active Flag:[/bold] {auction.active}
[bold]AuctionCreated logs:[/bold] {len(diagnosis.creation_events)}
[bold]AuctionEnded logs:[/bold] {len(diagnosis.ended_events)}

[bold yellow]{diagnosis.verdict}[/bold yellow]
    """
    console.print(Panel(text, title=f"🔬 Auction {diagnosis.domain_name}{TLD}", title_align="left"))
    return 0


def cmd_check_bid(service: BlockchainDataService, args) -> int:
    auction = TransactionPreflight(service.chain).check_place_bid(args.domain, args.amount)
    console.print(f"✅ Bid of {format_eth(args.amount)} on {auction.domain_name}{TLD} would be accepted "
                  f"(must exceed {format_eth(auction.minimum_bid)})")
    return 0


def cmd_check_auction(service: BlockchainDataService, args) -> int:
    TransactionPreflight(service.chain).check_create_auction(args.domain, args.account, args.price, args.hours)
    console.print(f"✅ Auction for {args.domain} at {format_eth(args.price)} for {args.hours}h passes all checks")
    return 0


def cmd_check_offer(service: BlockchainDataService, args) -> int:
    expiry = TransactionPreflight(service.chain).check_make_offer(args.domain, args.amount, args.days)
    console.print(f"✅ Offer of {format_eth(args.amount)} on {args.domain} is valid, "
                  f"expires {format_timestamp(expiry)}")
    return 0


COMMANDS: Dict[str, Callable[[BlockchainDataService, argparse.Namespace], int]] = {
    'auctions': cmd_auctions,
    'offers': cmd_offers,
    'user-offers': cmd_user_offers,
    'sales': cmd_sales,
    'stats': cmd_stats,
    'history': cmd_history,
    'activity': cmd_activity,
    'owned': cmd_owned,
    'resolve': cmd_resolve,
    'inspect': cmd_inspect,
    'check-bid': cmd_check_bid,
    'check-auction': cmd_check_auction,
    'check-offer': cmd_check_offer,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='market-indexer',
                                     description='Read SHNS marketplace state straight from chain logs')
    parser.add_argument('--config', '-c', help='Path to config file (default: config.yaml)', default=None)
    parser.add_argument('--log-level', dest='log_level', help='Log level override (DEBUG, INFO, ...)', default=None)

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('auctions', help='List active auctions')
    p.add_argument('--watch', action='store_true', help='Keep refreshing the list')
    p.add_argument('--interval', type=int, default=30, help='Refresh interval in seconds')

    p = sub.add_parser('offers', help='Open offers on a domain')
    p.add_argument('domain')

    p = sub.add_parser('user-offers', help='Offers made by an address')
    p.add_argument('address')

    p = sub.add_parser('sales', help='Recent sales')
    p.add_argument('--limit', type=int, default=20)

    sub.add_parser('stats', help='Trading statistics')

    p = sub.add_parser('history', help='Ownership history of a domain')
    p.add_argument('domain')

    p = sub.add_parser('activity', help='All recent events for a domain')
    p.add_argument('domain')

    p = sub.add_parser('owned', help='Domains owned by an address')
    p.add_argument('address')

    p = sub.add_parser('resolve', help='Resolve a domain to an address or an address to its domain')
    p.add_argument('value')

    p = sub.add_parser('inspect', help='Diagnose one auction against its logs')
    p.add_argument('domain')

    p = sub.add_parser('check-bid', help='Check whether a bid would be accepted')
    p.add_argument('domain')
    p.add_argument('amount', type=parse_amount, help='Bid in SHM')

    p = sub.add_parser('check-auction', help='Check whether an auction can be created')
    p.add_argument('domain')
    p.add_argument('account')
    p.add_argument('price', type=parse_amount, help='Start price in SHM')
    p.add_argument('hours', type=int, help='Duration in hours (1-720)')

    p = sub.add_parser('check-offer', help='Check whether an offer can be made')
    p.add_argument('domain')
    p.add_argument('amount', type=parse_amount, help='Offer in SHM')
    p.add_argument('days', type=int, help='Offer validity in days (1-365)')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    # .env values are visible to ${VAR} expansion in the YAML config
    load_dotenv()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1

    level_str = (args.log_level or config.log_level).upper()
    logging.getLogger().setLevel(getattr(logging, level_str, logging.INFO))

    try:
        service = BlockchainDataService.from_config(config, connect(config))
        return COMMANDS[args.command](service, args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130
    except Exception as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        console.print(f"[red]❌ {describe_error(e, args.command)}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())

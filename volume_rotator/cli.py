#!/usr/bin/env python3
"""
Volume Rotator CLI
==================

Usage:
    volume-rotator init
    volume-rotator run --chains avax --wallets 5
    volume-rotator wallets --chain avax
"""

import sys
import signal
import asyncio
import getpass
import argparse
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from .bot import VolumeBot
from .chain import Web3ChainClient
from .config import Config, ConfigManager, get_chain_config
from .wallet_store import WalletStore
from .utils import (
    FatalInitError,
    StorageError,
    ChainCallError,
    setup_logging,
    validate_private_key,
    from_wei,
    from_token_units,
    format_address,
)

console = Console()


def print_banner():
    banner = """
    Volume Rotator
    ══════════════
    Temp wallet rotation and trade scheduling
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def _password_for(config: Config) -> Optional[str]:
    if config.encrypted_private_key:
        console.print("[yellow]Enter config password:[/yellow]")
        return getpass.getpass("> ")
    return None


def init_command(args) -> int:
    """Write a config file with the main wallet key encrypted."""
    print_banner()
    manager = ConfigManager(Path(args.config))

    console.print("[yellow]Enter main wallet private key (with 0x prefix):[/yellow]")
    key = getpass.getpass("> ")
    if not validate_private_key(key):
        console.print("[red]✗ Invalid private key format[/red]")
        return 1

    console.print("[yellow]Create encryption password:[/yellow]")
    password = getpass.getpass("> ")
    console.print("[yellow]Confirm password:[/yellow]")
    if getpass.getpass("> ") != password:
        console.print("[red]Passwords don't match![/red]")
        return 1
    if len(password) < 8:
        console.print("[red]Password must be at least 8 characters[/red]")
        return 1

    config = Config(
        temp_wallet_count=args.wallets,
        active_chains=[c.strip() for c in args.chains.split(",") if c.strip()],
    )
    manager.create_config(config, key, password)
    console.print(f"[green]✓ Configuration written to {args.config}[/green]")
    return 0


def install_stop_handlers(loop: asyncio.AbstractEventLoop, request_stop):
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            pass


async def _start(config: Config, main_key: str) -> int:
    """Initialize one bot per chain, then run every loop until all are stopped."""
    bots: List[VolumeBot] = []
    stopping = False

    def request_stop():
        nonlocal stopping
        stopping = True
        console.print("\n[yellow]Gracefully shutting down...[/yellow]")
        for bot in bots:
            bot.stop()

    # Installed before any bot is built so a signal during startup is not lost
    install_stop_handlers(asyncio.get_running_loop(), request_stop)

    for chain_key in config.active_chains:
        if stopping:
            break
        bot = VolumeBot.for_chain(
            chain_key,
            main_key,
            config.temp_wallet_count,
            overrides=config.chain_overrides.get(chain_key),
            settings=config.settings,
            wallet_file=config.wallet_file(chain_key),
        )
        bots.append(bot)
        await bot.initialize()

    if stopping:
        console.print("[yellow]Stopped during startup; no trades placed[/yellow]")
        return 0

    await asyncio.gather(*(bot.run() for bot in bots))
    return 0


def run_command(args) -> int:
    """Initialize one bot per chain and trade until interrupted."""
    print_banner()
    manager = ConfigManager(Path(args.config))

    try:
        config = manager.load_config()
        if args.chains:
            config.active_chains = [c.strip() for c in args.chains.split(",") if c.strip()]
        if args.wallets:
            config.temp_wallet_count = args.wallets

        setup_logging(config.log_level, config.log_file)
        main_key = manager.resolve_private_key(config, _password_for(config))
        return asyncio.run(_start(config, main_key))

    except FatalInitError as e:
        console.print(f"[red]✗ Fatal error: {e}[/red]")
        return 1


async def _wallet_rows(config: Config, chain_key: str):
    chain = get_chain_config(chain_key, config.chain_overrides.get(chain_key))
    client = Web3ChainClient(chain, config.settings)
    store = WalletStore(config.wallet_file(chain_key))
    records = store.load(0) if store.exists() else []

    rows = []
    for record in records:
        try:
            native = from_wei(await client.get_balance(record.address))
            tokens = from_token_units(await client.get_token_balance(record.address))
            balances = (f"{native:.6f}", f"{tokens:.4f}")
        except ChainCallError:
            balances = ("?", "?")
        last = (
            datetime.fromtimestamp(record.last_trade_time).strftime("%Y-%m-%d %H:%M")
            if record.last_trade_time else "Never"
        )
        rows.append((format_address(record.address, 8), *balances, last))
    return chain, rows


def wallets_command(args) -> int:
    """Show the wallet pool with live balances."""
    try:
        config = ConfigManager(Path(args.config)).load_config()
        chain, rows = asyncio.run(_wallet_rows(config, args.chain))
    except (FatalInitError, StorageError) as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1

    if not rows:
        console.print("[yellow]⚠ No wallet pool for this chain yet[/yellow]")
        return 0

    table = Table(title=f"{chain.name} wallet pool", box=box.ROUNDED)
    table.add_column("Address", style="green")
    table.add_column(f"{chain.native_symbol} Balance", style="yellow", justify="right")
    table.add_column("Token Balance", style="cyan", justify="right")
    table.add_column("Last Trade", style="dim")
    for row in rows:
        table.add_row(*row)

    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="volume-rotator",
        description="Temp wallet rotation and trade scheduling bot",
    )
    parser.add_argument("--config", default="./rotator_config.yaml", help="Config file path")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create an encrypted config file")
    init.add_argument("--chains", default="avax")
    init.add_argument("--wallets", type=int, default=5)
    init.set_defaults(func=init_command)

    run = sub.add_parser("run", help="Start trading")
    run.add_argument("--chains", help="Comma separated chain keys (default from config)")
    run.add_argument("--wallets", type=int, help="Temp wallet count for new pools")
    run.set_defaults(func=run_command)

    wallets = sub.add_parser("wallets", help="Show the wallet pool")
    wallets.add_argument("--chain", default="avax")
    wallets.set_defaults(func=wallets_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

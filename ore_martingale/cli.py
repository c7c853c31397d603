"""
CLI Entry Point for ORE Martingale.

Commands:
  run       - Start the bot (simulation mode)
  run-live  - Start the bot (live mode - real SOL)
  status    - Show wallet, board and miner state
  round     - Inspect a round and its winning square
  claim     - Claim accumulated SOL rewards
  config    - Show current configuration
"""

import asyncio
import logging
import os
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ore_martingale import __version__
from ore_martingale.agent import OreMartingaleAgent
from ore_martingale.config import AgentConfig, load_config
from ore_martingale.errors import OreBotError
from ore_martingale.ledger.ore_client import OreClient
from ore_martingale.ledger.rpc import SolanaClient
from ore_martingale.ledger.state import Round, lamports_to_sol, ore_units_to_ore
from ore_martingale.trading.executor import TransactionExecutor
from ore_martingale.wallet import load_keypair

console = Console()


def _setup_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _fail(message: str):
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _mask(secret: str) -> str:
    if not secret:
        return "Not set"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


def _run_agent(cfg: AgentConfig, live_mode: bool):
    try:
        agent = OreMartingaleAgent.from_config(cfg, live_mode=live_mode)
        asyncio.run(agent.start())
    except OreBotError as e:
        _fail(f"Fatal: {e}")
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[yellow]Stopped.[/yellow]")


@click.group()
@click.version_option(version=__version__, prog_name="ore-martingale")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Load settings from this .env file")
@click.option("--log-level", default=lambda: os.getenv("LOG_LEVEL", "INFO"),
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity (default: LOG_LEVEL or INFO)")
@click.pass_context
def cli(ctx, env_file, log_level):
    """ORE Martingale - martingale betting bot for ORE mining rounds on Solana."""
    _setup_logging(log_level)
    try:
        ctx.obj = load_config(env_file)
    except OreBotError as e:
        _fail(f"Invalid configuration: {e}")


@cli.command()
@click.pass_obj
def run(cfg: AgentConfig):
    """Start the bot in SIMULATION mode. Nothing is sent on-chain."""
    _run_agent(cfg, live_mode=False)


@cli.command("run-live")
@click.confirmation_option(
    prompt="This will bet REAL SOL every round. Are you sure?"
)
@click.pass_obj
def run_live(cfg: AgentConfig):
    """Start the bot in LIVE mode. Real SOL, real losses."""
    if not cfg.wallet.private_key:
        console.print("[red]No ORE_PRIVATE_KEY configured.[/red]")
        console.print("Set it in your environment or .env file first.")
        sys.exit(1)

    console.print(Panel(
        "[bold red]LIVE MODE ACTIVATED[/bold red]\n\n"
        "Every round will deploy real SOL from your wallet.\n"
        f"A full losing streak costs up to "
        f"[bold]{lamports_to_sol(cfg.worst_case_cycle_lamports):.6f} SOL[/bold].\n\n"
        "[yellow]Only risk what you can afford to lose.[/yellow]",
        title="WARNING",
    ))
    _run_agent(cfg, live_mode=True)


@cli.command()
@click.pass_obj
def status(cfg: AgentConfig):
    """Show wallet balance, board window and miner state."""
    try:
        asyncio.run(_status(cfg))
    except OreBotError as e:
        _fail(f"Error: {e}")


async def _status(cfg: AgentConfig):
    keypair = load_keypair(cfg.wallet.private_key)
    ore = OreClient(SolanaClient(cfg.rpc.rpc_url))
    try:
        balance = await ore.solana.get_balance(keypair.pubkey())
        board = await ore.get_board()
        slot = await ore.current_slot()
        miner = await ore.get_miner(keypair.pubkey())
    finally:
        await ore.solana.close()

    if board.is_active(slot):
        window = f"[green]active[/green] (ends in {board.end_slot - slot} slots)"
    elif slot < board.start_slot:
        window = f"[yellow]starting[/yellow] in {board.slots_until_start(slot)} slots"
    else:
        window = "[dim]ended, waiting for next round[/dim]"

    lines = [
        f"Wallet: [cyan]{keypair.pubkey()}[/cyan]",
        f"Balance: [bold green]{lamports_to_sol(balance):.6f} SOL[/bold green]",
        f"Round: #{board.round_id} (slots {board.start_slot} -> {board.end_slot}, now {slot})",
        f"Window: {window}",
    ]
    if miner is None:
        lines.append("Miner: [dim]no account yet (never deployed)[/dim]")
    else:
        lines += [
            f"Rewards: {lamports_to_sol(miner.rewards_sol):.6f} SOL / "
            f"{ore_units_to_ore(miner.rewards_ore):.6f} ORE",
            f"Last Round Played: #{miner.round_id}",
            f"Checkpoint: #{miner.checkpoint_id} "
            + ("[yellow](pending)[/yellow]" if miner.needs_checkpoint else "[green](settled)[/green]"),
            f"Lifetime: {lamports_to_sol(miner.lifetime_rewards_sol):.6f} SOL / "
            f"{ore_units_to_ore(miner.lifetime_rewards_ore):.6f} ORE",
        ]

    console.print(Panel("\n".join(lines), title="[bold]ORE Status[/bold]"))


@cli.command("round")
@click.argument("round_id", type=int, required=False)
@click.pass_obj
def round_(cfg: AgentConfig, round_id):
    """Show a round's totals and winning square (default: current round)."""
    try:
        asyncio.run(_round(cfg, round_id))
    except OreBotError as e:
        _fail(f"Error: {e}")


async def _round(cfg: AgentConfig, round_id):
    ore = OreClient(SolanaClient(cfg.rpc.rpc_url))
    try:
        if round_id is None:
            round_id = (await ore.get_board()).round_id
        rnd = await ore.get_round(round_id)
    finally:
        await ore.solana.close()

    rng = rnd.rng()
    winner = Round.winning_square(rng) if rng is not None else None

    table = Table(title=f"Round #{rnd.id}")
    table.add_column("Square", justify="right", style="cyan")
    table.add_column("Deployed", justify="right")
    table.add_column("Miners", justify="right")
    for square in range(len(rnd.deployed)):
        style = "bold green" if square == winner else None
        table.add_row(str(square), f"{lamports_to_sol(rnd.deployed[square]):.6f}",
                      str(rnd.count[square]), style=style)
    console.print(table)

    console.print(Panel(
        f"Total Deployed: {lamports_to_sol(rnd.total_deployed):.6f} SOL\n"
        f"Total Vaulted: {lamports_to_sol(rnd.total_vaulted):.6f} SOL\n"
        f"Total Winnings: {lamports_to_sol(rnd.total_winnings):.6f} SOL\n"
        f"Motherlode: {ore_units_to_ore(rnd.motherlode):.6f} ORE\n"
        f"RNG: {rng if rng is not None else '[yellow]not settled[/yellow]'}\n"
        f"Winning Square: {winner if winner is not None else '-'}",
        title="[bold]Round Summary[/bold]",
    ))


@cli.command()
@click.confirmation_option(prompt="Claim all accumulated SOL rewards now?")
@click.pass_obj
def claim(cfg: AgentConfig):
    """Claim accumulated SOL rewards to the wallet."""
    try:
        asyncio.run(_claim(cfg))
    except OreBotError as e:
        _fail(f"Claim failed: {e}")


async def _claim(cfg: AgentConfig):
    keypair = load_keypair(cfg.wallet.private_key)
    solana = SolanaClient(cfg.rpc.rpc_url)
    ore = OreClient(solana)
    try:
        miner = await ore.get_miner(keypair.pubkey())
        if miner is None or miner.rewards_sol == 0:
            console.print("[yellow]Nothing to claim.[/yellow]")
            return
        executor = TransactionExecutor(solana, cfg.execution.max_tx_retries, live_mode=True)
        signature = await executor.execute_claim(keypair)
        balance = await solana.get_balance(keypair.pubkey())
    finally:
        await solana.close()

    console.print(f"[green]Claimed {lamports_to_sol(miner.rewards_sol):.6f} SOL[/green] "
                  f"(signature {signature})")
    console.print(f"New balance: {lamports_to_sol(balance):.6f} SOL")


@cli.command("config")
@click.pass_obj
def config_(cfg: AgentConfig):
    """Show current bot configuration."""
    m = cfg.martingale
    console.print(Panel(
        f"Base Bet: [bold green]{m.base_bet_amount:.6f} SOL[/bold green] per block\n"
        f"Blocks per Bet: {m.blocks_per_bet}\n"
        f"Multiplier: {m.multiplier}x\n"
        f"Warn / Max Losses: {m.warn_consecutive_losses} / {m.max_consecutive_losses}\n"
        f"Worst-case Cycle: {lamports_to_sol(cfg.worst_case_cycle_lamports):.6f} SOL\n"
        f"Min Balance: {cfg.monitoring.min_balance_sol:.6f} SOL\n"
        f"Auto-claim Threshold: {cfg.monitoring.auto_claim_sol_threshold:.6f} SOL\n"
        f"Max TX Retries: {cfg.execution.max_tx_retries}\n"
        f"RPC: {cfg.rpc.rpc_url}\n"
        f"WebSocket: {cfg.rpc.ws_url or '(derived from RPC)'}\n"
        f"Discord Webhook: {_mask(cfg.discord.webhook_url)}\n"
        f"Stats Every: {cfg.discord.stats_notification_interval} rounds\n"
        f"Wallet: {_mask(cfg.wallet.private_key)}",
        title="[bold]Bot Configuration[/bold]",
    ))


def main():
    cli()


if __name__ == "__main__":
    main()

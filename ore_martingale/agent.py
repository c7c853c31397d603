"""
The Agent - plays every ORE round with a martingale stake.

Per round:
1. Read the Board and wait for the betting window
2. Pick squares, size the stake, deploy (checkpointing the last round if needed)
3. Poll until the round ends and the slot hash settles
4. Compare the winning square with ours
5. Win: reset the stake now, confirm rewards in the background
   Loss: grow the stake, or pause at the loss cap
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, replace
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from solders.keypair import Keypair

from ore_martingale.config import AgentConfig
from ore_martingale.errors import (
    DecodeError,
    InsufficientBalanceError,
    LedgerNotReadyError,
    OreBotError,
    RoundTimeoutError,
    TransientNetworkError,
)
from ore_martingale.ledger.ore_client import OreClient
from ore_martingale.ledger.rpc import SolanaClient
from ore_martingale.ledger.state import Board, Miner, Round, lamports_to_sol, ore_units_to_ore
from ore_martingale.ledger.subscription import MinerSubscription, to_ws_url
from ore_martingale.notifier import Notifier, build_notifier
from ore_martingale.strategies.grid import BlockPosition, GridSelector, RandomGridSelector
from ore_martingale.strategies.martingale import MartingaleBook, StatsSnapshot
from ore_martingale.trading.executor import TransactionExecutor
from ore_martingale.wallet import load_keypair

logger = logging.getLogger(__name__)
console = Console()


@dataclass
class RoundTimings:
    """All waits in seconds. Tests shrink these."""
    slot_time: float = 0.4
    round_start_buffer: float = 2.0
    completion_poll_interval: float = 10.0
    completion_timeout: float = 120.0
    rng_retry_interval: float = 2.0
    max_rng_attempts: int = 20
    rewards_retry_interval: float = 2.0
    max_rewards_retries: int = 10
    wss_update_timeout: float = 3.0
    next_round_wait: float = 5.0
    error_cooldown: float = 10.0
    rpc_error_wait: float = 10.0


@dataclass(frozen=True)
class WinContext:
    """Everything the reward reconciliation needs, captured when the win is seen."""
    round_id: int
    winning_square: int
    rewards_sol_before: int
    rewards_ore_before: int
    cycle_bet_total: int
    bet_per_block: int
    deployed_on_square: int


class OreMartingaleAgent:
    """
    The autonomous ORE miner.

    Owns the martingale book and drives one round at a time. Reward
    confirmation for wins runs in detached tasks so the next round is never
    delayed by slow reward crediting.
    """

    BANNER = r"""
   ___  ____  _____   __  __            _   _                   _
  / _ \|  _ \| ____| |  \/  | __ _ _ __| |_(_)_ __   __ _  __ _| | ___
 | | | | |_) |  _|   | |\/| |/ _` | '__| __| | '_ \ / _` |/ _` | |/ _ \
 | |_| |  _ <| |___  | |  | | (_| | |  | |_| | | | | (_| | (_| | |  __/
  \___/|_| \_\_____| |_|  |_|\__,_|_|   \__|_|_| |_|\__, |\__,_|_|\___|
                                                    |___/
    """

    def __init__(self, config: AgentConfig, ore: OreClient, executor: TransactionExecutor,
                 subscription: MinerSubscription, notifier: Notifier, signer: Keypair,
                 selector: Optional[GridSelector] = None, timings: Optional[RoundTimings] = None):
        self.config = config
        self.ore = ore
        self.executor = executor
        self.subscription = subscription
        self.notifier = notifier
        self.signer = signer
        self.selector = selector or RandomGridSelector()
        self.timings = timings or RoundTimings()

        self.book = MartingaleBook(config.martingale)
        self.running = False
        self.round_id: Optional[int] = None
        self.last_bet_round: Optional[int] = None
        self._reconcile_tasks: set[asyncio.Task] = set()
        self._main_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: AgentConfig, live_mode: bool = False) -> "OreMartingaleAgent":
        solana = SolanaClient(config.rpc.rpc_url)
        ore = OreClient(solana)
        executor = TransactionExecutor(solana, config.execution.max_tx_retries, live_mode)

        if config.wallet.private_key or live_mode:
            signer = load_keypair(config.wallet.private_key)
        else:
            signer = Keypair()
            logger.warning("No private key configured; simulating with throwaway wallet %s",
                           signer.pubkey())

        ws_url = config.rpc.ws_url or to_ws_url(config.rpc.rpc_url)
        subscription = MinerSubscription(ws_url, ore.miner_address(signer.pubkey()))
        return cls(config, ore, executor, subscription, build_notifier(config.discord), signer)

    @property
    def authority(self):
        return self.signer.pubkey()

    @property
    def live_mode(self) -> bool:
        return self.executor.live_mode

    async def start(self):
        """Print the banner and run until stopped."""
        console.print(self.BANNER, style="bold cyan")
        m = self.config.martingale
        mode_text = "[bold red]LIVE MODE[/bold red]" if self.live_mode \
            else "[bold yellow]SIMULATION MODE[/bold yellow]"
        console.print(Panel(
            f"Mode: {mode_text}\n"
            f"Wallet: [cyan]{self.authority}[/cyan]\n"
            f"Base Bet: [green]{m.base_bet_amount:.6f} SOL[/green] per block\n"
            f"Blocks per Bet: [cyan]{m.blocks_per_bet}[/cyan]\n"
            f"Multiplier: [yellow]{m.multiplier}x[/yellow]\n"
            f"Warn / Max Losses: [yellow]{m.warn_consecutive_losses}[/yellow] / "
            f"[red]{m.max_consecutive_losses}[/red]\n"
            f"Worst-case Cycle: [red]{lamports_to_sol(self.config.worst_case_cycle_lamports):.6f} SOL[/red]",
            title="[bold]ORE Martingale[/bold]",
        ))
        await self.run()

    async def run(self):
        """Main betting loop. Returns when paused or stopped; raises on fatal errors."""
        self._main_task = asyncio.current_task()
        try:
            await self._check_balance()

            miner = await self.ore.get_miner(self.authority)
            if miner is not None:
                logger.info("Existing unclaimed rewards: %.6f SOL",
                            lamports_to_sol(miner.rewards_sol))

            self.subscription.start()
            logger.info("WebSocket subscription started")
            self._install_signal_handlers()

            self.running = True
            logger.info("Starting main betting loop...")
            await self._main_loop()
        finally:
            await self._shutdown()

    async def _main_loop(self):
        while self.running:
            try:
                should_continue = await self.run_betting_round()
            except OreBotError as e:
                logger.error("Error in betting round: %s", e)
                await self._notify(self.notifier.notify_error(f"Error: {e}"))
                logger.info("Waiting %.0f seconds before retry...", self.timings.error_cooldown)
                await asyncio.sleep(self.timings.error_cooldown)
            else:
                if not should_continue:
                    logger.warning("Max consecutive losses reached. Pausing bot.")
                    await self._notify(self.notifier.notify_error(
                        "Max consecutive losses reached. Bot paused."))
                    break

            self._display_status()

            try:
                await self._check_balance()
            except TransientNetworkError as e:
                logger.warning("Balance check failed: %s", e)

            if self.running:
                await self._wait_for_next_round()

    async def run_betting_round(self) -> bool:
        """
        Play the current round once.

        Returns False only when the martingale hit its loss cap and betting
        must pause. Recoverable failures propagate as OreBotError.
        """
        board = await self.ore.get_board()
        round_id = board.round_id

        if round_id != self.round_id:
            logger.info("New round detected: #%d", round_id)
            self.round_id = round_id
            with self.book.hold() as state:
                state.current_round = round_id
        else:
            logger.debug("Round #%d (continuing)", round_id)

        if self.last_bet_round == round_id:
            logger.debug("Already played round #%d, waiting for the next one", round_id)
            return True

        slot = await self.ore.current_slot()
        if not board.is_active(slot):
            if slot < board.start_slot:
                logger.debug("Round not active yet. Starting in ~%.0f seconds (slot %d -> %d)",
                             board.slots_until_start(slot) * self.timings.slot_time,
                             slot, board.start_slot)
            else:
                logger.debug("Round #%d already ended at slot %d. Waiting...",
                             round_id, board.end_slot)
            return True

        miner = await self.ore.get_miner(self.authority)
        if miner is not None and miner.round_id == round_id:
            # Deployed before a restart; the ledger already holds our stake for this round.
            logger.info("Already deployed in round #%d, waiting for the next one", round_id)
            self.last_bet_round = round_id
            return True

        rewards_sol_before = miner.rewards_sol if miner else 0
        rewards_ore_before = miner.rewards_ore if miner else 0

        blocks = self.selector.select(self.config.martingale.blocks_per_bet)
        indices = [b.index for b in blocks]

        with self.book.hold() as state:
            bet_per_block = state.current_bet_per_block
            consecutive_losses = state.consecutive_losses
        total_bet = bet_per_block * len(blocks)

        logger.info("Betting on blocks: %s", indices)
        logger.info("Bet: %.6f SOL per block, total: %.6f SOL",
                    lamports_to_sol(bet_per_block), lamports_to_sol(total_bet))
        await self._notify(self.notifier.notify_bet(
            round_id, indices, bet_per_block, total_bet, consecutive_losses))

        signature = await self._place_bet(miner, round_id, blocks, bet_per_block)
        logger.info("Bet placed successfully! Signature: %s", signature)
        self.last_bet_round = round_id
        with self.book.hold() as state:
            state.record_bet(total_bet)

        await self._wait_for_round_completion(round_id)
        final_round = await self._fetch_settled_round(round_id)

        winning_square = Round.winning_square(final_round.rng())
        logger.info("Winning square: %d", winning_square)

        if winning_square in indices:
            await self._handle_win(WinContext(
                round_id=round_id,
                winning_square=winning_square,
                rewards_sol_before=rewards_sol_before,
                rewards_ore_before=rewards_ore_before,
                cycle_bet_total=0,
                bet_per_block=bet_per_block,
                deployed_on_square=final_round.deployed[winning_square],
            ))
            return True

        logger.warning("Lost. Winning square was %d, we bet on %s", winning_square, indices)
        return await self._handle_loss(round_id, winning_square)

    async def _place_bet(self, miner: Optional[Miner], round_id: int,
                         blocks: list[BlockPosition], bet_per_block: int) -> str:
        if miner is None:
            logger.info("No miner account found (first bet), sending Deploy only...")
            return await self.executor.execute_bet(self.signer, round_id, blocks, bet_per_block)

        if miner.needs_checkpoint:
            logger.info("Sending combined Checkpoint(#%d) + Deploy(#%d) transaction...",
                        miner.round_id, round_id)
            return await self.executor.execute_checkpoint_and_bet(
                self.signer, miner.round_id, round_id, blocks, bet_per_block)

        logger.info("Miner already checkpointed, sending Deploy only...")
        return await self.executor.execute_bet(self.signer, round_id, blocks, bet_per_block)

    async def _wait_for_round_completion(self, round_id: int):
        loop = asyncio.get_running_loop()
        started = loop.time()
        logger.debug("Waiting for round #%d to complete...", round_id)

        while True:
            await asyncio.sleep(self.timings.completion_poll_interval)

            if loop.time() - started > self.timings.completion_timeout:
                logger.error("Timeout waiting for round to complete (%.0f seconds)",
                             self.timings.completion_timeout)
                raise RoundTimeoutError(f"Round #{round_id} completion timeout")

            try:
                board = await self.ore.get_board()
                slot = await self.ore.current_slot()
            except TransientNetworkError as e:
                logger.warning("RPC error checking round status: %s. Retrying...", e)
                continue

            if board.round_id != round_id or board.is_complete(slot):
                logger.debug("Round #%d completed!", round_id)
                return

    async def _fetch_settled_round(self, round_id: int) -> Round:
        final_round = await self.ore.get_round(round_id)
        attempts = 0
        while final_round.rng() is None and attempts < self.timings.max_rng_attempts:
            attempts += 1
            logger.debug("RNG not available yet, retrying (%d/%d)...",
                         attempts, self.timings.max_rng_attempts)
            await asyncio.sleep(self.timings.rng_retry_interval)
            final_round = await self.ore.get_round(round_id)

        if final_round.rng() is None:
            raise LedgerNotReadyError(
                f"Round #{round_id} RNG not available after {attempts} attempts")
        return final_round

    async def _handle_win(self, ctx: WinContext):
        logger.info("WE WON round #%d!", ctx.round_id)

        with self.book.hold() as state:
            cycle_bet_total = state.current_cycle_bet_lamports
            state.reset_after_win(self.config.martingale)

        ctx = replace(ctx, cycle_bet_total=cycle_bet_total)

        if not self.live_mode:
            # Nothing was deployed, so there are no rewards to wait for.
            await self._settle_win(ctx, 0, 0)
            return

        self._spawn(self._reconcile_win(ctx))

    async def _handle_loss(self, round_id: int, winning_square: int) -> bool:
        with self.book.hold() as state:
            outcome = state.on_loss(self.config.martingale)
            next_bet = state.current_bet_per_block
            stats = state.snapshot()

        await self._notify(self.notifier.notify_loss(
            round_id, winning_square, outcome.streak, next_bet))

        if outcome.should_warn:
            await self._notify(self.notifier.notify_warning(
                outcome.streak, self.config.martingale.max_consecutive_losses, next_bet))

        await self._maybe_send_stats(stats)
        return outcome.should_continue

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._reconcile_tasks.add(task)
        task.add_done_callback(self._reconcile_tasks.discard)
        return task

    async def _reconcile_win(self, ctx: WinContext):
        """Detached: confirm credited rewards, maybe claim, then report."""
        try:
            rewards_sol_after, rewards_ore_after = await self._confirm_rewards(ctx)

            sol_earned = max(rewards_sol_after - ctx.rewards_sol_before, 0)
            ore_earned = max(rewards_ore_after - ctx.rewards_ore_before, 0)

            logger.info("Actual SOL earned (from protocol): %.6f SOL", lamports_to_sol(sol_earned))
            logger.info("Total accumulated rewards: %.6f SOL", lamports_to_sol(rewards_sol_after))
            logger.info("Our bet: %.6f SOL / Total on square: %.6f SOL",
                        lamports_to_sol(ctx.bet_per_block),
                        lamports_to_sol(ctx.deployed_on_square))

            await self._maybe_auto_claim()
            await self._settle_win(ctx, ore_earned, sol_earned)
        except Exception:
            logger.exception("Reward reconciliation for round #%d failed", ctx.round_id)

    async def _confirm_rewards(self, ctx: WinContext) -> tuple[int, int]:
        before = ctx.rewards_sol_before

        miner = await self.subscription.wait_for_update(before, self.timings.wss_update_timeout)
        if miner is not None:
            logger.debug("Rewards updated via WebSocket: %.6f -> %.6f SOL",
                         lamports_to_sol(before), lamports_to_sol(miner.rewards_sol))
        else:
            logger.debug("WebSocket timeout, fetching via RPC...")
            miner = await self._read_miner()

        sol_after, ore_after = (miner.rewards_sol, miner.rewards_ore) if miner else (0, 0)

        retries = 0
        while sol_after <= before and retries < self.timings.max_rewards_retries:
            retries += 1
            logger.debug("Rewards not updated yet (before: %.6f, after: %.6f), retrying %d/%d...",
                         lamports_to_sol(before), lamports_to_sol(sol_after),
                         retries, self.timings.max_rewards_retries)
            await asyncio.sleep(self.timings.rewards_retry_interval)
            miner = await self._read_miner()
            if miner is not None:
                sol_after, ore_after = miner.rewards_sol, miner.rewards_ore

        if sol_after <= before:
            logger.warning("Rewards still not updated after %d retries (before: %.6f, after: %.6f)",
                           retries, lamports_to_sol(before), lamports_to_sol(sol_after))
        return sol_after, ore_after

    async def _read_miner(self) -> Optional[Miner]:
        try:
            return await self.ore.get_miner(self.authority)
        except (TransientNetworkError, DecodeError) as e:
            logger.warning("Failed to fetch miner account: %s", e)
            return None

    async def _maybe_auto_claim(self):
        miner = await self._read_miner()
        accumulated = miner.rewards_sol if miner else 0
        threshold = self.config.monitoring.auto_claim_sol_threshold_lamports()
        if accumulated <= 0 or accumulated < threshold:
            return

        logger.info("SOL rewards reached threshold: %.6f SOL >= %.6f SOL",
                    lamports_to_sol(accumulated), lamports_to_sol(threshold))
        try:
            signature = await self.executor.execute_claim(self.signer)
        except OreBotError as e:
            logger.error("Failed to claim SOL: %s", e)
            await self._notify(self.notifier.notify_error(f"Failed to claim SOL: {e}"))
            return

        logger.info("SOL claimed successfully! Signature: %s, amount: %.6f SOL",
                    signature, lamports_to_sol(accumulated))
        try:
            new_balance = await self.ore.solana.get_balance(self.authority)
        except TransientNetworkError as e:
            logger.warning("Could not read balance after claim: %s", e)
            new_balance = 0
        await self._notify(self.notifier.notify_claim(accumulated, new_balance))

    async def _settle_win(self, ctx: WinContext, ore_earned: int, sol_earned: int):
        net_profit = sol_earned - ctx.cycle_bet_total
        logger.info("Martingale cycle: bet %.6f SOL, earned %.6f SOL / %.6f ORE, net %.6f SOL",
                    lamports_to_sol(ctx.cycle_bet_total), lamports_to_sol(sol_earned),
                    ore_units_to_ore(ore_earned), lamports_to_sol(net_profit))

        with self.book.hold() as state:
            state.update_earnings(ore_earned, sol_earned)
            stats = state.snapshot()

        await self._notify(self.notifier.notify_win(
            ctx.round_id, ctx.winning_square, ore_earned, sol_earned, net_profit))
        await self._maybe_send_stats(stats)

    async def _maybe_send_stats(self, stats: StatsSnapshot):
        interval = self.config.discord.stats_notification_interval
        if stats.total_rounds > 0 and stats.total_rounds % interval == 0:
            await self._notify(self.notifier.notify_stats(stats))

    async def _notify(self, coro):
        try:
            await coro
        except Exception as e:
            logger.error("Failed to send notification: %s", e)

    async def _check_balance(self):
        balance = await self.ore.solana.get_balance(self.authority)
        logger.info("Balance: %.6f SOL", lamports_to_sol(balance))
        if not self.live_mode:
            return

        floor = self.config.monitoring.min_balance_lamports()
        if balance < floor:
            message = (f"Balance too low: {lamports_to_sol(balance):.6f} SOL "
                       f"(minimum {self.config.monitoring.min_balance_sol:.6f} SOL). Please top up.")
            logger.error(message)
            await self._notify(self.notifier.notify_error(message))
            raise InsufficientBalanceError(message)

    async def _wait_for_next_round(self):
        try:
            board: Board = await self.ore.get_board()
            slot = await self.ore.current_slot()
        except OreBotError as e:
            logger.warning("Failed to read board/slot: %s. Waiting %.0f seconds...",
                           e, self.timings.rpc_error_wait)
            await asyncio.sleep(self.timings.rpc_error_wait)
            return

        if slot < board.start_slot:
            wait = board.slots_until_start(slot) * self.timings.slot_time \
                + self.timings.round_start_buffer
            logger.info("Next round starts in ~%.0f seconds (slot %d -> %d)",
                        wait, slot, board.start_slot)
        else:
            wait = self.timings.next_round_wait
            logger.info("Waiting for next round (%.0f seconds)...", wait)
        await asyncio.sleep(wait)

    def _display_status(self):
        stats = self.book.snapshot()
        table = Table(title="Martingale Status", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Round", f"#{self.round_id}" if self.round_id is not None else "-")
        table.add_row("Bet per Block", f"{lamports_to_sol(stats.current_bet_per_block):.6f} SOL")
        table.add_row("Streak", f"L{stats.consecutive_losses}")
        table.add_row("Wins / Losses", f"{stats.win_count} / {stats.loss_count}")
        table.add_row("Win Rate", f"{stats.win_rate:.2f}%")
        table.add_row("Total Bet", f"{lamports_to_sol(stats.total_bet_lamports):.6f} SOL")
        table.add_row("Net Profit", f"{lamports_to_sol(stats.net_profit_sol):+.6f} SOL")
        console.print(table)

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._shutdown_handler)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / loop; fall back to KeyboardInterrupt.
                return

    def _shutdown_handler(self):
        if not self.running and self._main_task is not None:
            # Second signal: stop waiting for the round to finish.
            self._main_task.cancel()
            return
        console.print("\n[yellow]Shutdown signal received, finishing current round...[/yellow]")
        self.running = False

    async def _shutdown(self):
        console.print("\n[yellow]Shutting down ORE Martingale...[/yellow]")
        self.running = False
        await self.subscription.stop()
        if self._reconcile_tasks:
            logger.info("Waiting for %d reward reconciliation task(s)...",
                        len(self._reconcile_tasks))
            await asyncio.gather(*self._reconcile_tasks, return_exceptions=True)
        await self.notifier.close()
        await self.ore.solana.close()

        stats = self.book.snapshot()
        console.print(f"[dim]Rounds: {stats.total_rounds} | Wins: {stats.win_count} | "
                      f"Net: {lamports_to_sol(stats.net_profit_sol):+.6f} SOL[/dim]")

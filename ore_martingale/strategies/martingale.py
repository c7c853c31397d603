"""
Martingale Engine.

Core idea: bet the base amount, multiply the stake after every loss, snap back
to base after a win. A single win recovers the whole losing cycle, as long as
the streak ends before the loss cap does.

MartingaleState is pure bookkeeping with no I/O. MartingaleBook owns the one
shared instance and the lock that guards it; the round loop and the detached
reward-reconciliation tasks both mutate it only through book.hold().
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from ore_martingale.config import MartingaleConfig
from ore_martingale.ledger.state import lamports_to_sol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LossOutcome:
    should_continue: bool
    should_warn: bool
    streak: int = 0  # losses in a row including this one, before any cap reset


@dataclass(frozen=True)
class StatsSnapshot:
    total_rounds: int
    win_count: int
    loss_count: int
    win_rate: float
    total_earned_ore: int
    total_earned_sol: int
    total_bet_lamports: int
    net_profit_sol: int
    consecutive_losses: int
    current_bet_per_block: int


@dataclass
class MartingaleState:
    current_bet_per_block: int
    current_round: int = 0
    consecutive_losses: int = 0
    total_bet_lamports: int = 0
    current_cycle_bet_lamports: int = 0
    total_earned_ore: int = 0
    total_earned_sol: int = 0
    win_count: int = 0
    loss_count: int = 0
    last_win_time: Optional[float] = None

    @classmethod
    def initial(cls, config: MartingaleConfig) -> "MartingaleState":
        return cls(current_bet_per_block=config.base_bet_lamports())

    def on_loss(self, config: MartingaleConfig) -> LossOutcome:
        """
        Register a lost round and size the next stake.

        Warns once the streak reaches the warning threshold (and on every loss
        after it). Hitting the loss cap resets the cycle and tells the caller
        to stop betting.
        """
        self.consecutive_losses += 1
        self.loss_count += 1
        streak = self.consecutive_losses
        logger.warning("LOST round (streak: %d)", streak)

        should_warn = streak >= config.warn_consecutive_losses

        if streak >= config.max_consecutive_losses:
            logger.error("Max consecutive losses reached (%d). Resetting bet.", streak)
            self.reset(config)
            return LossOutcome(should_continue=False, should_warn=should_warn, streak=streak)

        previous = self.current_bet_per_block
        self.current_bet_per_block = round(previous * config.multiplier)
        logger.info("Martingale: bet %.6f -> %.6f SOL per block",
                    lamports_to_sol(previous), lamports_to_sol(self.current_bet_per_block))

        return LossOutcome(should_continue=True, should_warn=should_warn, streak=streak)

    def reset_after_win(self, config: MartingaleConfig):
        """Back to base. Earnings are credited later via update_earnings()."""
        self.consecutive_losses = 0
        self.current_cycle_bet_lamports = 0
        self.current_bet_per_block = config.base_bet_lamports()
        self.win_count += 1
        self.last_win_time = time.time()

    def record_bet(self, total_bet: int):
        self.total_bet_lamports += total_bet
        self.current_cycle_bet_lamports += total_bet

    def update_earnings(self, ore_reward: int, sol_reward: int):
        self.total_earned_ore += ore_reward
        self.total_earned_sol += sol_reward

    def reset(self, config: MartingaleConfig):
        self.consecutive_losses = 0
        self.current_bet_per_block = config.base_bet_lamports()
        self.current_cycle_bet_lamports = 0

    @property
    def total_rounds(self) -> int:
        return self.win_count + self.loss_count

    @property
    def net_profit_sol(self) -> int:
        return self.total_earned_sol - self.total_bet_lamports

    @property
    def win_rate(self) -> float:
        if self.total_rounds == 0:
            return 0.0
        return self.win_count / self.total_rounds * 100.0

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            total_rounds=self.total_rounds,
            win_count=self.win_count,
            loss_count=self.loss_count,
            win_rate=self.win_rate,
            total_earned_ore=self.total_earned_ore,
            total_earned_sol=self.total_earned_sol,
            total_bet_lamports=self.total_bet_lamports,
            net_profit_sol=self.net_profit_sol,
            consecutive_losses=self.consecutive_losses,
            current_bet_per_block=self.current_bet_per_block,
        )


class MartingaleBook:
    """The process-wide MartingaleState behind a single lock."""

    def __init__(self, config: MartingaleConfig):
        self.config = config
        self._state = MartingaleState.initial(config)
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[MartingaleState]:
        # Never await inside a hold block.
        with self._lock:
            yield self._state

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._state.snapshot()

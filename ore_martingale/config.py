"""
Configuration for the ORE martingale bot.

Everything comes from the environment (optionally a .env file). Amounts are
given in SOL and converted to lamports where the ledger needs them.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from ore_martingale.errors import ConfigError
from ore_martingale.ledger.state import GRID_CELLS, LAMPORTS_PER_SOL

load_dotenv()


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def sol_to_lamports(sol: float) -> int:
    return int(sol * LAMPORTS_PER_SOL)


@dataclass
class WalletConfig:
    private_key: str = field(default_factory=lambda: _env("ORE_PRIVATE_KEY"))


@dataclass
class RPCConfig:
    rpc_url: str = field(
        default_factory=lambda: _env("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
    )
    # Derived from rpc_url when empty
    ws_url: str = field(default_factory=lambda: _env("SOLANA_WS_URL"))


@dataclass
class MartingaleConfig:
    base_bet_amount: float = field(default_factory=lambda: float(_env("BASE_BET_SOL", "0.01")))
    max_consecutive_losses: int = field(
        default_factory=lambda: int(_env("MAX_CONSECUTIVE_LOSSES", "5"))
    )
    warn_consecutive_losses: int = field(
        default_factory=lambda: int(_env("WARN_CONSECUTIVE_LOSSES", "3"))
    )
    blocks_per_bet: int = field(default_factory=lambda: int(_env("BLOCKS_PER_BET", "5")))
    multiplier: float = field(default_factory=lambda: float(_env("BET_MULTIPLIER", "2.0")))

    def base_bet_lamports(self) -> int:
        return sol_to_lamports(self.base_bet_amount)


@dataclass
class MonitoringConfig:
    min_balance_sol: float = field(default_factory=lambda: float(_env("MIN_BALANCE_SOL", "0.05")))
    auto_claim_sol_threshold: float = field(
        default_factory=lambda: float(_env("AUTO_CLAIM_SOL_THRESHOLD", "0.1"))
    )

    def min_balance_lamports(self) -> int:
        return sol_to_lamports(self.min_balance_sol)

    def auto_claim_sol_threshold_lamports(self) -> int:
        return sol_to_lamports(self.auto_claim_sol_threshold)


@dataclass
class DiscordConfig:
    webhook_url: str = field(default_factory=lambda: _env("DISCORD_WEBHOOK_URL"))
    stats_webhook_url: str = field(default_factory=lambda: _env("DISCORD_STATS_WEBHOOK_URL"))
    warn_webhook_url: str = field(default_factory=lambda: _env("DISCORD_WARN_WEBHOOK_URL"))
    stats_notification_interval: int = field(
        default_factory=lambda: int(_env("STATS_NOTIFICATION_INTERVAL", "10"))
    )

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)


@dataclass
class ExecutionConfig:
    max_tx_retries: int = field(default_factory=lambda: int(_env("MAX_TX_RETRIES", "3")))


@dataclass
class AgentConfig:
    wallet: WalletConfig = field(default_factory=WalletConfig)
    rpc: RPCConfig = field(default_factory=RPCConfig)
    martingale: MartingaleConfig = field(default_factory=MartingaleConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    def validate(self) -> "AgentConfig":
        m = self.martingale
        if not 1 <= m.blocks_per_bet <= GRID_CELLS:
            raise ConfigError(f"blocks_per_bet must be between 1 and {GRID_CELLS}")
        if m.max_consecutive_losses < 1:
            raise ConfigError("max_consecutive_losses must be at least 1")
        if m.warn_consecutive_losses > m.max_consecutive_losses:
            raise ConfigError("warn_consecutive_losses must be <= max_consecutive_losses")
        if m.base_bet_lamports() <= 0:
            raise ConfigError("base_bet_amount must be positive")
        if m.multiplier < 1.0:
            raise ConfigError("multiplier must be >= 1.0")
        if self.discord.stats_notification_interval < 1:
            raise ConfigError("stats_notification_interval must be at least 1")
        if self.execution.max_tx_retries < 1:
            raise ConfigError("max_tx_retries must be at least 1")
        return self

    @property
    def worst_case_cycle_lamports(self) -> int:
        """Total staked over a full losing streak up to the loss cap."""
        m = self.martingale
        bet, total = m.base_bet_lamports(), 0
        for _ in range(m.max_consecutive_losses):
            total += bet * m.blocks_per_bet
            bet = round(bet * m.multiplier)
        return total


def load_config(env_file: str = None) -> AgentConfig:
    """Build and validate the config, optionally layering an explicit .env file on top."""
    if env_file:
        load_dotenv(env_file, override=True)
    try:
        config = AgentConfig()
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting in environment: {e}") from e
    return config.validate()

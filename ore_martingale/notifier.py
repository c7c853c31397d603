"""
Discord notifications.

Three channels: the main webhook gets bets, wins, losses, claims and errors;
stats go to the stats webhook and streak warnings to the warn webhook (both
fall back to the main one). Without any webhook a LogNotifier is used instead.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

import aiohttp

from ore_martingale.config import DiscordConfig
from ore_martingale.ledger.state import lamports_to_sol, ore_units_to_ore
from ore_martingale.strategies.martingale import StatsSnapshot

logger = logging.getLogger(__name__)

BLUE = 3447003
GREEN = 3066993
RED = 15158332
ORANGE = 15105570
DARK_RED = 10038562
GOLD = 15844367
PURPLE = 9807270


class Notifier(Protocol):
    async def notify_bet(self, round_id: int, blocks: Sequence[int], bet_per_block: int,
                         total_bet: int, consecutive_losses: int): ...

    async def notify_win(self, round_id: int, winning_block: int, ore_reward: int,
                         sol_reward: int, net_profit_sol: int): ...

    async def notify_loss(self, round_id: int, winning_block: int, consecutive_losses: int,
                          next_bet: int): ...

    async def notify_warning(self, consecutive_losses: int, max_losses: int,
                             current_bet: int): ...

    async def notify_error(self, error_msg: str): ...

    async def notify_claim(self, claimed_amount: int, new_balance: int): ...

    async def notify_stats(self, stats: StatsSnapshot): ...

    async def close(self): ...


def _field(name: str, value: str, inline: bool = True) -> dict:
    return {"name": name, "value": value, "inline": inline}


def _sol(lamports: int) -> str:
    return f"{lamports_to_sol(lamports):.6f} SOL"


def _embed(title: str, color: int, fields: Optional[list] = None,
           description: Optional[str] = None) -> dict:
    embed = {
        "title": title,
        "color": color,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if fields:
        embed["fields"] = fields
    if description:
        embed["description"] = description
    return {"embeds": [embed]}


class DiscordNotifier:
    def __init__(self, config: DiscordConfig, session: Optional[aiohttp.ClientSession] = None):
        self.webhook_url = config.webhook_url
        self.stats_webhook_url = config.stats_webhook_url or config.webhook_url
        self.warn_webhook_url = config.warn_webhook_url or config.webhook_url
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        return self._session

    async def _post(self, url: str, payload: dict):
        async with self._get_session().post(url, json=payload) as response:
            if response.status >= 400:
                body = await response.text()
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=f"Discord webhook failed: {body}",
                )

    async def notify_bet(self, round_id, blocks, bet_per_block, total_bet, consecutive_losses):
        await self._post(self.webhook_url, _embed("New Bet Placed", BLUE, [
            _field("Round", f"#{round_id}"),
            _field("Blocks", str(list(blocks))),
            _field("Bet per Block", _sol(bet_per_block)),
            _field("Total Bet", _sol(total_bet)),
            _field("Consecutive Losses", str(consecutive_losses)),
        ]))

    async def notify_win(self, round_id, winning_block, ore_reward, sol_reward, net_profit_sol):
        await self._post(self.webhook_url, _embed("WIN!", GREEN, [
            _field("Round", f"#{round_id}"),
            _field("Winning Block", str(winning_block)),
            _field("ORE Reward", f"{ore_units_to_ore(ore_reward):.6f} ORE"),
            _field("SOL Reward", _sol(sol_reward)),
            _field("Net Profit", _sol(net_profit_sol)),
        ]))

    async def notify_loss(self, round_id, winning_block, consecutive_losses, next_bet):
        await self._post(self.webhook_url, _embed("Loss", RED, [
            _field("Round", f"#{round_id}"),
            _field("Winning Block", str(winning_block)),
            _field("Consecutive Losses", str(consecutive_losses)),
            _field("Next Bet", f"{_sol(next_bet)} per block"),
        ]))

    async def notify_warning(self, consecutive_losses, max_losses, current_bet):
        await self._post(self.warn_webhook_url, _embed("Warning: High Consecutive Losses", ORANGE, [
            _field("Consecutive Losses", f"{consecutive_losses}/{max_losses}"),
            _field("Current Bet", f"{_sol(current_bet)} per block"),
            _field("Status", "Approaching max loss limit!", inline=False),
        ]))

    async def notify_error(self, error_msg):
        await self._post(self.webhook_url, _embed("Error", DARK_RED, description=error_msg))

    async def notify_claim(self, claimed_amount, new_balance):
        await self._post(self.webhook_url, _embed("SOL Claimed", GOLD, [
            _field("Claimed Amount", _sol(claimed_amount)),
            _field("New Balance", _sol(new_balance)),
        ]))

    async def notify_stats(self, stats):
        await self._post(self.stats_webhook_url, _embed("Bot Statistics", PURPLE, [
            _field("Total Rounds", str(stats.total_rounds)),
            _field("Wins", str(stats.win_count)),
            _field("Losses", str(stats.loss_count)),
            _field("Win Rate", f"{stats.win_rate:.2f}%"),
            _field("Total ORE Earned", f"{ore_units_to_ore(stats.total_earned_ore):.6f} ORE"),
            _field("Net Profit", _sol(stats.net_profit_sol)),
        ]))

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()


class LogNotifier:
    """Used when no webhook is configured. Events only go to the log."""

    async def notify_bet(self, round_id, blocks, bet_per_block, total_bet, consecutive_losses):
        logger.debug("bet: round #%d blocks %s total %s", round_id, list(blocks), _sol(total_bet))

    async def notify_win(self, round_id, winning_block, ore_reward, sol_reward, net_profit_sol):
        logger.debug("win: round #%d square %d net %s", round_id, winning_block,
                     _sol(net_profit_sol))

    async def notify_loss(self, round_id, winning_block, consecutive_losses, next_bet):
        logger.debug("loss: round #%d square %d streak %d", round_id, winning_block,
                     consecutive_losses)

    async def notify_warning(self, consecutive_losses, max_losses, current_bet):
        logger.warning("Loss streak %d/%d, bet now %s per block",
                       consecutive_losses, max_losses, _sol(current_bet))

    async def notify_error(self, error_msg):
        logger.error("Error: %s", error_msg)

    async def notify_claim(self, claimed_amount, new_balance):
        logger.debug("claim: %s, balance %s", _sol(claimed_amount), _sol(new_balance))

    async def notify_stats(self, stats):
        logger.info("Stats: %d rounds, %d W / %d L (%.2f%%), net %s",
                    stats.total_rounds, stats.win_count, stats.loss_count,
                    stats.win_rate, _sol(stats.net_profit_sol))

    async def close(self):
        pass


def build_notifier(config: DiscordConfig) -> Notifier:
    return DiscordNotifier(config) if config.enabled else LogNotifier()

import asyncio
import struct

import pytest
from solders.keypair import Keypair

from ore_martingale.agent import OreMartingaleAgent, RoundTimings
from ore_martingale.config import (
    AgentConfig,
    DiscordConfig,
    ExecutionConfig,
    MartingaleConfig,
    MonitoringConfig,
)
from ore_martingale.errors import InsufficientBalanceError, LedgerNotReadyError, RoundTimeoutError
from ore_martingale.ledger.state import Board, Miner, Round
from ore_martingale.strategies.grid import FixedGridSelector

BASE = 10_000_000
OUR_SQUARES = [0, 1, 2, 3, 4]

FAST = RoundTimings(
    slot_time=0, round_start_buffer=0, completion_poll_interval=0.001,
    completion_timeout=0.05, rng_retry_interval=0.001, max_rng_attempts=3,
    rewards_retry_interval=0.001, max_rewards_retries=2, wss_update_timeout=0.01,
    next_round_wait=0, error_cooldown=0, rpc_error_wait=0,
)


def settled_round(round_id: int, winning_square: int) -> Round:
    return Round(id=round_id, deployed=tuple([BASE] * 25),
                 slot_hash=struct.pack("<4Q", 25 + winning_square, 0, 0, 0),
                 count=tuple([1] * 25))


def make_miner(round_id: int, checkpoint_id: int, rewards_sol: int = 0) -> Miner:
    return Miner(
        authority=Keypair().pubkey(), deployed=tuple([0] * 25), cumulative=tuple([0] * 25),
        checkpoint_fee=0, checkpoint_id=checkpoint_id, last_claim_ore_at=0, last_claim_sol_at=0,
        rewards_factor=0, rewards_sol=rewards_sol, rewards_ore=0, refined_ore=0,
        round_id=round_id, lifetime_rewards_sol=0, lifetime_rewards_ore=0,
    )


class FakeSolana:
    def __init__(self, balance=10 * 10 ** 9):
        self.balance = balance
        self.closed = False

    async def get_balance(self, pubkey):
        return self.balance

    async def close(self):
        self.closed = True


class FakeOre:
    def __init__(self, board, slot, rounds, miner=None):
        self.board = board
        self.slot = slot
        self.rounds = rounds
        self.miner = miner
        self.solana = FakeSolana()

    async def get_board(self):
        return self.board

    async def current_slot(self):
        return self.slot

    async def get_round(self, round_id):
        return self.rounds[round_id]

    async def get_miner(self, authority):
        return self.miner


class FakeExecutor:
    """Records submissions; each bet fast-forwards the ledger to the end of the round."""

    def __init__(self, ore, live_mode=False, advance=True, miner_after_bet=None):
        self.ore = ore
        self.live_mode = live_mode
        self.advance = advance
        self.miner_after_bet = miner_after_bet
        self.calls = []

    def _landed(self):
        if self.advance:
            self.ore.slot = self.ore.board.end_slot
        if self.miner_after_bet is not None:
            self.ore.miner = self.miner_after_bet

    async def execute_bet(self, signer, round_id, blocks, bet_per_block):
        self.calls.append(("deploy", round_id, [b.index for b in blocks], bet_per_block))
        self._landed()
        return "sig-deploy"

    async def execute_checkpoint_and_bet(self, signer, miner_round_id, bet_round_id, blocks,
                                         bet_per_block):
        self.calls.append(("checkpoint+deploy", miner_round_id, bet_round_id,
                           [b.index for b in blocks], bet_per_block))
        self._landed()
        return "sig-combined"

    async def execute_claim(self, signer):
        self.calls.append(("claim",))
        return "sig-claim"


class FakeSubscription:
    def __init__(self, update=None):
        self.update = update
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def wait_for_update(self, baseline, timeout):
        if self.update is not None and self.update.rewards_sol > baseline:
            return self.update
        await asyncio.sleep(timeout)
        return None


class RecordingNotifier:
    def __init__(self):
        self.events = []
        self.closed = False

    def __getattr__(self, name):
        if not name.startswith("notify_"):
            raise AttributeError(name)

        async def record(*args):
            self.events.append((name, args))
        return record

    def named(self, name):
        return [args for event, args in self.events if event == name]

    async def close(self):
        self.closed = True


def make_config(max_losses=5, warn=3):
    return AgentConfig(
        martingale=MartingaleConfig(base_bet_amount=0.01, max_consecutive_losses=max_losses,
                                    warn_consecutive_losses=warn, blocks_per_bet=5,
                                    multiplier=2.0),
        monitoring=MonitoringConfig(min_balance_sol=0.05, auto_claim_sol_threshold=0.1),
        discord=DiscordConfig(webhook_url="", stats_webhook_url="", warn_webhook_url="",
                              stats_notification_interval=10),
        execution=ExecutionConfig(max_tx_retries=3),
    )


def make_agent(ore, executor, subscription=None, config=None):
    return OreMartingaleAgent(
        config or make_config(), ore, executor, subscription or FakeSubscription(),
        RecordingNotifier(), Keypair(), selector=FixedGridSelector(OUR_SQUARES), timings=FAST,
    )


def test_checkpoint_and_deploy_when_previous_round_unsettled():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)},
                  miner=make_miner(round_id=5, checkpoint_id=4))
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    assert asyncio.run(agent.run_betting_round())

    assert executor.calls == [("checkpoint+deploy", 5, 6, OUR_SQUARES, BASE)]


def test_first_bet_without_miner_is_deploy_only():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)})
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    asyncio.run(agent.run_betting_round())

    assert executor.calls == [("deploy", 6, OUR_SQUARES, BASE)]


def test_checkpointed_miner_is_deploy_only():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)},
                  miner=make_miner(round_id=5, checkpoint_id=5))
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    asyncio.run(agent.run_betting_round())

    assert executor.calls[0][0] == "deploy"


def test_loss_doubles_next_stake():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)})
    agent = make_agent(ore, FakeExecutor(ore))

    assert asyncio.run(agent.run_betting_round())

    stats = agent.book.snapshot()
    assert stats.consecutive_losses == 1
    assert stats.current_bet_per_block == 2 * BASE
    assert stats.total_bet_lamports == 5 * BASE
    assert agent.notifier.named("notify_loss") == [(6, 17, 1, 2 * BASE)]


def test_loss_cap_pauses_with_warning():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17), 7: settled_round(7, 20)})
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor, config=make_config(max_losses=2, warn=2))

    async def scenario():
        first = await agent.run_betting_round()
        ore.board = Board(7, 1200, 1350)
        ore.slot = 1250
        second = await agent.run_betting_round()
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert [call[3] for call in executor.calls] == [BASE, 2 * BASE]
    assert agent.notifier.named("notify_warning") == [(2, 2, BASE)]
    assert agent.book.snapshot().current_bet_per_block == BASE


def test_win_resets_before_rewards_are_confirmed():
    before = make_miner(round_id=5, checkpoint_id=5, rewards_sol=1_000)
    after = make_miner(round_id=6, checkpoint_id=6, rewards_sol=30_001_000)
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 2)}, miner=before)
    executor = FakeExecutor(ore, live_mode=True)
    agent = make_agent(ore, executor, subscription=FakeSubscription(update=after))

    # Start from a losing streak so the reset is visible.
    with agent.book.hold() as state:
        state.on_loss(agent.config.martingale)

    async def scenario():
        await agent.run_betting_round()
        mid = agent.book.snapshot()
        await asyncio.gather(*agent._reconcile_tasks)
        return mid

    mid = asyncio.run(scenario())

    assert mid.consecutive_losses == 0
    assert mid.current_bet_per_block == BASE
    assert mid.win_count == 1
    assert mid.total_earned_sol == 0

    final = agent.book.snapshot()
    assert final.total_earned_sol == 30_000_000
    round_id, square, ore_earned, sol_earned, net = agent.notifier.named("notify_win")[0]
    assert (round_id, square, sol_earned) == (6, 2, 30_000_000)
    assert net == 30_000_000 - 5 * 2 * BASE
    assert ("claim",) not in executor.calls


def test_win_triggers_auto_claim_over_threshold():
    before = make_miner(round_id=5, checkpoint_id=5, rewards_sol=90_000_000)
    after = make_miner(round_id=6, checkpoint_id=6, rewards_sol=150_000_000)
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 0)}, miner=before)
    executor = FakeExecutor(ore, live_mode=True, miner_after_bet=after)
    # No websocket push: rewards come from the RPC fallback.
    agent = make_agent(ore, executor, subscription=FakeSubscription())

    async def scenario():
        await agent.run_betting_round()
        await asyncio.gather(*agent._reconcile_tasks)

    asyncio.run(scenario())

    assert executor.calls[-1] == ("claim",)
    assert agent.notifier.named("notify_claim")[0][0] == 150_000_000
    assert agent.book.snapshot().total_earned_sol == 60_000_000


def test_simulated_win_settles_immediately():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 4)})
    agent = make_agent(ore, FakeExecutor(ore))

    asyncio.run(agent.run_betting_round())

    assert not agent._reconcile_tasks
    assert agent.notifier.named("notify_win") == [(6, 4, 0, 0, -5 * BASE)]


def test_inactive_round_is_skipped():
    ore = FakeOre(Board(6, 1000, 1150), 900, {})
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    assert asyncio.run(agent.run_betting_round())
    assert executor.calls == []


def test_round_is_played_only_once():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)})
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    async def scenario():
        await agent.run_betting_round()
        ore.slot = 1100
        await agent.run_betting_round()

    asyncio.run(scenario())
    assert len(executor.calls) == 1


def test_completion_timeout():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)})
    agent = make_agent(ore, FakeExecutor(ore, advance=False))

    with pytest.raises(RoundTimeoutError):
        asyncio.run(agent.run_betting_round())
    # The stake was committed on-chain, so it is still on the books.
    assert agent.book.snapshot().total_bet_lamports == 5 * BASE


def test_unsettled_rng_gives_up():
    unsettled = Round(id=6, deployed=tuple([0] * 25), slot_hash=bytes(32), count=tuple([0] * 25))
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: unsettled})
    agent = make_agent(ore, FakeExecutor(ore))

    with pytest.raises(LedgerNotReadyError):
        asyncio.run(agent.run_betting_round())


def test_run_pauses_at_loss_cap_and_shuts_down():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)})
    subscription = FakeSubscription()
    agent = make_agent(ore, FakeExecutor(ore), subscription=subscription,
                       config=make_config(max_losses=1, warn=1))

    asyncio.run(agent.run())

    assert subscription.started and subscription.stopped
    assert agent.notifier.closed
    assert ore.solana.closed
    assert any("Max consecutive losses" in args[0] for args in agent.notifier.named("notify_error"))


def test_live_run_refuses_low_balance():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {})
    ore.solana.balance = 1_000
    executor = FakeExecutor(ore, live_mode=True)
    agent = make_agent(ore, executor)

    with pytest.raises(InsufficientBalanceError):
        asyncio.run(agent.run())
    assert executor.calls == []
    assert ore.solana.closed


def test_round_already_played_before_restart_is_not_redeployed():
    ore = FakeOre(Board(6, 1000, 1150), 1050, {6: settled_round(6, 17)},
                  miner=make_miner(round_id=6, checkpoint_id=5))
    executor = FakeExecutor(ore)
    agent = make_agent(ore, executor)

    assert asyncio.run(agent.run_betting_round())

    assert executor.calls == []
    assert agent.last_bet_round == 6
    assert agent.book.snapshot().total_bet_lamports == 0

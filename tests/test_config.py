import pytest

from ore_martingale.config import AgentConfig, DiscordConfig, MartingaleConfig, load_config
from ore_martingale.errors import ConfigError


def _martingale(**overrides):
    values = dict(base_bet_amount=0.01, max_consecutive_losses=5, warn_consecutive_losses=3,
                  blocks_per_bet=5, multiplier=2.0)
    values.update(overrides)
    return MartingaleConfig(**values)


def test_defaults_validate():
    AgentConfig(martingale=_martingale()).validate()


@pytest.mark.parametrize("overrides", [
    {"blocks_per_bet": 0},
    {"blocks_per_bet": 26},
    {"warn_consecutive_losses": 6},
    {"max_consecutive_losses": 0, "warn_consecutive_losses": 0},
    {"multiplier": 0.5},
    {"base_bet_amount": 0.0},
])
def test_invalid_martingale_settings(overrides):
    with pytest.raises(ConfigError):
        AgentConfig(martingale=_martingale(**overrides)).validate()


def test_worst_case_cycle():
    cfg = AgentConfig(martingale=_martingale(max_consecutive_losses=3, blocks_per_bet=2))
    base = 10_000_000
    assert cfg.worst_case_cycle_lamports == 2 * (base + 2 * base + 4 * base)


def test_webhook_fallbacks():
    from ore_martingale.notifier import DiscordNotifier, LogNotifier, build_notifier

    cfg = DiscordConfig(webhook_url="https://hook/main", stats_webhook_url="",
                        warn_webhook_url="https://hook/warn", stats_notification_interval=10)
    notifier = build_notifier(cfg)
    assert isinstance(notifier, DiscordNotifier)
    assert notifier.stats_webhook_url == "https://hook/main"
    assert notifier.warn_webhook_url == "https://hook/warn"

    disabled = DiscordConfig(webhook_url="", stats_webhook_url="", warn_webhook_url="",
                             stats_notification_interval=10)
    assert isinstance(build_notifier(disabled), LogNotifier)


def test_load_config_from_env(monkeypatch):
    monkeypatch.setenv("BASE_BET_SOL", "0.02")
    monkeypatch.setenv("BLOCKS_PER_BET", "3")
    cfg = load_config()
    assert cfg.martingale.base_bet_lamports() == 20_000_000
    assert cfg.martingale.blocks_per_bet == 3


def test_load_config_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("BLOCKS_PER_BET", "5")
    env_file = tmp_path / ".env"
    env_file.write_text("BLOCKS_PER_BET=7\n")
    assert load_config(str(env_file)).martingale.blocks_per_bet == 7


def test_load_config_rejects_garbage(monkeypatch):
    monkeypatch.setenv("MAX_CONSECUTIVE_LOSSES", "lots")
    with pytest.raises(ConfigError):
        load_config()

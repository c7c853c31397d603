from click.testing import CliRunner

from ore_martingale.cli import cli


def test_config_masks_secrets(monkeypatch):
    monkeypatch.setenv("ORE_PRIVATE_KEY", "4xQwERTYsecretsecretsecretZZ9k")
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.com/api/webhooks/1/token")
    monkeypatch.setenv("BLOCKS_PER_BET", "4")

    result = CliRunner().invoke(cli, ["config"])

    assert result.exit_code == 0, result.output
    assert "Blocks per Bet: 4" in result.output
    assert "4xQw...ZZ9k" in result.output
    assert "secretsecret" not in result.output
    assert "token" not in result.output


def test_invalid_config_exits_nonzero(monkeypatch):
    monkeypatch.setenv("BLOCKS_PER_BET", "30")
    result = CliRunner().invoke(cli, ["config"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_run_live_requires_key(monkeypatch):
    monkeypatch.setenv("ORE_PRIVATE_KEY", "")
    monkeypatch.setenv("BLOCKS_PER_BET", "5")
    result = CliRunner().invoke(cli, ["run-live", "--yes"])
    assert result.exit_code == 1
    assert "ORE_PRIVATE_KEY" in result.output

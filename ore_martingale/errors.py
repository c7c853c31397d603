"""
Error taxonomy for the bot.

Everything recoverable derives from OreBotError so the round loop can catch
one type, report it, cool down and try again.
"""


class OreBotError(Exception):
    """Base class for all bot errors."""


class ConfigError(OreBotError):
    """Raised when the configuration is missing or inconsistent."""


class WalletError(OreBotError):
    """Raised when the private key cannot be turned into a keypair."""


class TransientNetworkError(OreBotError):
    """RPC or websocket failure. Safe to retry."""


class TransactionFailedError(OreBotError):
    """A transaction landed but the runtime reported an error for it."""


class LedgerNotReadyError(OreBotError):
    """The ledger has not reached the state we are waiting for yet."""


class RoundTimeoutError(LedgerNotReadyError):
    """The round did not complete within the hard settlement timeout."""


class DecodeError(OreBotError):
    """Account or notification payload does not match the expected layout."""


class InsufficientBalanceError(OreBotError):
    """Wallet balance dropped below the configured floor. Fatal."""

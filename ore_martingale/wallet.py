"""
Keypair loading.

Accepts either a base58 string of the 64-byte secret key (Phantom/Solflare
export) or the JSON byte array written by `solana-keygen`, inline or as a path.
"""

import json
import logging
from pathlib import Path

import base58
from solders.keypair import Keypair

from ore_martingale.errors import WalletError

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64


def _from_secret(secret: bytes) -> Keypair:
    if len(secret) != SECRET_KEY_LENGTH:
        raise WalletError(f"Invalid private key: expected {SECRET_KEY_LENGTH} bytes, got {len(secret)}")
    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise WalletError(f"Failed to create keypair: {e}") from e


def _from_byte_array(raw: str) -> Keypair:
    try:
        secret = bytes(json.loads(raw))
    except (ValueError, TypeError) as e:
        raise WalletError(f"Invalid keypair JSON: {e}") from e
    return _from_secret(secret)


def load_keypair(private_key: str) -> Keypair:
    if not private_key:
        raise WalletError("No private key configured (ORE_PRIVATE_KEY)")

    private_key = private_key.strip()
    path = Path(private_key)
    if private_key.endswith(".json") and path.is_file():
        keypair = _from_byte_array(path.read_text())
    elif private_key.startswith("["):
        keypair = _from_byte_array(private_key)
    else:
        try:
            secret = base58.b58decode(private_key)
        except ValueError as e:
            raise WalletError(f"Failed to decode base58 private key: {e}") from e
        keypair = _from_secret(secret)

    logger.info("Loaded keypair: %s", keypair.pubkey())
    return keypair

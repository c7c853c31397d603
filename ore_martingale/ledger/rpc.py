"""
Thin async wrapper around solana-py's AsyncClient.

Exposes exactly what the bot needs and translates library exceptions into
our error taxonomy, so callers never have to know about solana-py internals.
"""

import asyncio
import logging
from typing import Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ore_martingale.errors import TransactionFailedError, TransientNetworkError

logger = logging.getLogger(__name__)

_RPC_ERRORS = (SolanaRpcException, RPCException, UnconfirmedTxError, OSError, asyncio.TimeoutError)


class SolanaClient:
    """Ledger RPC at `confirmed` commitment."""

    def __init__(self, rpc_url: str, client: Optional[AsyncClient] = None):
        self.rpc_url = rpc_url
        self._client = client or AsyncClient(rpc_url, commitment=Confirmed)

    async def get_current_slot(self) -> int:
        try:
            return (await self._client.get_slot()).value
        except _RPC_ERRORS as e:
            raise TransientNetworkError(f"get_slot failed: {e}") from e

    async def get_balance(self, pubkey: Pubkey) -> int:
        try:
            return (await self._client.get_balance(pubkey)).value
        except _RPC_ERRORS as e:
            raise TransientNetworkError(f"get_balance failed: {e}") from e

    async def get_account_bytes(self, pubkey: Pubkey) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""
        try:
            resp = await self._client.get_account_info(pubkey)
        except _RPC_ERRORS as e:
            raise TransientNetworkError(f"get_account_info failed for {pubkey}: {e}") from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_recent_block_reference(self) -> Hash:
        try:
            return (await self._client.get_latest_blockhash()).value.blockhash
        except _RPC_ERRORS as e:
            raise TransientNetworkError(f"get_latest_blockhash failed: {e}") from e

    async def submit_and_confirm(self, tx: Transaction) -> str:
        """Send a signed transaction and wait for `confirmed`. Returns the signature."""
        try:
            signature = (await self._client.send_transaction(tx)).value
            resp = await self._client.confirm_transaction(signature, Confirmed)
        except _RPC_ERRORS as e:
            raise TransientNetworkError(f"Transaction submission failed: {e}") from e

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            raise TransactionFailedError(f"Transaction {signature} failed: {status.err}")
        return str(signature)

    async def close(self):
        await self._client.close()

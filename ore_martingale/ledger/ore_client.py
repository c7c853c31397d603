"""
Typed reads of ORE program accounts.

Snapshots are returned fresh on every call; nothing is cached.
"""

from typing import Optional

from solders.pubkey import Pubkey

from ore_martingale.errors import LedgerNotReadyError
from ore_martingale.ledger import pda
from ore_martingale.ledger.rpc import SolanaClient
from ore_martingale.ledger.state import Board, Miner, Round


class OreClient:
    def __init__(self, solana: SolanaClient):
        self.solana = solana

    async def get_board(self) -> Board:
        data = await self.solana.get_account_bytes(pda.board_address())
        if data is None:
            raise LedgerNotReadyError("Board account not found")
        return Board.decode(data)

    async def get_round(self, round_id: int) -> Round:
        data = await self.solana.get_account_bytes(pda.round_address(round_id))
        if data is None:
            raise LedgerNotReadyError(f"Round #{round_id} account not found")
        return Round.decode(data)

    async def get_miner(self, authority: Pubkey) -> Optional[Miner]:
        """None until the authority has deployed at least once."""
        data = await self.solana.get_account_bytes(pda.miner_address(authority))
        if data is None:
            return None
        return Miner.decode(data)

    async def current_slot(self) -> int:
        return await self.solana.get_current_slot()

    @staticmethod
    def miner_address(authority: Pubkey) -> Pubkey:
        return pda.miner_address(authority)

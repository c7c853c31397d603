"""
Transaction Executor - Where decisions become transactions.

Handles:
- Deploy, Checkpoint+Deploy and ClaimSOL transactions
- Signing against a fresh blockhash on every attempt
- Retry with exponential backoff
- Simulation mode for paper runs, where nothing is sent
"""

import asyncio
import logging
import uuid
from typing import Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.transaction import Transaction

from ore_martingale.errors import TransactionFailedError, TransientNetworkError
from ore_martingale.ledger.instruction import (
    build_checkpoint_instruction,
    build_claim_instruction,
    build_deploy_instruction,
)
from ore_martingale.ledger.rpc import SolanaClient
from ore_martingale.strategies.grid import BlockPosition

logger = logging.getLogger(__name__)


class TransactionExecutor:
    """
    Builds and lands ORE transactions.

    Supports two modes:
    - Live: sign, send and confirm on-chain
    - Simulation: log what would be sent and return a fake signature
    """

    BASE_RETRY_DELAY = 0.1

    def __init__(self, solana: SolanaClient, max_retries: int = 3, live_mode: bool = False):
        self.solana = solana
        self.max_retries = max_retries
        self.live_mode = live_mode

    async def execute_bet(self, signer: Keypair, round_id: int,
                          blocks: Sequence[BlockPosition], bet_per_block: int) -> str:
        """One Deploy covering every selected square through a single mask."""
        instruction = build_deploy_instruction(
            signer.pubkey(),
            signer.pubkey(),
            bet_per_block,
            round_id,
            [b.index for b in blocks],
        )
        logger.debug("Building Deploy instruction for %d blocks", len(blocks))
        for block in blocks:
            logger.debug("   - Block %d (row: %d, col: %d)", block.index, block.row, block.col)

        return await self.submit(signer, [instruction])

    async def execute_checkpoint_and_bet(self, signer: Keypair, miner_round_id: int,
                                         bet_round_id: int, blocks: Sequence[BlockPosition],
                                         bet_per_block: int) -> str:
        """
        Checkpoint the previous round and deploy on the new one atomically.

        Both land in the same transaction, checkpoint first, so there is never
        a deploy on top of an unsettled round.
        """
        checkpoint_ix = build_checkpoint_instruction(signer.pubkey(), signer.pubkey(),
                                                     miner_round_id)
        deploy_ix = build_deploy_instruction(
            signer.pubkey(),
            signer.pubkey(),
            bet_per_block,
            bet_round_id,
            [b.index for b in blocks],
        )
        logger.debug("Building combined Checkpoint + Deploy transaction")
        logger.debug("   Checkpoint: round #%d", miner_round_id)
        logger.debug("   Deploy: %d blocks on round #%d", len(blocks), bet_round_id)

        return await self.submit(signer, [checkpoint_ix, deploy_ix])

    async def execute_claim(self, signer: Keypair) -> str:
        logger.debug("Building Claim SOL instruction")
        return await self.submit(signer, [build_claim_instruction(signer.pubkey())])

    async def submit(self, signer: Keypair, instructions: list[Instruction]) -> str:
        """
        Sign, send and confirm, retrying up to max_retries times.

        Every attempt fetches a new blockhash and re-signs: an expired
        blockhash is by far the most common reason a send fails.
        """
        if not self.live_mode:
            return self._simulate(instructions)

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                signature = await self._send(signer, instructions)
                logger.info("Transaction confirmed: %s", signature)
                return signature
            except (TransientNetworkError, TransactionFailedError) as e:
                logger.warning("Transaction attempt %d failed: %s", attempt, e)
                last_error = e
                if attempt < self.max_retries:
                    delay = self.BASE_RETRY_DELAY * 2 ** attempt
                    logger.info("Retrying in %.1fs...", delay)
                    await asyncio.sleep(delay)

        raise last_error

    async def _send(self, signer: Keypair, instructions: list[Instruction]) -> str:
        blockhash = await self.solana.get_recent_block_reference()
        tx = Transaction.new_signed_with_payer(instructions, signer.pubkey(), [signer], blockhash)
        return await self.solana.submit_and_confirm(tx)

    def _simulate(self, instructions: list[Instruction]) -> str:
        opcodes = [bytes(ix.data)[0] for ix in instructions]
        signature = f"SIM_{uuid.uuid4().hex[:16]}"
        logger.info("[simulation] Would send %d instruction(s) %s -> %s",
                    len(instructions), opcodes, signature)
        return signature

"""
ORE instruction encoding.

Data layouts:
    Deploy      opcode 6 | amount u64 LE | squares bitmask u32 LE
    Checkpoint  opcode 2
    ClaimSOL    opcode 3
"""

import struct
from typing import Iterable

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ore_martingale.ledger.pda import (
    ORE_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    automation_address,
    board_address,
    miner_address,
    round_address,
    treasury_address,
)
from ore_martingale.ledger.state import GRID_CELLS

CHECKPOINT = 2
CLAIM_SOL = 3
DEPLOY = 6


def squares_mask(squares: Iterable[int]) -> int:
    """Bit i is set iff square i is selected."""
    mask = 0
    for index in squares:
        if not 0 <= index < GRID_CELLS:
            raise ValueError(f"Square index out of range: {index}")
        mask |= 1 << index
    return mask


def encode_deploy(amount: int, squares: Iterable[int]) -> bytes:
    return bytes([DEPLOY]) + struct.pack("<QI", amount, squares_mask(squares))


def encode_checkpoint() -> bytes:
    return bytes([CHECKPOINT])


def encode_claim() -> bytes:
    return bytes([CLAIM_SOL])


def build_deploy_instruction(signer: Pubkey, authority: Pubkey, amount: int,
                             round_id: int, squares: Iterable[int]) -> Instruction:
    """
    Deploy `amount` lamports on each selected square of round `round_id`.

    The automation account may not exist; the program accepts it empty.
    """
    accounts = [
        AccountMeta(signer, is_signer=True, is_writable=True),
        AccountMeta(authority, is_signer=False, is_writable=True),
        AccountMeta(automation_address(authority), is_signer=False, is_writable=True),
        AccountMeta(board_address(), is_signer=False, is_writable=True),
        AccountMeta(miner_address(authority), is_signer=False, is_writable=True),
        AccountMeta(round_address(round_id), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORE_PROGRAM_ID, encode_deploy(amount, squares), accounts)


def build_checkpoint_instruction(signer: Pubkey, authority: Pubkey,
                                 miner_round_id: int) -> Instruction:
    """Settle the miner's rewards for the round it last played."""
    accounts = [
        AccountMeta(signer, is_signer=True, is_writable=True),
        AccountMeta(board_address(), is_signer=False, is_writable=True),
        AccountMeta(miner_address(authority), is_signer=False, is_writable=True),
        AccountMeta(round_address(miner_round_id), is_signer=False, is_writable=True),
        AccountMeta(treasury_address(), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORE_PROGRAM_ID, encode_checkpoint(), accounts)


def build_claim_instruction(signer: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(signer, is_signer=True, is_writable=True),
        AccountMeta(miner_address(signer), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORE_PROGRAM_ID, encode_claim(), accounts)

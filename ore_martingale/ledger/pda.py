"""
Program-derived addresses for the ORE program.

Seeds follow the on-chain program: "board", "round" + round id (u64 LE),
"miner" + authority, "automation" + authority, "treasury".
"""

import struct

from solders.pubkey import Pubkey

ORE_PROGRAM_ID = Pubkey.from_string("oreV3EG1i9BEgiAJ8b177Z2S2rMarzak4NMv1kULvWv")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

BOARD = b"board"
ROUND = b"round"
MINER = b"miner"
AUTOMATION = b"automation"
TREASURY = b"treasury"


def derive_address(seeds: list[bytes], program_id: Pubkey = ORE_PROGRAM_ID) -> Pubkey:
    """Deterministic off-curve address for the given seeds."""
    address, _bump = Pubkey.find_program_address(seeds, program_id)
    return address


def board_address() -> Pubkey:
    return derive_address([BOARD])


def round_address(round_id: int) -> Pubkey:
    return derive_address([ROUND, struct.pack("<Q", round_id)])


def miner_address(authority: Pubkey) -> Pubkey:
    return derive_address([MINER, bytes(authority)])


def automation_address(authority: Pubkey) -> Pubkey:
    return derive_address([AUTOMATION, bytes(authority)])


def treasury_address() -> Pubkey:
    return derive_address([TREASURY])

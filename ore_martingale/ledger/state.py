"""
ORE account layouts.

Every program account starts with an 8-byte discriminator followed by a packed
little-endian record. We skip the discriminator (presence only, its value is
never trusted) and unpack the record with a fixed struct layout.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional

from solders.pubkey import Pubkey

from ore_martingale.errors import DecodeError

DISCRIMINATOR_SIZE = 8
GRID_CELLS = 25

LAMPORTS_PER_SOL = 1_000_000_000
ORE_BASE_UNITS = 100_000_000_000

_BOARD = struct.Struct("<3Q")
_ROUND = struct.Struct("<Q25Q32s25QQQ32s32sQQQQ")
_MINER = struct.Struct("<32s25Q25QQQqq16sQQQQQQ")

_ZERO_HASH = bytes(32)
_FULL_HASH = b"\xff" * 32


def decode_account(data: bytes, layout: struct.Struct) -> tuple:
    """Strip the discriminator and unpack the record body."""
    needed = DISCRIMINATOR_SIZE + layout.size
    if len(data) < needed:
        raise DecodeError(f"Account data too short: {len(data)} bytes, expected {needed}")
    body = data[DISCRIMINATOR_SIZE:]
    if len(body) != layout.size:
        raise DecodeError(
            f"Unexpected account size: body is {len(body)} bytes, layout is {layout.size}"
        )
    return layout.unpack(body)


def _discriminator(tag: int) -> bytes:
    return bytes([tag]) + bytes(DISCRIMINATOR_SIZE - 1)


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def ore_units_to_ore(units: int) -> float:
    return units / ORE_BASE_UNITS


@dataclass(frozen=True)
class Board:
    round_id: int
    start_slot: int
    end_slot: int

    DISCRIMINATOR = 105

    @classmethod
    def decode(cls, data: bytes) -> "Board":
        return cls(*decode_account(data, _BOARD))

    def encode(self) -> bytes:
        return _discriminator(self.DISCRIMINATOR) + _BOARD.pack(
            self.round_id, self.start_slot, self.end_slot
        )

    def is_active(self, slot: int) -> bool:
        return self.start_slot <= slot < self.end_slot

    def is_complete(self, slot: int) -> bool:
        return slot >= self.end_slot

    def slots_until_start(self, slot: int) -> int:
        return max(self.start_slot - slot, 0)


@dataclass(frozen=True)
class Round:
    id: int
    deployed: tuple
    slot_hash: bytes
    count: tuple
    expires_at: int = 0
    motherlode: int = 0
    rent_payer: Pubkey = field(default_factory=Pubkey.default)
    top_miner: Pubkey = field(default_factory=Pubkey.default)
    top_miner_reward: int = 0
    total_deployed: int = 0
    total_vaulted: int = 0
    total_winnings: int = 0

    DISCRIMINATOR = 109

    @classmethod
    def decode(cls, data: bytes) -> "Round":
        v = decode_account(data, _ROUND)
        return cls(
            id=v[0],
            deployed=tuple(v[1:26]),
            slot_hash=v[26],
            count=tuple(v[27:52]),
            expires_at=v[52],
            motherlode=v[53],
            rent_payer=Pubkey.from_bytes(v[54]),
            top_miner=Pubkey.from_bytes(v[55]),
            top_miner_reward=v[56],
            total_deployed=v[57],
            total_vaulted=v[58],
            total_winnings=v[59],
        )

    def encode(self) -> bytes:
        return _discriminator(self.DISCRIMINATOR) + _ROUND.pack(
            self.id,
            *self.deployed,
            self.slot_hash,
            *self.count,
            self.expires_at,
            self.motherlode,
            bytes(self.rent_payer),
            bytes(self.top_miner),
            self.top_miner_reward,
            self.total_deployed,
            self.total_vaulted,
            self.total_winnings,
        )

    def rng(self) -> Optional[int]:
        """XOR of the four LE u64 words of the slot hash, None until settled."""
        if self.slot_hash in (_ZERO_HASH, _FULL_HASH):
            return None
        r1, r2, r3, r4 = struct.unpack("<4Q", self.slot_hash)
        return r1 ^ r2 ^ r3 ^ r4

    @staticmethod
    def winning_square(rng: int) -> int:
        return rng % GRID_CELLS


@dataclass(frozen=True)
class Miner:
    authority: Pubkey
    deployed: tuple
    cumulative: tuple
    checkpoint_fee: int
    checkpoint_id: int
    last_claim_ore_at: int
    last_claim_sol_at: int
    rewards_factor: int
    rewards_sol: int
    rewards_ore: int
    refined_ore: int
    round_id: int
    lifetime_rewards_sol: int
    lifetime_rewards_ore: int

    DISCRIMINATOR = 103

    @classmethod
    def decode(cls, data: bytes) -> "Miner":
        v = decode_account(data, _MINER)
        return cls(
            authority=Pubkey.from_bytes(v[0]),
            deployed=tuple(v[1:26]),
            cumulative=tuple(v[26:51]),
            checkpoint_fee=v[51],
            checkpoint_id=v[52],
            last_claim_ore_at=v[53],
            last_claim_sol_at=v[54],
            rewards_factor=int.from_bytes(v[55], "little"),
            rewards_sol=v[56],
            rewards_ore=v[57],
            refined_ore=v[58],
            round_id=v[59],
            lifetime_rewards_sol=v[60],
            lifetime_rewards_ore=v[61],
        )

    def encode(self) -> bytes:
        return _discriminator(self.DISCRIMINATOR) + _MINER.pack(
            bytes(self.authority),
            *self.deployed,
            *self.cumulative,
            self.checkpoint_fee,
            self.checkpoint_id,
            self.last_claim_ore_at,
            self.last_claim_sol_at,
            self.rewards_factor.to_bytes(16, "little"),
            self.rewards_sol,
            self.rewards_ore,
            self.refined_ore,
            self.round_id,
            self.lifetime_rewards_sol,
            self.lifetime_rewards_ore,
        )

    @property
    def needs_checkpoint(self) -> bool:
        """The last played round has not been settled into rewards yet."""
        return self.checkpoint_id != self.round_id

"""
SPV proof verification.

A proof shows that a transaction is included in a block through a merkle
branch, and that the block is buried under enough accumulated work. The
expected difficulty comes from an external relay tracking the current and
previous difficulty epochs.

The coinbase transaction of the same block is proven alongside the
transaction, at the same tree depth. This rules out 64-byte transactions
posing as inner merkle nodes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger
from pydantic import BaseModel, Field

from btccore.constants import DIFF1_TARGET, HASH_LENGTH, HEADER_LENGTH
from btccore.crypto import hash256, sha256
from btccore.tx import BitcoinTx


class SPVProofError(ValueError):
    """Raised when an SPV proof does not authenticate a transaction."""

    pass


def bits_to_target(bits: int) -> int:
    """Expand compact nBits into the full 256-bit target."""
    exponent = bits >> 24
    mantissa = bits & 0x007FFFFF
    if exponent <= 3:
        return mantissa >> (8 * (3 - exponent))
    return mantissa << (8 * (exponent - 3))


def target_to_difficulty(target: int) -> int:
    if target <= 0:
        raise SPVProofError("Target must be positive")
    return DIFF1_TARGET // target


@dataclass(frozen=True)
class BlockHeader:
    """Bitcoin block header (80 bytes)."""

    version: int
    prev_block_hash: bytes  # internal byte order
    merkle_root: bytes  # internal byte order
    timestamp: int
    bits: int
    nonce: int

    @classmethod
    def from_bytes(cls, data: bytes) -> BlockHeader:
        if len(data) != HEADER_LENGTH:
            raise SPVProofError(f"Header must be {HEADER_LENGTH} bytes, got {len(data)}")
        return cls(
            version=int.from_bytes(data[0:4], "little"),
            prev_block_hash=data[4:36],
            merkle_root=data[36:68],
            timestamp=int.from_bytes(data[68:72], "little"),
            bits=int.from_bytes(data[72:76], "little"),
            nonce=int.from_bytes(data[76:80], "little"),
        )

    def to_bytes(self) -> bytes:
        return (
            self.version.to_bytes(4, "little")
            + self.prev_block_hash
            + self.merkle_root
            + self.timestamp.to_bytes(4, "little")
            + self.bits.to_bytes(4, "little")
            + self.nonce.to_bytes(4, "little")
        )

    def hash(self) -> bytes:
        return hash256(self.to_bytes())

    @property
    def target(self) -> int:
        return bits_to_target(self.bits)

    @property
    def difficulty(self) -> int:
        return target_to_difficulty(self.target)

    def has_valid_work(self) -> bool:
        # Header hashes compare as little-endian 256-bit integers
        return int.from_bytes(self.hash(), "little") <= self.target


def parse_headers(headers: bytes) -> list[BlockHeader]:
    if not headers or len(headers) % HEADER_LENGTH != 0:
        raise SPVProofError("Invalid length of the headers chain")
    return [
        BlockHeader.from_bytes(headers[i : i + HEADER_LENGTH])
        for i in range(0, len(headers), HEADER_LENGTH)
    ]


def verify_merkle_proof(leaf: bytes, merkle_root: bytes, proof: bytes, index: int) -> bool:
    """
    Verify a merkle branch.

    Args:
        leaf: Transaction hash (internal byte order)
        merkle_root: Root from the block header
        proof: Concatenated 32-byte sibling hashes, leaf level first
        index: Position of the leaf in the block; bit i picks the side at depth i

    Returns:
        True if the branch reduces to merkle_root
    """
    if len(proof) % HASH_LENGTH != 0 or index < 0:
        return False

    depth = len(proof) // HASH_LENGTH
    if index >> depth:
        return False

    current = leaf
    for i in range(depth):
        sibling = proof[i * HASH_LENGTH : (i + 1) * HASH_LENGTH]
        if (index >> i) & 1:
            current = hash256(sibling + current)
        else:
            current = hash256(current + sibling)

    return current == merkle_root


def validate_header_chain(headers: bytes) -> int:
    """
    Check chain continuity and work of a run of headers. Each header is held
    to its own declared target, which may change inside the chain.

    Returns:
        Accumulated difficulty of the chain

    Raises:
        SPVProofError: On bad length, broken links or insufficient work
    """
    chain = parse_headers(headers)
    total_difficulty = 0
    previous_hash: bytes | None = None

    for height, header in enumerate(chain):
        if previous_hash is not None and header.prev_block_hash != previous_hash:
            raise SPVProofError(f"Invalid headers chain at position {height}")
        if not header.has_valid_work():
            raise SPVProofError(f"Insufficient work in header at position {height}")
        total_difficulty += header.difficulty
        previous_hash = header.hash()

    return total_difficulty


class DifficultyRelay(ABC):
    """
    Source of the difficulty of the current and previous epochs.
    """

    @abstractmethod
    def current_epoch_difficulty(self) -> int:
        """Difficulty of the current retarget epoch"""

    @abstractmethod
    def previous_epoch_difficulty(self) -> int:
        """Difficulty of the epoch before the current one"""


class StaticDifficultyRelay(DifficultyRelay):
    """Relay with fixed values, set by whoever tracks the chain."""

    def __init__(self, current: int, previous: int | None = None):
        self.current = current
        self.previous = current if previous is None else previous

    def current_epoch_difficulty(self) -> int:
        return self.current

    def previous_epoch_difficulty(self) -> int:
        return self.previous

    def retarget(self, new_difficulty: int) -> None:
        self.previous, self.current = self.current, new_difficulty


class SPVProof(BaseModel):
    merkle_proof: bytes
    tx_index_in_block: int = Field(..., ge=0)
    bitcoin_headers: bytes
    coinbase_preimage: bytes = Field(..., min_length=32, max_length=32)
    coinbase_proof: bytes

    model_config = {"frozen": True}


class ProofVerifier:
    """
    Validates SPV proofs against a difficulty relay.

    Args:
        relay: Provider of current/previous epoch difficulty
        tx_proof_difficulty_factor: Number of blocks' worth of work required
            on top of (and including) the block holding the transaction
    """

    def __init__(self, relay: DifficultyRelay, tx_proof_difficulty_factor: int):
        if tx_proof_difficulty_factor < 1:
            raise ValueError("tx_proof_difficulty_factor must be at least 1")
        self.relay = relay
        self.tx_proof_difficulty_factor = tx_proof_difficulty_factor

    def validate_proof(self, tx: BitcoinTx, proof: SPVProof) -> bytes:
        """
        Authenticate a transaction.

        Returns:
            Transaction hash (internal byte order)

        Raises:
            BitcoinTxError: If the transaction components are malformed
            SPVProofError: If the proof does not hold
        """
        tx.validate()
        tx_hash = tx.hash()

        if len(proof.merkle_proof) != len(proof.coinbase_proof):
            raise SPVProofError("Tx not on same level of merkle tree as coinbase")

        headers = parse_headers(proof.bitcoin_headers)
        merkle_root = headers[0].merkle_root

        if not verify_merkle_proof(
            tx_hash, merkle_root, proof.merkle_proof, proof.tx_index_in_block
        ):
            raise SPVProofError("Tx merkle proof is not valid for provided header and tx hash")

        coinbase_hash = sha256(proof.coinbase_preimage)
        if not verify_merkle_proof(coinbase_hash, merkle_root, proof.coinbase_proof, 0):
            raise SPVProofError("Coinbase merkle proof is not valid for provided header and hash")

        self.evaluate_proof_difficulty(proof.bitcoin_headers)

        logger.debug(f"SPV proof accepted for tx {tx_hash[::-1].hex()}")
        return tx_hash

    def evaluate_proof_difficulty(self, bitcoin_headers: bytes) -> None:
        """
        Check the header chain against the relay's epochs.

        Every header's difficulty must equal the current or previous epoch
        difficulty, and the chain must accumulate at least
        tx_proof_difficulty_factor times the first header's difficulty.
        """
        chain = parse_headers(bitcoin_headers)
        current = self.relay.current_epoch_difficulty()
        previous = self.relay.previous_epoch_difficulty()

        for height, header in enumerate(chain):
            if header.difficulty not in (current, previous):
                raise SPVProofError(
                    f"Not at current or previous difficulty at position {height}"
                )
        requested_difficulty = chain[0].difficulty

        observed_difficulty = validate_header_chain(bitcoin_headers)
        required = requested_difficulty * self.tx_proof_difficulty_factor
        if observed_difficulty < required:
            raise SPVProofError(
                f"Insufficient accumulated difficulty in header chain: "
                f"{observed_difficulty} < {required}"
            )

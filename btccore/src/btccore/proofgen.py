"""
SPV proof generation for regtest-style chains.

Builds merkle branches and mines low-difficulty header chains around a
transaction so proofs can be produced without a node. Used by the test
suites and for exercising the verifier offline.
"""

from __future__ import annotations

from btccore.constants import HASH_LENGTH
from btccore.crypto import hash256, sha256
from btccore.spv import BlockHeader, SPVProof
from btccore.tx import BitcoinTx

REGTEST_BITS = 0x207FFFFF


def compute_merkle_root(leaves: list[bytes]) -> bytes:
    """Merkle root over leaf hashes, duplicating the last one on odd levels."""
    if not leaves:
        raise ValueError("Cannot compute Merkle root of empty list")

    hashes = list(leaves)
    while len(hashes) > 1:
        if len(hashes) % 2 == 1:
            hashes.append(hashes[-1])
        hashes = [hash256(hashes[i] + hashes[i + 1]) for i in range(0, len(hashes), 2)]
    return hashes[0]


def generate_merkle_proof(leaves: list[bytes], index: int) -> tuple[bytes, bytes]:
    """
    Returns:
        (proof, merkle_root) where proof is the concatenated sibling hashes
    """
    if not leaves:
        raise ValueError("Cannot generate proof for empty list")
    if index < 0 or index >= len(leaves):
        raise ValueError(f"index {index} out of range [0, {len(leaves)})")

    proof = b""
    hashes = list(leaves)
    while len(hashes) > 1:
        if len(hashes) % 2 == 1:
            hashes.append(hashes[-1])
        proof += hashes[index ^ 1]
        hashes = [hash256(hashes[i] + hashes[i + 1]) for i in range(0, len(hashes), 2)]
        index //= 2
    return proof, hashes[0]


def mine_header(
    prev_block_hash: bytes,
    merkle_root: bytes,
    bits: int = REGTEST_BITS,
    timestamp: int = 1_700_000_000,
    version: int = 0x20000000,
) -> BlockHeader:
    """Grind the nonce until the header hash meets its target."""
    for nonce in range(0x100000000):
        header = BlockHeader(version, prev_block_hash, merkle_root, timestamp, bits, nonce)
        if header.has_valid_work():
            return header
    raise ValueError(f"No valid nonce for bits {bits:#x}")


def build_spv_proof(
    tx: BitcoinTx,
    confirmations: int,
    tx_index: int = 1,
    block_size: int = 4,
    bits: int = REGTEST_BITS,
    prev_block_hash: bytes = b"\x00" * HASH_LENGTH,
) -> SPVProof:
    """
    Place tx in a synthetic block and bury it under a mined header chain.

    Args:
        tx: Transaction to prove
        confirmations: Number of headers, including the one holding tx
        tx_index: Position of tx in the block (the coinbase sits at 0)
        block_size: Number of transactions in the block
        bits: Compact target used for every header
        prev_block_hash: Parent of the first header
    """
    if not 0 < tx_index < block_size:
        raise ValueError(f"tx_index must be in [1, {block_size})")

    coinbase_preimage = sha256(b"coinbase" + tx.hash())
    leaves = [sha256(coinbase_preimage)]
    for i in range(1, block_size):
        leaves.append(tx.hash() if i == tx_index else hash256(b"filler" + bytes([i]) + tx.hash()))

    merkle_proof, merkle_root = generate_merkle_proof(leaves, tx_index)
    coinbase_proof, _ = generate_merkle_proof(leaves, 0)

    headers = []
    previous = prev_block_hash
    for height in range(confirmations):
        root = merkle_root if height == 0 else hash256(b"block" + height.to_bytes(4, "little"))
        header = mine_header(previous, root, bits, timestamp=1_700_000_000 + height * 600)
        headers.append(header)
        previous = header.hash()

    return SPVProof(
        merkle_proof=merkle_proof,
        tx_index_in_block=tx_index,
        bitcoin_headers=b"".join(h.to_bytes() for h in headers),
        coinbase_preimage=coinbase_preimage,
        coinbase_proof=coinbase_proof,
    )

"""
btccore - Bitcoin primitives for the bridge

Provides the transaction wire codec, script templates and SPV proof
verification shared by the bridge components.
"""

__version__ = "0.1.0"

from btccore.models import UTXO, NetworkType
from btccore.script import (
    ScriptType,
    address_to_script,
    build_deposit_script,
    classify_output_script,
    extract_pubkey_hash,
    extract_script_hash,
    p2pkh_script,
    p2sh_script,
    p2wpkh_script,
    p2wsh_script,
    script_to_address,
)
from btccore.spv import (
    BlockHeader,
    DifficultyRelay,
    ProofVerifier,
    SPVProof,
    SPVProofError,
    StaticDifficultyRelay,
    verify_merkle_proof,
)
from btccore.tx import (
    BitcoinTx,
    BitcoinTxError,
    TxInput,
    TxOutput,
    encode_compact_size,
    read_compact_size,
)

__all__ = [
    "BitcoinTx",
    "BitcoinTxError",
    "BlockHeader",
    "DifficultyRelay",
    "NetworkType",
    "ProofVerifier",
    "SPVProof",
    "SPVProofError",
    "ScriptType",
    "StaticDifficultyRelay",
    "TxInput",
    "TxOutput",
    "UTXO",
    "address_to_script",
    "build_deposit_script",
    "classify_output_script",
    "encode_compact_size",
    "extract_pubkey_hash",
    "extract_script_hash",
    "p2pkh_script",
    "p2sh_script",
    "p2wpkh_script",
    "p2wsh_script",
    "read_compact_size",
    "script_to_address",
    "verify_merkle_proof",
]

"""
Bridge CLI - inspect deposit scripts, raw transactions and SPV proofs offline.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from btccore.models import NetworkType
from btccore.script import deposit_locking_script, script_to_address
from btccore.spv import ProofVerifier, SPVProof, SPVProofError, StaticDifficultyRelay
from btccore.tx import BitcoinTx, BitcoinTxError
from loguru import logger
from pydantic import ValidationError

from bridge.config import get_settings
from bridge.deposit import build_reveal_script
from bridge.models import RevealInfo

app = typer.Typer(
    name="bridge-cli",
    help="BTC bridge tooling",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _parse_hex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except ValueError:
        logger.error(f"Invalid hex for {what}")
        raise typer.Exit(1)


@app.command()
def deposit_script(
    depositor: str = typer.Option(..., "--depositor", help="Depositor account address (0x...)"),
    blinding_factor: str = typer.Option(..., "--blinding-factor", help="8-byte hex"),
    wallet_pubkey_hash: str = typer.Option(..., "--wallet-pkh", help="20-byte hex"),
    refund_pubkey: str = typer.Option(..., "--refund-pubkey", help="33-byte compressed hex"),
    refund_locktime: int = typer.Option(..., "--refund-locktime", help="Unix timestamp"),
    network: NetworkType | None = typer.Option(None, "--network", "-n"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Print a deposit script and the P2SH and P2WSH addresses locking it."""
    setup_logging(log_level)
    network = network or get_settings().to_config().network

    try:
        reveal = RevealInfo(
            funding_output_index=0,
            depositor=depositor,
            blinding_factor=blinding_factor,
            wallet_pubkey_hash=wallet_pubkey_hash,
            refund_pubkey=refund_pubkey,
            refund_locktime=refund_locktime.to_bytes(4, "little"),
        )
    except (ValidationError, ValueError, OverflowError) as e:
        logger.error(f"Invalid deposit parameters: {e}")
        raise typer.Exit(1)

    script = build_reveal_script(reveal)
    p2sh = deposit_locking_script(script, witness=False)
    p2wsh = deposit_locking_script(script, witness=True)

    typer.echo(
        json.dumps(
            {
                "script": script.hex(),
                "p2sh": {"script": p2sh.hex(), "address": script_to_address(p2sh, network)},
                "p2wsh": {"script": p2wsh.hex(), "address": script_to_address(p2wsh, network)},
            },
            indent=2,
        )
    )


@app.command()
def decode_tx(
    raw_tx: str = typer.Argument(..., help="Raw transaction hex"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Split a raw transaction into its components and dump it as JSON."""
    setup_logging(log_level)

    try:
        tx = BitcoinTx.from_raw(_parse_hex(raw_tx, "transaction"))
    except BitcoinTxError as e:
        logger.error(f"Malformed transaction: {e}")
        raise typer.Exit(1)

    data = tx.to_dict()
    data["components"] = {
        "version": tx.version.hex(),
        "input_vector": tx.input_vector.hex(),
        "output_vector": tx.output_vector.hex(),
        "locktime": tx.locktime.hex(),
    }
    typer.echo(json.dumps(data, indent=2))


def load_proof(path: Path) -> SPVProof:
    """
    Read an SPV proof from a JSON file with hex encoded fields:
    merkle_proof, tx_index_in_block, bitcoin_headers, coinbase_preimage,
    coinbase_proof.
    """
    data = json.loads(path.read_text())
    return SPVProof(
        merkle_proof=bytes.fromhex(data["merkle_proof"]),
        tx_index_in_block=int(data["tx_index_in_block"]),
        bitcoin_headers=bytes.fromhex(data["bitcoin_headers"]),
        coinbase_preimage=bytes.fromhex(data["coinbase_preimage"]),
        coinbase_proof=bytes.fromhex(data["coinbase_proof"]),
    )


@app.command()
def verify_proof(
    raw_tx: str = typer.Argument(..., help="Raw transaction hex"),
    proof_file: Path = typer.Option(..., "--proof", "-p", help="JSON file holding the proof"),
    current_difficulty: int = typer.Option(..., "--current-difficulty"),
    previous_difficulty: int | None = typer.Option(None, "--previous-difficulty"),
    factor: int | None = typer.Option(
        None, "--factor", help="Required confirmations, defaults to the configured factor"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Validate an SPV proof for a transaction against given epoch difficulties."""
    setup_logging(log_level)

    if not proof_file.exists():
        logger.error(f"Proof file not found: {proof_file}")
        raise typer.Exit(1)

    try:
        proof = load_proof(proof_file)
    except (KeyError, ValueError, ValidationError) as e:
        logger.error(f"Invalid proof file: {e}")
        raise typer.Exit(1)

    factor = factor or get_settings().to_config().tx_proof_difficulty_factor
    verifier = ProofVerifier(StaticDifficultyRelay(current_difficulty, previous_difficulty), factor)

    try:
        tx = BitcoinTx.from_raw(_parse_hex(raw_tx, "transaction"))
        tx_hash = verifier.validate_proof(tx, proof)
    except BitcoinTxError as e:
        logger.error(f"Malformed transaction: {e}")
        raise typer.Exit(1)
    except SPVProofError as e:
        logger.error(f"Proof rejected: {e}")
        raise typer.Exit(1)

    typer.echo(f"Proof valid for {tx_hash[::-1].hex()}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

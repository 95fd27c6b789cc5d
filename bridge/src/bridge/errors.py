"""
Bridge error taxonomy.

Every rejection leaves the bridge state untouched; the class only tells the
caller why the submission was refused.
"""

from __future__ import annotations


class BridgeError(Exception):
    pass


class MalformedInputError(BridgeError):
    """Bad encodings, wrong input/output counts or non-standard scripts."""

    pass


class ProofVerificationError(BridgeError):
    """The SPV proof does not authenticate the transaction."""

    pass


class ReconciliationError(BridgeError):
    """The transaction does not match the bridge's expectations."""

    pass


class WalletStateError(ReconciliationError):
    """The wallet is not in a state allowing the operation."""

    pass


class StaleProofError(BridgeError):
    """The action was already settled (swept deposit, spent UTXO, handled request)."""

    pass

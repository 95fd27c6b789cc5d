"""
Bitcoin transaction wire codec.

Transactions are handled the way an SPV proof carries them: as four raw
components (version, input vector, output vector, locktime), each byte-exact
to the consensus serialization. Input and output vectors keep their
compact-size count prefix.

All hashes are kept in internal byte order (the direct output of hash256).
Only `BitcoinTx.txid` reverses them for display.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property

from btccore.constants import (
    MAX_COMPACT_SIZE,
    OUTPOINT_LENGTH,
    OUTPUT_VALUE_LENGTH,
    SEQUENCE_LENGTH,
)
from btccore.crypto import hash256


class BitcoinTxError(ValueError):
    """Raised when raw transaction data is malformed."""

    pass


def read_compact_size(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Read a compact-size integer.

    Args:
        data: Buffer to read from
        offset: Position of the prefix byte

    Returns:
        (value, offset just past the encoding)

    Raises:
        BitcoinTxError: On truncated or non-minimal encodings
    """
    if offset < 0 or offset >= len(data):
        raise BitcoinTxError(f"Compact size out of bounds at offset {offset}")

    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset

    if first == 0xFD:
        size, minimum = 2, 0xFD
    elif first == 0xFE:
        size, minimum = 4, 0x10000
    else:
        size, minimum = 8, 0x100000000

    if offset + size > len(data):
        raise BitcoinTxError(f"Truncated compact size: need {size} bytes at offset {offset}")

    value = int.from_bytes(data[offset : offset + size], "little")
    if value < minimum:
        raise BitcoinTxError(f"Non-canonical compact size encoding for {value}")
    return value, offset + size


def encode_compact_size(value: int) -> bytes:
    if value < 0 or value > MAX_COMPACT_SIZE:
        raise BitcoinTxError(f"Value out of compact size range: {value}")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def _require(data: bytes, offset: int, length: int, what: str) -> None:
    if offset + length > len(data):
        raise BitcoinTxError(
            f"Truncated {what}: need {length} bytes at offset {offset}, have {len(data) - offset}"
        )


def determine_input_length(vin: bytes, offset: int) -> int:
    """Byte length of the input starting at offset (outpoint + script + sequence)."""
    _require(vin, offset, OUTPOINT_LENGTH, "input outpoint")
    script_len, script_start = read_compact_size(vin, offset + OUTPOINT_LENGTH)
    length = script_start - offset + script_len + SEQUENCE_LENGTH
    _require(vin, offset, length, "input")
    return length


def determine_output_length(vout: bytes, offset: int) -> int:
    """Byte length of the output starting at offset (value + script)."""
    _require(vout, offset, OUTPUT_VALUE_LENGTH, "output value")
    script_len, script_start = read_compact_size(vout, offset + OUTPUT_VALUE_LENGTH)
    length = script_start - offset + script_len
    _require(vout, offset, length, "output")
    return length


def _walk_vector(vector: bytes, length_fn) -> list[tuple[int, int]]:
    count, offset = read_compact_size(vector, 0)
    spans = []
    for _ in range(count):
        length = length_fn(vector, offset)
        spans.append((offset, length))
        offset += length
    if offset != len(vector):
        raise BitcoinTxError(f"Vector has {len(vector) - offset} trailing bytes")
    return spans


def validate_input_vector(vin: bytes) -> int:
    """
    Check that an input vector is well formed.

    Returns:
        Number of inputs

    Raises:
        BitcoinTxError: If the count is zero or the inputs don't consume
            the vector exactly
    """
    spans = _walk_vector(vin, determine_input_length)
    if not spans:
        raise BitcoinTxError("Input vector must contain at least one input")
    return len(spans)


def validate_output_vector(vout: bytes) -> int:
    """Same as validate_input_vector, for outputs."""
    spans = _walk_vector(vout, determine_output_length)
    if not spans:
        raise BitcoinTxError("Output vector must contain at least one output")
    return len(spans)


def extract_input_at_index(vin: bytes, index: int) -> bytes:
    count, offset = read_compact_size(vin, 0)
    if index < 0 or index >= count:
        raise BitcoinTxError(f"Input index {index} out of range (count {count})")
    for _ in range(index):
        offset += determine_input_length(vin, offset)
    return vin[offset : offset + determine_input_length(vin, offset)]


def extract_output_at_index(vout: bytes, index: int) -> bytes:
    count, offset = read_compact_size(vout, 0)
    if index < 0 or index >= count:
        raise BitcoinTxError(f"Output index {index} out of range (count {count})")
    for _ in range(index):
        offset += determine_output_length(vout, offset)
    return vout[offset : offset + determine_output_length(vout, offset)]


@dataclass(frozen=True)
class TxInput:
    prev_tx_hash: bytes  # internal byte order
    prev_output_index: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF

    @classmethod
    def parse(cls, raw: bytes) -> TxInput:
        length = determine_input_length(raw, 0)
        if length != len(raw):
            raise BitcoinTxError(f"Input has {len(raw) - length} trailing bytes")
        script_len, script_start = read_compact_size(raw, OUTPOINT_LENGTH)
        return cls(
            prev_tx_hash=raw[:32],
            prev_output_index=int.from_bytes(raw[32:36], "little"),
            script_sig=raw[script_start : script_start + script_len],
            sequence=int.from_bytes(raw[script_start + script_len :], "little"),
        )

    @property
    def outpoint(self) -> tuple[bytes, int]:
        return self.prev_tx_hash, self.prev_output_index

    def serialize(self) -> bytes:
        return (
            self.prev_tx_hash
            + self.prev_output_index.to_bytes(4, "little")
            + encode_compact_size(len(self.script_sig))
            + self.script_sig
            + self.sequence.to_bytes(4, "little")
        )


@dataclass(frozen=True)
class TxOutput:
    value: int
    script: bytes

    @classmethod
    def parse(cls, raw: bytes) -> TxOutput:
        length = determine_output_length(raw, 0)
        if length != len(raw):
            raise BitcoinTxError(f"Output has {len(raw) - length} trailing bytes")
        script_len, script_start = read_compact_size(raw, OUTPUT_VALUE_LENGTH)
        return cls(
            value=int.from_bytes(raw[:8], "little"),
            script=raw[script_start : script_start + script_len],
        )

    def serialize(self) -> bytes:
        return (
            self.value.to_bytes(8, "little") + encode_compact_size(len(self.script)) + self.script
        )


def _vector(items: list[bytes]) -> bytes:
    return encode_compact_size(len(items)) + b"".join(items)


@dataclass(frozen=True)
class BitcoinTx:
    """
    Raw transaction split into its proof components.

    The witness, when a segwit serialization was parsed, is kept aside and
    never contributes to hash().
    """

    version: bytes
    input_vector: bytes
    output_vector: bytes
    locktime: bytes
    witness: bytes = field(default=b"", compare=False)

    def __post_init__(self) -> None:
        if len(self.version) != 4:
            raise BitcoinTxError(f"Version must be 4 bytes, got {len(self.version)}")
        if len(self.locktime) != 4:
            raise BitcoinTxError(f"Locktime must be 4 bytes, got {len(self.locktime)}")

    @classmethod
    def from_parts(
        cls,
        inputs: list[TxInput],
        outputs: list[TxOutput],
        version: int = 1,
        locktime: int = 0,
    ) -> BitcoinTx:
        return cls(
            version=version.to_bytes(4, "little"),
            input_vector=_vector([inp.serialize() for inp in inputs]),
            output_vector=_vector([out.serialize() for out in outputs]),
            locktime=locktime.to_bytes(4, "little"),
        )

    @classmethod
    def from_raw(cls, raw: bytes) -> BitcoinTx:
        """
        Split a serialized transaction into components.

        Accepts both legacy and BIP144 (marker 0x00, flag 0x01) serializations.
        """
        _require(raw, 0, 4, "version")
        offset = 4
        segwit = len(raw) > offset + 1 and raw[offset] == 0x00 and raw[offset + 1] == 0x01
        if segwit:
            offset += 2

        vin_start = offset
        input_count, offset = read_compact_size(raw, offset)
        for _ in range(input_count):
            offset += determine_input_length(raw, offset)
        vin_end = offset

        output_count, offset = read_compact_size(raw, offset)
        for _ in range(output_count):
            offset += determine_output_length(raw, offset)
        vout_end = offset

        if segwit:
            for _ in range(input_count):
                item_count, offset = read_compact_size(raw, offset)
                for _ in range(item_count):
                    item_len, offset = read_compact_size(raw, offset)
                    _require(raw, offset, item_len, "witness item")
                    offset += item_len
        witness_end = offset

        _require(raw, offset, 4, "locktime")
        if offset + 4 != len(raw):
            raise BitcoinTxError(f"Transaction has {len(raw) - offset - 4} trailing bytes")

        tx = cls(
            version=raw[:4],
            input_vector=raw[vin_start:vin_end],
            output_vector=raw[vin_end:vout_end],
            locktime=raw[offset : offset + 4],
            witness=raw[vout_end:witness_end],
        )
        tx.validate()
        return tx

    def validate(self) -> tuple[int, int]:
        """Returns (input count, output count) or raises BitcoinTxError."""
        return validate_input_vector(self.input_vector), validate_output_vector(
            self.output_vector
        )

    def serialize(self) -> bytes:
        """Legacy serialization, the preimage of hash()."""
        return self.version + self.input_vector + self.output_vector + self.locktime

    def hash(self) -> bytes:
        return hash256(self.serialize())

    @property
    def txid(self) -> str:
        return self.hash()[::-1].hex()

    @cached_property
    def inputs(self) -> list[TxInput]:
        count = validate_input_vector(self.input_vector)
        return [TxInput.parse(extract_input_at_index(self.input_vector, i)) for i in range(count)]

    @cached_property
    def outputs(self) -> list[TxOutput]:
        count = validate_output_vector(self.output_vector)
        return [
            TxOutput.parse(extract_output_at_index(self.output_vector, i)) for i in range(count)
        ]

    def to_dict(self) -> dict:
        return {
            "txid": self.txid,
            "hash": self.hash().hex(),
            "version": int.from_bytes(self.version, "little"),
            "locktime": int.from_bytes(self.locktime, "little"),
            "inputs": [
                {
                    "txid": inp.prev_tx_hash[::-1].hex(),
                    "vout": inp.prev_output_index,
                    "script_sig": inp.script_sig.hex(),
                    "sequence": inp.sequence,
                }
                for inp in self.inputs
            ],
            "outputs": [{"value": out.value, "script": out.script.hex()} for out in self.outputs],
        }

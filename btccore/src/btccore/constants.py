"""
Bitcoin consensus and script constants.
"""

from __future__ import annotations

# Opcodes used by the deposit script and the standard output templates
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_IF = 0x63
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_DROP = 0x75
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_CHECKLOCKTIMEVERIFY = 0xB1

# Serialized sizes
OUTPOINT_LENGTH = 36  # 32-byte tx hash + 4-byte output index
SEQUENCE_LENGTH = 4
OUTPUT_VALUE_LENGTH = 8
HEADER_LENGTH = 80
HASH_LENGTH = 32

MAX_COMPACT_SIZE = 0xFFFFFFFFFFFFFFFF

# Difficulty 1 target (nBits 0x1d00ffff)
DIFF1_TARGET = 0xFFFF * 256 ** (0x1D - 3)

# Locktime values below this are block heights, above are unix timestamps
LOCKTIME_THRESHOLD = 500_000_000

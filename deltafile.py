"""
Binary delta file format for block checksum deltas.

A delta file is a small header followed by an instruction stream:

    magic       8 bytes   b'BLKDELTA'
    version     1 byte
    chunk_size  varint
    target_len  varint
    0x01 varint                   copy original chunk <index>
    0x02 varint <length bytes>    literal data
    0xFF                          end of delta

Varints are little-endian base-128 (7 bits per byte, high bit = more).
"""

import hashlib
import os
from collections import namedtuple

from blockdelta import (
    CopyRef,
    DeltaError,
    Literal,
    generate_instructions,
    rebuild_target_from_original,
)

# Delta format constants
DELTA_MAGIC = b'BLKDELTA'
DELTA_VERSION = 1

# Instruction opcodes
OP_COPY_REF = 0x01  # Copy chunk from original
OP_LITERAL = 0x02   # Insert literal data
OP_END = 0xFF       # End of delta

DEFAULT_CHUNK_SIZE = 512

DeltaPatch = namedtuple("DeltaPatch", ["chunk_size", "target_length", "instructions"])


class _ChunkedDeltaReader:
    """
    Streaming delta reader with minimal lookahead buffer.
    Keeps memory at O(buffer_size) plus the literal being read.
    """
    def __init__(self, file_handle, buffer_size=64):
        self.f = file_handle
        self.buffer = bytearray()
        self.buffer_size = buffer_size
        self.eof = False

    def _ensure_bytes(self, count):
        """Ensure at least 'count' bytes in buffer."""
        while len(self.buffer) < count and not self.eof:
            chunk = self.f.read(max(self.buffer_size, count - len(self.buffer)))
            if not chunk:
                self.eof = True
                break
            self.buffer.extend(chunk)

    def read_byte(self):
        """Read single byte."""
        self._ensure_bytes(1)
        if len(self.buffer) < 1:
            raise DeltaError("Unexpected EOF reading delta")
        b = self.buffer[0]
        del self.buffer[0]
        return b

    def read_bytes(self, count):
        """Read exact number of bytes."""
        self._ensure_bytes(count)
        if len(self.buffer) < count:
            raise DeltaError("Delta truncated")
        result = bytes(self.buffer[:count])
        del self.buffer[:count]
        return result

    def read_varint(self):
        """Read variable-length integer."""
        result = 0
        shift = 0
        while True:
            byte = self.read_byte()
            result |= (byte & 0x7F) << shift
            if not (byte & 0x80):
                return result
            shift += 7

    def at_eof(self):
        self._ensure_bytes(1)
        return not self.buffer


class _BytesDeltaReader(_ChunkedDeltaReader):
    """Reader over an in-memory delta."""
    def __init__(self, data):
        super().__init__(None)
        self.buffer = bytearray(data)
        self.eof = True


def _write_varint(value):
    """Write variable-length integer."""
    if value < 0:
        raise DeltaError("Cannot encode negative varint: {}".format(value))
    result = bytearray()
    while value > 0x7F:
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value & 0x7F)
    return bytes(result)


def _varint_size(value):
    size = 1
    while value > 0x7F:
        value >>= 7
        size += 1
    return size


# ============================================================================
# Encoding
# ============================================================================

def header_size(chunk_size, target_length):
    """Size in bytes of the delta header."""
    return len(DELTA_MAGIC) + 1 + _varint_size(chunk_size) + _varint_size(target_length)


def estimate_delta_size(instructions):
    """
    Exact encoded size of ``instructions`` including the end marker,
    excluding the header.
    """
    size = 1
    for ins in instructions:
        if isinstance(ins, CopyRef):
            size += 1 + _varint_size(ins.index)
        else:
            size += 1 + _varint_size(len(ins.data)) + len(ins.data)
    return size


def encode_instructions(instructions, chunk_size, target_length):
    """
    Serialize an instruction sequence.

    Args:
        instructions: CopyRef / Literal sequence
        chunk_size: Chunk size the instructions were generated with
        target_length: Length of the buffer the instructions rebuild

    Returns:
        Delta data as bytes

    Raises:
        DeltaError: On an empty literal or unknown instruction
    """
    delta = bytearray(DELTA_MAGIC)
    delta.append(DELTA_VERSION)
    delta.extend(_write_varint(chunk_size))
    delta.extend(_write_varint(target_length))

    for ins in instructions:
        if isinstance(ins, CopyRef):
            delta.append(OP_COPY_REF)
            delta.extend(_write_varint(ins.index))
        elif isinstance(ins, Literal):
            if not ins.data:
                raise DeltaError("Empty literal")
            delta.append(OP_LITERAL)
            delta.extend(_write_varint(len(ins.data)))
            delta.extend(ins.data)
        else:
            raise DeltaError("Unknown instruction: {!r}".format(ins))

    delta.append(OP_END)
    return bytes(delta)


# ============================================================================
# Decoding
# ============================================================================

def _read_patch(reader):
    reader._ensure_bytes(len(DELTA_MAGIC) + 1)
    if len(reader.buffer) < len(DELTA_MAGIC) + 1:
        raise DeltaError("Delta too short")

    if reader.read_bytes(len(DELTA_MAGIC)) != DELTA_MAGIC:
        raise DeltaError("Invalid delta magic")

    version = reader.read_byte()
    if version != DELTA_VERSION:
        raise DeltaError("Unsupported delta version: {}".format(version))

    chunk_size = reader.read_varint()
    if chunk_size < 1:
        raise DeltaError("Invalid chunk size in delta: {}".format(chunk_size))
    target_length = reader.read_varint()

    instructions = []
    while True:
        opcode = reader.read_byte()

        if opcode == OP_END:
            break

        elif opcode == OP_COPY_REF:
            instructions.append(CopyRef(reader.read_varint()))

        elif opcode == OP_LITERAL:
            length = reader.read_varint()
            if length == 0:
                raise DeltaError("Empty literal in delta")
            if length > target_length:
                raise DeltaError("Literal size too large: {}".format(length))
            instructions.append(Literal(reader.read_bytes(length)))

        else:
            raise DeltaError("Unknown opcode: 0x{:02x}".format(opcode))

    if not reader.at_eof():
        raise DeltaError("Trailing data after end of delta")

    return DeltaPatch(chunk_size, target_length, instructions)


def decode_instructions(data):
    """
    Parse an in-memory delta.

    Returns:
        DeltaPatch(chunk_size, target_length, instructions)

    Raises:
        DeltaError: If the delta is malformed
    """
    return _read_patch(_BytesDeltaReader(data))


def read_delta(file_handle, buffer_size=64):
    """Parse a delta from an open binary file using a small read buffer."""
    return _read_patch(_ChunkedDeltaReader(file_handle, buffer_size=buffer_size))


# ============================================================================
# File level
# ============================================================================

def create_delta(old_path, new_path, output_path=None, chunk_size=DEFAULT_CHUNK_SIZE):
    """
    Create binary delta between two files.

    Args:
        old_path: Path to original file
        new_path: Path to new file
        output_path: Path for delta file (optional)
        chunk_size: Block size for matching

    Returns:
        Delta data as bytes
    """
    with open(old_path, "rb") as f:
        old_data = f.read()
    with open(new_path, "rb") as f:
        new_data = f.read()

    instructions = generate_instructions(old_data, new_data, chunk_size)
    delta_bytes = encode_instructions(instructions, chunk_size, len(new_data))

    # Write to file if path provided
    if output_path:
        with open(output_path, "wb") as f:
            f.write(delta_bytes)

    return delta_bytes


def apply_delta(old_path, delta_data, output_path, expected_hash=None):
    """
    Apply binary delta to create new file.

    Args:
        old_path: Path to original file
        delta_data: Delta bytes, or a file path string for streaming decode
        output_path: Path for output file
        expected_hash: Expected SHA256 of result (optional)

    Returns:
        SHA256 hash of output file

    Raises:
        DeltaError: If delta is invalid, references a missing chunk, or
            output length/hash mismatches
    """
    if isinstance(delta_data, str):
        with open(delta_data, "rb") as delta_file:
            patch = read_delta(delta_file)
    else:
        patch = decode_instructions(delta_data)

    with open(old_path, "rb") as f:
        old_data = f.read()

    # Output file is only created once the result is fully verified
    new_data = rebuild_target_from_original(old_data, patch.instructions, patch.chunk_size)

    if len(new_data) != patch.target_length:
        raise DeltaError("Output length mismatch: expected {}, got {}".format(
            patch.target_length, len(new_data)))

    result_hash = hashlib.sha256(new_data).hexdigest()
    if expected_hash and result_hash != expected_hash:
        raise DeltaError("Output hash mismatch: expected {}, got {}".format(
            expected_hash, result_hash))

    with open(output_path, "wb") as new_file:
        new_file.write(new_data)
        new_file.flush()
        if hasattr(os, "fsync"):
            os.fsync(new_file.fileno())

    return result_hash

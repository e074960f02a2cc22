"""
Block checksum delta encoding.

Splits an original buffer into fixed-size blocks, indexes them by a weak
(Adler-32) and strong (SHA-1) checksum, then slides a window over the
target buffer to emit copy references for matching blocks and literal
runs for everything else. The reconstructor replays those instructions
against the original to regenerate the target.
"""

import hashlib
import zlib
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

# Adler-32 modulus (largest prime below 2^16)
ADLER_MOD = 65521

# Nominal cost of one copy reference: tag byte + index byte
COPY_REF_COST = 2


class DeltaError(Exception):
    """Delta operation error."""
    pass


# ============================================================================
# Instructions
# ============================================================================

@dataclass(frozen=True)
class CopyRef:
    """Emit original chunk ``index`` unchanged."""
    index: int

    def __repr__(self):
        return f"COPY({self.index})"


@dataclass(frozen=True)
class Literal:
    """Emit ``data`` verbatim."""
    data: bytes

    def __repr__(self):
        if len(self.data) <= 20:
            return f"LITERAL({self.data!r})"
        return f"LITERAL(len={len(self.data)})"


Instruction = Union[CopyRef, Literal]


@dataclass(frozen=True)
class IndexEntry:
    """Position and strong checksum of an original chunk."""
    index: int
    strong: str


# ============================================================================
# Chunker
# ============================================================================

def _check_chunk_size(chunk_size_bytes):
    if isinstance(chunk_size_bytes, bool) or not isinstance(chunk_size_bytes, int):
        raise ValueError("chunk size must be an integer, got {!r}".format(chunk_size_bytes))
    if chunk_size_bytes < 1:
        raise ValueError("chunk size must be >= 1, got {}".format(chunk_size_bytes))


def _as_bytes(buffer) -> bytes:
    return buffer if isinstance(buffer, bytes) else bytes(buffer)


def divide_to_chunks(buffer, chunk_size_bytes: int) -> List[bytes]:
    """
    Split ``buffer`` into consecutive ``chunk_size_bytes`` slices.

    The final slice holds the remainder and may be shorter. No empty
    trailing chunk is produced when the length is an exact multiple.

    Raises:
        ValueError: If chunk_size_bytes is not a positive integer
    """
    _check_chunk_size(chunk_size_bytes)
    data = _as_bytes(buffer)
    return [data[i:i + chunk_size_bytes] for i in range(0, len(data), chunk_size_bytes)]


# ============================================================================
# Checksums
# ============================================================================

def weak_checksum(data) -> int:
    """Adler-32 of ``data`` as an unsigned 32-bit int."""
    return zlib.adler32(data) & 0xFFFFFFFF


def strong_checksum(data) -> str:
    """SHA-1 hex digest of ``data``."""
    return hashlib.sha1(data).hexdigest()


class RollingChecksum:
    """
    Adler-32 over a fixed-size window, updated in O(1) per byte shift.

    ``digest`` always equals ``weak_checksum`` of the current window.
    """

    def __init__(self, window):
        self.reset(window)

    def reset(self, window):
        """Recompute both sums from scratch for a new window."""
        self.size = len(window)
        a = 1 + sum(window)
        b = self.size + sum((self.size - i) * x for i, x in enumerate(window))
        self.a = a % ADLER_MOD
        self.b = b % ADLER_MOD

    def roll(self, out_byte: int, in_byte: int):
        """Drop ``out_byte`` from the front and append ``in_byte``."""
        self.a = (self.a - out_byte + in_byte) % ADLER_MOD
        self.b = (self.b - self.size * out_byte + self.a - 1) % ADLER_MOD

    @property
    def digest(self) -> int:
        return (self.b << 16) | self.a


# ============================================================================
# Checksum index
# ============================================================================

def build_checksum_index(chunks) -> Dict[int, IndexEntry]:
    """
    Index chunks by weak checksum.

    When two chunks share a weak checksum, the later one replaces the
    earlier one under that key.
    """
    index = {}
    for i, chunk in enumerate(chunks):
        index[weak_checksum(chunk)] = IndexEntry(i, strong_checksum(chunk))
    return index


# ============================================================================
# Matcher
# ============================================================================

def scan_windows(index: Dict[int, IndexEntry], target, chunk_size_bytes: int
                 ) -> Iterator[Tuple[int, Optional[IndexEntry]]]:
    """
    Slide a ``chunk_size_bytes`` window over ``target``.

    Yields ``(pos, entry)`` for every full window examined. ``entry`` is
    the matching index entry, in which case the next window starts one
    chunk later, or None, in which case the window advances by one byte.
    Matches are greedy and leftmost. A weak hit only counts when the
    strong checksum agrees too.
    """
    _check_chunk_size(chunk_size_bytes)
    data = _as_bytes(target)
    last = len(data) - chunk_size_bytes
    if last < 0:
        return

    view = memoryview(data)
    pos = 0
    rolling = RollingChecksum(view[0:chunk_size_bytes])
    while pos <= last:
        entry = index.get(rolling.digest)
        if entry is not None and entry.strong != strong_checksum(view[pos:pos + chunk_size_bytes]):
            entry = None
        yield pos, entry

        if entry is not None:
            pos += chunk_size_bytes
            if pos <= last:
                rolling.reset(view[pos:pos + chunk_size_bytes])
        else:
            if pos < last:
                rolling.roll(data[pos], data[pos + chunk_size_bytes])
            pos += 1


def find_differing_chunks(original, target, chunk_size_bytes: int) -> List[bytes]:
    """
    Return every target window that has no match in ``original``.

    Diagnostic view of the scan: one window per missed position. Bytes
    past the last full window are not reported.
    """
    _check_chunk_size(chunk_size_bytes)
    data = _as_bytes(target)
    index = build_checksum_index(divide_to_chunks(original, chunk_size_bytes))
    return [data[pos:pos + chunk_size_bytes]
            for pos, entry in scan_windows(index, data, chunk_size_bytes)
            if entry is None]


def generate_instructions(original, target, chunk_size_bytes: int) -> List[Instruction]:
    """
    Compute the instruction sequence that turns ``original`` into ``target``.

    Args:
        original: Reference buffer
        target: Desired buffer
        chunk_size_bytes: Block size used for matching

    Returns:
        List of CopyRef and Literal instructions. Consecutive unmatched
        bytes are coalesced into a single Literal.

    Raises:
        ValueError: If chunk_size_bytes is not a positive integer
    """
    _check_chunk_size(chunk_size_bytes)
    data = _as_bytes(target)
    index = build_checksum_index(divide_to_chunks(original, chunk_size_bytes))

    instructions = []
    pending = bytearray()

    def flush_literal():
        if pending:
            instructions.append(Literal(bytes(pending)))
            pending.clear()

    cursor = 0
    for pos, entry in scan_windows(index, data, chunk_size_bytes):
        if entry is not None:
            flush_literal()
            instructions.append(CopyRef(entry.index))
            cursor = pos + chunk_size_bytes
        else:
            pending.append(data[pos])
            cursor = pos + 1

    # Tail shorter than one window
    pending.extend(data[cursor:])
    flush_literal()
    return instructions


# ============================================================================
# Reconstructor
# ============================================================================

def rebuild_target_from_original(original, instructions, chunk_size_bytes: int) -> bytes:
    """
    Replay ``instructions`` against ``original``.

    ``chunk_size_bytes`` must be the value the instructions were
    generated with.

    Raises:
        ValueError: If chunk_size_bytes is not a positive integer
        DeltaError: If a CopyRef points outside the original's chunks or
            an instruction has an unknown type
    """
    chunks = divide_to_chunks(original, chunk_size_bytes)
    out = bytearray()
    for n, instruction in enumerate(instructions):
        if isinstance(instruction, CopyRef):
            if not 0 <= instruction.index < len(chunks):
                raise DeltaError("Chunk reference out of range at instruction {}: {} (original has {} chunks)".format(
                    n, instruction.index, len(chunks)))
            out.extend(chunks[instruction.index])
        elif isinstance(instruction, Literal):
            out.extend(instruction.data)
        else:
            raise DeltaError("Unknown instruction at {}: {!r}".format(n, instruction))
    return bytes(out)


def calculate_patch_size(instructions, ref_cost: int = COPY_REF_COST) -> int:
    """
    Rough patch size: ``ref_cost`` bytes per CopyRef (tag + index) plus
    the raw length of every Literal.
    """
    total = 0
    for ins in instructions:
        if isinstance(ins, CopyRef):
            total += ref_cost
        else:
            total += len(ins.data)
    return total

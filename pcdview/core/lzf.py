"""
LZF decompressor for PCD binary_compressed bodies

Byte-oriented format, one control byte per token:
- ctrl < 32: literal run, copy the next ctrl + 1 bytes
- ctrl >= 32: back-reference, length = (ctrl >> 5) [+ next byte when 7] + 2,
  offset = ((ctrl & 0x1f) << 8) | next byte, source = out_pos - offset - 1

Implemented without any compression library.
"""

import logging

from ..config import DECODER
from ..errors import InvalidBackReference, SizeMismatch

logger = logging.getLogger(__name__)


def decompress(compressed: bytes, expected_size: int,
               tolerance: float = DECODER.LZF_SHORTFALL_TOLERANCE) -> bytes:
    """
    Decompress an LZF stream

    Args:
        compressed: LZF stream
        expected_size: number of bytes the stream must expand to
        tolerance: fraction of expected_size that may be missing and is zero padded

    Returns:
        exactly expected_size bytes

    Raises:
        InvalidBackReference: a back-reference reaches before the output start
            or into bytes not written yet
        SizeMismatch: the stream ended more than `tolerance` short
    """
    src = memoryview(compressed)
    in_len = len(src)
    out = bytearray(expected_size)
    in_pos = 0
    out_pos = 0

    while in_pos < in_len and out_pos < expected_size:
        ctrl = src[in_pos]
        in_pos += 1

        if ctrl < 32:
            length = min(ctrl + 1, in_len - in_pos, expected_size - out_pos)
            if length <= 0:
                break
            out[out_pos:out_pos + length] = src[in_pos:in_pos + length]
            in_pos += length
            out_pos += length
            continue

        length = ctrl >> 5
        if length == 7:
            if in_pos >= in_len:
                break
            length += src[in_pos]
            in_pos += 1
        length += 2

        if in_pos >= in_len:
            break
        ref = out_pos - (((ctrl & 0x1f) << 8) | src[in_pos]) - 1
        in_pos += 1

        if ref < 0 or ref >= out_pos:
            raise InvalidBackReference(
                f"LZF back-reference to {ref} at output position {out_pos}"
            )

        length = min(length, expected_size - out_pos)
        if out_pos - ref >= length:
            out[out_pos:out_pos + length] = out[ref:ref + length]
            out_pos += length
        else:
            # overlapping run, later bytes repeat the ones just written
            for i in range(length):
                out[out_pos] = out[ref + i]
                out_pos += 1

    if out_pos != expected_size:
        shortfall = expected_size - out_pos
        if shortfall > expected_size * tolerance:
            raise SizeMismatch(
                f"LZF size mismatch (expected {expected_size:,}, got {out_pos:,}, diff: {shortfall:,})"
            )
        logger.warning(f"LZF stream {shortfall:,} bytes short, zero padding")

    return bytes(out)


class LZFCodec:
    """
    Stateless LZF decompressor with a configured shortfall tolerance

    Usage:
        codec = LZFCodec()
        raw = codec.decompress(payload, uncompressed_size)
    """

    def __init__(self, tolerance: float = DECODER.LZF_SHORTFALL_TOLERANCE):
        self.tolerance = tolerance

    def decompress(self, compressed: bytes, expected_size: int) -> bytes:
        return decompress(compressed, expected_size, self.tolerance)

"""
PCD decoder

Parses the textual header, dispatches to the ASCII, binary or
binary_compressed body reader and returns a column-oriented
PointCloudDataset with exact bounds.

- ASCII: whitespace tokens, unparsable or invalid points dropped
- binary: packed little-endian records read column by column with numpy
- binary_compressed: [u32 compressed][u32 uncompressed][LZF stream]
"""

import numpy as np
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union
import logging
import time

from ..config import DECODER
from ..errors import (
    EmptyPointCloud,
    InvalidCompressionHeader,
    MalformedHeader,
    TruncatedBinaryData,
)
from .bounds import PointCloudDataset
from .field_layout import FieldLayout, PCDHeader, parse_header
from .lzf import LZFCodec

logger = logging.getLogger(__name__)

PACKED_RGB_MODES = ('numeric', 'bitcast')


@dataclass
class DecoderConfig:
    """Decoder tunables"""
    max_coordinate: float = DECODER.MAX_COORDINATE
    max_uncompressed_size: int = DECODER.MAX_UNCOMPRESSED_SIZE
    lzf_tolerance: float = DECODER.LZF_SHORTFALL_TOLERANCE
    packed_rgb_mode: str = DECODER.PACKED_RGB_MODE
    # PCL writes compressed bodies field by field; off reads them as interleaved records
    compressed_column_major: bool = False

    def __post_init__(self):
        if self.packed_rgb_mode not in PACKED_RGB_MODES:
            raise ValueError(f"Unknown packed_rgb_mode: {self.packed_rgb_mode}")


def split_header(data: bytes) -> Tuple[str, int]:
    """
    Locate the end of the header

    Returns:
        (header text including the DATA line, byte offset of the body)

    Raises:
        MalformedHeader: no line starts with DATA
    """
    pos = 0
    n = len(data)
    while pos < n:
        nl = data.find(b'\n', pos)
        end = n if nl == -1 else nl
        if data[pos:end].strip()[:4].upper() == b'DATA':
            body_offset = n if nl == -1 else nl + 1
            return data[:end].decode('utf-8', errors='replace'), body_offset
        if nl == -1:
            break
        pos = nl + 1
    raise MalformedHeader("Invalid PCD file: DATA field not found")


def _normalize_channel(values: np.ndarray) -> np.ndarray:
    """Values above 1 are taken as 0-255, the rest as already normalized"""
    values = np.asarray(values, dtype=np.float64)
    return np.where(values > 1, values / 255.0, values)


def _unpack_rgb_numeric(values: np.ndarray) -> np.ndarray:
    """floor(v) & 0xff red, floor(v / 256) & 0xff green, floor(v / 65536) & 0xff blue"""
    v = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    v = np.clip(v, -2.0 ** 62, 2.0 ** 62)
    r = np.floor(v).astype(np.int64) & 0xff
    g = np.floor(v / 256).astype(np.int64) & 0xff
    b = np.floor(v / 65536).astype(np.int64) & 0xff
    return np.stack([r, g, b], axis=1) / 255.0


def _unpack_rgb_bits(bits: np.ndarray) -> np.ndarray:
    """0x00RRGGBB packed in a uint32"""
    u = np.asarray(bits, dtype=np.uint32).astype(np.int64)
    r = (u >> 16) & 0xff
    g = (u >> 8) & 0xff
    b = u & 0xff
    return np.stack([r, g, b], axis=1) / 255.0


def _with_alpha(rgb: np.ndarray) -> np.ndarray:
    rgba = np.ones((len(rgb), 4), dtype=np.float32)
    rgba[:, :3] = rgb
    return rgba


class PCDDecoder:
    """
    Byte-exact PCD decoder

    Usage:
        decoder = PCDDecoder()
        dataset = decoder.decode(Path("cloud.pcd").read_bytes())
        print(dataset.count, dataset.bounds)
    """

    def __init__(self, config: Optional[DecoderConfig] = None):
        self.config = config or DecoderConfig()
        self.codec = LZFCodec(self.config.lzf_tolerance)

    def decode(self, data: Union[bytes, bytearray, memoryview]) -> PointCloudDataset:
        """
        Decode a whole PCD file

        Args:
            data: raw file bytes

        Returns:
            PointCloudDataset

        Raises:
            DecodeError: MalformedHeader, TruncatedBinaryData, InvalidCompressionHeader,
                SizeMismatch, InvalidBackReference or EmptyPointCloud
        """
        data = bytes(data)
        start = time.perf_counter()

        header_text, body_offset = split_header(data)
        header = parse_header(header_text)
        layout = FieldLayout.from_header(header)
        for axis in ('x', 'y', 'z'):
            layout.field_dtype(axis)

        logger.info(f"PCD {header.data}: {header.points:,} points, fields={header.fields}, "
                    f"stride={layout.stride}B, body at {body_offset:,}")

        if header.data == 'ascii':
            body = data[body_offset:].decode('utf-8', errors='replace')
            points, colors, skipped = self._decode_ascii(body, header, layout)
        elif header.data == 'binary':
            points, colors, skipped = self._decode_binary(data, body_offset, header, layout)
        else:
            points, colors, skipped = self._decode_binary_compressed(data, body_offset, header, layout)

        if len(points) == 0:
            raise EmptyPointCloud("No valid points found in PCD file")

        dataset = PointCloudDataset.from_arrays(points, colors, skipped_count=skipped, header=header)

        elapsed = time.perf_counter() - start
        logger.info(f"Decoded {dataset.count:,} points in {elapsed:.2f}s "
                    f"(skipped {skipped:,} invalid, colors={dataset.has_colors})")
        logger.debug(f"Bounds: {dataset.bounds}")
        return dataset

    def decode_file(self, file_path: Union[str, Path]) -> PointCloudDataset:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"PCD file not found: {file_path}")
        logger.info(f"Reading {path.name} ({path.stat().st_size / (1024 * 1024):.1f} MB)")
        return self.decode(path.read_bytes())

    def _valid_coordinates(self, xyz: np.ndarray) -> np.ndarray:
        """Row mask: all three coordinates finite and within max_coordinate"""
        limit = self.config.max_coordinate
        with np.errstate(invalid='ignore'):
            valid = np.all(np.isfinite(xyz), axis=1) & np.all(np.abs(xyz) <= limit, axis=1)
        invalid = int(len(xyz) - np.count_nonzero(valid))
        if invalid:
            logger.warning(f"Skipped {invalid:,} of {len(xyz):,} points with invalid coordinates "
                           f"(NaN, infinite or |coord| > {limit:g})")
        return valid

    # ASCII

    def _decode_ascii(self, body: str, header: PCDHeader,
                      layout: FieldLayout) -> Tuple[np.ndarray, Optional[np.ndarray], int]:
        """
        Tokenize every non-empty line

        Lines whose x/y/z do not parse are dropped, then the same coordinate
        filter as the binary readers applies. Both count as skipped.
        """
        ix, iy, iz = (layout.token_offset(a) for a in ('x', 'y', 'z'))
        packed_name = 'rgb' if layout.has('rgb') else ('rgba' if layout.has('rgba') else None)
        i_packed = layout.token_offset(packed_name) if packed_name else -1
        i_rgb = [layout.token_offset(c) if layout.has(c) else -1 for c in ('r', 'g', 'b')]
        has_color = header.has_color
        bitcast = self.config.packed_rgb_mode == 'bitcast'

        coords = []
        colors = []
        unparsable = 0

        for line in body.splitlines():
            tokens = line.split()
            if not tokens:
                continue
            try:
                x = float(tokens[ix])
                y = float(tokens[iy])
                z = float(tokens[iz])
            except (IndexError, ValueError):
                unparsable += 1
                continue

            coords.append((x, y, z))

            if has_color:
                colors.append(self._ascii_color(tokens, i_packed, i_rgb, bitcast))

        if unparsable:
            logger.info(f"Dropped {unparsable:,} unparsable ASCII lines")

        xyz = np.array(coords, dtype=np.float64).reshape(-1, 3)
        valid = self._valid_coordinates(xyz)

        points = xyz[valid].astype(np.float32)
        color_array = None
        if has_color:
            rgb = np.array(colors, dtype=np.float64).reshape(-1, 3)
            color_array = _with_alpha(rgb[valid])
        return points, color_array, unparsable + int(len(xyz) - np.count_nonzero(valid))

    @staticmethod
    def _ascii_color(tokens, i_packed: int, i_rgb, bitcast: bool) -> Tuple[float, float, float]:
        n = len(tokens)
        if 0 <= i_packed < n:
            try:
                value = float(tokens[i_packed])
            except ValueError:
                return (1.0, 1.0, 1.0)
            if bitcast:
                rgb = _unpack_rgb_bits(np.array([value], dtype=np.float32).view(np.uint32))
            else:
                rgb = _unpack_rgb_numeric(np.array([value]))
            return tuple(float(c) for c in rgb[0])

        channels = []
        for idx in i_rgb:
            value = 1.0
            if 0 <= idx < n:
                try:
                    value = float(tokens[idx])
                except ValueError:
                    value = 1.0
            channels.append(value / 255.0 if value > 1 else value)
        return tuple(channels)

    # Binary

    @staticmethod
    def _read_column(buffer: bytes, base: int, n: int, element_stride: int,
                     layout: FieldLayout, name: str, offset: Optional[int] = None) -> np.ndarray:
        """
        Read the first element of field `name` from n records as float64

        8-byte integers are rebuilt from two little-endian 32-bit words
        as high * 2^32 + low (exact up to 2^53).
        """
        field_offset = layout.offset(name) if offset is None else offset
        start = base + field_offset

        if layout.is_wide_integer(name):
            signed = layout.types[layout.index(name)] == 'I'
            low = np.ndarray((n,), dtype='<u4', buffer=buffer, offset=start, strides=(element_stride,))
            high = np.ndarray((n,), dtype='<i4' if signed else '<u4', buffer=buffer,
                              offset=start + 4, strides=(element_stride,))
            return high.astype(np.float64) * 4294967296.0 + low.astype(np.float64)

        dtype = layout.field_dtype(name)
        column = np.ndarray((n,), dtype=dtype, buffer=buffer, offset=start, strides=(element_stride,))
        return column.astype(np.float64)

    def _read_records(self, buffer: bytes, base: int, n: int, header: PCDHeader,
                      layout: FieldLayout, column_major: bool = False
                      ) -> Tuple[np.ndarray, Optional[np.ndarray], int]:
        """Read n records starting at `base`, drop invalid coordinates"""

        def column(name: str) -> np.ndarray:
            if column_major:
                i = layout.index(name)
                return self._read_column(buffer, base, n, layout.sizes[i] * layout.counts[i],
                                         layout, name, offset=layout.offset(name) * n)
            return self._read_column(buffer, base, n, layout.stride, layout, name)

        x, y, z = column('x'), column('y'), column('z')
        xyz = np.stack([x, y, z], axis=1)

        valid = self._valid_coordinates(xyz)
        skipped = int(n - np.count_nonzero(valid))

        points = xyz[valid].astype(np.float32)

        colors = None
        if header.has_color:
            rgb = self._binary_colors(buffer, base, n, layout, column, column_major)
            colors = _with_alpha(rgb[valid])

        return points, colors, skipped

    def _binary_colors(self, buffer: bytes, base: int, n: int, layout: FieldLayout,
                       column, column_major: bool) -> np.ndarray:
        packed_name = 'rgb' if layout.has('rgb') else ('rgba' if layout.has('rgba') else None)

        if packed_name:
            i = layout.index(packed_name)
            if self.config.packed_rgb_mode == 'bitcast' and layout.sizes[i] == 4:
                if column_major:
                    start = base + layout.offset(packed_name) * n
                    stride = layout.sizes[i] * layout.counts[i]
                else:
                    start = base + layout.offset(packed_name)
                    stride = layout.stride
                bits = np.ndarray((n,), dtype='<u4', buffer=buffer, offset=start, strides=(stride,))
                return _unpack_rgb_bits(bits)
            return _unpack_rgb_numeric(column(packed_name))

        channels = []
        for name in ('r', 'g', 'b'):
            if layout.has(name):
                channels.append(_normalize_channel(column(name)))
            else:
                channels.append(np.ones(n))
        return np.stack(channels, axis=1)

    def _decode_binary(self, data: bytes, base: int, header: PCDHeader, layout: FieldLayout,
                       column_major: bool = False) -> Tuple[np.ndarray, Optional[np.ndarray], int]:
        """
        Read min(POINTS, available // stride) records

        Raises:
            TruncatedBinaryData: not a single record fits in the available bytes
        """
        if layout.stride == 0:
            raise TruncatedBinaryData(
                "Invalid point size: 0. Check header SIZE and COUNT fields."
            )

        available = max(len(data) - base, 0)
        max_records = available // layout.stride

        if column_major:
            if header.points * layout.stride > available:
                raise TruncatedBinaryData(
                    f"Column-major body needs {header.points * layout.stride:,} bytes, "
                    f"have {available:,}"
                )
            n = header.points
        else:
            n = min(header.points, max_records)
            if available < header.points * layout.stride:
                logger.warning(f"Available bytes ({available:,}) less than expected "
                               f"({header.points * layout.stride:,}); file may be truncated")

        if n <= 0:
            raise TruncatedBinaryData(
                f"No complete point record in {available:,} bytes (stride {layout.stride})"
            )

        logger.debug(f"Reading {n:,} records (stride={layout.stride}, available={available:,})")
        return self._read_records(data, base, n, header, layout, column_major)

    def _decode_binary_compressed(self, data: bytes, base: int, header: PCDHeader,
                                  layout: FieldLayout) -> Tuple[np.ndarray, Optional[np.ndarray], int]:
        """
        Validate the length pair, LZF-decompress and read as a binary body

        Raises:
            InvalidCompressionHeader: lengths missing, zero, overrunning or absurd
        """
        available = len(data) - base
        if available < 8:
            raise InvalidCompressionHeader(
                "Not enough data to read compression header (need at least 8 bytes)"
            )

        compressed_size, uncompressed_size = (
            int(v) for v in np.frombuffer(data, dtype='<u4', count=2, offset=base)
        )

        if compressed_size == 0 or compressed_size > available - 8:
            raise InvalidCompressionHeader(
                f"Invalid compressed size: {compressed_size:,} (available: {available - 8:,})"
            )
        if uncompressed_size == 0 or uncompressed_size > self.config.max_uncompressed_size:
            raise InvalidCompressionHeader(f"Invalid uncompressed size: {uncompressed_size:,}")

        payload = data[base + 8:base + 8 + compressed_size]
        logger.info(f"Decompressing {compressed_size:,} -> {uncompressed_size:,} bytes")
        decompressed = self.codec.decompress(payload, uncompressed_size)

        expected = layout.stride * header.points
        if expected != uncompressed_size:
            logger.warning(f"Uncompressed size {uncompressed_size:,} differs from "
                           f"stride * points = {expected:,}")

        return self._decode_binary(decompressed, 0, header, layout,
                                   column_major=self.config.compressed_column_major)


def decode_pcd(data: bytes, config: Optional[DecoderConfig] = None) -> PointCloudDataset:
    """Decode PCD bytes with a one-off decoder"""
    return PCDDecoder(config).decode(data)
